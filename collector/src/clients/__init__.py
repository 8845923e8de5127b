"""
Vendor cloud clients.

Exports one client class per supported vendor plus the factory used by the
daemon to build clients for the providers enabled in configuration.

CHANGELOG:
- 2026-02-28: Export build_clients (STORY-024)
- 2026-02-27: Initial creation (STORY-023)

TODO:
- None
"""

from collector.src.clients.base import VendorClient
from collector.src.clients.factory import build_clients
from collector.src.clients.growatt import GrowattClient
from collector.src.clients.huawei import HuaweiClient
from collector.src.clients.solis import SolisClient

__all__ = [
    "GrowattClient",
    "HuaweiClient",
    "SolisClient",
    "VendorClient",
    "build_clients",
]

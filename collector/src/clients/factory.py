"""
Build vendor clients for the providers enabled in configuration.

CHANGELOG:
- 2026-02-28: Initial creation (STORY-024)

TODO:
- None
"""

from __future__ import annotations

import logging

from collector.src.clients.base import VendorClient
from collector.src.clients.growatt import GrowattClient
from collector.src.clients.huawei import HuaweiClient
from collector.src.clients.solis import SolisClient
from collector.src.config import CollectorSettings
from collector.src.models import Provider

logger = logging.getLogger(__name__)


def build_clients(settings: CollectorSettings) -> dict[Provider, VendorClient]:
    """Create one client per provider whose credentials are configured.

    Providers without credentials are logged and left out.

    Args:
        settings: Loaded collector settings.

    Returns:
        Mapping of provider to its client, in a stable provider order.
    """
    common = {
        "timeout_s": settings.vendor_timeout_s,
        "max_retries": settings.vendor_max_retries,
    }
    enabled = settings.enabled_providers()
    clients: dict[Provider, VendorClient] = {}

    for provider in Provider:
        if provider not in enabled:
            logger.info("Provider %s has no credentials configured, skipping", provider.value)
            continue
        if provider is Provider.HUAWEI:
            clients[provider] = HuaweiClient(
                base_url=settings.huawei_api_url,
                username=settings.huawei_username,
                system_code=settings.huawei_password,
                **common,
            )
        elif provider is Provider.GROWATT:
            clients[provider] = GrowattClient(
                base_url=settings.growatt_api_url,
                token=settings.growatt_api_token,
                **common,
            )
        elif provider is Provider.SOLIS:
            clients[provider] = SolisClient(
                base_url=settings.solis_api_url,
                api_id=settings.solis_api_id,
                api_secret=settings.solis_api_secret,
                **common,
            )
    return clients

"""
String telemetry collector package.

Polls the Huawei FusionSolar, Growatt and SolisCloud vendor clouds for
per-string inverter telemetry, normalizes it, flags underperforming strings,
and maintains hourly/daily rollups in a relational store.

CHANGELOG:
- 2026-02-27: Initial creation (STORY-020)

TODO:
- None
"""

"""
Health file writer for the collector daemon.

Writes a JSON health file at a configurable path with:

- last_cycle: per provider, the summary of its most recent poll cycle
  (status, timestamps, device/reading/alert counts, step errors).
- last_retention_ts: ISO timestamp of the most recent retention run.
- retention_deleted: readings deleted by that run.

The file is rewritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-03-01: Per-provider cycle summaries (STORY-029)
- 2026-02-14: Initial creation (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collector.src.orchestrator import CycleReport


class HealthWriter:
    """Writes collector health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._cycles: dict[str, dict[str, Any]] = {}
        self._last_retention_ts: str | None = None
        self._retention_deleted: int = 0

    def record_cycle(self, report: CycleReport) -> None:
        """Record a provider cycle report and write health file."""
        self._cycles[report.provider.value] = report.summary()
        self._write()

    def record_retention(self, deleted: int) -> None:
        """Record a retention run and write health file.

        Args:
            deleted: Number of readings the run deleted.
        """
        self._last_retention_ts = datetime.now(tz=UTC).isoformat()
        self._retention_deleted = deleted
        self._write()

    def _write(self) -> None:
        data = {
            "last_cycle": self._cycles,
            "last_retention_ts": self._last_retention_ts,
            "retention_deleted": self._retention_deleted,
        }
        self.path.write_text(json.dumps(data))

"""
Health file writer for the budget service.

Writes a JSON health file at a configurable path with three fields:
- last_poll_ts: ISO timestamp of the most recent gateway poll attempt.
- last_budget_ts: ISO timestamp of the most recent dispatched budget.
- last_budget_w: The most recent dispatched budget in watts.

The file is overwritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-11: Track dispatched budgets instead of uploads (STORY-010)
- 2026-10-06: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path


class HealthWriter:
    """Writes service health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_poll_ts: str | None = None
        self._last_budget_ts: str | None = None
        self._last_budget_w: int | None = None

    def record_poll(self) -> None:
        """Record a poll event and write health file."""
        self._last_poll_ts = datetime.now(tz=UTC).isoformat()
        self._write()

    def record_budget(self, watts: int) -> None:
        """Record a dispatched budget and write health file.

        Args:
            watts: The budget handed to the charger.
        """
        self._last_budget_ts = datetime.now(tz=UTC).isoformat()
        self._last_budget_w = watts
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_poll_ts": self._last_poll_ts,
            "last_budget_ts": self._last_budget_ts,
            "last_budget_w": self._last_budget_w,
        }
        self.path.write_text(json.dumps(data))

"""
Unit tests for the health writer module.

Tests verify:
- HealthWriter.record_poll() writes health.json with last_poll_ts.
- HealthWriter.record_budget() updates last_budget_ts and last_budget_w.
- Health file always contains all three fields.

CHANGELOG:
- 2026-10-11: Track dispatched budgets (STORY-010)
- 2026-10-06: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

from powerwall2mqtt.src.health import HealthWriter


class TestRecordPoll:
    """record_poll() creates/updates the health JSON file."""

    def test_record_poll_writes_health_file(self, tmp_path: Path) -> None:
        """Calling record_poll() creates health.json with last_poll_ts set."""
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_poll()

        data = json.loads(health_path.read_text())
        assert isinstance(data["last_poll_ts"], str)
        assert "T" in data["last_poll_ts"]
        assert data["last_budget_ts"] is None
        assert data["last_budget_w"] is None


class TestRecordBudget:
    """record_budget() stores the dispatched watts."""

    def test_record_budget_writes_watts(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(str(health_path))

        writer.record_budget(2500)

        data = json.loads(health_path.read_text())
        assert data["last_budget_w"] == 2500
        assert isinstance(data["last_budget_ts"], str)

    def test_latest_budget_wins(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_poll()
        writer.record_budget(2500)
        writer.record_budget(0)

        data = json.loads(health_path.read_text())
        assert data["last_budget_w"] == 0
        assert set(data) == {"last_poll_ts", "last_budget_ts", "last_budget_w"}
        assert data["last_poll_ts"] is not None

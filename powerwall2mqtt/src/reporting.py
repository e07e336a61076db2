"""
Telemetry reporter interface.

The controller forwards selected raw readings and every dispatched budget
to a :class:`Reporter`.  Reporting is fire-and-forget: implementations
must not block and must not raise.  :class:`NoopReporter` is used when no
telemetry sink is wired (tests, dry runs).

CHANGELOG:
- 2026-10-10: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

from typing import Protocol


class Reporter(Protocol):
    """One-way telemetry sink."""

    def report_budget(self, watts: int) -> None: ...

    def report_ev_connected(self, connected: bool) -> None: ...

    def report_evse_current(self, milliamps: int) -> None: ...

    def report_evse_temperature(self, deci_celsius: int) -> None: ...


class NoopReporter:
    """Reporter that discards everything."""

    def report_budget(self, watts: int) -> None:
        pass

    def report_ev_connected(self, connected: bool) -> None:
        pass

    def report_evse_current(self, milliamps: int) -> None:
        pass

    def report_evse_temperature(self, deci_celsius: int) -> None:
        pass

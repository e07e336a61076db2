"""
Domain enums and pydantic models for gateway and charger telemetry.

Holds the operator-facing enums (controller strategy, charge mode), the
Powerwall operation mode, and the pydantic models used to parse JSON
responses from the Tesla Energy Gateway and the OpenEVSE charger.

CHANGELOG:
- 2026-10-18: Reject "unknown" as an operator strategy; drop unread fields (STORY-011)
- 2026-10-09: Add OpenEVSE status/config models (STORY-006)
- 2026-10-06: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, RootModel, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Strategy(StrEnum):
    """Operator-selected charging strategy."""

    UNKNOWN = "unknown"
    AUTO = "auto"
    FULL_SPEED = "full-speed"
    OVERNIGHT = "overnight"
    OFF_PEAK = "off-peak"

    @classmethod
    def parse(cls, value: str) -> Strategy:
        """Parse an MQTT/env payload such as ``"Full-Speed"`` or ``"off_peak"``.

        Raises:
            ValueError: If the payload names no known strategy, or names
                UNKNOWN, which is a state and not an operator choice.
        """
        strategy = cls(value.strip().lower().replace("_", "-"))
        if strategy is cls.UNKNOWN:
            raise ValueError(f"{value!r} is not a selectable strategy")
        return strategy


class OperationMode(StrEnum):
    """Powerwall operation mode as reported by ``/api/operation``."""

    UNKNOWN = "unknown"
    SELF_CONSUMPTION = "self_consumption"
    AUTONOMOUS = "autonomous"
    BACKUP = "backup"


class ChargeMode(StrEnum):
    """OpenEVSE charge mode accompanying a budget."""

    FAST = "fast"
    ECO = "eco"


# ---------------------------------------------------------------------------
# Configuration value objects
# ---------------------------------------------------------------------------


class TempClamp(BaseModel):
    """One row of the EVSE temperature derate table.

    Attributes:
        temp_c: Threshold in degrees Celsius. Applies when the EVSE
            temperature is strictly above it.
        max_amps: Maximum charging current while above the threshold.
    """

    model_config = {"frozen": True}

    temp_c: float
    max_amps: int


DEFAULT_TEMP_CLAMPS: tuple[TempClamp, ...] = (
    TempClamp(temp_c=50.0, max_amps=8),
    TempClamp(temp_c=49.0, max_amps=12),
    TempClamp(temp_c=48.0, max_amps=16),
    TempClamp(temp_c=47.0, max_amps=24),
    TempClamp(temp_c=46.0, max_amps=32),
)
"""Derate table, hottest threshold first."""


# ---------------------------------------------------------------------------
# Tesla Energy Gateway responses
# ---------------------------------------------------------------------------


class MeterReading(BaseModel):
    """A single meter entry from ``/api/meters/aggregates``."""

    instant_power: float = 0.0


class MeterAggregates(RootModel[dict[str, MeterReading]]):
    """Meter aggregates keyed by meter name (site, battery, load, solar)."""

    def get(self, name: str) -> MeterReading | None:
        return self.root.get(name)


class StateOfEnergy(BaseModel):
    """Powerwall charge level from ``/api/system_status/soe``."""

    percentage: float


class GridStatus(BaseModel):
    """Grid status from ``/api/system_status/grid_status``."""

    grid_services_active: bool = False


class Operation(BaseModel):
    """Operation settings from ``/api/operation``."""

    real_mode: OperationMode

    @field_validator("real_mode", mode="before")
    @classmethod
    def real_mode_must_be_known(cls, v: object) -> object:
        """Reject operation modes the gateway may add in future firmware."""
        known = {m.value for m in OperationMode if m is not OperationMode.UNKNOWN}
        if v not in known:
            raise ValueError(f"Unknown operation mode {v!r}")
        return v


class PowerwallReadings(BaseModel):
    """All gateway readings gathered in one poll cycle."""

    meters: MeterAggregates
    soe: StateOfEnergy
    grid_status: GridStatus
    operation: Operation


# ---------------------------------------------------------------------------
# OpenEVSE responses
# ---------------------------------------------------------------------------


class EvseStatus(BaseModel):
    """Charger status from OpenEVSE ``/status``.

    Attributes:
        amp: Charging current in milliamps.
        temp: EVSE temperature in tenths of a degree Celsius.
        vehicle: Non-zero when a vehicle is connected.
    """

    amp: int = 0
    temp: int = 0
    vehicle: int = 0


class EvseConfig(BaseModel):
    """Body posted to OpenEVSE ``/config`` to switch the charge mode."""

    charge_mode: ChargeMode

"""
Feed parsed gateway and charger readings into the controller.

Maps each reading onto the matching controller setter. Sign conventions
follow the gateway's meters: ``site`` is positive when importing from the
grid, ``battery`` is positive when discharging.  Exported solar is therefore
the negated site power; a negative value means the house is importing.

Meters missing from a response are skipped rather than defaulted, so the
controller keeps treating that field as unobserved (or keeps its last
value).

CHANGELOG:
- 2026-10-09: Add EVSE status mapping (STORY-006)
- 2026-10-07: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from powerwall2mqtt.src.controller import Controller
    from powerwall2mqtt.src.models import EvseStatus, PowerwallReadings

logger = logging.getLogger(__name__)


async def apply_powerwall_readings(
    controller: Controller,
    readings: PowerwallReadings,
) -> None:
    """Push one gateway poll cycle into the controller.

    Args:
        controller: Target controller.
        readings: Parsed readings from :class:`~powerwall2mqtt.src.poller.PowerwallPoller`.
    """
    meters = readings.meters

    site = meters.get("site")
    if site is not None:
        await controller.set_exported_solar_w(-site.instant_power)
    else:
        logger.warning("Meter 'site' missing from aggregates")

    battery = meters.get("battery")
    if battery is not None:
        await controller.set_exported_battery_w(battery.instant_power)

    solar = meters.get("solar")
    if solar is not None:
        await controller.set_solar_w(solar.instant_power)

    load = meters.get("load")
    if load is not None:
        await controller.set_load_w(load.instant_power)

    await controller.set_powerwall_battery_pct(readings.soe.percentage)
    await controller.set_load_reduction(readings.grid_status.grid_services_active)
    await controller.set_operation_mode(readings.operation.real_mode)


async def apply_evse_status(controller: Controller, status: EvseStatus) -> None:
    """Push one OpenEVSE status reading into the controller."""
    await controller.set_evse_current(status.amp)
    await controller.set_evse_temperature(status.temp)
    await controller.set_ev_connected(status.vehicle != 0)

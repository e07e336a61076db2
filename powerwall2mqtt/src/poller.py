"""
Pollers for the Tesla Energy Gateway and the OpenEVSE charger.

Each ``poll()`` call performs one complete read cycle and returns a parsed
result, or ``None`` on any error.  Designed to be robust:

- Never crashes the caller's loop on any error.
- Logs warnings on errors but never propagates exceptions to the caller.
- The gateway poller drops its session after a failure so the next cycle
  starts with a fresh login (the gateway expires cookies without notice).

A failed cycle simply withholds readings: the controller keeps its last
known values and never sees a made-up one.

CHANGELOG:
- 2026-10-09: Add EvsePoller (STORY-006)
- 2026-10-07: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from powerwall2mqtt.src.models import PowerwallReadings

if TYPE_CHECKING:
    from powerwall2mqtt.src.models import EvseStatus
    from powerwall2mqtt.src.openevse import OpenEvseClient
    from powerwall2mqtt.src.powerwall import PowerwallClient

logger = logging.getLogger(__name__)


class PowerwallPoller:
    """Reads every gateway endpoint the controller needs in one cycle.

    Args:
        client: The gateway client. Logged in lazily on the first poll.
    """

    def __init__(self, client: PowerwallClient) -> None:
        self._client = client

    async def poll(self) -> PowerwallReadings | None:
        """Execute a single gateway poll cycle.

        Returns:
            A :class:`PowerwallReadings` on success, or ``None`` on any error.
        """
        try:
            if not self._client.logged_in:
                await self._client.login()

            meters, soe, grid_status, operation = await asyncio.gather(
                self._client.get_meter_aggregates(),
                self._client.get_state_of_energy(),
                self._client.get_grid_status(),
                self._client.get_operation(),
            )
        except Exception:
            logger.warning("Gateway poll failed, will log in again", exc_info=True)
            try:
                await self._client.close()
            except Exception:
                logger.debug("Error closing gateway session", exc_info=True)
            return None

        return PowerwallReadings(
            meters=meters,
            soe=soe,
            grid_status=grid_status,
            operation=operation,
        )


class EvsePoller:
    """Reads the OpenEVSE status endpoint."""

    def __init__(self, client: OpenEvseClient) -> None:
        self._client = client

    async def poll(self) -> EvseStatus | None:
        """Execute a single EVSE poll.

        Returns:
            The charger status on success, or ``None`` on any error.
        """
        try:
            return await self._client.get_status()
        except Exception:
            logger.warning("EVSE poll failed", exc_info=True)
            return None

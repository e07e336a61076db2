"""
Async HTTP client for an OpenEVSE charger's local API.

Reads ``/status`` for current, temperature and vehicle presence, and writes
``/config`` to switch between the ``fast`` and ``eco`` charge modes.

CHANGELOG:
- 2026-10-09: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import logging

import httpx

from powerwall2mqtt.src.models import ChargeMode, EvseConfig, EvseStatus

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_S: float = 15.0


class OpenEvseClient:
    """Client for one OpenEVSE charger.

    Args:
        host: Charger address, e.g. ``192.168.1.20`` or ``openevse.local``.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        host: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=f"http://{self._host}",
            timeout=HTTP_TIMEOUT_S,
            transport=self._transport,
        )

    async def get_status(self) -> EvseStatus:
        """Fetch and parse ``/status``.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response.
            pydantic.ValidationError: On an unparseable body.
        """
        async with self._client() as client:
            response = await client.get("/status")
            response.raise_for_status()
        status = EvseStatus.model_validate(response.json())
        logger.debug("EVSE status: %s", status)
        return status

    async def set_charge_mode(self, mode: ChargeMode) -> None:
        """POST the charge mode to ``/config``.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response.
        """
        async with self._client() as client:
            response = await client.post(
                "/config",
                json=EvseConfig(charge_mode=mode).model_dump(mode="json"),
            )
            response.raise_for_status()
        logger.info("EVSE charge mode set to %s", mode)

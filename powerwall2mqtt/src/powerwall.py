"""
Async HTTP client for the Tesla Energy Gateway local API.

Logs in with the gateway's "customer" account, keeps the session cookie in
an :class:`httpx.AsyncClient`, and exposes one typed GET per endpoint the
service needs. Responses are parsed into the pydantic models in
:mod:`powerwall2mqtt.src.models`.

The gateway serves a self-signed certificate, so TLS verification is
disabled for this client only.

CHANGELOG:
- 2026-10-08: Parse responses with pydantic models (STORY-005)
- 2026-10-07: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
from typing import TypeVar

import httpx
from pydantic import BaseModel

from powerwall2mqtt.src.models import (
    GridStatus,
    MeterAggregates,
    Operation,
    StateOfEnergy,
)

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_S: float = 15.0
"""Per-request timeout for gateway calls."""

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class PowerwallClient:
    """Session-holding client for one Tesla Energy Gateway.

    Args:
        host: Gateway IP address or hostname.
        password: Gateway "customer" password.
        email: Email sent with the login request.
        debug: Log every raw JSON response.
        transport: Optional httpx transport (tests inject a MockTransport).
    """

    def __init__(
        self,
        *,
        host: str,
        password: str,
        email: str = "hello@example.com",
        debug: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host
        self._password = password
        self._email = email
        self._debug = debug
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def logged_in(self) -> bool:
        return self._client is not None

    async def login(self) -> None:
        """Open a fresh session and authenticate against ``/api/login/Basic``.

        Any previous session (and its cookies) is discarded first.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response.
        """
        await self.close()
        client = httpx.AsyncClient(
            base_url=f"https://{self._host}",
            verify=False,
            timeout=HTTP_TIMEOUT_S,
            transport=self._transport,
        )
        try:
            response = await client.post(
                "/api/login/Basic",
                json={
                    "username": "customer",
                    "password": self._password,
                    "email": self._email,
                    "force_sm_off": False,
                },
            )
            response.raise_for_status()
        except Exception:
            await client.aclose()
            raise
        self._client = client
        logger.info("Logged in to gateway %s", self._host)

    async def close(self) -> None:
        """Drop the current session, if any."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _get(self, path: str, model: type[_ModelT]) -> _ModelT:
        if self._client is None:
            raise RuntimeError("PowerwallClient.login() must be called first")
        response = await self._client.get(path)
        response.raise_for_status()
        body = response.json()
        if self._debug:
            logger.debug("GET %s: %s", path, json.dumps(body, indent=2))
        return model.model_validate(body)

    async def get_meter_aggregates(self) -> MeterAggregates:
        return await self._get("/api/meters/aggregates", MeterAggregates)

    async def get_state_of_energy(self) -> StateOfEnergy:
        return await self._get("/api/system_status/soe", StateOfEnergy)

    async def get_grid_status(self) -> GridStatus:
        return await self._get("/api/system_status/grid_status", GridStatus)

    async def get_operation(self) -> Operation:
        return await self._get("/api/operation", Operation)

"""
MQTT transport: telemetry reporter, budget publisher, command subscriber.

All MQTT traffic goes through one paho-mqtt client whose network loop runs
in paho's background thread (``loop_start``).  Three pieces sit on top:

1. **MqttReporter**: fire-and-forget telemetry. Publishes Home Assistant
   discovery configs once, then drains a small bounded queue; when the
   queue is full new reports are dropped. Payloads equal to the last one
   successfully published on a topic are skipped.
2. **BudgetPublisher**: the controller's apply-budget callback. Switches
   the OpenEVSE charge mode first when it changed, then publishes the
   budget. Any failure raises, which stops the decision loop.
3. **CommandSubscriber**: turns strategy and EV battery level messages into
   controller setter calls, marshalled from paho's thread onto the asyncio
   loop.

CHANGELOG:
- 2026-10-18: Reject "unknown" strategy and non-finite or out-of-range EV levels (STORY-011)
- 2026-10-12: Publish charge mode before budget when OpenEVSE is configured (STORY-009)
- 2026-10-11: Add CommandSubscriber for strategy and EV battery topics (STORY-008)
- 2026-10-10: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import paho.mqtt.client as mqtt

from powerwall2mqtt.src.models import ChargeMode, Strategy

if TYPE_CHECKING:
    from powerwall2mqtt.src.controller import Controller
    from powerwall2mqtt.src.openevse import OpenEvseClient

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REPORT_QUEUE_SIZE: int = 10
"""Pending telemetry reports; further reports are dropped while full."""

PUBLISH_TIMEOUT_S: float = 10.0

DEVICE_INFO: dict[str, Any] = {
    "name": "Powerwall2mqtt",
    "identifiers": ["powerwall2mqtt"],
}


class PublishError(RuntimeError):
    """An MQTT publish was rejected by the client."""


# ---------------------------------------------------------------------------
# Client setup
# ---------------------------------------------------------------------------


def create_client(client_id: str = "powerwall2mqtt") -> mqtt.Client:
    """Create a paho client with automatic reconnect backoff."""
    client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
    client.reconnect_delay_set(min_delay=1, max_delay=60)
    return client


async def connect(client: mqtt.Client, host: str, port: int) -> None:
    """Connect to the broker and start paho's network thread.

    Raises:
        OSError: If the broker cannot be reached.
    """
    await asyncio.to_thread(client.connect, host, port)
    client.loop_start()
    logger.info("Connected to MQTT broker %s:%d", host, port)


async def publish(
    client: mqtt.Client,
    topic: str,
    payload: str,
    *,
    retain: bool = False,
    wait: bool = False,
) -> None:
    """Publish *payload* to *topic* at QoS 0.

    Args:
        wait: Block (in a worker thread) until paho has handed the message
            to the socket.

    Raises:
        PublishError: If paho rejects the message.
    """
    info = client.publish(topic, payload, qos=0, retain=retain)
    if info.rc != mqtt.MQTT_ERR_SUCCESS:
        raise PublishError(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")
    if wait:
        try:
            await asyncio.to_thread(info.wait_for_publish, PUBLISH_TIMEOUT_S)
        except (RuntimeError, ValueError) as exc:
            raise PublishError(f"Publish to {topic} failed: {exc}") from exc
        if not info.is_published():
            raise PublishError(f"Publish to {topic} timed out")


# ---------------------------------------------------------------------------
# Telemetry reporter
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Report:
    topic: str
    payload: str


class MqttReporter:
    """Queue-backed telemetry reporter publishing to ``stat/<topic>/<name>``.

    ``report_*`` methods never block and never raise. Call :meth:`run` as a
    task to publish discovery configs and drain the queue.

    Args:
        client: Connected paho client.
        topic: Base topic name, e.g. ``powerwall2mqtt``.
    """

    def __init__(self, client: mqtt.Client, topic: str) -> None:
        self._client = client
        self._topic = topic
        self._queue: asyncio.Queue[_Report] = asyncio.Queue(maxsize=REPORT_QUEUE_SIZE)
        self._last_published: dict[str, str] = {}

    def state_topic(self, name: str) -> str:
        return f"stat/{self._topic}/{name}"

    def discovery_messages(self) -> list[tuple[str, dict[str, Any]]]:
        """Home Assistant discovery ``(config_topic, config)`` pairs."""
        sensors = (
            ("budget", "W", "power"),
            ("evse_current", "mA", "current"),
            ("evse_temperature", "°C", "temperature"),
        )
        messages = [
            (
                f"homeassistant/sensor/{self._topic}/{name}/config",
                {
                    "device": DEVICE_INFO,
                    "name": name,
                    "state_topic": self.state_topic(name),
                    "unit_of_measurement": unit,
                    "device_class": device_class,
                    "state_class": "measurement",
                },
            )
            for name, unit, device_class in sensors
        ]
        messages.append(
            (
                f"homeassistant/binary_sensor/{self._topic}/ev_connected/config",
                {
                    "device": DEVICE_INFO,
                    "name": "ev_connected",
                    "state_topic": self.state_topic("ev_connected"),
                    "device_class": "connectivity",
                    "payload_on": "true",
                    "payload_off": "false",
                },
            )
        )
        return messages

    def _enqueue(self, name: str, payload: str) -> None:
        with contextlib.suppress(asyncio.QueueFull):
            self._queue.put_nowait(_Report(self.state_topic(name), payload))

    def report_budget(self, watts: int) -> None:
        self._enqueue("budget", str(watts))

    def report_ev_connected(self, connected: bool) -> None:
        self._enqueue("ev_connected", "true" if connected else "false")

    def report_evse_current(self, milliamps: int) -> None:
        self._enqueue("evse_current", str(milliamps))

    def report_evse_temperature(self, deci_celsius: int) -> None:
        self._enqueue("evse_temperature", f"{deci_celsius / 10:f}")

    async def publish_discovery(self) -> None:
        """Publish retained discovery configs; errors are logged only."""
        for config_topic, config in self.discovery_messages():
            try:
                await publish(self._client, config_topic, json.dumps(config), retain=True)
            except PublishError:
                logger.error("Error publishing Home Assistant discovery message", exc_info=True)

    async def publish_next(self) -> None:
        """Publish one queued report, skipping unchanged payloads."""
        report = await self._queue.get()
        try:
            if self._last_published.get(report.topic) == report.payload:
                return
            await publish(self._client, report.topic, report.payload)
            self._last_published[report.topic] = report.payload
        except PublishError:
            logger.error("Error publishing %s", report.topic, exc_info=True)
        finally:
            self._queue.task_done()

    async def run(self) -> None:
        """Publish discovery configs, then drain the queue forever."""
        await self.publish_discovery()
        while True:
            await self.publish_next()


# ---------------------------------------------------------------------------
# Budget dispatch
# ---------------------------------------------------------------------------


class BudgetPublisher:
    """Apply-budget callback publishing to MQTT.

    Args:
        client: Connected paho client.
        topic: Topic receiving the budget in whole watts.
        evse: Optional OpenEVSE client; when set, the charge mode is
            written before a budget whose mode differs from the last one.
    """

    def __init__(
        self,
        client: mqtt.Client,
        topic: str,
        *,
        evse: OpenEvseClient | None = None,
    ) -> None:
        self._client = client
        self._topic = topic
        self._evse = evse
        self._mode: ChargeMode | None = None

    async def __call__(self, watts: int, mode: ChargeMode) -> None:
        """Publish one budget.

        Raises:
            PublishError: If the MQTT publish fails.
            httpx.HTTPError: If switching the EVSE charge mode fails.
        """
        if self._evse is not None and mode != self._mode:
            await self._evse.set_charge_mode(mode)
            self._mode = mode
        await publish(self._client, self._topic, str(watts), wait=True)


class DryRunBudgetPublisher:
    """Apply-budget callback that only logs."""

    async def __call__(self, watts: int, mode: ChargeMode) -> None:
        logger.info("Dry run: would apply budget %dW (%s)", watts, mode)


# ---------------------------------------------------------------------------
# Command subscriber
# ---------------------------------------------------------------------------


class CommandSubscriber:
    """Routes operator commands from MQTT into the controller.

    paho invokes callbacks on its network thread; every controller call is
    scheduled on *loop* with :func:`asyncio.run_coroutine_threadsafe`.

    Args:
        client: paho client (subscriptions are renewed on every connect).
        controller: Target controller.
        loop: The asyncio loop the controller lives on.
        strategy_topic: Topic carrying strategy names.
        ev_battery_topic: Topic carrying the EV battery level, or empty.
    """

    def __init__(
        self,
        client: mqtt.Client,
        controller: Controller,
        loop: asyncio.AbstractEventLoop,
        *,
        strategy_topic: str,
        ev_battery_topic: str = "",
    ) -> None:
        self._client = client
        self._controller = controller
        self._loop = loop
        self._strategy_topic = strategy_topic
        self._ev_battery_topic = ev_battery_topic

    def topics(self) -> list[str]:
        return [t for t in (self._strategy_topic, self._ev_battery_topic) if t]

    def install(self) -> None:
        """Register callbacks; call before :func:`connect`."""
        self._client.on_connect = self._on_connect
        self._client.message_callback_add(self._strategy_topic, self._on_strategy)
        if self._ev_battery_topic:
            self._client.message_callback_add(self._ev_battery_topic, self._on_ev_battery)

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if reason_code.is_failure:
            logger.warning("MQTT connect refused: %s", reason_code)
            return
        for topic in self.topics():
            client.subscribe(topic)
            logger.info("Subscribed to %s", topic)

    def _on_strategy(self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage) -> None:
        payload = message.payload.decode("utf-8", errors="replace")
        try:
            strategy = Strategy.parse(payload)
        except ValueError:
            logger.warning("Ignoring unknown strategy %r on %s", payload, message.topic)
            return
        asyncio.run_coroutine_threadsafe(self._controller.set_strategy(strategy), self._loop)

    def _on_ev_battery(
        self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage
    ) -> None:
        payload = message.payload.decode("utf-8", errors="replace")
        try:
            level = float(payload)
        except ValueError:
            logger.warning("Ignoring non-numeric EV battery level %r", payload)
            return
        if not math.isfinite(level) or not 0.0 <= level <= 100.0:
            logger.warning("Ignoring out-of-range EV battery level %r", payload)
            return
        asyncio.run_coroutine_threadsafe(self._controller.set_ev_battery_pct(level), self._loop)

"""
Service main loop for the Powerwall-to-MQTT charging budget controller.

Runs several concurrent asyncio tasks:
1. **Gateway poll loop**: reads the Tesla Energy Gateway via the
   PowerwallPoller and feeds the readings into the Controller.
2. **EVSE poll loop** (optional): reads OpenEVSE status into the Controller.
3. **Reporter**: drains the MQTT telemetry queue.
4. **Decision loop**: ``Controller.run()``; wakes on every changed reading
   and publishes the clamped budget.

Poll loops are resilient: an exception in one iteration is logged and does
not crash the loop. The decision loop is not: a failed budget dispatch stops
every task and the process exits non-zero, since a charger left on a stale
budget is worse than a dead service. SIGTERM/SIGINT set a shared
asyncio.Event for a graceful stop.

Structured JSON logging is used for all events. A HealthWriter records the
last poll and the last dispatched budget.

CHANGELOG:
- 2026-10-12: Wire OpenEVSE charge mode into the budget publisher (STORY-009)
- 2026-10-11: Stop the service on a fatal dispatch error (STORY-010)
- 2026-10-10: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from powerwall2mqtt.src.controller import DispatchError, format_temperature
from powerwall2mqtt.src.health import HealthWriter
from powerwall2mqtt.src.normalizer import apply_evse_status, apply_powerwall_readings

if TYPE_CHECKING:
    from powerwall2mqtt.src.controller import ApplyBudget, Controller
    from powerwall2mqtt.src.models import ChargeMode
    from powerwall2mqtt.src.mqtt import MqttReporter
    from powerwall2mqtt.src.poller import EvsePoller, PowerwallPoller

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured JSON logging for the service.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _masked_secret(value: str | None) -> str:
    """Return a short non-reversible fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup, excluding secrets.

    The gateway password is logged only as a fingerprint.

    Args:
        settings: A ServiceSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Service starting with config: "
        "powerwall_host=%s, poll_interval_s=%s, "
        "mqtt_broker=%s:%s, mqtt_topic=%s, budget_topic=%s, "
        "strategy_topic=%s, ev_battery_topic=%s, openevse_host=%s, "
        "default_strategy=%s, peak_window=%s-%s, overnight_end_hour=%s, "
        "volts=%s, max_amps=%s, min_amps=%s, dry_run=%s, "
        "powerwall_password_masked=%s",
        settings.powerwall_host,  # type: ignore[union-attr]
        settings.poll_interval_s,  # type: ignore[union-attr]
        settings.mqtt_broker_host,  # type: ignore[union-attr]
        settings.mqtt_broker_port,  # type: ignore[union-attr]
        settings.mqtt_topic,  # type: ignore[union-attr]
        settings.budget_topic,  # type: ignore[union-attr]
        settings.strategy_topic,  # type: ignore[union-attr]
        settings.ev_battery_topic or "-",  # type: ignore[union-attr]
        settings.openevse_host or "-",  # type: ignore[union-attr]
        settings.default_strategy,  # type: ignore[union-attr]
        settings.peak_start_minute,  # type: ignore[union-attr]
        settings.peak_end_minute,  # type: ignore[union-attr]
        settings.overnight_end_hour,  # type: ignore[union-attr]
        settings.volts,  # type: ignore[union-attr]
        settings.max_amps,  # type: ignore[union-attr]
        settings.min_amps,  # type: ignore[union-attr]
        settings.dry_run,  # type: ignore[union-attr]
        _masked_secret(settings.powerwall_password),  # type: ignore[union-attr]
    )


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _poll_powerwall_once(
    *,
    poller: PowerwallPoller,
    controller: Controller,
    health: HealthWriter | None,
) -> None:
    """Execute a single gateway poll and feed the controller.

    Catches all exceptions so that the caller's loop is never broken.

    Args:
        poller: The gateway poller.
        controller: Controller receiving the readings.
        health: HealthWriter instance, or None to skip health writes.
    """
    try:
        readings = await poller.poll()
        if readings is not None:
            await apply_powerwall_readings(controller, readings)
            logger.debug("Gateway poll success")
        else:
            logger.warning("Gateway poller returned None, readings withheld")
    except Exception:
        logger.error("Gateway poll cycle error", exc_info=True)

    if health is not None:
        try:
            health.record_poll()
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)


async def _poll_evse_once(*, poller: EvsePoller, controller: Controller) -> None:
    """Execute a single EVSE poll and feed the controller.

    Catches all exceptions so that the caller's loop is never broken.
    """
    try:
        status = await poller.poll()
        if status is not None:
            await apply_evse_status(controller, status)
            logger.debug(
                "EVSE status: %dmA, %s, vehicle=%d",
                status.amp,
                format_temperature(status.temp),
                status.vehicle,
            )
        else:
            logger.warning("EVSE poller returned None, readings withheld")
    except Exception:
        logger.error("EVSE poll cycle error", exc_info=True)


def with_health(apply_budget: ApplyBudget, health: HealthWriter) -> ApplyBudget:
    """Wrap an apply-budget callback to record successful dispatches."""

    async def _apply(watts: int, mode: ChargeMode) -> None:
        await apply_budget(watts, mode)
        try:
            health.record_budget(watts)
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)

    return _apply


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _poll_loop(
    *,
    name: str,
    poll_once: Callable[[], Awaitable[None]],
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
) -> None:
    """Run *poll_once* every *poll_interval_s* until shutdown_event is set.

    Args:
        name: Loop name for log lines.
        poll_once: Single-iteration coroutine function; must not raise.
        poll_interval_s: Seconds between poll cycles.
        shutdown_event: Event to signal graceful shutdown.
    """
    logger.info("%s poll loop started (interval=%ss)", name, poll_interval_s)
    while not shutdown_event.is_set():
        await poll_once()
        # Use wait with timeout so we can check shutdown between sleeps
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=poll_interval_s,
            )
    logger.info("%s poll loop stopped", name)


# ---------------------------------------------------------------------------
# Concurrent runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_service(
    *,
    controller: Controller,
    powerwall_poller: PowerwallPoller,
    poll_interval_s: float,
    shutdown_event: asyncio.Event,
    evse_poller: EvsePoller | None = None,
    reporter: MqttReporter | None = None,
    health: HealthWriter | None = None,
) -> None:
    """Run pollers, reporter and decision loop until shutdown or fatal error.

    Args:
        controller: The charging budget controller.
        powerwall_poller: Gateway poller.
        poll_interval_s: Seconds between poll cycles.
        shutdown_event: Event to signal graceful shutdown.
        evse_poller: Optional OpenEVSE poller.
        reporter: Optional MQTT telemetry reporter.
        health: HealthWriter instance, or None to skip health writes.

    Raises:
        DispatchError: If the decision loop stopped on a failed dispatch.
    """
    logger.info("Starting pollers and decision loop")

    decision = asyncio.create_task(controller.run(), name="decision")
    background = [
        asyncio.create_task(
            _poll_loop(
                name="Gateway",
                poll_once=lambda: _poll_powerwall_once(
                    poller=powerwall_poller, controller=controller, health=health
                ),
                poll_interval_s=poll_interval_s,
                shutdown_event=shutdown_event,
            ),
            name="gateway-poll",
        )
    ]
    if evse_poller is not None:
        background.append(
            asyncio.create_task(
                _poll_loop(
                    name="EVSE",
                    poll_once=lambda: _poll_evse_once(poller=evse_poller, controller=controller),
                    poll_interval_s=poll_interval_s,
                    shutdown_event=shutdown_event,
                ),
                name="evse-poll",
            )
        )
    if reporter is not None:
        background.append(asyncio.create_task(reporter.run(), name="reporter"))

    shutdown = asyncio.create_task(shutdown_event.wait(), name="shutdown")
    try:
        await asyncio.wait({decision, shutdown}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        shutdown_event.set()
        for task in (decision, shutdown, *background):
            if not task.done():
                task.cancel()
        await asyncio.gather(decision, shutdown, *background, return_exceptions=True)

    if decision.done() and not decision.cancelled():
        exc = decision.exception()
        if exc is not None:
            raise exc
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run the service.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from powerwall2mqtt.src import mqtt
    from powerwall2mqtt.src.config import ServiceSettings
    from powerwall2mqtt.src.controller import Controller
    from powerwall2mqtt.src.openevse import OpenEvseClient
    from powerwall2mqtt.src.poller import EvsePoller, PowerwallPoller
    from powerwall2mqtt.src.powerwall import PowerwallClient

    settings = ServiceSettings()
    if settings.debug:
        configure_logging(logging.DEBUG)
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    evse = OpenEvseClient(settings.openevse_host) if settings.openevse_host else None

    client = mqtt.create_client()
    reporter = mqtt.MqttReporter(client, settings.mqtt_topic)
    health = HealthWriter(settings.health_path)

    if settings.dry_run:
        apply_budget: ApplyBudget = mqtt.DryRunBudgetPublisher()
    else:
        apply_budget = mqtt.BudgetPublisher(client, settings.budget_topic, evse=evse)

    controller = Controller(
        with_health(apply_budget, health),
        limits=settings.to_limits(),
        reporter=reporter,
    )

    mqtt.CommandSubscriber(
        client,
        controller,
        loop,
        strategy_topic=settings.strategy_topic,
        ev_battery_topic=settings.ev_battery_topic,
    ).install()
    await mqtt.connect(client, settings.mqtt_broker_host, settings.mqtt_broker_port)

    if settings.default_strategy is not None:
        await controller.set_strategy(settings.default_strategy)

    powerwall = PowerwallClient(
        host=settings.powerwall_host,
        password=settings.powerwall_password,
        email=settings.powerwall_email,
        debug=settings.debug,
    )

    try:
        await run_service(
            controller=controller,
            powerwall_poller=PowerwallPoller(powerwall),
            evse_poller=EvsePoller(evse) if evse is not None else None,
            poll_interval_s=settings.poll_interval_s,
            shutdown_event=shutdown_event,
            reporter=reporter,
            health=health,
        )
    finally:
        await powerwall.close()
        client.loop_stop()
        client.disconnect()


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the service."""
    try:
        asyncio.run(async_main())
    except DispatchError:
        logger.critical("Budget dispatch failed, exiting", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

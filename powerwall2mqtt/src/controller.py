"""
Charging budget controller: sensor state, decision rules, decision loop.

Pollers push readings through the async ``set_*`` methods. Each setter
stores its value under a single ``asyncio.Condition`` and, when the value
actually changed, marks a recompute as pending and notifies the decision
loop. The loop takes an immutable :class:`SensorSnapshot`, evaluates the
ordered rule list in :func:`compute_budget`, clamps the result to the
charger's hardware limits, and awaits the injected ``apply_budget``
callback.

Every sensor field is optional: ``None`` means the reading has never
arrived, and rules ignore fields that are absent.  Pending recomputes
coalesce, so a burst of readings during one cycle produces exactly one
further cycle that sees the latest values.

A failing ``apply_budget`` is fatal: :meth:`Controller.run` raises
:class:`DispatchError` and stops.

CHANGELOG:
- 2026-10-18: Add remaining getters; derate floor at min_amps (STORY-011)
- 2026-10-12: Add off-peak window strategy and charge mode output (STORY-009)
- 2026-10-08: Replace observed bitmask with optional snapshot fields (STORY-004)
- 2026-10-06: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, NamedTuple

from powerwall2mqtt.src.models import (
    DEFAULT_TEMP_CLAMPS,
    ChargeMode,
    OperationMode,
    Strategy,
    TempClamp,
)
from powerwall2mqtt.src.reporting import NoopReporter

if TYPE_CHECKING:
    from powerwall2mqtt.src.reporting import Reporter

logger = logging.getLogger(__name__)

ApplyBudget = Callable[[int, ChargeMode], Awaitable[None]]
"""Callback receiving the clamped budget in watts and the charge mode."""


class DispatchError(RuntimeError):
    """The apply-budget callback failed; the decision loop cannot continue."""


def format_temperature(deci_celsius: int) -> str:
    """Render tenths of a degree as e.g. ``"47.5 C"``."""
    return f"{deci_celsius / 10:.1f} C"


# ---------------------------------------------------------------------------
# Data definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SensorSnapshot:
    """Latest value of every sensor; ``None`` until first observed.

    Attributes:
        exported_solar_w: Power exported to the grid in watts.
        exported_battery_w: Powerwall discharge in watts (negative = charging).
        solar_w: Solar production in watts.
        load_w: Site load in watts.
        powerwall_battery_pct: Powerwall charge level (0-100).
        ev_battery_pct: Vehicle charge level (0-100).
        evse_temp_decic: EVSE temperature in tenths of a degree Celsius.
        evse_current_ma: EVSE charging current in milliamps.
        ev_connected: Whether a vehicle is plugged in.
        load_reduction: Grid-services / demand-response event active.
        operation_mode: Powerwall operation mode.
        strategy: Operator-selected charging strategy.
    """

    exported_solar_w: float | None = None
    exported_battery_w: float | None = None
    solar_w: float | None = None
    load_w: float | None = None
    powerwall_battery_pct: float | None = None
    ev_battery_pct: float | None = None
    evse_temp_decic: int | None = None
    evse_current_ma: int | None = None
    ev_connected: bool | None = None
    load_reduction: bool | None = None
    operation_mode: OperationMode | None = None
    strategy: Strategy | None = None


@dataclass(frozen=True, slots=True)
class ChargerLimits:
    """Electrical limits and policy knobs consumed by the decision rules.

    Attributes:
        volts: Fixed supply voltage used for amps -> watts.
        max_amps: Hardware maximum charging current.
        min_amps: Lowest current the charger can deliver.
        temp_clamps: Derate table, hottest threshold first.
        battery_export_threshold_w: Battery export above which charging stops.
        ev_urgent_below_pct: EV level below which charging runs at the ceiling.
        overnight_end_hour: Overnight strategy charges freely before this hour.
        peak_start_minute: Start of the peak-rate window (minute of day).
        peak_end_minute: End of the peak-rate window, exclusive. A window
            with start > end wraps midnight.
    """

    volts: int = 240
    max_amps: int = 40
    min_amps: int = 8
    temp_clamps: tuple[TempClamp, ...] = DEFAULT_TEMP_CLAMPS
    battery_export_threshold_w: float = 200.0
    ev_urgent_below_pct: float = 60.0
    overnight_end_hour: int = 6
    peak_start_minute: int = 16 * 60
    peak_end_minute: int = 21 * 60

    @property
    def max_power_w(self) -> int:
        return self.volts * self.max_amps


class Decision(NamedTuple):
    """Raw (unclamped) rule result."""

    watts: float
    mode: ChargeMode
    rule: str


# ---------------------------------------------------------------------------
# Decision rules
# ---------------------------------------------------------------------------


def max_power_for_temp(temp_decic: int, limits: ChargerLimits) -> float:
    """Return the temperature-derated power ceiling in watts.

    Walks the clamp table hottest first; the first threshold the
    temperature strictly exceeds decides. A row never derates below
    ``min_amps``, the lowest current the charger can deliver. Below every
    threshold the ceiling is unbounded (``math.inf``).
    """
    temp_c = temp_decic / 10
    for clamp in limits.temp_clamps:
        if temp_c > clamp.temp_c:
            return float(limits.volts * max(clamp.max_amps, limits.min_amps))
    return math.inf


def in_peak_window(now: datetime, limits: ChargerLimits) -> bool:
    """Whether *now* falls inside ``[peak_start_minute, peak_end_minute)``."""
    minute = now.hour * 60 + now.minute
    start, end = limits.peak_start_minute, limits.peak_end_minute
    if start <= end:
        return start <= minute < end
    return minute >= start or minute < end


class _RuleContext(NamedTuple):
    snapshot: SensorSnapshot
    ceiling: float
    now: datetime
    limits: ChargerLimits


Rule = Callable[[_RuleContext], Decision | None]


def _full_speed(ctx: _RuleContext) -> Decision | None:
    if ctx.snapshot.strategy is Strategy.FULL_SPEED:
        return Decision(ctx.ceiling, ChargeMode.FAST, "full_speed")
    return None


def _time_window(ctx: _RuleContext) -> Decision | None:
    strategy = ctx.snapshot.strategy
    if strategy is Strategy.OVERNIGHT and ctx.now.hour < ctx.limits.overnight_end_hour:
        return Decision(ctx.ceiling, ChargeMode.FAST, "overnight")
    if strategy is Strategy.OFF_PEAK:
        if in_peak_window(ctx.now, ctx.limits):
            return Decision(0.0, ChargeMode.ECO, "peak_window")
        return Decision(ctx.ceiling, ChargeMode.FAST, "off_peak")
    return None


def _load_reduction(ctx: _RuleContext) -> Decision | None:
    # Usually bad weather (heatwave or storm); the operator can still force
    # full speed beforehand.
    if ctx.snapshot.load_reduction:
        return Decision(0.0, ChargeMode.ECO, "load_reduction")
    return None


def _battery_export(ctx: _RuleContext) -> Decision | None:
    # Happens under time-based control: solar goes to the grid while the
    # battery feeds the house.
    exported = ctx.snapshot.exported_battery_w
    if exported is not None and exported > ctx.limits.battery_export_threshold_w:
        return Decision(0.0, ChargeMode.ECO, "battery_export")
    return None


def _ev_battery_low(ctx: _RuleContext) -> Decision | None:
    level = ctx.snapshot.ev_battery_pct
    if level is not None and level < ctx.limits.ev_urgent_below_pct:
        return Decision(ctx.ceiling, ChargeMode.FAST, "ev_battery_low")
    return None


def _solar_export(ctx: _RuleContext) -> Decision | None:
    exported = ctx.snapshot.exported_solar_w
    if exported is None:
        return Decision(ctx.ceiling, ChargeMode.ECO, "no_solar_reading")
    return Decision(min(ctx.ceiling, exported), ChargeMode.ECO, "solar_export")


RULES: tuple[Rule, ...] = (
    _full_speed,
    _time_window,
    _load_reduction,
    _battery_export,
    _ev_battery_low,
    _solar_export,
)
"""Evaluated in order after the data gate and temperature ceiling; first match wins."""


def compute_budget(
    snapshot: SensorSnapshot,
    now: datetime,
    limits: ChargerLimits,
    rules: Sequence[Rule] = RULES,
) -> Decision | None:
    """Compute the raw charging budget for *snapshot* at wall-clock *now*.

    This is a **pure function**: same snapshot, time and limits give the
    same result.

    Returns:
        The first matching :class:`Decision`, or ``None`` while the
        strategy has never been observed (not enough data to act).
    """
    if snapshot.strategy is None:
        return None

    ceiling = math.inf
    if snapshot.evse_temp_decic is not None:
        ceiling = max_power_for_temp(snapshot.evse_temp_decic, limits)

    ctx = _RuleContext(snapshot=snapshot, ceiling=ceiling, now=now, limits=limits)
    for rule in rules:
        decision = rule(ctx)
        if decision is not None:
            return decision
    return Decision(ceiling, ChargeMode.ECO, "ceiling")


def clamp_budget(watts: float, limits: ChargerLimits) -> int:
    """Clamp a raw budget to ``[0, volts * max_amps]`` whole watts."""
    if watts <= 0:
        return 0
    return int(min(watts, limits.max_power_w))


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class Controller:
    """Owns the sensor snapshot and runs the event-driven decision loop.

    Args:
        apply_budget: Async callback receiving the clamped watts and charge
            mode. Raising from it terminates :meth:`run`.
        limits: Electrical limits and policy thresholds.
        reporter: Telemetry sink for selected raw readings and budgets.
        clock: Returns the local wall-clock time used by time-window rules.
    """

    def __init__(
        self,
        apply_budget: ApplyBudget,
        *,
        limits: ChargerLimits | None = None,
        reporter: Reporter | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._apply_budget = apply_budget
        self._limits = limits or ChargerLimits()
        self._reporter = reporter or NoopReporter()
        self._clock = clock
        self._cond = asyncio.Condition()
        self._snapshot = SensorSnapshot()
        self._pending = False
        self._cycle_lock = asyncio.Lock()

    @property
    def limits(self) -> ChargerLimits:
        return self._limits

    # ------------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------------

    async def _update(self, field: str, value: object) -> bool:
        """Store *value* for *field*; wake the loop if it changed.

        Returns:
            ``True`` if the stored value changed.
        """
        async with self._cond:
            if getattr(self._snapshot, field) == value:
                return False
            self._snapshot = dataclasses.replace(self._snapshot, **{field: value})
            self._pending = True
            self._cond.notify()
            return True

    async def set_exported_solar_w(self, watts: float) -> None:
        await self._update("exported_solar_w", watts)

    async def set_exported_battery_w(self, watts: float) -> None:
        await self._update("exported_battery_w", watts)

    async def set_solar_w(self, watts: float) -> None:
        await self._update("solar_w", watts)

    async def set_load_w(self, watts: float) -> None:
        await self._update("load_w", watts)

    async def set_powerwall_battery_pct(self, pct: float) -> None:
        await self._update("powerwall_battery_pct", pct)

    async def set_ev_battery_pct(self, pct: float) -> None:
        await self._update("ev_battery_pct", pct)

    async def set_operation_mode(self, mode: OperationMode) -> None:
        await self._update("operation_mode", mode)

    async def set_load_reduction(self, enabled: bool) -> None:
        await self._update("load_reduction", enabled)

    async def set_strategy(self, strategy: Strategy) -> None:
        if await self._update("strategy", strategy):
            logger.info("Controller strategy set to %s", strategy)

    async def set_evse_temperature(self, deci_celsius: int) -> None:
        await self._update("evse_temp_decic", deci_celsius)
        self._reporter.report_evse_temperature(deci_celsius)

    async def set_evse_current(self, milliamps: int) -> None:
        await self._update("evse_current_ma", milliamps)
        self._reporter.report_evse_current(milliamps)

    async def set_ev_connected(self, connected: bool) -> None:
        await self._update("ev_connected", connected)
        self._reporter.report_ev_connected(connected)

    # ------------------------------------------------------------------
    # Getters
    # ------------------------------------------------------------------

    async def snapshot(self) -> SensorSnapshot:
        """Return the current (immutable) sensor snapshot."""
        async with self._cond:
            return self._snapshot

    async def _get(self, field: str) -> object:
        async with self._cond:
            return getattr(self._snapshot, field)

    async def get_exported_solar_w(self) -> float | None:
        return await self._get("exported_solar_w")  # type: ignore[return-value]

    async def get_exported_battery_w(self) -> float | None:
        return await self._get("exported_battery_w")  # type: ignore[return-value]

    async def get_solar_w(self) -> float | None:
        return await self._get("solar_w")  # type: ignore[return-value]

    async def get_load_w(self) -> float | None:
        return await self._get("load_w")  # type: ignore[return-value]

    async def get_powerwall_battery_pct(self) -> float | None:
        return await self._get("powerwall_battery_pct")  # type: ignore[return-value]

    async def get_ev_battery_pct(self) -> float | None:
        return await self._get("ev_battery_pct")  # type: ignore[return-value]

    async def get_load_reduction(self) -> bool | None:
        return await self._get("load_reduction")  # type: ignore[return-value]

    async def get_operation_mode(self) -> OperationMode | None:
        return await self._get("operation_mode")  # type: ignore[return-value]

    async def get_evse_temperature(self) -> int | None:
        return await self._get("evse_temp_decic")  # type: ignore[return-value]

    async def get_evse_current(self) -> int | None:
        return await self._get("evse_current_ma")  # type: ignore[return-value]

    async def get_ev_connected(self) -> bool | None:
        return await self._get("ev_connected")  # type: ignore[return-value]

    async def get_strategy(self) -> Strategy | None:
        return await self._get("strategy")  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Decision loop
    # ------------------------------------------------------------------

    async def run_once(self) -> int | None:
        """Wait for a pending change, then compute and dispatch one budget.

        The snapshot is taken under the lock; the dispatch runs outside it
        so setters never wait on the callback's I/O.

        Returns:
            The dispatched watts, or ``None`` if there was not enough data.

        Raises:
            DispatchError: If ``apply_budget`` raised.
        """
        async with self._cycle_lock:
            async with self._cond:
                await self._cond.wait_for(lambda: self._pending)
                self._pending = False
                snapshot = self._snapshot

            decision = compute_budget(snapshot, self._clock(), self._limits)
            if decision is None:
                logger.debug("Not enough data to compute a budget, skipping")
                return None

            watts = clamp_budget(decision.watts, self._limits)
            logger.info(
                "Budget %dW (%s, rule=%s, raw=%s)",
                watts,
                decision.mode,
                decision.rule,
                decision.watts,
            )
            try:
                await self._apply_budget(watts, decision.mode)
            except Exception as exc:
                raise DispatchError(f"Failed to apply budget {watts}W: {exc}") from exc
            self._reporter.report_budget(watts)
            return watts

    async def run(self) -> None:
        """Run decision cycles until a dispatch fails.

        Raises:
            DispatchError: Propagated from :meth:`run_once`.
        """
        logger.info("Decision loop started (max=%dW)", self._limits.max_power_w)
        while True:
            await self.run_once()

"""
Service configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
no hardcoded IPs, topics, or credentials.

The controller never reads configuration itself: :meth:`ServiceSettings.to_limits`
builds the :class:`~powerwall2mqtt.src.controller.ChargerLimits` it is
constructed with.

CHANGELOG:
- 2026-10-18: Reject DEFAULT_STRATEGY=unknown (STORY-011)
- 2026-10-12: Add peak window and temperature clamp table (STORY-009)
- 2026-10-06: Initial creation (STORY-001)

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings

from powerwall2mqtt.src.controller import ChargerLimits
from powerwall2mqtt.src.models import DEFAULT_TEMP_CLAMPS, Strategy, TempClamp

_MINUTES_PER_DAY = 24 * 60


class ServiceSettings(BaseSettings):
    """Configuration for the Powerwall-to-MQTT charging budget service.

    All values are loaded from environment variables. Required variables
    must be set; optional variables have sensible defaults.

    Attributes:
        powerwall_host: Tesla Energy Gateway IP address / hostname.
        powerwall_password: Gateway "customer" password.
        powerwall_email: Email sent with the gateway login request.
        poll_interval_s: Seconds between gateway and EVSE poll cycles.
        mqtt_broker_host: MQTT broker hostname.
        mqtt_broker_port: MQTT broker port (default 1883).
        mqtt_topic: Base name for ``stat/<topic>/...`` telemetry and
            Home Assistant discovery.
        budget_topic: Topic the charging budget (W) is published to.
        strategy_topic: Topic the operator strategy is read from. Defaults
            to ``cmnd/<mqtt_topic>/strategy``.
        ev_battery_topic: Topic carrying the vehicle's battery level.
            Empty disables it.
        openevse_host: OpenEVSE address. Empty disables EVSE polling and
            charge-mode control.
        default_strategy: Strategy applied at startup, before any MQTT
            command arrives. Unset means wait for the operator.
        peak_start_minute: Peak-rate window start, minute of day.
        peak_end_minute: Peak-rate window end (exclusive), minute of day.
        overnight_end_hour: Overnight strategy charges freely before this hour.
        volts: Supply voltage used to convert amps to watts.
        max_amps: Charger hardware maximum current.
        min_amps: Charger minimum current.
        temperature_clamps: EVSE derate table as JSON, e.g.
            ``[{"temp_c": 50, "max_amps": 8}]``.
        battery_export_threshold_w: Battery export that pauses charging.
        ev_urgent_below_pct: EV level below which charging is not
            limited to solar export.
        dry_run: Log budgets instead of publishing them.
        debug: Log raw gateway responses.
        health_path: Health JSON file path.
    """

    powerwall_host: str
    powerwall_password: str
    powerwall_email: str = "hello@example.com"
    poll_interval_s: int = 10
    mqtt_broker_host: str
    mqtt_broker_port: int = 1883
    mqtt_topic: str = "powerwall2mqtt"
    budget_topic: str = "powerwall/budget"
    strategy_topic: str = ""
    ev_battery_topic: str = ""
    openevse_host: str = ""
    default_strategy: Strategy | None = None
    peak_start_minute: int = 16 * 60
    peak_end_minute: int = 21 * 60
    overnight_end_hour: int = 6
    volts: int = 240
    max_amps: int = 40
    min_amps: int = 8
    temperature_clamps: tuple[TempClamp, ...] = DEFAULT_TEMP_CLAMPS
    battery_export_threshold_w: float = 200.0
    ev_urgent_below_pct: float = 60.0
    dry_run: bool = False
    debug: bool = False
    health_path: str = "/data/health.json"

    @model_validator(mode="after")
    def _default_strategy_topic(self) -> "ServiceSettings":
        """Default strategy_topic to cmnd/<mqtt_topic>/strategy when not set."""
        if not self.strategy_topic:
            self.strategy_topic = f"cmnd/{self.mqtt_topic}/strategy"
        return self

    @model_validator(mode="after")
    def _amps_must_be_ordered(self) -> "ServiceSettings":
        """Validate min_amps <= max_amps and every clamp within max_amps."""
        if self.min_amps > self.max_amps:
            raise ValueError("MIN_AMPS must be <= MAX_AMPS")
        for clamp in self.temperature_clamps:
            if clamp.max_amps > self.max_amps:
                raise ValueError(
                    f"TEMPERATURE_CLAMPS entry {clamp.temp_c}C allows "
                    f"{clamp.max_amps}A, above MAX_AMPS={self.max_amps}"
                )
        return self

    @field_validator("default_strategy", mode="before")
    @classmethod
    def default_strategy_accepts_aliases(cls, v: object) -> object:
        """Accept "Full_Speed" style spellings; empty string means unset.

        "unknown" is not a selectable strategy and is rejected.
        """
        if isinstance(v, str):
            if not v.strip():
                return None
            return Strategy.parse(v)
        return v

    @field_validator("temperature_clamps")
    @classmethod
    def clamps_must_derate_monotonically(
        cls, v: tuple[TempClamp, ...]
    ) -> tuple[TempClamp, ...]:
        """Sort hottest first and require hotter rows to allow no more current."""
        ordered = tuple(sorted(v, key=lambda c: c.temp_c, reverse=True))
        for hotter, cooler in zip(ordered, ordered[1:]):
            if hotter.max_amps > cooler.max_amps:
                raise ValueError(
                    "TEMPERATURE_CLAMPS must not allow more current at "
                    f"{hotter.temp_c}C than at {cooler.temp_c}C"
                )
        return ordered

    @field_validator("peak_start_minute", "peak_end_minute")
    @classmethod
    def minute_of_day_must_be_valid(cls, v: int) -> int:
        """Validate a minute-of-day value is in [0, 1440)."""
        if v < 0 or v >= _MINUTES_PER_DAY:
            raise ValueError("PEAK_*_MINUTE must be >= 0 and < 1440")
        return v

    @field_validator("overnight_end_hour")
    @classmethod
    def overnight_end_hour_must_be_valid(cls, v: int) -> int:
        """Validate the overnight end hour is in [0, 23]."""
        if v < 0 or v > 23:
            raise ValueError("OVERNIGHT_END_HOUR must be between 0 and 23")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_positive(cls, v: int) -> int:
        """Validate poll interval is at least one second."""
        if v < 1:
            raise ValueError("POLL_INTERVAL_S must be >= 1")
        return v

    @field_validator("mqtt_broker_port")
    @classmethod
    def mqtt_port_must_be_valid(cls, v: int) -> int:
        """Validate MQTT broker port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("MQTT_BROKER_PORT must be between 1 and 65535")
        return v

    @field_validator("volts", "max_amps", "min_amps")
    @classmethod
    def electrical_limits_must_be_positive(cls, v: int) -> int:
        """Validate volts and amp limits are positive."""
        if v <= 0:
            raise ValueError("VOLTS, MAX_AMPS and MIN_AMPS must be > 0")
        return v

    def to_limits(self) -> ChargerLimits:
        """Build the controller's limits from this configuration."""
        return ChargerLimits(
            volts=self.volts,
            max_amps=self.max_amps,
            min_amps=self.min_amps,
            temp_clamps=self.temperature_clamps,
            battery_export_threshold_w=self.battery_export_threshold_w,
            ev_urgent_below_pct=self.ev_urgent_below_pct,
            overnight_end_hour=self.overnight_end_hour,
            peak_start_minute=self.peak_start_minute,
            peak_end_minute=self.peak_end_minute,
        )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

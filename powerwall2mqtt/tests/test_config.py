"""
Unit tests for service configuration (ServiceSettings).

Tests verify:
- Config loads from environment variables with correct defaults.
- Config validation rejects missing required variables.
- STRATEGY_TOPIC defaults to cmnd/<MQTT_TOPIC>/strategy.
- Temperature clamp table is parsed from JSON, sorted, and validated.
- Numeric constraints are enforced (ports, minutes of day, amps).
- to_limits() carries every policy value into ChargerLimits.

CHANGELOG:
- 2026-10-18: Reject "unknown" default strategy (STORY-011)
- 2026-10-12: Cover peak window and clamp table (STORY-009)
- 2026-10-06: Initial creation (STORY-001)

TODO:
- None
"""

import pytest
from pydantic import ValidationError

from powerwall2mqtt.src.config import ServiceSettings
from powerwall2mqtt.src.models import DEFAULT_TEMP_CLAMPS, Strategy, TempClamp


class TestServiceSettingsLoadsFromEnv:
    """Config loads all values from environment variables."""

    def test_loads_all_env_vars(self, env_vars_full: dict[str, str]) -> None:
        """All env vars are read and assigned correctly."""
        settings = ServiceSettings()

        assert settings.powerwall_host == "10.0.0.5"
        assert settings.powerwall_password == "gateway-secret"
        assert settings.powerwall_email == "owner@example.com"
        assert settings.poll_interval_s == 15
        assert settings.mqtt_broker_host == "broker.example.com"
        assert settings.mqtt_broker_port == 8883
        assert settings.mqtt_topic == "garage"
        assert settings.budget_topic == "openevse/budget"
        assert settings.strategy_topic == "cmnd/garage/mode"
        assert settings.ev_battery_topic == "teslamate/cars/1/battery_level"
        assert settings.openevse_host == "openevse.local"
        assert settings.default_strategy is Strategy.AUTO
        assert settings.peak_start_minute == 900
        assert settings.peak_end_minute == 1200
        assert settings.overnight_end_hour == 7
        assert settings.volts == 230
        assert settings.max_amps == 32
        assert settings.min_amps == 6
        assert settings.temperature_clamps == (TempClamp(temp_c=55, max_amps=6),)
        assert settings.battery_export_threshold_w == 300.0
        assert settings.ev_urgent_below_pct == 40.0
        assert settings.dry_run is True
        assert settings.debug is False
        assert settings.health_path == "/tmp/health.json"

    def test_defaults_applied_when_optional_vars_missing(
        self, env_vars_required_only: dict[str, str]
    ) -> None:
        """Optional variables use default values when not set."""
        settings = ServiceSettings()

        assert settings.powerwall_host == env_vars_required_only["POWERWALL_HOST"]
        assert settings.poll_interval_s == 10
        assert settings.mqtt_broker_port == 1883
        assert settings.mqtt_topic == "powerwall2mqtt"
        assert settings.budget_topic == "powerwall/budget"
        assert settings.ev_battery_topic == ""
        assert settings.openevse_host == ""
        assert settings.default_strategy is None
        assert settings.peak_start_minute == 960
        assert settings.peak_end_minute == 1260
        assert settings.overnight_end_hour == 6
        assert settings.volts == 240
        assert settings.max_amps == 40
        assert settings.min_amps == 8
        assert settings.temperature_clamps == DEFAULT_TEMP_CLAMPS
        assert settings.dry_run is False
        assert settings.health_path == "/data/health.json"


class TestServiceSettingsRequiredVars:
    """Config validation rejects missing required variables."""

    def test_missing_all_required_raises(self) -> None:
        """All required vars missing causes validation error naming each."""
        with pytest.raises(ValidationError) as exc_info:
            ServiceSettings()
        errors = str(exc_info.value).lower()
        assert "powerwall_host" in errors
        assert "powerwall_password" in errors
        assert "mqtt_broker_host" in errors

    def test_missing_broker_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """MQTT_BROKER_HOST is required."""
        monkeypatch.setenv("POWERWALL_HOST", "192.168.1.50")
        monkeypatch.setenv("POWERWALL_PASSWORD", "pw")

        with pytest.raises(ValidationError) as exc_info:
            ServiceSettings()
        assert "mqtt_broker_host" in str(exc_info.value).lower()


class TestStrategyConfig:
    """Strategy topic and default strategy handling."""

    def test_strategy_topic_defaults_from_mqtt_topic(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """When STRATEGY_TOPIC is not set, it derives from MQTT_TOPIC."""
        monkeypatch.setenv("MQTT_TOPIC", "carport")

        settings = ServiceSettings()
        assert settings.strategy_topic == "cmnd/carport/strategy"

    def test_default_strategy_accepts_alias_spelling(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """DEFAULT_STRATEGY=Full_Speed parses as full-speed."""
        monkeypatch.setenv("DEFAULT_STRATEGY", "Full_Speed")

        settings = ServiceSettings()
        assert settings.default_strategy is Strategy.FULL_SPEED

    def test_empty_default_strategy_is_unset(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An empty DEFAULT_STRATEGY means wait for the operator."""
        monkeypatch.setenv("DEFAULT_STRATEGY", "")

        settings = ServiceSettings()
        assert settings.default_strategy is None

    def test_unknown_default_strategy_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """An unknown strategy name is a startup error."""
        monkeypatch.setenv("DEFAULT_STRATEGY", "turbo")

        with pytest.raises(ValidationError):
            ServiceSettings()

    def test_unknown_as_default_strategy_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """DEFAULT_STRATEGY=unknown would start dispatching without a chosen strategy."""
        monkeypatch.setenv("DEFAULT_STRATEGY", "Unknown")

        with pytest.raises(ValidationError) as exc_info:
            ServiceSettings()
        assert "default_strategy" in str(exc_info.value).lower()


class TestTemperatureClamps:
    """TEMPERATURE_CLAMPS parsing and monotonicity validation."""

    def test_clamps_sorted_hottest_first(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Rows given coolest first are reordered hottest first."""
        monkeypatch.setenv(
            "TEMPERATURE_CLAMPS",
            '[{"temp_c": 45, "max_amps": 24}, {"temp_c": 55, "max_amps": 8}]',
        )

        settings = ServiceSettings()
        assert [c.temp_c for c in settings.temperature_clamps] == [55, 45]

    def test_non_monotone_clamps_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A hotter row allowing more current than a cooler row is rejected."""
        monkeypatch.setenv(
            "TEMPERATURE_CLAMPS",
            '[{"temp_c": 55, "max_amps": 24}, {"temp_c": 45, "max_amps": 8}]',
        )

        with pytest.raises(ValidationError) as exc_info:
            ServiceSettings()
        assert "temperature_clamps" in str(exc_info.value).lower()

    def test_clamp_above_max_amps_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A clamp row above MAX_AMPS is rejected."""
        monkeypatch.setenv("MAX_AMPS", "16")
        monkeypatch.setenv("TEMPERATURE_CLAMPS", '[{"temp_c": 50, "max_amps": 24}]')

        with pytest.raises(ValidationError) as exc_info:
            ServiceSettings()
        assert "max_amps" in str(exc_info.value).lower()

    def test_single_cutoff_table_accepted(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A one-row table expresses a hard cutoff to minimum current."""
        monkeypatch.setenv("TEMPERATURE_CLAMPS", '[{"temp_c": 47.5, "max_amps": 8}]')

        settings = ServiceSettings()
        assert settings.temperature_clamps == (TempClamp(temp_c=47.5, max_amps=8),)


class TestNumericConstraints:
    """Numeric configuration values must be within valid ranges."""

    @pytest.mark.parametrize(
        ("var", "value"),
        [
            ("PEAK_START_MINUTE", "-1"),
            ("PEAK_END_MINUTE", "1440"),
            ("OVERNIGHT_END_HOUR", "24"),
            ("MQTT_BROKER_PORT", "0"),
            ("MQTT_BROKER_PORT", "65536"),
            ("POLL_INTERVAL_S", "0"),
            ("MAX_AMPS", "0"),
            ("VOLTS", "-240"),
        ],
    )
    def test_out_of_range_rejected(
        self,
        env_vars_required_only: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
        var: str,
        value: str,
    ) -> None:
        """Out-of-range values fail validation naming the field."""
        monkeypatch.setenv(var, value)

        with pytest.raises(ValidationError) as exc_info:
            ServiceSettings()
        assert var.lower() in str(exc_info.value).lower()

    def test_min_amps_above_max_amps_rejected(
        self, env_vars_required_only: dict[str, str], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """MIN_AMPS must not exceed MAX_AMPS."""
        monkeypatch.setenv("MIN_AMPS", "32")
        monkeypatch.setenv("MAX_AMPS", "16")
        monkeypatch.setenv("TEMPERATURE_CLAMPS", "[]")

        with pytest.raises(ValidationError) as exc_info:
            ServiceSettings()
        assert "min_amps" in str(exc_info.value).lower()


class TestToLimits:
    """to_limits() builds the controller's ChargerLimits."""

    def test_to_limits_copies_policy(self, env_vars_full: dict[str, str]) -> None:
        """Every policy field reaches ChargerLimits."""
        limits = ServiceSettings().to_limits()

        assert limits.volts == 230
        assert limits.max_amps == 32
        assert limits.min_amps == 6
        assert limits.max_power_w == 230 * 32
        assert limits.temp_clamps == (TempClamp(temp_c=55, max_amps=6),)
        assert limits.battery_export_threshold_w == 300.0
        assert limits.ev_urgent_below_pct == 40.0
        assert limits.overnight_end_hour == 7
        assert limits.peak_start_minute == 900
        assert limits.peak_end_minute == 1200

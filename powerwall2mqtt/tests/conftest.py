"""
Shared test fixtures for the budget service tests.

Provides environment variable fixtures for ServiceSettings configuration
tests. All service env vars are cleaned before each test to ensure isolation.

CHANGELOG:
- 2026-10-06: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import pytest

# All ServiceSettings environment variable names, used for cleanup.
_ALL_SERVICE_ENV_VARS = (
    "POWERWALL_HOST",
    "POWERWALL_PASSWORD",
    "POWERWALL_EMAIL",
    "POLL_INTERVAL_S",
    "MQTT_BROKER_HOST",
    "MQTT_BROKER_PORT",
    "MQTT_TOPIC",
    "BUDGET_TOPIC",
    "STRATEGY_TOPIC",
    "EV_BATTERY_TOPIC",
    "OPENEVSE_HOST",
    "DEFAULT_STRATEGY",
    "PEAK_START_MINUTE",
    "PEAK_END_MINUTE",
    "OVERNIGHT_END_HOUR",
    "VOLTS",
    "MAX_AMPS",
    "MIN_AMPS",
    "TEMPERATURE_CLAMPS",
    "BATTERY_EXPORT_THRESHOLD_W",
    "EV_URGENT_BELOW_PCT",
    "DRY_RUN",
    "DEBUG",
    "HEALTH_PATH",
)


@pytest.fixture(autouse=True)
def _clean_service_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all service env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_SERVICE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones).

    Optional variables should fall back to their defaults.
    """
    env = {
        "POWERWALL_HOST": "192.168.1.50",
        "POWERWALL_PASSWORD": "gateway-secret",
        "MQTT_BROKER_HOST": "mqtt.local",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for ServiceSettings.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "POWERWALL_HOST": "10.0.0.5",
        "POWERWALL_PASSWORD": "gateway-secret",
        "POWERWALL_EMAIL": "owner@example.com",
        "POLL_INTERVAL_S": "15",
        "MQTT_BROKER_HOST": "broker.example.com",
        "MQTT_BROKER_PORT": "8883",
        "MQTT_TOPIC": "garage",
        "BUDGET_TOPIC": "openevse/budget",
        "STRATEGY_TOPIC": "cmnd/garage/mode",
        "EV_BATTERY_TOPIC": "teslamate/cars/1/battery_level",
        "OPENEVSE_HOST": "openevse.local",
        "DEFAULT_STRATEGY": "auto",
        "PEAK_START_MINUTE": "900",
        "PEAK_END_MINUTE": "1200",
        "OVERNIGHT_END_HOUR": "7",
        "VOLTS": "230",
        "MAX_AMPS": "32",
        "MIN_AMPS": "6",
        "TEMPERATURE_CLAMPS": '[{"temp_c": 55, "max_amps": 6}]',
        "BATTERY_EXPORT_THRESHOLD_W": "300",
        "EV_URGENT_BELOW_PCT": "40",
        "DRY_RUN": "true",
        "DEBUG": "false",
        "HEALTH_PATH": "/tmp/health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env

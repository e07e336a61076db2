"""
Powerwall-to-MQTT charging budget service.

Polls a Tesla Energy Gateway (and optionally an OpenEVSE charger), decides
how much power the EV charger may draw, and publishes that budget over MQTT.

CHANGELOG:
- 2026-10-06: Initial creation (STORY-001)

TODO:
- None
"""

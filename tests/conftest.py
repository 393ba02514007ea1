"""Shared fixtures for homiegraf test suite."""

import pytest

from homiegraf.homie.registry import DeviceRegistry
from homiegraf.pipeline import MetricPipeline


@pytest.fixture
def tmp_config(tmp_path):
    """Provide a temporary config file path."""
    return tmp_path / "settings.json"


@pytest.fixture
def registry():
    """Fresh, empty registry per test."""
    return DeviceRegistry()


@pytest.fixture
def pipeline():
    """Pipeline with default settings and no enum mappings."""
    return MetricPipeline()


@pytest.fixture
def thermostat_messages():
    """Retained messages of a small homie thermostat, in publish order."""
    return [
        ("homie/therm1/$homie", "4.0.0"),
        ("homie/therm1/$name", "Hallway Thermostat"),
        ("homie/therm1/$state", "init"),
        ("homie/therm1/$nodes", "main"),
        ("homie/therm1/main/$name", "Main"),
        ("homie/therm1/main/$type", "thermostat"),
        ("homie/therm1/main/$properties", "setpoint,mode,humidity"),
        ("homie/therm1/main/setpoint/$datatype", "float"),
        ("homie/therm1/main/setpoint/$unit", "°C"),
        ("homie/therm1/main/setpoint/$settable", "true"),
        ("homie/therm1/main/setpoint", "21.5"),
        ("homie/therm1/main/mode/$datatype", "enum"),
        ("homie/therm1/main/mode/$format", "standby,low,high"),
        ("homie/therm1/main/mode", "low"),
        ("homie/therm1/main/humidity/$datatype", "integer"),
        ("homie/therm1/main/humidity", "45"),
        ("homie/therm1/$state", "ready"),
    ]

#!/usr/bin/env python3
"""
Tests for the Sunny Portal inverter integration

The adapter runs external commands; these tests use small Python one-liners
in place of the portal automation scripts.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from inverter.adapters.sunny_portal_adapter import SunnyPortalAdapter
from inverter.factory.inverter_factory import InverterFactory
from inverter.models.inverter_config import InverterConfig
from inverter.models.telemetry import Telemetry, optional_bool, optional_float

TELEMETRY_SCRIPT = (
    "print('Running 1 test using 1 worker');"
    "print('{\"stateOfCharge\": \"42\", \"consumption\": \"1,250\", \"capacity\": 31.2, "
    "\"isCharging\": false, \"forecastedGeneration\": 10}');"
    "print('1 passed')"
)
CONTROL_SCRIPT = "import os, sys; sys.exit(0 if os.environ.get('FORCE_CHARGE') == 'on' else 3)"


def create_test_config(data_script=TELEMETRY_SCRIPT, control_script=CONTROL_SCRIPT, timeout=10.0, multiplier=100.0):
    """Create test configuration"""
    return InverterConfig(
        vendor="sma_portal",
        data_command=[sys.executable, "-c", data_script],
        control_command=[sys.executable, "-c", control_script],
        command_timeout_seconds=timeout,
        forecast_multiplier_pct=multiplier,
    )


class TestTelemetryParsing:
    """Payload coercion"""

    def test_optional_float(self):
        assert optional_float("1,250") == 1250
        assert optional_float(" 42 ") == 42
        assert optional_float("") is None
        assert optional_float("NaN") is None
        assert optional_float("n/a") is None
        assert optional_float(True) is None
        assert optional_float(None) is None

    def test_optional_bool(self):
        assert optional_bool("true") is True
        assert optional_bool("off") is False
        assert optional_bool(1) is True
        assert optional_bool("maybe") is None
        assert optional_bool(None) is None

    def test_from_dict(self):
        telemetry = Telemetry.from_dict({
            'stateOfCharge': 55,
            'consumption': '800',
            'capacity': None,
            'isCharging': 'true',
            'forecastedGeneration': 12,
            'pvGeneration': 1500,
        }, forecast_multiplier_pct=50)

        assert telemetry.state_of_charge_pct == 55
        assert telemetry.consumption_watts == 800
        assert telemetry.battery_capacity_kwh is None
        assert telemetry.observed_hardware_charging is True
        assert telemetry.forecasted_generation_kwh == 6
        assert telemetry.pv_generation_watts == 1500

    def test_missing_fields_are_none(self):
        telemetry = Telemetry.from_dict({})
        assert telemetry.state_of_charge_pct is None
        assert telemetry.observed_hardware_charging is None

    def test_parse_payload_prefers_last_object(self):
        stdout = 'noise\n{"stateOfCharge": 10}\nmore noise\n{"stateOfCharge": 20}\n'
        assert SunnyPortalAdapter.parse_payload(stdout) == {'stateOfCharge': 20}

    def test_parse_payload_multiline_document(self):
        assert SunnyPortalAdapter.parse_payload('{\n  "stateOfCharge": 30\n}') == {'stateOfCharge': 30}

    def test_parse_payload_without_json(self):
        assert SunnyPortalAdapter.parse_payload("1 passed") is None
        assert SunnyPortalAdapter.parse_payload("[1, 2]") is None


class TestSunnyPortalAdapter:
    """Command execution"""

    async def test_collect_telemetry(self):
        adapter = SunnyPortalAdapter(create_test_config(multiplier=80))

        telemetry = await adapter.collect_telemetry()

        assert telemetry.state_of_charge_pct == 42
        assert telemetry.consumption_watts == 1250
        assert telemetry.battery_capacity_kwh == 31.2
        assert telemetry.observed_hardware_charging is False
        assert telemetry.forecasted_generation_kwh == pytest.approx(8)

    async def test_collect_telemetry_failure_raises(self):
        adapter = SunnyPortalAdapter(create_test_config(data_script="import sys; sys.exit(1)"))
        with pytest.raises(RuntimeError):
            await adapter.collect_telemetry()

    async def test_collect_telemetry_without_json_raises(self):
        adapter = SunnyPortalAdapter(create_test_config(data_script="print('nothing here')"))
        with pytest.raises(RuntimeError):
            await adapter.collect_telemetry()

    async def test_charge_commands_use_force_charge_flag(self):
        adapter = SunnyPortalAdapter(create_test_config())

        assert await adapter.start_charging() is True
        assert await adapter.stop_charging() is False

    async def test_timeout_is_failure(self):
        adapter = SunnyPortalAdapter(create_test_config(control_script="import time; time.sleep(5)", timeout=0.5))
        assert await adapter.start_charging() is False

    async def test_missing_executable_is_failure(self):
        config = create_test_config()
        config.control_command = ["/nonexistent/portal-control"]
        adapter = SunnyPortalAdapter(config)

        assert await adapter.start_charging() is False

    def test_rejects_other_vendor(self):
        config = create_test_config()
        config.vendor = "goodwe"
        with pytest.raises(ValueError):
            SunnyPortalAdapter(config)


class TestInverterFactory:
    """Vendor registry"""

    def test_create_from_yaml_config(self):
        adapter = InverterFactory.create_from_yaml_config({
            'inverter': {'vendor': 'sma_portal', 'data_command': 'node collect.js', 'control_command': 'node control.js',
                         'command_timeout_seconds': 60},
            'forecast': {'multiplier_percent': 90},
        })

        assert isinstance(adapter, SunnyPortalAdapter)
        assert adapter.vendor_name == "sma_portal"

    def test_yaml_commands_are_split(self):
        config = InverterConfig.from_yaml_config({'data_command': 'npx playwright test "a b.js"'}, 110)
        assert config.data_command == ['npx', 'playwright', 'test', 'a b.js']
        assert config.control_command[0] == 'npx'
        assert config.forecast_multiplier_pct == 110

    def test_unsupported_vendor(self):
        with pytest.raises(ValueError, match="Supported vendors: sma_portal"):
            InverterFactory.create_inverter(InverterConfig(vendor="goodwe", data_command=["x"], control_command=["y"]))

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            InverterFactory.create_inverter(InverterConfig(data_command=[], control_command=["y"]))
        with pytest.raises(ValueError):
            InverterFactory.create_inverter(InverterConfig(data_command=["x"], control_command=["y"],
                                                           command_timeout_seconds=0))

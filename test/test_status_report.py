#!/usr/bin/env python3
"""
Tests for the operator status output
"""

import sys
from pathlib import Path
from datetime import datetime, timezone

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from charge_decision_engine import ChargeDecisionEngine
from inverter.models.telemetry import Telemetry
from status_report import battery_icon, render_forecast_view, render_status_banner, window_status

JANUARY_NIGHT = datetime(2024, 1, 15, 2, 0, tzinfo=timezone.utc)
JANUARY_NOON = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def create_test_config():
    """Create test configuration"""
    return {
        'electricity_tariff': {
            'mode': 'fixed_window',
            'rate_pence_per_kwh': 8.5,
            'fixed_window': {'start_time': '00:30', 'end_time': '05:30'},
        },
        'battery_management': {'assumed_capacity_kwh': 31.2},
    }


class TestIcons:
    """Icon thresholds"""

    def test_battery_icon(self):
        assert battery_icon(85) == '🟢'
        assert battery_icon(50) == '🟡'
        assert battery_icon(20) == '🟠'
        assert battery_icon(19) == '🔴'
        assert battery_icon(None) == '❓'


class TestStatusBanner:
    """Per-cycle banner"""

    def setup_method(self):
        self.engine = ChargeDecisionEngine(create_test_config())

    def test_charge_decision(self):
        telemetry = Telemetry(state_of_charge_pct=20, consumption_watts=800)
        decision = self.engine.decide(telemetry, JANUARY_NIGHT)

        banner = render_status_banner(telemetry, decision, self.engine.policy, JANUARY_NIGHT,
                                      hardware_charging=False)

        assert "Battery SOC: 20%" in banner
        assert "January Targets:" in banner
        assert "🟢 DECISION: START CHARGING" in banner
        assert f"BECAUSE {decision.rationale}" in banner
        assert "Cheap rate" in banner
        assert "SAFEGUARD" not in banner

    def test_safeguard_when_hardware_charging(self):
        telemetry = Telemetry(state_of_charge_pct=70)
        decision = self.engine.decide(telemetry, JANUARY_NIGHT, is_currently_charging=True)

        banner = render_status_banner(telemetry, decision, self.engine.policy, JANUARY_NIGHT,
                                      hardware_charging=True)

        assert "🔴 DECISION: STOP/CONTINUE NO CHARGING" in banner
        assert "SAFEGUARD" in banner

    def test_unknown_readings(self):
        telemetry = Telemetry(state_of_charge_pct=40)
        decision = self.engine.decide(telemetry, JANUARY_NOON)

        banner = render_status_banner(telemetry, decision, self.engine.policy, JANUARY_NOON)

        assert "Current Consumption: N/A" in banner
        assert "Currently Charging: UNKNOWN" in banner
        assert "High rate" in banner

    def test_forced_window_status(self):
        assert "FORCED WINDOW" in window_status(self.engine.policy, JANUARY_NOON, True)


class TestForecastView:
    """--status report"""

    def setup_method(self):
        self.engine = ChargeDecisionEngine(create_test_config())

    def test_savings_from_forecast(self):
        telemetry = Telemetry(state_of_charge_pct=50, forecasted_generation_kwh=10)
        decision = self.engine.decide(telemetry, JANUARY_NIGHT)

        view = render_forecast_view(telemetry, decision, self.engine.policy, JANUARY_NIGHT, 31.2)

        assert "Currently in window: ✅ YES" in view
        assert "Original target SOC for end-of-day: 60%" in view
        assert "Adjusted target SOC: 45.0%" in view
        assert "Estimated savings from forecast: 4.68 kWh (£0.40)" in view

    def test_no_forecast(self):
        telemetry = Telemetry(state_of_charge_pct=30)
        decision = self.engine.decide(telemetry, JANUARY_NOON)

        view = render_forecast_view(telemetry, decision, self.engine.policy, JANUARY_NOON, 31.2)

        assert "No forecast data available" in view
        assert "Currently in window: ❌ NO" in view
        assert "Estimated savings" not in view

    def test_multiplier_shown(self):
        telemetry = Telemetry(state_of_charge_pct=30, forecasted_generation_kwh=4)
        decision = self.engine.decide(telemetry, JANUARY_NIGHT)

        view = render_forecast_view(telemetry, decision, self.engine.policy, JANUARY_NIGHT, 31.2,
                                    forecast_multiplier_pct=80)

        assert "Forecast adjustment: 80% applied" in view

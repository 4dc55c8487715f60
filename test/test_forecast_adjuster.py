#!/usr/bin/env python3
"""
Tests for the solar forecast adjustment of the evening target
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config_loader import ConfigurationError
from forecast_adjuster import ForecastAdjuster, estimate_forecast_savings


class TestForecastAdjuster:
    """Evening target reduction"""

    def setup_method(self):
        self.adjuster = ForecastAdjuster(31.2)

    def test_no_forecast(self):
        result = self.adjuster.adjust_evening_target(60, 45, None)
        assert result.adjusted_target_pct == 60
        assert result.adjustment_pct == 0

    def test_zero_forecast(self):
        result = self.adjuster.adjust_evening_target(60, 45, 0)
        assert result.adjusted_target_pct == 60
        assert result.adjustment_pct == 0

    def test_reduction_with_measured_capacity(self):
        # 5 kWh on a 50 kWh battery is 10%
        result = self.adjuster.adjust_evening_target(60, 45, 5, battery_capacity_kwh=50)
        assert result.adjustment_pct == pytest.approx(10)
        assert result.adjusted_target_pct == pytest.approx(50)

    def test_assumed_capacity_when_unknown(self):
        result = self.adjuster.adjust_evening_target(60, 20, 3.12)
        assert result.adjustment_pct == pytest.approx(10)
        assert result.adjusted_target_pct == pytest.approx(50)

    def test_floor_at_morning_target(self):
        result = self.adjuster.adjust_evening_target(60, 45, 30)
        assert result.adjusted_target_pct == 45
        assert result.adjustment_pct > 15

    def test_floor_holds_for_any_forecast(self):
        for forecast in (0.1, 1, 5, 10, 50, 500):
            result = self.adjuster.adjust_evening_target(35, 20, forecast)
            assert result.adjusted_target_pct >= 20

    def test_from_config(self):
        adjuster = ForecastAdjuster.from_config({'battery_management': {'assumed_capacity_kwh': 10}})
        assert adjuster.assumed_capacity_kwh == 10

    def test_from_config_rejects_zero_capacity(self):
        with pytest.raises(ConfigurationError):
            ForecastAdjuster.from_config({'battery_management': {'assumed_capacity_kwh': 0}})


class TestForecastSavings:
    """Savings estimate shown in the forecast view"""

    def test_savings(self):
        savings = estimate_forecast_savings(60, 50, 31.2, 8.5)
        assert savings['saved_pct'] == pytest.approx(10)
        assert savings['saved_kwh'] == pytest.approx(3.12)
        assert savings['saved_cost'] == pytest.approx(0.2652)

    def test_no_negative_savings(self):
        savings = estimate_forecast_savings(50, 60, 31.2, 8.5)
        assert savings['saved_kwh'] == 0

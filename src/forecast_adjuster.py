"""
Solar forecast adjustment of the evening SOC target.

Forecast generation for the coming day can replace part of the overnight
grid charge. The evening target is lowered by the share of the battery the
forecast would fill, but never below the morning target.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from config_loader import require_number

logger = logging.getLogger(__name__)

DEFAULT_ASSUMED_CAPACITY_KWH = 31.2


@dataclass(frozen=True)
class ForecastAdjustment:
    adjusted_target_pct: float
    adjustment_pct: float


class ForecastAdjuster:
    """Lowers the evening target according to forecast solar generation."""

    def __init__(self, assumed_capacity_kwh: float = DEFAULT_ASSUMED_CAPACITY_KWH):
        if assumed_capacity_kwh <= 0:
            raise ValueError(f"assumed_capacity_kwh must be positive, got {assumed_capacity_kwh}")
        self.assumed_capacity_kwh = assumed_capacity_kwh

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ForecastAdjuster':
        battery_cfg = config.get('battery_management', {}) or {}
        capacity = require_number(battery_cfg.get('assumed_capacity_kwh', DEFAULT_ASSUMED_CAPACITY_KWH),
                                  'battery_management.assumed_capacity_kwh', minimum=0.1)
        return cls(capacity)

    def adjust_evening_target(self, evening_target_pct: float, morning_target_pct: float,
                              forecasted_generation_kwh: Optional[float],
                              battery_capacity_kwh: Optional[float] = None) -> ForecastAdjustment:
        """
        Compute the forecast-adjusted evening target.

        Args:
            evening_target_pct: Seasonal evening target
            morning_target_pct: Seasonal morning target, the floor
            forecasted_generation_kwh: Expected solar generation, None if unknown
            battery_capacity_kwh: Measured capacity; the configured assumption is used when None
        """
        if forecasted_generation_kwh is None or forecasted_generation_kwh <= 0:
            return ForecastAdjustment(adjusted_target_pct=evening_target_pct, adjustment_pct=0.0)

        capacity = battery_capacity_kwh if battery_capacity_kwh and battery_capacity_kwh > 0 else self.assumed_capacity_kwh
        adjustment_pct = (forecasted_generation_kwh / capacity) * 100
        adjusted = max(morning_target_pct, evening_target_pct - adjustment_pct)

        logger.debug(f"Forecast {forecasted_generation_kwh:g}kWh on {capacity:g}kWh -> "
                     f"evening target {evening_target_pct:g}% reduced by {adjustment_pct:.1f}% to {adjusted:.1f}%")
        return ForecastAdjustment(adjusted_target_pct=adjusted, adjustment_pct=adjustment_pct)


def estimate_forecast_savings(original_target_pct: float, adjusted_target_pct: float,
                              capacity_kwh: float, rate_pence_per_kwh: float) -> Dict[str, float]:
    """Energy and money not bought from the grid because the forecast lowered the target."""
    saved_pct = max(0.0, original_target_pct - adjusted_target_pct)
    saved_kwh = (saved_pct / 100) * capacity_kwh
    return {
        'saved_pct': saved_pct,
        'saved_kwh': saved_kwh,
        'saved_cost': saved_kwh * (rate_pence_per_kwh / 100),
    }

"""
Telemetry Model

Snapshot of the battery system taken once per decision cycle.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def optional_float(value: Any) -> Optional[float]:
    """Coerce a reading to float, mapping blanks, NaN and garbage to None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(',', '')
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.debug(f"Discarding unparsable reading: {value!r}")
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def optional_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 'yes', 'on', '1'):
            return True
        if lowered in ('false', 'no', 'off', '0'):
            return False
        return None
    if isinstance(value, (int, float)):
        return bool(value)
    return None


@dataclass(frozen=True)
class Telemetry:
    """
    Per-cycle input snapshot.

    Every field is independently optional. None means the reading was not
    available this cycle, which is a valid state and not an error.
    """

    # Battery state of charge (0-100)
    state_of_charge_pct: Optional[float] = None

    # Current house consumption in watts
    consumption_watts: Optional[float] = None

    # Measured usable battery capacity
    battery_capacity_kwh: Optional[float] = None

    # Solar generation forecast for the coming day
    forecasted_generation_kwh: Optional[float] = None

    # Whether the inverter reports an active forced charge
    observed_hardware_charging: Optional[bool] = None

    # Current PV output, reporting only
    pv_generation_watts: Optional[float] = None

    collected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], forecast_multiplier_pct: float = 100.0) -> 'Telemetry':
        """
        Build telemetry from the acquisition script's JSON payload.

        Args:
            data: Payload with stateOfCharge, consumption, capacity, isCharging,
                  forecastedGeneration and pvGeneration keys
            forecast_multiplier_pct: Scaling applied to the raw solar forecast
        """
        forecast = optional_float(data.get('forecastedGeneration'))
        if forecast is not None and forecast_multiplier_pct != 100:
            forecast = forecast * forecast_multiplier_pct / 100

        return cls(
            state_of_charge_pct=optional_float(data.get('stateOfCharge')),
            consumption_watts=optional_float(data.get('consumption')),
            battery_capacity_kwh=optional_float(data.get('capacity')),
            forecasted_generation_kwh=forecast,
            observed_hardware_charging=optional_bool(data.get('isCharging')),
            pv_generation_watts=optional_float(data.get('pvGeneration')),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state_of_charge_pct': self.state_of_charge_pct,
            'consumption_watts': self.consumption_watts,
            'battery_capacity_kwh': self.battery_capacity_kwh,
            'forecasted_generation_kwh': self.forecasted_generation_kwh,
            'observed_hardware_charging': self.observed_hardware_charging,
            'pv_generation_watts': self.pv_generation_watts,
            'collected_at': self.collected_at.isoformat(),
        }

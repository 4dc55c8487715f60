"""
Monthly SOC targets.

Each month has a morning target (the minimum the house needs to get through
the morning before solar picks up) and an evening target (what the battery
should hold after the overnight charge). Winter months need more, summer
months less.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Sequence

from config_loader import ConfigurationError, require_number

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeasonalTarget:
    morning_target_pct: float
    evening_target_pct: float


DEFAULT_SEASONAL_TARGETS = [
    (45, 60),  # January
    (45, 60),  # February
    (40, 55),  # March
    (30, 45),  # April
    (25, 40),  # May
    (20, 35),  # June
    (20, 35),  # July
    (25, 40),  # August
    (30, 45),  # September
    (40, 55),  # October
    (45, 60),  # November
    (45, 60),  # December
]


class SeasonalTargetTable:
    """Lookup of morning/evening SOC targets by calendar month."""

    def __init__(self, entries: Sequence[Any]):
        if len(entries) != 12:
            raise ConfigurationError(f"seasonal_targets must have 12 entries (one per month), got {len(entries)}")

        self._targets: List[SeasonalTarget] = []
        for index, entry in enumerate(entries):
            month = calendar.month_name[index + 1]
            if isinstance(entry, dict):
                morning, evening = entry.get('morning'), entry.get('evening')
            else:
                try:
                    morning, evening = entry
                except (TypeError, ValueError) as e:
                    raise ConfigurationError(f"seasonal_targets[{month}] must be {{morning, evening}}, got {entry!r}") from e

            morning = require_number(morning, f"seasonal_targets[{month}].morning", 0, 100)
            evening = require_number(evening, f"seasonal_targets[{month}].evening", 0, 100)
            if evening < morning:
                logger.warning(f"{month}: evening target {evening:g}% is below morning target {morning:g}%")
            self._targets.append(SeasonalTarget(morning, evening))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'SeasonalTargetTable':
        battery_cfg = config.get('battery_management', {}) or {}
        return cls(battery_cfg.get('seasonal_targets') or DEFAULT_SEASONAL_TARGETS)

    def lookup(self, month_index: int) -> SeasonalTarget:
        """Targets for a 0-based month index (0 = January)."""
        if not 0 <= month_index <= 11:
            raise IndexError(f"month index must be 0..11, got {month_index}")
        return self._targets[month_index]

    def for_date(self, moment: datetime) -> SeasonalTarget:
        return self.lookup(moment.month - 1)

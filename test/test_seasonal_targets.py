#!/usr/bin/env python3
"""
Tests for the monthly SOC target table
"""

import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config_loader import ConfigurationError
from seasonal_targets import DEFAULT_SEASONAL_TARGETS, SeasonalTarget, SeasonalTargetTable


def create_test_config(targets=None):
    """Create test configuration"""
    config = {'battery_management': {'assumed_capacity_kwh': 31.2}}
    if targets is not None:
        config['battery_management']['seasonal_targets'] = targets
    return config


class TestSeasonalTargetTable:
    """Lookup and validation"""

    def test_defaults_used_when_not_configured(self):
        table = SeasonalTargetTable.from_config(create_test_config())
        assert table.lookup(0) == SeasonalTarget(45, 60)
        assert table.lookup(6) == SeasonalTarget(20, 35)
        assert table.lookup(11) == SeasonalTarget(45, 60)

    def test_configured_dict_entries(self):
        targets = [{'morning': 10 + i, 'evening': 20 + i} for i in range(12)]
        table = SeasonalTargetTable.from_config(create_test_config(targets))
        assert table.lookup(3) == SeasonalTarget(13, 23)

    def test_for_date_uses_calendar_month(self):
        table = SeasonalTargetTable(DEFAULT_SEASONAL_TARGETS)
        assert table.for_date(datetime(2024, 1, 15, tzinfo=timezone.utc)) == SeasonalTarget(45, 60)
        assert table.for_date(datetime(2024, 5, 1, tzinfo=timezone.utc)) == SeasonalTarget(25, 40)

    def test_out_of_range_index(self):
        table = SeasonalTargetTable(DEFAULT_SEASONAL_TARGETS)
        with pytest.raises(IndexError):
            table.lookup(12)
        with pytest.raises(IndexError):
            table.lookup(-1)

    def test_wrong_entry_count(self):
        with pytest.raises(ConfigurationError):
            SeasonalTargetTable(DEFAULT_SEASONAL_TARGETS[:11])

    def test_value_above_100(self):
        targets = list(DEFAULT_SEASONAL_TARGETS)
        targets[2] = (40, 120)
        with pytest.raises(ConfigurationError):
            SeasonalTargetTable(targets)

    def test_negative_value(self):
        targets = list(DEFAULT_SEASONAL_TARGETS)
        targets[2] = {'morning': -5, 'evening': 40}
        with pytest.raises(ConfigurationError):
            SeasonalTargetTable(targets)

    def test_missing_key(self):
        targets = list(DEFAULT_SEASONAL_TARGETS)
        targets[0] = {'morning': 40}
        with pytest.raises(ConfigurationError):
            SeasonalTargetTable(targets)

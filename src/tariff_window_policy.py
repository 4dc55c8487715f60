#!/usr/bin/env python3
"""
Tariff window policy for Octopus tariffs.

Two mutually exclusive tariff modes are supported:
- fixed_window:  a daily cheap-rate window (Octopus Go style), configured as
                 HH:MM bounds that are always interpreted in UTC.
- dynamic_price: half-hourly prices (Octopus Agile style); a slot is cheap when
                 it ranks low enough in the price-sorted series for the
                 surrounding 48 hours.

The mode is resolved once when the configuration is loaded.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Union

from config_loader import ConfigurationError, format_minutes, parse_hhmm, require_number

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

REASON_NO_CURRENT_PRICE = "no current price"
REASON_CHEAP_LOW_SOC = "cheap+low-soc"
REASON_MODERATE_VERY_LOW_SOC = "moderate+very-low-soc"
REASON_EXPENSIVE = "expensive-or-sufficient-soc"


class TariffMode(Enum):
    """Tariff policy variants"""
    FIXED_WINDOW = "fixed_window"
    DYNAMIC_PRICE = "dynamic_price"


@dataclass(frozen=True)
class FixedWindowTariff:
    """Daily cheap-rate window in UTC minutes of day, end exclusive."""
    start_minutes: int
    end_minutes: int
    rate_pence_per_kwh: float

    mode = TariffMode.FIXED_WINDOW

    @property
    def crosses_midnight(self) -> bool:
        return self.start_minutes > self.end_minutes

    def describe(self) -> str:
        return f"{format_minutes(self.start_minutes)}-{format_minutes(self.end_minutes)} UTC"


@dataclass(frozen=True)
class DynamicPriceTariff:
    """Percentile thresholds for half-hourly dynamic pricing."""
    cheap_percentile: float
    moderate_percentile: float
    cheap_soc_threshold: float
    moderate_soc_threshold: float
    min_cheap_median_gap: float
    rate_pence_per_kwh: float

    mode = TariffMode.DYNAMIC_PRICE

    def describe(self) -> str:
        return (f"dynamic pricing (cheap <= P{self.cheap_percentile:g} with SOC <= {self.cheap_soc_threshold:g}%, "
                f"moderate <= P{self.moderate_percentile:g} with SOC <= {self.moderate_soc_threshold:g}%)")


TariffConfig = Union[FixedWindowTariff, DynamicPriceTariff]


@dataclass(frozen=True)
class PricePoint:
    """A single unit rate, valid for [valid_from, valid_to)."""
    valid_from: datetime
    valid_to: datetime
    inc_vat_price: float  # p/kWh including VAT


@dataclass(frozen=True)
class PriceDecision:
    """Outcome of the dynamic price comparison."""
    should_charge: bool
    reason: str
    detail: str = ""
    current_price: Optional[float] = None


def build_tariff_config(config: Dict[str, Any]) -> TariffConfig:
    """
    Build the tariff variant from the `electricity_tariff` section.

    Raises:
        ConfigurationError: On an unknown mode or out-of-range parameters
    """
    tariff_cfg = config.get('electricity_tariff', {}) or {}
    mode_name = tariff_cfg.get('mode', TariffMode.FIXED_WINDOW.value)
    try:
        mode = TariffMode(mode_name)
    except ValueError as e:
        valid = ', '.join(m.value for m in TariffMode)
        raise ConfigurationError(f"Unknown tariff mode {mode_name!r} (expected one of: {valid})") from e

    rate = require_number(tariff_cfg.get('rate_pence_per_kwh', 8.5),
                          'electricity_tariff.rate_pence_per_kwh', minimum=0)

    if mode is TariffMode.FIXED_WINDOW:
        window_cfg = tariff_cfg.get('fixed_window', {}) or {}
        start = parse_hhmm(window_cfg.get('start_time', '00:30'), 'fixed_window.start_time')
        end = parse_hhmm(window_cfg.get('end_time', '05:30'), 'fixed_window.end_time')
        if start == end:
            raise ConfigurationError("fixed_window.start_time and end_time must differ")
        return FixedWindowTariff(start_minutes=start, end_minutes=end, rate_pence_per_kwh=rate)

    dynamic_cfg = tariff_cfg.get('dynamic_price', {}) or {}
    cheap_pct = require_number(dynamic_cfg.get('cheap_percentile', 25), 'dynamic_price.cheap_percentile', 0)
    moderate_pct = require_number(dynamic_cfg.get('moderate_percentile', 25), 'dynamic_price.moderate_percentile', 0)
    # The percentile is used as an array index, 100 would point past the end
    for name, value in (('cheap_percentile', cheap_pct), ('moderate_percentile', moderate_pct)):
        if value >= 100:
            raise ConfigurationError(f"dynamic_price.{name} must be below 100, got {value:g}")

    return DynamicPriceTariff(
        cheap_percentile=cheap_pct,
        moderate_percentile=moderate_pct,
        cheap_soc_threshold=require_number(dynamic_cfg.get('cheap_soc_threshold', 60),
                                           'dynamic_price.cheap_soc_threshold', 0, 100),
        moderate_soc_threshold=require_number(dynamic_cfg.get('moderate_soc_threshold', 30),
                                              'dynamic_price.moderate_soc_threshold', 0, 100),
        min_cheap_median_gap=require_number(dynamic_cfg.get('min_cheap_median_gap', 0.1),
                                            'dynamic_price.min_cheap_median_gap', 0),
        rate_pence_per_kwh=rate,
    )


def to_utc(moment: datetime) -> datetime:
    """Normalise to an aware UTC datetime; naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def minutes_of_day_utc(moment: datetime) -> int:
    utc = to_utc(moment)
    return utc.hour * 60 + utc.minute


def is_within_window(minute_of_day: int, start_minutes: int, end_minutes: int) -> bool:
    """Check [start, end) membership, treating start > end as crossing midnight."""
    if start_minutes > end_minutes:
        return minute_of_day >= start_minutes or minute_of_day < end_minutes
    return start_minutes <= minute_of_day < end_minutes


def minutes_until(now: datetime, target_minutes: int) -> int:
    """Minutes from `now` (UTC) until the next occurrence of target_minutes, in [0, 1440)."""
    return (target_minutes - minutes_of_day_utc(now)) % MINUTES_PER_DAY


def percentile_index(count: int, percentile: float) -> int:
    """
    Index into a price-sorted series for the given percentile.

    This is floor(count * percentile / 100), not an interpolated
    statistical percentile.
    """
    return math.floor(count * percentile / 100)


def find_current_price(prices: Sequence[PricePoint], now: datetime) -> Optional[PricePoint]:
    now_utc = to_utc(now)
    for price in prices:
        if to_utc(price.valid_from) <= now_utc < to_utc(price.valid_to):
            return price
    return None


def price_is_cheap(prices: Sequence[PricePoint], now: datetime, soc_pct: float,
                   tariff: DynamicPriceTariff) -> PriceDecision:
    """
    Decide whether the current dynamic price justifies charging.

    Rules, first match wins:
    1. current <= cheap threshold, SOC <= cheap SOC threshold and the cheap
       threshold sits meaningfully below the median
    2. current <= moderate threshold and SOC <= moderate SOC threshold
    3. otherwise do not charge
    """
    if not prices:
        return PriceDecision(False, REASON_NO_CURRENT_PRICE, "price series is empty")

    current_point = find_current_price(prices, now)
    if current_point is None:
        return PriceDecision(False, REASON_NO_CURRENT_PRICE,
                             f"no price slot covers {to_utc(now).isoformat()}")

    ranked = sorted(prices, key=lambda p: p.inc_vat_price)
    count = len(ranked)
    median = ranked[count // 2].inc_vat_price
    cheap = ranked[percentile_index(count, tariff.cheap_percentile)].inc_vat_price
    moderate = ranked[percentile_index(count, tariff.moderate_percentile)].inc_vat_price
    current = current_point.inc_vat_price

    # Flat price days never count as cheap
    median_gap = median - cheap
    gap_ok = median_gap > tariff.min_cheap_median_gap * median

    if current <= cheap and soc_pct <= tariff.cheap_soc_threshold and gap_ok:
        return PriceDecision(
            True, REASON_CHEAP_LOW_SOC,
            f"price {current:g}p <= cheap threshold {cheap:g}p (median {median:g}p, gap {median_gap:g}p) "
            f"and SOC {soc_pct:g}% <= {tariff.cheap_soc_threshold:g}%",
            current,
        )

    if current <= moderate and soc_pct <= tariff.moderate_soc_threshold:
        return PriceDecision(
            True, REASON_MODERATE_VERY_LOW_SOC,
            f"price {current:g}p <= moderate threshold {moderate:g}p (median {median:g}p) "
            f"and SOC {soc_pct:g}% <= {tariff.moderate_soc_threshold:g}%",
            current,
        )

    return PriceDecision(
        False, REASON_EXPENSIVE,
        f"price {current:g}p vs cheap {cheap:g}p / moderate {moderate:g}p (median {median:g}p), "
        f"SOC {soc_pct:g}%",
        current,
    )


class TariffWindowPolicy:
    """Answers whether cheap-rate conditions hold right now."""

    def __init__(self, tariff: TariffConfig):
        self.tariff = tariff
        logger.info(f"Tariff window policy initialized: {tariff.describe()}")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'TariffWindowPolicy':
        return cls(build_tariff_config(config))

    @property
    def mode(self) -> TariffMode:
        return self.tariff.mode

    @property
    def rate_pence_per_kwh(self) -> float:
        return self.tariff.rate_pence_per_kwh

    def is_cheap_rate_now(self, now: datetime, force_override: bool = False,
                          prices: Optional[Sequence[PricePoint]] = None,
                          soc_pct: Optional[float] = None) -> bool:
        """
        Check cheap-rate conditions.

        Args:
            now: Current time (converted to UTC)
            force_override: Act as if inside the cheap-rate window
            prices: Price series, dynamic price mode only
            soc_pct: Battery SOC, dynamic price mode only
        """
        if force_override:
            return True

        if isinstance(self.tariff, FixedWindowTariff):
            return is_within_window(minutes_of_day_utc(now), self.tariff.start_minutes, self.tariff.end_minutes)

        if soc_pct is None:
            raise ValueError("soc_pct is required to evaluate dynamic pricing")
        return price_is_cheap(prices or [], now, soc_pct, self.tariff).should_charge

    def minutes_until_window_end(self, now: datetime) -> Optional[int]:
        """Minutes until the fixed window closes; None in dynamic price mode."""
        if not isinstance(self.tariff, FixedWindowTariff):
            return None
        return minutes_until(now, self.tariff.end_minutes)

    def describe_window(self) -> str:
        return self.tariff.describe()

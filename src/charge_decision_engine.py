#!/usr/bin/env python3
"""
SMA Octopus Battery Manager - Charge Decision Engine

Fuses the tariff policy, the monthly SOC targets, the solar forecast and the
live house consumption into a single charge / no-charge decision per cycle.

Fixed window tariffs (first matching rule wins):
1. Outside the cheap-rate window                -> no charge
2. Within the end-of-window margin              -> no charge (avoid overrun)
3. SOC at or above the forecast-adjusted target -> no charge
4. Consumption above the start/stop threshold   -> no charge (hysteresis)
5. Otherwise                                    -> charge

Dynamic price tariffs skip all of the above and follow the price percentile
comparison alone.

The engine is stateless: it never sees the persisted session, only whether
the battery is charging right now.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from config_loader import ConfigurationError, format_minutes, require_number
from forecast_adjuster import ForecastAdjuster
from inverter.models.telemetry import Telemetry
from seasonal_targets import SeasonalTargetTable
from tariff_window_policy import (
    FixedWindowTariff,
    PricePoint,
    TariffMode,
    TariffWindowPolicy,
    minutes_of_day_utc,
    price_is_cheap,
)

logger = logging.getLogger(__name__)

RULE_OUTSIDE_WINDOW = "outside_window"
RULE_WINDOW_END_MARGIN = "window_end_margin"
RULE_SOC_AT_TARGET = "soc_at_target"
RULE_CONSUMPTION_START = "consumption_too_high_to_start"
RULE_CONSUMPTION_CONTINUE = "consumption_too_high_to_continue"
RULE_APPROVED = "approved"
RULE_DYNAMIC_PRICE = "dynamic_price"


class MissingTelemetryError(Exception):
    """A reading the engine cannot decide without is absent."""


@dataclass(frozen=True)
class ForecastData:
    """Targets and forecast figures behind a decision."""
    forecasted_generation_kwh: Optional[float]
    adjusted_target_soc_pct: float
    original_target_soc_pct: float
    forecast_adjustment_pct: float
    morning_target_pct: float
    evening_target_pct: float
    final_target_soc_pct: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Decision:
    """Outcome of one decision cycle. Recomputed every cycle, never persisted."""
    should_charge: bool
    rationale: str
    forecast_data: ForecastData
    rule: str
    tariff_mode: TariffMode = TariffMode.FIXED_WINDOW
    current_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'should_charge': self.should_charge,
            'rationale': self.rationale,
            'rule': self.rule,
            'tariff_mode': self.tariff_mode.value,
            'current_price': self.current_price,
            'forecast_data': self.forecast_data.to_dict(),
        }


def _num(value: float) -> str:
    return f"{value:g}"


class ChargeDecisionEngine:
    """Per-cycle charging policy"""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the decision engine.

        Args:
            config: Full system configuration dict

        Raises:
            ConfigurationError: If any section cannot be used
        """
        self.policy = TariffWindowPolicy.from_config(config)
        self.targets = SeasonalTargetTable.from_config(config)
        self.forecast_adjuster = ForecastAdjuster.from_config(config)

        charging_cfg = config.get('charging', {}) or {}
        self.consumption_start_threshold_w = require_number(
            charging_cfg.get('consumption_start_threshold_w', 3000), 'charging.consumption_start_threshold_w', 0)
        self.consumption_stop_threshold_w = require_number(
            charging_cfg.get('consumption_stop_threshold_w', 6000), 'charging.consumption_stop_threshold_w', 0)
        self.end_of_window_margin_minutes = int(require_number(
            charging_cfg.get('end_of_window_margin_minutes', 10), 'charging.end_of_window_margin_minutes', 0, 120))

        # Hysteresis band must be non-empty
        if self.consumption_start_threshold_w >= self.consumption_stop_threshold_w:
            raise ConfigurationError(
                f"consumption_start_threshold_w ({_num(self.consumption_start_threshold_w)}) must be below "
                f"consumption_stop_threshold_w ({_num(self.consumption_stop_threshold_w)})")

        if self.policy.mode is TariffMode.FIXED_WINDOW:
            self._decide_for_tariff = self._decide_fixed_window
        else:
            self._decide_for_tariff = self._decide_dynamic_price

        logger.info(
            f"Charge decision engine initialized: {self.policy.describe_window()}, "
            f"consumption start/stop {_num(self.consumption_start_threshold_w)}W/"
            f"{_num(self.consumption_stop_threshold_w)}W, end margin {self.end_of_window_margin_minutes}min"
        )

    @property
    def tariff_mode(self) -> TariffMode:
        return self.policy.mode

    @property
    def rate_pence_per_kwh(self) -> float:
        return self.policy.rate_pence_per_kwh

    def compute_targets(self, telemetry: Telemetry, now: datetime) -> ForecastData:
        """Seasonal targets for `now`'s month with the forecast adjustment applied."""
        seasonal = self.targets.for_date(now)
        adjustment = self.forecast_adjuster.adjust_evening_target(
            seasonal.evening_target_pct,
            seasonal.morning_target_pct,
            telemetry.forecasted_generation_kwh,
            telemetry.battery_capacity_kwh,
        )
        final_target = max(seasonal.morning_target_pct, adjustment.adjusted_target_pct)
        return ForecastData(
            forecasted_generation_kwh=telemetry.forecasted_generation_kwh,
            adjusted_target_soc_pct=adjustment.adjusted_target_pct,
            original_target_soc_pct=seasonal.evening_target_pct,
            forecast_adjustment_pct=adjustment.adjustment_pct,
            morning_target_pct=seasonal.morning_target_pct,
            evening_target_pct=seasonal.evening_target_pct,
            final_target_soc_pct=final_target,
        )

    def decide(self, telemetry: Telemetry, now: Optional[datetime] = None,
               is_currently_charging: bool = False, force_window_override: bool = False,
               prices: Optional[Sequence[PricePoint]] = None) -> Decision:
        """
        Make the charging decision for this cycle.

        Args:
            telemetry: Fully gathered snapshot for this cycle
            now: Decision time (defaults to the current UTC time)
            is_currently_charging: Effective charging state (hardware truth when known)
            force_window_override: Behave as if inside the cheap-rate window
            prices: Price series, used in dynamic price mode only

        Raises:
            MissingTelemetryError: If the state of charge is not available
        """
        if telemetry.state_of_charge_pct is None:
            raise MissingTelemetryError("State of charge is unavailable, refusing to guess a charging decision")

        now = now or datetime.now(timezone.utc)
        forecast_data = self.compute_targets(telemetry, now)
        decision = self._decide_for_tariff(telemetry, now, is_currently_charging, force_window_override,
                                           prices, forecast_data)

        logger.info(f"Charging decision: {'CHARGE' if decision.should_charge else 'NO CHARGE'} - {decision.rationale}")
        return decision

    def _decide_fixed_window(self, telemetry: Telemetry, now: datetime, is_currently_charging: bool,
                             force_window_override: bool, prices: Optional[Sequence[PricePoint]],
                             forecast_data: ForecastData) -> Decision:
        tariff: FixedWindowTariff = self.policy.tariff
        soc = telemetry.state_of_charge_pct
        now_label = format_minutes(minutes_of_day_utc(now))

        def outcome(should_charge: bool, rule: str, rationale: str) -> Decision:
            return Decision(should_charge, rationale, forecast_data, rule, TariffMode.FIXED_WINDOW)

        if not self.policy.is_cheap_rate_now(now, force_window_override):
            return outcome(False, RULE_OUTSIDE_WINDOW,
                           f"Not charging: outside window ({now_label} UTC is not within cheap-rate window "
                           f"{tariff.describe()})")

        if not force_window_override:
            minutes_left = self.policy.minutes_until_window_end(now)
            if 0 < minutes_left <= self.end_of_window_margin_minutes:
                return outcome(False, RULE_WINDOW_END_MARGIN,
                               f"Not charging: too close to window end - avoid overrun ({minutes_left}min until "
                               f"{format_minutes(tariff.end_minutes)} UTC, margin {self.end_of_window_margin_minutes}min)")

        final_target = forecast_data.final_target_soc_pct
        if soc >= final_target:
            return outcome(False, RULE_SOC_AT_TARGET,
                           f"SOC {_num(soc)}% is at/above target {final_target:.1f}%")

        consumption = telemetry.consumption_watts
        if consumption is not None:
            if not is_currently_charging and consumption > self.consumption_start_threshold_w:
                return outcome(False, RULE_CONSUMPTION_START,
                               f"Consumption {_num(consumption)}W exceeds start threshold "
                               f"{_num(self.consumption_start_threshold_w)}W - consumption too high to start")
            if is_currently_charging and consumption > self.consumption_stop_threshold_w:
                return outcome(False, RULE_CONSUMPTION_CONTINUE,
                               f"Consumption {_num(consumption)}W exceeds stop threshold "
                               f"{_num(self.consumption_stop_threshold_w)}W - consumption too high to continue")

        window_note = "forced window" if force_window_override else f"cheap-rate window {tariff.describe()}"
        consumption_note = f", consumption {_num(consumption)}W" if consumption is not None else ""
        return outcome(True, RULE_APPROVED,
                       f"Charging approved: SOC {_num(soc)}% is below target {final_target:.1f}% "
                       f"in {window_note}{consumption_note}")

    def _decide_dynamic_price(self, telemetry: Telemetry, now: datetime, is_currently_charging: bool,
                              force_window_override: bool, prices: Optional[Sequence[PricePoint]],
                              forecast_data: ForecastData) -> Decision:
        result = price_is_cheap(prices or [], now, telemetry.state_of_charge_pct, self.policy.tariff)
        rationale = f"Dynamic price {result.reason}: {result.detail}"
        return Decision(result.should_charge, rationale, forecast_data,
                        f"{RULE_DYNAMIC_PRICE}:{result.reason}", TariffMode.DYNAMIC_PRICE,
                        result.current_price)

#!/usr/bin/env python3
"""
Human-readable status output for operators.

`render_status_banner` is printed after every decision cycle;
`render_forecast_view` backs the --status command and shows how the solar
forecast changed tonight's charging target.
"""

import calendar
from datetime import datetime
from typing import List, Optional

from charge_decision_engine import Decision
from config_loader import format_minutes
from forecast_adjuster import estimate_forecast_savings
from inverter.models.telemetry import Telemetry
from tariff_window_policy import TariffMode, TariffWindowPolicy, minutes_of_day_utc, to_utc

BANNER_WIDTH = 50


def battery_icon(soc_pct: Optional[float]) -> str:
    if soc_pct is None:
        return '❓'
    if soc_pct >= 80:
        return '🟢'
    if soc_pct >= 50:
        return '🟡'
    if soc_pct >= 20:
        return '🟠'
    return '🔴'


def consumption_icon(watts: Optional[float]) -> str:
    if watts is None:
        return '❓'
    if watts > 2000:
        return '⚡'
    if watts > 1000:
        return '💡'
    return '🏠'


def pv_icon(watts: float) -> str:
    if watts > 1000:
        return '☀️'
    if watts > 0:
        return '🌤️'
    return '🌙'


def forecast_icon(kwh: Optional[float]) -> str:
    if kwh is None:
        return '❓'
    if kwh > 5:
        return '☀️'
    if kwh > 1:
        return '⛅'
    return '☁️'


def _reading(value: Optional[float], unit: str) -> str:
    return "N/A" if value is None else f"{value:g} {unit}"


def window_status(policy: TariffWindowPolicy, now: datetime, force_window: bool) -> str:
    if policy.mode is TariffMode.DYNAMIC_PRICE:
        return f"📈 Tariff: {policy.describe_window()}"
    if force_window:
        return "🔧 Cheap-rate window: FORCED WINDOW MODE"
    in_window = policy.is_cheap_rate_now(now)
    return f"⏰ Cheap-rate window {policy.describe_window()}: {'Cheap rate' if in_window else 'High rate'}"


def render_status_banner(telemetry: Telemetry, decision: Decision, policy: TariffWindowPolicy,
                         now: datetime, force_window: bool = False,
                         hardware_charging: Optional[bool] = None) -> str:
    """Per-cycle status block."""
    fd = decision.forecast_data
    lines: List[str] = ["", "🔋 BATTERY MANAGEMENT STATUS", "═" * BANNER_WIDTH]

    soc = telemetry.state_of_charge_pct
    lines.append(f"{battery_icon(soc)} Battery SOC: {'N/A' if soc is None else f'{soc:g}%'}")
    if telemetry.battery_capacity_kwh:
        lines.append(f"📦 Battery Capacity: {telemetry.battery_capacity_kwh:g} kWh")

    consumption = telemetry.consumption_watts
    lines.append(f"{consumption_icon(consumption)} Current Consumption: {_reading(consumption, 'W')}")
    if telemetry.pv_generation_watts is not None:
        lines.append(f"{pv_icon(telemetry.pv_generation_watts)} PV Generation: {telemetry.pv_generation_watts:g} W")

    if hardware_charging is None:
        lines.append("❓ Currently Charging: UNKNOWN")
    else:
        lines.append(f"{'🔌' if hardware_charging else '🔋'} Currently Charging: {'YES' if hardware_charging else 'NO'}")

    forecast = telemetry.forecasted_generation_kwh
    lines.append(f"{forecast_icon(forecast)} Solar Forecast: {'N/A' if forecast is None else f'{forecast:.1f} kWh'}")

    lines.append(f"📅 {calendar.month_name[to_utc(now).month]} Targets:")
    lines.append(f"🌅 Morning Target: {fd.morning_target_pct:g}% (daily minimum, no forecast adjustment)")
    lines.append(f"🌙 Evening Target: {fd.evening_target_pct:g}% (overnight needs)")
    if fd.forecast_adjustment_pct > 0 and fd.adjusted_target_soc_pct != fd.evening_target_pct:
        lines.append(f"🌙 Evening Adjusted: {fd.adjusted_target_soc_pct:.1f}% "
                     f"(reduced by {fd.forecast_adjustment_pct:.1f}% due to {forecast:g}kWh forecast)")
    lines.append(f"🎯 Final Target: {fd.final_target_soc_pct:.1f}% (higher of morning "
                 f"{fd.morning_target_pct:g}% and evening {fd.adjusted_target_soc_pct:.1f}%)")

    lines.append(window_status(policy, now, force_window))
    if decision.current_price is not None:
        lines.append(f"💷 Current price: {decision.current_price:.2f}p/kWh")

    lines.append("")
    if decision.should_charge:
        lines.append("🟢 DECISION: START CHARGING")
    else:
        lines.append("🔴 DECISION: STOP/CONTINUE NO CHARGING")
    lines.append(f"BECAUSE {decision.rationale}")

    if hardware_charging is True and not decision.should_charge:
        lines.append("⚠️  SAFEGUARD: Battery is in force charge mode but the decision is not to charge")
        lines.append("🛡️  Issuing stop so the battery is not left in force charge")

    lines.append("═" * BANNER_WIDTH)
    return "\n".join(lines)


def render_forecast_view(telemetry: Telemetry, decision: Decision, policy: TariffWindowPolicy,
                         now: datetime, assumed_capacity_kwh: float,
                         forecast_multiplier_pct: float = 100.0) -> str:
    """Forecast-focused status view with the estimated savings from the solar forecast."""
    fd = decision.forecast_data
    soc = telemetry.state_of_charge_pct
    forecast = telemetry.forecasted_generation_kwh
    lines: List[str] = ["🔋 SMA Octopus Charging Forecast", "=" * 32, "", "=== CURRENT STATUS ==="]

    pv = telemetry.pv_generation_watts
    consumption = telemetry.consumption_watts
    lines.append(f"☀️ PV power generation: {'N/A' if pv is None else f'{pv / 1000:.2f} kW'}")
    lines.append(f"⚡ Total consumption: {'N/A' if consumption is None else f'{consumption / 1000:.2f} kW'}")
    lines.append(f"🔋 Battery state of charge: {'N/A' if soc is None else f'{soc:g}%'}")
    lines.append(f"🔌 Forced charging: {'Yes' if telemetry.observed_hardware_charging else 'No'}")

    lines.append("")
    lines.append("=== TARIFF STATUS ===")
    lines.append(f"⏰ Current time: {format_minutes(minutes_of_day_utc(now))} (UTC)")
    lines.append(f"🕐 Tariff: {policy.describe_window()}")
    if policy.mode is TariffMode.FIXED_WINDOW:
        lines.append(f"🪟 Currently in window: {'✅ YES' if policy.is_cheap_rate_now(now) else '❌ NO'}")

    lines.append("")
    lines.append("=== SOLAR FORECAST ===")
    if forecast is not None and forecast > 0:
        lines.append(f"☀️ Expected generation today: {forecast:g} kWh")
        if forecast_multiplier_pct != 100:
            lines.append(f"🔧 Forecast adjustment: {forecast_multiplier_pct:g}% applied")
    else:
        lines.append("⚠️ No forecast data available")

    lines.append("")
    lines.append("=== CHARGING DECISION ===")
    lines.append(f"🎯 Original target SOC for end-of-day: {fd.original_target_soc_pct:g}%")
    if fd.adjusted_target_soc_pct != fd.original_target_soc_pct:
        lines.append(f"🎯 Adjusted target SOC: {fd.adjusted_target_soc_pct:.1f}%")
    lines.append(f"⚡ Should force charge: {'✅ YES' if decision.should_charge else '❌ NO'}")
    lines.append(f"📈 Forecast impact: Reduces target SOC by {fd.forecast_adjustment_pct:.1f}%")

    has_forecast = forecast is not None and forecast > 0
    if has_forecast and fd.forecast_adjustment_pct == 0 and soc is not None and soc >= fd.original_target_soc_pct:
        lines.append(f"💡 Note: No target reduction needed as battery SOC ({soc:g}%) is already above "
                     f"original target ({fd.original_target_soc_pct:g}%)")

    if has_forecast and not decision.should_charge and soc is not None and soc < fd.original_target_soc_pct:
        savings = estimate_forecast_savings(fd.original_target_soc_pct, fd.adjusted_target_soc_pct,
                                            assumed_capacity_kwh, policy.rate_pence_per_kwh)
        lines.append(f"💰 Estimated savings from forecast: {savings['saved_kwh']:.2f} kWh "
                     f"(£{savings['saved_cost']:.2f})")
        lines.append(f"💡 Reason: {forecast:g} kWh solar expected, so reduced charging needed")

    return "\n".join(lines)

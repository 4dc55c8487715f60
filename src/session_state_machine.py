#!/usr/bin/env python3
"""
SMA Octopus Battery Manager - Session State Machine

Owns the charging session lifecycle (Idle <-> Charging). Each cycle it takes
the engine's decision, the telemetry snapshot and what the hardware reports,
then issues at most one command, replaces the persisted session record and
describes what should be announced.

Hardware truth wins over the persisted belief whenever the inverter reports
its charging flag. The persisted record is only trusted when it does not.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from charge_decision_engine import Decision, ForecastData
from database.storage_interface import SessionStateStore
from inverter.models.telemetry import Telemetry, optional_float
from inverter.ports.command_executor_port import CommandExecutorPort

logger = logging.getLogger(__name__)

ANOMALY_STUCK_CHARGING = "stuck_charging"
ANOMALY_MISSING_TELEMETRY = "missing_telemetry"
ANOMALY_COMMAND_FAILED = "command_failed"


class ChargeCommandError(Exception):
    """The inverter rejected or did not confirm a charge command."""

    def __init__(self, message: str, anomaly: Optional["Anomaly"] = None):
        super().__init__(message)
        self.anomaly = anomaly


class SessionPersistenceError(Exception):
    """The session record could not be written to durable storage."""


class ChargeCommand(Enum):
    START_CHARGE = "start_charge"
    STOP_CHARGE = "stop_charge"
    NO_OP = "no_op"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class SessionState:
    """
    Persisted charging session record.

    The session start fields are set exactly when is_charging is true, and
    start_notification_sent can only be true during a session.
    """
    is_charging: bool = False
    session_start_time: Optional[datetime] = None
    session_start_soc_pct: Optional[float] = None
    cached_battery_capacity_kwh: Optional[float] = None
    start_notification_sent: bool = False
    stop_verification_pending: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'is_charging': self.is_charging,
            'session_start_time': self.session_start_time.isoformat() if self.session_start_time else None,
            'session_start_soc_pct': self.session_start_soc_pct,
            'cached_battery_capacity_kwh': self.cached_battery_capacity_kwh,
            'start_notification_sent': self.start_notification_sent,
            'stop_verification_pending': self.stop_verification_pending,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionState':
        """
        Rebuild the record from storage, repairing broken invariants.

        The camelCase keys written by the earlier Node.js service
        (charging, startTime, startSOC, batteryCapacity,
        chargingStartNotificationSent) are still understood.

        Raises:
            ValueError: If the session start time is not an ISO timestamp
        """
        def pick(key: str, legacy_key: str) -> Any:
            return data[key] if key in data else data.get(legacy_key)

        is_charging = bool(pick('is_charging', 'charging'))
        start_time = _parse_timestamp(pick('session_start_time', 'startTime'))
        start_soc = optional_float(pick('session_start_soc_pct', 'startSOC'))
        capacity = optional_float(pick('cached_battery_capacity_kwh', 'batteryCapacity'))
        notified = bool(pick('start_notification_sent', 'chargingStartNotificationSent'))
        pending = bool(data.get('stop_verification_pending', False))

        if capacity is not None and capacity <= 0:
            capacity = None

        if is_charging and (start_time is None or start_soc is None):
            logger.warning("Persisted session is marked charging but has no start time/SOC, treating as idle")
            is_charging = False

        if not is_charging:
            start_time = None
            start_soc = None
            notified = False

        return cls(
            is_charging=is_charging,
            session_start_time=start_time,
            session_start_soc_pct=start_soc,
            cached_battery_capacity_kwh=capacity,
            start_notification_sent=notified,
            stop_verification_pending=pending,
        )


@dataclass(frozen=True)
class StartNotice:
    started_at: datetime
    start_soc_pct: Optional[float]
    rationale: str
    forecast_data: Optional[ForecastData] = None
    consumption_watts: Optional[float] = None
    adopted: bool = False


@dataclass(frozen=True)
class StopNotice:
    """
    Session summary sent when charging ends.

    Every figure is optional; None means it could not be computed and must be
    shown as unknown rather than zero.
    """
    stopped_at: datetime
    energy_kwh: Optional[float]
    soc_increase_pct: Optional[float]
    estimated_cost: Optional[float]
    forecast_data: Optional[ForecastData] = None
    start_soc_pct: Optional[float] = None
    end_soc_pct: Optional[float] = None
    duration_minutes: Optional[float] = None
    rationale: str = ""


@dataclass(frozen=True)
class Anomaly:
    kind: str
    details: str
    detected_at: Optional[datetime] = None


Notification = Union[StartNotice, StopNotice]


@dataclass(frozen=True)
class TransitionResult:
    command: ChargeCommand
    notification: Optional[Notification]
    anomaly: Optional[Anomaly]
    state: SessionState


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionStateMachine:
    """Charging session lifecycle with persisted state and idempotent notices."""

    def __init__(self, store: SessionStateStore, command_executor: CommandExecutorPort,
                 rate_pence_per_kwh: float, clock: Callable[[], datetime] = _utc_now):
        self.store = store
        self.command_executor = command_executor
        self.rate_pence_per_kwh = rate_pence_per_kwh
        self._clock = clock
        self._state = SessionState()

    @property
    def state(self) -> SessionState:
        return self._state

    async def load(self) -> SessionState:
        """Read the persisted session once at startup; anything unusable means Idle."""
        data = await self.store.load_session_state()
        if not data:
            self._state = SessionState()
        else:
            try:
                self._state = SessionState.from_dict(data)
            except (TypeError, ValueError) as e:
                logger.error(f"Persisted session state is unreadable ({e}), starting from Idle")
                self._state = SessionState()

        logger.info(f"Loaded session state: {'charging' if self._state.is_charging else 'idle'}"
                    f"{' (stop verification pending)' if self._state.stop_verification_pending else ''}")
        return self._state

    def detect_stuck_charging(self, decision: Decision, hardware_charging_observed: Optional[bool],
                              now: Optional[datetime] = None) -> Optional[Anomaly]:
        """Hardware still charging after a stop we believed succeeded."""
        if not self._state.stop_verification_pending:
            return None
        if hardware_charging_observed is True and not decision.should_charge:
            return Anomaly(
                ANOMALY_STUCK_CHARGING,
                "Inverter still reports charging after a successful stop command; re-issuing stop",
                now or self._clock(),
            )
        return None

    async def apply(self, decision: Decision, telemetry: Telemetry,
                    hardware_charging_observed: Optional[bool],
                    now: Optional[datetime] = None) -> TransitionResult:
        """
        Drive one cycle of the session lifecycle.

        Args:
            decision: This cycle's engine decision
            telemetry: This cycle's snapshot
            hardware_charging_observed: Inverter charging flag, None when unknown
            now: Transition time (defaults to the clock)

        Raises:
            ChargeCommandError: If the inverter did not confirm the command
            SessionPersistenceError: If the new record could not be written
        """
        now = now or self._clock()
        current = self._state
        effective_charging = (hardware_charging_observed if hardware_charging_observed is not None
                              else current.is_charging)

        anomaly = self.detect_stuck_charging(decision, hardware_charging_observed, now)
        pending = current.stop_verification_pending
        if anomaly:
            logger.warning(f"⚠️ SAFEGUARD: {anomaly.details}")
        elif pending and (hardware_charging_observed is False or decision.should_charge):
            pending = False

        if decision.should_charge and not effective_charging:
            return await self._start(decision, telemetry, now, replace(current, stop_verification_pending=False))

        if not decision.should_charge and effective_charging:
            return await self._stop(decision, telemetry, now, current, anomaly)

        if decision.should_charge and effective_charging and not current.is_charging:
            logger.info("Inverter is already charging without a recorded session, adopting it")
            new_state = self._begin_session(replace(current, stop_verification_pending=False), telemetry, now)
            return await self._commit_without_command(new_state, self._start_notice(current, decision, telemetry,
                                                                                    now, adopted=True), anomaly)

        if not decision.should_charge and not effective_charging and current.is_charging:
            logger.info("Inverter is idle but a session is recorded, closing it")
            notice = self._stop_notice(decision, telemetry, now, current)
            return await self._commit_without_command(self._end_session(current, pending=False), notice, anomaly)

        if decision.should_charge and current.is_charging and not current.start_notification_sent:
            notice = self._start_notice(current, decision, telemetry, now)
            new_state = replace(current, start_notification_sent=True, stop_verification_pending=pending)
            return await self._commit_without_command(new_state, notice, anomaly)

        if pending != current.stop_verification_pending:
            return await self._commit_without_command(replace(current, stop_verification_pending=pending),
                                                      None, anomaly)

        return TransitionResult(ChargeCommand.NO_OP, None, anomaly, current)

    async def _start(self, decision: Decision, telemetry: Telemetry, now: datetime,
                     current: SessionState) -> TransitionResult:
        logger.info(f"🔌 Starting charge session at SOC {telemetry.state_of_charge_pct}%")
        await self._issue(ChargeCommand.START_CHARGE)

        new_state = self._begin_session(current, telemetry, now)
        notice = self._start_notice(current, decision, telemetry, now)
        await self._persist(new_state)
        return TransitionResult(ChargeCommand.START_CHARGE, notice, None, new_state)

    async def _stop(self, decision: Decision, telemetry: Telemetry, now: datetime,
                    current: SessionState, anomaly: Optional[Anomaly]) -> TransitionResult:
        logger.info(f"🛑 Stopping charge at SOC {telemetry.state_of_charge_pct}%")
        await self._issue(ChargeCommand.STOP_CHARGE, anomaly)

        # A stop re-issued after the session was closed carries no summary
        notice = self._stop_notice(decision, telemetry, now, current) if current.is_charging else None
        new_state = self._end_session(current, pending=True)
        await self._persist(new_state)
        return TransitionResult(ChargeCommand.STOP_CHARGE, notice, anomaly, new_state)

    async def _commit_without_command(self, new_state: SessionState, notice: Optional[Notification],
                                      anomaly: Optional[Anomaly]) -> TransitionResult:
        await self._persist(new_state)
        return TransitionResult(ChargeCommand.NO_OP, notice, anomaly, new_state)

    async def _issue(self, command: ChargeCommand, anomaly: Optional[Anomaly] = None) -> None:
        if command is ChargeCommand.START_CHARGE:
            ok = await self.command_executor.start_charging()
        else:
            ok = await self.command_executor.stop_charging()
        if not ok:
            raise ChargeCommandError(f"Inverter did not confirm {command.value}", anomaly)

    async def _persist(self, new_state: SessionState) -> None:
        if not await self.store.save_session_state(new_state.to_dict()):
            raise SessionPersistenceError("Failed to save session state")
        self._state = new_state

    def _begin_session(self, current: SessionState, telemetry: Telemetry, now: datetime) -> SessionState:
        capacity = current.cached_battery_capacity_kwh
        if capacity is None and telemetry.battery_capacity_kwh and telemetry.battery_capacity_kwh > 0:
            capacity = telemetry.battery_capacity_kwh
        return replace(
            current,
            is_charging=True,
            session_start_time=now,
            session_start_soc_pct=telemetry.state_of_charge_pct,
            cached_battery_capacity_kwh=capacity,
            start_notification_sent=True,
        )

    @staticmethod
    def _end_session(current: SessionState, pending: bool) -> SessionState:
        return replace(
            current,
            is_charging=False,
            session_start_time=None,
            session_start_soc_pct=None,
            start_notification_sent=False,
            stop_verification_pending=pending,
        )

    @staticmethod
    def _start_notice(current: SessionState, decision: Decision, telemetry: Telemetry, now: datetime,
                      adopted: bool = False) -> Optional[StartNotice]:
        if current.start_notification_sent:
            return None
        return StartNotice(
            started_at=now,
            start_soc_pct=telemetry.state_of_charge_pct,
            rationale=decision.rationale,
            forecast_data=decision.forecast_data,
            consumption_watts=telemetry.consumption_watts,
            adopted=adopted,
        )

    def _stop_notice(self, decision: Decision, telemetry: Telemetry, now: datetime,
                     current: SessionState) -> StopNotice:
        soc = telemetry.state_of_charge_pct
        start_soc = current.session_start_soc_pct

        soc_increase = None
        if soc is not None and start_soc is not None:
            soc_increase = soc - start_soc

        energy_kwh = None
        capacity = current.cached_battery_capacity_kwh or telemetry.battery_capacity_kwh
        if soc_increase is not None and capacity:
            energy_kwh = soc_increase / 100 * capacity
            if energy_kwh <= 0:
                energy_kwh = None

        estimated_cost = energy_kwh * self.rate_pence_per_kwh / 100 if energy_kwh is not None else None

        duration_minutes = None
        if current.session_start_time is not None:
            duration_minutes = (now - current.session_start_time).total_seconds() / 60

        logger.info(f"Session summary: energy {energy_kwh if energy_kwh is not None else 'unknown'} kWh, "
                    f"SOC change {soc_increase if soc_increase is not None else 'unknown'}%")
        return StopNotice(
            stopped_at=now,
            energy_kwh=energy_kwh,
            soc_increase_pct=soc_increase,
            estimated_cost=estimated_cost,
            forecast_data=decision.forecast_data,
            start_soc_pct=start_soc,
            end_soc_pct=soc,
            duration_minutes=duration_minutes,
            rationale=decision.rationale,
        )

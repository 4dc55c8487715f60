#!/usr/bin/env python3
"""
Master Coordinator for the SMA Octopus Battery Manager
Runs the decision cycle on a schedule and wires the components together.

Each cycle:
- Collects a telemetry snapshot from the inverter portal
- Fetches tariff prices (dynamic price mode only)
- Asks the charge decision engine whether to charge
- Lets the session state machine issue the command and persist the session
- Sends session notices and anomaly alerts, records the decision

This is the only place where failures are turned into alerts; the loop
keeps running after any single failed cycle.
"""

import asyncio
import logging
import argparse
import os
import signal
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

# Add current directory to path for imports
current_dir = Path(__file__).parent
sys.path.insert(0, str(current_dir))

from config_loader import ConfigurationError, DEFAULT_CONFIG_PATH, load_config
from charge_decision_engine import ChargeDecisionEngine, Decision, MissingTelemetryError
from database.storage_factory import StorageFactory
from database.storage_interface import SessionStateStore
from inverter.factory.inverter_factory import InverterFactory
from inverter.models.telemetry import Telemetry
from inverter.ports.command_executor_port import CommandExecutorPort
from inverter.ports.data_collector_port import DataCollectorPort
from inverter.ports.price_provider_port import PriceProviderPort
from notifier import NotificationPort, OutboxNotifier
from octopus_price_collector import OctopusPriceCollector
from process_lock import LockAcquisitionError, ProcessLock
from session_state_machine import (
    ANOMALY_COMMAND_FAILED,
    ANOMALY_MISSING_TELEMETRY,
    Anomaly,
    ChargeCommand,
    ChargeCommandError,
    SessionPersistenceError,
    SessionStateMachine,
    StartNotice,
    StopNotice,
    TransitionResult,
)
from status_report import render_forecast_view, render_status_banner
from tariff_window_policy import TariffMode

project_root = Path(__file__).parent.parent
logger = logging.getLogger(__name__)

ANOMALY_PERSISTENCE_FAILED = "persistence_failed"
ANOMALY_TELEMETRY_UNAVAILABLE = "telemetry_unavailable"


def setup_logging(config: Dict[str, Any], debug: bool = False) -> None:
    """Configure root logging: log file plus console."""
    log_cfg = config.get('logging', {}) or {}
    log_file = Path(log_cfg.get('file') or project_root / "logs" / "battery_manager.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level_name = 'DEBUG' if debug else str(log_cfg.get('level', 'INFO')).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ],
        force=True
    )


class SystemState(Enum):
    """Coordinator operational states"""
    INITIALIZING = "initializing"
    MONITORING = "monitoring"
    CHARGING = "charging"
    ERROR = "error"


class MasterCoordinator:
    """Master coordinator for the battery manager"""

    def __init__(self, config_path: Optional[str] = None, config: Optional[Dict[str, Any]] = None,
                 force_window: bool = False,
                 data_collector: Optional[DataCollectorPort] = None,
                 command_executor: Optional[CommandExecutorPort] = None,
                 price_provider: Optional[PriceProviderPort] = None,
                 notifier: Optional[NotificationPort] = None,
                 storage: Optional[SessionStateStore] = None):
        """
        Initialize the master coordinator.

        Components that are not injected are built from configuration in
        `initialize()`.

        Raises:
            ConfigurationError: If the configuration is missing or invalid
        """
        self.config_path = config_path or str(DEFAULT_CONFIG_PATH)
        self.config = config if config is not None else load_config(self.config_path)

        # System state
        self.state = SystemState.INITIALIZING
        self.is_running = False
        self.start_time: Optional[datetime] = None
        self.last_decision_time: Optional[datetime] = None
        self.last_decision: Optional[Decision] = None
        self.last_telemetry: Optional[Telemetry] = None
        self.cycle_count = 0
        self.failed_cycle_count = 0
        self._stop_event: Optional[asyncio.Event] = None

        coordinator_cfg = self.config.get('coordinator', {}) or {}
        self.check_interval_minutes = float(coordinator_cfg.get('check_interval_minutes', 5))
        self.force_window = force_window or bool(self.config.get('charging', {}).get('force_window', False))
        self.lock = ProcessLock(
            str(project_root / coordinator_cfg.get('lock_file', '.battery_manager.lock')),
            coordinator_cfg.get('lock_timeout_minutes', 15),
        )

        # Pure decision components fail fast on bad configuration
        self.decision_engine = ChargeDecisionEngine(self.config)

        # Component managers
        self.data_collector = data_collector
        self.command_executor = command_executor
        self.price_provider = price_provider
        self.notifier = notifier
        self.storage = storage
        self.state_machine: Optional[SessionStateMachine] = None

    async def initialize(self) -> bool:
        """Initialize all system components"""
        logger.info("Initializing Master Coordinator...")

        if self.storage is None:
            self.storage = StorageFactory.create_storage(self.config.get('data_storage', {}) or {})
        if not await self.storage.connect():
            logger.error("Failed to connect session storage")
            self.state = SystemState.ERROR
            return False

        if self.data_collector is None or self.command_executor is None:
            try:
                inverter = InverterFactory.create_from_yaml_config(self.config)
            except ValueError as e:
                logger.error(f"Failed to create inverter adapter: {e}")
                self.state = SystemState.ERROR
                return False
            self.data_collector = self.data_collector or inverter
            self.command_executor = self.command_executor or inverter

        if self.price_provider is None and self.decision_engine.tariff_mode is TariffMode.DYNAMIC_PRICE:
            self.price_provider = OctopusPriceCollector(self.config)

        if self.notifier is None:
            self.notifier = OutboxNotifier(self.config)

        self.state_machine = SessionStateMachine(
            self.storage, self.command_executor, self.decision_engine.rate_pence_per_kwh)
        session = await self.state_machine.load()

        self.state = SystemState.CHARGING if session.is_charging else SystemState.MONITORING
        logger.info("Master Coordinator initialized successfully")
        return True

    def _signal_handler(self, signum: int) -> None:
        """Handle shutdown signals gracefully"""
        logger.info(f"🛑 Received signal {signum}, initiating graceful shutdown...")
        self.is_running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_cycle(self, now: Optional[datetime] = None, dry_run: bool = False) -> Optional[Dict[str, Any]]:
        """
        Run one decision cycle.

        Args:
            now: Cycle time (defaults to the current UTC time)
            dry_run: Decide and report without touching the hardware or the session

        Returns:
            The decision record, or None if the cycle failed before a decision
        """
        now = now or datetime.now(timezone.utc)
        self.cycle_count += 1
        if self.force_window:
            logger.info("🔧 FORCE WINDOW MODE: Simulating the cheap-rate window")
        logger.info(f"Running battery management check at {now.isoformat()}")

        try:
            telemetry = await self.data_collector.collect_telemetry()
        except RuntimeError as e:
            logger.error(f"Telemetry collection failed: {e}")
            await self._fail_cycle(Anomaly(ANOMALY_TELEMETRY_UNAVAILABLE, str(e), now))
            return None
        self.last_telemetry = telemetry

        hardware_charging = telemetry.observed_hardware_charging
        effective_charging = (hardware_charging if hardware_charging is not None
                              else self.state_machine.state.is_charging)

        prices = None
        if self.decision_engine.tariff_mode is TariffMode.DYNAMIC_PRICE:
            prices = await self.price_provider.fetch_prices(now)

        try:
            decision = self.decision_engine.decide(telemetry, now, effective_charging, self.force_window, prices)
        except MissingTelemetryError as e:
            logger.error(f"Cycle aborted: {e}")
            await self._fail_cycle(Anomaly(ANOMALY_MISSING_TELEMETRY, str(e), now))
            return None

        logger.info(render_status_banner(telemetry, decision, self.decision_engine.policy, now,
                                         self.force_window, hardware_charging))
        self.last_decision = decision
        self.last_decision_time = now

        if dry_run:
            return self._decision_record(now, decision, telemetry, None)

        try:
            result = await self.state_machine.apply(decision, telemetry, hardware_charging, now)
        except ChargeCommandError as e:
            logger.error(f"❌ Charge command failed: {e}")
            if e.anomaly is not None:
                await self.notifier.send_anomaly(e.anomaly)
            await self._fail_cycle(Anomaly(ANOMALY_COMMAND_FAILED, str(e), now))
            record = self._decision_record(now, decision, telemetry, None)
            record['command'] = 'failed'
            record['anomaly'] = e.anomaly.kind if e.anomaly else None
            await self.storage.save_decision(record)
            return record
        except SessionPersistenceError as e:
            logger.error(f"❌ Session state not saved: {e}")
            await self._fail_cycle(Anomaly(ANOMALY_PERSISTENCE_FAILED, str(e), now))
            return None

        await self._deliver(result)

        record = self._decision_record(now, decision, telemetry, result)
        await self.storage.save_decision(record)

        self.state = SystemState.CHARGING if result.state.is_charging else SystemState.MONITORING
        if result.command is ChargeCommand.NO_OP:
            logger.info("No command needed - charging state already matches the decision")
        return record

    async def _fail_cycle(self, anomaly: Anomaly) -> None:
        self.failed_cycle_count += 1
        self.state = SystemState.ERROR
        await self.notifier.send_anomaly(anomaly)

    async def _deliver(self, result: TransitionResult) -> None:
        if result.anomaly is not None:
            await self.notifier.send_anomaly(result.anomaly)
        if isinstance(result.notification, StartNotice):
            await self.notifier.send_start_notice(result.notification)
        elif isinstance(result.notification, StopNotice):
            await self.notifier.send_stop_notice(result.notification)
        elif result.command is ChargeCommand.START_CHARGE:
            logger.info("⚠️ Charging already in progress - no duplicate notification sent")

    def _decision_record(self, now: datetime, decision: Decision, telemetry: Telemetry,
                         result: Optional[TransitionResult]) -> Dict[str, Any]:
        record = decision.to_dict()
        record.update({
            'timestamp': now.isoformat(),
            'state_of_charge': telemetry.state_of_charge_pct,
            'command': result.command.value if result else None,
            'telemetry': telemetry.to_dict(),
            'force_window': self.force_window,
        })
        if result is not None:
            record['session'] = result.state.to_dict()
            record['anomaly'] = result.anomaly.kind if result.anomaly else None
        return record

    async def start(self):
        """Start the coordinator service and run until a shutdown signal"""
        self.lock.acquire()
        try:
            if not await self.initialize():
                logger.error("Failed to initialize, cannot start service")
                return

            self.is_running = True
            self.start_time = datetime.now(timezone.utc)
            self._stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._signal_handler, sig)

            logger.info("Master Coordinator started successfully")
            await self._coordination_loop()
        finally:
            await self.shutdown()

    async def _coordination_loop(self):
        """Main coordination loop"""
        logger.info("Starting coordination loop...")

        while self.is_running:
            try:
                self.lock.refresh()
                await self.run_cycle()
            except Exception as e:
                self.failed_cycle_count += 1
                self.state = SystemState.ERROR
                logger.exception(f"Error in coordination loop: {e}")

            if not self.is_running:
                break

            logger.info(f"⏰ Next check scheduled in {self.check_interval_minutes:g} minutes")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.check_interval_minutes * 60)
            except asyncio.TimeoutError:
                pass

    async def run_once(self, dry_run: bool = False) -> Optional[Dict[str, Any]]:
        """Single cycle; the process lock is only taken when commands may be sent"""
        if not dry_run:
            self.lock.acquire()
        try:
            if not await self.initialize():
                logger.error("Failed to initialize coordinator")
                return None
            self.start_time = datetime.now(timezone.utc)
            return await self.run_cycle(dry_run=dry_run)
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Gracefully shutdown the coordinator"""
        logger.info("Shutting down Master Coordinator...")
        self.is_running = False

        if self.storage:
            await self.storage.disconnect()
        self.lock.release()

        logger.info("✅ Master Coordinator shutdown complete")

    def get_status(self) -> Dict[str, Any]:
        """Get current system status"""
        now = datetime.now(timezone.utc)
        return {
            'state': self.state.value,
            'is_running': self.is_running,
            'uptime_seconds': (now - self.start_time).total_seconds() if self.start_time else 0,
            'last_decision': self.last_decision_time.isoformat() if self.last_decision_time else None,
            'last_rationale': self.last_decision.rationale if self.last_decision else None,
            'cycle_count': self.cycle_count,
            'failed_cycle_count': self.failed_cycle_count,
            'tariff_mode': self.decision_engine.tariff_mode.value,
            'force_window': self.force_window,
            'session': self.state_machine.state.to_dict() if self.state_machine else None,
        }


def parse_arguments(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='SMA Octopus Battery Manager - grid charging on cheap Octopus rates',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the service (checks every check_interval_minutes)
  python master_coordinator.py

  # Start with custom config
  python master_coordinator.py --config my_config.yaml

  # Single decision cycle, then exit
  python master_coordinator.py --once

  # Test charging outside the cheap-rate window
  python master_coordinator.py --once --force-window

  # Show forecast and decision without touching the inverter
  python master_coordinator.py --status
        """
    )

    parser.add_argument(
        '--config', '-c',
        default=str(DEFAULT_CONFIG_PATH),
        help='Configuration file path (default: config/master_coordinator_config.yaml)'
    )

    parser.add_argument(
        '--once', '-o',
        action='store_true',
        help='Run a single decision cycle and exit'
    )

    parser.add_argument(
        '--force-window', '-f',
        action='store_true',
        help='Behave as if inside the cheap-rate window (testing)'
    )

    parser.add_argument(
        '--status', '-s',
        action='store_true',
        help='Decide and print the forecast report without sending commands'
    )

    parser.add_argument(
        '--debug', '-d',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Main function"""
    args = parse_arguments(argv)

    if not Path(args.config).exists():
        print(f"Configuration file {args.config} not found!")
        return 1

    try:
        config = load_config(args.config)
        setup_logging(config, debug=args.debug or os.environ.get('DEBUG') == 'true')
        coordinator = MasterCoordinator(args.config, config=config, force_window=args.force_window)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 1

    try:
        if args.status:
            record = await coordinator.run_once(dry_run=True)
            if record is None or coordinator.last_decision is None:
                print("Failed to produce a decision - see log for details")
                return 1
            print(render_forecast_view(
                coordinator.last_telemetry, coordinator.last_decision, coordinator.decision_engine.policy,
                coordinator.last_decision_time, coordinator.decision_engine.forecast_adjuster.assumed_capacity_kwh,
                config.get('forecast', {}).get('multiplier_percent', 100)))
            return 0

        if args.once:
            print("🔋 SMA Octopus Battery Management System")
            print("📊 Mode: Single run")
            record = await coordinator.run_once()
            return 0 if record is not None else 1

        print("🔋 SMA Octopus Battery Management System")
        print("📊 Mode: Continuous operation")
        print(f"⏰ Check interval: {coordinator.check_interval_minutes:g} minutes")
        print("🛑 Press Ctrl+C to stop")
        await coordinator.start()
        return 0
    except LockAcquisitionError as e:
        print(f"🔒 {e}. Exiting.")
        return 1


def cli():
    """Console script entry point"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

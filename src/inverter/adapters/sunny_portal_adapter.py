"""
Sunny Portal Adapter

Adapter for SMA systems managed through the Sunny Portal web UI. The portal
is driven by external automation commands; this adapter only runs them,
enforces the timeout and interprets their exit status and output.
"""

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from ..models.inverter_config import InverterConfig
from ..models.telemetry import Telemetry
from ..ports.command_executor_port import CommandExecutorPort
from ..ports.data_collector_port import DataCollectorPort


class SunnyPortalAdapter(CommandExecutorPort, DataCollectorPort):
    """
    Sunny Portal adapter implementing the command and data collector ports.
    
    The data command must print a JSON object (stateOfCharge, consumption,
    capacity, isCharging, forecastedGeneration). The control command reads
    FORCE_CHARGE=on|off and exits 0 when the portal accepted the change.
    """
    
    def __init__(self, config: InverterConfig):
        """Initialize the adapter with its commands."""
        if config.vendor.lower() != "sma_portal":
            raise ValueError(f"Invalid vendor for Sunny Portal adapter: {config.vendor}")
        
        self.logger = logging.getLogger(self.__class__.__name__)
        self._config = config
    
    @property
    def vendor_name(self) -> str:
        """Get vendor name."""
        return "sma_portal"
    
    async def _run(self, argv: List[str], extra_env: Optional[Dict[str, str]] = None) -> Optional[Tuple[int, str, str]]:
        """
        Run a command with the configured timeout.
        
        Returns:
            (returncode, stdout, stderr), or None if it could not be run or timed out
        """
        env = {**os.environ, **self._config.env, **(extra_env or {})}
        timeout = self._config.command_timeout_seconds
        
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._config.working_dir,
                env=env,
            )
        except OSError as e:
            self.logger.error(f"Failed to launch {argv[0]}: {e}")
            return None
        
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.error(f"Command {' '.join(argv)} timed out after {timeout}s, killing it")
            process.kill()
            await process.wait()
            return None
        
        return (
            process.returncode,
            stdout.decode('utf-8', errors='replace'),
            stderr.decode('utf-8', errors='replace'),
        )
    
    async def _set_force_charge(self, enabled: bool) -> bool:
        flag = 'on' if enabled else 'off'
        self.logger.info(f"Setting forced charging {flag.upper()} via portal")
        
        result = await self._run(self._config.control_command, {'FORCE_CHARGE': flag})
        if result is None:
            return False
        
        returncode, _, stderr = result
        if returncode != 0:
            self.logger.error(f"Control command exited with {returncode}: {stderr.strip()[-500:]}")
            return False
        
        self.logger.info(f"Forced charging {flag.upper()} confirmed")
        return True
    
    async def start_charging(self) -> bool:
        """Enable forced grid charging."""
        return await self._set_force_charge(True)
    
    async def stop_charging(self) -> bool:
        """Disable forced grid charging."""
        return await self._set_force_charge(False)
    
    @staticmethod
    def parse_payload(stdout: str) -> Optional[Dict[str, Any]]:
        """Find the JSON object in the command output, preferring the last one."""
        for line in reversed(stdout.strip().splitlines()):
            line = line.strip()
            if not line.startswith('{'):
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                return data
        
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None
    
    async def collect_telemetry(self) -> Telemetry:
        """Run the data command and build the telemetry snapshot."""
        result = await self._run(self._config.data_command)
        if result is None:
            raise RuntimeError("Telemetry command could not be completed")
        
        returncode, stdout, stderr = result
        if returncode != 0:
            raise RuntimeError(f"Telemetry command exited with {returncode}: {stderr.strip()[-500:]}")
        
        data = self.parse_payload(stdout)
        if data is None:
            raise RuntimeError("Telemetry command printed no JSON object")
        
        telemetry = Telemetry.from_dict(data, self._config.forecast_multiplier_pct)
        self.logger.debug(f"Collected telemetry: {telemetry.to_dict()}")
        return telemetry

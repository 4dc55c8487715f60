"""
Inverter Configuration Models

Data structures for the inverter integration commands.
"""

import shlex
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


@dataclass
class InverterConfig:
    """
    Configuration for the inverter integration.
    
    The vendor portal is driven by external commands: one prints a telemetry
    JSON document, the other switches forced charging on or off depending on
    the FORCE_CHARGE environment variable.
    """
    
    # Vendor identification
    vendor: str = "sma_portal"
    
    # Commands, already split into argv lists
    data_command: List[str] = field(default_factory=list)
    control_command: List[str] = field(default_factory=list)
    
    # Directory the commands run in (None = current directory)
    working_dir: Optional[str] = None
    
    # Commands running longer than this are killed and treated as failed
    command_timeout_seconds: float = 120.0
    
    # Solar forecast scaling applied to collected telemetry
    forecast_multiplier_pct: float = 100.0
    
    # Extra environment for both commands
    env: Dict[str, str] = field(default_factory=dict)
    
    @staticmethod
    def _as_argv(value: Any) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            return shlex.split(value)
        return [str(part) for part in value]
    
    @classmethod
    def from_yaml_config(cls, config_dict: Dict[str, Any],
                         forecast_multiplier_pct: float = 100.0) -> 'InverterConfig':
        """
        Create InverterConfig from the YAML `inverter` section.
        
        Args:
            config_dict: Configuration dictionary from YAML
            forecast_multiplier_pct: Value of forecast.multiplier_percent
            
        Returns:
            InverterConfig instance
        """
        return cls(
            vendor=config_dict.get('vendor', 'sma_portal'),
            data_command=cls._as_argv(config_dict.get(
                'data_command', 'npx playwright test tests/getAllInverterData.test.js --reporter=line')),
            control_command=cls._as_argv(config_dict.get(
                'control_command', 'npx playwright test tests/sunnyPortalChargeControl.test.js --reporter=line')),
            working_dir=config_dict.get('working_dir'),
            command_timeout_seconds=config_dict.get('command_timeout_seconds', 120.0),
            forecast_multiplier_pct=forecast_multiplier_pct,
            env={str(k): str(v) for k, v in (config_dict.get('env') or {}).items()},
        )
    
    def validate(self) -> tuple[bool, Optional[str]]:
        """
        Validate configuration.
        
        Returns:
            Tuple of (is_valid, error_message)
        """
        if not self.vendor:
            return False, "Vendor must be specified"
        
        if not self.data_command:
            return False, "Data command must be specified"
        
        if not self.control_command:
            return False, "Control command must be specified"
        
        if self.command_timeout_seconds <= 0:
            return False, f"Command timeout must be positive: {self.command_timeout_seconds}"
        
        if self.forecast_multiplier_pct < 0:
            return False, f"Forecast multiplier must be non-negative: {self.forecast_multiplier_pct}"
        
        return True, None

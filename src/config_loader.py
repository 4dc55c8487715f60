#!/usr/bin/env python3
"""
Configuration loading for the SMA Octopus Battery Manager.

The YAML file is read exactly once at startup. Components receive the parsed
dict and pull their own section out of it with defaults, so a minimal file
only needs the keys that differ from the defaults. Anything that cannot be
interpreted raises ConfigurationError here, before the first cycle runs.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "master_coordinator_config.yaml"


class ConfigurationError(Exception):
    """Raised when the configuration cannot be used to run the service."""


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the YAML configuration file.

    Args:
        config_path: Path to the YAML file (defaults to config/master_coordinator_config.yaml)

    Returns:
        Parsed configuration with coordinator defaults filled in

    Raises:
        ConfigurationError: If the file is missing or is not a YAML mapping
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file {path} not found") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Configuration file {path} is not valid YAML: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping at the top level")

    apply_defaults(config)
    logger.info(f"Configuration loaded from {path}")
    return config


def apply_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in coordinator-level defaults only for missing keys."""
    coordinator = config.setdefault('coordinator', {})
    coordinator.setdefault('check_interval_minutes', 5)
    coordinator.setdefault('lock_file', '.battery_manager.lock')
    coordinator.setdefault('lock_timeout_minutes', 15)

    charging = config.setdefault('charging', {})
    charging.setdefault('force_window', False)

    config.setdefault('logging', {}).setdefault('level', 'INFO')
    return config


def parse_hhmm(value: Any, field_name: str = "time") -> int:
    """
    Convert an 'HH:MM' string into minutes since midnight.

    Raises:
        ConfigurationError: If the value is not a valid 24h clock time
    """
    try:
        hours_str, minutes_str = str(value).strip().split(':')
        hours, minutes = int(hours_str), int(minutes_str)
    except (ValueError, AttributeError) as e:
        raise ConfigurationError(f"{field_name} must be in HH:MM format, got {value!r}") from e

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ConfigurationError(f"{field_name} out of range: {value!r}")
    return hours * 60 + minutes


def format_minutes(minutes_of_day: int) -> str:
    """Render minutes since midnight as HH:MM."""
    return f"{minutes_of_day // 60:02d}:{minutes_of_day % 60:02d}"


def require_number(value: Any, field_name: str, minimum: Optional[float] = None,
                   maximum: Optional[float] = None) -> float:
    """Validate a numeric configuration value, optionally within [minimum, maximum]."""
    if isinstance(value, bool):
        raise ConfigurationError(f"{field_name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{field_name} must be a number, got {value!r}") from e

    if minimum is not None and number < minimum:
        raise ConfigurationError(f"{field_name} must be >= {minimum}, got {number}")
    if maximum is not None and number > maximum:
        raise ConfigurationError(f"{field_name} must be <= {maximum}, got {number}")
    return number

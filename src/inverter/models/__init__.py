"""
Domain models for the inverter integration.

These models provide vendor-agnostic data structures for the telemetry
snapshot and the adapter configuration.
"""

from .telemetry import Telemetry
from .inverter_config import InverterConfig

__all__ = [
    'Telemetry',
    'InverterConfig',
]

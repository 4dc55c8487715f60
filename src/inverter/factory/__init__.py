"""
Inverter Factory

Factory for creating inverter adapter instances based on configuration.
"""

from .inverter_factory import InverterFactory

__all__ = ['InverterFactory']


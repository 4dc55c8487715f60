"""
Inverter Adapters

Vendor-specific implementations of the inverter port interfaces.
Each adapter translates between the generic port interface and
the vendor's control surface.
"""

from .sunny_portal_adapter import SunnyPortalAdapter

__all__ = [
    'SunnyPortalAdapter',
]

"""
Port Interfaces for the inverter and tariff integrations.

These interfaces define the contracts that adapter implementations must fulfill.
Using the port and adapter pattern, these ports represent the application's
needs, while adapters translate between ports and vendor-specific implementations.
"""

from .command_executor_port import CommandExecutorPort
from .data_collector_port import DataCollectorPort
from .price_provider_port import PriceProviderPort

__all__ = [
    'CommandExecutorPort',
    'DataCollectorPort',
    'PriceProviderPort',
]

"""
Data Collector Port Interface

Defines the interface for collecting the per-cycle telemetry snapshot.
"""

from abc import ABC, abstractmethod

from ..models.telemetry import Telemetry


class DataCollectorPort(ABC):
    """
    Abstract interface for reading battery and house telemetry.
    
    A reading that could not be obtained is returned as None inside the
    snapshot. Only a total acquisition failure raises.
    """
    
    @abstractmethod
    async def collect_telemetry(self) -> Telemetry:
        """
        Gather one complete telemetry snapshot.
        
        Returns:
            Telemetry with every available reading filled in
            
        Raises:
            RuntimeError: If no data could be acquired at all
        """
        pass

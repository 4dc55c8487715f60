"""
Command Executor Port Interface

Defines the interface for forcing the battery to charge from the grid.
"""

from abc import ABC, abstractmethod


class CommandExecutorPort(ABC):
    """
    Abstract interface for issuing charge commands to the inverter.
    
    Implementations talk to the vendor control surface and report whether the
    command was confirmed. A timeout is a failure, not an exception.
    """
    
    @abstractmethod
    async def start_charging(self) -> bool:
        """
        Enable forced grid charging.
        
        Returns:
            True if the inverter confirmed the command, False otherwise
        """
        pass
    
    @abstractmethod
    async def stop_charging(self) -> bool:
        """
        Disable forced grid charging.
        
        Returns:
            True if the inverter confirmed the command, False otherwise
        """
        pass

"""
Price Provider Port Interface

Defines the interface for fetching half-hourly tariff prices.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from tariff_window_policy import PricePoint


class PriceProviderPort(ABC):
    """Abstract interface for a dynamic tariff price feed."""
    
    @abstractmethod
    async def fetch_prices(self, now: datetime) -> List[PricePoint]:
        """
        Fetch the price series around `now`.
        
        Args:
            now: Reference time; the series should span now - 24h to now + 24h
            
        Returns:
            Price points, empty if the feed could not be read
        """
        pass

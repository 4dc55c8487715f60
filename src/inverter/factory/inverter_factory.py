"""
Inverter Factory

Creates inverter adapter instances based on vendor configuration.
"""

import logging
from typing import Dict, Any

from ..models.inverter_config import InverterConfig
from ..adapters.sunny_portal_adapter import SunnyPortalAdapter


class InverterFactory:
    """
    Factory for creating inverter adapters.
    
    The factory reads the vendor from configuration and instantiates
    the appropriate adapter implementation. Adapters implement both the
    command executor and the data collector ports.
    """
    
    # Registry of supported vendors and their adapter classes
    _ADAPTERS = {
        'sma_portal': SunnyPortalAdapter,
    }
    
    @classmethod
    def create_inverter(cls, config: InverterConfig) -> SunnyPortalAdapter:
        """
        Create an inverter adapter instance based on configuration.
        
        Args:
            config: Inverter configuration including vendor information
            
        Returns:
            Adapter for the specified vendor
            
        Raises:
            ValueError: If configuration is invalid or vendor is not supported
        """
        logger = logging.getLogger(cls.__name__)
        
        # Validate configuration
        is_valid, error_msg = config.validate()
        if not is_valid:
            raise ValueError(f"Invalid inverter configuration: {error_msg}")
        
        # Get vendor (lowercase for comparison)
        vendor = config.vendor.lower().strip()
        
        # Check if vendor is supported
        if vendor not in cls._ADAPTERS:
            supported = ', '.join(cls._ADAPTERS.keys())
            raise ValueError(
                f"Unsupported inverter vendor: '{vendor}'. "
                f"Supported vendors: {supported}"
            )
        
        adapter = cls._ADAPTERS[vendor](config)
        logger.info(f"Created {vendor} inverter adapter")
        return adapter
    
    @classmethod
    def create_from_yaml_config(cls, config: Dict[str, Any]) -> SunnyPortalAdapter:
        """
        Create inverter adapter from the full YAML configuration dictionary.
        
        Args:
            config: Full configuration dictionary (inverter and forecast sections are read)
            
        Returns:
            Adapter implementation
            
        Raises:
            ValueError: If configuration is invalid or vendor unsupported
        """
        multiplier = (config.get('forecast', {}) or {}).get('multiplier_percent', 100)
        inverter_config = InverterConfig.from_yaml_config(config.get('inverter', {}) or {}, multiplier)
        return cls.create_inverter(inverter_config)

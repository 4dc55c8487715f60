from typing import Dict, Any
from .storage_interface import SessionStateStore, StorageConfig
from .sqlite_storage import SQLiteSessionStore
from .file_storage import FileSessionStore


class StorageFactory:
    """
    Factory for creating storage instances based on configuration.
    """

    @staticmethod
    def create_storage(config_dict: Dict[str, Any]) -> SessionStateStore:
        """
        Create a storage instance based on the `data_storage` config section.

        Expected config structure:
        data_storage:
          file_storage:
            enabled: bool
            state_file: str
            decisions_dir: str
          database_storage:
            enabled: bool
            sqlite:
              path: str
        """
        file_config = config_dict.get('file_storage', {}) or {}
        db_config = config_dict.get('database_storage', {}) or {}

        storage_config = StorageConfig(
            state_file=file_config.get('state_file', 'out/charging-state.json'),
            decisions_dir=file_config.get('decisions_dir', 'out/decisions'),
            db_path=(db_config.get('sqlite', {}) or {}).get('path', 'data/battery_manager.db'),
        )

        if db_config.get('enabled', False):
            return SQLiteSessionStore(storage_config)

        # File only (default)
        return FileSessionStore(storage_config)

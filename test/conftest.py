"""
conftest.py

Shared fixtures for the battery manager tests. Every test builds its own
configuration dict; nothing here reads the production YAML file.
"""

from pathlib import Path
import sys

# Ensure project `src/` is on sys.path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

__all__ = []

import yaml
import pytest

from database.storage_interface import StorageConfig
from database.file_storage import FileSessionStore
from database.sqlite_storage import SQLiteSessionStore


@pytest.fixture
def storage_config(tmp_path):
	"""Common StorageConfig pointing into a temporary directory."""
	return StorageConfig(
		state_file=str(tmp_path / "out" / "charging-state.json"),
		decisions_dir=str(tmp_path / "out" / "decisions"),
		db_path=str(tmp_path / "data" / "battery_manager.db"),
		max_retries=3,
		retry_delay=0.05,
	)


@pytest.fixture
async def file_store(storage_config):
	"""A connected FileSessionStore."""
	s = FileSessionStore(storage_config)
	await s.connect()
	yield s
	await s.disconnect()


@pytest.fixture
async def sqlite_store(storage_config):
	"""A connected SQLiteSessionStore."""
	s = SQLiteSessionStore(storage_config)
	await s.connect()
	yield s
	await s.disconnect()


@pytest.fixture
def custom_config(tmp_path):
	"""
	Fixture that provides a factory function for creating test configuration files.

	Returns:
		function: Factory function that accepts a config dict and returns the file path

	Example:
		def test_with_custom_config(custom_config):
			config_path = custom_config({
				'electricity_tariff': {'mode': 'dynamic_price'}
			})
	"""
	counter = {'n': 0}

	def _create_config(config_dict):
		counter['n'] += 1
		path = tmp_path / f"config_{counter['n']}.yaml"
		with open(path, 'w') as f:
			yaml.dump(config_dict, f)
		return str(path)

	return _create_config

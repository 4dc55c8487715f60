#!/usr/bin/env python3
"""
Tests for session state storage

File and SQLite stores both keep exactly one session record and append one
decision record per cycle.
"""

import json
import os
import pytest
import sys
from pathlib import Path
from datetime import datetime

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from database.file_storage import FileSessionStore
from database.sqlite_storage import SQLiteSessionStore
from database.storage_factory import StorageFactory
from database.storage_interface import StorageConfig

SESSION = {
    'is_charging': True,
    'session_start_time': '2024-01-15T01:00:00+00:00',
    'session_start_soc_pct': 20.0,
    'cached_battery_capacity_kwh': 31.2,
    'start_notification_sent': True,
    'stop_verification_pending': False,
}


class TestFileSessionStore:
    """JSON state file with atomic replacement"""

    async def test_missing_file_is_none(self, file_store):
        assert await file_store.load_session_state() is None

    async def test_save_and_load(self, file_store):
        assert await file_store.save_session_state(SESSION) is True
        assert await file_store.load_session_state() == SESSION
        assert not os.path.exists(f"{file_store.state_file}.tmp")

    async def test_save_replaces_whole_record(self, file_store):
        await file_store.save_session_state(SESSION)
        await file_store.save_session_state({'is_charging': False})

        assert await file_store.load_session_state() == {'is_charging': False}

    async def test_corrupt_file_is_none(self, file_store):
        Path(file_store.state_file).write_text("{not json")
        assert await file_store.load_session_state() is None

    async def test_non_object_file_is_none(self, file_store):
        Path(file_store.state_file).write_text("[1, 2, 3]")
        assert await file_store.load_session_state() is None

    async def test_unwritable_location_returns_false(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        store = FileSessionStore(StorageConfig(state_file=str(blocker / "state.json"),
                                               decisions_dir=str(tmp_path / "decisions")))

        assert await store.save_session_state(SESSION) is False

    async def test_decisions_appended_per_day(self, file_store):
        ts = datetime(2024, 1, 15, 1, 0)
        await file_store.save_decision({'timestamp': ts, 'should_charge': True, 'rule': 'approved'})
        await file_store.save_decision({'timestamp': ts.isoformat(), 'should_charge': False, 'rule': 'outside_window'})

        path = Path(file_store.decisions_dir) / "charging_decisions_20240115.jsonl"
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])['rule'] == 'approved'
        assert json.loads(lines[1])['timestamp'] == ts.isoformat()

    async def test_health_check(self, file_store):
        assert await file_store.health_check() is True


class TestSQLiteSessionStore:
    """Single-row session table"""

    async def test_connected(self, sqlite_store):
        assert sqlite_store.is_connected
        assert await sqlite_store.health_check() is True

    async def test_empty_database_is_none(self, sqlite_store):
        assert await sqlite_store.load_session_state() is None

    async def test_save_and_load(self, sqlite_store):
        assert await sqlite_store.save_session_state(SESSION) is True
        assert await sqlite_store.load_session_state() == SESSION

    async def test_single_row(self, sqlite_store):
        await sqlite_store.save_session_state(SESSION)
        await sqlite_store.save_session_state({'is_charging': False})

        async with sqlite_store._connection.execute("SELECT COUNT(*) FROM session_state") as cursor:
            row = await cursor.fetchone()
        assert row[0] == 1
        assert await sqlite_store.load_session_state() == {'is_charging': False}

    async def test_save_decision(self, sqlite_store):
        record = {
            'timestamp': datetime(2024, 1, 15, 1, 0),
            'should_charge': True,
            'rule': 'approved',
            'rationale': 'Charging approved',
            'state_of_charge': 20,
            'command': 'start_charge',
            'force_window': False,
        }
        assert await sqlite_store.save_decision(record) is True

        async with sqlite_store._connection.execute(
                "SELECT should_charge, rule, command, parameters FROM charging_decisions") as cursor:
            rows = await cursor.fetchall()
        assert len(rows) == 1
        assert rows[0]['should_charge'] == 1
        assert rows[0]['rule'] == 'approved'
        assert rows[0]['command'] == 'start_charge'
        assert json.loads(rows[0]['parameters']) == {'force_window': False}

    async def test_schema_version_recorded(self, sqlite_store):
        async with sqlite_store._connection.execute("SELECT version FROM schema_version") as cursor:
            rows = await cursor.fetchall()
        assert [r[0] for r in rows] == [1]

    async def test_record_survives_reconnect(self, storage_config):
        store = SQLiteSessionStore(storage_config)
        await store.connect()
        await store.save_session_state(SESSION)
        await store.disconnect()

        reopened = SQLiteSessionStore(storage_config)
        await reopened.connect()
        try:
            assert await reopened.load_session_state() == SESSION
        finally:
            await reopened.disconnect()

    async def test_disconnected_store(self, storage_config):
        store = SQLiteSessionStore(storage_config)
        assert await store.load_session_state() is None
        assert await store.save_session_state(SESSION) is False
        assert await store.health_check() is False


class TestStorageFactory:
    """Backend selection from the data_storage section"""

    def test_file_storage_by_default(self):
        store = StorageFactory.create_storage({})
        assert isinstance(store, FileSessionStore)
        assert store.state_file == 'out/charging-state.json'

    def test_sqlite_when_enabled(self, tmp_path):
        db_path = str(tmp_path / "manager.db")
        store = StorageFactory.create_storage({
            'database_storage': {'enabled': True, 'sqlite': {'path': db_path}},
        })
        assert isinstance(store, SQLiteSessionStore)
        assert store.db_path == db_path

    def test_custom_file_paths(self, tmp_path):
        store = StorageFactory.create_storage({
            'file_storage': {'state_file': str(tmp_path / "state.json"), 'decisions_dir': str(tmp_path / "d")},
        })
        assert store.state_file == str(tmp_path / "state.json")
        assert store.decisions_dir == str(tmp_path / "d")

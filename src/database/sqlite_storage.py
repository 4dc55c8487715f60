import json
import logging
import asyncio
import os
from datetime import datetime
from typing import Any, Dict, Optional
import aiosqlite

from .storage_interface import SessionStateStore, StorageConfig, StorageError
from .schema import ALL_TABLES, CREATE_INDEXES, MIGRATIONS


class SQLiteSessionStore(SessionStateStore):
    """
    SQLite storage for the charging session record using aiosqlite.

    The session record lives in a single-row table and is replaced inside one
    transaction, so a crash leaves either the old or the new record.
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self.db_path = config.db_path
        self._connection: Optional[aiosqlite.Connection] = None
        self.logger = logging.getLogger(__name__)

        # Retry settings
        self._max_retries = config.max_retries
        self._retry_delay = config.retry_delay

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._connection is not None

    async def _execute_with_retry(self, operation, *args, **kwargs):
        """Execute an operation with retry logic for locked/busy databases."""
        for attempt in range(self._max_retries):
            try:
                return await operation(*args, **kwargs)
            except aiosqlite.OperationalError as e:
                error_str = str(e).lower()
                if ('locked' in error_str or 'busy' in error_str) and attempt < self._max_retries - 1:
                    delay = self._retry_delay * (2 ** attempt)  # Exponential backoff
                    self.logger.warning(f"Database locked, retrying in {delay:.2f}s (attempt {attempt + 1}/{self._max_retries})")
                    await asyncio.sleep(delay)
                    continue
                raise

    async def connect(self) -> bool:
        """Open the database and create the schema."""
        try:
            if not self.db_path:
                raise StorageError("Database path not configured")

            if self.db_path != ':memory:' and os.path.dirname(self.db_path):
                os.makedirs(os.path.dirname(self.db_path), exist_ok=True)

            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row

            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=FULL")
            await self._connection.execute("PRAGMA busy_timeout=5000")  # 5 second timeout

            await self._init_schema()

            self.logger.info(f"Connected to SQLite database at {self.db_path}")
            return True
        except (aiosqlite.Error, StorageError, OSError) as e:
            self.logger.error(f"Failed to connect to SQLite at {self.db_path}: {e}")
            return False

    async def _init_schema(self):
        """Initialize database schema and record applied migrations."""
        async with self._connection.cursor() as cursor:
            for table_sql in ALL_TABLES:
                await cursor.execute(table_sql)

            for index_sql in CREATE_INDEXES:
                await cursor.execute(index_sql)

            for version, description, statements in MIGRATIONS:
                for statement in statements:
                    await cursor.execute(statement)
                await cursor.execute(
                    "INSERT OR IGNORE INTO schema_version (version, description) VALUES (?, ?)",
                    (version, description),
                )

        await self._connection.commit()

    async def disconnect(self) -> None:
        """Close connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            self.logger.info("Disconnected from SQLite database")

    async def health_check(self) -> bool:
        """Check if connection is alive."""
        if not self._connection:
            return False
        try:
            async with self._connection.execute("SELECT 1") as cursor:
                result = await cursor.fetchone()
                return result[0] == 1
        except aiosqlite.Error:
            return False

    async def load_session_state(self) -> Optional[Dict[str, Any]]:
        """Read the single session row."""
        if not self._connection:
            return None

        async def _do_query():
            async with self._connection.execute("SELECT payload FROM session_state WHERE id = 1") as cursor:
                row = await cursor.fetchone()
                return json.loads(row['payload']) if row else None

        try:
            return await self._execute_with_retry(_do_query)
        except (aiosqlite.Error, json.JSONDecodeError) as e:
            self.logger.error(f"Error loading session state: {e}")
            return None

    async def save_session_state(self, state: Dict[str, Any]) -> bool:
        """Replace the session row in a single transaction."""
        if not self._connection:
            return False

        async def _do_save():
            await self._connection.execute(
                "INSERT OR REPLACE INTO session_state (id, payload, updated_at) VALUES (1, ?, ?)",
                (json.dumps(state, sort_keys=True, default=str), datetime.now().isoformat()),
            )
            await self._connection.commit()
            return True

        try:
            return await self._execute_with_retry(_do_save)
        except aiosqlite.Error as e:
            self.logger.error(f"Error saving session state: {e}")
            await self._connection.rollback()
            return False

    async def save_decision(self, decision: Dict[str, Any]) -> bool:
        """Insert one decision row."""
        if not self._connection:
            return False

        async def _do_save():
            ts = decision.get('timestamp') or datetime.now()
            if isinstance(ts, datetime):
                ts = ts.isoformat()

            known = {'timestamp', 'should_charge', 'rule', 'rationale', 'state_of_charge', 'command'}
            params = {k: v for k, v in decision.items() if k not in known}
            await self._connection.execute(
                """
                INSERT INTO charging_decisions (
                    timestamp, should_charge, rule, rationale, state_of_charge, command, parameters
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ts,
                    int(bool(decision.get('should_charge'))),
                    decision.get('rule'),
                    decision.get('rationale'),
                    decision.get('state_of_charge'),
                    decision.get('command'),
                    json.dumps(params, default=str),
                ),
            )
            await self._connection.commit()
            return True

        try:
            return await self._execute_with_retry(_do_save)
        except aiosqlite.Error as e:
            self.logger.error(f"Error saving decision: {e}")
            return False

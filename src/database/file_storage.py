import json
import os
import logging
import aiofiles
import aiofiles.os
from datetime import datetime
from typing import Any, Dict, Optional
from .storage_interface import SessionStateStore, StorageConfig


class FileSessionStore(SessionStateStore):
    """
    JSON file storage for the charging session record.

    The state file is replaced atomically: the new content goes to a sibling
    temp file, is fsynced, then renamed over the old file. Decisions are
    appended to one JSON-lines file per day.
    """

    def __init__(self, config: StorageConfig):
        self.config = config
        self.state_file = config.state_file
        self.decisions_dir = config.decisions_dir
        self.logger = logging.getLogger(__name__)

    async def connect(self) -> bool:
        """Ensure directories exist."""
        try:
            state_dir = os.path.dirname(self.state_file)
            if state_dir:
                os.makedirs(state_dir, exist_ok=True)
            os.makedirs(self.decisions_dir, exist_ok=True)
            return True
        except OSError as e:
            self.logger.error(f"Failed to create storage directories: {e}")
            return False

    async def disconnect(self) -> None:
        """No-op for file storage."""
        pass

    async def health_check(self) -> bool:
        """Check if the state directory is writable."""
        return os.access(os.path.dirname(self.state_file) or '.', os.W_OK)

    async def load_session_state(self) -> Optional[Dict[str, Any]]:
        """Read the state file once; a missing file means first run."""
        if not os.path.exists(self.state_file):
            self.logger.info(f"No previous state file at {self.state_file}, starting fresh")
            return None

        try:
            async with aiofiles.open(self.state_file, 'r') as f:
                content = await f.read()
            state = json.loads(content) if content.strip() else None
        except (OSError, json.JSONDecodeError) as e:
            self.logger.error(f"Error loading state from {self.state_file}: {e}")
            return None

        if state is not None and not isinstance(state, dict):
            self.logger.error(f"State file {self.state_file} does not hold a JSON object, ignoring it")
            return None
        return state

    async def save_session_state(self, state: Dict[str, Any]) -> bool:
        """Replace the state file atomically."""
        tmp_path = f"{self.state_file}.tmp"
        payload = json.dumps(state, indent=2, sort_keys=True, default=str)
        try:
            async with aiofiles.open(tmp_path, 'w') as f:
                await f.write(payload)
                await f.flush()
                os.fsync(f.fileno())
            await aiofiles.os.replace(tmp_path, self.state_file)
            return True
        except OSError as e:
            self.logger.error(f"Error saving state to {self.state_file}: {e}")
            try:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
            except OSError:
                self.logger.warning(f"Could not remove temporary state file {tmp_path}")
            return False

    async def save_decision(self, decision: Dict[str, Any]) -> bool:
        """Append a decision to charging_decisions_YYYYMMDD.jsonl."""
        try:
            ts = decision.get('timestamp') or datetime.now()
            if isinstance(ts, str):
                ts = datetime.fromisoformat(ts)

            record = decision.copy()
            record['timestamp'] = ts.isoformat()

            filename = os.path.join(self.decisions_dir, f"charging_decisions_{ts.strftime('%Y%m%d')}.jsonl")
            async with aiofiles.open(filename, 'a') as f:
                await f.write(json.dumps(record, default=str) + "\n")
            return True
        except (OSError, ValueError) as e:
            self.logger.error(f"Error saving decision to file: {e}")
            return False

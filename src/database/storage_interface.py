from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


class StorageError(Exception):
    pass


@dataclass
class StorageConfig:
    state_file: str = "out/charging-state.json"
    decisions_dir: str = "out/decisions"
    db_path: Optional[str] = None
    max_retries: int = 3
    retry_delay: float = 0.1


class SessionStateStore(ABC):
    """
    Durable home of the single charging session record.

    The record is always written as a complete replacement: after
    save_session_state() returns True either the new record or the previous
    one is on disk, never a mix of both.
    """

    @abstractmethod
    async def connect(self) -> bool:
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    @abstractmethod
    async def load_session_state(self) -> Optional[Dict[str, Any]]:
        """Return the persisted record, or None when nothing has been saved yet."""
        pass

    @abstractmethod
    async def save_session_state(self, state: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    async def save_decision(self, decision: Dict[str, Any]) -> bool:
        """Append one per-cycle decision record for reporting."""
        pass

#!/usr/bin/env python3
"""
Single-instance lock for the battery manager.

The lock file records who holds it ({pid, startTime, heartbeat, hostname}).
On the same host a lock is honoured for as long as its process is alive,
however old it is. A holder on another host cannot be checked, so its lock
expires once the heartbeat is older than the timeout. The running service
refreshes the heartbeat every cycle.
"""

import json
import logging
import os
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import psutil

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_MINUTES = 15


class LockAcquisitionError(Exception):
    """Another live instance holds the lock."""


class ProcessLock:
    """File lock usable as a context manager."""

    def __init__(self, path: str, timeout_minutes: float = DEFAULT_LOCK_TIMEOUT_MINUTES):
        self.path = Path(path)
        self.timeout_minutes = timeout_minutes
        self._held = False

    @property
    def is_held(self) -> bool:
        return self._held

    def read_holder(self) -> Optional[Dict[str, Any]]:
        """Contents of the current lock file: None if absent, {} if unreadable."""
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable lock file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _is_stale(self, holder: Dict[str, Any], now: datetime) -> bool:
        pid = holder.get('pid')
        if holder.get('hostname') == socket.gethostname():
            if not isinstance(pid, int) or not psutil.pid_exists(pid):
                logger.warning(f"Lock holder PID {pid} is not running, treating lock as stale")
                return True
            return False

        # Another host: the PID cannot be checked, only the heartbeat age
        try:
            seen = datetime.fromisoformat(
                str(holder.get('heartbeat') or holder.get('startTime')).replace('Z', '+00:00'))
        except ValueError:
            return True
        if seen.tzinfo is None:
            seen = seen.replace(tzinfo=timezone.utc)

        age_minutes = (now - seen).total_seconds() / 60
        if age_minutes >= self.timeout_minutes:
            logger.warning(f"Lock held by PID {pid} on {holder.get('hostname')} last refreshed "
                           f"{age_minutes:.1f} minutes ago, treating as stale")
            return True
        return False

    def acquire(self, now: Optional[datetime] = None) -> None:
        """
        Take the lock or fail.

        Raises:
            LockAcquisitionError: If the lock is held by a live instance
        """
        now = now or datetime.now(timezone.utc)
        holder = self.read_holder()
        if holder is not None:
            if not self._is_stale(holder, now):
                raise LockAcquisitionError(
                    f"Another instance is running (PID {holder.get('pid')} on {holder.get('hostname')}, "
                    f"started {holder.get('startTime')})")
            self._remove()

        record = {
            'pid': os.getpid(),
            'startTime': now.isoformat(),
            'heartbeat': now.isoformat(),
            'hostname': socket.gethostname(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            raise LockAcquisitionError(f"Lock file {self.path} was created by another instance")
        with os.fdopen(fd, 'w') as f:
            json.dump(record, f)

        self._held = True
        logger.info(f"🔒 Lock acquired: {self.path} (PID {record['pid']})")

    def refresh(self, now: Optional[datetime] = None) -> None:
        """Rewrite the heartbeat so the lock stays fresh for the whole run."""
        if not self._held:
            return
        holder = self.read_holder() or {}
        if holder.get('pid') != os.getpid():
            logger.warning(f"Lock file {self.path} is no longer ours, not refreshing it")
            return
        holder['heartbeat'] = (now or datetime.now(timezone.utc)).isoformat()
        tmp_path = self.path.with_name(self.path.name + '.tmp')
        with open(tmp_path, 'w') as f:
            json.dump(holder, f)
        os.replace(tmp_path, self.path)

    def release(self) -> None:
        if not self._held:
            return
        holder = self.read_holder() or {}
        if holder.get('pid') == os.getpid():
            self._remove()
            logger.info(f"🔓 Lock released: {self.path}")
        else:
            logger.warning(f"Lock file {self.path} is no longer ours, leaving it in place")
        self._held = False

    def _remove(self) -> None:
        self.path.unlink(missing_ok=True)

    def __enter__(self) -> 'ProcessLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

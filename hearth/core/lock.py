"""Maintenance lock for destructive backup operations.

Cleanup and full-maintenance runs prune backup sets; two of them working on
the same base directory at once could delete a version the other one just
decided to keep. Both take this lock first.
"""
import fcntl
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Dict, List, Optional

from hearth.core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_LOCK_DIR = Path("/var/run/hearth")
FALLBACK_LOCK_DIR = Path("/tmp")
LOCK_NAME = "maintenance.lock"
POLL_INTERVAL = 0.5


class LockError(Exception):
    """Raised when the maintenance lock cannot be taken."""


@dataclass
class LockHolder:
    """Who holds the lock, as recorded in the lock file."""
    pid: str = "unknown"
    since: str = "unknown"

    @classmethod
    def read(cls, handle: IO[str]) -> "LockHolder":
        handle.seek(0)
        lines = [line.strip() for line in handle.readlines()]
        if len(lines) < 2:
            return cls()
        return cls(pid=lines[0], since=lines[1])

    def as_dict(self, lock_file: Path) -> Dict[str, str]:
        return {"pid": self.pid, "time": self.since, "lock_file": str(lock_file)}


def default_lock_path() -> Path:
    """``/var/run/hearth/maintenance.lock``, or ``/tmp`` when that is not writable."""
    try:
        DEFAULT_LOCK_DIR.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        return FALLBACK_LOCK_DIR / LOCK_NAME
    return DEFAULT_LOCK_DIR / LOCK_NAME


def _candidate_paths(lock_file: Optional[Path]) -> List[Path]:
    if lock_file is not None:
        return [Path(lock_file)]
    return [DEFAULT_LOCK_DIR / LOCK_NAME, FALLBACK_LOCK_DIR / LOCK_NAME]


def _try_flock(handle: IO[str]) -> bool:
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        return False
    return True


class MaintenanceLock:
    """Exclusive ``flock`` on a lock file holding the owner's PID and start time."""

    def __init__(self, lock_file: Optional[Path] = None, timeout: int = 0):
        self.lock_file = Path(lock_file) if lock_file is not None else default_lock_path()
        self.timeout = timeout
        self.lock_fd: Optional[IO[str]] = None

    def acquire(self) -> bool:
        """Take the lock, waiting up to ``timeout`` seconds.

        Raises:
            LockError: If another process keeps holding the lock
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        # a+ leaves the current holder's details intact until we own the file
        handle = open(self.lock_file, "a+")
        deadline = time.monotonic() + self.timeout

        while not _try_flock(handle):
            if time.monotonic() >= deadline:
                holder = LockHolder.read(handle)
                handle.close()
                raise LockError(self._held_message(holder))
            time.sleep(POLL_INTERVAL)

        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
        handle.flush()
        self.lock_fd = handle
        logger.debug(f"Acquired maintenance lock {self.lock_file}")
        return True

    def _held_message(self, holder: LockHolder) -> str:
        if self.timeout:
            return (
                f"Timeout waiting for lock after {self.timeout}s: "
                f"held by PID {holder.pid} since {holder.since}"
            )
        return (
            "Another backup maintenance run is in progress "
            f"(PID {holder.pid}, started {holder.since}). "
            f"Wait for it to finish, or remove {self.lock_file} if it is stale."
        )

    def release(self) -> None:
        if self.lock_fd is None:
            return
        handle, self.lock_fd = self.lock_fd, None
        # The file stays: unlinking it would let a waiter lock an orphaned inode
        handle.seek(0)
        handle.truncate()
        handle.flush()
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        handle.close()
        logger.debug(f"Released maintenance lock {self.lock_file}")

    def __enter__(self) -> "MaintenanceLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


@contextmanager
def maintenance_lock(timeout: int = 0, lock_file: Optional[Path] = None):
    """Hold the maintenance lock for the duration of a ``with`` block.

    Raises:
        LockError: If another run holds the lock
    """
    with MaintenanceLock(lock_file=lock_file, timeout=timeout) as lock:
        yield lock


def check_lock_status(lock_file: Optional[Path] = None) -> Optional[Dict[str, str]]:
    """Report the current holder, or None when the lock is free or the file is stale.

    Without ``lock_file`` both the default location and the ``/tmp`` fallback
    are inspected, since either may hold the lock.
    """
    for path in _candidate_paths(lock_file):
        if not path.exists():
            continue
        try:
            with open(path) as handle:
                if _try_flock(handle):
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                    continue
                return LockHolder.read(handle).as_dict(path)
        except OSError as e:
            logger.warning(f"Cannot inspect lock file {path}: {e}")
    return None

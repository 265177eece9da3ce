"""Cross-process lock file guarding the tmux pane."""

import asyncio
import fcntl
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)

DEFAULT_LOCK_NAME = "gemini-telegram-bridge"


def is_process_alive(pid: int) -> bool:
    """
    Check whether a process exists without touching it.

    Args:
        pid: Process ID to check

    Returns:
        True if the process exists (even if owned by another user)
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def read_pid(path: Path) -> Optional[int]:
    """Read a PID from a marker file. None if missing, empty or garbled."""
    try:
        content = path.read_text().strip()
    except FileNotFoundError:
        return None
    try:
        return int(content)
    except ValueError:
        return None


class FileLock:
    """
    Exclusive lock shared by separate processes through a lock file.

    The lock file is created with O_EXCL and holds the owner's PID. A record
    whose owner is gone is removed and acquisition retried immediately, so a
    crashed holder never blocks the pane forever.
    """

    def __init__(
        self,
        name: str = DEFAULT_LOCK_NAME,
        retry_interval: float = 0.5,
        max_retries: int = 10,
        lock_dir: Optional[str] = None,
    ):
        """
        Args:
            name: Lock name (file is <lock_dir>/<name>.lock)
            retry_interval: Seconds to wait between attempts while the owner is alive
            max_retries: Attempts before giving up
            lock_dir: Directory for the lock file (default: system temp dir)
        """
        self.name = name
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.lock_file = Path(lock_dir or tempfile.gettempdir()) / f"{name}.lock"
        # Serializes stale reclaims; never removed
        self.guard_file = self.lock_file.with_name(f"{name}.lock.guard")
        self._held = False

    @property
    def held(self) -> bool:
        """True while this instance owns the lock."""
        return self._held

    def owner_pid(self) -> Optional[int]:
        """PID recorded in the lock file, if any."""
        return read_pid(self.lock_file)

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        try:
            os.write(fd, str(os.getpid()).encode())
        finally:
            os.close(fd)
        return True

    def _reclaim_if_stale(self) -> bool:
        """
        Delete the lock file if its owner is dead. True if it was stale.

        Read, liveness check and delete all happen under an flock on the guard
        file, so two reclaimers can never remove a record created in between.
        """
        with open(self.guard_file, "a") as guard:
            fcntl.flock(guard.fileno(), fcntl.LOCK_EX)
            try:
                pid = self.owner_pid()
                if pid is None:
                    # Empty or vanished: a writer is mid-creation or just released
                    return False
                if is_process_alive(pid):
                    return False
                try:
                    self.lock_file.unlink()
                except FileNotFoundError:
                    pass
            finally:
                fcntl.flock(guard.fileno(), fcntl.LOCK_UN)
        logger.info(f"Removed stale lock {self.lock_file} (owner PID {pid} is gone)")
        return True

    async def acquire(self) -> bool:
        """
        Try to take the lock.

        Returns:
            True if acquired; False if still held by a live owner after
            max_retries attempts (callers treat this as "busy")
        """
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        attempts = 0
        while attempts < self.max_retries:
            attempts += 1
            if self._try_create():
                self._held = True
                logger.debug(f"Lock {self.name} acquired by PID {os.getpid()}")
                return True

            if self._reclaim_if_stale():
                # Stale reclaim does not consume the wait budget
                attempts -= 1
                continue

            await asyncio.sleep(self.retry_interval)

        logger.info(f"Lock {self.name} busy (owner PID {self.owner_pid()})")
        return False

    def release(self):
        """
        Remove the lock file. Safe to call when not held or already released.

        Only the instance that acquired the lock removes the file, so a second
        release cannot delete a record another holder created in between.
        """
        if not self._held:
            return
        self._held = False
        try:
            self.lock_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to release lock {self.lock_file}: {e}")

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """
        Acquire for the duration of a block.

        Yields whether the lock was acquired; releases on exit only if it was.
        """
        acquired = await self.acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

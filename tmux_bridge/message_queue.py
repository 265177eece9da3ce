"""Directory-backed outbox for notifications from other processes."""

import asyncio
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .models import Notification

logger = logging.getLogger(__name__)

CLAIM_SUFFIX = ".processing"
TEMP_SUFFIX = ".tmp"


class OutboxQueue:
    """
    Notification queue kept as one file per message.

    Claiming renames a file to *.processing; rename is atomic, so exactly one
    consumer wins each entry.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def ensure(self):
        self.directory.mkdir(parents=True, exist_ok=True)

    def exists(self) -> bool:
        return self.directory.is_dir()

    def enqueue(self, message: str) -> Path:
        """
        Add a notification.

        Args:
            message: Notification text

        Returns:
            Path of the queued file
        """
        self.ensure()
        name = f"msg_{time.time_ns()}_{uuid.uuid4().hex[:6]}.json"
        path = self.directory / name
        temp_file = self.directory / (name + TEMP_SUFFIX)
        temp_file.write_text(json.dumps({"message": message}))
        # Atomic publish: the watcher never sees a half-written entry
        temp_file.replace(path)
        logger.debug(f"Queued notification {name}")
        return path

    def pending(self) -> list[Path]:
        """Unclaimed entries, oldest first."""
        if not self.exists():
            return []
        entries = []
        for path in self.directory.iterdir():
            if path.name.endswith(CLAIM_SUFFIX) or path.name.endswith(TEMP_SUFFIX):
                continue
            if not path.is_file():
                continue
            try:
                mtime = path.stat().st_mtime_ns
            except FileNotFoundError:
                continue  # Claimed by someone else mid-listing
            entries.append((mtime, path.name, path))
        return [p for _, _, p in sorted(entries)]

    def claim(self, path: Path) -> Optional[Path]:
        """
        Take ownership of an entry.

        Returns:
            Path of the claimed file, or None if another consumer got it first
        """
        claimed = path.with_name(path.name + CLAIM_SUFFIX)
        try:
            os.rename(path, claimed)
        except FileNotFoundError:
            return None
        return claimed

    def read(self, claimed: Path) -> str:
        """Message text of a claimed entry. Non-JSON content is taken verbatim."""
        content = claimed.read_text()
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            return content
        if isinstance(data, dict) and "message" in data:
            return str(data["message"])
        return content

    def complete(self, claimed: Path):
        """Delete a claimed entry after delivery (or terminal failure)."""
        try:
            claimed.unlink()
        except FileNotFoundError:
            pass

    def unclaim(self, claimed: Path) -> Path:
        """Return a claimed entry to the queue so it is retried later."""
        original = claimed.with_name(claimed.name[: -len(CLAIM_SUFFIX)])
        os.rename(claimed, original)
        return original

    def recover_orphans(self) -> int:
        """Requeue entries left claimed by a bridge that died mid-delivery."""
        if not self.exists():
            return 0
        recovered = 0
        for path in self.directory.glob(f"*{CLAIM_SUFFIX}"):
            try:
                self.unclaim(path)
                recovered += 1
            except FileNotFoundError:
                continue
        if recovered:
            logger.info(f"Requeued {recovered} orphaned notification(s)")
        return recovered

    def count(self) -> int:
        return len(self.pending())


NotificationHandler = Callable[[Notification], Awaitable[bool]]


class OutboxWatcher:
    """
    Polls the outbox and hands each claimed notification to a handler.

    The directory listing is the source of truth, re-read on start and every
    poll_interval, so nothing depends on filesystem event delivery.

    The handler returns True when the notification is finished (delivered or
    failed for good) and False when it should be retried later.
    """

    def __init__(self, queue: OutboxQueue, handler: NotificationHandler, poll_interval: float = 1.0):
        self.queue = queue
        self.handler = handler
        self.poll_interval = poll_interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        self.queue.ensure()
        self.queue.recover_orphans()
        self._running = True
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(f"Watching outbox {self.queue.directory} (every {self.poll_interval}s)")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _watch_loop(self):
        while self._running:
            try:
                await self.process_pending()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Outbox poll failed: {e}")
            await asyncio.sleep(self.poll_interval)

    async def process_pending(self) -> int:
        """
        Claim and handle every pending entry in order.

        Returns:
            Number of entries finished in this pass
        """
        finished = 0
        for path in self.queue.pending():
            claimed = self.queue.claim(path)
            if claimed is None:
                continue

            try:
                message = self.queue.read(claimed)
            except OSError as e:
                logger.error(f"Failed to read notification {claimed.name}: {e}")
                self.queue.complete(claimed)
                continue

            notification = Notification(path=claimed, message=message)
            try:
                done = await self.handler(notification)
            except Exception as e:
                logger.exception(f"Failed to process outbox message {claimed.name}: {e}")
                done = True

            if done:
                self.queue.complete(claimed)
                finished += 1
            else:
                # Leave the rest for the next pass so order is kept
                self.queue.unclaim(claimed)
                break
        return finished

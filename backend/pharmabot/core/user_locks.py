"""
Per-user turn serialization.

Every webhook event does read-modify-write on the user's session record.
Two events for the same phone number handled concurrently would both read
the same session and the second write would drop the first one's changes.
Holding one asyncio.Lock per phone number for the duration of a turn
prevents that inside a single process.

Uses in-memory storage. With multiple workers the lost-update window is
still open across processes.
"""
import asyncio
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """In-memory lock table keyed by phone number."""

    def __init__(self, idle_seconds: int = 600, cleanup_interval: int = 300):
        """
        Args:
            idle_seconds: Locks unused for this long are dropped on cleanup
            cleanup_interval: Minimum seconds between cleanup passes
        """
        self.idle_seconds = idle_seconds
        self.cleanup_interval = cleanup_interval
        self.locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.last_used: Dict[str, float] = {}
        self.last_cleanup = time.monotonic()

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        """Run the enclosed block while no other turn for `user_id` runs."""
        now = time.monotonic()
        if now - self.last_cleanup > self.cleanup_interval:
            self._cleanup(now)
            self.last_cleanup = now

        lock = self.locks[user_id]
        if lock.locked():
            logger.debug(f"[UserLock] {user_id} busy, waiting for previous turn")

        async with lock:
            self.last_used[user_id] = time.monotonic()
            yield
            self.last_used[user_id] = time.monotonic()

    def _cleanup(self, now: float):
        """Remove idle, unheld locks to prevent memory bloat."""
        cutoff = now - self.idle_seconds
        for user_id in list(self.locks.keys()):
            lock = self.locks[user_id]
            if not lock.locked() and self.last_used.get(user_id, 0) < cutoff:
                del self.locks[user_id]
                self.last_used.pop(user_id, None)

        logger.info(f"User lock cleanup: {len(self.locks)} active users")

    def __len__(self) -> int:
        return len(self.locks)

"""Concurrency control for balance settlement.

Serialises settlements that touch the same user index, so a manual
settlement through the API cannot interleave with the poller.
Locks live on a registry instance owned by one reconciler.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ciphertoken.errors import ReconciliationError

logger = logging.getLogger(__name__)


class LockTimeoutError(ReconciliationError):
    """Raised when a balance lock cannot be acquired in time."""

    def __init__(self, index_hex: str, timeout: float, operation: str):
        super().__init__(
            f"Timed out after {timeout}s waiting for lock on {index_hex} ({operation})"
        )
        self.index_hex = index_hex
        self.timeout = timeout
        self.operation = operation


class IndexLockRegistry:
    """Per-user-index asyncio locks.

    Example:
        locks = IndexLockRegistry()
        async with locks.hold(sender_index, receiver_index, operation="transfer"):
            # read, recompute and persist both balances
            ...
    """

    def __init__(self, timeout: Optional[float] = 60.0):
        """Initialize the registry.

        Args:
            timeout: Maximum time to wait for a lock (None = wait forever)
        """
        self.timeout = timeout
        self._locks: dict[bytes, asyncio.Lock] = {}
        self._holders: dict[bytes, int] = {}

    def get_lock(self, index: bytes) -> asyncio.Lock:
        """Get or create the lock for a user index."""
        lock = self._locks.get(index)
        if lock is None:
            lock = self._locks[index] = asyncio.Lock()
        return lock

    async def _acquire(self, index: bytes, operation: str) -> asyncio.Lock:
        lock = self.get_lock(index)
        self._holders[index] = self._holders.get(index, 0) + 1
        try:
            if self.timeout:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.error(f"Lock timeout for index {index.hex()[:16]}... ({operation})")
                    raise LockTimeoutError(index.hex(), self.timeout, operation)
            else:
                await lock.acquire()
        except BaseException:
            self._release_holder(index)
            raise
        logger.debug(f"Acquired lock for index {index.hex()[:16]}... ({operation})")
        return lock

    def _release_holder(self, index: bytes) -> None:
        """Forget an index once no hold() is holding or waiting on it."""
        remaining = self._holders.get(index, 1) - 1
        if remaining > 0:
            self._holders[index] = remaining
            return
        self._holders.pop(index, None)
        lock = self._locks.get(index)
        if lock is not None and not lock.locked():
            del self._locks[index]

    @asynccontextmanager
    async def hold(self, *indices: bytes, operation: str = "settlement") -> AsyncIterator[None]:
        """Hold the locks of all given indices.

        Locks are taken in sorted order so two transfers between the same
        pair of users cannot deadlock. Idle locks are dropped on release.
        """
        acquired: list[tuple[bytes, asyncio.Lock]] = []
        try:
            for index in sorted(set(indices)):
                acquired.append((index, await self._acquire(index, operation)))
            yield
        finally:
            for index, lock in reversed(acquired):
                lock.release()
                self._release_holder(index)

    def is_locked(self, index: bytes) -> bool:
        lock = self._locks.get(index)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

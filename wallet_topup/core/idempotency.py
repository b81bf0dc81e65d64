"""
Per-idempotency-key serialization.

Requests sharing an idempotency key run one at a time; requests with different
keys never contend. The lock is keyed by the raw key, and entries are dropped
once no holder or waiter remains.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

import structlog

logger = structlog.get_logger(__name__)


class _LockEntry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.refs = 0


class KeyedLock:
    """
    In-process lock table keyed by idempotency key.

    Usage:
        async with keyed_lock.hold(key):
            ...
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def locked(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _LockEntry()
        entry.refs += 1

        try:
            await entry.lock.acquire()
            try:
                logger.debug("idempotency_lock_acquired", idempotency_key=key)
                yield
            finally:
                entry.lock.release()
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                self._entries.pop(key, None)

"""
In-memory TTL store mapping proxy identifiers to target URLs.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional
from uuid import UUID

import structlog

from .exceptions import InternalServerError

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class ProxyEntry:
    """A registered target and the monotonic instant it stops resolving."""
    id: UUID
    target: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class ProxyStore:
    """
    Concurrent identifier -> target mapping with per-entry expiry.

    One asyncio.Lock guards the whole map; every operation except prune is
    O(1). prune scans all live entries, so its cost grows with the live set.
    A heap keyed by expiry would make it proportional to the expired count
    instead, at the price of extra bookkeeping on insert.

    Lookups perform their own expiry check, so an expired entry is never
    returned even if the sweeper has not removed it yet. Lookups never
    mutate the map.
    """

    def __init__(self, clock: Optional[Clock] = None, lock_timeout_seconds: float = 5.0) -> None:
        self._entries: Dict[UUID, ProxyEntry] = {}
        self._lock = asyncio.Lock()
        self._clock: Clock = clock or time.monotonic
        self._lock_timeout = lock_timeout_seconds

    def now(self) -> float:
        return self._clock()

    @asynccontextmanager
    async def _locked(self, operation: str) -> AsyncIterator[None]:
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self._lock_timeout)
        except asyncio.TimeoutError:
            logger.error("Store lock acquisition timed out", operation=operation, timeout_seconds=self._lock_timeout)
            raise InternalServerError(cause=f"store lock timeout during {operation}")
        try:
            yield
        finally:
            self._lock.release()

    async def insert(self, entry_id: UUID, target: str, ttl: float) -> ProxyEntry:
        """Store target under entry_id until now + ttl seconds."""
        async with self._locked("insert"):
            if entry_id in self._entries:
                # Ids come from uuid4; a collision means the generator is broken
                logger.error("Refusing to overwrite existing proxy entry", entry_id=str(entry_id))
                raise InternalServerError(cause="duplicate proxy id")
            entry = ProxyEntry(id=entry_id, target=target, expires_at=self._clock() + ttl)
            self._entries[entry_id] = entry

        logger.debug("Proxy entry stored", entry_id=str(entry_id), ttl_seconds=ttl)
        return entry

    async def get(self, entry_id: UUID) -> Optional[ProxyEntry]:
        """Return the live entry for entry_id, or None if unknown or expired."""
        async with self._locked("lookup"):
            entry = self._entries.get(entry_id)

        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    async def lookup(self, entry_id: UUID) -> Optional[str]:
        """Return the target URL for a live entry, or None."""
        entry = await self.get(entry_id)
        return entry.target if entry is not None else None

    async def prune(self, now: Optional[float] = None) -> int:
        """Remove every entry whose expiry is at or before now. Returns the count removed."""
        if now is None:
            now = self._clock()

        async with self._locked("prune"):
            expired = [entry_id for entry_id, entry in self._entries.items() if entry.is_expired(now)]
            for entry_id in expired:
                del self._entries[entry_id]
            remaining = len(self._entries)

        if expired:
            logger.debug("Pruned expired proxy entries", removed=len(expired), remaining=remaining)
        return len(expired)

    async def count(self) -> int:
        """Number of entries held, including expired ones not yet pruned."""
        async with self._locked("count"):
            return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

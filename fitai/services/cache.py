"""In-process response cache with TTL.

Deduplicates identical analysis requests (same identity, same input
bytes) inside a short window and holds nutrition-database search
results for longer.  The cache is process-local: separate instances do
not share entries, which only costs duplicate upstream calls.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[T]):
    value: T
    provider: str | None
    created_at: float


def make_key(identity: str, *parts: str | bytes) -> str:
    """SHA-256 over the caller identity and the request input.

    Parts are length-prefixed so ``("ab", "c")`` and ``("a", "bc")`` differ.
    """
    digest = hashlib.sha256()
    for part in (identity, *parts):
        raw = part.encode() if isinstance(part, str) else part
        digest.update(len(raw).to_bytes(8, "big"))
        digest.update(raw)
    return digest.hexdigest()


class TTLCache(Generic[T]):
    """Bounded TTL cache safe for concurrent request tasks.

    Args:
        ttl: Entry lifetime in seconds.
        max_entries: Oldest entries are evicted past this size.
        clock: Monotonic clock, injectable for tests.
        name: Label used in log lines.
    """

    def __init__(
        self,
        ttl: float,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> CacheEntry[T] | None:
        """Return the live entry for *key*, dropping it if expired.

        The returned value is a deep copy; mutating it never touches the
        stored entry.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() - entry.created_at >= self.ttl:
                del self._entries[key]
                return None
            return replace(entry, value=copy.deepcopy(entry.value))

    async def set(self, key: str, value: T, provider: str | None = None) -> None:
        """Store a deep copy of *value* under *key*."""
        async with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = CacheEntry(value=copy.deepcopy(value), provider=provider, created_at=self._clock())
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    async def sweep(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now - e.created_at >= self.ttl]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(
                "Swept %d expired entries",
                len(expired),
                extra={"event": "cache_sweep", "cache": self.name},
            )
        return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

"""Per-identity rate limiting: a per-minute request cap and a per-day call cap.

Each window is a *sliding window counter*: the count of the current
fixed bucket plus the previous bucket's count weighted by how much of
it still overlaps the trailing window.  Counters live in a
``CounterStore``:

- ``SQLCounterStore`` (``fitai.db.counters``): shared database with an
  atomic increment-and-read, correct across instances and restarts.
  The default whenever ``DATABASE_URL`` is configured.
- ``InMemoryCounterStore``: process-local fallback.  **Best effort
  only**: every instance counts separately and counts reset on restart.

Counters are incremented first and refunded when the request is denied,
so rejected requests never eat into the caller's allowance.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Mapping, Protocol, Sequence

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WindowSpec:
    """A trailing window of *seconds* allowing at most *limit* requests."""

    name: str
    seconds: int
    limit: int


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Outcome of a rate-limit check.

    Attributes:
        allowed: ``True`` when the request may proceed.
        retry_after_ms: When denied, how long until a retry can succeed.
        limit: Cap of the window that decided.
        window: Name of the window that decided (``minute``/``day``).
        message: Caller-facing explanation when denied.
    """

    allowed: bool
    retry_after_ms: int | None = None
    limit: int | None = None
    window: str | None = None
    message: str | None = None


class CounterStore(Protocol):
    """Atomic counters keyed by ``(key, window_start)``."""

    shared: bool

    async def incr(self, key: str, window_start: int, ttl: float, amount: int = 1) -> int:
        """Add *amount* to the counter and return the new value."""
        ...

    async def get(self, key: str, window_start: int) -> int:
        ...

    async def sweep(self, now: float) -> int:
        """Delete expired counters; returns how many were removed."""
        ...


# ---------------------------------------------------------------------------
# In-memory fallback
# ---------------------------------------------------------------------------


class InMemoryCounterStore:
    """Process-local counters guarded by one ``asyncio.Lock``.

    The lock is held only for the dict mutation.  Not shared between
    instances; see the module docstring.
    """

    shared = False

    def __init__(self) -> None:
        self._counters: dict[tuple[str, int], tuple[int, float]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._counters)

    async def incr(self, key: str, window_start: int, ttl: float, amount: int = 1) -> int:
        async with self._lock:
            count, _ = self._counters.get((key, window_start), (0, 0.0))
            count = max(0, count + amount)
            self._counters[(key, window_start)] = (count, window_start + ttl)
            return count

    async def get(self, key: str, window_start: int) -> int:
        async with self._lock:
            count, _ = self._counters.get((key, window_start), (0, 0.0))
            return count

    async def sweep(self, now: float) -> int:
        async with self._lock:
            expired = [k for k, (_, expires_at) in self._counters.items() if expires_at <= now]
            for k in expired:
                del self._counters[k]
            return len(expired)


# ---------------------------------------------------------------------------
# Limiter
# ---------------------------------------------------------------------------


def _format_wait(ms: int) -> str:
    seconds = math.ceil(ms / 1000)
    if seconds <= 60:
        return f"{seconds} second" + ("" if seconds == 1 else "s")
    minutes = math.ceil(seconds / 60)
    if minutes <= 60:
        return f"{minutes} minutes"
    return f"{math.ceil(minutes / 60)} hours"


class RateLimiter:
    """Sliding-window limiter over a ``CounterStore``.

    Args:
        store: Counter backend.
        windows: Windows checked in order; the first denial wins.
        clock: Wall clock (seconds since the epoch), injectable for tests.
        sweep_interval: Minimum seconds between expired-counter sweeps.
    """

    def __init__(
        self,
        store: CounterStore,
        windows: Sequence[WindowSpec],
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.store = store
        self.windows = list(windows)
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()

    @classmethod
    def per_minute_and_day(
        cls,
        store: CounterStore,
        per_minute: int,
        per_day: int,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> RateLimiter:
        return cls(
            store,
            [WindowSpec("minute", 60, per_minute), WindowSpec("day", 86_400, per_day)],
            clock=clock,
            sweep_interval=sweep_interval,
        )

    @staticmethod
    def _key(identity: str, window: WindowSpec) -> str:
        return f"rl:{window.name}:{identity}"

    async def check_window(
        self,
        identity: str,
        window: WindowSpec,
        now: float | None = None,
    ) -> RateLimitDecision:
        """Count one request against *window* and decide.

        A denied request is refunded immediately.
        """
        now = self._clock() if now is None else now
        key = self._key(identity, window)
        window_start = int(now // window.seconds) * window.seconds
        elapsed = (now - window_start) / window.seconds

        previous = await self.store.get(key, window_start - window.seconds)
        current = await self.store.incr(key, window_start, ttl=2 * window.seconds)
        estimate = previous * (1 - elapsed) + current

        if estimate <= window.limit:
            return RateLimitDecision(allowed=True, limit=window.limit, window=window.name)

        current = await self.store.incr(key, window_start, ttl=2 * window.seconds, amount=-1)
        retry_after_ms = self._retry_after_ms(now, window_start, window, previous, current)
        logger.warning(
            "Rate limit exceeded (%s window)",
            window.name,
            extra={"event": "rate_limited", "rate_key": identity, "window": window.name},
        )
        return RateLimitDecision(
            allowed=False,
            retry_after_ms=retry_after_ms,
            limit=window.limit,
            window=window.name,
            message=(
                f"Rate limit exceeded: at most {window.limit} requests per {window.name}. "
                f"Try again in {_format_wait(retry_after_ms)}."
            ),
        )

    @staticmethod
    def _retry_after_ms(
        now: float,
        window_start: int,
        window: WindowSpec,
        previous: int,
        current: int,
    ) -> int:
        """Time until one more request fits, bounded by the bucket end."""
        bucket_end = window_start + window.seconds
        wait = bucket_end - now
        headroom = window.limit - current - 1
        if previous > 0 and headroom >= 0:
            # previous * (1 - f) + current + 1 <= limit  ⇔  f >= 1 - headroom / previous
            needed = window_start + (1 - headroom / previous) * window.seconds
            wait = min(wait, needed - now)
        return max(1, math.ceil(wait * 1000))

    async def check_request(self, identity: str) -> RateLimitDecision:
        """Check every window in order; denial in a later window refunds the earlier ones."""
        now = self._clock()
        await self._maybe_sweep(now)
        passed: list[WindowSpec] = []
        decision = RateLimitDecision(allowed=True)
        for window in self.windows:
            decision = await self.check_window(identity, window, now)
            if not decision.allowed:
                await self._refund(identity, passed, now)
                return decision
            passed.append(window)
        return decision

    async def _refund(self, identity: str, windows: Sequence[WindowSpec], now: float) -> None:
        for window in windows:
            window_start = int(now // window.seconds) * window.seconds
            await self.store.incr(self._key(identity, window), window_start, ttl=2 * window.seconds, amount=-1)

    async def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        removed = await self.store.sweep(now)
        if removed:
            logger.debug("Swept %d expired rate-limit counters", removed, extra={"event": "rate_limit_sweep"})


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def resolve_identity(
    user_id: str | None,
    headers: Mapping[str, str],
    trusted_headers: Sequence[str],
    peer: str | None = None,
) -> str:
    """Rate-limit key for a request.

    The authenticated user id wins; it must come from a header the auth
    gateway sets and strips from client requests.  Otherwise the client
    address comes from the first trusted proxy header present (its first
    entry, the original client), then the socket peer.  Headers outside
    *trusted_headers*, such as a client-supplied ``X-Forwarded-For``,
    are never consulted.
    """
    if user_id and user_id.strip():
        return f"user:{user_id.strip()}"

    for header in trusted_headers:
        value = headers.get(header)
        if value:
            address = value.split(",")[0].strip()
            if address:
                return f"ip:{address}"

    if peer:
        return f"ip:{peer}"
    return "ip:unknown"

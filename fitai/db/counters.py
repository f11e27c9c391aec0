"""Shared rate-limit counter store on SQL (PostgreSQL in production).

``incr`` is one ``INSERT … ON CONFLICT DO UPDATE SET count = count +
:amount RETURNING count`` statement: the database serialises concurrent
increments of the same row, so no application lock is needed and every
caller reads back the value its own increment produced.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine

from fitai.db.models import RateLimitCounter

logger = logging.getLogger(__name__)

_INSERTS: dict[str, Any] = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SQLCounterStore:
    """``CounterStore`` backed by the ``rate_limit_counters`` table.

    Args:
        engine: Async engine; its dialect selects the upsert syntax.
    """

    shared = True

    def __init__(self, engine: AsyncEngine) -> None:
        insert = _INSERTS.get(engine.dialect.name)
        if insert is None:
            raise ValueError(f"Unsupported database dialect for counters: {engine.dialect.name}")
        self._engine = engine
        self._insert = insert

    async def incr(self, key: str, window_start: int, ttl: float, amount: int = 1) -> int:
        stmt = self._insert(RateLimitCounter).values(
            key=key,
            window_start=window_start,
            count=max(0, amount),
            expires_at=window_start + ttl,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimitCounter.key, RateLimitCounter.window_start],
            set_={
                "count": RateLimitCounter.count + amount,
                "expires_at": stmt.excluded.expires_at,
            },
        ).returning(RateLimitCounter.count)

        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
            return max(0, int(result.scalar_one()))

    async def get(self, key: str, window_start: int) -> int:
        stmt = select(RateLimitCounter.count).where(
            RateLimitCounter.key == key,
            RateLimitCounter.window_start == window_start,
        )
        async with self._engine.connect() as conn:
            value = (await conn.execute(stmt)).scalar_one_or_none()
        return int(value) if value is not None else 0

    async def sweep(self, now: float) -> int:
        stmt = delete(RateLimitCounter).where(RateLimitCounter.expires_at <= now)
        async with self._engine.begin() as conn:
            result = await conn.execute(stmt)
        return result.rowcount or 0

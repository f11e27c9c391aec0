"""Async database engine management.

Provides a lazily created async engine configured from
``Settings.DATABASE_URL``.  The engine only exists when a shared
counter store is configured.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from fitai.core.config import get_settings

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use.

    Raises:
        RuntimeError: ``DATABASE_URL`` is not configured.
    """
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        if not settings.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not configured")
        _engine = create_async_engine(
            settings.DATABASE_URL,
            echo=False,
            pool_pre_ping=True,
        )
    return _engine


async def dispose_engine() -> None:
    """Close all pooled connections (application shutdown)."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None

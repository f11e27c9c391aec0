"""SQLAlchemy 2.0 declarative models: shared rate-limit counters.

One row per ``(key, window_start)`` bucket.  Rows are only ever updated
through a single ``INSERT … ON CONFLICT DO UPDATE`` statement, which
makes increment-and-read atomic across instances without locks.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Float, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class RateLimitCounter(Base):
    """Request count of one identity in one fixed window bucket."""

    __tablename__ = "rate_limit_counters"
    __table_args__ = (Index("ix_rate_limit_counters_expires_at", "expires_at"),)

    # Identity plus window name, e.g. ``rl:minute:user:42``.
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    # Bucket start, epoch seconds.
    window_start: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Epoch seconds after which the row may be swept.
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)

    def __repr__(self) -> str:
        return f"<RateLimitCounter {self.key}@{self.window_start}={self.count}>"

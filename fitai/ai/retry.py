"""Bounded retry with exponential backoff and jitter.

``with_retry`` runs one provider operation.  Each attempt runs under a
per-attempt timeout that never exceeds what is left of the caller's
``Deadline``; a timed-out attempt is cancelled and classified as a
retryable ``timeout``.  Provider ``Retry-After`` hints replace the
computed backoff.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, TypeVar

from fitai.ai.errors import AIError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 30.0
DEFAULT_JITTER_SECONDS = 1.0


class Deadline:
    """A point in monotonic time after which work must stop.

    Passed down to operations as their cancellation token: adapters read
    ``remaining()`` to size SDK timeouts, and the retry loop refuses to
    start an attempt or a backoff sleep that would overrun it.
    """

    def __init__(self, seconds: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def cap(self, timeout: float) -> float:
        """Clamp *timeout* to the time left."""
        return min(timeout, self.remaining())


def classify_exception(exc: BaseException) -> AIError:
    """Default classifier: pass ``AIError`` through, map timeouts, else ``unknown``."""
    if isinstance(exc, AIError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return AIError.from_kind("timeout")
    return AIError.from_kind("unknown", str(exc) or type(exc).__name__)


def retry_delay(
    attempt: int,
    retry_after_ms: int | None = None,
    *,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
    jitter: float = DEFAULT_JITTER_SECONDS,
    rng: Callable[[], float] = random.random,
) -> float:
    """Seconds to wait before attempt ``attempt + 1``.

    ``min(retry_after or base * 2**attempt + jitter, max_delay)``
    """
    if retry_after_ms is not None:
        delay = retry_after_ms / 1000
    else:
        delay = base_delay * (2**attempt) + rng() * jitter
    return min(delay, max_delay)


async def with_retry(
    operation: Callable[[Deadline], Awaitable[T]],
    *,
    max_retries: int = 1,
    timeout: float = 30.0,
    deadline: Deadline | None = None,
    classify: Callable[[BaseException], AIError] = classify_exception,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    provider: str | None = None,
) -> T:
    """Run *operation* with up to *max_retries* retries.

    Args:
        operation: Coroutine factory receiving the attempt's ``Deadline``.
        max_retries: Retries after the first attempt.
        timeout: Per-attempt timeout in seconds.
        deadline: Overall budget shared with the caller; attempts and
            sleeps never extend past it.
        classify: Maps any exception to an ``AIError``.
        sleep: Awaitable sleep, injectable for tests.
        provider: Tag applied to raised errors and log lines.

    Raises:
        AIError: the last classified error, immediately when it is not
            retryable, or once retries or the deadline are exhausted.
    """
    attempt = 0
    while True:
        attempt_timeout = timeout if deadline is None else deadline.cap(timeout)
        if attempt_timeout <= 0:
            raise AIError.from_kind("timeout", "Request deadline exceeded.", provider=provider)

        try:
            return await asyncio.wait_for(operation(Deadline(attempt_timeout)), attempt_timeout)
        except Exception as exc:  # noqa: BLE001 - every failure is classified
            error = classify(exc)
            if provider:
                error.with_provider(provider)

            if not error.retryable or attempt >= max_retries:
                raise error from (None if error is exc else exc)

            delay = retry_delay(
                attempt, error.retry_after_ms, base_delay=base_delay, max_delay=max_delay
            )
            if deadline is not None and delay >= deadline.remaining():
                raise error from (None if error is exc else exc)

            logger.warning(
                "Retrying after %s (attempt %d/%d)",
                error.kind,
                attempt + 1,
                max_retries,
                extra={
                    "event": "ai_retry",
                    "provider": provider,
                    "attempt": attempt + 1,
                    "kind": error.kind,
                    "delay_ms": int(delay * 1000),
                },
            )

        await sleep(delay)
        attempt += 1

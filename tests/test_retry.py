"""Tests for fitai.ai.retry — bounded retry, backoff, deadline."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from fitai.ai.errors import AIError
from fitai.ai.retry import Deadline, classify_exception, retry_delay, with_retry


def _script(*outcomes: object):
    """Operation returning/raising *outcomes* in order; records calls."""
    calls: list[Deadline] = []
    queue = list(outcomes)

    async def operation(deadline: Deadline) -> object:
        calls.append(deadline)
        outcome = queue.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return operation, calls


class TestRetryDelay:
    def test_exponential_without_jitter(self) -> None:
        assert retry_delay(0, rng=lambda: 0.0) == 1.0
        assert retry_delay(1, rng=lambda: 0.0) == 2.0
        assert retry_delay(3, rng=lambda: 0.0) == 8.0

    def test_jitter_added(self) -> None:
        assert retry_delay(0, rng=lambda: 0.5) == 1.5

    def test_capped(self) -> None:
        assert retry_delay(10, rng=lambda: 0.0) == 30.0

    def test_retry_after_wins(self) -> None:
        assert retry_delay(0, 2500, rng=lambda: 0.9) == 2.5

    def test_retry_after_capped(self) -> None:
        assert retry_delay(0, 120_000) == 30.0


class TestClassifyException:
    def test_ai_error_passes_through(self) -> None:
        err = AIError.from_kind("auth")
        assert classify_exception(err) is err

    def test_timeout_error(self) -> None:
        assert classify_exception(asyncio.TimeoutError()).kind == "timeout"

    def test_other_exception_unknown(self) -> None:
        err = classify_exception(RuntimeError("boom"))
        assert err.kind == "unknown"
        assert err.retryable is False


class TestWithRetry:
    async def test_success_first_try(self) -> None:
        op, calls = _script("done")
        sleep = AsyncMock()
        assert await with_retry(op, max_retries=2, sleep=sleep) == "done"
        assert len(calls) == 1
        sleep.assert_not_awaited()

    async def test_retries_retryable_then_succeeds(self) -> None:
        op, calls = _script(AIError.from_status(503), "done")
        sleep = AsyncMock()
        assert await with_retry(op, max_retries=2, sleep=sleep) == "done"
        assert len(calls) == 2
        sleep.assert_awaited_once()

    async def test_non_retryable_raised_immediately(self) -> None:
        op, calls = _script(AIError.from_status(401), "never")
        sleep = AsyncMock()
        with pytest.raises(AIError) as info:
            await with_retry(op, max_retries=3, sleep=sleep, provider="openai")
        assert info.value.kind == "auth"
        assert info.value.provider == "openai"
        assert len(calls) == 1
        sleep.assert_not_awaited()

    async def test_retries_bounded(self) -> None:
        op, calls = _script(*[AIError.from_status(500)] * 5)
        with pytest.raises(AIError) as info:
            await with_retry(op, max_retries=2, sleep=AsyncMock())
        assert info.value.kind == "server_error"
        assert len(calls) == 3

    async def test_zero_retries_single_attempt(self) -> None:
        op, calls = _script(AIError.from_kind("network"), "never")
        with pytest.raises(AIError):
            await with_retry(op, max_retries=0, sleep=AsyncMock())
        assert len(calls) == 1

    async def test_retry_after_used_as_delay(self) -> None:
        op, _ = _script(AIError.from_status(429, retry_after_ms=2000), "done")
        sleep = AsyncMock()
        await with_retry(op, max_retries=1, sleep=sleep)
        sleep.assert_awaited_once_with(2.0)

    async def test_plain_exception_classified_unknown(self) -> None:
        op, _ = _script(ValueError("bad"))
        with pytest.raises(AIError) as info:
            await with_retry(op, max_retries=2, sleep=AsyncMock())
        assert info.value.kind == "unknown"
        assert isinstance(info.value.__cause__, ValueError)

    async def test_attempt_timeout_is_retryable_timeout(self) -> None:
        attempts = 0

        async def slow(deadline: Deadline) -> str:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                await asyncio.sleep(1)
            return "late but fine"

        result = await with_retry(slow, max_retries=1, timeout=0.01, sleep=AsyncMock())
        assert result == "late but fine"
        assert attempts == 2

    async def test_expired_deadline_raises_timeout(self) -> None:
        op, calls = _script("never")
        deadline = Deadline(0)
        with pytest.raises(AIError) as info:
            await with_retry(op, deadline=deadline, sleep=AsyncMock())
        assert info.value.kind == "timeout"
        assert calls == []

    async def test_backoff_longer_than_deadline_stops(self) -> None:
        now = [0.0]
        deadline = Deadline(1.5, clock=lambda: now[0])
        op, calls = _script(AIError.from_status(429, retry_after_ms=5000), "never")
        with pytest.raises(AIError) as info:
            await with_retry(op, max_retries=3, deadline=deadline, sleep=AsyncMock())
        assert info.value.kind == "rate_limit"
        assert len(calls) == 1

    async def test_attempt_timeout_capped_by_deadline(self) -> None:
        now = [0.0]
        deadline = Deadline(5, clock=lambda: now[0])
        op, calls = _script("done")
        await with_retry(op, timeout=30, deadline=deadline, sleep=AsyncMock())
        assert calls[0].remaining() <= 5


class TestDeadline:
    def test_remaining_and_expired(self) -> None:
        now = [100.0]
        deadline = Deadline(10, clock=lambda: now[0])
        assert deadline.remaining() == 10
        now[0] = 107.0
        assert deadline.remaining() == 3
        assert deadline.cap(30) == 3
        assert deadline.cap(1) == 1
        now[0] = 111.0
        assert deadline.remaining() == 0
        assert deadline.expired is True

"""Fallback orchestration across providers.

Candidates are tried strictly one at a time, in a stable order: the
premium tier first (only while its circuit breaker allows it), then the
configured primary, then the remaining providers in fixed priority.
Each candidate runs through ``with_retry`` with its own retry budget.

Every attempt resolves to one of three explicit outcomes:

- ``Success``: the value is returned, tagged with the provider;
- ``SoftFailure``: ``None`` or a payload the caller's predicate rejects;
- ``HardError``: a classified ``AIError`` after retries.

Soft and hard failures both move on to the next candidate.  When every
candidate fails, the last hard error is raised (a trailing soft failure
is raised as ``unknown``).
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar, Union

from fitai.ai.circuit_breaker import CircuitBreaker
from fitai.ai.errors import AIError
from fitai.ai.providers.base import AIProvider
from fitai.ai.retry import Deadline, with_retry
from fitai.ai.types import ProviderResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[AIProvider, Deadline], Awaitable[Union[T, None]]]
SoftFailurePredicate = Callable[[T], bool]


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class SoftFailure:
    reason: str


@dataclass(frozen=True, slots=True)
class HardError:
    error: AIError


Outcome = Union[Success[T], SoftFailure, HardError]


class Orchestrator:
    """Runs one logical operation against the provider list.

    Args:
        providers: Stable-tier adapters in fallback order.
        premium: Optional premium-tier adapter, gated by *breaker*.
        breaker: Circuit breaker guarding the premium tier.
        short_circuit_invalid_request: Stop at the first
            ``invalid_request`` error instead of trying other providers.
        sleep: Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        providers: Sequence[AIProvider],
        *,
        premium: AIProvider | None = None,
        breaker: CircuitBreaker | None = None,
        short_circuit_invalid_request: bool = False,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if premium is not None and breaker is None:
            raise ValueError("A premium provider requires a circuit breaker")
        self.providers = list(providers)
        self.premium = premium
        self.breaker = breaker
        self.short_circuit_invalid_request = short_circuit_invalid_request
        self._sleep = sleep

    @property
    def provider_names(self) -> list[str]:
        names = [p.name for p in self.providers]
        return [self.premium.name, *names] if self.premium is not None else names

    def candidates(self, capability: str | None = None) -> list[AIProvider]:
        """Providers to try for one call, in order.

        Asking the breaker is part of building the list: in half-open
        state this admits the single trial call.
        """
        ordered = [p for p in self.providers if p.supports(capability)]
        if (
            self.premium is not None
            and self.breaker is not None
            and self.premium.supports(capability)
            and self.breaker.allow_request()
        ):
            ordered.insert(0, self.premium)
        return ordered

    async def _attempt(
        self,
        provider: AIProvider,
        operation: Operation[T],
        *,
        timeout: float,
        deadline: Deadline,
        is_soft_failure: SoftFailurePredicate[T] | None,
    ) -> Outcome[T]:
        try:
            value = await with_retry(
                lambda attempt_deadline: operation(provider, attempt_deadline),
                max_retries=provider.max_retries,
                timeout=timeout,
                deadline=deadline,
                sleep=self._sleep,
                provider=provider.name,
            )
        except AIError as exc:
            return HardError(exc)
        if value is None:
            return SoftFailure("empty result")
        if is_soft_failure is not None and is_soft_failure(value):
            return SoftFailure("rejected result")
        return Success(value)

    def _record(self, provider: AIProvider, outcome: Outcome[T]) -> None:
        if provider is not self.premium or self.breaker is None:
            return
        if isinstance(outcome, Success):
            self.breaker.record_success()
        else:
            self.breaker.record_failure()

    async def with_fallback(
        self,
        operation: Operation[T],
        *,
        timeout: float,
        deadline: Deadline,
        is_soft_failure: SoftFailurePredicate[T] | None = None,
        operation_name: str = "chat",
        capability: str | None = None,
    ) -> ProviderResult[T]:
        """Return the first successful result among the candidates.

        Args:
            operation: ``(provider, attempt_deadline) -> value | None``.
            timeout: Per-attempt timeout in seconds.
            deadline: Overall request deadline shared by all candidates.
            is_soft_failure: Rejects structurally valid but unusable values.
            operation_name: Label for log lines.
            capability: Only providers advertising it are tried.

        Raises:
            AIError: every candidate failed; the last error observed.
        """
        candidates = self.candidates(capability)
        if not candidates:
            if capability is not None:
                raise AIError.from_kind(
                    "invalid_request", f"No configured AI provider supports {capability}."
                )
            raise AIError.from_kind("auth", "No AI provider is configured.")

        last_error: AIError | None = None
        for provider in candidates:
            started = time.monotonic()
            outcome = await self._attempt(
                provider,
                operation,
                timeout=timeout,
                deadline=deadline,
                is_soft_failure=is_soft_failure,
            )
            self._record(provider, outcome)
            latency_ms = int((time.monotonic() - started) * 1000)

            if isinstance(outcome, Success):
                logger.info(
                    "AI operation succeeded",
                    extra={
                        "event": "ai_success",
                        "provider": provider.name,
                        "operation": operation_name,
                        "latency_ms": latency_ms,
                    },
                )
                return ProviderResult(value=outcome.value, provider=provider.name)

            if isinstance(outcome, HardError):
                last_error = outcome.error.with_provider(provider.name)
                kind = last_error.kind
            else:
                last_error = AIError.from_kind(
                    "unknown", f"Provider returned no usable result ({outcome.reason}).", provider=provider.name
                )
                kind = "soft_failure"

            logger.warning(
                "Provider %s failed for %s: %s",
                provider.name,
                operation_name,
                kind,
                extra={
                    "event": "ai_provider_failed",
                    "provider": provider.name,
                    "operation": operation_name,
                    "kind": kind,
                    "latency_ms": latency_ms,
                },
            )

            if self.short_circuit_invalid_request and last_error.kind == "invalid_request":
                break

        assert last_error is not None
        raise last_error

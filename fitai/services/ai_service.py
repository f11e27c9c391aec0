"""AI service facade: the public operations behind the HTTP boundary.

Every operation validates its input, runs through the fallback
orchestrator under a deadline sized to its cost and returns an ``AIResponse``
envelope.  Nothing raises past this layer: classified provider errors
keep their kind, anything unexpected becomes ``unknown``.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Sequence, TypeVar

from pydantic import BaseModel

from fitai.ai.errors import AIError
from fitai.ai.orchestrator import Operation, Orchestrator, SoftFailurePredicate
from fitai.ai.parsing import is_error_sentinel
from fitai.ai.providers.base import AIProvider
from fitai.ai.retry import Deadline
from fitai.ai.types import (
    AIResponse,
    ChatMessage,
    ChatOptions,
    ErrorInfo,
    FoodWithNutrition,
    GeneratedWorkout,
    MacroTotals,
    PhotoMealAnalysis,
    TextMealAnalysis,
    WeeklyNutritionInput,
    WeeklyNutritionInsights,
    WeeklyPlan,
    WeeklyPlanGenerationInput,
    WorkoutGenerationInput,
)
from fitai.core.config import Settings
from fitai.nutrition.enrichment import enrich_foods, generate_meal_markdown
from fitai.nutrition.reconcile import correct_calories, reconcile_totals
from fitai.nutrition.usda import USDAClient
from fitai.services.cache import TTLCache, make_key
from fitai.services.precheck import (
    PrecheckResult,
    check_image,
    check_text,
    sanitize_payload,
    to_image_url,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

MAX_PROGRESS_IMAGES = 4
MAX_AUDIO_BYTES = 10 * 1024 * 1024


def _string_soft_failure(value: str) -> bool:
    return is_error_sentinel(value)


def _photo_soft_failure(value: PhotoMealAnalysis) -> bool:
    return is_error_sentinel(value.markdown) and not value.foods


def _sanitized(data: M) -> M:
    """Copy of a structured input with every string field sanitized."""
    return type(data).model_validate(sanitize_payload(data.model_dump()))


def _invalid(check: PrecheckResult) -> AIResponse:
    return AIResponse(
        success=False,
        error=ErrorInfo(kind="invalid_request", message=check.reason or "Invalid request.", retryable=False),
        duration_ms=0,
    )


class AIService:
    """Facade over the orchestrator, nutrition pipeline and response cache.

    Args:
        orchestrator: Provider fallback orchestrator.
        settings: Timeouts, deadline and thresholds.
        usda: Nutrition database client (``None`` disables lookups).
        cache: Response cache for meal analyses.
        clock: Monotonic clock for durations.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        settings: Settings,
        *,
        usda: USDAClient | None = None,
        cache: TTLCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self.settings = settings
        self.usda = usda
        self.cache = cache
        self._clock = clock

    # ------------------------------------------------------------------
    # Core runner
    # ------------------------------------------------------------------

    async def _run(
        self,
        operation_name: str,
        operation: Operation[T],
        *,
        timeout: float,
        deadline_seconds: float,
        is_soft_failure: SoftFailurePredicate[T] | None = None,
        capability: str | None = None,
        cache_key: str | None = None,
        finalize: Callable[[T, Deadline], Awaitable[T]] | None = None,
    ) -> AIResponse[T]:
        """Run *operation* with fallback under a deadline of *deadline_seconds*.

        *finalize* post-processes the winning value under the same deadline.
        """
        started = self._clock()

        def elapsed_ms() -> int:
            return int((self._clock() - started) * 1000)

        if cache_key is not None and self.cache is not None:
            entry = await self.cache.get(cache_key)
            if entry is not None:
                logger.info(
                    "Serving %s from cache",
                    operation_name,
                    extra={"event": "cache_hit", "operation": operation_name, "provider": entry.provider},
                )
                return AIResponse(success=True, data=entry.value, provider=entry.provider, duration_ms=elapsed_ms())

        deadline = Deadline(deadline_seconds)
        try:
            result = await self.orchestrator.with_fallback(
                operation,
                timeout=timeout,
                deadline=deadline,
                is_soft_failure=is_soft_failure,
                operation_name=operation_name,
                capability=capability,
            )
            value = result.value
            if finalize is not None:
                value = await finalize(value, deadline)
        except AIError as exc:
            logger.error(
                "%s failed on every provider: %s",
                operation_name,
                exc.message,
                extra={
                    "event": "ai_failed",
                    "operation": operation_name,
                    "provider": exc.provider,
                    "kind": exc.kind,
                    "latency_ms": elapsed_ms(),
                },
            )
            return AIResponse(
                success=False,
                error=ErrorInfo(
                    kind=exc.kind,
                    message=exc.message,
                    retryable=exc.retryable,
                    retry_after_ms=exc.retry_after_ms,
                ),
                duration_ms=elapsed_ms(),
            )
        except Exception:
            logger.exception(
                "Unexpected error in %s",
                operation_name,
                extra={"event": "ai_unexpected_error", "operation": operation_name},
            )
            return AIResponse(
                success=False,
                error=ErrorInfo(kind="unknown", message="An unexpected error occurred.", retryable=False),
                duration_ms=elapsed_ms(),
            )

        if cache_key is not None and self.cache is not None:
            await self.cache.set(cache_key, value, provider=result.provider)
        return AIResponse(success=True, data=value, provider=result.provider, duration_ms=elapsed_ms())

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> AIResponse[str]:
        if not messages or not any(m.text.strip() for m in messages):
            return _invalid(PrecheckResult(passed=False, reason="At least one non-empty message is required."))
        options = options or ChatOptions()

        async def op(provider: AIProvider, deadline: Deadline) -> str | None:
            return await provider.chat(messages, options, deadline) or None

        return await self._run(
            "chat",
            op,
            timeout=options.timeout_seconds or self.settings.TEXT_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.TEXT_DEADLINE_SECONDS,
            is_soft_failure=_string_soft_failure,
        )

    async def analyze_text_meal(
        self,
        description: str,
        user_goal: str | None = None,
        *,
        identity: str = "anonymous",
    ) -> AIResponse[TextMealAnalysis]:
        check = check_text(description, "description")
        if not check.passed:
            return _invalid(check)

        return await self._run(
            "analyze_text_meal",
            lambda p, d: p.analyze_text_meal(description, user_goal, d),
            timeout=self.settings.TEXT_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.TEXT_DEADLINE_SECONDS,
            cache_key=make_key(identity, "text_meal", description, user_goal or ""),
        )

    async def analyze_meal_photo(
        self,
        image: str,
        user_goal: str | None = None,
        *,
        identity: str = "anonymous",
    ) -> AIResponse[PhotoMealAnalysis]:
        """Identify foods with the model, then price them with the nutrition pipeline."""
        check = check_image(image, self.settings.MAX_IMAGE_BYTES)
        if not check.passed:
            return _invalid(check)
        image_url = to_image_url(image)

        async def finalize(analysis: PhotoMealAnalysis, deadline: Deadline) -> PhotoMealAnalysis:
            return await self._enrich_photo_analysis(analysis, user_goal, deadline)

        return await self._run(
            "analyze_meal_photo",
            lambda p, d: p.analyze_meal_photo(image_url, user_goal, d),
            timeout=self.settings.VISION_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.VISION_DEADLINE_SECONDS,
            is_soft_failure=_photo_soft_failure,
            cache_key=make_key(identity, "meal_photo", image_url, user_goal or ""),
            finalize=finalize,
        )

    async def _enrich_photo_analysis(
        self,
        analysis: PhotoMealAnalysis,
        user_goal: str | None,
        deadline: Deadline | None = None,
    ) -> PhotoMealAnalysis:
        if not analysis.foods:
            if analysis.macros is None:
                return analysis
            return analysis.model_copy(update={"macros": reconcile_totals(analysis.macros)})

        enriched = await enrich_foods(
            analysis.foods, self.usda, self.settings.USDA_CONFIDENCE_THRESHOLD, deadline
        )
        foods: list[FoodWithNutrition] = [
            f.model_copy(update={"calories": correct_calories(f.calories, f.protein, f.carbs, f.fats)})
            for f in enriched.foods
        ]
        totals = reconcile_totals(
            MacroTotals(
                calories=sum(f.calories for f in foods),
                protein=sum(f.protein for f in foods),
                carbs=sum(f.carbs for f in foods),
                fats=sum(f.fats for f in foods),
            )
        )

        return analysis.model_copy(
            update={
                "markdown": generate_meal_markdown(foods, totals, user_goal),
                "macros": totals,
                "enriched_foods": foods,
                "has_database_data": enriched.has_database_data,
            }
        )

    async def analyze_body_photo(self, image: str) -> AIResponse[str]:
        check = check_image(image, self.settings.MAX_IMAGE_BYTES)
        if not check.passed:
            return _invalid(check)
        image_url = to_image_url(image)
        return await self._run(
            "analyze_body_photo",
            lambda p, d: p.analyze_body_photo(image_url, d),
            timeout=self.settings.VISION_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.VISION_DEADLINE_SECONDS,
            is_soft_failure=_string_soft_failure,
        )

    async def analyze_progress(self, images: Sequence[str], metrics: str) -> AIResponse[str]:
        if not images:
            return _invalid(PrecheckResult(passed=False, reason="At least one progress photo is required."))
        if len(images) > MAX_PROGRESS_IMAGES:
            return _invalid(
                PrecheckResult(passed=False, reason=f"At most {MAX_PROGRESS_IMAGES} photos are allowed.")
            )
        for image in images:
            check = check_image(image, self.settings.MAX_IMAGE_BYTES)
            if not check.passed:
                return _invalid(check)
        image_urls = [to_image_url(i) for i in images]

        return await self._run(
            "analyze_progress",
            lambda p, d: p.analyze_progress(image_urls, metrics, d),
            timeout=self.settings.LONG_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.LONG_DEADLINE_SECONDS,
            is_soft_failure=_string_soft_failure,
        )

    async def generate_workout(self, data: WorkoutGenerationInput) -> AIResponse[GeneratedWorkout]:
        data = _sanitized(data)
        return await self._run(
            "generate_workout",
            lambda p, d: p.generate_workout(data, d),
            timeout=self.settings.TEXT_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.TEXT_DEADLINE_SECONDS,
        )

    async def analyze_weekly_nutrition(self, data: WeeklyNutritionInput) -> AIResponse[WeeklyNutritionInsights]:
        if not data.logs:
            return _invalid(PrecheckResult(passed=False, reason="At least one nutrition log is required."))
        data = _sanitized(data)
        return await self._run(
            "analyze_weekly_nutrition",
            lambda p, d: p.analyze_weekly_nutrition(data, d),
            timeout=self.settings.TEXT_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.TEXT_DEADLINE_SECONDS,
        )

    async def plan_week(self, data: WeeklyPlanGenerationInput) -> AIResponse[WeeklyPlan]:
        data = _sanitized(data)
        return await self._run(
            "plan_week",
            lambda p, d: p.plan_week(data, d),
            timeout=self.settings.LONG_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.LONG_DEADLINE_SECONDS,
        )

    async def transcribe_audio(self, audio: bytes, filename: str = "audio.webm") -> AIResponse[str]:
        if not audio:
            return _invalid(PrecheckResult(passed=False, reason="Audio is required."))
        if len(audio) > MAX_AUDIO_BYTES:
            return _invalid(PrecheckResult(passed=False, reason="Audio is too large. Maximum size is 10MB."))
        return await self._run(
            "transcribe_audio",
            lambda p, d: p.transcribe_audio(audio, filename, d),
            timeout=self.settings.TEXT_TIMEOUT_SECONDS,
            deadline_seconds=self.settings.TEXT_DEADLINE_SECONDS,
            capability="transcription",
        )

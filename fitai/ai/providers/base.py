"""Provider-neutral capability layer.

An adapter only implements ``chat`` (one attempt, classified failures).
Everything built on top of it (prompt assembly, MACROS block parsing,
JSON shape validation, reconciliation) lives here once, so every
backend returns the same shapes.

Capability methods follow one contract:

- a classified ``AIError`` propagates (the orchestrator retries it or
  moves on to the next provider);
- malformed or empty model output returns ``None`` (a soft failure).
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, ClassVar, Sequence, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from fitai.ai import prompts
from fitai.ai.errors import AIError, ErrorKind, parse_retry_after, status_to_kind
from fitai.ai.parsing import (
    extract_macros_block,
    load_json_object,
    parse_identified_foods,
    parse_macros,
    strip_macros_block,
)
from fitai.ai.retry import Deadline
from fitai.ai.types import (
    ChatMessage,
    ChatOptions,
    GeneratedWorkout,
    PhotoMealAnalysis,
    TextMealAnalysis,
    WeeklyNutritionInput,
    WeeklyNutritionInsights,
    WeeklyPlan,
    WeeklyPlanGenerationInput,
    WorkoutGenerationInput,
)
from fitai.nutrition.reconcile import reconcile

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DEFAULT_TIMEOUT_SECONDS = 30.0
VISION_TIMEOUT_SECONDS = 25.0
LONG_TIMEOUT_SECONDS = 60.0

_DATA_URL = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


def split_data_url(url: str) -> tuple[str, str] | None:
    """``data:image/png;base64,XXX`` → ``("image/png", "XXX")``."""
    match = _DATA_URL.match(url)
    if not match:
        return None
    return match.group("mime"), match.group("data").strip()


class AIProvider(ABC):
    """One interchangeable AI backend.

    Args:
        api_key: Credential for the backend.
        model: Model name sent with every request.
        name: Provider identity reported with results; defaults to the
            variant name (the premium tier overrides it).
        max_retries: Retry budget; cheaper, faster backends retry more.
    """

    variant: ClassVar[str]
    default_max_retries: ClassVar[int] = 1
    supports_transcription: ClassVar[bool] = False

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        name: str | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.name = name or self.variant
        self.max_retries = self.default_max_retries if max_retries is None else max_retries

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, model={self.model!r})"

    # ------------------------------------------------------------------
    # Backend contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        deadline: Deadline | None = None,
    ) -> str:
        """Single chat call.  Returns the text, raises a classified ``AIError``."""

    async def transcribe_audio(
        self,
        audio: bytes,
        filename: str = "audio.webm",
        deadline: Deadline | None = None,
    ) -> str | None:
        raise AIError.from_kind(
            "invalid_request", "Transcription is not supported by this provider.", provider=self.name
        )

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""

    def supports(self, capability: str | None) -> bool:
        if capability is None:
            return True
        return bool(getattr(self, f"supports_{capability}", False))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _timeout(
        options: ChatOptions,
        deadline: Deadline | None,
        default: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> float:
        timeout = options.timeout_seconds or default
        return deadline.cap(timeout) if deadline is not None else timeout

    def _parse_model(self, model: type[M], text: str, operation: str) -> M | None:
        data = load_json_object(text)
        if data is None:
            logger.warning(
                "Model returned non-JSON output",
                extra={"event": "ai_malformed_output", "provider": self.name, "operation": operation},
            )
            return None
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            logger.warning(
                "Model output failed validation: %d errors",
                exc.error_count(),
                extra={"event": "ai_malformed_output", "provider": self.name, "operation": operation},
            )
            return None

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    async def analyze_text_meal(
        self,
        description: str,
        user_goal: str | None = None,
        deadline: Deadline | None = None,
    ) -> TextMealAnalysis | None:
        content = await self.chat(
            [
                ChatMessage.system(prompts.TEXT_MEAL_ANALYSIS_PROMPT),
                ChatMessage.user(prompts.build_text_meal_prompt(description, user_goal)),
            ],
            ChatOptions(temperature=0.3, max_tokens=2000),
            deadline,
        )
        block = extract_macros_block(content or "") or load_json_object(content)
        analysis = reconcile(block)
        if analysis is None:
            return None
        return analysis.model_copy(update={"markdown": strip_macros_block(content)})

    async def analyze_meal_photo(
        self,
        image_url: str,
        user_goal: str | None = None,
        deadline: Deadline | None = None,
    ) -> PhotoMealAnalysis | None:
        """Phase 1 of photo analysis: identify foods and portions."""
        content = await self.chat(
            [
                ChatMessage.system(prompts.MEAL_PHOTO_PROMPT),
                ChatMessage.user(prompts.build_meal_photo_prompt(user_goal), image_url),
            ],
            ChatOptions(max_tokens=1500, timeout_seconds=VISION_TIMEOUT_SECONDS, is_vision=True),
            deadline,
        )
        if not content or not content.strip():
            return None
        block = extract_macros_block(content)
        return PhotoMealAnalysis(
            markdown=strip_macros_block(content),
            macros=parse_macros(block),
            foods=parse_identified_foods(block),
        )

    async def analyze_body_photo(self, image_url: str, deadline: Deadline | None = None) -> str | None:
        content = await self.chat(
            [
                ChatMessage.system(prompts.BODY_ANALYSIS_PROMPT),
                ChatMessage.user("Analyze the attached body photo.", image_url),
            ],
            ChatOptions(max_tokens=1500, timeout_seconds=VISION_TIMEOUT_SECONDS, is_vision=True),
            deadline,
        )
        return content or None

    async def analyze_progress(
        self,
        image_urls: Sequence[str],
        metrics: str,
        deadline: Deadline | None = None,
    ) -> str | None:
        content = await self.chat(
            [
                ChatMessage.system(prompts.PROGRESS_ANALYSIS_PROMPT),
                ChatMessage.user(prompts.build_progress_prompt(metrics), *image_urls),
            ],
            ChatOptions(max_tokens=2000, timeout_seconds=LONG_TIMEOUT_SECONDS, is_vision=True),
            deadline,
        )
        return content or None

    async def generate_workout(
        self,
        data: WorkoutGenerationInput,
        deadline: Deadline | None = None,
    ) -> GeneratedWorkout | None:
        content = await self.chat(
            [
                ChatMessage.system(prompts.WORKOUT_GENERATION_PROMPT),
                ChatMessage.user(prompts.build_workout_prompt(data)),
            ],
            ChatOptions(max_tokens=2000, json_mode=True),
            deadline,
        )
        return self._parse_model(GeneratedWorkout, content, "generate_workout")

    async def analyze_weekly_nutrition(
        self,
        data: WeeklyNutritionInput,
        deadline: Deadline | None = None,
    ) -> WeeklyNutritionInsights | None:
        content = await self.chat(
            [
                ChatMessage.system(prompts.WEEKLY_NUTRITION_PROMPT),
                ChatMessage.user(prompts.build_weekly_nutrition_prompt(data)),
            ],
            ChatOptions(max_tokens=800, json_mode=True, temperature=0.5),
            deadline,
        )
        return self._parse_model(WeeklyNutritionInsights, content, "analyze_weekly_nutrition")

    async def plan_week(
        self,
        data: WeeklyPlanGenerationInput,
        deadline: Deadline | None = None,
        *,
        week_start: str | None = None,
    ) -> WeeklyPlan | None:
        week_start = week_start or prompts.next_week_start()
        content = await self.chat(
            [
                ChatMessage.system(prompts.WEEKLY_PLANNING_PROMPT),
                ChatMessage.user(prompts.build_week_plan_prompt(data, week_start)),
            ],
            ChatOptions(max_tokens=4000, json_mode=True, temperature=0.4, timeout_seconds=LONG_TIMEOUT_SECONDS),
            deadline,
        )
        plan = self._parse_model(WeeklyPlan, content, "plan_week")
        if plan is not None and not plan.created_at:
            plan = plan.model_copy(update={"created_at": datetime.now(timezone.utc).isoformat()})
        return plan


class HTTPProvider(AIProvider):
    """Adapter base for backends called over plain ``httpx``.

    Args:
        http_client: Shared ``httpx.AsyncClient``; one is created (and
            closed by ``aclose``) when omitted.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        name: str | None = None,
        max_retries: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(api_key, model, name=name, max_retries=max_retries)
        self._client = http_client or httpx.AsyncClient()
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _refine_kind(self, status: int, body: Any) -> ErrorKind | None:
        """Backend-specific kind from a structured error body, if any."""
        return None

    async def _post_json(
        self,
        url: str,
        *,
        headers: dict[str, str],
        payload: dict[str, Any],
        timeout: float,
    ) -> dict[str, Any]:
        """POST *payload* and return the decoded JSON body, or raise ``AIError``."""
        try:
            response = await self._client.post(url, headers=headers, json=payload, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise AIError.from_kind("timeout", provider=self.name) from exc
        except httpx.TransportError as exc:
            raise AIError.from_kind("network", provider=self.name) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            status = response.status_code
            kind = self._refine_kind(status, body) or status_to_kind(status)
            raise AIError.from_kind(
                kind,
                _error_message(body),
                status=status,
                retry_after_ms=parse_retry_after(response.headers.get("retry-after")),
                provider=self.name,
            )
        if not isinstance(body, dict):
            raise AIError.from_kind(
                "unknown", "Provider returned a non-JSON response.", status=response.status_code, provider=self.name
            )
        return body


def _error_message(body: Any) -> str | None:
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return None

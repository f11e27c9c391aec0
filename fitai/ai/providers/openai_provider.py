"""OpenAI adapter (official SDK) and the OpenAI-compatible Mistral adapter."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import openai
from openai import AsyncOpenAI

from fitai.ai.errors import AIError, parse_retry_after
from fitai.ai.providers.base import AIProvider
from fitai.ai.retry import Deadline
from fitai.ai.types import ChatMessage, ChatOptions, ContentPart, TextPart

logger = logging.getLogger(__name__)

MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
TRANSCRIPTION_MODEL = "whisper-1"
TRANSCRIPTION_TIMEOUT_SECONDS = 20.0

_QUOTA_CODES = frozenset({"insufficient_quota", "billing_hard_limit_reached"})
_CONTENT_FILTER_CODES = frozenset({"content_filter", "content_policy_violation"})


def classify_openai_error(exc: BaseException, provider: str = "openai") -> AIError:
    """Map SDK exceptions to the shared taxonomy.

    Status decides the kind; the structured ``code`` of the error body
    refines it.  Message text is never inspected.
    """
    if isinstance(exc, AIError):
        return exc
    if isinstance(exc, openai.APITimeoutError):
        return AIError.from_kind("timeout", provider=provider)
    if isinstance(exc, openai.APIConnectionError):
        return AIError.from_kind("network", provider=provider)
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        code = exc.code if isinstance(exc.code, str) else None
        retry_after_ms = parse_retry_after(exc.response.headers.get("retry-after"))
        if code in _QUOTA_CODES:
            return AIError.from_kind("quota_exceeded", status=status, provider=provider)
        if code in _CONTENT_FILTER_CODES:
            return AIError.from_kind("content_filter", status=status, provider=provider)
        return AIError.from_status(status, retry_after_ms=retry_after_ms, provider=provider)
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return AIError.from_kind("timeout", provider=provider)
    return AIError.from_kind("unknown", str(exc) or type(exc).__name__, provider=provider)


class OpenAIProvider(AIProvider):
    """Chat Completions over ``AsyncOpenAI``; also offers Whisper transcription.

    Args:
        client: Pre-built ``AsyncOpenAI`` (injectable for tests).
    """

    variant = "openai"
    default_max_retries = 1
    supports_transcription = True

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        *,
        name: str | None = None,
        max_retries: int | None = None,
        client: AsyncOpenAI | None = None,
        base_url: str | None = None,
    ) -> None:
        super().__init__(api_key, model, name=name, max_retries=max_retries)
        # SDK-level retries are disabled: retrying is the orchestrator's job.
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    async def aclose(self) -> None:
        await self._client.close()

    def _format_part(self, part: ContentPart) -> dict[str, Any]:
        if isinstance(part, TextPart):
            return {"type": "text", "text": part.text}
        return {"type": "image_url", "image_url": {"url": part.image_url}}

    def _format_messages(self, messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
        formatted: list[dict[str, Any]] = []
        for message in messages:
            if isinstance(message.content, str):
                formatted.append({"role": message.role, "content": message.content})
            else:
                formatted.append(
                    {"role": message.role, "content": [self._format_part(p) for p in message.content]}
                )
        return formatted

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        deadline: Deadline | None = None,
    ) -> str:
        options = options or ChatOptions()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": self._format_messages(messages),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "timeout": self._timeout(options, deadline),
        }
        if options.json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self._client.chat.completions.create(**kwargs)
        except openai.OpenAIError as exc:
            raise classify_openai_error(exc, self.name) from exc

        if not response.choices:
            return ""
        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise AIError.from_kind("content_filter", provider=self.name)
        return choice.message.content or ""

    async def transcribe_audio(
        self,
        audio: bytes,
        filename: str = "audio.webm",
        deadline: Deadline | None = None,
    ) -> str | None:
        timeout = TRANSCRIPTION_TIMEOUT_SECONDS
        if deadline is not None:
            timeout = deadline.cap(timeout)
        try:
            transcription = await self._client.audio.transcriptions.create(
                file=(filename, audio),
                model=TRANSCRIPTION_MODEL,
                timeout=timeout,
            )
        except openai.OpenAIError as exc:
            raise classify_openai_error(exc, self.name) from exc
        text = (transcription.text or "").strip()
        return text or None


class MistralProvider(OpenAIProvider):
    """Mistral's OpenAI-compatible chat API through the same SDK."""

    variant = "mistral"
    default_max_retries = 2
    supports_transcription = False

    def __init__(
        self,
        api_key: str,
        model: str = "mistral-small-latest",
        *,
        name: str | None = None,
        max_retries: int | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        super().__init__(
            api_key,
            model,
            name=name,
            max_retries=max_retries,
            client=client,
            base_url=MISTRAL_BASE_URL,
        )

    def _format_part(self, part: ContentPart) -> dict[str, Any]:
        # Mistral takes the image URL as a plain string.
        if isinstance(part, TextPart):
            return {"type": "text", "text": part.text}
        return {"type": "image_url", "image_url": part.image_url}

    async def transcribe_audio(
        self,
        audio: bytes,
        filename: str = "audio.webm",
        deadline: Deadline | None = None,
    ) -> str | None:
        return await AIProvider.transcribe_audio(self, audio, filename, deadline)

"""Google Gemini ``generateContent`` adapter over ``httpx``.

Also serves the premium tier, bound to a different model name.
"""

from __future__ import annotations

from typing import Any, Sequence

from fitai.ai.errors import AIError, ErrorKind
from fitai.ai.providers.base import HTTPProvider, split_data_url
from fitai.ai.retry import Deadline
from fitai.ai.types import ChatMessage, ChatOptions, ContentPart, TextPart

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

_STATUS_NAME_KINDS: dict[str, ErrorKind] = {
    "INVALID_ARGUMENT": "invalid_request",
    "FAILED_PRECONDITION": "invalid_request",
    "UNAUTHENTICATED": "auth",
    "PERMISSION_DENIED": "auth",
    "RESOURCE_EXHAUSTED": "rate_limit",
    "UNAVAILABLE": "server_error",
    "INTERNAL": "server_error",
    "DEADLINE_EXCEEDED": "timeout",
}
_BLOCKED_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "RECITATION"})


def _format_part(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    inline = split_data_url(part.image_url)
    if inline is None:
        return {"file_data": {"mime_type": "image/jpeg", "file_uri": part.image_url}}
    mime_type, data = inline
    return {"inline_data": {"mime_type": mime_type, "data": data}}


class GoogleProvider(HTTPProvider):
    variant = "google"
    default_max_retries = 2

    def _refine_kind(self, status: int, body: Any) -> ErrorKind | None:
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return _STATUS_NAME_KINDS.get(body["error"].get("status"))
        return None

    def _build_payload(self, messages: Sequence[ChatMessage], options: ChatOptions) -> dict[str, Any]:
        system = [m.text for m in messages if m.role == "system"]
        generation_config: dict[str, Any] = {
            "temperature": options.temperature,
            "maxOutputTokens": options.max_tokens,
        }
        if options.json_mode:
            generation_config["responseMimeType"] = "application/json"

        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "model" if m.role == "assistant" else "user",
                    "parts": [_format_part(p) for p in m.parts],
                }
                for m in messages
                if m.role != "system"
            ],
            "generationConfig": generation_config,
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": "\n\n".join(system)}]}
        return payload

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        deadline: Deadline | None = None,
    ) -> str:
        options = options or ChatOptions()
        body = await self._post_json(
            f"{GEMINI_BASE_URL}/{self.model}:generateContent",
            headers={"x-goog-api-key": self.api_key, "content-type": "application/json"},
            payload=self._build_payload(messages, options),
            timeout=self._timeout(options, deadline),
        )

        feedback = body.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise AIError.from_kind("content_filter", provider=self.name)

        candidates = body.get("candidates") or []
        if not candidates:
            return ""
        candidate = candidates[0]
        if candidate.get("finishReason") in _BLOCKED_FINISH_REASONS:
            raise AIError.from_kind("content_filter", provider=self.name)
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict))

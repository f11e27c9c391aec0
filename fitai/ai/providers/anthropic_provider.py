"""Anthropic Messages API adapter over ``httpx``."""

from __future__ import annotations

from typing import Any, Sequence

from fitai.ai.errors import AIError, ErrorKind
from fitai.ai.providers.base import HTTPProvider, split_data_url
from fitai.ai.retry import Deadline
from fitai.ai.types import ChatMessage, ChatOptions, ContentPart, TextPart

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
JSON_ONLY_INSTRUCTION = "Respond with a single valid JSON object and nothing else."

_ERROR_TYPE_KINDS: dict[str, ErrorKind] = {
    "invalid_request_error": "invalid_request",
    "authentication_error": "auth",
    "permission_error": "auth",
    "not_found_error": "invalid_request",
    "request_too_large": "invalid_request",
    "rate_limit_error": "rate_limit",
    "api_error": "server_error",
    "overloaded_error": "server_error",
}


def _format_part(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    inline = split_data_url(part.image_url)
    if inline is None:
        return {"type": "image", "source": {"type": "url", "url": part.image_url}}
    media_type, data = inline
    return {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}}


class AnthropicProvider(HTTPProvider):
    variant = "anthropic"
    default_max_retries = 1

    def _refine_kind(self, status: int, body: Any) -> ErrorKind | None:
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return _ERROR_TYPE_KINDS.get(body["error"].get("type"))
        return None

    def _build_payload(self, messages: Sequence[ChatMessage], options: ChatOptions) -> dict[str, Any]:
        system = [m.text for m in messages if m.role == "system"]
        if options.json_mode:
            system.append(JSON_ONLY_INSTRUCTION)

        payload: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "temperature": min(options.temperature, 1.0),
            "messages": [
                {
                    "role": m.role,
                    "content": m.content if isinstance(m.content, str) else [_format_part(p) for p in m.content],
                }
                for m in messages
                if m.role != "system"
            ],
        }
        if system:
            payload["system"] = "\n\n".join(system)
        return payload

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        deadline: Deadline | None = None,
    ) -> str:
        options = options or ChatOptions()
        body = await self._post_json(
            ANTHROPIC_MESSAGES_URL,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            payload=self._build_payload(messages, options),
            timeout=self._timeout(options, deadline),
        )

        if body.get("stop_reason") == "refusal":
            raise AIError.from_kind("content_filter", provider=self.name)
        blocks = body.get("content") or []
        return "".join(
            b.get("text", "") for b in blocks if isinstance(b, dict) and b.get("type") == "text"
        )

"""Tests for fitai.ai.providers — adapters, factory and the capability layer."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from fitai.ai.errors import AIError
from fitai.ai.providers.anthropic_provider import ANTHROPIC_MESSAGES_URL, AnthropicProvider
from fitai.ai.providers.base import split_data_url
from fitai.ai.providers.factory import (
    create_premium_provider,
    create_provider,
    create_providers,
    provider_order,
)
from fitai.ai.providers.google_provider import GEMINI_BASE_URL, GoogleProvider
from fitai.ai.providers.openai_provider import (
    MistralProvider,
    OpenAIProvider,
    classify_openai_error,
)
from fitai.ai.types import (
    ChatMessage,
    ChatOptions,
    RecoveryState,
    WeeklyPlanGenerationInput,
    WorkoutGenerationInput,
)

IMAGE = "data:image/png;base64,QUJD"
_OPENAI_URL = "https://api.openai.com/v1/chat/completions"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _openai_client(content: str | None = "hello", finish_reason: str = "stop") -> MagicMock:
    choice = MagicMock()
    choice.finish_reason = finish_reason
    choice.message.content = content
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[choice]))
    client.close = AsyncMock()
    return client


def _status_error(status: int, code: str | None = None, headers: dict | None = None) -> openai.APIStatusError:
    response = httpx.Response(status, request=httpx.Request("POST", _OPENAI_URL), headers=headers)
    return openai.APIStatusError("failed", response=response, body={"code": code})


def _http(handler) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(recording)), requests


def _messages() -> list[ChatMessage]:
    return [ChatMessage.system("Be brief."), ChatMessage.user("What is in this?", IMAGE)]


# ---------------------------------------------------------------------------
# OpenAI / Mistral
# ---------------------------------------------------------------------------


class TestOpenAIProvider:
    async def test_returns_content(self):
        client = _openai_client("hello")
        provider = OpenAIProvider("sk", client=client)
        assert await provider.chat([ChatMessage.user("hi")]) == "hello"
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert "response_format" not in kwargs

    async def test_json_mode_and_images(self):
        client = _openai_client("{}")
        provider = OpenAIProvider("sk", client=client)
        await provider.chat(_messages(), ChatOptions(json_mode=True))
        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][1]["content"][1] == {"type": "image_url", "image_url": {"url": IMAGE}}

    async def test_none_content_is_empty(self):
        provider = OpenAIProvider("sk", client=_openai_client(None))
        assert await provider.chat([ChatMessage.user("hi")]) == ""

    async def test_content_filter_finish_reason(self):
        provider = OpenAIProvider("sk", client=_openai_client("", finish_reason="content_filter"))
        with pytest.raises(AIError) as exc_info:
            await provider.chat([ChatMessage.user("hi")])
        assert exc_info.value.kind == "content_filter"

    async def test_sdk_error_classified(self):
        client = _openai_client()
        client.chat.completions.create = AsyncMock(side_effect=_status_error(429, headers={"retry-after": "2"}))
        provider = OpenAIProvider("sk", client=client)
        with pytest.raises(AIError) as exc_info:
            await provider.chat([ChatMessage.user("hi")])
        assert exc_info.value.kind == "rate_limit"
        assert exc_info.value.retry_after_ms == 2000
        assert exc_info.value.provider == "openai"

    async def test_transcription(self):
        client = _openai_client()
        client.audio.transcriptions.create = AsyncMock(return_value=MagicMock(text="  two eggs  "))
        provider = OpenAIProvider("sk", client=client)
        assert await provider.transcribe_audio(b"abc", "a.webm") == "two eggs"
        kwargs = client.audio.transcriptions.create.await_args.kwargs
        assert kwargs["file"] == ("a.webm", b"abc")
        assert kwargs["model"] == "whisper-1"

    async def test_blank_transcription_none(self):
        client = _openai_client()
        client.audio.transcriptions.create = AsyncMock(return_value=MagicMock(text="   "))
        assert await OpenAIProvider("sk", client=client).transcribe_audio(b"abc") is None

    async def test_aclose(self):
        client = _openai_client()
        await OpenAIProvider("sk", client=client).aclose()
        client.close.assert_awaited_once()


class TestMistralProvider:
    async def test_image_url_plain_string(self):
        client = _openai_client("ok")
        provider = MistralProvider("key", client=client)
        await provider.chat(_messages())
        parts = client.chat.completions.create.await_args.kwargs["messages"][1]["content"]
        assert parts[1] == {"type": "image_url", "image_url": IMAGE}

    async def test_no_transcription(self):
        provider = MistralProvider("key", client=_openai_client())
        assert not provider.supports("transcription")
        with pytest.raises(AIError) as exc_info:
            await provider.transcribe_audio(b"abc")
        assert exc_info.value.kind == "invalid_request"


class TestClassifyOpenAIError:
    @pytest.mark.parametrize(
        ("status", "code", "kind"),
        [
            (429, "insufficient_quota", "quota_exceeded"),
            (429, None, "rate_limit"),
            (400, "content_policy_violation", "content_filter"),
            (401, None, "auth"),
            (503, None, "server_error"),
        ],
    )
    def test_status_errors(self, status, code, kind):
        assert classify_openai_error(_status_error(status, code)).kind == kind

    def test_timeout(self):
        exc = openai.APITimeoutError(request=httpx.Request("POST", _OPENAI_URL))
        assert classify_openai_error(exc).kind == "timeout"

    def test_connection(self):
        exc = openai.APIConnectionError(request=httpx.Request("POST", _OPENAI_URL))
        assert classify_openai_error(exc).kind == "network"

    def test_quota_not_retryable(self):
        assert classify_openai_error(_status_error(429, "insufficient_quota")).retryable is False


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    async def test_request_shape(self):
        http, requests = _http(
            lambda r: httpx.Response(200, json={"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]})
        )
        provider = AnthropicProvider("ak", "claude-test", http_client=http)
        assert await provider.chat(_messages(), ChatOptions(json_mode=True, temperature=1.5)) == "ab"

        request = requests[0]
        assert str(request.url) == ANTHROPIC_MESSAGES_URL
        assert request.headers["x-api-key"] == "ak"
        assert request.headers["anthropic-version"] == "2023-06-01"
        payload = json.loads(request.content)
        assert payload["model"] == "claude-test"
        assert payload["temperature"] == 1.0
        assert payload["system"].startswith("Be brief.\n\n")
        assert [m["role"] for m in payload["messages"]] == ["user"]
        assert payload["messages"][0]["content"][1] == {
            "type": "image",
            "source": {"type": "base64", "media_type": "image/png", "data": "QUJD"},
        }

    async def test_https_image_as_url_source(self):
        http, requests = _http(lambda r: httpx.Response(200, json={"content": []}))
        provider = AnthropicProvider("ak", "m", http_client=http)
        await provider.chat([ChatMessage.user("x", "https://example.com/a.jpg")])
        part = json.loads(requests[0].content)["messages"][0]["content"][1]
        assert part["source"] == {"type": "url", "url": "https://example.com/a.jpg"}

    async def test_refusal(self):
        http, _ = _http(lambda r: httpx.Response(200, json={"stop_reason": "refusal", "content": []}))
        with pytest.raises(AIError) as exc_info:
            await AnthropicProvider("ak", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == "content_filter"

    @pytest.mark.parametrize(
        ("status", "error_type", "kind"),
        [
            (529, "overloaded_error", "server_error"),
            (400, "invalid_request_error", "invalid_request"),
            (429, "rate_limit_error", "rate_limit"),
            (418, "something_new", "unknown"),
        ],
    )
    async def test_error_types(self, status, error_type, kind):
        body = {"type": "error", "error": {"type": error_type, "message": "nope"}}
        http, _ = _http(lambda r: httpx.Response(status, json=body, headers={"retry-after": "3"}))
        with pytest.raises(AIError) as exc_info:
            await AnthropicProvider("ak", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == kind
        assert exc_info.value.message == "nope"
        assert exc_info.value.status == status
        assert exc_info.value.retry_after_ms == 3000

    async def test_network_error(self):
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        http, _ = _http(boom)
        with pytest.raises(AIError) as exc_info:
            await AnthropicProvider("ak", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == "network"
        assert exc_info.value.retryable

    async def test_timeout(self):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        http, _ = _http(slow)
        with pytest.raises(AIError) as exc_info:
            await AnthropicProvider("ak", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == "timeout"

    async def test_non_json_body(self):
        http, _ = _http(lambda r: httpx.Response(200, text="<html>"))
        with pytest.raises(AIError) as exc_info:
            await AnthropicProvider("ak", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == "unknown"


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


def _gemini_reply(text: str, finish_reason: str = "STOP") -> dict:
    return {"candidates": [{"finishReason": finish_reason, "content": {"parts": [{"text": text}]}}]}


class TestGoogleProvider:
    async def test_request_shape(self):
        http, requests = _http(lambda r: httpx.Response(200, json=_gemini_reply("hi")))
        provider = GoogleProvider("gk", "gemini-test", http_client=http)
        messages = [*_messages(), ChatMessage(role="assistant", content="earlier")]
        assert await provider.chat(messages, ChatOptions(json_mode=True)) == "hi"

        request = requests[0]
        assert str(request.url) == f"{GEMINI_BASE_URL}/gemini-test:generateContent"
        assert request.headers["x-goog-api-key"] == "gk"
        payload = json.loads(request.content)
        assert payload["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert payload["generationConfig"]["responseMimeType"] == "application/json"
        assert [c["role"] for c in payload["contents"]] == ["user", "model"]
        assert payload["contents"][0]["parts"][1] == {"inline_data": {"mime_type": "image/png", "data": "QUJD"}}

    async def test_no_candidates_empty(self):
        http, _ = _http(lambda r: httpx.Response(200, json={"candidates": []}))
        assert await GoogleProvider("gk", "m", http_client=http).chat([ChatMessage.user("x")]) == ""

    async def test_prompt_blocked(self):
        http, _ = _http(lambda r: httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}))
        with pytest.raises(AIError) as exc_info:
            await GoogleProvider("gk", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == "content_filter"

    async def test_safety_finish_reason(self):
        http, _ = _http(lambda r: httpx.Response(200, json=_gemini_reply("", "SAFETY")))
        with pytest.raises(AIError) as exc_info:
            await GoogleProvider("gk", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == "content_filter"

    @pytest.mark.parametrize(
        ("status", "status_name", "kind"),
        [
            (429, "RESOURCE_EXHAUSTED", "rate_limit"),
            (400, "INVALID_ARGUMENT", "invalid_request"),
            (403, "PERMISSION_DENIED", "auth"),
            (500, "INTERNAL", "server_error"),
        ],
    )
    async def test_error_status_names(self, status, status_name, kind):
        body = {"error": {"code": status, "status": status_name, "message": "bad"}}
        http, _ = _http(lambda r: httpx.Response(status, json=body))
        with pytest.raises(AIError) as exc_info:
            await GoogleProvider("gk", "m", http_client=http).chat([ChatMessage.user("x")])
        assert exc_info.value.kind == kind

    async def test_shared_client_not_closed(self):
        http, _ = _http(lambda r: httpx.Response(200, json={}))
        await GoogleProvider("gk", "m", http_client=http).aclose()
        assert not http.is_closed


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestFactory:
    def test_order_primary_first(self):
        assert provider_order("anthropic") == ["anthropic", "openai", "google", "mistral"]

    def test_only_configured_providers(self, settings):
        configured = settings.model_copy(update={"MISTRAL_API_KEY": "mk"})
        assert [p.name for p in create_providers(configured)] == ["openai", "mistral"]

    def test_ai_api_key_for_primary(self, settings):
        configured = settings.model_copy(
            update={"AI_PROVIDER": "google", "AI_API_KEY": "gk", "OPENAI_API_KEY": ""}
        )
        providers = create_providers(configured)
        assert [p.name for p in providers] == ["google"]
        assert providers[0].api_key == "gk"

    def test_unknown_provider(self, settings):
        with pytest.raises(ValueError, match="Unknown AI provider"):
            create_provider("cohere", "key", settings)

    def test_premium_disabled(self, settings):
        assert create_premium_provider(settings) is None

    def test_premium_needs_google_key(self, settings):
        assert create_premium_provider(settings.model_copy(update={"PREMIUM_TIER_ENABLED": True})) is None

    def test_premium_created(self, settings):
        configured = settings.model_copy(update={"PREMIUM_TIER_ENABLED": True, "GOOGLE_AI_API_KEY": "gk"})
        premium = create_premium_provider(configured)
        assert isinstance(premium, GoogleProvider)
        assert premium.name == "premium"
        assert premium.model == configured.PREMIUM_MODEL
        assert premium.max_retries == 1


def test_split_data_url():
    assert split_data_url("data:image/png;base64,QUJD") == ("image/png", "QUJD")
    assert split_data_url("https://example.com/a.png") is None


# ---------------------------------------------------------------------------
# Capability layer
# ---------------------------------------------------------------------------

_TEXT_MEAL_REPLY = """\
## Breakfast

Two eggs, a solid start.

---MACROS_JSON---
{"foods": [{"name": "Eggs", "portion": "2 large", "calories": 300, "protein": 12, "carbs": 1, "fats": 10}],
 "totals": {"calories": 300, "protein": 12, "carbs": 1, "fats": 10},
 "confidence": "high", "notes": "Boiled"}
---END_MACROS---"""

_PHOTO_REPLY = """\
Looks like chicken and rice.
---MACROS_JSON---
{"calories": 600, "protein": 45, "carbs": 60, "fats": 15,
 "foods": [{"name": "**Chicken breast**", "portion": "150g", "portion_grams": 150, "confidence": 0.9}, "rice"]}
---END_MACROS---"""

_WORKOUT = {
    "title": "Upper Body Push",
    "duration_minutes": 45,
    "intensity": "moderate",
    "warmup": {"duration_minutes": 5, "exercises": [{"name": "Arm circles", "duration": "1 min"}]},
    "exercises": [{"name": "Bench press", "sets": 4, "reps": "8-10"}],
    "cooldown": {"duration_minutes": 5, "exercises": []},
}


def _plan() -> dict:
    names = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
    return {
        "id": "plan-1",
        "week_start": "2026-10-19",
        "days": [{"day": i, "day_name": n, "is_rest_day": True} for i, n in enumerate(names)],
        "reasoning": "Deload week.",
    }


def _workout_input() -> WorkoutGenerationInput:
    return WorkoutGenerationInput(
        recovery=RecoveryState(energy_level=4, sleep_hours=7.5, last_workout_rating=4)
    )


class TestCapabilities:
    async def test_text_meal_reconciled(self, scripted):
        provider = scripted("p", [_TEXT_MEAL_REPLY])
        analysis = await provider.analyze_text_meal("2 eggs", "cut")
        assert analysis is not None
        # 12*4 + 1*4 + 10*9 = 142
        assert analysis.foods[0].calories == 142
        assert analysis.totals.calories == 142
        assert analysis.confidence == "high"
        assert "---MACROS_JSON---" not in analysis.markdown
        assert analysis.markdown.startswith("## Breakfast")

    async def test_text_meal_bare_json(self, scripted):
        reply = json.dumps({"foods": [], "totals": {}})
        analysis = await scripted("p", [reply]).analyze_text_meal("water", None)
        assert analysis is not None
        assert analysis.totals.calories == 0

    async def test_text_meal_without_structure_is_none(self, scripted):
        assert await scripted("p", ["Just prose."]).analyze_text_meal("eggs", None) is None

    async def test_meal_photo(self, scripted):
        provider = scripted("p", [_PHOTO_REPLY])
        analysis = await provider.analyze_meal_photo(IMAGE, "bulk")
        assert analysis is not None
        assert analysis.markdown == "Looks like chicken and rice."
        assert analysis.macros is not None
        assert analysis.macros.calories == 600
        assert [f.name for f in analysis.foods] == ["Chicken breast", "rice"]
        assert analysis.foods[0].portion_grams == 150
        user_message = provider.calls[0][1]
        assert user_message.parts[1].image_url == IMAGE

    async def test_meal_photo_empty_is_none(self, scripted):
        assert await scripted("p", ["  "]).analyze_meal_photo(IMAGE) is None

    async def test_body_photo(self, scripted):
        assert await scripted("p", ["Lean build."]).analyze_body_photo(IMAGE) == "Lean build."
        assert await scripted("p", [""]).analyze_body_photo(IMAGE) is None

    async def test_progress_sends_all_images(self, scripted):
        provider = scripted("p", ["Progress!"])
        await provider.analyze_progress([IMAGE, IMAGE], "Weight: 80kg")
        assert len(provider.calls[0][1].parts) == 3

    async def test_workout_parsed(self, scripted):
        workout = await scripted("p", [json.dumps(_WORKOUT)]).generate_workout(_workout_input())
        assert workout is not None
        assert workout.title == "Upper Body Push"
        assert workout.exercises[0].rest_seconds == 60

    async def test_workout_fenced_json(self, scripted):
        reply = f"```json\n{json.dumps(_WORKOUT)}\n```"
        assert await scripted("p", [reply]).generate_workout(_workout_input()) is not None

    async def test_workout_invalid_shape_is_none(self, scripted):
        reply = json.dumps({**_WORKOUT, "intensity": "extreme"})
        assert await scripted("p", [reply]).generate_workout(_workout_input()) is None

    async def test_plan_week_fills_created_at(self, scripted):
        provider = scripted("p", [json.dumps(_plan())])
        plan = await provider.plan_week(WeeklyPlanGenerationInput(), week_start="2026-10-19")
        assert plan is not None
        assert plan.created_at
        assert "2026-10-19" in provider.calls[0][1].text

    async def test_plan_week_requires_seven_days(self, scripted):
        short = {**_plan(), "days": _plan()["days"][:6]}
        assert await scripted("p", [json.dumps(short)]).plan_week(WeeklyPlanGenerationInput()) is None

    async def test_adapter_error_propagates(self, scripted):
        provider = scripted("p", [AIError.from_kind("auth")])
        with pytest.raises(AIError):
            await provider.analyze_body_photo(IMAGE)

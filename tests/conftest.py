"""Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) for the shared
counter store so tests run without an external PostgreSQL instance,
and a scripted provider so orchestration runs without network calls.
"""

from __future__ import annotations

from typing import Sequence
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from fitai.ai.providers.base import AIProvider
from fitai.ai.retry import Deadline
from fitai.ai.types import ChatMessage, ChatOptions
from fitai.core.config import Settings
from fitai.db.models import Base


class ScriptedProvider(AIProvider):
    """Provider whose ``chat`` replies come from a script.

    Each call consumes the next reply; the last one repeats.  A reply
    that is an exception is raised instead of returned.
    """

    variant = "openai"

    def __init__(
        self,
        name: str,
        replies: Sequence[object] = ("ok",),
        *,
        max_retries: int = 0,
        transcription: bool = False,
        transcript: str | None = None,
    ) -> None:
        super().__init__("test-key", "test-model", name=name, max_retries=max_retries)
        self.replies = list(replies)
        self.calls: list[Sequence[ChatMessage]] = []
        self.supports_transcription = transcription  # type: ignore[misc]
        self.transcript = transcript

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
        deadline: Deadline | None = None,
    ) -> str:
        self.calls.append(messages)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply  # type: ignore[return-value]

    async def transcribe_audio(
        self,
        audio: bytes,
        filename: str = "audio.webm",
        deadline: Deadline | None = None,
    ) -> str | None:
        self.calls.append([])
        return self.transcript


@pytest.fixture
def scripted():
    """Factory for ``ScriptedProvider`` instances."""
    return ScriptedProvider


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Sleep replacement so retry backoff costs nothing."""
    return AsyncMock()


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any ``.env`` file."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        AI_PROVIDER="openai",
        AI_API_KEY="",
        OPENAI_API_KEY="sk-test",
        ANTHROPIC_API_KEY="",
        GOOGLE_AI_API_KEY="",
        MISTRAL_API_KEY="",
        PREMIUM_TIER_ENABLED=False,
        ADMIN_SECRET="",
        DATABASE_URL="",
        USDA_API_KEY="",
    )


@pytest.fixture
async def engine():
    """Create an async in-memory SQLite engine with all tables."""
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()

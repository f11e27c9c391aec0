"""Request bodies for the HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from fitai.ai.types import ChatMessage, ChatOptions


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    options: ChatOptions | None = None


class TextMealRequest(BaseModel):
    description: str
    user_goal: str | None = None


class MealPhotoRequest(BaseModel):
    image: str
    user_goal: str | None = None


class BodyPhotoRequest(BaseModel):
    image: str


class ProgressRequest(BaseModel):
    images: list[str] = Field(min_length=1)
    metrics: str = ""


class TranscribeRequest(BaseModel):
    """Audio as base64 (optionally a ``data:`` URL)."""

    audio: str
    filename: str = "audio.webm"

"""Application configuration via Pydantic Settings.

Reads environment variables (and optional .env file) and validates them
at startup. Use ``get_settings()`` to obtain a cached singleton.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["openai", "anthropic", "google", "mistral"]


class Settings(BaseSettings):
    """Validated application settings sourced from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    # --- Providers -------------------------------------------------------
    AI_PROVIDER: ProviderName = "openai"
    AI_API_KEY: str = ""
    OPENAI_API_KEY: str = ""
    ANTHROPIC_API_KEY: str = ""
    GOOGLE_AI_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_AI_API_KEY", "GEMINI_API_KEY"),
    )
    MISTRAL_API_KEY: str = ""

    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    GOOGLE_MODEL: str = "gemini-2.5-flash"
    MISTRAL_MODEL: str = "mistral-small-latest"

    # --- Premium tier (guarded by the circuit breaker) --------------------
    PREMIUM_TIER_ENABLED: bool = False
    PREMIUM_MODEL: str = "gemini-3-flash-preview"
    CIRCUIT_FAILURE_THRESHOLD: int = 3
    CIRCUIT_RECOVERY_SECONDS: float = 60.0

    # --- Timeouts ---------------------------------------------------------
    TEXT_TIMEOUT_SECONDS: float = 30.0
    VISION_TIMEOUT_SECONDS: float = 25.0
    LONG_TIMEOUT_SECONDS: float = 60.0
    # Overall per-request budget by operation cost; retries and fallback share it
    TEXT_DEADLINE_SECONDS: float = 30.0
    VISION_DEADLINE_SECONDS: float = 45.0
    LONG_DEADLINE_SECONDS: float = 60.0

    # --- Rate limiting ----------------------------------------------------
    RATE_LIMIT_PER_MINUTE: int = 30
    RATE_LIMIT_PER_DAY: int = 50
    DATABASE_URL: str = ""  # empty = in-memory counters (single instance only)
    CLIENT_IP_HEADERS: str = "x-vercel-forwarded-for,x-real-ip"
    # Set by the auth gateway, which must strip it from client requests
    # (like CLIENT_IP_HEADERS); empty = never trust a user-id header
    USER_ID_HEADER: str = "x-authenticated-user-id"

    # --- Nutrition database -----------------------------------------------
    USDA_API_KEY: str = ""
    USDA_CONFIDENCE_THRESHOLD: float = 0.6
    USDA_TIMEOUT_SECONDS: float = 10.0

    # --- Misc -------------------------------------------------------------
    CACHE_TTL_SECONDS: int = 300
    MAX_IMAGE_BYTES: int = 2 * 1024 * 1024  # 2 MB decoded
    FALLBACK_SHORT_CIRCUIT_INVALID_REQUEST: bool = False
    ADMIN_SECRET: str = ""
    LOG_LEVEL: str = "INFO"

    # --- Derived ----------------------------------------------------------
    @property
    def uses_shared_store(self) -> bool:
        """True when rate-limit counters live in the shared database."""
        return bool(self.DATABASE_URL)

    @property
    def client_ip_headers_list(self) -> list[str]:
        """Trusted proxy headers, lowercased, in priority order."""
        return [h.strip().lower() for h in self.CLIENT_IP_HEADERS.split(",") if h.strip()]

    def api_key_for(self, provider: str) -> str:
        """Return the API key for *provider* (``AI_API_KEY`` wins for the primary)."""
        if provider == self.AI_PROVIDER and self.AI_API_KEY:
            return self.AI_API_KEY
        return {
            "openai": self.OPENAI_API_KEY,
            "anthropic": self.ANTHROPIC_API_KEY,
            "google": self.GOOGLE_AI_API_KEY,
            "mistral": self.MISTRAL_API_KEY,
        }.get(provider, "")

    # --- Validators ------------------------------------------------------
    @field_validator(
        "CIRCUIT_FAILURE_THRESHOLD",
        "CIRCUIT_RECOVERY_SECONDS",
        "TEXT_TIMEOUT_SECONDS",
        "VISION_TIMEOUT_SECONDS",
        "LONG_TIMEOUT_SECONDS",
        "TEXT_DEADLINE_SECONDS",
        "VISION_DEADLINE_SECONDS",
        "LONG_DEADLINE_SECONDS",
        "RATE_LIMIT_PER_MINUTE",
        "RATE_LIMIT_PER_DAY",
        "USDA_TIMEOUT_SECONDS",
        "CACHE_TTL_SECONDS",
        "MAX_IMAGE_BYTES",
    )
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("USDA_CONFIDENCE_THRESHOLD")
    @classmethod
    def _validate_threshold(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("USDA_CONFIDENCE_THRESHOLD must be in (0, 1]")
        return v

    @field_validator("ADMIN_SECRET")
    @classmethod
    def _validate_admin_secret(cls, v: str) -> str:
        if not v:  # empty = admin endpoints disabled
            return v
        if len(v) < 8:
            raise ValueError("ADMIN_SECRET must be at least 8 characters")
        return v

    @model_validator(mode="after")
    def _validate_deadlines(self) -> Settings:
        """Each deadline must cover at least one attempt of its class."""
        for kind in ("TEXT", "VISION", "LONG"):
            deadline = getattr(self, f"{kind}_DEADLINE_SECONDS")
            timeout = getattr(self, f"{kind}_TIMEOUT_SECONDS")
            if deadline < timeout:
                raise ValueError(f"{kind}_DEADLINE_SECONDS must be >= {kind}_TIMEOUT_SECONDS")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings singleton."""
    return Settings()

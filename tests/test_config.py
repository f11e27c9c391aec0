"""Tests for fitai.core.config.Settings validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from fitai.core.config import Settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
_ISOLATED = {
    "AI_API_KEY": "",
    "OPENAI_API_KEY": "",
    "ANTHROPIC_API_KEY": "",
    "GOOGLE_AI_API_KEY": "",
    "MISTRAL_API_KEY": "",
    "DATABASE_URL": "",
    "ADMIN_SECRET": "",
}


def _make(**overrides: object) -> Settings:
    env = {**_ISOLATED, **overrides}
    return Settings(_env_file=None, **env)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------
class TestDefaults:
    def test_primary_provider_default(self) -> None:
        assert _make().AI_PROVIDER == "openai"

    def test_rate_limit_defaults(self) -> None:
        s = _make()
        assert s.RATE_LIMIT_PER_MINUTE == 30
        assert s.RATE_LIMIT_PER_DAY == 50

    def test_circuit_defaults(self) -> None:
        s = _make()
        assert s.CIRCUIT_FAILURE_THRESHOLD == 3
        assert s.CIRCUIT_RECOVERY_SECONDS == 60.0

    def test_timeouts_default(self) -> None:
        s = _make()
        assert s.TEXT_TIMEOUT_SECONDS == 30.0
        assert s.VISION_TIMEOUT_SECONDS == 25.0
        assert s.LONG_TIMEOUT_SECONDS == 60.0
        assert (s.TEXT_DEADLINE_SECONDS, s.VISION_DEADLINE_SECONDS, s.LONG_DEADLINE_SECONDS) == (30.0, 45.0, 60.0)

    def test_short_circuit_disabled_by_default(self) -> None:
        assert _make().FALLBACK_SHORT_CIRCUIT_INVALID_REQUEST is False

    def test_in_memory_store_without_database(self) -> None:
        assert _make().uses_shared_store is False

    def test_shared_store_with_database(self) -> None:
        s = _make(DATABASE_URL="postgresql+asyncpg://u:p@localhost/db")
        assert s.uses_shared_store is True


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
class TestPositiveValidation:
    @pytest.mark.parametrize(
        "field",
        [
            "CIRCUIT_FAILURE_THRESHOLD",
            "RATE_LIMIT_PER_MINUTE",
            "RATE_LIMIT_PER_DAY",
            "CACHE_TTL_SECONDS",
            "MAX_IMAGE_BYTES",
        ],
    )
    def test_zero_rejected(self, field: str) -> None:
        with pytest.raises(ValidationError, match="must be positive"):
            _make(**{field: 0})

    def test_negative_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must be positive"):
            _make(TEXT_TIMEOUT_SECONDS=-1)


class TestOtherValidation:
    def test_unknown_provider_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _make(AI_PROVIDER="cohere")

    def test_threshold_above_one_rejected(self) -> None:
        with pytest.raises(ValidationError, match="USDA_CONFIDENCE_THRESHOLD"):
            _make(USDA_CONFIDENCE_THRESHOLD=1.5)

    def test_short_admin_secret_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 8"):
            _make(ADMIN_SECRET="short")

    def test_empty_admin_secret_allowed(self) -> None:
        assert _make(ADMIN_SECRET="").ADMIN_SECRET == ""

    def test_deadline_shorter_than_long_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError, match="LONG_DEADLINE_SECONDS"):
            _make(LONG_DEADLINE_SECONDS=30, LONG_TIMEOUT_SECONDS=60)

    def test_deadline_shorter_than_vision_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError, match="VISION_DEADLINE_SECONDS"):
            _make(VISION_DEADLINE_SECONDS=20, VISION_TIMEOUT_SECONDS=25)


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------
class TestDerived:
    def test_client_ip_headers_lowercased(self) -> None:
        s = _make(CLIENT_IP_HEADERS=" X-Real-IP , CF-Connecting-IP,")
        assert s.client_ip_headers_list == ["x-real-ip", "cf-connecting-ip"]

    def test_api_key_for_provider(self) -> None:
        s = _make(ANTHROPIC_API_KEY="sk-ant")
        assert s.api_key_for("anthropic") == "sk-ant"
        assert s.api_key_for("mistral") == ""

    def test_ai_api_key_overrides_primary(self) -> None:
        s = _make(AI_PROVIDER="google", AI_API_KEY="generic", GOOGLE_AI_API_KEY="specific")
        assert s.api_key_for("google") == "generic"

    def test_ai_api_key_ignored_for_non_primary(self) -> None:
        s = _make(AI_PROVIDER="google", AI_API_KEY="generic", OPENAI_API_KEY="sk-openai")
        assert s.api_key_for("openai") == "sk-openai"

    def test_unknown_provider_has_no_key(self) -> None:
        assert _make().api_key_for("cohere") == ""

"""Provider factory.

The closed set of backend variants is declared here and nowhere else:
adding a backend means adding one entry to ``PROVIDER_CLASSES``.
"""

from __future__ import annotations

import httpx

from fitai.ai.providers.anthropic_provider import AnthropicProvider
from fitai.ai.providers.base import AIProvider, HTTPProvider
from fitai.ai.providers.google_provider import GoogleProvider
from fitai.ai.providers.openai_provider import MistralProvider, OpenAIProvider
from fitai.core.config import Settings

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "openai": OpenAIProvider,
    "google": GoogleProvider,
    "anthropic": AnthropicProvider,
    "mistral": MistralProvider,
}

# Fallback priority after the configured primary.
PROVIDER_PRIORITY: tuple[str, ...] = ("openai", "google", "anthropic", "mistral")

PREMIUM_PROVIDER_NAME = "premium"
PREMIUM_MAX_RETRIES = 1


def _model_for(name: str, settings: Settings) -> str:
    return {
        "openai": settings.OPENAI_MODEL,
        "google": settings.GOOGLE_MODEL,
        "anthropic": settings.ANTHROPIC_MODEL,
        "mistral": settings.MISTRAL_MODEL,
    }[name]


def create_provider(
    name: str,
    api_key: str,
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> AIProvider:
    """Create the adapter for variant *name*.

    Raises:
        ValueError: *name* is not a known variant.
    """
    cls = PROVIDER_CLASSES.get(name)
    if cls is None:
        raise ValueError(f"Unknown AI provider: {name!r}")
    if issubclass(cls, HTTPProvider):
        return cls(api_key, _model_for(name, settings), http_client=http_client)
    return cls(api_key, _model_for(name, settings))


def provider_order(primary: str) -> list[str]:
    """Primary first, then the fixed priority, duplicates removed."""
    return list(dict.fromkeys([primary, *PROVIDER_PRIORITY]))


def create_providers(settings: Settings, *, http_client: httpx.AsyncClient | None = None) -> list[AIProvider]:
    """Adapters for every configured backend, in fallback order."""
    providers: list[AIProvider] = []
    for name in provider_order(settings.AI_PROVIDER):
        api_key = settings.api_key_for(name)
        if api_key:
            providers.append(create_provider(name, api_key, settings, http_client=http_client))
    return providers


def create_premium_provider(
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> AIProvider | None:
    """Google adapter bound to the premium model, when the tier is enabled."""
    if not settings.PREMIUM_TIER_ENABLED:
        return None
    api_key = settings.api_key_for("google")
    if not api_key:
        return None
    return GoogleProvider(
        api_key,
        settings.PREMIUM_MODEL,
        name=PREMIUM_PROVIDER_NAME,
        max_retries=PREMIUM_MAX_RETRIES,
        http_client=http_client,
    )

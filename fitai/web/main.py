"""FastAPI application: AI endpoints, health check, admin endpoints, lifecycle.

Counter store selection is determined by ``DATABASE_URL``:
- **Shared** (production): ``DATABASE_URL`` set; migrations run on
  startup and rate-limit counters live in the database.
- **In-memory** (local dev, single instance): counters are process-local
  and reset on restart.  Logged at WARNING on startup.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
import subprocess
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx
from fastapi import Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from fitai.ai.circuit_breaker import all_circuit_statuses, find_circuit_breaker, get_circuit_breaker
from fitai.ai.orchestrator import Orchestrator
from fitai.ai.providers.base import split_data_url
from fitai.ai.providers.factory import PROVIDER_CLASSES, create_premium_provider, create_providers
from fitai.ai.types import (
    AIResponse,
    ErrorInfo,
    WeeklyNutritionInput,
    WeeklyPlanGenerationInput,
    WorkoutGenerationInput,
)
from fitai.core.config import Settings, get_settings
from fitai.core.logging import setup_logging
from fitai.db.counters import SQLCounterStore
from fitai.db.session import dispose_engine, get_engine
from fitai.nutrition.usda import USDAClient
from fitai.services.ai_service import AIService
from fitai.services.cache import TTLCache
from fitai.services.rate_limit import (
    CounterStore,
    InMemoryCounterStore,
    RateLimitDecision,
    RateLimiter,
    resolve_identity,
)
from fitai.web.schemas import (
    BodyPhotoRequest,
    ChatRequest,
    MealPhotoRequest,
    ProgressRequest,
    TextMealRequest,
    TranscribeRequest,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


@dataclass
class Runtime:
    """Everything a request handler needs, built once per process."""

    settings: Settings
    service: AIService
    limiter: RateLimiter
    http_client: httpx.AsyncClient | None = None

    async def aclose(self) -> None:
        orchestrator = self.service.orchestrator
        providers = list(orchestrator.providers)
        if orchestrator.premium is not None:
            providers.append(orchestrator.premium)
        for provider in providers:
            await provider.aclose()
        if self.service.usda is not None:
            await self.service.usda.aclose()
        if self.http_client is not None:
            await self.http_client.aclose()
        if self.limiter.store.shared:
            await dispose_engine()


def _run_migrations() -> None:
    """Run ``alembic upgrade head`` via subprocess.

    ``alembic/env.py`` calls ``asyncio.run()`` itself, so it cannot run
    inside the already-running event loop.
    """
    logger.info("Running database migrations", extra={"event": "migrations_start"})
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        logger.error(
            "Migration failed: %s",
            result.stderr,
            extra={"event": "migrations_failed"},
        )
        raise RuntimeError(f"Alembic migration failed:\n{result.stderr}")
    logger.info("Database migrations complete", extra={"event": "migrations_done"})


def _create_counter_store(settings: Settings) -> CounterStore:
    if settings.uses_shared_store:
        _run_migrations()
        return SQLCounterStore(get_engine())
    logger.warning(
        "DATABASE_URL not set: rate limits are per-instance and reset on restart",
        extra={"event": "counter_store_in_memory"},
    )
    return InMemoryCounterStore()


def build_runtime(settings: Settings) -> Runtime:
    """Wire counter store, providers, nutrition lookup, cache and limiter."""
    store = _create_counter_store(settings)
    http_client = httpx.AsyncClient()

    providers = create_providers(settings, http_client=http_client)
    if not providers:
        logger.warning("No AI provider API key configured", extra={"event": "no_providers"})
    premium = create_premium_provider(settings, http_client=http_client)
    breaker = (
        get_circuit_breaker("premium", settings.CIRCUIT_FAILURE_THRESHOLD, settings.CIRCUIT_RECOVERY_SECONDS)
        if premium is not None
        else None
    )
    orchestrator = Orchestrator(
        providers,
        premium=premium,
        breaker=breaker,
        short_circuit_invalid_request=settings.FALLBACK_SHORT_CIRCUIT_INVALID_REQUEST,
    )

    usda = USDAClient(settings.USDA_API_KEY, http_client=http_client, timeout=settings.USDA_TIMEOUT_SECONDS)
    if not usda.enabled:
        logger.warning(
            "USDA_API_KEY not set: meal photos use static nutrition estimates only",
            extra={"event": "usda_disabled"},
        )

    cache: TTLCache = TTLCache(ttl=settings.CACHE_TTL_SECONDS, name="responses")
    logger.info(
        "Response cache is process-local (ttl=%ss)",
        settings.CACHE_TTL_SECONDS,
        extra={"event": "cache_process_local", "cache": cache.name},
    )

    service = AIService(orchestrator, settings, usda=usda, cache=cache)
    limiter = RateLimiter.per_minute_and_day(store, settings.RATE_LIMIT_PER_MINUTE, settings.RATE_LIMIT_PER_DAY)

    logger.info(
        "Runtime ready: providers=%s",
        ",".join(orchestrator.provider_names) or "-",
        extra={"event": "startup"},
    )
    return Runtime(settings=settings, service=service, limiter=limiter, http_client=http_client)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle manager.

    1. Configure logging.
    2. Build the runtime (migrations run when a database is configured).
    3. Close network clients and the engine on shutdown.
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    runtime = build_runtime(settings)
    app.state.runtime = runtime

    yield

    await runtime.aclose()
    logger.info("Shutdown complete", extra={"event": "shutdown"})


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None)


class RateLimited(Exception):
    def __init__(self, decision: RateLimitDecision) -> None:
        super().__init__(decision.message)
        self.decision = decision


class ServiceUnavailable(Exception):
    pass


def _error_response(status_code: int, error: ErrorInfo, headers: dict[str, str] | None = None) -> JSONResponse:
    body = AIResponse(success=False, error=error, duration_ms=0)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


@app.exception_handler(RateLimited)
async def _rate_limited_handler(request: Request, exc: RateLimited) -> JSONResponse:
    decision = exc.decision
    retry_after_ms = decision.retry_after_ms or 1000
    return _error_response(
        429,
        ErrorInfo(
            kind="rate_limit",
            message=decision.message or "Rate limit exceeded.",
            retryable=True,
            retry_after_ms=retry_after_ms,
        ),
        headers={"Retry-After": str(math.ceil(retry_after_ms / 1000))},
    )


@app.exception_handler(RequestValidationError)
async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid request: {location}: {first.get('msg', 'invalid value')}" if location else "Invalid request."
    return _error_response(400, ErrorInfo(kind="invalid_request", message=message, retryable=False))


@app.exception_handler(ServiceUnavailable)
async def _unavailable_handler(request: Request, exc: ServiceUnavailable) -> JSONResponse:
    return _error_response(503, ErrorInfo(kind="unknown", message="Service is starting up.", retryable=True))


def get_runtime(request: Request) -> Runtime:
    runtime: Runtime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise ServiceUnavailable()
    return runtime


async def enforce_rate_limit(request: Request, runtime: Runtime = Depends(get_runtime)) -> str:
    """Resolve the caller identity and count the request; raises ``RateLimited``."""
    settings = runtime.settings
    identity = resolve_identity(
        request.headers.get(settings.USER_ID_HEADER) if settings.USER_ID_HEADER else None,
        request.headers,
        settings.client_ip_headers_list,
        request.client.host if request.client else None,
    )
    decision = await runtime.limiter.check_request(identity)
    if not decision.allowed:
        raise RateLimited(decision)
    return identity


def _status_for(result: AIResponse) -> int:
    if result.success or result.error is None:
        return 200
    if result.error.kind == "invalid_request":
        return 400
    if result.error.kind == "content_filter":
        return 422
    return 500


def _respond(result: AIResponse, response: Response) -> AIResponse:
    response.status_code = _status_for(result)
    return result


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health")
async def health(request: Request) -> dict[str, object]:
    """Health check: configured providers, circuit states, counter store."""
    runtime: Runtime | None = getattr(request.app.state, "runtime", None)
    settings = runtime.settings if runtime is not None else get_settings()
    return {
        "status": "ok" if runtime is not None else "starting",
        "primary_provider": settings.AI_PROVIDER,
        "providers": {name: bool(settings.api_key_for(name)) for name in PROVIDER_CLASSES},
        "active_providers": runtime.service.orchestrator.provider_names if runtime is not None else [],
        "premium_enabled": settings.PREMIUM_TIER_ENABLED,
        "circuits": [
            {"name": s.name, "state": s.state, "failures": s.failures} for s in all_circuit_statuses()
        ],
        "shared_rate_limit_store": settings.uses_shared_store,
        "usda_enabled": bool(settings.USDA_API_KEY),
    }


# ---------------------------------------------------------------------------
# AI endpoints
# ---------------------------------------------------------------------------


@app.post("/api/ai/chat")
async def chat(
    body: ChatRequest,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    return _respond(await runtime.service.chat(body.messages, body.options), response)


@app.post("/api/ai/analyze-meal")
async def analyze_meal(
    body: TextMealRequest,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    result = await runtime.service.analyze_text_meal(body.description, body.user_goal, identity=identity)
    return _respond(result, response)


@app.post("/api/ai/analyze-meal-photo")
async def analyze_meal_photo(
    body: MealPhotoRequest,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    result = await runtime.service.analyze_meal_photo(body.image, body.user_goal, identity=identity)
    return _respond(result, response)


@app.post("/api/ai/analyze-body")
async def analyze_body(
    body: BodyPhotoRequest,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    return _respond(await runtime.service.analyze_body_photo(body.image), response)


@app.post("/api/ai/analyze-progress")
async def analyze_progress(
    body: ProgressRequest,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    return _respond(await runtime.service.analyze_progress(body.images, body.metrics), response)


@app.post("/api/ai/generate-workout")
async def generate_workout(
    body: WorkoutGenerationInput,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    return _respond(await runtime.service.generate_workout(body), response)


@app.post("/api/ai/analyze-weekly")
async def analyze_weekly(
    body: WeeklyNutritionInput,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    return _respond(await runtime.service.analyze_weekly_nutrition(body), response)


@app.post("/api/ai/plan-week")
async def plan_week(
    body: WeeklyPlanGenerationInput,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    return _respond(await runtime.service.plan_week(body), response)


@app.post("/api/ai/transcribe")
async def transcribe(
    body: TranscribeRequest,
    response: Response,
    identity: str = Depends(enforce_rate_limit),
    runtime: Runtime = Depends(get_runtime),
) -> AIResponse:
    payload = split_data_url(body.audio)
    encoded = payload[1] if payload is not None else body.audio
    try:
        audio = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return _respond(
            AIResponse(
                success=False,
                error=ErrorInfo(kind="invalid_request", message="Audio must be base64-encoded."),
                duration_ms=0,
            ),
            response,
        )
    return _respond(await runtime.service.transcribe_audio(audio, body.filename), response)


# ---------------------------------------------------------------------------
# Admin endpoints (protected by ADMIN_SECRET)
# ---------------------------------------------------------------------------


@app.post("/admin/circuit/{name}/reset/{secret}")
async def reset_circuit(name: str, secret: str) -> dict[str, object]:
    """Force a circuit breaker back to ``closed``.

    Protected by ``ADMIN_SECRET``.  Returns 403 if the secret is wrong or
    empty, 404 for an unknown circuit.
    """
    settings = get_settings()
    if not settings.ADMIN_SECRET or secret != settings.ADMIN_SECRET:
        return Response(status_code=403)  # type: ignore[return-value]

    breaker = find_circuit_breaker(name)
    if breaker is None:
        return Response(status_code=404)  # type: ignore[return-value]

    breaker.reset()
    status = breaker.status()
    return {"status": "ok", "circuit": status.name, "state": status.state}

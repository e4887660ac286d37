# FastAPI application factory with lifespan management.
# Entrypoint: uvicorn commitcast.main:create_app --factory --host 0.0.0.0 --port 8080

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from commitcast.auth import BearerTokenAuthenticator
from commitcast.clients.gemini import GeminiClient
from commitcast.clients.github import GitHubClient
from commitcast.config import Settings, get_settings
from commitcast.exceptions import ErrorKind, ErrorRecord, error_response, register_exception_handlers
from commitcast.logging_config import configure_logging
from commitcast.middleware import RequestContextMiddleware
from commitcast.rate_limit import InMemoryRateLimitStore, limiter
from commitcast.routes import generate, health, repositories
from commitcast.routes import prometheus as prometheus_routes
from commitcast.services.generator import ContentGenerator
from commitcast.services.metrics import PipelineMetrics
from commitcast.services.pipeline import RequestOrchestrator

logger = structlog.get_logger(__name__)


def _parse_retry_after(rate_limit: str) -> int:
    """Extract window duration from slowapi rate limit string."""
    windows = {"second": 1, "minute": 60, "hour": 3600, "day": 86400}
    try:
        _, window = rate_limit.strip().split("/")
        return windows.get(window.strip(), 60)
    except (ValueError, AttributeError):
        return 60


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return the same 429 body the per-user limiter produces."""
    settings = get_settings()
    logger.warning(
        "http_rate_limit_exceeded",
        path=request.url.path,
        method=request.method,
        detail=str(exc.detail),
    )
    record = ErrorRecord(
        ErrorKind.RATE_LIMIT,
        "Too many requests",
        {"limit": str(exc.detail)},
        retry_after=_parse_retry_after(settings.http_rate_limit),
    )
    return error_response(record, debug=settings.debug_errors)


if TYPE_CHECKING:
    from opentelemetry.sdk.trace import TracerProvider


def _configure_otel(exporter_type: str) -> "TracerProvider | None":
    """Configure OpenTelemetry tracing (console only)."""
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

    if exporter_type != "console":
        logger.warning("unknown_otel_exporter", exporter=exporter_type)
        return None

    provider = TracerProvider()
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    from opentelemetry import trace

    trace.set_tracer_provider(provider)
    logger.info("otel_configured", exporter=exporter_type)
    return provider


def build_orchestrator(
    settings: Settings,
    github_http: httpx.AsyncClient,
    generation_http: httpx.AsyncClient,
    metrics: PipelineMetrics | None = None,
) -> RequestOrchestrator:
    """Wire the default adapters and stores around the given HTTP clients."""
    github = GitHubClient(github_http, timeout_seconds=settings.github_timeout_seconds)
    provider = GeminiClient(
        generation_http,
        api_key=settings.generation_api_key.get_secret_value(),
        model=settings.generation_model,
        timeout_seconds=settings.generation_timeout_seconds,
    )
    generator = ContentGenerator(
        provider,
        max_retries=settings.generation_max_retries,
        backoff_seconds=settings.generation_retry_backoff_seconds,
        max_diff_chars=settings.max_diff_chars,
    )
    return RequestOrchestrator(
        settings,
        authenticator=BearerTokenAuthenticator(),
        diff_fetcher=github,
        generator=generator,
        generate_limiter=InMemoryRateLimitStore(
            settings.generate_rate_limit,
            settings.generate_rate_window_ms,
            max_tracked_keys=settings.rate_limit_max_tracked_keys,
        ),
        default_limiter=InMemoryRateLimitStore(
            settings.default_rate_limit,
            settings.default_rate_window_ms,
            max_tracked_keys=settings.rate_limit_max_tracked_keys,
        ),
        repository_source=github,
        metrics=metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the upstream HTTP clients on startup and close them on shutdown."""
    settings = get_settings()

    otel_provider = None
    if settings.otel_exporter:
        otel_provider = _configure_otel(settings.otel_exporter)

    if not settings.has_generation_key:
        logger.warning(
            "generation_key_missing",
            hint="Set GENERATION_API_KEY. /generate will answer ConfigurationError.",
        )

    metrics = PipelineMetrics()
    async with (
        httpx.AsyncClient(
            base_url=settings.github_api_url,
            timeout=httpx.Timeout(settings.github_timeout_seconds),
        ) as github_http,
        httpx.AsyncClient(
            base_url=settings.generation_base_url,
            timeout=httpx.Timeout(settings.generation_timeout_seconds),
        ) as generation_http,
    ):
        app.state.settings = settings
        app.state.metrics = metrics
        app.state.orchestrator = build_orchestrator(
            settings, github_http, generation_http, metrics=metrics
        )
        logger.info(
            "app_started",
            environment=settings.environment,
            generation_model=settings.generation_model,
        )

        yield

    # Flush OTel spans before shutdown
    if otel_provider is not None:
        otel_provider.shutdown()


def _parse_origins(allowed_origins: str) -> list[str]:
    """Parse comma-separated CORS origins. Empty string → deny all."""
    if not allowed_origins.strip():
        logger.warning(
            "cors_no_origins_configured",
            hint="Set ALLOWED_ORIGINS env var. Cross-origin requests will be rejected.",
        )
        return []
    return [origin.strip() for origin in allowed_origins.split(",") if origin.strip()]


def create_app() -> FastAPI:
    """Application factory. Invoked by: uvicorn commitcast.main:create_app --factory"""
    settings = get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title="CommitCast",
        description="Turns a commit diff into Twitter, LinkedIn and blog drafts",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # Middleware order (Starlette applies in reverse): CORS → RequestContext
    app.add_middleware(RequestContextMiddleware)

    origins = _parse_origins(settings.allowed_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
            "X-Request-ID",
        ],
    )

    register_exception_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(generate.router, tags=["generate"])
    app.include_router(repositories.router, tags=["repositories"])
    app.include_router(prometheus_routes.router, tags=["prometheus"])

    return app

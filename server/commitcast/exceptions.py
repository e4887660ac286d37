# ─────────────────────────────────────────────────────────────────────────────
# Error taxonomy, classifier, and FastAPI exception handlers
# ─────────────────────────────────────────────────────────────────────────────
# Every failure in the request path ends up as one ErrorRecord. The core
# raises CommitCastError (which carries a record); upstream adapters raise
# UpstreamError subclasses; classify() maps anything else to UnknownError.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


# ── Taxonomy ─────────────────────────────────────────────────────────────────


class ErrorKind(StrEnum):
    """Closed set of failure kinds surfaced to clients."""

    AUTHENTICATION = "AuthenticationError"
    VALIDATION = "ValidationError"
    NOT_FOUND = "NotFoundError"
    RATE_LIMIT = "RateLimitError"
    EXTERNAL_API = "ExternalAPIError"
    CONFIGURATION = "ConfigurationError"
    UNKNOWN = "UnknownError"


# kind → (HTTP status, stable machine-readable code)
_STATUS_CODES: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.AUTHENTICATION: (401, "AUTHENTICATION_ERROR"),
    ErrorKind.VALIDATION: (400, "VALIDATION_ERROR"),
    ErrorKind.NOT_FOUND: (404, "NOT_FOUND"),
    ErrorKind.RATE_LIMIT: (429, "RATE_LIMIT_EXCEEDED"),
    ErrorKind.EXTERNAL_API: (502, "EXTERNAL_API_ERROR"),
    ErrorKind.CONFIGURATION: (500, "CONFIGURATION_ERROR"),
    ErrorKind.UNKNOWN: (500, "INTERNAL_ERROR"),
}

GENERIC_AUTH_MESSAGE = "Unauthorized"
GENERIC_CONFIG_MESSAGE = "Server configuration error"
GENERIC_INTERNAL_MESSAGE = "An error occurred while processing your request"


@dataclass(frozen=True)
class ErrorRecord:
    """One classified failure. Built at the failure site, rendered once."""

    kind: ErrorKind
    message: str
    details: dict[str, Any] | None = None
    retry_after: float | None = None  # seconds; RateLimitError only

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.kind][0]

    @property
    def code(self) -> str:
        return _STATUS_CODES[self.kind][1]

    @property
    def retry_after_seconds(self) -> int | None:
        """Retry-After rounded up to whole seconds (never 0 for a denial)."""
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after))


class CommitCastError(Exception):
    """The single exception type for classified failures in the core."""

    def __init__(self, record: ErrorRecord) -> None:
        self.record = record
        super().__init__(record.message)

    @property
    def kind(self) -> ErrorKind:
        return self.record.kind

    @classmethod
    def authentication(cls, reason: str = GENERIC_AUTH_MESSAGE) -> CommitCastError:
        return cls(ErrorRecord(ErrorKind.AUTHENTICATION, reason))

    @classmethod
    def validation(cls, fields: list[dict[str, Any]]) -> CommitCastError:
        return cls(ErrorRecord(ErrorKind.VALIDATION, "Validation failed", {"fields": fields}))

    @classmethod
    def not_found(cls, message: str, details: dict[str, Any] | None = None) -> CommitCastError:
        return cls(ErrorRecord(ErrorKind.NOT_FOUND, message, details))

    @classmethod
    def rate_limited(cls, limit: int, retry_after: float) -> CommitCastError:
        return cls(
            ErrorRecord(
                ErrorKind.RATE_LIMIT,
                "Too many requests",
                {"limit": limit},
                retry_after=max(retry_after, 0.0),
            )
        )

    @classmethod
    def external_api(
        cls, message: str, *, api: str, endpoint: str, cause: str
    ) -> CommitCastError:
        return cls(
            ErrorRecord(
                ErrorKind.EXTERNAL_API,
                message,
                {"api": api, "endpoint": endpoint, "cause": cause},
            )
        )

    @classmethod
    def configuration(cls, message: str) -> CommitCastError:
        return cls(ErrorRecord(ErrorKind.CONFIGURATION, message))


# ── Upstream adapter errors ──────────────────────────────────────────────────


@dataclass(eq=False)
class UpstreamError(Exception):
    """Failure reported by an external API adapter.

    ``summary`` is the client-safe message ("Failed to fetch commit diff");
    everything else is server-side context.
    """

    summary: str
    api: str
    endpoint: str
    cause: str
    status: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.summary)

    def context(self) -> dict[str, Any]:
        ctx: dict[str, Any] = {"api": self.api, "endpoint": self.endpoint, "cause": self.cause}
        if self.status is not None:
            ctx["status"] = self.status
        return {**ctx, **self.extra}


class UpstreamUnauthorized(UpstreamError):
    """The upstream rejected the caller's credential (401)."""


class UpstreamNotFound(UpstreamError):
    """The upstream resource does not exist (404 / unknown ref)."""


class UpstreamRateLimited(UpstreamError):
    """The upstream's own quota is exhausted for this credential."""


class UpstreamUnavailable(UpstreamError):
    """Transport failure, timeout, or 5xx from the upstream."""


# ── Classifier ───────────────────────────────────────────────────────────────


def classify(exc: BaseException) -> ErrorRecord:
    """Map any exception onto the closed taxonomy."""
    if isinstance(exc, CommitCastError):
        return exc.record
    if isinstance(exc, UpstreamUnauthorized):
        return ErrorRecord(ErrorKind.AUTHENTICATION, GENERIC_AUTH_MESSAGE, exc.context())
    if isinstance(exc, UpstreamNotFound):
        return ErrorRecord(ErrorKind.NOT_FOUND, "Repository or commit not found", exc.context())
    if isinstance(exc, (UpstreamRateLimited, UpstreamUnavailable)):
        return ErrorRecord(ErrorKind.EXTERNAL_API, exc.summary, exc.context())
    message = str(exc) or type(exc).__name__
    return ErrorRecord(ErrorKind.UNKNOWN, message, {"type": type(exc).__name__})


def render(record: ErrorRecord, *, debug: bool = False) -> dict[str, Any]:
    """Build the client-facing error body for a record.

    Validation and rate-limit failures keep their actionable details.
    Authentication failures never say which check failed. Everything else
    exposes upstream or internal context only when ``debug`` is set.
    """
    kind = record.kind
    body: dict[str, Any] = {"code": record.code}

    if kind is ErrorKind.AUTHENTICATION:
        body["error"] = GENERIC_AUTH_MESSAGE
    elif kind is ErrorKind.VALIDATION:
        body["error"] = record.message
        body["details"] = record.details or {}
    elif kind is ErrorKind.RATE_LIMIT:
        body["error"] = record.message
        body["details"] = record.details or {}
        body["retryAfter"] = record.retry_after_seconds
    elif kind in (ErrorKind.NOT_FOUND, ErrorKind.EXTERNAL_API):
        body["error"] = record.message
        if debug and record.details:
            body["details"] = record.details
    elif kind is ErrorKind.CONFIGURATION:
        body["error"] = GENERIC_CONFIG_MESSAGE
        if debug:
            body["details"] = {"message": record.message}
    else:
        body["error"] = GENERIC_INTERNAL_MESSAGE
        if debug:
            body["details"] = {"message": record.message, **(record.details or {})}
    return body


def error_response(
    record: ErrorRecord,
    *,
    debug: bool = False,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """JSONResponse for a record, with Retry-After on 429."""
    merged = dict(headers or {})
    if record.retry_after_seconds is not None:
        merged["Retry-After"] = str(record.retry_after_seconds)
    return JSONResponse(
        status_code=record.status_code,
        content=render(record, debug=debug),
        headers=merged or None,
    )


# ── Handler registration ────────────────────────────────────────────────────


def _debug_enabled(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.debug_errors)


def register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers for failures raised outside the orchestrator.

    The orchestrator classifies its own failures; these handlers give every
    other route the same body shape.
    """

    @app.exception_handler(CommitCastError)
    async def commitcast_error_handler(request: Request, exc: CommitCastError) -> JSONResponse:
        logger.warning(
            "request_failed",
            kind=str(exc.kind),
            error=exc.record.message,
            path=request.url.path,
        )
        return error_response(exc.record, debug=_debug_enabled(request))

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
        record = classify(exc)
        logger.error("upstream_error", path=request.url.path, **exc.context())
        return error_response(record, debug=_debug_enabled(request))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=True)
        return error_response(classify(exc), debug=_debug_enabled(request))

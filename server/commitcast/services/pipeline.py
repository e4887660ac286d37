# Request orchestrator: auth → config → rate limit → validate → diff → generate.
# Short-circuits on the first failure; every run ends in exactly one
# pipeline_completed log line, success or not.


import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog
from fastapi.responses import JSONResponse
from opentelemetry import trace

from commitcast.auth import Authenticator, Identity
from commitcast.clients.github import API_NAME as GITHUB_API, DiffFetcher, RepositorySource
from commitcast.config import Settings
from commitcast.exceptions import (
    CommitCastError,
    ErrorKind,
    ErrorRecord,
    UpstreamRateLimited,
    UpstreamUnavailable,
    classify,
    render,
)
from commitcast.rate_limit import RateLimitDecision, RateLimitStore
from commitcast.schemas import GenerateRequest, GenerateResponse
from commitcast.services.generator import ContentGenerator
from commitcast.services.metrics import PipelineMetrics
from commitcast.validation import validate_json

logger = structlog.get_logger(__name__)
tracer = trace.get_tracer(__name__)

# Slack on top of the adapters' own timeouts so theirs fire first.
_TIMEOUT_GRACE_SECONDS = 1.0

# Kinds that are the caller's problem, not ours.
_CLIENT_KINDS = frozenset(
    {
        ErrorKind.AUTHENTICATION,
        ErrorKind.VALIDATION,
        ErrorKind.NOT_FOUND,
        ErrorKind.RATE_LIMIT,
    }
)


class PipelineState(StrEnum):
    received = "received"
    authenticated = "authenticated"
    rate_checked = "rate_checked"
    validated = "validated"
    diff_fetched = "diff_fetched"
    generated = "generated"
    responded = "responded"
    failed = "failed"


@dataclass(frozen=True)
class RequestContext:
    """What the orchestrator needs to know about the inbound HTTP request."""

    method: str
    path: str
    client_ip: str | None = None
    authorization: str | None = field(default=None, repr=False)


@dataclass
class PipelineOutcome:
    """Terminal result of one run: rendered body plus rate-limit context."""

    state: PipelineState
    status_code: int
    body: Any
    duration_ms: float
    rate_limit: RateLimitDecision | None = None
    error: ErrorRecord | None = None
    failed_at: PipelineState | None = None

    def headers(self) -> dict[str, str]:
        headers = self.rate_limit.headers() if self.rate_limit is not None else {}
        if self.error is not None and self.error.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.error.retry_after_seconds)
        return headers

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.body,
            headers=self.headers() or None,
        )


@dataclass
class _Run:
    route: str
    ctx: RequestContext
    state: PipelineState = PipelineState.received
    decision: RateLimitDecision | None = None
    identity: Identity | None = None
    started: float = field(default_factory=time.perf_counter)

    @property
    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started) * 1000, 1)


class RequestOrchestrator:
    """Sequences one request through the pipeline and renders the outcome.

    Catches ``Exception`` at its boundary (never ``BaseException``), so a
    cancelled request still unwinds through ``asyncio.CancelledError``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        authenticator: Authenticator,
        diff_fetcher: DiffFetcher,
        generator: ContentGenerator,
        generate_limiter: RateLimitStore,
        default_limiter: RateLimitStore,
        repository_source: RepositorySource | None = None,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._settings = settings
        self._authenticator = authenticator
        self._diff_fetcher = diff_fetcher
        self._generator = generator
        self._generate_limiter = generate_limiter
        self._default_limiter = default_limiter
        self._repository_source = repository_source
        self._metrics = metrics

    # ── POST /generate ──────────────────────────────────────────────────────

    async def generate(self, ctx: RequestContext, body: bytes) -> PipelineOutcome:
        run = _Run(route="generate", ctx=ctx)
        with tracer.start_as_current_span("generate") as span:
            try:
                identity = await self._authenticate(run)
                self._require_generation_key()
                self._consume(run, self._generate_limiter, identity)

                request = validate_json(GenerateRequest, body)
                run.state = PipelineState.validated
                span.set_attribute("repo", f"{request.owner}/{request.repo_name}")

                with tracer.start_as_current_span("fetch_diff"):
                    diff = await self._bounded(
                        self._diff_fetcher.fetch_diff(
                            identity.access_token,
                            request.owner,
                            request.repo_name,
                            request.commit_sha,
                        ),
                        timeout=self._settings.github_timeout_seconds,
                        api=GITHUB_API,
                        endpoint="fetch_diff",
                        summary="Failed to fetch commit diff",
                    )
                run.state = PipelineState.diff_fetched

                with tracer.start_as_current_span("generate_content"):
                    drafts = await self._generator.generate(
                        diff, f"Commit in {request.repo_name}"
                    )
                run.state = PipelineState.generated

                payload = GenerateResponse(drafts=drafts).model_dump(mode="json", by_alias=True)
                return self._respond(run, payload, drafts=len(drafts))
            except Exception as exc:
                span.set_attribute("failed_at", run.state.value)
                return self._fail(run, exc)

    # ── GET /repositories ───────────────────────────────────────────────────

    async def list_repositories(self, ctx: RequestContext) -> PipelineOutcome:
        run = _Run(route="repositories", ctx=ctx)
        with tracer.start_as_current_span("list_repositories"):
            try:
                identity = await self._authenticate(run)
                self._consume(run, self._default_limiter, identity)
                if self._repository_source is None:
                    raise CommitCastError.configuration("No repository source configured")

                try:
                    repositories = await self._bounded(
                        self._repository_source.list_repositories(identity.access_token),
                        timeout=self._settings.github_timeout_seconds,
                        api=GITHUB_API,
                        endpoint="list_repositories",
                        summary="Failed to fetch repositories",
                    )
                except (UpstreamRateLimited, UpstreamUnavailable) as exc:
                    # Listing failures other than a bad credential are a plain 500.
                    raise CommitCastError(
                        ErrorRecord(ErrorKind.UNKNOWN, "Failed to fetch repositories", exc.context())
                    ) from exc
                except CommitCastError as exc:
                    if exc.kind is not ErrorKind.EXTERNAL_API:
                        raise
                    raise CommitCastError(
                        ErrorRecord(ErrorKind.UNKNOWN, "Failed to fetch repositories", exc.record.details)
                    ) from exc

                payload = [r.model_dump(mode="json", by_alias=True) for r in repositories]
                return self._respond(run, payload)
            except Exception as exc:
                return self._fail(run, exc)

    # ── Stages ──────────────────────────────────────────────────────────────

    async def _authenticate(self, run: _Run) -> Identity:
        identity = await self._authenticator.authenticate(run.ctx.authorization)
        run.identity = identity
        run.state = PipelineState.authenticated
        return identity

    def _require_generation_key(self) -> None:
        if not self._settings.has_generation_key:
            raise CommitCastError.configuration("GENERATION_API_KEY is not configured")

    def _consume(self, run: _Run, store: RateLimitStore, identity: Identity) -> None:
        decision = store.consume(f"user:{identity.user_id}")
        run.decision = decision
        if not decision.allowed:
            logger.warning(
                "rate_limit_denied",
                route=run.route,
                user_id=identity.user_id,
                limit=decision.limit,
                retry_after=round(decision.retry_after, 1),
            )
            raise CommitCastError.rate_limited(decision.limit, decision.retry_after)
        run.state = PipelineState.rate_checked

    async def _bounded(
        self, call: Any, *, timeout: float, api: str, endpoint: str, summary: str
    ) -> Any:
        """Await an adapter call with an outer timeout as a backstop."""
        try:
            return await asyncio.wait_for(call, timeout=timeout + _TIMEOUT_GRACE_SECONDS)
        except TimeoutError:
            raise CommitCastError.external_api(
                summary, api=api, endpoint=endpoint, cause=f"timed out after {timeout}s"
            ) from None

    # ── Terminal states ─────────────────────────────────────────────────────

    def _respond(self, run: _Run, payload: Any, *, drafts: int = 0) -> PipelineOutcome:
        run.state = PipelineState.responded
        duration_ms = run.elapsed_ms
        self._log_completed(run, status=200, duration_ms=duration_ms)
        if self._metrics:
            self._metrics.record_request(run.route, duration_ms, drafts=drafts)
        return PipelineOutcome(
            state=PipelineState.responded,
            status_code=200,
            body=payload,
            duration_ms=duration_ms,
            rate_limit=run.decision,
        )

    def _fail(self, run: _Run, exc: Exception) -> PipelineOutcome:
        record = classify(exc)
        failed_at = run.state
        log_fields: dict[str, Any] = {
            "route": run.route,
            "failed_at": failed_at.value,
            "kind": record.kind.value,
            "error": record.message,
        }
        if run.identity is not None:
            log_fields["user_id"] = run.identity.user_id

        if record.kind in _CLIENT_KINDS:
            logger.warning("pipeline_rejected", **log_fields)
        elif record.kind is ErrorKind.UNKNOWN:
            logger.error("pipeline_unexpected_error", **log_fields, exc_info=exc)
        else:
            logger.error("pipeline_failed", **log_fields, upstream=record.details)

        run.state = PipelineState.failed
        duration_ms = run.elapsed_ms
        self._log_completed(
            run, status=record.status_code, duration_ms=duration_ms, failed_at=failed_at
        )
        if self._metrics:
            self._metrics.record_request(run.route, duration_ms, error_kind=record.kind.value)
        return PipelineOutcome(
            state=PipelineState.failed,
            status_code=record.status_code,
            body=render(record, debug=self._settings.debug_errors),
            duration_ms=duration_ms,
            rate_limit=run.decision,
            error=record,
            failed_at=failed_at,
        )

    def _log_completed(
        self,
        run: _Run,
        *,
        status: int,
        duration_ms: float,
        failed_at: PipelineState | None = None,
    ) -> None:
        logger.info(
            "pipeline_completed",
            method=run.ctx.method,
            path=run.ctx.path,
            client_ip=run.ctx.client_ip,
            state=run.state.value,
            failed_at=failed_at.value if failed_at else None,
            status=status,
            duration_ms=duration_ms,
        )

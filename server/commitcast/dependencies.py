# ─────────────────────────────────────────────────────────────────────────────
# Dependency Injection — FastAPI Depends() providers
# ─────────────────────────────────────────────────────────────────────────────
# State flows: lifespan creates → app.state stores → Depends() injects.
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import Request

from commitcast.config import Settings
from commitcast.services.metrics import PipelineMetrics
from commitcast.services.pipeline import RequestContext, RequestOrchestrator


def get_settings_dep(request: Request) -> Settings:
    """Inject Settings into endpoints via Depends()."""
    return request.app.state.settings  # type: ignore[no-any-return]


def get_metrics(request: Request) -> PipelineMetrics:
    """Inject PipelineMetrics into endpoints via Depends()."""
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_orchestrator(request: Request) -> RequestOrchestrator:
    """Inject RequestOrchestrator into endpoints via Depends()."""
    return request.app.state.orchestrator  # type: ignore[no-any-return]


def get_request_context(request: Request) -> RequestContext:
    """Snapshot the parts of the HTTP request the pipeline needs."""
    return RequestContext(
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
        authorization=request.headers.get("authorization"),
    )

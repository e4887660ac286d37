# ─────────────────────────────────────────────────────────────────────────────
# Prometheus Metrics Endpoint — text exposition format
# ─────────────────────────────────────────────────────────────────────────────
# GET /metrics/prometheus → text/plain Prometheus format
# Bridges PipelineMetrics → prometheus-client gauges.
# ─────────────────────────────────────────────────────────────────────────────

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from prometheus_client import CollectorRegistry, Gauge, generate_latest

from commitcast.dependencies import get_metrics
from commitcast.exceptions import ErrorKind
from commitcast.services.metrics import PipelineMetrics

router = APIRouter()

# ── Prometheus metrics (custom registry to avoid default process metrics) ─────

_registry = CollectorRegistry()

_requests_total = Gauge(
    "commitcast_requests_total",
    "Pipeline runs since process start",
    ["outcome"],
    registry=_registry,
)

_failures_total = Gauge(
    "commitcast_failures_total",
    "Failed pipeline runs by error kind",
    ["kind"],
    registry=_registry,
)

_drafts_generated = Gauge(
    "commitcast_drafts_generated",
    "Drafts returned to callers",
    registry=_registry,
)

_latency_ms = Gauge(
    "commitcast_request_latency_ms",
    "Pipeline latency over the recent window",
    ["quantile"],
    registry=_registry,
)


def _sync_metrics(metrics: PipelineMetrics) -> None:
    """Sync PipelineMetrics data into Prometheus gauges."""
    data = metrics.to_dict()

    _requests_total.labels(outcome="success").set(data["successes_total"])
    _requests_total.labels(outcome="error").set(data["errors_total"])
    _drafts_generated.set(data["drafts_generated"])

    failures = data["failures_by_kind"]
    for kind in ErrorKind:
        _failures_total.labels(kind=kind.value).set(failures.get(kind.value, 0))

    _latency_ms.labels(quantile="0.5").set(data["latency_p50_ms"])
    _latency_ms.labels(quantile="0.95").set(data["latency_p95_ms"])


@router.get("/metrics/prometheus")
async def prometheus_metrics(
    metrics: PipelineMetrics = Depends(get_metrics),
) -> Response:
    """Prometheus text exposition format metrics endpoint."""
    _sync_metrics(metrics)
    return Response(
        content=generate_latest(_registry),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )

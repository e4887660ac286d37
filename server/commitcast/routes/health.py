# ─────────────────────────────────────────────────────────────────────────────
# Health Check Routes — liveness, readiness, metrics
# ─────────────────────────────────────────────────────────────────────────────
#
#   /health        → Liveness probe. Returns 200 always, no I/O.
#
#   /health/ready  → Readiness probe. 503 until a generation key is
#                    configured; every /generate would fail without one.
#
#   /metrics       → Pipeline outcome counters and latency percentiles.
# ─────────────────────────────────────────────────────────────────────────────

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from commitcast.config import Settings
from commitcast.dependencies import get_metrics, get_settings_dep
from commitcast.schemas import LivenessResponse, ReadinessResponse
from commitcast.services.metrics import PipelineMetrics

router = APIRouter()


@router.get("/health", response_model=LivenessResponse)
async def liveness() -> LivenessResponse:
    """Liveness probe: is the process alive?"""
    return LivenessResponse(status="ok")


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness(settings: Settings = Depends(get_settings_dep)) -> JSONResponse:
    """Readiness probe: can this instance serve /generate?

    Reports only whether the key is set, never the key itself.
    """
    ready = settings.has_generation_key
    response = ReadinessResponse(
        status="ready" if ready else "not_ready",
        generation_configured=ready,
        environment=settings.environment,
    )
    return JSONResponse(status_code=200 if ready else 503, content=response.model_dump())


@router.get("/metrics")
async def metrics_endpoint(
    metrics: PipelineMetrics = Depends(get_metrics),
) -> dict[str, Any]:
    return metrics.to_dict()

# ─────────────────────────────────────────────────────────────────────────────
# GET /repositories — the caller's recently updated repositories
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from commitcast.dependencies import get_orchestrator, get_request_context
from commitcast.rate_limit import lacks_credential, limiter
from commitcast.routes.generate import http_rate_limit
from commitcast.schemas import ErrorResponse, Repository
from commitcast.services.pipeline import RequestContext, RequestOrchestrator

router = APIRouter()


@router.get(
    "/repositories",
    response_model=list[Repository],
    responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
@limiter.limit(http_rate_limit, exempt_when=lacks_credential)
async def list_repositories(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    outcome = await orchestrator.list_repositories(ctx)
    return outcome.to_response()

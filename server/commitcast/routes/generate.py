# ─────────────────────────────────────────────────────────────────────────────
# POST /generate — commit diff → three drafts (THIN)
# ─────────────────────────────────────────────────────────────────────────────


from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from commitcast.config import get_settings
from commitcast.dependencies import get_orchestrator, get_request_context
from commitcast.rate_limit import lacks_credential, limiter
from commitcast.schemas import ErrorResponse, GenerateResponse
from commitcast.services.pipeline import RequestContext, RequestOrchestrator

router = APIRouter()


def http_rate_limit() -> str:
    return get_settings().http_rate_limit


@router.post(
    "/generate",
    response_model=GenerateResponse,
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
)
# Per-IP flood guard for credentialed calls. The per-user quota is enforced
# inside the orchestrator.
@limiter.limit(http_rate_limit, exempt_when=lacks_credential)
async def generate(
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Generate Twitter, LinkedIn and blog drafts from one commit.

    The raw body goes to the orchestrator unparsed: validation runs after
    authentication and the rate-limit check, so a bad body from an
    unauthenticated caller is still a 401.
    """
    outcome = await orchestrator.generate(ctx, await request.body())
    return outcome.to_response()

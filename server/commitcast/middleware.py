# ─────────────────────────────────────────────────────────────────────────────
# Request Middleware — request ID, timing, log context
# ─────────────────────────────────────────────────────────────────────────────


import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds a request ID into the log context and stamps timing headers.

    Pipeline routes log their own pipeline_completed line; this only logs
    the routes that bypass the orchestrator. Health probes are not logged.
    """

    pipeline_paths = frozenset({"/generate", "/repositories"})

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())[:8]
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        start = time.perf_counter()

        try:
            response: Response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        duration_ms = round((time.perf_counter() - start) * 1000, 1)

        path = request.url.path
        if not path.startswith("/health") and path not in self.pipeline_paths:
            logger.info(
                "request_completed",
                request_id=request_id,
                method=request.method,
                path=path,
                status=response.status_code,
                duration_ms=duration_ms,
            )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration_ms)
        return response

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from fastapi import Request
from uuid import uuid4

from core.logging.correlation import CorrelationIdManager


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Attach a request id and a fresh correlation id to every HTTP request.

    Honors an inbound X-Request-ID; echoes both ids back as response headers.
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        request.state.request_id = request_id

        CorrelationIdManager.clear_correlation()
        corr_id = CorrelationIdManager.ensure_correlation_id()
        CorrelationIdManager.set_correlation_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = corr_id
        return response

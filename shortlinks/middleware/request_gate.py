"""
Request Gate Middleware

Applies the RequestGate to every /api/v1 request except the health check.
The gate itself lives on the service container created at startup; this
middleware only selects which paths it guards and turns storage outages
into a 503 instead of letting them surface as auth or quota failures.
"""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from shortlinks.core.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

GATED_PREFIX = "/api/v1/"
UNGATED_PATHS = frozenset({"/api/v1/health"})


def is_gated_path(path: str) -> bool:
    return path.startswith(GATED_PREFIX) and path.rstrip("/") not in UNGATED_PATHS


def storage_unavailable_response() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "reason": "storage_unavailable"},
    )


class RequestGateMiddleware(BaseHTTPMiddleware):
    """Runs API key validation and rate limiting ahead of /api/v1 handlers."""

    async def dispatch(self, request: Request, call_next):
        if not is_gated_path(request.url.path):
            return await call_next(request)

        gate = request.app.state.container.gate
        try:
            return await gate.handle(request, call_next)
        except StorageUnavailableError as e:
            logger.error(f"Request gate could not reach storage: {e}", exc_info=True)
            return storage_unavailable_response()


def add_request_gate_middleware(app):
    """
    Add request gate middleware to FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_middleware(RequestGateMiddleware)

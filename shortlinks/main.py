"""
FastAPI Application Entry Point

This module initializes the FastAPI application and configures:
- API routes (links, API keys, public redirect)
- Middleware (request gate, logging, CORS)
- Application lifespan: the service container is created on startup and
  closed on shutdown

Run with:
    uvicorn shortlinks.main:app
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from shortlinks.api import api_keys, endpoints
from shortlinks.core.container import ServiceContainer
from shortlinks.core.exceptions import StorageUnavailableError
from shortlinks.core.rate_limit import limiter
from shortlinks.core.setting import Settings, settings as default_settings
from shortlinks.middleware.logging import add_logging_middleware, configure_logging
from shortlinks.middleware.request_gate import add_request_gate_middleware, storage_unavailable_response

logger = logging.getLogger(__name__)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "Validation failed",
            "details": [
                {
                    "field": ".".join(str(part) for part in error["loc"][1:]),
                    "message": error["msg"],
                }
                for error in exc.errors()
            ],
        },
    )


async def storage_unavailable_handler(request: Request, exc: StorageUnavailableError) -> JSONResponse:
    logger.error(f"Storage unavailable while handling {request.url.path}: {exc}")
    return storage_unavailable_response()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration to run with (defaults to environment settings)

    Returns:
        Configured FastAPI instance
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = await ServiceContainer.create(settings)
        container.start_background_tasks()
        app.state.container = container
        try:
            yield
        finally:
            await container.close()

    app = FastAPI(
        title="Link Shortener Service",
        description="Self-hosted link shortener with a rate-limited, API-key secured API",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StorageUnavailableError, storage_unavailable_handler)

    # Last added runs first: logging wraps the gate so denied requests are logged too
    add_request_gate_middleware(app)
    add_logging_middleware(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def health_check(request: Request) -> JSONResponse:
        """
        Health check endpoint for monitoring.

        Verifies database connectivity with a trivial query.
        """
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            async with request.app.state.container.session_maker() as session:
                result = await session.execute(text("SELECT 1"))
                if result.scalar() != 1:
                    raise RuntimeError("Database check failed")
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "unhealthy", "timestamp": timestamp, "error": str(e)},
            )
        return JSONResponse(content={"status": "healthy", "timestamp": timestamp})

    # Health endpoints defined before routers to match before the catch-all slug route
    app.add_api_route("/health", health_check, methods=["GET"], tags=["Health"])
    app.add_api_route("/api/v1/health", health_check, methods=["GET"], tags=["Health"])

    app.include_router(api_keys.router, tags=["API Keys"])
    app.include_router(endpoints.router, tags=["Links"])
    app.include_router(endpoints.redirect_router, tags=["Redirect"])

    return app


configure_logging(default_settings.LOG_LEVEL)

app = create_app()

"""
FastAPI Application Factory

Creates and configures the popularity API application.
"""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import structlog

from gear_popularity.config import get_settings
from gear_popularity.errors import PopularityError
from gear_popularity.serving.api.middleware import (
    RequestLoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from gear_popularity.serving.api.routes import (
    health_router,
    popularity_router,
    rollup_router,
)

settings = get_settings()
logger = structlog.get_logger(__name__)


async def popularity_error_handler(request: Request, exc: PopularityError) -> JSONResponse:
    """Map subsystem errors onto their HTTP status with a public message"""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request failed",
        path=request.url.path,
        status_code=exc.status_code,
        error_type=type(exc).__name__,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.public},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": f"{location}: {message}" if location else message},
    )


def create_api_app(lifespan: Optional[Any] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        lifespan: Optional lifespan context (database and Redis startup)

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Gear Popularity API",
        description="Popularity events, daily rollups and trending gear",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.add_exception_handler(PopularityError, popularity_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Add CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add compression
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
        trusted_proxies=settings.security.trusted_proxies,
    )

    app.include_router(health_router, tags=["Health"])
    app.include_router(popularity_router, prefix="/api/v1/popularity", tags=["Popularity"])
    app.include_router(rollup_router, prefix="/api/v1/popularity", tags=["Rollup"])

    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": "Gear Popularity API",
            "version": settings.version,
            "environment": settings.app_env,
        }

    return app

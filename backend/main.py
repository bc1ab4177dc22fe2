"""
PartsConnect FastAPI Application
Main entry point for the spare-parts matching API.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from agents.matching.exceptions import MatchingError
from backend.api import health, matches
from backend.core.config import settings
from backend.core.exceptions import http_error_for
from backend.core.sentry import capture_exception, init_sentry
from backend.database import close_db, init_db

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Events
# =============================================================================


def validate_security_settings() -> None:
    """
    Validate critical security settings at startup.
    Raises RuntimeError if insecure configuration detected in production.
    """
    is_production = settings.environment.lower() in ("production", "prod")
    errors = []

    if settings.secret_key == "CHANGE-THIS-IN-PRODUCTION-REQUIRED" or len(settings.secret_key) < 32:
        msg = "SECRET_KEY is insecure or too short (minimum 32 characters required)"
        if is_production:
            errors.append(msg)
        else:
            logger.warning(f"SECURITY WARNING: {msg}")

    if is_production and settings.debug:
        errors.append("DEBUG mode must be disabled in production (set DEBUG=false)")

    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is not set; suggestions and sweeps will return 500")

    if errors:
        for error in errors:
            logger.error(f"SECURITY ERROR: {error}")
        raise RuntimeError(f"Cannot start in production with insecure configuration: {'; '.join(errors)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: validate settings, enable Sentry, create tables in debug.
    Shutdown: close database connections.
    """
    logger.info("Starting PartsConnect API...")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Version: {settings.app_version}")

    validate_security_settings()

    if init_sentry():
        logger.info("Sentry error tracking enabled")
    else:
        logger.info("Sentry error tracking disabled (no DSN configured)")

    # Production schemas come from alembic
    if settings.debug:
        await init_db()
        logger.info("Database initialized successfully")

    health.mark_startup_complete()
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down PartsConnect API...")
    await close_db()
    logger.info("Database connections closed")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="PartsConnect API",
    description="""
    Peer-to-peer spare parts marketplace.

    - **Suggestions**: ranked counterparts for a listing or a request
    - **Auto-match**: cross-match every active request against open listings
    - **Contact and agree**: two-sided handshake on a match
    """,
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

# SECURITY: Never use wildcard "*" for CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


# =============================================================================
# Exception Handlers
# =============================================================================


def _error_response(exc: HTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_429_TOO_MANY_REQUESTS and isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {
            "error": True,
            "message": exc.detail,
            "status_code": exc.status_code,
        }
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent format."""
    return _error_response(exc)


@app.exception_handler(MatchingError)
async def matching_exception_handler(request: Request, exc: MatchingError) -> JSONResponse:
    """Translate engine errors raised out of endpoints."""
    http_error = http_error_for(exc)
    if http_error.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return _error_response(http_error)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")

    event_id = capture_exception(
        exc,
        extra={
            "request_url": str(request.url),
            "request_method": request.method,
            "request_path": request.url.path,
        },
    )

    # Don't expose internal errors in production
    if settings.debug:
        detail = str(exc)
    else:
        detail = f"Internal server error (ref: {event_id})" if event_id else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": True,
            "message": detail,
            "status_code": 500,
            "error_id": event_id,
        },
    )


# =============================================================================
# API Routers
# =============================================================================

app.include_router(health.router)
app.include_router(matches.router)


@app.get(
    "/",
    tags=["Root"],
    summary="API root",
    description="Welcome endpoint with API information.",
)
async def root() -> dict[str, Any]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs_url": "/docs" if settings.debug else None,
        "health_url": "/health",
        "readiness_url": "/health/ready",
    }


# For running with uvicorn directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )

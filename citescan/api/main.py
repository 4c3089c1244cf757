"""
FastAPI application factory and main entry point.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from citescan.api.routes import health, internal, jobs, scans
from citescan.core.config import settings
from citescan.core.exceptions import CiteScanError, ConflictError, ResourceNotFoundError
from citescan.core.logging import configure_logging
from citescan.db import DatabaseError, close_db, init_db

# Configure structured logging with wide events support
configure_logging(
    json_logs=not settings.debug,  # JSON in production, console in dev
    log_level="DEBUG" if settings.debug else "INFO",
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("Starting CiteScan API", version=settings.app_version)
    await init_db()
    logger.info("Database initialized")

    yield

    logger.info("Shutting down CiteScan API")
    await close_db()
    logger.info("Database connections closed")


def _error(status_code: int, exc: CiteScanError, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": exc.message,
                "type": error_type,
                "details": exc.details,
            }
        },
    )


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Background scan-processing engine for AI citation audits",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan if use_lifespan else None,
    )

    app.include_router(health.router, tags=["Health"])
    app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])
    app.include_router(scans.router, prefix="/api", tags=["Scans"])
    app.include_router(internal.router, prefix="/api/internal", tags=["Internal"])

    # Exception Handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors"""
        logger.warning("Validation error", url=str(request.url), errors=exc.errors())
        return JSONResponse(
            status_code=422,
            content={
                "error": {
                    "message": "Validation failed",
                    "type": "validation_error",
                    "details": exc.errors(),
                }
            },
        )

    @app.exception_handler(DatabaseError)
    async def database_exception_handler(request: Request, exc: DatabaseError):
        """Handle database errors"""
        logger.error("Database error", url=str(request.url), error=exc.message)
        return JSONResponse(status_code=503, content={"detail": "Database operation failed"})

    @app.exception_handler(ResourceNotFoundError)
    async def not_found_exception_handler(request: Request, exc: ResourceNotFoundError):
        """Handle not found errors"""
        logger.info("Resource not found", url=str(request.url), message=exc.message)
        return _error(404, exc, "not_found_error")

    @app.exception_handler(ConflictError)
    async def conflict_exception_handler(request: Request, exc: ConflictError):
        """Handle conflict errors"""
        logger.warning("Conflict error", url=str(request.url), message=exc.message)
        return _error(409, exc, "conflict_error")

    @app.exception_handler(CiteScanError)
    async def citescan_exception_handler(request: Request, exc: CiteScanError):
        """Handle remaining engine errors"""
        logger.warning("Request failed", url=str(request.url), code=exc.code, message=exc.message)
        return _error(400, exc, exc.code)

    return app


app = create_app()

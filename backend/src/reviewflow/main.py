"""ReviewFlow Backend - Main FastAPI Application

Content ingestion and review-workflow engine.

This module creates and configures the FastAPI application:
- Routers (uploads, workflow, workflow stages, observability)
- Middleware (request ID correlation, tenant context, CORS)
- Exception handlers (ReviewFlowError taxonomy → JSON error bodies)
- The object storage adapter, constructed once and injected via app.state
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .domain.files.ports.object_storage_port import ObjectStoragePort
from .errors import Busy, ReviewFlowError
from .infrastructure.storage.s3_storage_adapter import S3StorageAdapter
from .infrastructure.storage.storage_config import load_storage_config
from .observability.logging_config import configure_logging
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router
from .tenancy.middleware import TenantContextMiddleware
from .uploads.router import router as uploads_router
from .workflow.reviews_router import router as reviews_router
from .workflow.router import router as workflow_router
from .workflow.stages_router import router as stages_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    logger.info("ReviewFlow API starting up...")
    logger.info(f"Environment: {settings.ENV}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    yield

    logger.info("ReviewFlow API shutting down...")


def register_exception_handlers(app: FastAPI) -> None:
    """Map errors to JSON bodies of the form {"error", "message", "details"}."""

    @app.exception_handler(ReviewFlowError)
    async def reviewflow_exception_handler(request: Request, exc: ReviewFlowError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
            extra={"tenant_id": getattr(request.state, "tenant_id", None)},
        )
        headers = {}
        if isinstance(exc, Busy):
            headers["Retry-After"] = str(
                exc.details.get("retry_after_seconds", app.state.settings.WORKFLOW_BUSY_RETRY_AFTER_SECONDS)
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Structured error response with field-level details."""
        logger.warning(f"Validation error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "validation_error",
                "message": "Request validation failed",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        """Logs the full error but returns a generic message."""
        logger.error(f"Database error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "error": "PersistenceUnavailable",
                "message": "A database error occurred. Please try again later.",
            },
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )


def create_app(
    settings: Optional[Settings] = None,
    storage: Optional[ObjectStoragePort] = None,
) -> FastAPI:
    """Application factory.

    Args:
        settings: Settings to use (default: environment)
        storage: Object storage adapter (default: S3 adapter from settings)
    """
    settings = settings or get_settings()
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    docs_enabled = settings.ENV != "production"
    app = FastAPI(
        title="ReviewFlow API",
        description="Content ingestion and review-workflow engine",
        version="0.1.0",
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage = storage or S3StorageAdapter.from_config(load_storage_config(settings))

    # Added last runs first: request IDs must exist before anything logs
    app.add_middleware(TenantContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(observability_router)
    app.include_router(uploads_router, prefix="/api/v1")
    app.include_router(workflow_router, prefix="/api/v1")
    app.include_router(stages_router, prefix="/api/v1")
    app.include_router(reviews_router, prefix="/api/v1")

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        return {
            "name": "ReviewFlow API",
            "version": "0.1.0",
            "status": "running",
            "docs": "/docs" if docs_enabled else None,
        }

    return app

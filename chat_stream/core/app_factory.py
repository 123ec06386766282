"""Application factory."""
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from chat_stream.api import health, metrics, models, streaming_chat
from chat_stream.core.config import settings
from chat_stream.core.container import ServiceContainer
from chat_stream.core.errors import ValidationError
from chat_stream.core.lifecycle import build_lifespan
from chat_stream.core.logging import get_logger, setup_logging
from chat_stream.utils.error_handlers import (
    APIError,
    create_error_response,
    summarize_validation_errors,
)

# Set up logging (should be done early)
setup_logging(settings.log_level, settings.log_format)
logger = get_logger(__name__)


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Optional pre-built service container; the lifespan
            initializes it instead of creating a new one.
    """
    logger.info(f"Creating FastAPI app with api_prefix: {settings.api_prefix}")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=build_lifespan(container),
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    # Add request timing middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return create_error_response(
            message="Invalid request body",
            status_code=400,
            error_code="VALIDATION_ERROR",
            details={"details": summarize_validation_errors(exc.errors())},
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        logger.info(f"Validation error: {exc.message}")
        return create_error_response(
            message=exc.user_message,
            status_code=400,
            error_code=exc.code,
            details={"details": exc.errors},
        )

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        logger.error(f"API error: {exc.message}")
        return create_error_response(
            message=exc.message,
            status_code=exc.status_code,
            error_code=exc.error_code,
            details=exc.details,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return create_error_response(
            message="An unexpected error occurred",
            status_code=500,
            error_code="INTERNAL_ERROR",
        )

    app.include_router(health.router, prefix=settings.api_prefix, tags=["health"])
    app.include_router(streaming_chat.router, prefix=settings.api_prefix, tags=["streaming"])
    app.include_router(models.router, prefix=settings.api_prefix, tags=["models"])
    app.include_router(metrics.router, prefix=settings.api_prefix, tags=["metrics"])

    @app.get("/")
    async def root() -> Dict[str, Any]:
        """Root endpoint."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": f"{settings.api_prefix}/docs",
        }

    return app

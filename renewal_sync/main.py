"""FastAPI application entry point and lifecycle management."""

import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from renewal_sync.bootstrap import Services, build_services
from renewal_sync.config import get_config
from renewal_sync.logging_config import configure_logging, get_logger
from renewal_sync.middleware import RequestLoggingMiddleware

logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    logger.info("service_starting", version=VERSION)
    try:
        yield
    finally:
        logger.info("service_stopped")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        services: pre-built service graph; built from the global config if omitted

    Returns:
        Configured FastAPI application instance
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_format = os.getenv("LOG_FORMAT", "json").lower() == "json"
    configure_logging(log_level=log_level, json_format=json_format)

    if services is None:
        services = build_services(get_config().settings)

    app = FastAPI(
        title="Renewal Sync",
        description="Google Play subscription renewal reconciliation",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    include_request_details = os.getenv("LOG_REQUEST_DETAILS", "true").lower() == "true"
    app.add_middleware(RequestLoggingMiddleware, include_request_details=include_request_details)

    from renewal_sync.api.control import router as control_router
    from renewal_sync.api.webhooks import router as webhooks_router

    app.include_router(webhooks_router)
    app.include_router(control_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Health check."""
        billing = services.settings.billing
        return {
            "status": "healthy",
            "version": VERSION,
            "package_name": services.settings.package_name,
            "billing_endpoint": billing.api_endpoint or "default",
            "pubsub": "enabled" if services.settings.pubsub.enabled else "disabled",
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    logger.info("app_created", endpoints=len(app.routes))
    return app

"""Main FastAPI application."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from solr_reindex.api.v1.router import api_router
from solr_reindex.config import get_settings
from solr_reindex.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from solr_reindex.core.logging import get_logger, setup_logging
from solr_reindex.dependencies import get_job_service, shutdown_job_service

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events.

    Args:
        app: The FastAPI application instance.

    Yields:
        None
    """
    settings = get_settings()
    logger.info(
        f"Starting up Solr Reindex API (registry={settings.registry_backend}, "
        f"execution={settings.execution_backend})"
    )
    job_service = await get_job_service(settings)
    app.state.job_monitor = asyncio.create_task(
        job_service.dispatcher.monitor(settings.monitor_interval_seconds),
        name="reindex-monitor",
    )
    yield
    logger.info("Shutting down Solr Reindex API")
    app.state.job_monitor.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.job_monitor
    await shutdown_job_service()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Zero-downtime Solr collection reindexing",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_credentials,
        allow_methods=settings.cors_methods,
        allow_headers=settings.cors_headers,
    )

    # Register exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Include API router with versioning
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    return app


app = create_app()

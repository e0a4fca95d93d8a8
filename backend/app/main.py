"""
Codelab Grader - FastAPI Application Factory
Clean Architecture with dependency injection
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_client import make_asgi_app

from app.application.grading.service import create_submission_service
from app.core.config import Settings, get_settings
from app.core.exceptions import GradingError
from app.core.logging import setup_logging
from app.infrastructure.cache import CacheManager
from app.infrastructure.content import BatteryProvider, CachedBatteryProvider, FileBatteryProvider
from app.infrastructure.database import DatabaseManager
from app.infrastructure.persistence import (
    GradingStore,
    InMemoryGradingStore,
    SqlAlchemyGradingStore,
)
from app.interfaces.api.v1 import api_router
from app.interfaces.middleware.error_handler import ErrorHandlerMiddleware, grading_error_handler
from app.interfaces.middleware.security import SecurityHeadersMiddleware

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup/shutdown."""
    settings: Settings = app.state.settings

    setup_logging(settings.log_level, settings.log_format)
    logger.info("Starting Codelab Grader", version=settings.app_version)

    db_manager = None
    store: GradingStore
    if settings.grading_store == "sql":
        db_manager = DatabaseManager(settings)
        await db_manager.connect()
        store = SqlAlchemyGradingStore(db_manager)
    else:
        store = InMemoryGradingStore()
    app.state.db = db_manager
    app.state.store = store

    provider: BatteryProvider = FileBatteryProvider(settings.content_dir)
    cache_manager = None
    if settings.battery_cache_enabled:
        cache_manager = CacheManager(settings)
        await cache_manager.connect()
        provider = CachedBatteryProvider(cache_manager, provider, settings.battery_cache_ttl)
    app.state.cache = cache_manager

    app.state.grading = create_submission_service(settings, provider, store)

    logger.info(
        "All services initialized successfully",
        store=settings.grading_store,
        battery_cache=settings.battery_cache_enabled,
        sandbox_budget_ms=settings.sandbox_time_budget_ms,
    )

    yield

    logger.info("Shutting down Codelab Grader")
    if cache_manager:
        await cache_manager.disconnect()
    if db_manager:
        await db_manager.disconnect()
    logger.info("Shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Application factory pattern for FastAPI.

    Args:
        settings: Optional settings override for testing

    Returns:
        Configured FastAPI application instance
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title="Codelab Grader",
        description="Sandboxed grading of markup/style/script submissions",
        version=settings.app_version,
        docs_url="/api/docs" if settings.debug else None,
        redoc_url="/api/redoc" if settings.debug else None,
        openapi_url="/api/openapi.json" if settings.debug else None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.state.settings = settings

    app.add_exception_handler(GradingError, grading_error_handler)

    # Middleware order matters - last added is first executed
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, settings=settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Mount Prometheus metrics
    app.mount("/metrics", make_asgi_app())

    app.include_router(api_router, prefix="/api/v1")

    return app


# Create default application instance
app = create_app()

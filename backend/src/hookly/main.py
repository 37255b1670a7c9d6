"""FastAPI application entry-point.

Assembles routers, middleware, exception handlers, and lifecycle hooks.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Callable

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from hookly.adapters.inbound.rest.routers import (
    costs_router,
    health_router,
    providers_router,
)
from hookly.application.consumers import OpsNotificationConsumer
from hookly.config import Settings, get_settings
from hookly.dependencies import get_event_bus, init_dependencies, shutdown_dependencies
from hookly.domain.entities import utcnow
from hookly.shared.errors import register_exception_handlers
from hookly.shared.middleware import (
    LoggingMiddleware,
    MetricsMiddleware,
    RequestIdMiddleware,
)
from hookly.shared.observability import configure_logging

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifecycle — startup & shutdown hooks."""
    settings: Settings = app.state.settings
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.log_json or settings.is_production,
    )
    logger.info(
        "application_starting",
        env=settings.app_env.value,
        storage_backend=settings.storage_backend.value,
        failure_threshold=settings.circuit_breaker_failure_threshold,
        daily_budget=str(settings.ai_daily_budget),
    )

    # Event consumers
    ops_consumer = OpsNotificationConsumer(get_event_bus())
    ops_consumer.attach()

    yield

    ops_consumer.detach()
    await shutdown_dependencies()
    logger.info("application_shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Application factory — creates a fully configured FastAPI instance."""
    settings = settings or get_settings()
    init_dependencies(settings, clock=clock)

    app = FastAPI(
        title="Hookly Provider Resilience",
        description=(
            "Provider health monitoring, circuit breaking and generation cost "
            "tracking for Hookly's script generation pipeline."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Store settings in app state for lifecycle access
    app.state.settings = settings

    # ── Middleware (order matters: last added = outermost) ───
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Exception handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── REST routers (versioned) ─────────────────────────────
    api_v1 = "/api/v1"
    app.include_router(health_router, prefix=api_v1)
    app.include_router(providers_router, prefix=api_v1)
    app.include_router(costs_router, prefix=api_v1)

    return app


# Uvicorn entry-point
app = create_app()

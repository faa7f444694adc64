"""
Application entry point.

Creates the FastAPI application and wires together:
- Routers (health, trading)
- Error handlers (centralized domain-to-HTTP mapping)
- Rate limiting
- Logging configuration
- Process-wide resources (database engine, HTTP client, use cases) and the
  evaluation scheduler, opened and closed with the application lifespan

No business logic belongs here.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from financy.core.config import Settings, settings as default_settings
from financy.infrastructure.trading.database import create_engine
from financy.infrastructure.trading.tables import init_db
from financy.interfaces.health import router as health_router
from financy.interfaces.trading.dependencies import Services, build_services
from financy.interfaces.trading.router import router as trading_router
from financy.shared.errors.handlers import register_error_handlers
from financy.shared.logging import configure_logging
from financy.shared.security.rate_limiting import limiter, rate_limit_exceeded_handler

logger = logging.getLogger(__name__)


def _lifespan(settings: Settings, services: Optional[Services]):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Open shared resources, start the scheduler, and close both on shutdown."""
        if services is not None:
            app.state.services = services
            yield
            return

        engine = create_engine(settings)
        client = httpx.AsyncClient(timeout=settings.collaborator_timeout_seconds)
        try:
            await init_db(engine)
            app.state.services = build_services(settings, engine, client)
            scheduler = app.state.services.scheduler
            if settings.scheduler_enabled and scheduler is not None:
                scheduler.start()
            yield
        finally:
            scheduler = getattr(getattr(app.state, "services", None), "scheduler", None)
            if scheduler is not None:
                scheduler.stop()
            await client.aclose()
            await engine.dispose()
            logger.info("Shutdown complete.")

    return lifespan


def create_app(settings: Settings = default_settings, services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Registers routers, error handlers, and rate limiting.
    This is the composition root of the application.

    Args:
        settings: Application settings.
        services: Pre-built use cases; when given, the lifespan neither
            opens a database engine nor starts the scheduler.

    Returns:
        A fully configured FastAPI application instance.
    """
    configure_logging(level=settings.log_level)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=_lifespan(settings, services),
    )
    if services is not None:
        app.state.services = services

    # --- Rate Limiting ---
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # --- Error Handlers ---
    register_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(trading_router, prefix="/api/v1")

    return app


app = create_app()

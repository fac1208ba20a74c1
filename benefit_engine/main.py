"""
Bike Benefit Engine - FastAPI Application

Main application entry point. Creates the FastAPI app, wires up routers and
builds the shared Supabase services on startup.

Run with: benefit-engine (see server.py), or uvicorn benefit_engine.main:app --reload

NOTES:
- CORS middleware is FIRST (outermost) to handle preflight correctly
- Every error body has the shape {"error": ..., "reason"?: ...}
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, configure_logging, get_settings, validate_required_env
from .core.errors import setup_error_handlers
from .core.middleware import RequestLoggingMiddleware
from .routers.benefits import router as benefits_router
from .routers.bulk_create import router as bulk_create_router
from .routers.health import router as health_router
from .routers.register import router as register_router
from .services import SupabaseServices

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup builds the services bundle (unless a test injected one);
    shutdown closes its HTTP client.
    """
    settings = get_settings()
    logger.info(f"Starting Bike Benefit Engine v{__version__} ({settings.ENVIRONMENT})")

    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = SupabaseServices.from_config(settings.pipeline_config())

    yield

    logger.info("Shutting down Bike Benefit Engine...")
    if owned:
        await app.state.services.aclose()
        app.state.services = None


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[SupabaseServices] = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Settings to use (defaults to get_settings())
        services: Pre-built services (tests pass one backed by a mock transport)

    Returns:
        Configured FastAPI application
    """
    if settings is None:
        settings = get_settings()

    configure_logging(settings)
    validate_required_env(settings)

    app = FastAPI(
        title="Bike Benefit Engine",
        description="Employee bike-benefit workflow and HR bulk invitation service.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # ==========================================================================
    # MIDDLEWARE ORDER
    # Last added = outermost. CORS must see OPTIONS preflight first.
    # ==========================================================================

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=settings.cors_allowed_origins != ["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    setup_error_handlers(app)

    # ==========================================================================
    # ROUTERS
    # ==========================================================================

    app.include_router(health_router)
    app.include_router(bulk_create_router)
    app.include_router(register_router)
    app.include_router(benefits_router)

    return app


app = create_app()

"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ciphertoken.config import VERSION, get_settings
from ciphertoken.services.factory import Services, build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    yield
    # Shutdown
    poller = app.state.services.poller
    if poller.running:
        poller.stop()
        await poller.wait_closed()


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Prebuilt services; built from settings when omitted
    """
    if services is None:
        services = build_services(get_settings())
    settings = services.settings

    app = FastAPI(
        title="CipherToken API",
        description="Encrypted balance reconciliation server",
        version=VERSION,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    from ciphertoken.api.routes import control, dev, health

    app.include_router(health.router, tags=["Health"])
    app.include_router(control.router, tags=["Poller"])
    if not settings.is_production:
        app.include_router(dev.router, tags=["Development"])
        logger.info("Development routes enabled")

    return app

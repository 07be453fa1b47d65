"""FastAPI application factory for the contract signing API."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .errors import register_error_handlers
from .routes.contracts import router as contracts_router
from .routes.health import router as health_router
from .routes.signing import router as signing_router
from .. import __version__
from ..config import settings
from ..service import ContractServices

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Dealer Contracts API")
    owned = app.state.services is None
    if owned:
        # Database migrations run when the database opens
        app.state.services = ContractServices.from_settings(settings)
        logger.info("Services initialized")

    services = app.state.services
    if owned and settings.sweeper_enabled:
        try:
            services.sweeper.start()
        except Exception as e:
            logger.warning(f"Expiry sweeper failed to start: {e}")

    yield

    # Shutdown
    if owned:
        services.shutdown()
    logger.info("Dealer Contracts API shutting down")


def create_app(services: Optional[ContractServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Pass ``services`` to run against pre-built components (tests, embedding);
    otherwise they are built from the environment on startup.
    """
    app = FastAPI(
        title="Dealer Contracts API",
        description="Contract digitization and multi-party e-signature collection",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Routes
    app.include_router(health_router)
    app.include_router(contracts_router)
    app.include_router(signing_router)

    return app


# Module-level app instance for uvicorn
app = create_app()

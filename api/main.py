"""
Checkout Tracking API - Main Application.

FastAPI application with CORS enabled for the storefront frontend.

The service container (repositories, delivery pipeline, recorder and retry
scheduler) is built once in the lifespan handler. The retry scheduler is
started there and stopped on shutdown after in-flight work drains.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.dependencies import ServiceContainer, build_services

logger = logging.getLogger(__name__)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        services: Pre-built container (tests); built from the environment when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        container = services or await build_services()
        app.state.services = container
        container.scheduler.start()
        logger.info("Checkout tracking API started")
        try:
            yield
        finally:
            await container.scheduler.shutdown()
            await container.close()
            logger.info("Checkout tracking API stopped")

    app = FastAPI(
        title="Checkout Tracking API",
        description="Attribution capture, conversion event tracking and checkout webhooks",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Configure CORS - Allow all origins for development
    # TODO: Restrict origins to the storefront domain in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["Health"])
    def health_check():
        """
        Health check endpoint.

        Returns the API status and version.
        """
        return {
            "status": "healthy",
            "version": __version__,
            "service": "checkout-tracking-api"
        }

    # Import and include routers
    from api.routers import attribution, checkout, events, webhooks

    app.include_router(attribution.router, prefix="/api/v1", tags=["Attribution"])
    app.include_router(events.router, prefix="/api/v1", tags=["Events"])
    app.include_router(checkout.router, prefix="/api/v1", tags=["Checkout"])
    app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])

    return app


app = create_app()

"""
FastAPI application entrypoint for the brokerage credential gateway.
"""

from __future__ import annotations

from fastapi import FastAPI

from brokerlink.api.routes import router as api_router
from brokerlink.core.config import get_settings
from brokerlink.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="brokerlink",
        version="0.1.0",
        description="Credential lifecycle, rate-limited gateway and quote cache for a brokerage API.",
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]

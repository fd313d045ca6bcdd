"""
FastAPI application entrypoint for the creator metrics sync service.
"""

from __future__ import annotations

from fastapi import FastAPI

from app.api.routes import configuration_error_handler
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.errors import ConfigurationError
from app.core.logging import configure_logging


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Creator Metrics Sync",
        version="0.1.0",
        description="OAuth connections and metric snapshots for YouTube and Instagram creators.",
    )
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]

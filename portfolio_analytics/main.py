"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import FastAPI

from portfolio_analytics.api.routes import api_router
from portfolio_analytics.config import get_settings
from portfolio_analytics.core.logging import setup_logging
from portfolio_analytics.core.telemetry import setup_telemetry
from portfolio_analytics.db.init import init_database
from portfolio_analytics.db.session import get_engine
from portfolio_analytics.providers.alpha_vantage import get_alpha_vantage_client

logger = logging.getLogger(__name__)
settings = get_settings()
app = FastAPI(title=settings.app_name, version="0.1.0")
setup_logging()
setup_telemetry(app, settings, engine=get_engine())


@app.on_event("startup")
async def startup() -> None:
    """Initialise the database schema when the service boots."""

    logger.info("Starting %s with settings %s", settings.app_name, settings.dict_for_logging())
    await init_database(get_engine())


@app.on_event("shutdown")
async def shutdown() -> None:
    """Close the shared Alpha Vantage client."""

    await get_alpha_vantage_client().aclose()


@app.get("/health", tags=["health"])
async def health() -> dict[str, str]:
    """Return service readiness metadata."""

    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "timezone": settings.timezone,
    }


def configure_app() -> FastAPI:
    """Attach routes."""

    app.include_router(api_router)
    return app


configure_app()

__all__ = ["app", "configure_app"]

"""
PharmaCare WhatsApp bot.

ARCHITECTURE:
- WhatsApp Cloud API webhook: inbound messages, one background turn each
- Commerce backend (REST): catalog, customers, orders, sessions - source of truth
- Local SQLite mirror: keeps sessions alive while the backend is down
- Dialogue engine: deterministic state machine, no LLM
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from pharmabot.api.routes import health, webhook
from pharmabot.core.config import Settings, settings as default_settings
from pharmabot.core.container import ServiceContainer, build_container

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: build the container (API client, session mirror tables, engine)
        unless one was injected. Shutdown: close HTTP connections.
        """
        owned = app.state.container is None
        if owned:
            logger.info("[*] Building service container...")
            app.state.container = build_container(settings)
            logger.info("[OK] Service container ready")
        yield
        if owned:
            await app.state.container.aclose()

    app = FastAPI(
        title="PharmaCare WhatsApp Bot",
        description="WhatsApp commerce bridge for the pharmacy backend.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.include_router(webhook.router, tags=["webhook"])
    app.include_router(health.router, tags=["health"])
    return app


app = create_app()

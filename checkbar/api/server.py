"""FastAPI server: read-only status board over the orchestrator."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI

from .. import __version__
from ..config import settings
from ..orchestrator import Orchestrator
from .routes import broadcast_result, checks_router

logger = logging.getLogger(__name__)


def create_app(orchestrator: Orchestrator | None = None, watch: bool = True) -> FastAPI:
    """Create the API app; the orchestrator starts and stops with it."""
    orchestrator = orchestrator or Orchestrator(settings, on_result=broadcast_result)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.orchestrator = orchestrator
        try:
            await orchestrator.start(watch=watch)
        except Exception:
            logger.exception("Orchestrator failed to start")
        yield
        await orchestrator.stop()

    app = FastAPI(
        title="Checkbar status board",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.include_router(checks_router, prefix="/api")

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "ok": True,
            "name": "checkbar",
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app

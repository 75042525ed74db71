"""FastAPI app factory + lifespan (startup/shutdown)."""

import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import routes

logger = logging.getLogger("bosun")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # Startup
    from agent.core import create_orchestrator

    routes._start_time = time.time()
    try:
        routes.orchestrator = create_orchestrator(verbose=False)
    except ValueError as e:
        logger.warning(f"Analysis agent not started: {e}")
        routes.orchestrator = None
    if routes.orchestrator is not None:
        await routes.orchestrator.store.start_cleanup_loop()

    yield

    # Shutdown
    orch = routes.orchestrator
    if orch is not None:
        await orch.store.stop_cleanup_loop()
        orch.dispatcher.engine.close()
    routes.orchestrator = None


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Build and return the configured FastAPI application."""
    app = FastAPI(
        title="Bosun API",
        description="Tool-using analysis agent for recorded vessel sensor data",
        version="0.1.0",
        lifespan=lifespan if use_lifespan else None,
    )

    # CORS origins from CORS_ORIGINS, local dev server otherwise
    cors_origins = os.getenv("CORS_ORIGINS", "").strip()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins.split(",") if cors_origins else ["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router)
    return app

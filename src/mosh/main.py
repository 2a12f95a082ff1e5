"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mosh.api.middleware import install_error_handlers
from mosh.api.routes import router, sessions_router, snapshots_router
from mosh.config import Settings, get_settings
from mosh.ml.inference import InferencePool
from mosh.ml.model_manager import OnnxModelManager
from mosh.store.snapshots import SnapshotStore
from mosh.validation.session import SessionRegistry

logger = logging.getLogger(__name__)


def init_state(app: FastAPI, settings: Settings) -> None:
    """Build the long-lived services and attach them to ``app.state``."""
    app.state.settings = settings
    app.state.snapshot_store = SnapshotStore(settings.database_path)
    app.state.inference_pool = InferencePool(settings)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.sessions = SessionRegistry(
        app.state.model_manager.create_detector,
        detection_interval=settings.detection_interval_ms / 1000,
        session_ttl=settings.session_ttl,
        runner=app.state.inference_pool.run,
    )


def shutdown_state(app: FastAPI) -> None:
    """Release everything ``init_state`` acquired."""
    app.state.sessions.close_all()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    app.state.snapshot_store.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting mosh (device=%s, detection=%s, database=%s)",
        settings.device,
        settings.face_detection_model,
        settings.database_path,
    )

    init_state(app, settings)
    logger.info("mosh ready")
    yield

    logger.info("Shutting down mosh")
    shutdown_state(app)
    logger.info("mosh shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="mosh",
        description="Head photo capture with real-time framing and lighting validation",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(application)
    application.include_router(router)
    application.include_router(snapshots_router)
    application.include_router(sessions_router)
    return application


app = create_app()


def run() -> None:
    """Serve the API with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("mosh.main:app", host=settings.host, port=settings.port, workers=1)

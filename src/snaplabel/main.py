"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from snaplabel.core.session import SessionSnapshot
    from snaplabel.ml.model_handle import ModelHandle

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from snaplabel.api.routes import router
from snaplabel.config import get_settings
from snaplabel.core.pipeline import ClassificationPipeline
from snaplabel.core.session import SessionState
from snaplabel.devices.camera import build_camera
from snaplabel.devices.permission import ConfigPermissionProvider
from snaplabel.errors import ModelLoadError
from snaplabel.ml.inference import InferencePool
from snaplabel.ml.model_handle import get_model_handle
from snaplabel.ml.model_manager import OnnxModelManager
from snaplabel.ml.preprocessing import ImageNormalizer

logger = logging.getLogger(__name__)


async def load_model(handle: ModelHandle, session: SessionState) -> None:
    """Load the classifier in the background and report the outcome to the session."""
    try:
        await handle.load()
    except ModelLoadError as exc:
        session.on_model_failed(exc)
        return
    session.on_model_ready()


def _log_snapshot(snapshot: SessionSnapshot) -> None:
    logger.info("Session %s: %s", snapshot.phase.value, snapshot.display_text.replace("\n", " | "))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting SnapLabel (device=%s, model=%s, top_k=%s, camera=%s)",
        settings.device,
        settings.model_name,
        settings.top_k,
        settings.camera_image_path or settings.camera_index,
    )

    inference_pool = InferencePool()
    model_manager = OnnxModelManager(settings)
    model_handle = get_model_handle(settings, model_manager)
    normalizer = ImageNormalizer(
        resample=settings.resample,
        reencode_jpeg=settings.reencode_jpeg,
        jpeg_quality=settings.jpeg_quality,
        max_image_pixels=settings.max_image_pixels,
    )
    pipeline = ClassificationPipeline(normalizer, model_handle, inference_pool, top_k=settings.top_k)
    camera = build_camera(settings)
    session = SessionState(
        model=model_handle,
        pipeline=pipeline,
        camera=camera,
        permission=ConfigPermissionProvider(allow=settings.camera_permission),
    )
    session.subscribe(_log_snapshot)

    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager
    app.state.model_handle = model_handle
    app.state.session = session

    load_task = asyncio.create_task(load_model(model_handle, session))

    logger.info("SnapLabel started, loading model in the background")
    yield

    logger.info("Shutting down SnapLabel")
    if not load_task.done():
        load_task.cancel()
    camera.close()
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("SnapLabel shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="SnapLabel",
        description="Capture a photo on this device and label it with a pretrained image classifier",
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

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    settings = get_settings()
    uvicorn.run("snaplabel.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())

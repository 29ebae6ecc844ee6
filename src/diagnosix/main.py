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

from diagnosix.api.routes import router
from diagnosix.config import get_settings
from diagnosix.ml.inference import InferencePool
from diagnosix.ml.pipeline import DiagnosisPipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the model on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting DiagnosiX (device=%s, max_concurrent=%s, model=%s, input_size=%s)",
        settings.device,
        settings.max_concurrent,
        settings.model_path,
        settings.input_size,
    )

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool

    pipeline = DiagnosisPipeline(settings)
    app.state.pipeline = pipeline
    if pipeline.load():
        logger.info("DiagnosiX ready")
    else:
        logger.warning("DiagnosiX running without a model; predictions will return 503")
    yield

    logger.info("Shutting down DiagnosiX")
    pipeline.release()
    inference_pool.shutdown()
    logger.info("DiagnosiX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="DiagnosiX",
        description="Benign/malignant image classification API",
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
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "diagnosix.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )

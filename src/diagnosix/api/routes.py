"""API route definitions."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from fastapi.responses import JSONResponse

from diagnosix.api.dependencies import (
    get_app_settings,
    get_inference_pool,
    get_pipeline,
    verify_api_key,
)
from diagnosix.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ModelStatusResponse,
    PredictionResponse,
    PredictRequest,
)
from diagnosix.ml.errors import (
    DecodeError,
    InvalidModelOutput,
    ModelUnavailable,
    PipelineError,
    ShapeMismatch,
)
from diagnosix.ml.interpretation import CLASS_NAMES

if TYPE_CHECKING:
    from diagnosix.ml.interpretation import DiagnosisResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_DATA_URL_PREFIX = re.compile(r"^data:image/[a-z]+;base64,")

_ERROR_STATUS: dict[type[PipelineError], int] = {
    DecodeError: status.HTTP_400_BAD_REQUEST,
    ModelUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    ShapeMismatch: status.HTTP_500_INTERNAL_SERVER_ERROR,
    InvalidModelOutput: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_PREDICT_RESPONSES: dict[int | str, dict[str, object]] = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


def _now() -> datetime:
    return datetime.now(UTC)


def _error(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message).model_dump(),
    )


async def _diagnose(request: Request, image_bytes: bytes) -> JSONResponse:
    pipeline = get_pipeline(request)
    if not pipeline.is_ready():
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, ModelUnavailable.code, ModelUnavailable.default_message)

    pool = get_inference_pool(request)
    try:
        result: DiagnosisResult = await pool.run(pipeline.process, image_bytes)
    except TimeoutError:
        logger.warning("Inference queue full, rejecting request")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "busy", "The server is busy, try again shortly")
    except PipelineError as exc:
        status_code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("Diagnosis failed: %s", exc.message, exc_info=exc)
        else:
            logger.info("Rejected image: %s", exc.message)
        return _error(status_code, exc.code, exc.default_message)

    body = PredictionResponse(
        diagnosis=result.label.value,
        confidence=result.confidence,
        timestamp=_now(),
    )
    return JSONResponse(content=body.model_dump(mode="json"))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health. Always 200; readiness is in ``model_loaded``."""
    pool = get_inference_pool(request)
    return HealthResponse(
        status="ok",
        model_loaded=get_pipeline(request).is_ready(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        timestamp=_now(),
    )


@router.get(
    "/model/status",
    response_model=ModelStatusResponse,
    summary="Model status",
)
async def model_status(request: Request) -> ModelStatusResponse:
    pipeline = get_pipeline(request)
    return ModelStatusResponse(
        loaded=pipeline.is_ready(),
        class_names=[name.value for name in CLASS_NAMES],
        input_shape=list(pipeline.input_shape),
        timestamp=_now(),
    )


@router.post(
    "/predict",
    response_model=PredictionResponse,
    responses=_PREDICT_RESPONSES,
    summary="Diagnose a base64-encoded image",
)
async def predict(request: Request, payload: PredictRequest) -> JSONResponse:
    """Diagnose an image sent as base64, with or without a data URL prefix."""
    if not payload.image:
        return _error(status.HTTP_400_BAD_REQUEST, "image_required", "Provide an image encoded as base64")

    encoded = _DATA_URL_PREFIX.sub("", payload.image, count=1)
    try:
        image_bytes = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return _error(status.HTTP_400_BAD_REQUEST, "invalid_base64", "The image must be valid base64")

    return await _diagnose(request, image_bytes)


@router.post(
    "/predict/upload",
    response_model=PredictionResponse,
    responses={
        **_PREDICT_RESPONSES,
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
    },
    summary="Diagnose an uploaded image file",
)
async def predict_upload(
    request: Request,
    image: Annotated[UploadFile | None, File()] = None,
) -> JSONResponse:
    """Diagnose an image uploaded as multipart form field ``image``."""
    if image is None:
        return _error(status.HTTP_400_BAD_REQUEST, "file_required", "Provide an image file in the 'image' field")

    max_size = get_app_settings(request).max_file_size
    image_bytes = await image.read(max_size + 1)
    if len(image_bytes) > max_size:
        return _error(
            status.HTTP_413_CONTENT_TOO_LARGE,
            "file_too_large",
            f"The image exceeds the {max_size} byte limit",
        )

    return await _diagnose(request, image_bytes)

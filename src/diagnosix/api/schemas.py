"""Pydantic request/response schemas for the DiagnosiX API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class PredictRequest(BaseModel):
    """Base64 image payload, optionally as a data URL."""

    image: str | None = Field(default=None, description="Base64 image, e.g. 'data:image/png;base64,...'")


class PredictionResponse(BaseModel):
    """Diagnosis for a single image."""

    success: bool = True
    diagnosis: str = Field(description="'Benign' or 'Malignant'")
    confidence: float = Field(ge=0.0, le=100.0, description="Confidence percentage, 2 decimals")
    timestamp: datetime


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model_loaded: bool
    concurrent_requests: int
    queue_depth: int
    timestamp: datetime


class ModelStatusResponse(BaseModel):
    """Model readiness and metadata."""

    loaded: bool
    class_names: list[str]
    input_shape: list[int]
    timestamp: datetime


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    message: str

"""Error taxonomy for the diagnosis pipeline.

Each error carries a stable ``code`` and a short ``message``. The HTTP layer
exposes only those two fields; internal detail stays in the logs.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every failure raised by the diagnosis pipeline."""

    code: str = "pipeline_error"
    default_message: str = "The image could not be diagnosed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class DecodeError(PipelineError):
    """The encoded bytes are not a supported, well-formed image."""

    code = "invalid_image"
    default_message = "The payload is not a valid JPEG or PNG image"


class ShapeMismatch(PipelineError):
    """A tensor does not match the model's declared input shape."""

    code = "shape_mismatch"
    default_message = "Internal error while preparing the model input"


class ModelUnavailable(PipelineError):
    """The model is not loaded, failed to load, or has been released."""

    code = "model_unavailable"
    default_message = "The model is still loading or failed to load"


class LoadError(PipelineError):
    """The one-time model load failed."""

    code = "model_load_failed"
    default_message = "The model could not be loaded"


class InvalidModelOutput(PipelineError):
    """The model produced something other than a single numeric score."""

    code = "invalid_model_output"
    default_message = "Internal error while reading the model output"

"""Diagnosis pipeline: normalize -> infer -> interpret.

Owns the one-time model load and the shutdown release. After a failed load
the pipeline stays not ready for the life of the process; there is no retry.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import StrEnum
from typing import TYPE_CHECKING

from diagnosix.ml.errors import LoadError, ModelUnavailable
from diagnosix.ml.inference import infer
from diagnosix.ml.interpretation import interpret
from diagnosix.ml.model_manager import OnnxModelLoader
from diagnosix.ml.preprocessing import ImageNormalizer

if TYPE_CHECKING:
    from diagnosix.config import Settings
    from diagnosix.ml.interpretation import DiagnosisResult
    from diagnosix.ml.model_manager import ModelHandle

logger = logging.getLogger(__name__)


class PipelineState(StrEnum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    RELEASED = "released"


class DiagnosisPipeline:
    """Request-scoped diagnosis over a shared, read-only model handle."""

    def __init__(
        self,
        settings: Settings,
        loader: OnnxModelLoader | None = None,
        normalizer: ImageNormalizer | None = None,
    ) -> None:
        self._loader = loader or OnnxModelLoader(settings)
        self._normalizer = normalizer or ImageNormalizer(
            input_size=settings.input_size,
            max_image_pixels=settings.max_image_pixels,
        )
        self._lock = threading.Lock()
        self._state = PipelineState.PENDING
        self._model: ModelHandle | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def input_shape(self) -> tuple[int, int, int, int]:
        return self._normalizer.output_shape

    def load(self) -> bool:
        """Load the model once. Returns the resulting readiness.

        A load failure is logged and leaves the pipeline not ready; it is
        never raised to the caller. Later calls do not retry.
        """
        with self._lock:
            if self._state is not PipelineState.PENDING:
                logger.warning("Model load already attempted (state=%s)", self._state)
                return self._state is PipelineState.READY

            start = time.perf_counter()
            try:
                self._model = self._loader.load()
            except LoadError as exc:
                self._state = PipelineState.FAILED
                logger.error("Model load failed: %s", exc.message, exc_info=exc.__cause__ or exc)
                return False
            except Exception as exc:
                self._state = PipelineState.FAILED
                logger.exception("Model load failed unexpectedly: %s", exc)
                return False

            self._state = PipelineState.READY
            logger.info("Model ready in %.2fs", time.perf_counter() - start)
            return True

    def is_ready(self) -> bool:
        return self._state is PipelineState.READY

    def process(self, encoded: bytes) -> DiagnosisResult:
        """Diagnose one encoded image.

        Raises:
            ModelUnavailable: If the model is not ready. No decoding is done.
            DecodeError: If the bytes are not a valid JPEG/PNG image.
            ShapeMismatch: If the normalized tensor does not fit the model.
            InvalidModelOutput: If the model output is not a usable score.
        """
        model = self._model
        if self._state is not PipelineState.READY or model is None:
            raise ModelUnavailable

        start = time.perf_counter()
        tensor = self._normalizer.normalize(encoded)
        try:
            score = infer(model, tensor)
        finally:
            del tensor
        result = interpret(score)

        logger.info(
            "Diagnosis %s (confidence=%.2f, raw=%.4f) in %.1fms",
            result.label,
            result.confidence,
            result.raw_score,
            (time.perf_counter() - start) * 1000,
        )
        return result

    def release(self) -> None:
        """Release the model handle. Safe to call more than once."""
        with self._lock:
            if self._state is PipelineState.RELEASED:
                return
            model, self._model = self._model, None
            self._state = PipelineState.RELEASED
        if model is not None:
            model.release()
        logger.info("Diagnosis pipeline released")

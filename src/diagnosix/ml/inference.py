"""Inference engine and the pool that runs diagnoses off the event loop.

Request path:
    route -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> DiagnosisPipeline.process -> infer

A diagnosis waiting more than 5s for a slot is rejected and the route answers
503 "busy". Waiting callers never touch the shared model handle.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

from diagnosix.ml.errors import InvalidModelOutput, ModelUnavailable, ShapeMismatch

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from diagnosix.config import Settings
    from diagnosix.ml.model_manager import ModelHandle

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


def infer(model: ModelHandle | None, tensor: NDArray[np.float32]) -> float:
    """Run the classifier on a normalized tensor and return its raw score.

    Raises:
        ModelUnavailable: If the handle is missing or released.
        ShapeMismatch: If the tensor does not fit the model's declared input.
        InvalidModelOutput: If the model does not return exactly one value.
    """
    if model is None or not model.loaded:
        raise ModelUnavailable

    declared = model.input_shape
    if tensor.ndim != len(declared) or any(
        isinstance(want, int) and got != want for got, want in zip(tensor.shape, declared, strict=True)
    ):
        logger.error("Tensor shape %s does not match model input %s", tensor.shape, declared)
        raise ShapeMismatch(f"Tensor shape {tensor.shape} does not match model input {declared}")

    output = model.run(tensor)
    try:
        if output.size != 1:
            logger.error("Model returned %d values, expected 1", output.size)
            raise InvalidModelOutput
        return float(output.reshape(-1)[0])
    finally:
        del output


class InferencePool:
    """Bounds how many diagnoses run at once and moves them off the event loop.

    Each slot is one ``DiagnosisPipeline.process`` call: decode, forward pass
    and interpretation all happen on a worker thread.
    """

    def __init__(self, settings: Settings) -> None:
        self._slots = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="diagnosis",
        )
        self._running: int = 0
        self._waiting: int = 0
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a blocking diagnosis call on a worker thread.

        Raises:
            TimeoutError: If no slot frees up within SEMAPHORE_TIMEOUT_SECONDS.
                The call is then never started.
        """
        self._adjust(waiting=1)
        try:
            await asyncio.wait_for(self._slots.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        finally:
            self._adjust(waiting=-1)

        self._adjust(running=1)
        try:
            return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
        finally:
            self._slots.release()
            self._adjust(running=-1)

    def _adjust(self, running: int = 0, waiting: int = 0) -> None:
        with self._counter_lock:
            self._running += running
            self._waiting += waiting

    @property
    def active_count(self) -> int:
        """Diagnoses currently executing."""
        with self._counter_lock:
            return self._running

    @property
    def queue_depth(self) -> int:
        """Diagnoses waiting for a free slot."""
        with self._counter_lock:
            return self._waiting

    def shutdown(self) -> None:
        """Wait for running diagnoses, then stop the worker threads."""
        self._executor.shutdown(wait=True)

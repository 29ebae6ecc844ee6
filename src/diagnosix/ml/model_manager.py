"""Model loading: locate, download, and open the ONNX classifier.

The classifier is a single-input, single-output graph. Weights may live in
ONNX external-data shards next to the graph file; onnxruntime resolves
them relative to the graph path.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from diagnosix.ml.errors import LoadError, ModelUnavailable

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from diagnosix.config import Settings

logger = logging.getLogger(__name__)

# A declared dimension is either a concrete size or a symbolic/dynamic one.
Dim = int | str | None


class ModelHandle:
    """A loaded inference session with its input and output bindings."""

    def __init__(
        self,
        session: InferenceSession,
        input_name: str,
        input_shape: tuple[Dim, ...],
        output_name: str,
    ) -> None:
        self._session: InferenceSession | None = session
        self._lock = threading.Lock()
        self.input_name = input_name
        self.input_shape = input_shape
        self.output_name = output_name

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def run(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run one forward pass and return the raw output array."""
        session = self._session
        if session is None:
            raise ModelUnavailable("The model has been released")
        outputs = session.run([self.output_name], {self.input_name: tensor})
        return outputs[0]

    def release(self) -> None:
        """Drop the session. Safe to call more than once."""
        with self._lock:
            if self._session is None:
                return
            self._session = None
        logger.info("Model session released")


class OnnxModelLoader:
    """Resolves the model file and opens it as an ONNX inference session."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def resolve_model_path(self) -> Path:
        """Return the local graph path, downloading it from the Hub if needed."""
        local = Path(self._settings.model_path)
        if local.is_file():
            return local

        repo_id = self._settings.model_repo_id
        if repo_id is None:
            raise LoadError(f"Model file not found: {local}")

        models_dir = Path(self._settings.models_dir)
        try:
            models_dir.mkdir(parents=True, exist_ok=True)
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=self._settings.model_filename,
                    local_dir=str(models_dir),
                )
            )
        except Exception as exc:
            raise LoadError(f"Could not download {self._settings.model_filename} from {repo_id}") from exc
        logger.info("Downloaded %s to %s", self._settings.model_filename, downloaded)
        return downloaded

    def load(self) -> ModelHandle:
        """Open the model and check its signature.

        Raises:
            LoadError: If the file is missing, unreadable, or has an
                incompatible input/output signature.
        """
        model_path = self.resolve_model_path()
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise LoadError(f"Could not open model {model_path}") from exc

        inputs = session.get_inputs()
        outputs = session.get_outputs()
        logger.info("Model inputs: %s", [(i.name, i.shape) for i in inputs])
        logger.info("Model outputs: %s", [(o.name, o.shape) for o in outputs])

        if len(inputs) != 1 or len(outputs) != 1:
            raise LoadError(f"Expected one input and one output, got {len(inputs)} and {len(outputs)}")

        input_shape = tuple(inputs[0].shape)
        self._check_input_shape(input_shape)

        logger.info("Loaded model %s", model_path)
        return ModelHandle(
            session=session,
            input_name=inputs[0].name,
            input_shape=input_shape,
            output_name=outputs[0].name,
        )

    # -- Internal -----------------------------------------------------------

    def _check_input_shape(self, declared: tuple[Dim, ...]) -> None:
        size = self._settings.input_size
        expected = (1, size, size, 3)
        if len(declared) != len(expected):
            raise LoadError(f"Model input has rank {len(declared)}, expected 4 (NHWC)")
        for dim, want in zip(declared, expected, strict=True):
            if isinstance(dim, int) and dim != want:
                raise LoadError(f"Model input shape {declared} is incompatible with {expected}")

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts

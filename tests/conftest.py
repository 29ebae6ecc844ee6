"""Shared fixtures: in-memory test images and a fake ONNX session."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import numpy as np
import pytest
from PIL import Image

from diagnosix.config import Settings
from diagnosix.ml.model_manager import ModelHandle

if TYPE_CHECKING:
    from collections.abc import Callable


def encode_image(
    size: tuple[int, int] = (64, 48),
    mode: str = "RGB",
    fmt: str = "PNG",
    color: int | tuple[int, ...] | None = None,
    **save_kwargs: object,
) -> bytes:
    """Encode a solid-colour (or, with color=None, random noise) image."""
    if color is None:
        rng = np.random.default_rng(seed=1234)
        channels = len(mode) if mode in ("RGB", "RGBA") else 1
        shape = (size[1], size[0], channels) if channels > 1 else (size[1], size[0])
        image = Image.fromarray(rng.integers(0, 256, size=shape, dtype=np.uint8))
    else:
        image = Image.new(mode, size, color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "model_path": "/tmp/diagnosix_test_models/model.onnx",
        "models_dir": "/tmp/diagnosix_test_models",
        "model_repo_id": None,
        "input_size": 224,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def make_handle(score: float | list[float] = 0.9, input_size: int = 224) -> ModelHandle:
    """A ModelHandle backed by a mock session returning a fixed score."""
    session = MagicMock()
    session.run.return_value = [np.array([score], dtype=np.float32).reshape(1, -1)]
    return ModelHandle(
        session=session,
        input_name="input_1",
        input_shape=("unk__batch", input_size, input_size, 3),
        output_name="dense_1",
    )


@pytest.fixture()
def png_bytes() -> bytes:
    return encode_image(fmt="PNG", color=None)


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return encode_image(fmt="JPEG", color=None)


@pytest.fixture()
def image_factory() -> Callable[..., bytes]:
    return encode_image


@pytest.fixture()
def settings_factory() -> Callable[..., Settings]:
    return make_settings


@pytest.fixture()
def handle_factory() -> Callable[..., ModelHandle]:
    return make_handle

"""Image normalization for the classifier.

Decodes JPEG/PNG bytes, applies EXIF orientation, drops any alpha channel,
stretch-resizes to a square grid and scales pixel bytes into [0.0, 1.0].
The output layout is NHWC with a leading batch axis of size 1.
"""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from diagnosix.ml.errors import DecodeError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS: tuple[str, ...] = ("JPEG", "PNG")

# Pinned so preprocessing matches training regardless of Pillow defaults.
RESAMPLING_FILTER = Image.Resampling.BILINEAR


class ImageNormalizer:
    """Turns encoded image bytes into the model's input tensor."""

    def __init__(self, input_size: int = 224, max_image_pixels: int = 16_777_216) -> None:
        self._input_size = input_size
        self._max_image_pixels = max_image_pixels

    @property
    def output_shape(self) -> tuple[int, int, int, int]:
        return (1, self._input_size, self._input_size, 3)

    def normalize(self, encoded: bytes) -> NDArray[np.float32]:
        """Decode, resize and scale an encoded image.

        Args:
            encoded: Raw JPEG or PNG file bytes.

        Returns:
            float32 array of shape (1, H, W, 3) with values in [0.0, 1.0].

        Raises:
            DecodeError: If the bytes are not a decodable JPEG/PNG image.
        """
        rgb = self._decode(encoded)
        try:
            resized = rgb.resize((self._input_size, self._input_size), resample=RESAMPLING_FILTER)
        finally:
            rgb.close()
        try:
            pixels = np.asarray(resized, dtype=np.uint8)
        finally:
            resized.close()

        tensor = pixels.astype(np.float32) / np.float32(255.0)
        return np.expand_dims(tensor, axis=0)

    def _decode(self, encoded: bytes) -> Image.Image:
        if not encoded:
            raise DecodeError("The image payload is empty")

        try:
            with Image.open(io.BytesIO(encoded), formats=SUPPORTED_FORMATS) as source:
                width, height = source.size
                if width * height > self._max_image_pixels:
                    raise DecodeError(f"Image is too large ({width}x{height} pixels)")
                source.load()
                oriented = ImageOps.exif_transpose(source)
                try:
                    return oriented.convert("RGB")
                finally:
                    if oriented is not source:
                        oriented.close()
        except DecodeError:
            raise
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            ValueError,
            SyntaxError,
        ) as exc:
            logger.debug("Image decode failed: %s", exc)
            raise DecodeError from exc

"""Image normalization for classifier input.

Decodes a captured image (file or in-memory frame), applies EXIF orientation,
converts to RGB and squashes it to the model's square input size. Aspect ratio
is not preserved and nothing is cropped; the classifiers expect stretched
inputs.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from snaplabel.errors import NormalizationError

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

INPUT_SIZE: int = 224

_RESAMPLE_FILTERS: dict[str, Image.Resampling] = {
    "nearest": Image.Resampling.NEAREST,
    "bilinear": Image.Resampling.BILINEAR,
    "bicubic": Image.Resampling.BICUBIC,
    "lanczos": Image.Resampling.LANCZOS,
}


@dataclass(frozen=True, eq=False)
class CapturedImage:
    """A single photo handed over by the camera.

    Either ``pixels`` holds the decoded frame, or ``source`` points at an
    image file on disk. ``width``/``height`` are the native resolution when the
    camera knows it.
    """

    source: str
    width: int | None = None
    height: int | None = None
    pixels: NDArray[np.uint8] | None = None
    bgr: bool = False


class NormalizedTensor:
    """Fixed-shape HxWx3 uint8 RGB buffer owned by one pipeline invocation.

    Use as a context manager; the buffer is dropped on exit and any later
    access raises RuntimeError.
    """

    __slots__ = ("_pixels",)

    def __init__(self, pixels: NDArray[np.uint8]) -> None:
        self._pixels: NDArray[np.uint8] | None = pixels

    @property
    def pixels(self) -> NDArray[np.uint8]:
        if self._pixels is None:
            raise RuntimeError("NormalizedTensor has already been released")
        return self._pixels

    @property
    def shape(self) -> tuple[int, ...]:
        return tuple(self.pixels.shape)

    @property
    def released(self) -> bool:
        return self._pixels is None

    def release(self) -> None:
        self._pixels = None

    def __enter__(self) -> NormalizedTensor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class ImageNormalizer:
    """Turns CapturedImages into NormalizedTensors of a fixed square size.

    Stateless apart from its configuration, so it is safe to call from
    several threads for distinct images.
    """

    def __init__(
        self,
        size: int = INPUT_SIZE,
        resample: Literal["nearest", "bilinear", "bicubic", "lanczos"] = "bilinear",
        reencode_jpeg: bool = False,
        jpeg_quality: int = 100,
        max_image_pixels: int = 67_108_864,
    ) -> None:
        self._size = size
        self._resample = _RESAMPLE_FILTERS[resample]
        self._reencode_jpeg = reencode_jpeg
        self._jpeg_quality = jpeg_quality
        self._max_image_pixels = max_image_pixels

    @property
    def size(self) -> int:
        return self._size

    def normalize(self, image: CapturedImage) -> NormalizedTensor:
        """Decode, orient, squash and convert an image to a size x size x 3 uint8 tensor.

        Raises:
            NormalizationError: If the image is unreadable, empty, too large,
                or does not yield a buffer of the expected shape.
        """
        decoded = self._decode(image)
        if decoded.width < 1 or decoded.height < 1:
            raise NormalizationError(f"Image {image.source} is empty ({decoded.width}x{decoded.height})")
        if decoded.width * decoded.height > self._max_image_pixels:
            raise NormalizationError(
                f"Image {image.source} has {decoded.width * decoded.height} pixels, "
                f"limit is {self._max_image_pixels}"
            )

        resized = decoded.resize((self._size, self._size), resample=self._resample)
        if self._reencode_jpeg:
            resized = self._round_trip_jpeg(resized)

        pixels = np.asarray(resized, dtype=np.uint8)
        expected = (self._size, self._size, 3)
        if pixels.shape != expected:
            raise NormalizationError(f"Normalized buffer has shape {pixels.shape}, expected {expected}")

        logger.debug(
            "Normalized %s from %dx%d to %dx%d",
            image.source,
            decoded.width,
            decoded.height,
            self._size,
            self._size,
        )
        return NormalizedTensor(np.ascontiguousarray(pixels))

    def _decode(self, image: CapturedImage) -> Image.Image:
        if image.pixels is not None:
            return self._from_array(image.source, image.pixels, bgr=image.bgr).convert("RGB")

        path = Path(image.source)
        try:
            if path.stat().st_size == 0:
                raise NormalizationError(f"Image file {path} is empty")
            with Image.open(path) as opened:
                opened.load()
                return ImageOps.exif_transpose(opened).convert("RGB")
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise NormalizationError(f"Cannot read image {path}: {exc}") from exc

    @staticmethod
    def _from_array(source: str, pixels: NDArray[np.uint8], bgr: bool) -> Image.Image:
        if pixels.ndim not in (2, 3) or pixels.shape[0] == 0 or pixels.shape[1] == 0:
            raise NormalizationError(f"Frame {source} has unusable shape {pixels.shape}")
        if pixels.ndim == 3 and pixels.shape[2] not in (3, 4):
            raise NormalizationError(f"Frame {source} has {pixels.shape[2]} channels")

        if pixels.ndim == 3 and bgr:
            pixels = pixels[:, :, 2::-1] if pixels.shape[2] == 3 else pixels[:, :, [2, 1, 0, 3]]
        try:
            return Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))
        except (TypeError, ValueError) as exc:
            raise NormalizationError(f"Cannot decode frame {source}: {exc}") from exc

    def _round_trip_jpeg(self, image: Image.Image) -> Image.Image:
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=self._jpeg_quality, subsampling=0)
        buffer.seek(0)
        with Image.open(buffer) as reopened:
            return reopened.convert("RGB")

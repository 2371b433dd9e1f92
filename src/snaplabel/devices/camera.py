"""Camera collaborators that produce CapturedImages.

OpenCVCamera grabs a frame from a local video device; StillImageCamera hands
out a fixed image file, which is handy on headless machines and in demos.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import cv2
from PIL import Image, UnidentifiedImageError

from snaplabel.errors import CameraError
from snaplabel.ml.preprocessing import CapturedImage

if TYPE_CHECKING:
    from snaplabel.config import Settings

logger = logging.getLogger(__name__)


class Camera(Protocol):
    """Protocol for a device that takes one photo per call."""

    async def capture(self) -> CapturedImage:
        """Take a photo.

        Raises:
            CameraError: If the device cannot produce an image.
        """
        ...

    def close(self) -> None:
        """Release the device."""
        ...


class OpenCVCamera:
    """Single-frame capture from a V4L2/DirectShow/AVFoundation device via OpenCV."""

    def __init__(
        self,
        index: int = 0,
        width: int = 1920,
        height: int = 1080,
        flush_grabs: int = 5,
        flush_timeout_ms: float = 60.0,
    ) -> None:
        self._index = index
        self._width = width
        self._height = height
        self._flush_grabs = flush_grabs
        self._flush_timeout_ms = flush_timeout_ms
        self._capture: cv2.VideoCapture | None = None
        self._lock = threading.Lock()
        self._counter = itertools.count(1)

    async def capture(self) -> CapturedImage:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._capture_blocking)

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.info("Camera %d released", self._index)

    def _open(self) -> cv2.VideoCapture:
        if self._capture is not None:
            return self._capture
        cap = cv2.VideoCapture(self._index)
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._height)
        if not cap.isOpened():
            cap.release()
            raise CameraError(f"Camera {self._index} could not be opened")
        self._capture = cap
        logger.info("Camera %d opened", self._index)
        return cap

    def _capture_blocking(self) -> CapturedImage:
        with self._lock:
            cap = self._open()
            try:
                # Drop frames buffered since the last capture.
                start = time.monotonic()
                for _ in range(self._flush_grabs):
                    cap.grab()
                    if (time.monotonic() - start) * 1000 >= self._flush_timeout_ms:
                        break

                ok, frame = cap.read()
            except cv2.error as exc:
                raise CameraError(f"Camera {self._index} failed: {exc}") from exc
            if not ok or frame is None:
                raise CameraError(f"Camera {self._index} failed to read a frame")

        height, width = frame.shape[:2]
        source = f"camera://{self._index}/{next(self._counter)}"
        logger.debug("Captured %s (%dx%d)", source, width, height)
        return CapturedImage(source=source, width=width, height=height, pixels=frame, bgr=True)


class StillImageCamera:
    """Returns the same image file on every capture."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def capture(self) -> CapturedImage:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._capture_blocking)

    def close(self) -> None:
        return None

    def _capture_blocking(self) -> CapturedImage:
        try:
            is_file = self._path.is_file()
        except OSError as exc:
            raise CameraError(f"Cannot access {self._path}: {exc}") from exc
        if not is_file:
            raise CameraError(f"No image at {self._path}")

        width: int | None = None
        height: int | None = None
        try:
            with Image.open(self._path) as image:
                width, height = image.size
        except (OSError, UnidentifiedImageError):
            # Size stays unknown; decoding problems are reported by the normalizer.
            logger.debug("Could not read size of %s", self._path)
        return CapturedImage(source=str(self._path), width=width, height=height)


def build_camera(settings: Settings) -> Camera:
    """Pick the camera implementation the settings ask for."""
    if settings.camera_image_path:
        logger.info("Using still image %s as camera", settings.camera_image_path)
        return StillImageCamera(settings.camera_image_path)
    return OpenCVCamera(
        index=settings.camera_index,
        width=settings.camera_width,
        height=settings.camera_height,
        flush_grabs=settings.camera_flush_grabs,
    )

"""Tests for the camera and permission collaborators."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest
from PIL import Image

from snaplabel.config import Settings
from snaplabel.devices.camera import OpenCVCamera, StillImageCamera, build_camera
from snaplabel.devices.permission import ConfigPermissionProvider
from snaplabel.errors import CameraError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from snaplabel.ml.preprocessing import CapturedImage


class TestOpenCVCamera:
    @patch("cv2.VideoCapture")
    async def test_capture_returns_bgr_frame(self, mock_capture_cls: MagicMock) -> None:
        device = mock_capture_cls.return_value
        device.isOpened.return_value = True
        frame = np.zeros((1080, 1920, 3), dtype=np.uint8)
        device.read.return_value = (True, frame)
        camera = OpenCVCamera(index=2, flush_grabs=3)

        image = await camera.capture()

        mock_capture_cls.assert_called_once_with(2)
        assert image.source == "camera://2/1"
        assert (image.width, image.height) == (1920, 1080)
        assert image.bgr is True
        assert image.pixels is frame
        assert 1 <= device.grab.call_count <= 3

    @patch("cv2.VideoCapture")
    async def test_device_is_opened_once(self, mock_capture_cls: MagicMock) -> None:
        device = mock_capture_cls.return_value
        device.isOpened.return_value = True
        device.read.return_value = (True, np.zeros((4, 4, 3), dtype=np.uint8))
        camera = OpenCVCamera(flush_grabs=0)

        first = await camera.capture()
        second = await camera.capture()
        camera.close()

        mock_capture_cls.assert_called_once()
        assert (first.source, second.source) == ("camera://0/1", "camera://0/2")
        device.release.assert_called_once()

    @patch("cv2.VideoCapture")
    async def test_unopenable_device_raises(self, mock_capture_cls: MagicMock) -> None:
        device = mock_capture_cls.return_value
        device.isOpened.return_value = False

        with pytest.raises(CameraError, match="could not be opened"):
            await OpenCVCamera(index=1).capture()
        device.release.assert_called_once()

    @patch("cv2.VideoCapture")
    async def test_failed_read_raises(self, mock_capture_cls: MagicMock) -> None:
        device = mock_capture_cls.return_value
        device.isOpened.return_value = True
        device.read.return_value = (False, None)

        with pytest.raises(CameraError, match="failed to read"):
            await OpenCVCamera().capture()

    @patch("cv2.VideoCapture")
    async def test_backend_error_is_wrapped(self, mock_capture_cls: MagicMock) -> None:
        device = mock_capture_cls.return_value
        device.isOpened.return_value = True
        device.read.side_effect = cv2.error("backend died")

        with pytest.raises(CameraError, match="backend died"):
            await OpenCVCamera(flush_grabs=0).capture()


class TestStillImageCamera:
    async def test_reports_native_size(self, write_image: Callable[..., CapturedImage]) -> None:
        written = write_image(1080, 1920)

        image = await StillImageCamera(written.source).capture()

        assert image.source == written.source
        assert (image.width, image.height) == (1080, 1920)
        assert image.pixels is None

    async def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(CameraError, match="No image"):
            await StillImageCamera(tmp_path / "missing.jpg").capture()

    async def test_unreadable_file_leaves_size_unknown(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.jpg"
        path.touch()

        image = await StillImageCamera(path).capture()

        assert image.width is None
        assert image.height is None

    async def test_file_is_read_off_the_event_loop(self, write_image: Callable[..., CapturedImage]) -> None:
        written = write_image(64, 48)
        loop_thread = threading.current_thread()
        seen: list[threading.Thread] = []
        real_open = Image.open

        def recording_open(*args: object, **kwargs: object) -> Image.Image:
            seen.append(threading.current_thread())
            return real_open(*args, **kwargs)  # type: ignore[arg-type]

        with patch("snaplabel.devices.camera.Image.open", side_effect=recording_open):
            image = await StillImageCamera(written.source).capture()

        assert (image.width, image.height) == (64, 48)
        assert len(seen) == 1
        assert seen[0] is not loop_thread

    async def test_inaccessible_path_raises_camera_error(self, tmp_path: Path) -> None:
        with (
            patch("pathlib.Path.is_file", side_effect=PermissionError("denied")),
            pytest.raises(CameraError, match="Cannot access"),
        ):
            await StillImageCamera(tmp_path / "photo.jpg").capture()


class TestBuildCamera:
    def test_still_image_when_path_configured(self, tmp_path: Path) -> None:
        camera = build_camera(Settings(camera_image_path=str(tmp_path / "photo.jpg")))
        assert isinstance(camera, StillImageCamera)

    def test_opencv_by_default(self) -> None:
        camera = build_camera(Settings(camera_image_path=None, camera_index=3))
        assert isinstance(camera, OpenCVCamera)


class TestConfigPermissionProvider:
    def test_not_granted_until_requested(self) -> None:
        provider = ConfigPermissionProvider(allow=True)
        assert provider.granted is False

        assert provider.request() is True
        assert provider.granted is True

    def test_denied(self) -> None:
        provider = ConfigPermissionProvider(allow=False)
        assert provider.request() is False
        assert provider.granted is False

"""Shared fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from PIL import Image

from snaplabel.ml.inference import InferencePool
from snaplabel.ml.preprocessing import CapturedImage

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


@pytest.fixture()
def pool() -> Iterator[InferencePool]:
    """A single-worker inference pool, shut down after the test."""
    inference_pool = InferencePool()
    yield inference_pool
    inference_pool.shutdown()


@pytest.fixture()
def write_image(tmp_path: Path) -> Callable[..., CapturedImage]:
    """Write a solid-color image file and return it as a CapturedImage."""

    def _write(
        width: int,
        height: int,
        name: str = "photo.jpg",
        mode: str = "RGB",
        color: object = (200, 30, 30),
        fmt: str = "JPEG",
    ) -> CapturedImage:
        path = tmp_path / name
        Image.new(mode, (width, height), color=color).save(path, format=fmt)  # type: ignore[arg-type]
        return CapturedImage(source=str(path), width=width, height=height)

    return _write

"""Process-wide handle to the loaded classifier.

The handle is created once, loads its classifier asynchronously exactly once,
and flips ``ready`` from False to True when that load succeeds. A failed load
is final for the process: ``ready`` stays False and every later ``load()``
raises the same ModelLoadError.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from snaplabel.errors import InferenceError, ModelLoadError
from snaplabel.ml.image_classifier import OnnxImageClassifier
from snaplabel.ml.model_manager import get_spec

if TYPE_CHECKING:
    from collections.abc import Callable

    from snaplabel.config import Settings
    from snaplabel.ml.image_classifier import ImageClassifier, Prediction
    from snaplabel.ml.model_manager import ModelManager
    from snaplabel.ml.preprocessing import NormalizedTensor

logger = logging.getLogger(__name__)


class ModelHandle:
    """Lazily-initialized classifier with a one-way readiness flag."""

    def __init__(self, loader: Callable[[], ImageClassifier]) -> None:
        self._loader = loader
        self._classifier: ImageClassifier | None = None
        self._ready = False
        self._load_task: asyncio.Task[None] | None = None
        self._load_error: ModelLoadError | None = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def load_error(self) -> ModelLoadError | None:
        return self._load_error

    @property
    def model_name(self) -> str | None:
        return self._classifier.model_name if self._classifier is not None else None

    async def load(self) -> ModelHandle:
        """Load the classifier, or wait for the load already in progress.

        Raises:
            ModelLoadError: If the classifier cannot be fetched or initialized.
        """
        if self._ready:
            return self
        if self._load_error is not None:
            raise self._load_error
        task = self._load_task
        if task is not None and task.get_loop() is not asyncio.get_running_loop():
            # A load started on a loop that has since gone away never finishes.
            logger.info("Restarting classifier load on the current event loop")
            task = None
        if task is None:
            self._load_task = asyncio.ensure_future(self._load())
        await asyncio.shield(self._load_task)
        return self

    def classify(self, tensor: NormalizedTensor) -> list[Prediction]:
        """Run the classifier on a normalized tensor.

        Blocking; call it from a worker thread.

        Raises:
            InferenceError: If the model is not ready, the tensor has the wrong
                shape, or the model fails.
        """
        classifier = self._classifier
        if not self._ready or classifier is None:
            raise InferenceError("Classifier is not ready")

        expected = (classifier.input_size, classifier.input_size, 3)
        try:
            shape = tensor.shape
        except RuntimeError as exc:
            raise InferenceError(str(exc)) from exc
        if shape != expected:
            raise InferenceError(f"Tensor has shape {shape}, {classifier.model_name} expects {expected}")

        try:
            return classifier.classify(tensor.pixels)
        except Exception as exc:
            raise InferenceError(f"{classifier.model_name} failed: {exc}") from exc

    async def _load(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            classifier = await loop.run_in_executor(None, self._loader)
        except Exception as exc:
            self._load_error = ModelLoadError(f"Failed to load classifier: {exc}")
            logger.error("%s", self._load_error)
            raise self._load_error from exc

        self._classifier = classifier
        self._ready = True
        logger.info("Classifier %s ready", classifier.model_name)


def onnx_loader(settings: Settings, manager: ModelManager) -> Callable[[], ImageClassifier]:
    """Return a blocking callable that builds the configured ONNX classifier."""

    def load() -> ImageClassifier:
        spec = get_spec(settings.model_name)
        session = manager.get_session(spec.name)
        labels = manager.load_labels(spec.name)
        return OnnxImageClassifier(session, spec, labels, candidates=settings.candidates)

    return load


# ---------------------------------------------------------------------------
# Process-wide singleton
# ---------------------------------------------------------------------------

_handle: ModelHandle | None = None
_handle_lock = threading.Lock()


def get_model_handle(settings: Settings, manager: ModelManager) -> ModelHandle:
    """Return the process-wide ModelHandle, creating it on first use."""
    global _handle  # noqa: PLW0603
    with _handle_lock:
        if _handle is None:
            _handle = ModelHandle(onnx_loader(settings, manager))
        return _handle

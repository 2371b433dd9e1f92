"""Image classification over ONNX Runtime.

The classifier reports its most probable candidate labels in class-index
order. It does not rank them; ordering is the pipeline's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from snaplabel.ml.model_manager import ModelSpec


@dataclass(frozen=True)
class Prediction:
    """A single candidate label produced by the classifier."""

    label: str
    probability: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    @property
    def input_size(self) -> int:
        """Return the square input edge length the model expects."""
        ...

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        """Classify an image and return candidate labels.

        Args:
            image: HxWx3 RGB uint8 array of the model's input size.

        Returns:
            Candidate predictions in model output order (not sorted).
        """
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)


class OnnxImageClassifier:
    """ImageClassifier backed by an ONNX Runtime session."""

    def __init__(
        self,
        session: InferenceSession,
        spec: ModelSpec,
        labels: list[str],
        candidates: int = 10,
    ) -> None:
        self._session = session
        self._spec = spec
        self._labels = labels
        self._candidates = candidates
        self._input_name: str = session.get_inputs()[0].name
        self._output_name: str = session.get_outputs()[0].name
        self._mean = np.asarray(spec.mean, dtype=np.float32)
        self._std = np.asarray(spec.std, dtype=np.float32)

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def input_size(self) -> int:
        return self._spec.input_size

    def classify(self, image: NDArray[np.uint8]) -> list[Prediction]:
        batch = self._to_input(image)
        (output,) = self._session.run([self._output_name], {self._input_name: batch})
        scores = np.asarray(output, dtype=np.float32).reshape(-1)
        if scores.shape[0] != len(self._labels):
            raise ValueError(f"Model produced {scores.shape[0]} scores for {len(self._labels)} labels")

        probabilities = softmax(scores) if self._spec.logits else scores
        k = min(self._candidates, probabilities.shape[0])
        top = np.sort(np.argpartition(probabilities, -k)[-k:])
        return [Prediction(label=self._labels[int(i)], probability=float(probabilities[i])) for i in top]

    def _to_input(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        """HWC uint8 RGB -> 1xCxHxW float32, scaled to [0, 1] then mean/std normalized."""
        scaled = image.astype(np.float32) / 255.0
        normalized = (scaled - self._mean) / self._std
        return np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)

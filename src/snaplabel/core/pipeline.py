"""Capture-to-labels classification pipeline.

normalize -> classify -> rank -> format. Every failure inside the pipeline is
converted into a one-line placeholder result so the session can always move on
to showing results and be reset.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from snaplabel.errors import SnapLabelError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from snaplabel.ml.image_classifier import Prediction
    from snaplabel.ml.inference import InferencePool
    from snaplabel.ml.model_handle import ModelHandle
    from snaplabel.ml.preprocessing import CapturedImage, ImageNormalizer

logger = logging.getLogger(__name__)

DEFAULT_TOP_K: int = 5
CLASSIFICATION_ERROR_MESSAGE = "Error classifying image"


def format_prediction(prediction: Prediction) -> str:
    """Render a prediction as ``"<label> (<percent with 2 decimals>%)"``."""
    return f"{prediction.label} ({prediction.probability * 100:.2f}%)"


def rank_predictions(predictions: Iterable[Prediction], top_k: int = DEFAULT_TOP_K) -> list[Prediction]:
    """Sort by probability descending and keep the first ``top_k``.

    The sort is stable, so equal probabilities keep the model's order.
    Duplicate labels are passed through untouched.
    """
    return sorted(predictions, key=lambda p: p.probability, reverse=True)[:top_k]


@dataclass(frozen=True)
class RankedResult:
    """Ranked predictions, or a single error message in their place."""

    predictions: tuple[Prediction, ...] = ()
    error: str | None = None
    lines: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        lines = (self.error,) if self.error is not None else tuple(format_prediction(p) for p in self.predictions)
        object.__setattr__(self, "lines", lines)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, message: str = CLASSIFICATION_ERROR_MESSAGE) -> RankedResult:
        return cls(error=message)


class ClassificationPipeline:
    """Runs one captured image through normalization, inference and ranking."""

    def __init__(
        self,
        normalizer: ImageNormalizer,
        model: ModelHandle,
        pool: InferencePool,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._normalizer = normalizer
        self._model = model
        self._pool = pool
        self._top_k = top_k

    async def run(self, image: CapturedImage) -> RankedResult:
        """Classify ``image``. Never raises; failures yield ``RankedResult.failure()``."""
        try:
            tensor = await self._pool.run(self._normalizer.normalize, image)
            with tensor:
                predictions = await self._pool.run(self._model.classify, tensor)
        except SnapLabelError as exc:
            logger.warning("Classification of %s failed: %s", image.source, exc)
            return RankedResult.failure()
        except Exception:
            logger.exception("Unexpected error classifying %s", image.source)
            return RankedResult.failure()

        ranked = rank_predictions(predictions, self._top_k)
        logger.info(
            "Classified %s: %s",
            image.source,
            ", ".join(format_prediction(p) for p in ranked) or "no predictions",
        )
        return RankedResult(predictions=tuple(ranked))

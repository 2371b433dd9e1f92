"""Error taxonomy for SnapLabel.

Only ``ModelLoadError`` is fatal: the classifier never becomes usable for the
rest of the process run. Everything raised by the classification stages is
recoverable and is turned into a placeholder result by the pipeline.
"""

from __future__ import annotations


class SnapLabelError(Exception):
    """Base class for all SnapLabel errors."""


class ModelLoadError(SnapLabelError):
    """The classifier could not be fetched or initialized."""


class NormalizationError(SnapLabelError):
    """A captured image could not be turned into a model input tensor."""


class InferenceError(SnapLabelError):
    """The classifier rejected its input or failed internally."""


class PermissionDenied(SnapLabelError):
    """Camera access was not granted."""


class CameraError(SnapLabelError):
    """The camera device failed to produce an image."""

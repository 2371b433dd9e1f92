"""Session state machine: the single source of truth for which actions are enabled.

    LOADING --(model ready + permission)--> READY --capture--> CAPTURING
    CAPTURING --image--> CLASSIFYING --result--> RESULTS_SHOWN --reset--> READY
    CAPTURING --any camera failure--> READY

All transitions happen on the event loop thread. ``capture()`` moves to
CAPTURING before its first await, which is what keeps a second capture from
starting while one is in flight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from snaplabel.errors import CameraError, PermissionDenied

if TYPE_CHECKING:
    from collections.abc import Callable

    from snaplabel.core.pipeline import ClassificationPipeline
    from snaplabel.devices.camera import Camera
    from snaplabel.devices.permission import PermissionProvider
    from snaplabel.ml.model_handle import ModelHandle
    from snaplabel.ml.preprocessing import CapturedImage

logger = logging.getLogger(__name__)


class SessionPhase(StrEnum):
    LOADING = "loading"
    READY = "ready"
    CAPTURING = "capturing"
    CLASSIFYING = "classifying"
    RESULTS_SHOWN = "results_shown"


@dataclass(frozen=True)
class SessionSnapshot:
    """Immutable view of the session handed to observers and the display."""

    phase: SessionPhase
    model_ready: bool
    permission_granted: bool
    predictions: tuple[str, ...]
    captured_image: str | None
    model_error: str | None

    @property
    def can_capture(self) -> bool:
        return self.phase is SessionPhase.READY

    @property
    def can_reset(self) -> bool:
        return self.phase is SessionPhase.RESULTS_SHOWN

    @property
    def display_text(self) -> str:
        if self.model_error is not None:
            return f"Model failed to load: {self.model_error}"
        if self.phase is SessionPhase.LOADING:
            if not self.model_ready:
                return "Loading model..."
            return "We need your permission to show the camera"
        if self.phase in (SessionPhase.CAPTURING, SessionPhase.CLASSIFYING):
            return "Classifying..."
        if self.phase is SessionPhase.RESULTS_SHOWN:
            if self.predictions:
                return "Predictions:\n" + "\n".join(self.predictions)
            return "No predictions"
        return "Ready"


class SessionState:
    """Finite state machine driving capture and classification."""

    def __init__(
        self,
        model: ModelHandle,
        pipeline: ClassificationPipeline,
        camera: Camera,
        permission: PermissionProvider,
    ) -> None:
        self._model = model
        self._pipeline = pipeline
        self._camera = camera
        self._permission = permission

        self._phase = SessionPhase.LOADING
        self._predictions: tuple[str, ...] = ()
        self._captured: CapturedImage | None = None
        self._model_error: str | None = None
        self._observers: list[Callable[[SessionSnapshot], None]] = []

    # -- Observation --------------------------------------------------------

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def predictions(self) -> tuple[str, ...]:
        return self._predictions

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            phase=self._phase,
            model_ready=self._model.ready,
            permission_granted=self._permission.granted,
            predictions=self._predictions,
            captured_image=self._captured.source if self._captured is not None else None,
            model_error=self._model_error,
        )

    def subscribe(self, observer: Callable[[SessionSnapshot], None]) -> Callable[[], None]:
        """Register ``observer`` for every state change; returns an unsubscribe callable."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # -- Readiness inputs ---------------------------------------------------

    def on_model_ready(self) -> None:
        """Called once the ModelHandle finished loading."""
        self._refresh_readiness()

    def on_model_failed(self, error: Exception) -> None:
        """Called once if the ModelHandle failed to load; capture stays disabled for good."""
        self._model_error = str(error)
        logger.error("Capture disabled: %s", error)
        self._notify()

    def request_permission(self) -> bool:
        """Ask for camera access.

        Raises:
            PermissionDenied: If the provider refuses; the request may be repeated.
        """
        if not self._permission.granted and not self._permission.request():
            logger.info("Camera permission denied")
            raise PermissionDenied("Camera permission was not granted")
        self._refresh_readiness()
        return True

    # -- User actions -------------------------------------------------------

    async def capture(self) -> bool:
        """Capture a photo and classify it. Returns False if the action was rejected."""
        if not self._model.ready:
            logger.info("Capture rejected: model not ready")
            return False
        if self._phase is not SessionPhase.READY:
            logger.info("Capture rejected: session is %s", self._phase)
            return False

        self._captured = None
        self._predictions = ()
        self._transition(SessionPhase.CAPTURING)

        try:
            image = await self._camera.capture()
        except CameraError as exc:
            logger.warning("Capture failed, image discarded: %s", exc)
            self._transition(SessionPhase.READY)
            return False
        except Exception:
            logger.exception("Unexpected camera failure, image discarded")
            self._transition(SessionPhase.READY)
            return False

        self._captured = image
        self._transition(SessionPhase.CLASSIFYING)

        result = await self._pipeline.run(image)
        self._predictions = result.lines
        self._transition(SessionPhase.RESULTS_SHOWN)
        return True

    def reset(self) -> bool:
        """Discard the current result and return to READY. Returns False if rejected."""
        if self._phase is not SessionPhase.RESULTS_SHOWN:
            logger.info("Reset rejected: session is %s", self._phase)
            return False

        self._captured = None
        self._predictions = ()
        self._transition(SessionPhase.READY)
        return True

    # -- Internal -----------------------------------------------------------

    def _refresh_readiness(self) -> None:
        if self._phase is SessionPhase.LOADING and self._model.ready and self._permission.granted:
            self._transition(SessionPhase.READY)
        else:
            self._notify()

    def _transition(self, phase: SessionPhase) -> None:
        logger.debug("Session %s -> %s", self._phase, phase)
        self._phase = phase
        self._notify()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("Session observer %r failed", observer)

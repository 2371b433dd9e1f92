"""Pydantic response schemas for the SnapLabel API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from snaplabel.core.session import SessionSnapshot


class SessionResponse(BaseModel):
    """Current session state as rendered by a display."""

    phase: str = Field(description="'loading', 'ready', 'capturing', 'classifying' or 'results_shown'")
    model_ready: bool
    permission_granted: bool
    can_capture: bool
    can_reset: bool
    predictions: list[str] = Field(description="Ranked '<label> (<percent>%)' lines or a single error message")
    captured_image: str | None = Field(default=None, description="Source identifier of the shown capture")
    model_error: str | None = None
    display_text: str

    @classmethod
    def from_snapshot(cls, snapshot: SessionSnapshot) -> SessionResponse:
        return cls(
            phase=snapshot.phase.value,
            model_ready=snapshot.model_ready,
            permission_granted=snapshot.permission_granted,
            can_capture=snapshot.can_capture,
            can_reset=snapshot.can_reset,
            predictions=list(snapshot.predictions),
            captured_image=snapshot.captured_image,
            model_error=snapshot.model_error,
            display_text=snapshot.display_text,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_ready: bool
    models_loaded: list[str]
    phase: str
    active_inferences: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'image_classification'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str
    input_size: int


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str

"""API route definitions.

The API drives a device-local session: it triggers the local camera and
reports labels. Image data never crosses the API.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from snaplabel.api.dependencies import (
    get_inference_pool,
    get_model_handle_from_request,
    get_model_manager,
    get_session,
    get_settings_from_request,
    verify_api_key,
)
from snaplabel.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    SessionResponse,
)
from snaplabel.errors import PermissionDenied
from snaplabel.ml.model_manager import MODEL_REGISTRY

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _rejected(detail: str, request: Request) -> JSONResponse:
    session = get_session(request)
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": f"{detail} while session is {session.phase.value}"},
    )


@router.get(
    "/session",
    response_model=SessionResponse,
    summary="Current session state",
)
async def read_session(request: Request) -> SessionResponse:
    """Return the session state and the text a display should show."""
    return SessionResponse.from_snapshot(get_session(request).snapshot())


@router.post(
    "/session/permission",
    response_model=SessionResponse,
    responses={status.HTTP_403_FORBIDDEN: {"model": ErrorResponse}},
    summary="Request camera permission",
)
async def request_permission(request: Request) -> SessionResponse | JSONResponse:
    """Ask for camera access; the session becomes ready once the model is loaded too."""
    session = get_session(request)
    try:
        session.request_permission()
    except PermissionDenied as exc:
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})
    return SessionResponse.from_snapshot(session.snapshot())


@router.post(
    "/session/capture",
    response_model=SessionResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Capture a photo and classify it",
)
async def capture(request: Request) -> SessionResponse | JSONResponse:
    """Take a photo with the local camera and wait for its ranked labels."""
    session = get_session(request)
    if not await session.capture():
        return _rejected("Capture rejected", request)
    return SessionResponse.from_snapshot(session.snapshot())


@router.post(
    "/session/reset",
    response_model=SessionResponse,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Discard the shown result",
)
async def reset(request: Request) -> SessionResponse | JSONResponse:
    """Clear predictions and return to the ready state."""
    session = get_session(request)
    if not session.reset():
        return _rejected("Reset rejected", request)
    return SessionResponse.from_snapshot(session.snapshot())


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    pool = get_inference_pool(request)
    handle = get_model_handle_from_request(request)
    return HealthResponse(
        status="ok" if handle.load_error is None else "degraded",
        gpu=settings.device == "cuda",
        model_ready=handle.ready,
        models_loaded=get_model_manager(request).get_loaded_models(),
        phase=get_session(request).phase.value,
        active_inferences=pool.active_count,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered classifiers, marking the configured one as active."""
    settings = get_settings_from_request(request)
    models = [
        ModelInfo(
            name=spec.name,
            task=spec.task.value,
            status="active" if spec.name == settings.model_name else "available",
            license=spec.license,
            input_size=spec.input_size,
        )
        for spec in MODEL_REGISTRY.values()
    ]
    return ModelsResponse(models=models)

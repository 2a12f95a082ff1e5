"""API route definitions."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response, UploadFile, status

from mosh.api.middleware import ApiError, NotFoundError
from mosh.api.schemas import (
    CaptureSessionOut,
    CreateSnapshotRequest,
    DataResponse,
    ErrorResponse,
    HealthResponse,
    SnapshotList,
    SnapshotOut,
    UpdateSnapshotRequest,
    ValidationStateOut,
)
from mosh.ml.preprocessing import decode_frame

if TYPE_CHECKING:
    from mosh.config import Settings
    from mosh.ml.inference import InferencePool
    from mosh.ml.model_manager import ModelManager
    from mosh.store.snapshots import SnapshotStore
    from mosh.validation.session import CaptureSession, SessionRegistry

router = APIRouter(prefix="/api")
snapshots_router = APIRouter(prefix="/api/snapshots", tags=["snapshots"])
sessions_router = APIRouter(prefix="/api/sessions", tags=["capture sessions"])

_NOT_FOUND = {status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}}
_BAD_REQUEST = {status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse}}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_store(request: Request) -> SnapshotStore:
    store: SnapshotStore = request.app.state.snapshot_store
    return store


def _get_sessions(request: Request) -> SessionRegistry:
    sessions: SessionRegistry = request.app.state.sessions
    return sessions


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=_get_model_manager(request).get_loaded_models(),
        capture_sessions=len(_get_sessions(request)),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@snapshots_router.get(
    "",
    response_model=DataResponse[SnapshotList],
    summary="List snapshots, newest first",
)
def list_snapshots(request: Request) -> DataResponse[SnapshotList]:
    snapshots = [SnapshotOut.from_snapshot(s) for s in _get_store(request).list()]
    return DataResponse[SnapshotList](data=SnapshotList(snapshots=snapshots, total=len(snapshots)))


@snapshots_router.get(
    "/{snapshot_id}",
    response_model=DataResponse[SnapshotOut],
    responses=_NOT_FOUND,
    summary="Get a snapshot",
)
def get_snapshot(snapshot_id: str, request: Request) -> DataResponse[SnapshotOut]:
    snapshot = _get_store(request).get(snapshot_id)
    if snapshot is None:
        raise NotFoundError("Snapshot not found")
    return DataResponse[SnapshotOut](data=SnapshotOut.from_snapshot(snapshot))


@snapshots_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[SnapshotOut],
    responses=_BAD_REQUEST,
    summary="Create a snapshot from a front and a top photo",
)
def create_snapshot(body: CreateSnapshotRequest, request: Request) -> DataResponse[SnapshotOut]:
    snapshot = _get_store(request).create(body.front_photo, body.top_photo)
    return DataResponse[SnapshotOut](data=SnapshotOut.from_snapshot(snapshot))


@snapshots_router.put(
    "/{snapshot_id}",
    response_model=DataResponse[SnapshotOut],
    responses={**_BAD_REQUEST, **_NOT_FOUND},
    summary="Update notes and/or photos of a snapshot",
)
def update_snapshot(snapshot_id: str, body: UpdateSnapshotRequest, request: Request) -> DataResponse[SnapshotOut]:
    snapshot = _get_store(request).update(
        snapshot_id,
        notes=body.notes,
        front_image=body.front_photo,
        top_image=body.top_photo,
    )
    if snapshot is None:
        raise NotFoundError("Snapshot not found")
    return DataResponse[SnapshotOut](data=SnapshotOut.from_snapshot(snapshot))


@snapshots_router.delete(
    "/{snapshot_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses=_NOT_FOUND,
    summary="Delete a snapshot and its photos",
)
def delete_snapshot(snapshot_id: str, request: Request) -> Response:
    if not _get_store(request).delete(snapshot_id):
        raise NotFoundError("Snapshot not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Capture sessions
# ---------------------------------------------------------------------------


def _session_out(session: CaptureSession) -> DataResponse[CaptureSessionOut]:
    return DataResponse[CaptureSessionOut](
        data=CaptureSessionOut(
            id=session.id,
            model_ready=session.model_ready,
            capture_ready=session.capture_ready,
            state=ValidationStateOut.from_state(session.validator.state),
        )
    )


@sessions_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=DataResponse[CaptureSessionOut],
    summary="Open a capture session",
)
async def open_session(request: Request) -> DataResponse[CaptureSessionOut]:
    """Open a session; ``modelReady`` is false when validation is bypassed."""
    session = await _get_sessions(request).open()
    return _session_out(session)


@sessions_router.get(
    "/{session_id}",
    response_model=DataResponse[CaptureSessionOut],
    responses=_NOT_FOUND,
    summary="Read the current validation state",
)
async def get_session(session_id: str, request: Request) -> DataResponse[CaptureSessionOut]:
    return _session_out(_get_sessions(request).get(session_id))


@sessions_router.post(
    "/{session_id}/frames",
    response_model=DataResponse[CaptureSessionOut],
    responses={**_BAD_REQUEST, **_NOT_FOUND},
    summary="Submit a camera frame for validation",
)
async def submit_frame(session_id: str, file: UploadFile, request: Request) -> DataResponse[CaptureSessionOut]:
    """Validate a frame; frames arriving faster than the detection interval are dropped."""
    settings = _get_settings(request)
    session = _get_sessions(request).get(session_id)

    try:
        data = await file.read(settings.max_frame_size + 1)
    finally:
        await file.close()
    if len(data) > settings.max_frame_size:
        raise ApiError(f"Frame exceeds {settings.max_frame_size} bytes")

    try:
        frame = await asyncio.to_thread(decode_frame, data, max_pixels=settings.max_image_pixels)
    except ValueError as exc:
        raise ApiError(str(exc)) from exc

    await session.validator.on_frame(frame)
    return _session_out(session)


@sessions_router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses=_NOT_FOUND,
    summary="Close a capture session",
)
async def close_session(session_id: str, request: Request) -> Response:
    _get_sessions(request).close(session_id)
    _get_model_manager(request).unload_idle_models()
    return Response(status_code=status.HTTP_204_NO_CONTENT)

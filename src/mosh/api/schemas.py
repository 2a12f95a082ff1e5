"""Pydantic request/response schemas for the mosh API.

JSON bodies use camelCase field names.
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from mosh.store.snapshots import Photo, PhotoType, Snapshot
from mosh.validation.state import LightingFeedback, PositionFeedback, ValidationState

T = TypeVar("T")

BASE64_IMAGE_PATTERN = r"^data:image/(jpeg|png|webp);base64,[A-Za-z0-9+/]+=*$"
NOTES_MAX_LENGTH = 1000


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DataResponse(ApiModel, Generic[T]):
    """Success envelope."""

    data: T


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str
    message: str


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class PhotoOut(ApiModel):
    id: str
    snapshot_id: str
    type: PhotoType
    image_data: str
    created_at: str

    @classmethod
    def from_photo(cls, photo: Photo) -> PhotoOut:
        return cls(
            id=photo.id,
            snapshot_id=photo.snapshot_id,
            type=photo.type,
            image_data=photo.image_data,
            created_at=photo.created_at,
        )


class SnapshotOut(ApiModel):
    id: str
    notes: str
    created_at: str
    updated_at: str
    front_photo: PhotoOut
    top_photo: PhotoOut

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> SnapshotOut:
        return cls(
            id=snapshot.id,
            notes=snapshot.notes,
            created_at=snapshot.created_at,
            updated_at=snapshot.updated_at,
            front_photo=PhotoOut.from_photo(snapshot.front_photo),
            top_photo=PhotoOut.from_photo(snapshot.top_photo),
        )


class SnapshotList(ApiModel):
    snapshots: list[SnapshotOut]
    total: int


class CreateSnapshotRequest(ApiModel):
    front_photo: str = Field(pattern=BASE64_IMAGE_PATTERN)
    top_photo: str = Field(pattern=BASE64_IMAGE_PATTERN)


class UpdateSnapshotRequest(ApiModel):
    notes: str | None = Field(default=None, max_length=NOTES_MAX_LENGTH)
    front_photo: str | None = Field(default=None, pattern=BASE64_IMAGE_PATTERN)
    top_photo: str | None = Field(default=None, pattern=BASE64_IMAGE_PATTERN)

    @model_validator(mode="after")
    def _require_one_field(self) -> UpdateSnapshotRequest:
        if self.notes is None and self.front_photo is None and self.top_photo is None:
            raise ValueError("At least one field required")
        return self


# ---------------------------------------------------------------------------
# Capture sessions
# ---------------------------------------------------------------------------


class BoundingBoxOut(ApiModel):
    """Face box as fractions (0.0-1.0) of the frame."""

    x: float
    y: float
    width: float
    height: float


class ValidationStateOut(ApiModel):
    is_face_detected: bool
    is_position_valid: bool
    is_lighting_valid: bool
    is_valid: bool
    position_feedback: PositionFeedback
    lighting_feedback: LightingFeedback
    bounding_box: BoundingBoxOut | None = None
    messages: list[str] = Field(default_factory=list)

    @classmethod
    def from_state(cls, state: ValidationState) -> ValidationStateOut:
        box = state.bounding_box
        return cls(
            is_face_detected=state.is_face_detected,
            is_position_valid=state.is_position_valid,
            is_lighting_valid=state.is_lighting_valid,
            is_valid=state.is_valid,
            position_feedback=state.position_feedback,
            lighting_feedback=state.lighting_feedback,
            bounding_box=BoundingBoxOut(x=box.x, y=box.y, width=box.width, height=box.height) if box else None,
            messages=state.messages(),
        )


class CaptureSessionOut(ApiModel):
    id: str
    model_ready: bool = Field(description="False when the face detector could not be loaded")
    capture_ready: bool = Field(description="Whether the current frame may be captured")
    state: ValidationStateOut


class HealthResponse(ApiModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    capture_sessions: int
    concurrent_requests: int
    queue_depth: int

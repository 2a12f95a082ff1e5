"""Face position analysis against the capture frame."""

from __future__ import annotations

from typing import TYPE_CHECKING

from mosh.validation.state import PositionFeedback, PositionResult

if TYPE_CHECKING:
    from mosh.ml.face_detector import BoundingBox

# Fractions of the frame
FACE_WIDTH_MIN = 0.25
FACE_WIDTH_MAX = 0.55
CENTER_TOLERANCE = 0.15


def analyze_position(box: BoundingBox | None, frame_width: int, frame_height: int) -> PositionResult:
    """Check face size and centering, returning the first correction needed.

    Size is checked before centering. Offsets are measured in raw frame
    coordinates and the feedback is phrased for a mirrored preview: a face left
    of center yields ``move_right``.
    """
    if box is None:
        return PositionResult(valid=False, feedback=PositionFeedback.MOVE_CLOSER)

    width_ratio = box.width / frame_width
    if width_ratio < FACE_WIDTH_MIN:
        return PositionResult(valid=False, feedback=PositionFeedback.MOVE_CLOSER)
    if width_ratio > FACE_WIDTH_MAX:
        return PositionResult(valid=False, feedback=PositionFeedback.MOVE_BACK)

    offset_x = (box.center_x - frame_width / 2) / frame_width
    if offset_x < -CENTER_TOLERANCE:
        return PositionResult(valid=False, feedback=PositionFeedback.MOVE_RIGHT)
    if offset_x > CENTER_TOLERANCE:
        return PositionResult(valid=False, feedback=PositionFeedback.MOVE_LEFT)

    offset_y = (box.center_y - frame_height / 2) / frame_height
    if offset_y < -CENTER_TOLERANCE:
        return PositionResult(valid=False, feedback=PositionFeedback.MOVE_DOWN)
    if offset_y > CENTER_TOLERANCE:
        return PositionResult(valid=False, feedback=PositionFeedback.MOVE_UP)

    return PositionResult(valid=True, feedback=PositionFeedback.PERFECT)

"""Validation result types shared by the analyzers and the frame validator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class PositionFeedback(StrEnum):
    PERFECT = "perfect"
    MOVE_CLOSER = "move_closer"
    MOVE_BACK = "move_back"
    MOVE_LEFT = "move_left"
    MOVE_RIGHT = "move_right"
    MOVE_UP = "move_up"
    MOVE_DOWN = "move_down"
    NONE = "none"


class LightingFeedback(StrEnum):
    PERFECT = "perfect"
    TOO_DARK = "too_dark"
    TOO_BRIGHT = "too_bright"
    UNEVEN_LEFT = "uneven_left"
    UNEVEN_RIGHT = "uneven_right"
    NONE = "none"


POSITION_MESSAGES: dict[PositionFeedback, str] = {
    PositionFeedback.PERFECT: "",
    PositionFeedback.MOVE_CLOSER: "Move closer to the camera",
    PositionFeedback.MOVE_BACK: "Move back from the camera",
    PositionFeedback.MOVE_LEFT: "Move slightly left",
    PositionFeedback.MOVE_RIGHT: "Move slightly right",
    PositionFeedback.MOVE_UP: "Move your head up",
    PositionFeedback.MOVE_DOWN: "Move your head down",
    PositionFeedback.NONE: "",
}

LIGHTING_MESSAGES: dict[LightingFeedback, str] = {
    LightingFeedback.PERFECT: "",
    LightingFeedback.TOO_DARK: "Too dark - add more light",
    LightingFeedback.TOO_BRIGHT: "Too bright - reduce light",
    LightingFeedback.UNEVEN_LEFT: "Uneven lighting - add light on left",
    LightingFeedback.UNEVEN_RIGHT: "Uneven lighting - add light on right",
    LightingFeedback.NONE: "",
}


@dataclass(frozen=True)
class PositionResult:
    valid: bool
    feedback: PositionFeedback


@dataclass(frozen=True)
class LightingResult:
    valid: bool
    feedback: LightingFeedback


@dataclass(frozen=True)
class NormalizedBox:
    """Face box as fractions of the frame width and height."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class ValidationState:
    """Outcome of validating one admitted frame.

    Instances are immutable and replaced whole. ``is_valid`` is derived so it
    can never disagree with the three component flags.
    """

    is_face_detected: bool = False
    is_position_valid: bool = False
    is_lighting_valid: bool = False
    position_feedback: PositionFeedback = PositionFeedback.NONE
    lighting_feedback: LightingFeedback = LightingFeedback.NONE
    bounding_box: NormalizedBox | None = None

    def __post_init__(self) -> None:
        if self.is_face_detected:
            if self.bounding_box is None:
                raise ValueError("A detected face requires a bounding box")
            if self.position_feedback == PositionFeedback.NONE or self.lighting_feedback == LightingFeedback.NONE:
                raise ValueError("A detected face requires position and lighting feedback")
            if self.is_position_valid != (self.position_feedback == PositionFeedback.PERFECT):
                raise ValueError("Position feedback must be 'perfect' exactly when position is valid")
            if self.is_lighting_valid != (self.lighting_feedback == LightingFeedback.PERFECT):
                raise ValueError("Lighting feedback must be 'perfect' exactly when lighting is valid")
        elif (
            self.is_position_valid
            or self.is_lighting_valid
            or self.position_feedback != PositionFeedback.NONE
            or self.lighting_feedback != LightingFeedback.NONE
            or self.bounding_box is not None
        ):
            raise ValueError("Without a detected face the state must be the empty baseline")

    @property
    def is_valid(self) -> bool:
        return self.is_face_detected and self.is_position_valid and self.is_lighting_valid

    @classmethod
    def from_analysis(cls, position: PositionResult, lighting: LightingResult, box: NormalizedBox) -> ValidationState:
        return cls(
            is_face_detected=True,
            is_position_valid=position.valid,
            is_lighting_valid=lighting.valid,
            position_feedback=position.feedback,
            lighting_feedback=lighting.feedback,
            bounding_box=box,
        )

    def messages(self) -> list[str]:
        """User-facing instructions for the current state, position first."""
        if not self.is_face_detected:
            return ["No face detected"]
        return [
            message
            for message in (
                POSITION_MESSAGES[self.position_feedback],
                LIGHTING_MESSAGES[self.lighting_feedback],
            )
            if message
        ]


NO_FACE = ValidationState()

"""Frame validation: rate-limited detection feeding the position and lighting analyzers.

``FrameValidator`` owns the current ``ValidationState`` of one capture
session. ``FrameLoop`` drives a validator from a frame source on a fixed tick
with an explicit start/stop lifecycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any

from mosh.ml.face_detector import best_detection
from mosh.ml.preprocessing import extract_region
from mosh.validation.lighting import analyze_lighting
from mosh.validation.position import analyze_position
from mosh.validation.state import NO_FACE, NormalizedBox, ValidationState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray

    from mosh.ml.face_detector import BoundingBox, Detection, FaceDetector

    Runner = Callable[..., Awaitable[Any]]
    FrameSource = Callable[[], Awaitable[NDArray[np.uint8] | None]]
    Subscriber = Callable[[ValidationState], None]

logger = logging.getLogger(__name__)

DEFAULT_DETECTION_INTERVAL: float = 0.1


async def _run_inline(func: Callable[..., Any], *args: object) -> Any:
    return func(*args)


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def normalize_box(box: BoundingBox, frame_width: int, frame_height: int) -> NormalizedBox:
    """Express a pixel box as fractions of the frame, clipped to [0, 1]."""
    x0 = _clamp(box.origin_x / frame_width)
    y0 = _clamp(box.origin_y / frame_height)
    x1 = _clamp((box.origin_x + box.width) / frame_width)
    y1 = _clamp((box.origin_y + box.height) / frame_height)
    return NormalizedBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


def evaluate_detections(frame: NDArray[np.uint8], detections: list[Detection]) -> ValidationState:
    """Combine position and lighting analysis of the best detection."""
    detection = best_detection(detections)
    if detection is None or detection.bounding_box is None:
        return NO_FACE

    box = detection.bounding_box
    frame_height, frame_width = frame.shape[:2]
    position = analyze_position(box, frame_width, frame_height)
    lighting = analyze_lighting(extract_region(frame, box))
    return ValidationState.from_analysis(position, lighting, normalize_box(box, frame_width, frame_height))


class FrameValidator:
    """Validates frames of one capture session.

    Detector calls are rate limited to one per ``interval`` seconds and never
    overlap. A validator created without a detector runs in bypass mode:
    frames are ignored and capture is always allowed.
    """

    def __init__(
        self,
        detector: FaceDetector | None,
        *,
        interval: float = DEFAULT_DETECTION_INTERVAL,
        runner: Runner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._detector = detector
        self._interval = interval
        self._runner: Runner = runner or _run_inline
        self._clock = clock
        self._last_admitted: float | None = None
        self._lock = asyncio.Lock()
        self._state: ValidationState = NO_FACE
        self._subscribers: list[Subscriber] = []
        self._closed = False

    @property
    def state(self) -> ValidationState:
        return self._state

    @property
    def model_ready(self) -> bool:
        return self._detector is not None

    @property
    def bypassed(self) -> bool:
        return self._detector is None

    @property
    def capture_ready(self) -> bool:
        """Whether the current frame may be captured."""
        return self.bypassed or self._state.is_valid

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for every new state; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._subscribers.remove(callback)

        return unsubscribe

    async def on_frame(self, frame: NDArray[np.uint8]) -> ValidationState:
        """Offer a frame for validation and return the (possibly unchanged) state."""
        if self._closed or self._detector is None:
            return self._state
        if not self._admit():
            return self._state

        frame_height, frame_width = frame.shape[:2]
        if frame_height == 0 or frame_width == 0:
            return self._state

        async with self._lock:
            detector = self._detector
            if self._closed or detector is None:
                return self._state
            try:
                detections = await self._runner(detector.detect, frame)
            except Exception:
                logger.debug("Face detection failed, keeping previous state", exc_info=True)
                return self._state

            if self._closed:
                logger.debug("Discarding detection result for closed validator")
                return self._state
            self._publish(evaluate_detections(frame, detections))
        return self._state

    def close(self) -> None:
        """Stop validating and release the detector. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._subscribers.clear()
        if self._detector is not None:
            self._detector.close()

    def _admit(self) -> bool:
        now = self._clock()
        if self._last_admitted is not None and now - self._last_admitted < self._interval:
            return False
        self._last_admitted = now
        return True

    def _publish(self, state: ValidationState) -> None:
        self._state = state
        for callback in list(self._subscribers):
            callback(state)


class FrameLoop:
    """Feeds frames from ``source`` to a validator every ``tick`` seconds.

    The validator is closed when the loop stops, whichever way it stops.
    """

    def __init__(self, validator: FrameValidator, source: FrameSource, *, tick: float = 1 / 30) -> None:
        self._validator = validator
        self._source = source
        self._tick = tick
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("Frame loop already started")
        self._task = asyncio.create_task(self._run(), name="frame-loop")

    async def stop(self) -> None:
        """Cancel the loop and wait for it; re-raises a source failure."""
        task = self._task
        if task is None:
            self._validator.close()
            return
        task.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        finally:
            # A task cancelled before its first step never runs its own cleanup.
            self._validator.close()

    async def __aenter__(self) -> FrameLoop:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def _run(self) -> None:
        try:
            while True:
                frame = await self._source()
                if frame is not None:
                    await self._validator.on_frame(frame)
                await asyncio.sleep(self._tick)
        finally:
            self._validator.close()

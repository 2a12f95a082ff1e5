"""Capture sessions: one frame validator and its detector per live camera view."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from mosh.utils import generate_id
from mosh.validation.orchestrator import DEFAULT_DETECTION_INTERVAL, FrameValidator

if TYPE_CHECKING:
    from collections.abc import Callable

    from mosh.ml.face_detector import FaceDetector
    from mosh.validation.orchestrator import Runner

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """Raised for an unknown or already closed capture session id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Capture session {session_id} not found")
        self.session_id = session_id


@dataclass
class CaptureSession:
    id: str
    validator: FrameValidator
    created_at: float
    last_seen: float

    @property
    def model_ready(self) -> bool:
        return self.validator.model_ready

    @property
    def capture_ready(self) -> bool:
        return self.validator.capture_ready


class SessionRegistry:
    """Opens, looks up, and tears down capture sessions.

    Each session acquires its own detector when opened and releases it when
    closed. A detector that fails to load leaves the session in bypass mode.
    """

    def __init__(
        self,
        detector_factory: Callable[[], FaceDetector],
        *,
        detection_interval: float = DEFAULT_DETECTION_INTERVAL,
        session_ttl: float = 600.0,
        runner: Runner | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._detector_factory = detector_factory
        self._detection_interval = detection_interval
        self._session_ttl = session_ttl
        self._runner = runner
        self._clock = clock
        self._sessions: dict[str, CaptureSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self) -> CaptureSession:
        self.close_idle()

        detector: FaceDetector | None
        try:
            detector = await asyncio.to_thread(self._detector_factory)
        except Exception:
            logger.warning("Face detector unavailable, capture session runs without validation", exc_info=True)
            detector = None

        now = self._clock()
        session = CaptureSession(
            id=generate_id("cap"),
            validator=FrameValidator(
                detector,
                interval=self._detection_interval,
                runner=self._runner,
                clock=self._clock,
            ),
            created_at=now,
            last_seen=now,
        )
        self._sessions[session.id] = session
        logger.info("Opened capture session %s (model_ready=%s)", session.id, session.model_ready)
        return session

    def get(self, session_id: str) -> CaptureSession:
        """Look up a live session and mark it as used; idle sessions are reaped first."""
        self.close_idle()
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None
        session.last_seen = self._clock()
        return session

    def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.validator.close()
        logger.info("Closed capture session %s", session_id)

    def close_idle(self) -> list[str]:
        """Close sessions not touched within the TTL; returns their ids."""
        if self._session_ttl <= 0:
            return []
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.last_seen > self._session_ttl]
        for session_id in expired:
            self.close(session_id)
        return expired

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)

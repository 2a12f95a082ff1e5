"""Terminal capture wizard: guided front photo, top photo, review, save."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

import cv2

from mosh.config import get_settings
from mosh.ml.model_manager import OnnxModelManager
from mosh.ml.preprocessing import encode_data_uri
from mosh.store.snapshots import SnapshotStore
from mosh.validation.orchestrator import FrameLoop, FrameValidator

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np
    from numpy.typing import NDArray

    from mosh.ml.face_detector import FaceDetector
    from mosh.validation.state import ValidationState

logger = logging.getLogger(__name__)


class CaptureAborted(Exception):
    """The user quit the wizard."""


class Camera:
    """OpenCV capture that remembers the last frame it produced (RGB)."""

    def __init__(self, source: int | str, *, width: int = 0, height: int = 0) -> None:
        self._capture = cv2.VideoCapture(source)
        if not self._capture.isOpened():
            raise RuntimeError(f"Could not open camera source: {source}")
        if width > 0:
            self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height > 0:
            self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.latest: NDArray[np.uint8] | None = None

    async def read(self) -> NDArray[np.uint8] | None:
        ok, bgr = await asyncio.to_thread(self._capture.read)
        if not ok:
            return None
        self.latest = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
        return self.latest

    def release(self) -> None:
        self._capture.release()


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Capture a front/top head photo snapshot with live guidance.")
    parser.add_argument("--source", default="0", help="Camera index (e.g. 0) or path to a video file.")
    parser.add_argument("--camera-width", type=int, default=1280, help="Preferred capture width (0 = default).")
    parser.add_argument("--camera-height", type=int, default=720, help="Preferred capture height (0 = default).")
    parser.add_argument("--fps", type=float, default=30.0, help="Frame loop rate.")
    parser.add_argument(
        "--no-guidance",
        action="store_true",
        help="Skip face detection for the front photo.",
    )
    return parser.parse_args(argv)


async def _prompt(message: str) -> str:
    answer = await asyncio.to_thread(input, message)
    if answer.strip().lower() == "q":
        raise CaptureAborted
    return answer


def _print_feedback(state: ValidationState) -> None:
    if state.is_valid:
        print("  Perfect! Ready to capture")
    else:
        print("  " + "; ".join(state.messages()))


def _load_detector(manager: OnnxModelManager) -> FaceDetector | None:
    try:
        return manager.create_detector()
    except Exception:
        logger.warning("Face detector unavailable, capturing without guidance", exc_info=True)
        return None


async def capture_front(camera: Camera, validator: FrameValidator, tick: float) -> NDArray[np.uint8]:
    """Run guidance until the user captures while the frame is acceptable."""
    last_messages: list[list[str]] = [[]]

    def on_state(state: ValidationState) -> None:
        messages = state.messages()
        if messages != last_messages[0]:
            last_messages[0] = messages
            _print_feedback(state)

    validator.subscribe(on_state)
    if validator.bypassed:
        print("Face guidance unavailable; capture is not validated.")

    async with FrameLoop(validator, camera.read, tick=tick) as loop:
        while True:
            await _prompt("Front photo: look at the camera, press Enter to capture (q to quit) ")
            if not loop.running:
                # Leaving the block stops the loop, which re-raises the camera error.
                raise RuntimeError("Camera feed stopped")
            frame = camera.latest
            if frame is not None and validator.capture_ready:
                return frame.copy()
            print("Not ready yet: " + "; ".join(validator.state.messages()))


async def capture_top(camera: Camera) -> NDArray[np.uint8]:
    while True:
        await _prompt("Top photo: tilt your head down, press Enter to capture (q to quit) ")
        frame = await camera.read()
        if frame is not None:
            return frame
        print("Camera returned no frame, try again.")


async def run_wizard(args: argparse.Namespace) -> int:
    settings = get_settings()
    source: int | str = int(args.source) if args.source.isdigit() else args.source
    manager = OnnxModelManager(settings)
    detector = None if args.no_guidance else _load_detector(manager)
    validator = FrameValidator(detector, interval=settings.detection_interval_ms / 1000)

    camera = Camera(source, width=args.camera_width, height=args.camera_height)
    try:
        front = await capture_front(camera, validator, 1 / max(args.fps, 1.0))
        top = await capture_top(camera)
    except CaptureAborted:
        print("Capture cancelled.")
        return 1
    finally:
        validator.close()
        camera.release()
        manager.shutdown()

    answer = await asyncio.to_thread(input, "Save snapshot? [y/N] ")
    if answer.strip().lower() not in {"y", "yes"}:
        print("Snapshot discarded.")
        return 1

    store = SnapshotStore(settings.database_path)
    try:
        snapshot = store.create(encode_data_uri(front), encode_data_uri(top))
    finally:
        store.close()
    print(f"Saved snapshot {snapshot.id}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    args = parse_args(argv)
    try:
        return asyncio.run(run_wizard(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())

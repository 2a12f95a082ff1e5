"""Frame preprocessing: decoding uploaded frames and cutting face regions."""

from __future__ import annotations

import base64
import math
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from mosh.ml.face_detector import BoundingBox


def decode_frame(image_bytes: bytes, *, max_pixels: int) -> NDArray[np.uint8]:
    """Decode encoded image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (JPEG, PNG, WebP, ...).
        max_pixels: Upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        ValueError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ValueError("Frame is empty")

    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    bgr = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if bgr is None:
        raise ValueError("Could not decode frame image")

    height, width = bgr.shape[:2]
    if height * width > max_pixels:
        raise ValueError(f"Frame has {width}x{height} pixels, limit is {max_pixels}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def encode_data_uri(frame: NDArray[np.uint8], *, quality: int = 90) -> str:
    """Encode an RGB frame as a ``data:image/jpeg;base64,...`` URI."""
    bgr = cv2.cvtColor(frame, cv2.COLOR_RGB2BGR)
    ok, encoded = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise ValueError("Could not encode frame as JPEG")
    return "data:image/jpeg;base64," + base64.b64encode(encoded.tobytes()).decode("ascii")


def extract_region(frame: NDArray[np.uint8], box: BoundingBox) -> NDArray[np.uint8]:
    """Return the frame pixels under ``box``, clipped to the frame bounds.

    The result may have zero width or height when the box lies outside the
    frame.
    """
    frame_height, frame_width = frame.shape[:2]
    x0 = min(max(0, math.floor(box.origin_x)), frame_width)
    y0 = min(max(0, math.floor(box.origin_y)), frame_height)
    x1 = min(max(x0, math.floor(box.origin_x + box.width)), frame_width)
    y1 = min(max(y0, math.floor(box.origin_y + box.height)), frame_height)
    return frame[y0:y1, x0:x1]

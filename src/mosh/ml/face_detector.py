"""Face detection: detector protocol and the RetinaFace ONNX implementation.

The validation core only consumes the ``FaceDetector`` protocol, so any
backend that turns an RGB frame into a list of ``Detection`` objects can be
plugged in.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned face box in pixel coordinates of the source frame."""

    origin_x: float
    origin_y: float
    width: float
    height: float

    @property
    def center_x(self) -> float:
        return self.origin_x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.origin_y + self.height / 2


@dataclass(frozen=True)
class Detection:
    """A single face detection."""

    confidence: float
    bounding_box: BoundingBox | None = None


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, frame: NDArray[np.uint8]) -> list[Detection]:
        """Detect faces in a frame.

        Args:
            frame: HxWx3 RGB uint8 array.

        Returns:
            Detections sorted by confidence (descending).
        """
        ...

    def close(self) -> None:
        """Release any resources held by the detector."""
        ...


def best_detection(detections: list[Detection]) -> Detection | None:
    """Return the highest-confidence detection that carries a bounding box."""
    located = [d for d in detections if d.bounding_box is not None]
    if not located:
        return None
    return max(located, key=lambda d: d.confidence)


# ---------------------------------------------------------------------------
# RetinaFace
# ---------------------------------------------------------------------------

_MEAN_BGR = np.array([104.0, 117.0, 123.0], dtype=np.float32)
_MIN_SIZES: tuple[tuple[int, ...], ...] = ((16, 32), (64, 128), (256, 512))
_STEPS: tuple[int, ...] = (8, 16, 32)
_VARIANCES: tuple[float, float] = (0.1, 0.2)


@lru_cache(maxsize=8)
def prior_boxes(height: int, width: int) -> NDArray[np.float32]:
    """Generate RetinaFace anchors as normalized (cx, cy, w, h) rows."""
    anchors: list[tuple[float, float, float, float]] = []
    for step, min_sizes in zip(_STEPS, _MIN_SIZES, strict=True):
        rows = math.ceil(height / step)
        cols = math.ceil(width / step)
        for i in range(rows):
            for j in range(cols):
                for size in min_sizes:
                    anchors.append(
                        (
                            (j + 0.5) * step / width,
                            (i + 0.5) * step / height,
                            size / width,
                            size / height,
                        )
                    )
    return np.array(anchors, dtype=np.float32)


def decode_boxes(loc: NDArray[np.float32], priors: NDArray[np.float32]) -> NDArray[np.float32]:
    """Decode box regressions against priors into normalized corner boxes."""
    centers = priors[:, :2] + loc[:, :2] * _VARIANCES[0] * priors[:, 2:]
    sizes = priors[:, 2:] * np.exp(loc[:, 2:] * _VARIANCES[1])
    corners = np.concatenate((centers - sizes / 2, centers + sizes / 2), axis=1)
    return corners.astype(np.float32)


def non_max_suppression(boxes: NDArray[np.float32], scores: NDArray[np.float32], threshold: float) -> list[int]:
    """Greedy NMS over corner boxes; returns kept indices by descending score."""
    x1, y1, x2, y2 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    areas = np.maximum(x2 - x1, 0) * np.maximum(y2 - y1, 0)
    order = scores.argsort()[::-1]

    keep: list[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]
        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])
        inter = np.maximum(xx2 - xx1, 0) * np.maximum(yy2 - yy1, 0)
        union = areas[i] + areas[rest] - inter
        iou = np.divide(inter, union, out=np.zeros_like(inter), where=union > 0)
        order = rest[iou <= threshold]
    return keep


class RetinaFaceDetector:
    """RetinaFace detector running on an ONNX Runtime session.

    Expects an export with a single BGR NCHW input and ``(loc, conf, landms)``
    outputs where ``conf`` is already softmaxed.
    """

    def __init__(
        self,
        session: InferenceSession,
        *,
        model_name: str,
        input_size: int = 640,
        confidence_threshold: float = 0.5,
        nms_threshold: float = 0.4,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self._session: InferenceSession | None = session
        self._on_close = on_close
        self._model_name = model_name
        self._input_size = input_size
        self._confidence_threshold = confidence_threshold
        self._nms_threshold = nms_threshold
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, frame: NDArray[np.uint8]) -> list[Detection]:
        session = self._session
        if session is None:
            raise RuntimeError(f"Detector {self._model_name} has been closed")

        frame_height, frame_width = frame.shape[:2]
        blob = self._preprocess(frame)
        loc, conf, _landms = session.run(None, {self._input_name: blob})[:3]

        priors = prior_boxes(self._input_size, self._input_size)
        boxes = decode_boxes(loc[0], priors)
        scores = conf[0][:, 1]

        mask = scores >= self._confidence_threshold
        boxes, scores = boxes[mask], scores[mask]
        if scores.size == 0:
            return []

        detections: list[Detection] = []
        for i in non_max_suppression(boxes, scores, self._nms_threshold):
            x1, y1, x2, y2 = boxes[i].tolist()
            detections.append(
                Detection(
                    confidence=float(scores[i]),
                    bounding_box=BoundingBox(
                        origin_x=x1 * frame_width,
                        origin_y=y1 * frame_height,
                        width=(x2 - x1) * frame_width,
                        height=(y2 - y1) * frame_height,
                    ),
                )
            )
        return detections

    def close(self) -> None:
        """Drop the session; ``on_close`` runs on the first call only."""
        if self._session is None:
            return
        self._session = None
        if self._on_close is not None:
            self._on_close()

    def _preprocess(self, frame: NDArray[np.uint8]) -> NDArray[np.float32]:
        resized = cv2.resize(frame, (self._input_size, self._input_size), interpolation=cv2.INTER_LINEAR)
        bgr = cv2.cvtColor(resized, cv2.COLOR_RGB2BGR).astype(np.float32)
        bgr -= _MEAN_BGR
        return np.ascontiguousarray(bgr.transpose(2, 0, 1)[np.newaxis])

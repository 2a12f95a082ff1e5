"""Tests for the RetinaFace decoder and detector."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from mosh.ml.face_detector import (
    BoundingBox,
    Detection,
    RetinaFaceDetector,
    best_detection,
    decode_boxes,
    non_max_suppression,
    prior_boxes,
)

INPUT_SIZE = 32
# 4x4 cells * 2 sizes + 2x2 * 2 + 1x1 * 2
NUM_PRIORS = 42


def _mock_session(conf: np.ndarray, loc: np.ndarray | None = None) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="input0")]
    if loc is None:
        loc = np.zeros((1, NUM_PRIORS, 4), dtype=np.float32)
    session.run.return_value = [loc, conf, np.zeros((1, NUM_PRIORS, 10), dtype=np.float32)]
    return session


def _scores(**by_index: float) -> np.ndarray:
    conf = np.zeros((1, NUM_PRIORS, 2), dtype=np.float32)
    conf[0, :, 0] = 1.0
    for index, score in by_index.items():
        i = int(index.removeprefix("p"))
        conf[0, i] = (1.0 - score, score)
    return conf


def _detector(session: MagicMock, **kwargs: float) -> RetinaFaceDetector:
    return RetinaFaceDetector(session, model_name="retinaface_mobilenetv2", input_size=INPUT_SIZE, **kwargs)


class TestPriors:
    def test_prior_count(self) -> None:
        assert prior_boxes(INPUT_SIZE, INPUT_SIZE).shape == (NUM_PRIORS, 4)

    def test_first_prior(self) -> None:
        cx, cy, w, h = prior_boxes(INPUT_SIZE, INPUT_SIZE)[0].tolist()
        assert (cx, cy, w, h) == pytest.approx((0.125, 0.125, 0.5, 0.5))

    def test_zero_regression_decodes_to_prior(self) -> None:
        priors = prior_boxes(INPUT_SIZE, INPUT_SIZE)
        boxes = decode_boxes(np.zeros((NUM_PRIORS, 4), dtype=np.float32), priors)
        assert boxes[0].tolist() == pytest.approx([-0.125, -0.125, 0.375, 0.375])


class TestNonMaxSuppression:
    def test_overlapping_box_is_dropped(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [1, 1, 10, 10], [20, 20, 30, 30]], dtype=np.float32)
        scores = np.array([0.9, 0.8, 0.7], dtype=np.float32)
        assert non_max_suppression(boxes, scores, 0.4) == [0, 2]

    def test_keeps_order_by_score(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [20, 20, 30, 30]], dtype=np.float32)
        scores = np.array([0.5, 0.9], dtype=np.float32)
        assert non_max_suppression(boxes, scores, 0.4) == [1, 0]


class TestRetinaFaceDetector:
    def test_detection_scaled_to_frame(self) -> None:
        session = _mock_session(_scores(p0=0.9))
        frame = np.zeros((100, 200, 3), dtype=np.uint8)

        detections = _detector(session).detect(frame)

        assert len(detections) == 1
        assert detections[0].confidence == pytest.approx(0.9)
        box = detections[0].bounding_box
        assert box is not None
        assert (box.origin_x, box.origin_y, box.width, box.height) == pytest.approx((-25.0, -12.5, 100.0, 50.0))

    def test_input_blob_shape(self) -> None:
        session = _mock_session(_scores())
        _detector(session).detect(np.zeros((48, 64, 3), dtype=np.uint8))

        _, feeds = session.run.call_args.args
        blob = feeds["input0"]
        assert blob.shape == (1, 3, INPUT_SIZE, INPUT_SIZE)
        assert blob.dtype == np.float32

    def test_low_scores_are_filtered(self) -> None:
        session = _mock_session(_scores(p0=0.3))
        assert _detector(session, confidence_threshold=0.5).detect(np.zeros((32, 32, 3), dtype=np.uint8)) == []

    def test_sorted_by_confidence(self) -> None:
        # p40 is the large coarse anchor; its IoU with p0 stays under the NMS threshold.
        session = _mock_session(_scores(p0=0.6, p40=0.95))
        detections = _detector(session).detect(np.zeros((32, 32, 3), dtype=np.uint8))
        assert [round(d.confidence, 2) for d in detections] == [0.95, 0.6]

    def test_closed_detector_raises(self) -> None:
        detector = _detector(_mock_session(_scores()))
        detector.close()
        with pytest.raises(RuntimeError, match="closed"):
            detector.detect(np.zeros((32, 32, 3), dtype=np.uint8))


    def test_close_callback_runs_once(self) -> None:
        released = MagicMock()
        detector = RetinaFaceDetector(_mock_session(_scores()), model_name="retinaface_mobilenetv2", on_close=released)

        detector.close()
        detector.close()

        released.assert_called_once_with()


class TestBestDetection:
    def test_picks_highest_located(self) -> None:
        located = Detection(confidence=0.7, bounding_box=BoundingBox(0, 0, 10, 10))
        unlocated = Detection(confidence=0.99)
        weaker = Detection(confidence=0.5, bounding_box=BoundingBox(0, 0, 10, 10))
        assert best_detection([weaker, unlocated, located]) is located

    def test_none_when_nothing_located(self) -> None:
        assert best_detection([]) is None
        assert best_detection([Detection(confidence=0.9)]) is None

"""Tests for face region lighting analysis."""

from __future__ import annotations

import numpy as np
import pytest

from mosh.validation.lighting import analyze_lighting
from mosh.validation.state import LightingFeedback


def _gray(width: int, height: int, value: int, channels: int = 3) -> np.ndarray:
    return np.full((height, width, channels), value, dtype=np.uint8)


def _split(left_value: int, right_value: int, width: int = 40, height: int = 20) -> np.ndarray:
    region = _gray(width, height, right_value)
    region[:, : width // 2] = left_value
    return region


class TestExposure:
    def test_white_region_is_too_bright(self) -> None:
        result = analyze_lighting(_gray(40, 40, 255))
        assert result.valid is False
        assert result.feedback == LightingFeedback.TOO_BRIGHT

    def test_black_region_is_too_dark(self) -> None:
        result = analyze_lighting(_gray(40, 40, 0))
        assert result.valid is False
        assert result.feedback == LightingFeedback.TOO_DARK

    def test_mid_gray_is_perfect(self) -> None:
        result = analyze_lighting(_gray(40, 40, 128))
        assert result.valid is True
        assert result.feedback == LightingFeedback.PERFECT

    def test_brightness_weights_channels(self) -> None:
        green = np.zeros((10, 10, 3), dtype=np.uint8)
        green[..., 1] = 255
        blue = np.zeros((10, 10, 3), dtype=np.uint8)
        blue[..., 2] = 255

        assert analyze_lighting(green).feedback == LightingFeedback.PERFECT
        assert analyze_lighting(blue).feedback == LightingFeedback.TOO_DARK

    def test_alpha_channel_is_ignored(self) -> None:
        region = _gray(20, 20, 128, channels=4)
        region[..., 3] = 0
        assert analyze_lighting(region).feedback == LightingFeedback.PERFECT

    def test_exposure_wins_over_unevenness(self) -> None:
        assert analyze_lighting(_split(255, 190)).feedback == LightingFeedback.TOO_BRIGHT

    def test_halves_weigh_equally_on_odd_width(self) -> None:
        # One dark column against two lit ones: 75 by halves, 100 pixel-weighted.
        region = _gray(3, 10, 150)
        region[:, 0] = 0
        assert analyze_lighting(region).feedback == LightingFeedback.TOO_DARK


class TestEvenness:
    def test_bright_left_asks_for_light_on_right(self) -> None:
        result = analyze_lighting(_split(200, 100))
        assert result.valid is False
        assert result.feedback == LightingFeedback.UNEVEN_RIGHT

    def test_bright_right_asks_for_light_on_left(self) -> None:
        result = analyze_lighting(_split(100, 200))
        assert result.valid is False
        assert result.feedback == LightingFeedback.UNEVEN_LEFT

    def test_small_difference_is_perfect(self) -> None:
        assert analyze_lighting(_split(150, 110)).feedback == LightingFeedback.PERFECT

    def test_single_column_has_empty_left_half(self) -> None:
        assert analyze_lighting(_gray(1, 10, 200)).feedback == LightingFeedback.UNEVEN_LEFT


class TestDegenerateRegions:
    @pytest.mark.parametrize("shape", [(10, 0, 3), (0, 10, 3), (0, 0, 4)])
    def test_empty_region_passes(self, shape: tuple[int, int, int]) -> None:
        result = analyze_lighting(np.zeros(shape, dtype=np.uint8))
        assert result.valid is True
        assert result.feedback == LightingFeedback.PERFECT


class TestGreyscaleRegions:
    def test_dark_greyscale_region(self) -> None:
        region = np.full((20, 20), 30, dtype=np.uint8)
        assert analyze_lighting(region).feedback == LightingFeedback.TOO_DARK

    def test_uneven_greyscale_region(self) -> None:
        region = np.full((20, 40), 100, dtype=np.uint8)
        region[:, :20] = 200
        assert analyze_lighting(region).feedback == LightingFeedback.UNEVEN_RIGHT

    def test_single_channel_region(self) -> None:
        region = np.full((20, 20, 1), 128, dtype=np.uint8)
        assert analyze_lighting(region).feedback == LightingFeedback.PERFECT

    def test_empty_greyscale_region_passes(self) -> None:
        assert analyze_lighting(np.zeros((0, 10), dtype=np.uint8)).valid is True

    @pytest.mark.parametrize("shape", [(10,), (10, 10, 2), (2, 10, 10, 3)])
    def test_unsupported_shapes_raise(self, shape: tuple[int, ...]) -> None:
        with pytest.raises(ValueError, match="Unsupported region shape"):
            analyze_lighting(np.zeros(shape, dtype=np.uint8))

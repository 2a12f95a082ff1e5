"""Lighting analysis over the pixels of a detected face region."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from mosh.validation.state import LightingFeedback, LightingResult

if TYPE_CHECKING:
    from numpy.typing import NDArray

# Brightness on a 0-255 scale
BRIGHTNESS_MIN = 80.0
BRIGHTNESS_MAX = 200.0
MAX_SIDE_DIFFERENCE = 50.0

_LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def _half_average(brightness: NDArray[np.float64]) -> float:
    if brightness.size == 0:
        return 0.0
    return float(brightness.mean())


def _brightness(region: NDArray[np.uint8]) -> NDArray[np.float64]:
    if region.ndim == 2:
        return region.astype(np.float64)
    if region.ndim == 3 and region.shape[2] == 1:
        return region[..., 0].astype(np.float64)
    if region.ndim == 3 and region.shape[2] in (3, 4):
        return region[..., :3].astype(np.float64) @ _LUMA_WEIGHTS
    raise ValueError(f"Unsupported region shape {region.shape}")


def analyze_lighting(region: NDArray[np.uint8]) -> LightingResult:
    """Judge exposure and left/right evenness of a face region.

    Args:
        region: HxWx3 (RGB) or HxWx4 (RGBA) uint8 pixels, already clipped to
            the frame. Alpha is ignored. Greyscale HxW or HxWx1 pixels are
            used as brightness directly.

    Raises:
        ValueError: For any other array shape.

    An empty region carries no evidence of bad lighting and passes.
    """
    brightness = _brightness(region)
    if brightness.shape[0] == 0 or brightness.shape[1] == 0:
        return LightingResult(valid=True, feedback=LightingFeedback.PERFECT)

    half = brightness.shape[1] // 2
    left_avg = _half_average(brightness[:, :half])
    right_avg = _half_average(brightness[:, half:])
    # Halves weigh equally regardless of an odd column.
    overall = (left_avg + right_avg) / 2

    if overall < BRIGHTNESS_MIN:
        return LightingResult(valid=False, feedback=LightingFeedback.TOO_DARK)
    if overall > BRIGHTNESS_MAX:
        return LightingResult(valid=False, feedback=LightingFeedback.TOO_BRIGHT)

    if abs(left_avg - right_avg) > MAX_SIDE_DIFFERENCE:
        if left_avg > right_avg:
            return LightingResult(valid=False, feedback=LightingFeedback.UNEVEN_RIGHT)
        return LightingResult(valid=False, feedback=LightingFeedback.UNEVEN_LEFT)

    return LightingResult(valid=True, feedback=LightingFeedback.PERFECT)

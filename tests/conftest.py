from typing import Sequence, Tuple

import cv2
import numpy as np
import pytest


def render_polygon(
    width: int,
    height: int,
    corners: Sequence[Tuple[float, float]],
    background: int = 255,
    foreground: int = 0,
    supersample: int = 8,
) -> np.ndarray:
    """Anti-aliased filled polygon. Corners are in continuous pixel coordinates."""
    s = supersample
    big = np.full((height * s, width * s), background, dtype=np.uint8)
    pts = (np.asarray(corners, dtype=np.float64) + 0.5) * s - 0.5
    cv2.fillPoly(big, [np.round(pts * 16).astype(np.int32)], int(foreground), lineType=cv2.LINE_8, shift=4)
    return cv2.resize(big, (width, height), interpolation=cv2.INTER_AREA)


def square_loop_contour() -> np.ndarray:
    """Pixel loop around a 9 x 4 rectangle, corners at 0, 9, 13 and 23."""
    pts = [(i, 0) for i in range(10)]
    pts += [(9, i) for i in range(1, 5)]
    pts += [(9 - i, 4) for i in range(10)]
    pts += [(0, 5 - i) for i in range(2, 5)]
    return np.array(pts)


def two_row_contour() -> np.ndarray:
    """Flat loop: (0..9, 0) then back along (9..0, 1)."""
    pts = [(i, 0) for i in range(10)] + [(9 - i, 1) for i in range(10)]
    return np.array(pts)


def to_binary(gray: np.ndarray, threshold: int = 128) -> np.ndarray:
    return (gray < threshold).astype(np.uint8)


@pytest.fixture
def quad_corners():
    return [(50.0, 50.0), (130.0, 60.0), (140.0, 150.0), (40.0, 140.0)]


@pytest.fixture
def quad_image(quad_corners):
    return render_polygon(640, 480, quad_corners)

"""
Radial lens distortion for pixel coordinates.

The model is a pinhole camera with two radial terms, `x_d = x_u * (1 + k1*r^2 +
k2*r^4)` on normalised coordinates, which is OpenCV's model with the remaining
coefficients set to zero. Undistortion is iterative and delegated to
`cv2.undistortPointsIter`.

`transform_pair` returns the two callables the polygon detector expects. They
work in an adjusted undistorted camera, scaled and shifted so that the whole
undistorted image border fits inside the original image bounds.
"""

from __future__ import annotations

from functools import partial
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

PixelTransform = Callable[[np.ndarray], np.ndarray]

_UNDISTORT_CRITERIA = (cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS, 100, 1e-12)


def image_border(width: int, height: int) -> np.ndarray:
    """Every pixel coordinate on the outer border of a width x height image."""
    xs = np.arange(width, dtype=np.float64)
    ys = np.arange(height, dtype=np.float64)
    top = np.stack([xs, np.zeros_like(xs)], axis=1)
    bottom = np.stack([xs, np.full_like(xs, height - 1)], axis=1)
    left = np.stack([np.zeros_like(ys), ys], axis=1)
    right = np.stack([np.full_like(ys, width - 1), ys], axis=1)
    return np.concatenate([top, bottom, left, right], axis=0)


class RadialDistortion:
    def __init__(
        self,
        fx: float,
        fy: float,
        cx: float,
        cy: float,
        k1: float = 0.0,
        k2: float = 0.0,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ):
        if fx <= 0 or fy <= 0:
            raise ValueError("Focal lengths must be positive")
        self.fx = float(fx)
        self.fy = float(fy)
        self.cx = float(cx)
        self.cy = float(cy)
        self.k1 = float(k1)
        self.k2 = float(k2)
        self.width = width
        self.height = height

    @property
    def camera_matrix(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def dist_coeffs(self) -> np.ndarray:
        return np.array([self.k1, self.k2, 0.0, 0.0], dtype=np.float64)

    def distort_pixels(self, pixels: np.ndarray, camera: Optional[np.ndarray] = None) -> np.ndarray:
        """Undistorted pixels expressed in `camera` to distorted image pixels."""
        camera = self.camera_matrix if camera is None else camera
        pts = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)

        nx = (pts[:, 0] - camera[0, 2]) / camera[0, 0]
        ny = (pts[:, 1] - camera[1, 2]) / camera[1, 1]
        r2 = nx * nx + ny * ny
        factor = 1.0 + self.k1 * r2 + self.k2 * r2 * r2

        out = np.empty_like(pts)
        out[:, 0] = self.fx * nx * factor + self.cx
        out[:, 1] = self.fy * ny * factor + self.cy
        return out

    def undistort_pixels(self, pixels: np.ndarray, camera: Optional[np.ndarray] = None) -> np.ndarray:
        """Distorted image pixels to undistorted pixels expressed in `camera`."""
        camera = self.camera_matrix if camera is None else camera
        pts = np.asarray(pixels, dtype=np.float64).reshape(-1, 1, 2)
        if pts.shape[0] == 0:
            return np.zeros((0, 2), dtype=np.float64)

        out = cv2.undistortPointsIter(
            pts,
            self.camera_matrix,
            self.dist_coeffs,
            np.eye(3, dtype=np.float64),
            np.asarray(camera, dtype=np.float64),
            _UNDISTORT_CRITERIA,
        )
        return out.reshape(-1, 2).astype(np.float64)

    def adjusted_camera(self, width: Optional[int] = None, height: Optional[int] = None) -> np.ndarray:
        """Camera matrix whose undistorted image fits inside [0, width-1] x [0, height-1]."""
        width = self.width if width is None else width
        height = self.height if height is None else height
        if not width or not height:
            raise ValueError("Image width and height are required to adjust the camera")

        border = self.undistort_pixels(image_border(width, height))
        x0, y0 = border.min(axis=0)
        x1, y1 = border.max(axis=0)
        if x1 <= x0 or y1 <= y0:
            raise ValueError("Undistorted image border is degenerate")

        scale = min((width - 1) / (x1 - x0), (height - 1) / (y1 - y0))
        offset_x = ((width - 1) - scale * (x1 - x0)) / 2.0 - scale * x0
        offset_y = ((height - 1) - scale * (y1 - y0)) / 2.0 - scale * y0

        return np.array(
            [
                [scale * self.fx, 0.0, scale * self.cx + offset_x],
                [0.0, scale * self.fy, scale * self.cy + offset_y],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    def transform_pair(
        self, width: Optional[int] = None, height: Optional[int] = None
    ) -> Tuple[PixelTransform, PixelTransform]:
        """(to_undistorted, to_distorted) in the adjusted undistorted camera."""
        camera = self.adjusted_camera(width, height)
        return partial(self.undistort_pixels, camera=camera), partial(self.distort_pixels, camera=camera)

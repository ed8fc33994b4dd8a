"""Bilinear gray-scale sampling with an extend-edge border."""

from __future__ import annotations

from typing import Optional

import cv2
import numpy as np


class ImageSampler:
    """Reads interpolated intensities at sub-pixel locations.

    Coordinates outside the image are clamped to the nearest border pixel, so
    reads never fail near the image edge.
    """

    def __init__(self, image: Optional[np.ndarray] = None):
        self._image: Optional[np.ndarray] = None
        if image is not None:
            self.set_image(image)

    def set_image(self, image: np.ndarray) -> None:
        img = np.asarray(image)
        if img.ndim == 3:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
        if img.ndim != 2 or img.size == 0:
            raise ValueError(f"Expected a non-empty gray image, got shape {img.shape}")
        self._image = img.astype(np.float32)

    @property
    def width(self) -> int:
        return 0 if self._image is None else int(self._image.shape[1])

    @property
    def height(self) -> int:
        return 0 if self._image is None else int(self._image.shape[0])

    def interpolate(self, points: np.ndarray) -> np.ndarray:
        """Intensity at each `(x, y)` row of `points`, returned as float64."""
        if self._image is None:
            raise ValueError("No image has been set on the sampler")

        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        h, w = self._image.shape
        x = np.clip(pts[:, 0], 0.0, w - 1)
        y = np.clip(pts[:, 1], 0.0, h - 1)

        x0 = np.floor(x).astype(np.int64)
        y0 = np.floor(y).astype(np.int64)
        x1 = np.minimum(x0 + 1, w - 1)
        y1 = np.minimum(y0 + 1, h - 1)
        ax = x - x0
        ay = y - y0

        img = self._image
        top = (1.0 - ax) * img[y0, x0] + ax * img[y0, x1]
        bottom = (1.0 - ax) * img[y1, x0] + ax * img[y1, x1]
        return (1.0 - ay) * top + ay * bottom

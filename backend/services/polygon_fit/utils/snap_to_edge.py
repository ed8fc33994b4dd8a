"""Fit a line to the intensity edge lying next to an approximate segment."""

from __future__ import annotations

from typing import Optional

import numpy as np

from services.polygon_fit.utils.distortion import PixelTransform
from services.polygon_fit.utils.image_sampler import ImageSampler
from services.polygon_fit.utils.line_math import LineParametric, fit_line_weighted


class SnapToEdge:
    """
    Samples the image across a segment and fits a line to the strongest edge.

    `max_samples` points are spread along the segment. At each of them the
    intensity is read at `radius` pixel steps on both sides along the segment
    normal. The absolute difference between neighbouring reads is the edge
    response, located half way between the two reads. Each sample row
    contributes its response weighted edge location, and the rows are joined
    with a weighted total least squares line fit.
    """

    def __init__(self, max_samples: int = 10, radius: int = 2, sampler: Optional[ImageSampler] = None):
        if max_samples < 2:
            raise ValueError("max_samples must be at least 2")
        if radius < 1:
            raise ValueError("radius must be at least 1")
        self.max_samples = int(max_samples)
        self.radius = int(radius)
        self.sampler = sampler or ImageSampler()
        self.to_distorted: Optional[PixelTransform] = None

    def set_image(self, gray: np.ndarray) -> None:
        self.sampler.set_image(gray)

    def set_transform(self, to_distorted: Optional[PixelTransform]) -> None:
        """Points are mapped through `to_distorted` before the image is read."""
        self.to_distorted = to_distorted

    def read(self, points: np.ndarray) -> np.ndarray:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
        if self.to_distorted is not None:
            pts = np.asarray(self.to_distorted(pts), dtype=np.float64).reshape(-1, 2)
        return self.sampler.interpolate(pts)

    def refine(self, a: np.ndarray, b: np.ndarray) -> Optional[LineParametric]:
        a = np.asarray(a, dtype=np.float64)
        b = np.asarray(b, dtype=np.float64)
        delta = b - a
        length = float(np.hypot(delta[0], delta[1]))
        if length == 0.0:
            return None

        tangent = delta / length
        normal = np.array([-tangent[1], tangent[0]])

        fractions = np.linspace(0.0, 1.0, self.max_samples)
        centers = a + fractions[:, None] * delta

        steps = np.arange(-self.radius, self.radius + 1, dtype=np.float64)
        grid = centers[:, None, :] + steps[None, :, None] * normal
        values = self.read(grid.reshape(-1, 2)).reshape(len(centers), len(steps))

        response = np.abs(np.diff(values, axis=1))
        row_weight = response.sum(axis=1)
        usable = row_weight > 0.0
        if int(np.count_nonzero(usable)) < 2:
            return None

        midpoints = steps[:-1] + 0.5
        offsets = (response[usable] * midpoints).sum(axis=1) / row_weight[usable]
        locations = centers[usable] + offsets[:, None] * normal
        return fit_line_weighted(locations, row_weight[usable])

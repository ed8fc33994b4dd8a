"""Edge contrast check for candidate polygons."""

from __future__ import annotations

from typing import Optional

import numpy as np

from services.polygon_fit.utils.distortion import PixelTransform
from services.polygon_fit.utils.image_sampler import ImageSampler


class PolygonEdgeScore:
    """
    Average intensity step across the sides of a polygon.

    Points are spread along every side, skipping `corner_offset` pixels at each
    end. At each point the image is read `tangent_distance` pixels to either
    side of the edge and the two reads are differenced. The score is the
    absolute value of the mean difference, so a polygon whose sides do not sit
    on a consistent dark/light boundary scores low.
    """

    def __init__(
        self,
        corner_offset: float = 2.0,
        tangent_distance: float = 1.0,
        num_samples: int = 15,
        threshold_score: float = 20.0,
    ):
        self.corner_offset = corner_offset
        self.tangent_distance = tangent_distance
        self.num_samples = num_samples
        self.threshold_score = threshold_score
        self.sampler = ImageSampler()
        self.to_distorted: Optional[PixelTransform] = None
        self.average_edge_intensity = 0.0

    def set_image(self, gray: np.ndarray) -> None:
        self.sampler.set_image(gray)

    def set_transform(self, to_distorted: Optional[PixelTransform]) -> None:
        self.to_distorted = to_distorted

    def validate(self, polygon: np.ndarray) -> bool:
        self.average_edge_intensity = self.compute_average(polygon)
        return self.average_edge_intensity >= self.threshold_score

    def compute_average(self, polygon: np.ndarray) -> float:
        pts = np.asarray(polygon, dtype=np.float64).reshape(-1, 2)
        total = 0.0
        count = 0
        for i in range(len(pts)):
            a = pts[i]
            b = pts[(i + 1) % len(pts)]
            delta = b - a
            length = float(np.linalg.norm(delta))
            if length <= 2 * self.corner_offset:
                continue

            tangent = delta / length
            normal = np.array([-tangent[1], tangent[0]]) * self.tangent_distance
            along = np.linspace(self.corner_offset, length - self.corner_offset, self.num_samples)
            samples = a + along[:, None] * tangent

            total += float((self._read(samples + normal) - self._read(samples - normal)).sum())
            count += len(samples)

        if count == 0:
            return 0.0
        return abs(total / count)

    def _read(self, points: np.ndarray) -> np.ndarray:
        if self.to_distorted is not None:
            points = self.to_distorted(points)
        return self.sampler.interpolate(points)

"""Polygon refinement that snaps whole sides to the image instead of corners."""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from services.polygon_fit.utils.distortion import PixelTransform
from services.polygon_fit.utils.line_math import LineParametric, intersection
from services.polygon_fit.utils.snap_to_edge import SnapToEdge

logger = logging.getLogger(__name__)


class RefinePolygonLineToImage:
    """
    Fits a line to the edge under every side, then rebuilds the corners.

    Vertex i is the intersection of side i-1 and side i. The whole polygon is
    refitted until no vertex moves more than `converge_tol_pixels`. The result
    is rejected when any vertex ends up more than `max_corner_change` pixels
    from where it started.
    """

    def __init__(
        self,
        corner_offset: float = 2.0,
        max_line_samples: int = 10,
        sample_radius: int = 2,
        max_iterations: int = 10,
        converge_tol_pixels: float = 1e-6,
        max_corner_change: float = 5.0,
    ):
        self.corner_offset = corner_offset
        self.max_iterations = max_iterations
        self.converge_tol_pixels = converge_tol_pixels
        self.max_corner_change = max_corner_change
        self.snap = SnapToEdge(max_line_samples, sample_radius)

    def set_image(self, gray: np.ndarray) -> None:
        self.snap.set_image(gray)

    def set_transform(self, to_distorted: Optional[PixelTransform]) -> None:
        self.snap.set_transform(to_distorted)

    def refine(self, polygon: np.ndarray) -> Optional[np.ndarray]:
        """Refined copy of `polygon`, or None when a side could not be fitted."""
        start = np.asarray(polygon, dtype=np.float64).reshape(-1, 2)
        count = len(start)
        if count < 3:
            return None

        current = start.copy()
        for _ in range(self.max_iterations):
            lines: List[LineParametric] = []
            for i in range(count):
                line = self._fit_side(current[i], current[(i + 1) % count])
                if line is None:
                    return None
                lines.append(line)

            updated = np.empty_like(current)
            for i in range(count):
                vertex = intersection(lines[i - 1], lines[i])
                if vertex is None:
                    return None
                updated[i] = vertex

            change = float(np.max(np.linalg.norm(updated - current, axis=1)))
            current = updated
            if change < self.converge_tol_pixels:
                break

        drift = float(np.max(np.linalg.norm(current - start, axis=1)))
        if not np.isfinite(drift) or drift > self.max_corner_change:
            logger.debug("Line refinement moved a corner %.2f pixels", drift)
            return None
        return current

    def _fit_side(self, a: np.ndarray, b: np.ndarray) -> Optional[LineParametric]:
        delta = b - a
        length = float(np.linalg.norm(delta))
        if length <= 2 * self.corner_offset:
            return None
        step = delta / length * self.corner_offset
        return self.snap.refine(a + step, b - step)

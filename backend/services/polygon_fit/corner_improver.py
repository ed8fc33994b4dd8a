"""Slide polygon corners along the contour to where the adjacent sides fit best."""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from services.polygon_fit.split_merge import as_contour_array
from services.polygon_fit.utils.line_math import line_from_points, squared_point_line_distances
from services.polygon_fit.utils.polygon_math import add_offset, circular_distance

logger = logging.getLogger(__name__)


class ContourCornerImprover:
    """
    Local search that moves each corner a few contour pixels back or forth.

    The cost of a corner is the summed Euclidean distance of the contour points
    to the two sides meeting at it. A corner moves only when a candidate index
    strictly lowers that cost, and never onto or past a neighbouring corner.
    """

    def __init__(self, loop: bool = True, max_iterations: int = 20, search_radius: Optional[int] = None):
        self.loop = loop
        self.max_iterations = max_iterations
        self.search_radius = search_radius

    def fit(self, contour, splits: List[int]) -> bool:
        """Improve `splits` in place. Returns False when no stable answer was reached."""
        pts = as_contour_array(contour)
        size = len(pts)

        if len(splits) < (3 if self.loop else 2):
            return False

        radius = self.search_radius if self.search_radius is not None else min(6, max(size // 12, 3))
        if size < 2 * radius + 1:
            return False

        corners = range(len(splits)) if self.loop else range(1, len(splits) - 1)
        for iteration in range(self.max_iterations):
            moved = False
            for i in corners:
                if self._improve_corner(pts, splits, i, radius):
                    moved = True
            if not moved:
                logger.debug("Corners stable after %d passes", iteration + 1)
                return True

        return False

    def _improve_corner(self, pts: np.ndarray, splits: List[int], i: int, radius: int) -> bool:
        size = len(pts)
        count = len(splits)
        previous = splits[(i - 1) % count]
        current = splits[i]
        following = splits[(i + 1) % count]

        back = circular_distance(previous, current, size) - 1
        forward = circular_distance(current, following, size) - 1

        best = current
        best_cost = self._side_cost(pts, previous, current) + self._side_cost(pts, current, following)
        for offset in range(-min(radius, back), min(radius, forward) + 1):
            if offset == 0:
                continue
            candidate = add_offset(current, offset, size)
            cost = self._side_cost(pts, previous, candidate) + self._side_cost(pts, candidate, following)
            if cost < best_cost - 1e-9:
                best_cost = cost
                best = candidate

        if best == current:
            return False
        splits[i] = best
        return True

    @staticmethod
    def _side_cost(pts: np.ndarray, index0: int, index1: int) -> float:
        size = len(pts)
        length = circular_distance(index0, index1, size)
        if length < 2:
            return 0.0

        interior = (index0 + np.arange(1, length)) % size
        line = line_from_points(pts[index0], pts[index1])
        return float(np.sqrt(squared_point_line_distances(line, pts[interior])).sum())

"""Sub-pixel corner refinement against the gray image."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np

from services.polygon_fit.split_merge import as_contour_array
from services.polygon_fit.utils.distortion import PixelTransform
from services.polygon_fit.utils.line_math import LineParametric, closest_point, intersection
from services.polygon_fit.utils.polygon_math import add_offset, circular_distance
from services.polygon_fit.utils.snap_to_edge import SnapToEdge

logger = logging.getLogger(__name__)


class RefineCornerLinesToImage:
    """
    Refines a single corner from the two sides that meet at it.

    Each side runs from the corner to a bound point further along the
    contour. Lines are snapped to the image edge next to each side, the corner
    moves to their intersection, and the bound points are projected onto the
    new lines. This repeats until the corner stops moving.
    """

    def __init__(
        self,
        corner_offset: float = 2.0,
        max_line_samples: int = 10,
        sample_radius: int = 2,
        max_iterations: int = 10,
        converge_tol_pixels: float = 1e-6,
    ):
        self.corner_offset = corner_offset
        self.max_iterations = max_iterations
        self.converge_tol_pixels = converge_tol_pixels
        self.snap = SnapToEdge(max_line_samples, sample_radius)
        self.refined_corner = np.zeros(2, dtype=np.float64)

    def set_image(self, gray: np.ndarray) -> None:
        self.snap.set_image(gray)

    def set_transform(self, to_distorted: Optional[PixelTransform]) -> None:
        self.snap.set_transform(to_distorted)

    def refine(self, corner, left, right) -> bool:
        """Refine `corner`. On success the answer is stored in `refined_corner`."""
        corner = np.asarray(corner, dtype=np.float64)
        left = np.asarray(left, dtype=np.float64)
        right = np.asarray(right, dtype=np.float64)

        max_change = min(np.linalg.norm(left - corner), np.linalg.norm(right - corner))
        if max_change <= 2 * self.corner_offset:
            return False

        current = corner.copy()
        for _ in range(self.max_iterations):
            line_left = self._fit_side(current, left)
            line_right = self._fit_side(current, right)
            if line_left is None or line_right is None:
                return False

            found = intersection(line_left, line_right)
            if found is None:
                return False

            left = closest_point(line_left, left)
            right = closest_point(line_right, right)

            movement = float(np.linalg.norm(found - current))
            current = found
            if movement < self.converge_tol_pixels:
                break

        if not np.all(np.isfinite(current)) or np.linalg.norm(current - corner) > max_change:
            return False

        self.refined_corner = current
        return True

    def _fit_side(self, corner: np.ndarray, end: np.ndarray) -> Optional[LineParametric]:
        delta = end - corner
        length = float(np.linalg.norm(delta))
        if length <= 2 * self.corner_offset:
            return None

        # stay clear of the other sides meeting at either end
        step = delta / length * self.corner_offset
        return self.snap.refine(corner + step, end - step)


class RefinePolygonCornersToImage:
    """Runs `RefineCornerLinesToImage` on every corner of a fitted polygon."""

    def __init__(
        self,
        end_point_distance: int = 12,
        corner_offset: float = 2.0,
        max_line_samples: int = 10,
        sample_radius: int = 2,
        max_iterations: int = 10,
        converge_tol_pixels: float = 1e-6,
    ):
        self.end_point_distance = end_point_distance
        self.refine_corner = RefineCornerLinesToImage(
            corner_offset=corner_offset,
            max_line_samples=max_line_samples,
            sample_radius=sample_radius,
            max_iterations=max_iterations,
            converge_tol_pixels=converge_tol_pixels,
        )

    def set_image(self, gray: np.ndarray) -> None:
        self.refine_corner.set_image(gray)

    def set_transform(self, to_distorted: Optional[PixelTransform]) -> None:
        self.refine_corner.set_transform(to_distorted)

    def refine(
        self, contour, splits: List[int], refined: Optional[np.ndarray] = None
    ) -> Tuple[np.ndarray, int]:
        """
        Refine all corners. Returns the polygon and how many corners were refined.

        Corners that fail keep their contour coordinate. When `refined` is given
        it is filled in place and must have one row per split.
        """
        pts = as_contour_array(contour)
        if refined is None:
            refined = np.zeros((len(splits), 2), dtype=np.float64)
        elif len(refined) != len(splits):
            raise ValueError(f"Polygon has {len(refined)} vertices but there are {len(splits)} splits")

        good = 0
        for i in range(len(splits)):
            left = self.pick_end_index(pts, splits, i, 1)
            right = self.pick_end_index(pts, splits, i, -1)
            corner = pts[splits[i]]

            if self.refine_corner.refine(corner, pts[left], pts[right]):
                refined[i] = self.refine_corner.refined_corner
                good += 1
            else:
                refined[i] = corner

        logger.debug("Refined %d of %d corners", good, len(splits))
        return refined, good

    def pick_end_index(self, contour: np.ndarray, splits: List[int], which: int, direction: int) -> int:
        """
        Contour index `end_point_distance` pixels away from corner `which`.

        Walks forward for direction 1 and backward for -1, stopping at the
        neighbouring corner when it is closer.
        """
        size = len(contour)
        count = len(splits)
        corner = splits[which]
        if direction > 0:
            neighbour = splits[(which + 1) % count]
            available = circular_distance(corner, neighbour, size)
        else:
            neighbour = splits[(which - 1) % count]
            available = circular_distance(neighbour, corner, size)

        return add_offset(corner, direction * min(self.end_point_distance, available), size)

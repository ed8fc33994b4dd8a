"""
Split-and-merge polyline fitting on pixel contours.

A contour is approximated by a list of indices into it (the corners). Segments
between consecutive corners are split at the point farthest from the
segment's line while that distance exceeds a threshold, and corners whose two
neighbouring segments can be replaced by a single one are merged away.

The split threshold for a segment from `a` to `b` is

    max(minimum_split_pixels ** 2, |a - b| ** 2 * split_fraction ** 2)

and all comparisons are made on squared distances.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Sequence

import cv2
import numpy as np

from services.polygon_fit.utils.line_math import (
    distance_sq,
    line_from_points,
    squared_point_line_distances,
)
from services.polygon_fit.utils.polygon_math import circular_distance

NOT_FOUND = -1


def as_contour_array(contour) -> np.ndarray:
    pts = np.asarray(contour)
    if pts.size == 0:
        return np.zeros((0, 2), dtype=np.int64)
    return pts.reshape(-1, 2).astype(np.int64)


class SplitMergeLineFit(ABC):
    def __init__(self, split_fraction: float = 0.05, minimum_split_pixels: float = 1.0, max_iterations: int = 20):
        self.set_split_fraction(split_fraction)
        self.set_minimum_split_pixels(minimum_split_pixels)
        self.set_max_iterations(max_iterations)

        self.contour = np.zeros((0, 2), dtype=np.int64)
        self.N = 0
        self._splits: List[int] = []
        self._changed: List[bool] = []

    def set_split_fraction(self, split_fraction: float) -> None:
        if split_fraction < 0:
            raise ValueError("split_fraction must be non-negative")
        self.split_fraction = float(split_fraction)
        self.tolerance_fraction_sq = self.split_fraction * self.split_fraction

    def set_minimum_split_pixels(self, minimum_split_pixels: float) -> None:
        if minimum_split_pixels < 0:
            raise ValueError("minimum_split_pixels must be non-negative")
        self.minimum_split_pixels = float(minimum_split_pixels)
        self.minimum_split_pixels_sq = self.minimum_split_pixels * self.minimum_split_pixels

    def set_max_iterations(self, max_iterations: int) -> None:
        if max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")
        self.max_iterations = int(max_iterations)

    @property
    def splits(self) -> List[int]:
        """Corner indices found by the last call to `process`."""
        return list(self._splits)

    @abstractmethod
    def process(self, contour) -> None:
        """Approximate `contour` with a polyline. Read the result from `splits`."""

    def _load(self, contour) -> None:
        self.contour = as_contour_array(contour)
        self.N = len(self.contour)
        self._splits = []
        self._changed = []

    def circular_distance(self, index0: int, index1: int) -> int:
        return circular_distance(index0, index1, self.N)

    def split_threshold_sq(self, a, b) -> float:
        return max(self.minimum_split_pixels_sq, distance_sq(a, b) * self.tolerance_fraction_sq)

    def select_split_offset(self, index_start: int, length: int) -> int:
        """
        Offset from `index_start` of the point to split the segment at.

        The segment runs from `index_start` to `index_start + length` (modulo
        the contour size). The farthest interior point from its line is chosen
        when its squared distance is strictly greater than the split
        threshold, the first in traversal order winning ties. Returns
        NOT_FOUND otherwise.
        """
        if length < 2:
            return NOT_FOUND

        start = self.contour[index_start]
        end = self.contour[(index_start + length) % self.N]
        line = line_from_points(start, end)

        interior = (index_start + np.arange(1, length)) % self.N
        distances = squared_point_line_distances(line, self.contour[interior])

        best = int(np.argmax(distances))
        if distances[best] > self.split_threshold_sq(start, end):
            return best + 1
        return NOT_FOUND

    def split_pixels(self, index_start: int, length: int) -> None:
        """
        Split the segment starting at `index_start` until every piece fits.

        New corners are appended to the split list in traversal order, so the
        caller appends `index_start` before and the segment end after.
        """
        # (start, length) pieces still to examine, or (index, None) to emit a corner
        pending = [(index_start, length)]
        while pending:
            start, size = pending.pop()
            if size is None:
                self._splits.append(start)
                continue

            offset = self.select_split_offset(start, size)
            if offset == NOT_FOUND:
                continue

            index_split = (start + offset) % self.N
            pending.append((index_split, size - offset))
            pending.append((index_split, None))
            pending.append((start, offset))


class SplitMergeLineFitLoop(SplitMergeLineFit):
    """Split-and-merge for closed contours, where the last point connects to the first."""

    def process(self, contour) -> None:
        self._load(contour)
        if self.N <= 1:
            return

        index0 = self.select_farthest(self.contour)
        index1 = self._farthest_partner(index0)

        if self.max_iterations == 0:
            self._splits = [index0, index1]
            self._changed = [False, False]
            return

        self._splits.append(index0)
        self.split_pixels(index0, self.circular_distance(index0, index1))
        self._splits.append(index1)
        self.split_pixels(index1, self.circular_distance(index1, index0))
        self._changed = [False] * len(self._splits)

        for _ in range(self.max_iterations):
            merged = self.merge_segments()
            split = self.split_segments()
            if not merged and not split:
                break

    def select_farthest(self, contour) -> int:
        """
        Lowest contour index that belongs to a pair of mutually farthest points.

        The farthest point from any point is a vertex of the convex hull, so
        distances are only measured against the hull.
        """
        pts = as_contour_array(contour)
        if len(pts) < 4:
            hull = pts
        else:
            hull_index = cv2.convexHull(pts.astype(np.int32).reshape(-1, 1, 2), returnPoints=False)
            hull = pts[hull_index.reshape(-1)]

        diff = pts[:, None, :] - hull[None, :, :]
        farthest = (diff * diff).sum(axis=2).max(axis=1)
        return int(np.argmax(farthest == farthest.max()))

    def _farthest_partner(self, index0: int) -> int:
        order = (index0 + np.arange(1, self.N)) % self.N
        diff = self.contour[order] - self.contour[index0]
        dist = (diff * diff).sum(axis=1)
        return int(order[int(np.argmax(dist))])

    def merge_segments(self) -> bool:
        """
        Remove corners whose neighbouring corners can be joined by one segment.

        Corners are visited in list order and removals take effect immediately,
        so the next corner is tested against the updated neighbours. The first
        corner's previous neighbour is the last one. At least 3 corners remain.
        """
        if len(self._splits) <= 3:
            return False

        change = False
        i = 0
        while i < len(self._splits) and len(self._splits) > 3:
            size = len(self._splits)
            previous = self._splits[(i - 1) % size]
            following = self._splits[(i + 1) % size]

            if self.select_split_offset(previous, self.circular_distance(previous, following)) == NOT_FOUND:
                del self._splits[i]
                del self._changed[i]
                self._changed[(i - 1) % len(self._changed)] = True
                change = True
            else:
                i += 1

        return change

    def split_segments(self) -> bool:
        """Split each segment flagged as changed once, at its farthest point."""
        size = len(self._splits)
        if len(self._changed) != size:
            self._changed = [True] * size

        change = False
        splits: List[int] = []
        changed: List[bool] = []
        for i in range(size):
            start = self._splits[i]
            splits.append(start)
            if not self._changed[i]:
                changed.append(False)
                continue

            end = self._splits[(i + 1) % size]
            offset = self.select_split_offset(start, self.circular_distance(start, end))
            if offset == NOT_FOUND:
                changed.append(False)
            else:
                splits.append((start + offset) % self.N)
                changed.extend([True, True])
                change = True

        self._splits = splits
        self._changed = changed
        return change


class SplitMergeLineFitSegment(SplitMergeLineFit):
    """Split-and-merge for open paths. The two end points are always kept."""

    def process(self, contour) -> None:
        self._load(contour)
        if self.N <= 1:
            return

        last = self.N - 1
        if self.max_iterations == 0:
            self._splits = [0, last]
            self._changed = [False]
            return

        self._splits.append(0)
        self.split_pixels(0, last)
        self._splits.append(last)
        self._changed = [False] * (len(self._splits) - 1)

        for _ in range(self.max_iterations):
            merged = self.merge_segments()
            split = self.split_segments()
            if not merged and not split:
                break

    def merge_segments(self) -> bool:
        change = False
        i = 1
        while i < len(self._splits) - 1:
            previous = self._splits[i - 1]
            following = self._splits[i + 1]

            if self.select_split_offset(previous, following - previous) == NOT_FOUND:
                del self._splits[i]
                del self._changed[i]
                self._changed[i - 1] = True
                change = True
            else:
                i += 1

        return change

    def split_segments(self) -> bool:
        size = len(self._splits) - 1
        if len(self._changed) != size:
            self._changed = [True] * size

        change = False
        splits: List[int] = []
        changed: List[bool] = []
        for i in range(size):
            start = self._splits[i]
            end = self._splits[i + 1]
            splits.append(start)
            if not self._changed[i]:
                changed.append(False)
                continue

            offset = self.select_split_offset(start, end - start)
            if offset == NOT_FOUND:
                changed.append(False)
            else:
                splits.append(start + offset)
                changed.extend([True, True])
                change = True
        splits.append(self._splits[-1])

        self._splits = splits
        self._changed = changed
        return change


@dataclass
class PointIndex:
    """Polygon vertex: its index in the contour and its coordinate."""

    index: int
    x: int
    y: int


def fit_polygon(
    contour: Sequence,
    loop: bool = True,
    split_fraction: float = 0.05,
    minimum_split_pixels: float = 1.0,
    max_iterations: int = 20,
) -> List[PointIndex]:
    """Fit a polyline to a contour and return its vertices."""
    if loop:
        fitter: SplitMergeLineFit = SplitMergeLineFitLoop(split_fraction, minimum_split_pixels, max_iterations)
    else:
        fitter = SplitMergeLineFitSegment(split_fraction, minimum_split_pixels, max_iterations)

    fitter.process(contour)
    return [PointIndex(i, int(fitter.contour[i][0]), int(fitter.contour[i][1])) for i in fitter.splits]

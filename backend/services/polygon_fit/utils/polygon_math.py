"""
Polygon and circular index helpers.

Orientation follows image coordinates (x right, y down). A positive shoelace
sum therefore describes a polygon that turns clockwise on screen, and
`is_ccw` is True only for a negative sum.
"""

from __future__ import annotations

import numpy as np


def circular_distance(index0: int, index1: int, size: int) -> int:
    """Steps needed to walk forward from index0 to index1 on a loop of `size`."""
    return (index1 - index0) % size


def add_offset(index: int, offset: int, size: int) -> int:
    return (index + offset) % size


def subtract(index0: int, index1: int, size: int) -> int:
    """Signed shortest step from index0 to index1 on a loop of `size`."""
    diff = (index1 - index0) % size
    if diff > size // 2:
        diff -= size
    return diff


def signed_area_sum(polygon: np.ndarray) -> float:
    pts = np.asarray(polygon, dtype=np.float64).reshape(-1, 2)
    x = pts[:, 0]
    y = pts[:, 1]
    return float(np.sum(x * np.roll(y, -1) - np.roll(x, -1) * y))


def polygon_area(polygon: np.ndarray) -> float:
    return abs(signed_area_sum(polygon)) / 2.0


def is_ccw(polygon: np.ndarray) -> bool:
    return signed_area_sum(polygon) < 0.0


def flip(polygon: np.ndarray) -> np.ndarray:
    """Reverse the vertex order while keeping vertex 0 first."""
    pts = np.asarray(polygon).reshape(-1, 2)
    if len(pts) < 3:
        return pts.copy()
    return np.concatenate([pts[:1], pts[:0:-1]], axis=0)


def is_convex(polygon: np.ndarray) -> bool:
    """True when every turn of the polygon has the same sign (collinear turns allowed)."""
    pts = np.asarray(polygon, dtype=np.float64).reshape(-1, 2)
    if len(pts) < 3:
        return False

    edges = np.roll(pts, -1, axis=0) - pts
    nxt = np.roll(edges, -1, axis=0)
    cross = edges[:, 0] * nxt[:, 1] - edges[:, 1] * nxt[:, 0]
    return not (np.any(cross > 0) and np.any(cross < 0))

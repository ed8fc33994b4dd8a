"""Point and line primitives shared by the polygon fitting stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

PointLike = Sequence[float]


@dataclass
class LineParametric:
    """Line through `origin` along `direction` (direction is not normalised)."""

    origin: np.ndarray
    direction: np.ndarray

    def point_at(self, t: float) -> np.ndarray:
        return self.origin + t * self.direction


def line_from_points(a: PointLike, b: PointLike) -> LineParametric:
    """Parametric line starting at `a` and passing through `b`."""
    origin = np.asarray(a, dtype=np.float64)
    return LineParametric(origin=origin, direction=np.asarray(b, dtype=np.float64) - origin)


def distance_sq(a: PointLike, b: PointLike) -> float:
    dx = float(b[0]) - float(a[0])
    dy = float(b[1]) - float(a[1])
    return dx * dx + dy * dy


def squared_point_line_distances(line: LineParametric, points: np.ndarray) -> np.ndarray:
    """Squared perpendicular distance from each row of `points` to `line`.

    A zero length direction gives NaN (or Inf) instead of raising, the caller
    decides what a degenerate line means.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    sx = float(line.direction[0])
    sy = float(line.direction[1])
    dx = pts[:, 0] - line.origin[0]
    dy = pts[:, 1] - line.origin[1]
    cross = dx * sy - dy * sx
    with np.errstate(divide="ignore", invalid="ignore"):
        return (cross * cross) / np.float64(sx * sx + sy * sy)


def squared_point_line_distance(line: LineParametric, point: PointLike) -> float:
    return float(squared_point_line_distances(line, np.asarray(point, dtype=np.float64))[0])


def acute_angle(a: PointLike, b: PointLike, c: PointLike) -> float:
    """Angle in radians between segments a->b and b->c."""
    dx0 = float(b[0]) - float(a[0])
    dy0 = float(b[1]) - float(a[1])
    dx1 = float(c[0]) - float(b[0])
    dy1 = float(c[1]) - float(b[1])

    dot = dx0 * dx1 + dy0 * dy1
    bottom = np.sqrt(dx0 * dx0 + dy0 * dy0) * np.sqrt(dx1 * dx1 + dy1 * dy1)
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.float64(dot) / bottom
    return float(np.arccos(np.clip(ratio, -1.0, 1.0)))


def closest_point(line: LineParametric, point: PointLike) -> np.ndarray:
    """Orthogonal projection of `point` onto `line`."""
    p = np.asarray(point, dtype=np.float64)
    t = float(np.dot(p - line.origin, line.direction)) / float(np.dot(line.direction, line.direction))
    return line.point_at(t)


def intersection(line_a: LineParametric, line_b: LineParametric, eps: float = 1e-12) -> Optional[np.ndarray]:
    """Intersection point of two lines, or None when they are parallel."""
    d0 = line_a.direction
    d1 = line_b.direction
    cross = float(d0[0] * d1[1] - d0[1] * d1[0])
    scale = float(np.linalg.norm(d0) * np.linalg.norm(d1))
    if scale == 0.0 or abs(cross) <= eps * scale:
        return None

    diff = line_b.origin - line_a.origin
    t = float(diff[0] * d1[1] - diff[1] * d1[0]) / cross
    return line_a.point_at(t)


def fit_line_weighted(points: np.ndarray, weights: np.ndarray) -> Optional[LineParametric]:
    """Weighted total least squares line through `points`.

    The origin is the weighted centroid and the direction is the unit principal
    axis of the weighted scatter matrix. Returns None when every weight is zero.
    """
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    w = np.asarray(weights, dtype=np.float64).reshape(-1)
    total = float(w.sum())
    if pts.shape[0] < 2 or total <= 0.0:
        return None

    centroid = (pts * w[:, None]).sum(axis=0) / total
    centred = pts - centroid
    scatter = (centred * w[:, None]).T @ centred
    eigenvalues, eigenvectors = np.linalg.eigh(scatter)
    direction = eigenvectors[:, int(np.argmax(eigenvalues))]
    return LineParametric(origin=centroid, direction=direction)

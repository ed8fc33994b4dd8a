"""Geometry, sampling and contour helpers for polygon fitting."""

from services.polygon_fit.utils.contours import BinaryContourFinder, Contour, ContourFinder
from services.polygon_fit.utils.distortion import PixelTransform, RadialDistortion
from services.polygon_fit.utils.image_sampler import ImageSampler
from services.polygon_fit.utils.line_math import (
    LineParametric,
    acute_angle,
    closest_point,
    distance_sq,
    fit_line_weighted,
    intersection,
    line_from_points,
    squared_point_line_distance,
    squared_point_line_distances,
)
from services.polygon_fit.utils.polygon_math import (
    add_offset,
    circular_distance,
    flip,
    is_ccw,
    is_convex,
    polygon_area,
    subtract,
)
from services.polygon_fit.utils.snap_to_edge import SnapToEdge

__all__ = [
    "BinaryContourFinder",
    "Contour",
    "ContourFinder",
    "ImageSampler",
    "LineParametric",
    "PixelTransform",
    "RadialDistortion",
    "SnapToEdge",
    "acute_angle",
    "add_offset",
    "circular_distance",
    "closest_point",
    "distance_sq",
    "fit_line_weighted",
    "flip",
    "intersection",
    "is_ccw",
    "is_convex",
    "line_from_points",
    "polygon_area",
    "squared_point_line_distance",
    "squared_point_line_distances",
    "subtract",
]

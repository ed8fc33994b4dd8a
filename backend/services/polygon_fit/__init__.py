"""Contour to polygon fitting with sub-pixel refinement."""

from services.polygon_fit.config import (
    DETECTOR_PRESETS,
    PARAMETER_SCHEMA,
    PolygonDetectorConfig,
    resolve_detector_config,
)
from services.polygon_fit.corner_improver import ContourCornerImprover
from services.polygon_fit.corner_refiner import RefineCornerLinesToImage, RefinePolygonCornersToImage
from services.polygon_fit.edge_score import PolygonEdgeScore
from services.polygon_fit.line_refiner import RefinePolygonLineToImage
from services.polygon_fit.polygon_detector import BinaryPolygonDetector, Rejection
from services.polygon_fit.split_merge import (
    NOT_FOUND,
    PointIndex,
    SplitMergeLineFit,
    SplitMergeLineFitLoop,
    SplitMergeLineFitSegment,
    fit_polygon,
)

__all__ = [
    "BinaryPolygonDetector",
    "ContourCornerImprover",
    "DETECTOR_PRESETS",
    "NOT_FOUND",
    "PARAMETER_SCHEMA",
    "PointIndex",
    "PolygonDetectorConfig",
    "PolygonEdgeScore",
    "RefineCornerLinesToImage",
    "RefinePolygonCornersToImage",
    "RefinePolygonLineToImage",
    "Rejection",
    "SplitMergeLineFit",
    "SplitMergeLineFitLoop",
    "SplitMergeLineFitSegment",
    "fit_polygon",
    "resolve_detector_config",
]

"""Detector configuration, presets and the tunables exposed to the API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PolygonDetectorConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # split and merge
    split_fraction: float = Field(0.05, ge=0.0, le=1.0)
    minimum_split_fraction: float = Field(0.01, ge=0.0, le=1.0)
    max_split_iterations: int = Field(20, ge=0)

    # candidate filtering
    number_of_sides: List[int] = Field(default_factory=lambda: [4])
    min_contour_fraction: float = Field(0.23, ge=0.0)
    output_clockwise: bool = True
    improve_max_iterations: int = Field(20, ge=1)

    # edge score, None turns it off
    edge_threshold: Optional[float] = Field(20.0, ge=0.0)
    check_edge_before: bool = True

    # sub-pixel refinement
    refine_corners: bool = True
    refine_lines: bool = False
    min_refined_corners: int = Field(3, ge=1)
    end_point_distance: int = Field(12, ge=2)
    corner_offset: float = Field(2.0, ge=0.0)
    max_line_samples: int = Field(10, ge=2)
    sample_radius: int = Field(2, ge=1)
    max_refine_iterations: int = Field(10, ge=1)
    converge_tol_pixels: float = Field(1e-6, gt=0.0)
    max_corner_change: float = Field(5.0, gt=0.0)

    @field_validator("number_of_sides")
    @classmethod
    def _check_sides(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("number_of_sides must list at least one side count")
        if any(n < 3 for n in value):
            raise ValueError("polygons need at least 3 sides")
        return sorted(set(value))


DETECTOR_PRESETS: Dict[str, Dict[str, Any]] = {
    "fiducial": {
        "number_of_sides": [4],
        "min_contour_fraction": 0.23,
        "check_edge_before": True,
        "refine_corners": True,
        "refine_lines": False,
        "edge_threshold": 20.0,
    },
    "chessboard": {
        "number_of_sides": [4],
        "min_contour_fraction": 0.05,
        "check_edge_before": False,
        "refine_corners": False,
        "refine_lines": True,
        "edge_threshold": 20.0,
    },
}

PARAMETER_SCHEMA: List[Dict[str, Any]] = [
    {
        "key": "split_fraction",
        "label": "Split fraction",
        "type": "number",
        "min": 0.005,
        "max": 0.5,
        "step": 0.005,
        "default": 0.05,
        "description": "Split a side when a point is farther than this fraction of the side length.",
    },
    {
        "key": "minimum_split_fraction",
        "label": "Minimum split fraction",
        "type": "number",
        "min": 0.0,
        "max": 0.1,
        "step": 0.001,
        "default": 0.01,
        "description": "Smallest split distance, as a fraction of the image width.",
    },
    {
        "key": "number_of_sides",
        "label": "Allowed side counts",
        "type": "integer[]",
        "default": [4],
        "description": "Polygons with any other number of sides are rejected.",
    },
    {
        "key": "min_contour_fraction",
        "label": "Minimum contour",
        "type": "number",
        "min": 0.0,
        "max": 2.0,
        "step": 0.01,
        "default": 0.23,
        "description": "Shortest contour considered, as a fraction of the image width.",
    },
    {
        "key": "edge_threshold",
        "label": "Edge threshold",
        "type": "number",
        "min": 0.0,
        "max": 255.0,
        "step": 1.0,
        "default": 20.0,
        "description": "Minimum average intensity step across the polygon sides.",
    },
    {
        "key": "check_edge_before",
        "label": "Check edge before refining",
        "type": "boolean",
        "default": True,
        "description": "Score the crude polygon instead of the refined one.",
    },
    {
        "key": "refine_corners",
        "label": "Refine corners",
        "type": "boolean",
        "default": True,
        "description": "Snap each corner to the intersection of its two image edges.",
    },
    {
        "key": "refine_lines",
        "label": "Refine lines",
        "type": "boolean",
        "default": False,
        "description": "Snap whole sides to the image. Used when corner refinement is off.",
    },
    {
        "key": "output_clockwise",
        "label": "Clockwise output",
        "type": "boolean",
        "default": True,
        "description": "Winding order of the returned polygons on screen.",
    },
]


def resolve_detector_config(config: Optional[Dict[str, Any]]) -> PolygonDetectorConfig:
    """Merge a user config over its preset, clamp numeric values and validate."""
    cfg = config if isinstance(config, dict) else {}
    preset = str(cfg.get("preset", "fiducial")).lower().strip()
    if preset not in DETECTOR_PRESETS:
        preset = "fiducial"

    merged: Dict[str, Any] = dict(DETECTOR_PRESETS[preset])
    for key in PolygonDetectorConfig.model_fields:
        if key in cfg:
            merged[key] = cfg[key]

    if "split_fraction" in merged:
        merged["split_fraction"] = float(max(0.005, min(0.5, float(merged["split_fraction"]))))
    if "minimum_split_fraction" in merged:
        merged["minimum_split_fraction"] = float(max(0.0, min(0.1, float(merged["minimum_split_fraction"]))))
    if "min_contour_fraction" in merged:
        merged["min_contour_fraction"] = float(max(0.0, min(2.0, float(merged["min_contour_fraction"]))))
    if merged.get("edge_threshold") is not None:
        merged["edge_threshold"] = float(max(0.0, min(255.0, float(merged["edge_threshold"]))))
    if "max_split_iterations" in merged:
        merged["max_split_iterations"] = int(max(0, min(200, int(merged["max_split_iterations"]))))
    if "sample_radius" in merged:
        merged["sample_radius"] = int(max(1, min(5, int(merged["sample_radius"]))))

    return PolygonDetectorConfig(**merged)

"""
Detects convex polygons in a binary image and refines them against the gray image.

Each contour goes through the same chain of checks: size and border filters,
split-and-merge fitting, side count, corner improvement, convexity, area,
edge score, sub-pixel refinement and finally winding normalisation. A contour
that fails a check is recorded as a `Rejection` and the next one is tried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import cv2
import numpy as np

from services.polygon_fit.config import PolygonDetectorConfig
from services.polygon_fit.corner_improver import ContourCornerImprover
from services.polygon_fit.corner_refiner import RefinePolygonCornersToImage
from services.polygon_fit.edge_score import PolygonEdgeScore
from services.polygon_fit.line_refiner import RefinePolygonLineToImage
from services.polygon_fit.split_merge import SplitMergeLineFit, SplitMergeLineFitLoop
from services.polygon_fit.utils.contours import BinaryContourFinder, Contour, ContourFinder
from services.polygon_fit.utils.distortion import PixelTransform, image_border
from services.polygon_fit.utils.polygon_math import flip, is_ccw, is_convex, polygon_area

logger = logging.getLogger(__name__)

BOUNDS_TOLERANCE = 1e-4


@dataclass
class Rejection:
    """Why a contour did not become a polygon."""

    stage: str
    contour_id: int
    detail: str = ""


class CornerRefinement:
    def __init__(self, refiner: RefinePolygonCornersToImage, min_refined_corners: int = 3):
        self.refiner = refiner
        self.min_refined_corners = min_refined_corners

    def refine(self, contour: np.ndarray, splits: List[int], crude: np.ndarray) -> Tuple[np.ndarray, bool]:
        polygon, good = self.refiner.refine(contour, splits)
        return polygon, good >= min(self.min_refined_corners, len(splits))


class LineRefinement:
    def __init__(self, refiner: RefinePolygonLineToImage):
        self.refiner = refiner

    def refine(self, contour: np.ndarray, splits: List[int], crude: np.ndarray) -> Tuple[np.ndarray, bool]:
        polygon = self.refiner.refine(crude)
        if polygon is None:
            return crude, False
        return polygon, True


class BinaryPolygonDetector:
    def __init__(
        self,
        config: Optional[PolygonDetectorConfig] = None,
        contour_to_polygon: Optional[SplitMergeLineFit] = None,
        edge_score: Optional[PolygonEdgeScore] = None,
        refine_line: Optional[RefinePolygonLineToImage] = None,
        refine_corner: Optional[RefinePolygonCornersToImage] = None,
        contour_finder: Optional[ContourFinder] = None,
        diagnostics: Optional[Callable[[Rejection], None]] = None,
    ):
        self.config = config or PolygonDetectorConfig()
        cfg = self.config

        self.fit_polygon = contour_to_polygon or SplitMergeLineFitLoop(
            cfg.split_fraction, 0.0, cfg.max_split_iterations
        )
        self.improve_contour = ContourCornerImprover(loop=True, max_iterations=cfg.improve_max_iterations)
        self.edge_score = edge_score
        self.refine_line = refine_line
        self.refine_corner = refine_corner
        self.contour_finder = contour_finder or BinaryContourFinder()
        self.diagnostics = diagnostics

        self._to_undistorted: Optional[PixelTransform] = None
        self._to_distorted: Optional[PixelTransform] = None

        self._found: List[np.ndarray] = []
        self._found_contours: List[Contour] = []
        self._rejections: List[Rejection] = []
        self._labeled: Optional[np.ndarray] = None
        self._minimum_contour = 0
        self._minimum_area = 0.0

    @classmethod
    def from_config(
        cls,
        config: Optional[PolygonDetectorConfig] = None,
        diagnostics: Optional[Callable[[Rejection], None]] = None,
    ) -> "BinaryPolygonDetector":
        """Build a detector with every collaborator configured from `config`."""
        cfg = config or PolygonDetectorConfig()

        edge_score = None
        if cfg.edge_threshold is not None:
            edge_score = PolygonEdgeScore(corner_offset=cfg.corner_offset, threshold_score=cfg.edge_threshold)

        refine_corner = None
        if cfg.refine_corners:
            refine_corner = RefinePolygonCornersToImage(
                end_point_distance=cfg.end_point_distance,
                corner_offset=cfg.corner_offset,
                max_line_samples=cfg.max_line_samples,
                sample_radius=cfg.sample_radius,
                max_iterations=cfg.max_refine_iterations,
                converge_tol_pixels=cfg.converge_tol_pixels,
            )

        refine_line = None
        if cfg.refine_lines:
            refine_line = RefinePolygonLineToImage(
                corner_offset=cfg.corner_offset,
                max_line_samples=cfg.max_line_samples,
                sample_radius=cfg.sample_radius,
                max_iterations=cfg.max_refine_iterations,
                converge_tol_pixels=cfg.converge_tol_pixels,
                max_corner_change=cfg.max_corner_change,
            )

        return cls(
            config=cfg,
            edge_score=edge_score,
            refine_line=refine_line,
            refine_corner=refine_corner,
            diagnostics=diagnostics,
        )

    def set_lens_distortion(
        self,
        width: int,
        height: int,
        to_undistorted: PixelTransform,
        to_distorted: PixelTransform,
    ) -> None:
        """
        Work in undistorted pixel coordinates.

        Contours are moved into undistorted coordinates before fitting and the
        image is read through `to_distorted`. The undistorted image must fit
        inside the original image bounds.
        """
        mapped = np.asarray(to_undistorted(image_border(width, height)), dtype=np.float64).reshape(-1, 2)
        x0, y0 = mapped.min(axis=0)
        x1, y1 = mapped.max(axis=0)

        tol = BOUNDS_TOLERANCE
        if x0 < -tol or y0 < -tol or x1 > width + tol or y1 > height + tol:
            raise ValueError(
                "The undistorted image must be contained by the same bounds as the input distorted image, "
                f"got [{x0:.4f}, {x1:.4f}] x [{y0:.4f}, {y1:.4f}] for a {width}x{height} image"
            )

        self._to_undistorted = to_undistorted
        self._set_to_distorted(to_distorted)

    def clear_lens_distortion(self) -> None:
        self._to_undistorted = None
        self._set_to_distorted(None)

    def _set_to_distorted(self, to_distorted: Optional[PixelTransform]) -> None:
        self._to_distorted = to_distorted
        for part in (self.refine_line, self.refine_corner, self.edge_score):
            if part is not None:
                part.set_transform(to_distorted)

    @property
    def found(self) -> List[np.ndarray]:
        return list(self._found)

    @property
    def found_contours(self) -> List[Contour]:
        return list(self._found_contours)

    @property
    def rejections(self) -> List[Rejection]:
        return list(self._rejections)

    @property
    def labeled(self) -> Optional[np.ndarray]:
        return self._labeled

    def process(self, gray: np.ndarray, binary: np.ndarray) -> None:
        """Find polygons in `binary`, refining them with `gray`. Results replace the last call's."""
        gray = np.asarray(gray)
        if gray.ndim == 3:
            gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)
        binary = np.asarray(binary)
        if gray.shape[:2] != binary.shape[:2]:
            raise ValueError(f"Gray image {gray.shape[:2]} and binary image {binary.shape[:2]} differ in size")

        height, width = gray.shape[:2]
        cfg = self.config
        self.fit_polygon.set_minimum_split_pixels(max(1.0, cfg.minimum_split_fraction * width))
        self._minimum_contour = int(width * cfg.min_contour_fraction)
        self._minimum_area = (self._minimum_contour / 4.0) ** 2

        self._found = []
        self._found_contours = []
        self._rejections = []

        for part in (self.edge_score, self.refine_corner, self.refine_line):
            if part is not None:
                part.set_image(gray)

        contours = self.contour_finder.process(binary)
        self._labeled = self.contour_finder.labeled
        for contour in contours:
            self._process_contour(contour, width, height)

        logger.info("Found %d polygons from %d contours", len(self._found), len(contours))

    def _process_contour(self, contour: Contour, width: int, height: int) -> None:
        cfg = self.config
        external = contour.external
        if len(external) < self._minimum_contour:
            self._reject("size", contour, f"{len(external)} < {self._minimum_contour} pixels")
            return
        if self._touches_border(external, width, height):
            self._reject("border", contour)
            return

        points = external
        if self._to_undistorted is not None:
            undistorted = np.asarray(self._to_undistorted(external.astype(np.float64)), dtype=np.float64)
            points = np.rint(undistorted).astype(np.int64)

        self.fit_polygon.process(points)
        splits = self.fit_polygon.splits
        if len(splits) not in cfg.number_of_sides:
            self._reject("sides", contour, f"{len(splits)} sides")
            return

        if not self.improve_contour.fit(points, splits):
            self._reject("improve", contour)
            return

        crude = points[splits].astype(np.float64)
        if not is_convex(crude):
            self._reject("convex", contour)
            return

        area = polygon_area(crude)
        if area < self._minimum_area:
            self._reject("area", contour, f"{area:.1f} < {self._minimum_area:.1f}")
            return

        if cfg.check_edge_before and self.edge_score is not None and not self.edge_score.validate(crude):
            self._reject("edge_before", contour, f"{self.edge_score.average_edge_intensity:.2f}")
            return

        polygon, success = self._refine(points, splits, crude)
        if not success:
            self._reject("refine", contour)
            return

        if not cfg.check_edge_before and self.edge_score is not None and not self.edge_score.validate(polygon):
            self._reject("edge_after", contour, f"{self.edge_score.average_edge_intensity:.2f}")
            return

        if cfg.output_clockwise == is_ccw(polygon):
            polygon = flip(polygon)

        self._found.append(polygon)
        self._found_contours.append(contour)

    def _refine(self, points: np.ndarray, splits: List[int], crude: np.ndarray) -> Tuple[np.ndarray, bool]:
        if self.refine_corner is not None:
            strategy = CornerRefinement(self.refine_corner, self.config.min_refined_corners)
        elif self.refine_line is not None:
            strategy = LineRefinement(self.refine_line)
        else:
            return crude, True
        return strategy.refine(points, splits, crude)

    @staticmethod
    def _touches_border(external: np.ndarray, width: int, height: int) -> bool:
        x = external[:, 0]
        y = external[:, 1]
        return bool(np.any((x == 0) | (y == 0) | (x == width - 1) | (y == height - 1)))

    def _reject(self, stage: str, contour: Contour, detail: str = "") -> None:
        rejection = Rejection(stage=stage, contour_id=contour.id, detail=detail)
        self._rejections.append(rejection)
        logger.debug("Rejected contour %d at %s %s", contour.id, stage, detail)
        if self.diagnostics is not None:
            self.diagnostics(rejection)

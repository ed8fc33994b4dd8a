"""Polygon detection service used by the polygons router."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from services.polygon_fit import (
    BinaryPolygonDetector,
    PolygonDetectorConfig,
    Rejection,
    fit_polygon,
    resolve_detector_config,
)
from services.polygon_fit.utils.distortion import PixelTransform, RadialDistortion

logger = logging.getLogger(__name__)


class PolygonDetectionService:
    """Run the polygon detector on one image per call."""

    async def detect(
        self,
        *,
        gray: np.ndarray,
        binary: Optional[np.ndarray] = None,
        threshold: int = 128,
        config: Optional[Dict[str, Any]] = None,
        lens: Optional[Dict[str, float]] = None,
    ) -> Dict[str, Any]:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None,
            self._detect_sync,
            gray,
            binary,
            threshold,
            config,
            lens,
        )

    async def fit_contour(
        self,
        *,
        points: Sequence[Sequence[int]],
        loop: bool = True,
        split_fraction: float = 0.05,
        minimum_split_pixels: float = 1.0,
        max_iterations: int = 20,
    ) -> Dict[str, Any]:
        event_loop = asyncio.get_event_loop()
        return await event_loop.run_in_executor(
            None,
            self._fit_contour_sync,
            points,
            loop,
            split_fraction,
            minimum_split_pixels,
            max_iterations,
        )

    def _detect_sync(
        self,
        gray: np.ndarray,
        binary: Optional[np.ndarray],
        threshold: int,
        config: Optional[Dict[str, Any]],
        lens: Optional[Dict[str, float]],
    ) -> Dict[str, Any]:
        detector_config = resolve_detector_config(config)
        rejections: List[Rejection] = []
        detector = BinaryPolygonDetector.from_config(detector_config, diagnostics=rejections.append)

        height, width = gray.shape[:2]
        model: Optional[RadialDistortion] = None
        to_undistorted = None
        to_distorted = None
        if lens:
            model = RadialDistortion(width=width, height=height, **lens)
            to_undistorted, to_distorted = model.transform_pair()
            detector.set_lens_distortion(width, height, to_undistorted, to_distorted)

        if binary is None:
            binary = (gray < threshold).astype(np.uint8)

        detector.process(gray, binary)

        polygons = []
        for polygon, contour in zip(detector.found, detector.found_contours):
            entry: Dict[str, Any] = {
                "vertices": polygon.tolist(),
                "contourId": int(contour.id),
                "contourLength": int(len(contour.external)),
                "holes": self._fit_holes(contour.internal, detector_config, width, to_undistorted),
            }
            if to_distorted is not None:
                entry["distortedVertices"] = np.asarray(to_distorted(polygon)).tolist()
            polygons.append(entry)

        counts = Counter(r.stage for r in rejections)
        logger.info(
            "Detected %d polygons in %dx%d image, rejected %d contours",
            len(polygons),
            width,
            height,
            len(rejections),
        )
        return {
            "width": int(width),
            "height": int(height),
            "polygons": polygons,
            "rejections": dict(counts),
            "config": detector_config.model_dump(),
        }

    @staticmethod
    def _fit_holes(
        holes: Sequence[np.ndarray],
        config: PolygonDetectorConfig,
        width: int,
        to_undistorted: Optional[PixelTransform],
    ) -> List[List[List[float]]]:
        """Polylines fitted to the hole contours of a found polygon, in the same frame as its vertices."""
        minimum_split_pixels = max(1.0, config.minimum_split_fraction * width)
        fitted = []
        for hole in holes:
            vertices = fit_polygon(
                hole,
                loop=True,
                split_fraction=config.split_fraction,
                minimum_split_pixels=minimum_split_pixels,
                max_iterations=config.max_split_iterations,
            )
            if len(vertices) < 3:
                continue
            points = np.array([[v.x, v.y] for v in vertices], dtype=np.float64)
            if to_undistorted is not None:
                points = np.asarray(to_undistorted(points), dtype=np.float64)
            fitted.append(points.tolist())
        return fitted

    @staticmethod
    def _fit_contour_sync(
        points: Sequence[Sequence[int]],
        loop: bool,
        split_fraction: float,
        minimum_split_pixels: float,
        max_iterations: int,
    ) -> Dict[str, Any]:
        vertices = fit_polygon(
            points,
            loop=loop,
            split_fraction=split_fraction,
            minimum_split_pixels=minimum_split_pixels,
            max_iterations=max_iterations,
        )
        return {
            "splits": [v.index for v in vertices],
            "vertices": [[v.x, v.y] for v in vertices],
        }

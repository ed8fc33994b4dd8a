"""Polygon detection router."""

import base64
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
from fastapi import APIRouter
from pydantic import BaseModel, Field

from services.polygon_detection_service import PolygonDetectionService
from services.polygon_fit import DETECTOR_PRESETS, PARAMETER_SCHEMA

router = APIRouter()


def decode_gray_image(image_base64: str) -> np.ndarray:
    """Decode a base64 encoded image (optionally a data URL) to a gray array."""
    data = image_base64
    if "," in data:
        data = data.split(",", 1)[1]

    try:
        raw = base64.b64decode(data, validate=True)
    except ValueError as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e

    image = cv2.imdecode(np.frombuffer(raw, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise ValueError("Could not decode image")
    return image


class LensDistortionParams(BaseModel):
    fx: float
    fy: float
    cx: float
    cy: float
    k1: float = 0.0
    k2: float = 0.0


class DetectPolygonsRequest(BaseModel):
    grayBase64: str
    binaryBase64: Optional[str] = None
    threshold: int = Field(128, ge=0, le=255)
    config: Optional[Dict[str, Any]] = None
    lensDistortion: Optional[LensDistortionParams] = None


class DetectedPolygon(BaseModel):
    vertices: List[List[float]]
    contourId: int
    contourLength: int
    distortedVertices: Optional[List[List[float]]] = None
    holes: List[List[List[float]]] = Field(default_factory=list)


class DetectPolygonsResult(BaseModel):
    width: int
    height: int
    polygons: List[DetectedPolygon] = Field(default_factory=list)
    rejections: Dict[str, int] = Field(default_factory=dict)
    config: Dict[str, Any] = Field(default_factory=dict)


class DetectPolygonsResponse(BaseModel):
    success: bool
    data: Optional[DetectPolygonsResult] = None
    error: Optional[str] = None


class FitContourRequest(BaseModel):
    points: List[List[int]]
    loop: bool = True
    splitFraction: float = Field(0.05, ge=0.0)
    minimumSplitPixels: float = Field(1.0, ge=0.0)
    maxIterations: int = Field(20, ge=0)


class FitContourResult(BaseModel):
    splits: List[int]
    vertices: List[List[int]]


class FitContourResponse(BaseModel):
    success: bool
    data: Optional[FitContourResult] = None
    error: Optional[str] = None


@router.get("/parameters")
async def get_parameters() -> Dict[str, Any]:
    """Tunable detector parameters and the named presets."""
    return {
        "parameterSchema": list(PARAMETER_SCHEMA),
        "presets": {name: dict(values) for name, values in DETECTOR_PRESETS.items()},
    }


@router.post("/detect", response_model=DetectPolygonsResponse)
async def detect_polygons(request: DetectPolygonsRequest):
    """Find polygons in an image. The gray image is thresholded when no binary image is sent."""
    try:
        gray = decode_gray_image(request.grayBase64)
        binary = decode_gray_image(request.binaryBase64) if request.binaryBase64 else None

        service = PolygonDetectionService()
        payload = await service.detect(
            gray=gray,
            binary=binary,
            threshold=request.threshold,
            config=request.config,
            lens=request.lensDistortion.model_dump() if request.lensDistortion else None,
        )
        return DetectPolygonsResponse(success=True, data=DetectPolygonsResult(**payload))
    except Exception as e:
        return DetectPolygonsResponse(success=False, error=str(e))


@router.post("/fit-contour", response_model=FitContourResponse)
async def fit_contour(request: FitContourRequest):
    """Fit a polyline to a list of contour points."""
    try:
        if any(len(p) != 2 for p in request.points):
            raise ValueError("Each point must be an [x, y] pair")

        service = PolygonDetectionService()
        payload = await service.fit_contour(
            points=request.points,
            loop=request.loop,
            split_fraction=request.splitFraction,
            minimum_split_pixels=request.minimumSplitPixels,
            max_iterations=request.maxIterations,
        )
        return FitContourResponse(success=True, data=FitContourResult(**payload))
    except Exception as e:
        return FitContourResponse(success=False, error=str(e))

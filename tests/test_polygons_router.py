import asyncio
import base64

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from conftest import square_loop_contour
from main import app
from services.polygon_detection_service import PolygonDetectionService


@pytest.fixture
def client():
    return TestClient(app)


def encode_png(image: np.ndarray, data_url: bool = False) -> str:
    ok, buf = cv2.imencode(".png", image)
    assert ok
    text = base64.b64encode(buf.tobytes()).decode()
    return f"data:image/png;base64,{text}" if data_url else text


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_parameters(client):
    body = client.get("/api/polygons/parameters").json()
    assert {"fiducial", "chessboard"} <= set(body["presets"])
    assert any(p["key"] == "split_fraction" for p in body["parameterSchema"])


def test_detect(client, quad_image, quad_corners):
    response = client.post("/api/polygons/detect", json={"grayBase64": encode_png(quad_image, data_url=True)})
    body = response.json()

    assert body["success"], body["error"]
    data = body["data"]
    assert (data["width"], data["height"]) == (640, 480)
    assert len(data["polygons"]) == 1
    vertices = np.array(data["polygons"][0]["vertices"])
    for corner in quad_corners:
        assert np.min(np.linalg.norm(vertices - np.array(corner), axis=1)) < 1.1


def test_detect_with_binary_and_preset(client, quad_image):
    binary = ((quad_image < 128) * 255).astype(np.uint8)
    response = client.post(
        "/api/polygons/detect",
        json={
            "grayBase64": encode_png(quad_image),
            "binaryBase64": encode_png(binary),
            "config": {"preset": "chessboard"},
        },
    )
    body = response.json()
    assert body["success"], body["error"]
    assert len(body["data"]["polygons"]) == 1
    assert body["data"]["config"]["refine_lines"]


def test_detect_with_lens(client, quad_image):
    lens = {"fx": 500.0, "fy": 500.0, "cx": 320.0, "cy": 240.0, "k1": 0.0, "k2": 0.0}
    response = client.post("/api/polygons/detect", json={"grayBase64": encode_png(quad_image), "lensDistortion": lens})
    body = response.json()
    assert body["success"], body["error"]
    polygon = body["data"]["polygons"][0]
    assert np.array(polygon["distortedVertices"]) == pytest.approx(np.array(polygon["vertices"]), abs=1e-6)


def test_detect_bad_image(client):
    body = client.post("/api/polygons/detect", json={"grayBase64": "not an image"}).json()
    assert not body["success"]
    assert body["error"]


def test_fit_contour(client):
    points = square_loop_contour().tolist()
    body = client.post(
        "/api/polygons/fit-contour",
        json={"points": points, "splitFraction": 0.15, "minimumSplitPixels": 1.0},
    ).json()

    assert body["success"], body["error"]
    assert sorted(body["data"]["splits"]) == [0, 9, 13, 23]
    assert sorted(map(tuple, body["data"]["vertices"])) == [(0, 0), (0, 4), (9, 0), (9, 4)]


def test_fit_contour_bad_points(client):
    body = client.post("/api/polygons/fit-contour", json={"points": [[1, 2, 3]]}).json()
    assert not body["success"]


def test_service_counts_rejections(quad_image):
    gray = quad_image.copy()
    gray[300:305, 300:305] = 0
    payload = asyncio.run(PolygonDetectionService().detect(gray=gray))

    assert len(payload["polygons"]) == 1
    assert payload["rejections"] == {"size": 1}


def test_service_fits_hole_contours(quad_image):
    gray = quad_image.copy()
    gray[80:120, 70:110] = 255
    payload = asyncio.run(PolygonDetectionService().detect(gray=gray))

    assert len(payload["polygons"]) == 1
    holes = payload["polygons"][0]["holes"]
    assert len(holes) == 1
    expected = np.array([(69.5, 79.5), (109.5, 79.5), (109.5, 119.5), (69.5, 119.5)])
    vertices = np.array(holes[0])
    assert len(vertices) == 4
    for vertex in vertices:
        assert np.min(np.linalg.norm(expected - vertex, axis=1)) < 1.5


def test_polygon_without_hole_reports_none(client, quad_image):
    body = client.post("/api/polygons/detect", json={"grayBase64": encode_png(quad_image)}).json()
    assert body["data"]["polygons"][0]["holes"] == []

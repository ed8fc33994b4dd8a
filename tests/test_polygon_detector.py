from typing import List

import cv2
import numpy as np
import pytest

from conftest import render_polygon, to_binary
from services.polygon_fit import BinaryPolygonDetector, PolygonDetectorConfig, Rejection, resolve_detector_config
from services.polygon_fit.utils.distortion import RadialDistortion
from services.polygon_fit.utils.polygon_math import is_ccw


def match_corners(found: np.ndarray, expected: np.ndarray, tol: float) -> List[int]:
    """Index of the expected corner closest to each found vertex, checking the distance."""
    matched = []
    for vertex in found:
        dist = np.linalg.norm(expected - vertex, axis=1)
        best = int(np.argmin(dist))
        assert dist[best] <= tol, f"{vertex} is {dist[best]:.3f} from {expected[best]}"
        matched.append(best)
    return matched


def is_cyclic_order(matched: List[int], count: int, step: int) -> bool:
    return all((matched[(i + 1) % len(matched)] - matched[i]) % count == step % count for i in range(len(matched)))


def test_detect_quad(quad_image, quad_corners):
    detector = BinaryPolygonDetector.from_config()
    detector.process(quad_image, to_binary(quad_image))

    assert len(detector.found) == 1
    polygon = detector.found[0]
    assert polygon.shape == (4, 2)
    assert not is_ccw(polygon)

    matched = match_corners(polygon, np.array(quad_corners), 1.1)
    assert is_cyclic_order(matched, 4, 1)
    assert len(detector.found_contours) == 1
    assert detector.labeled is not None


def test_detect_quad_counter_clockwise(quad_image, quad_corners):
    detector = BinaryPolygonDetector.from_config(PolygonDetectorConfig(output_clockwise=False))
    detector.process(quad_image, to_binary(quad_image))

    assert len(detector.found) == 1
    polygon = detector.found[0]
    assert is_ccw(polygon)
    assert is_cyclic_order(match_corners(polygon, np.array(quad_corners), 1.1), 4, -1)


def test_detect_quad_without_refinement(quad_image, quad_corners):
    config = PolygonDetectorConfig(refine_corners=False, refine_lines=False)
    detector = BinaryPolygonDetector.from_config(config)
    detector.process(quad_image, to_binary(quad_image))

    assert len(detector.found) == 1
    match_corners(detector.found[0], np.array(quad_corners), 2.0)


def test_detect_quad_with_line_refinement(quad_image, quad_corners):
    detector = BinaryPolygonDetector.from_config(resolve_detector_config({"preset": "chessboard"}))
    detector.process(quad_image, to_binary(quad_image))

    assert len(detector.found) == 1
    match_corners(detector.found[0], np.array(quad_corners), 1.1)


def test_rejections_reported():
    gray = np.full((480, 640), 255, dtype=np.uint8)
    gray = np.minimum(gray, render_polygon(640, 480, [(300, 300), (306, 300), (306, 306), (300, 306)]))
    gray = np.minimum(gray, render_polygon(640, 480, [(-5, 100), (120, 100), (120, 220), (-5, 220)]))
    gray = np.minimum(gray, render_polygon(640, 480, [(350, 50), (550, 50), (450, 200)]))

    seen: List[Rejection] = []
    detector = BinaryPolygonDetector.from_config(diagnostics=seen.append)
    detector.process(gray, to_binary(gray))

    assert detector.found == []
    assert sorted(r.stage for r in seen) == ["border", "sides", "size"]
    assert [r.stage for r in detector.rejections] == [r.stage for r in seen]


def test_concave_rejected():
    gray = render_polygon(640, 480, [(200, 150), (450, 250), (200, 350), (300, 250)])
    seen: List[Rejection] = []
    detector = BinaryPolygonDetector.from_config(
        PolygonDetectorConfig(number_of_sides=[4, 5, 6]), diagnostics=seen.append
    )
    detector.process(gray, to_binary(gray))

    assert detector.found == []
    assert [r.stage for r in seen] == ["convex"]


def test_small_area_rejected():
    gray = np.full((480, 640), 255, dtype=np.uint8)
    gray[200:250, 100:350] = 0
    seen: List[Rejection] = []
    detector = BinaryPolygonDetector.from_config(
        PolygonDetectorConfig(min_contour_fraction=0.9), diagnostics=seen.append
    )
    detector.process(gray, to_binary(gray))

    assert [r.stage for r in seen] == ["area"]


def test_weak_edge_rejected(quad_image):
    seen: List[Rejection] = []
    detector = BinaryPolygonDetector.from_config(diagnostics=seen.append)
    detector.process(np.full_like(quad_image, 128), to_binary(quad_image))

    assert detector.found == []
    assert [r.stage for r in seen] == ["edge_before"]


def test_weak_edge_rejected_after_refinement(quad_image):
    seen: List[Rejection] = []
    config = PolygonDetectorConfig(check_edge_before=False, refine_corners=False, refine_lines=False)
    detector = BinaryPolygonDetector.from_config(config, diagnostics=seen.append)
    detector.process(np.full_like(quad_image, 128), to_binary(quad_image))

    assert [r.stage for r in seen] == ["edge_after"]


def test_refinement_failure_rejected(quad_image):
    seen: List[Rejection] = []
    config = PolygonDetectorConfig(edge_threshold=None)
    detector = BinaryPolygonDetector.from_config(config, diagnostics=seen.append)
    detector.process(np.full_like(quad_image, 128), to_binary(quad_image))

    assert [r.stage for r in seen] == ["refine"]


def test_results_reset_between_images(quad_image):
    detector = BinaryPolygonDetector.from_config()
    detector.process(quad_image, to_binary(quad_image))
    assert len(detector.found) == 1

    blank = np.full_like(quad_image, 255)
    detector.process(blank, to_binary(blank))
    assert detector.found == []
    assert detector.found_contours == []


def test_image_sizes_must_match(quad_image):
    detector = BinaryPolygonDetector.from_config()
    with pytest.raises(ValueError):
        detector.process(quad_image, np.zeros((10, 10), dtype=np.uint8))


def test_lens_distortion_bounds_checked():
    detector = BinaryPolygonDetector.from_config()
    detector.set_lens_distortion(640, 480, lambda p: p, lambda p: p)

    with pytest.raises(ValueError):
        detector.set_lens_distortion(640, 480, lambda p: p * 2.0, lambda p: p / 2.0)
    with pytest.raises(ValueError):
        detector.set_lens_distortion(640, 480, lambda p: p - 1.0, lambda p: p + 1.0)


def distort_image(undistorted: np.ndarray, lens: RadialDistortion) -> np.ndarray:
    """Image a distorted camera would see of a scene rendered without distortion."""
    height, width = undistorted.shape
    xs, ys = np.meshgrid(np.arange(width, dtype=np.float64), np.arange(height, dtype=np.float64))
    grid = np.stack([xs.ravel(), ys.ravel()], axis=1)
    source = lens.undistort_pixels(grid).reshape(height, width, 2).astype(np.float32)
    return cv2.remap(
        undistorted, source[..., 0], source[..., 1], cv2.INTER_LINEAR, borderMode=cv2.BORDER_REPLICATE
    )


@pytest.mark.parametrize("k1,k2", [(-0.1, -0.05), (0.1, 0.05)])
def test_lens_distortion(k1, k2):
    corners = np.array([[60.0, 300.0], [180.0, 300.0], [180.0, 420.0], [60.0, 420.0]])
    lens = RadialDistortion(500.0, 500.0, 320.0, 240.0, k1, k2, width=640, height=480)
    gray = distort_image(render_polygon(640, 480, corners), lens)

    to_undistorted, to_distorted = lens.transform_pair()
    detector = BinaryPolygonDetector.from_config()
    detector.set_lens_distortion(640, 480, to_undistorted, to_distorted)
    detector.process(gray, to_binary(gray))

    assert len(detector.found) == 1
    polygon = detector.found[0]
    assert not is_ccw(polygon)

    expected = lens.distort_pixels(corners)
    matched = match_corners(to_distorted(polygon), expected, 1.0)
    assert sorted(matched) == [0, 1, 2, 3]

import numpy as np
import pytest

from conftest import square_loop_contour
from services.polygon_fit import RefineCornerLinesToImage, RefinePolygonCornersToImage
from services.polygon_fit.utils.contours import BinaryContourFinder

TRUE_CORNERS = np.array([[49.5, 59.5], [149.5, 59.5], [149.5, 139.5], [49.5, 139.5]])


def rectangle_image() -> np.ndarray:
    """Dark rectangle covering pixels x 50..149, y 60..139."""
    img = np.full((200, 200), 255, dtype=np.uint8)
    img[60:140, 50:150] = 0
    return img


def test_refine_single_corner():
    alg = RefineCornerLinesToImage()
    alg.set_image(rectangle_image())
    assert alg.refine((51, 61), (63, 60), (50, 73))
    assert alg.refined_corner == pytest.approx([49.5, 59.5], abs=0.05)


def test_refine_single_corner_with_transform():
    img = np.full((200, 200), 255, dtype=np.uint8)
    img[60:140, 70:170] = 0
    alg = RefineCornerLinesToImage()
    alg.set_image(img)
    alg.set_transform(lambda pts: pts + np.array([20.0, 0.0]))
    assert alg.refine((51, 61), (63, 60), (50, 73))
    assert alg.refined_corner == pytest.approx([49.5, 59.5], abs=0.05)


def test_refine_fails_without_edges():
    alg = RefineCornerLinesToImage()
    alg.set_image(np.full((100, 100), 90, dtype=np.uint8))
    assert not alg.refine((50, 50), (62, 50), (50, 62))


def test_refine_fails_on_parallel_sides():
    alg = RefineCornerLinesToImage()
    alg.set_image(rectangle_image())
    assert not alg.refine((100, 60), (112, 60), (88, 60))


def test_refine_fails_on_short_sides():
    alg = RefineCornerLinesToImage()
    alg.set_image(rectangle_image())
    assert not alg.refine((50, 60), (53, 60), (50, 63))


def test_pick_end_index():
    contour = square_loop_contour()
    splits = [0, 9, 13, 23]
    alg = RefinePolygonCornersToImage(end_point_distance=12)
    assert alg.pick_end_index(contour, splits, 0, 1) == 9
    assert alg.pick_end_index(contour, splits, 0, -1) == 23
    assert alg.pick_end_index(contour, splits, 1, 1) == 13
    assert alg.pick_end_index(contour, splits, 1, -1) == 0

    alg = RefinePolygonCornersToImage(end_point_distance=3)
    assert alg.pick_end_index(contour, splits, 0, 1) == 3
    assert alg.pick_end_index(contour, splits, 0, -1) == 24


def rectangle_contour_and_splits():
    img = rectangle_image()
    contours = BinaryContourFinder().process(img < 128)
    assert len(contours) == 1
    contour = contours[0].external
    splits = []
    for corner in [(50, 60), (149, 60), (149, 139), (50, 139)]:
        splits.append(int(np.flatnonzero((contour == corner).all(axis=1))[0]))
    return img, contour, sorted(splits)


def test_refine_polygon():
    img, contour, splits = rectangle_contour_and_splits()
    alg = RefinePolygonCornersToImage()
    alg.set_image(img)
    polygon, good = alg.refine(contour, splits)

    assert good == 4
    for vertex in polygon:
        assert np.min(np.linalg.norm(TRUE_CORNERS - vertex, axis=1)) < 0.05


def test_refine_polygon_keeps_failed_corners():
    _, contour, splits = rectangle_contour_and_splits()
    alg = RefinePolygonCornersToImage()
    alg.set_image(np.full((200, 200), 200, dtype=np.uint8))
    polygon, good = alg.refine(contour, splits)

    assert good == 0
    assert polygon == pytest.approx(contour[splits].astype(float))


def test_refine_polygon_size_mismatch():
    img, contour, splits = rectangle_contour_and_splits()
    alg = RefinePolygonCornersToImage()
    alg.set_image(img)
    with pytest.raises(ValueError):
        alg.refine(contour, splits, np.zeros((3, 2)))

from __future__ import annotations

import math

import numpy as np
import pytest

from tracemetric.core.geometry import Point, apply_homography, euclidean_distance, invert_homography
from tracemetric.core.homography import (
    compute_homography,
    homography_from_rectangle,
    solve_linear_system,
    transform_world_homography,
)

H_TRUE = np.array(
    [
        [0.052, -0.004, -3.1],
        [0.006, 0.071, -1.7],
        [2.0e-5, 4.0e-4, 1.0],
    ],
    dtype=np.float64,
)


def _project(points: list[Point], H: np.ndarray) -> list[Point]:
    return [apply_homography(p, H) for p in points]


def test_solve_linear_system_matches_numpy():
    rng = np.random.default_rng(0)
    A = rng.normal(size=(6, 6)) + 6.0 * np.eye(6)
    b = rng.normal(size=6)
    x = solve_linear_system(A, b)
    assert x is not None
    assert np.allclose(x, np.linalg.solve(A, b), atol=1e-12)


def test_solve_linear_system_needs_pivoting():
    A = np.array([[0.0, 1.0], [1.0, 0.0]])
    x = solve_linear_system(A, np.array([2.0, 3.0]))
    assert x is not None
    assert np.allclose(x, [3.0, 2.0])


def test_solve_linear_system_singular_returns_none():
    A = np.array([[1.0, 2.0], [2.0, 4.0]])
    assert solve_linear_system(A, np.array([1.0, 2.0])) is None


def test_compute_homography_recovers_four_correspondences():
    src = [Point(10.0, 20.0), Point(610.0, 35.0), Point(590.0, 460.0), Point(30.0, 440.0)]
    dst = _project(src, H_TRUE)
    H = compute_homography(src, dst)
    assert H is not None
    assert H[2, 2] == pytest.approx(1.0)
    for p, q in zip(_project(src, H), dst):
        assert abs(p.x - q.x) < 1e-6
        assert abs(p.y - q.y) < 1e-6
    assert np.allclose(H, H_TRUE / H_TRUE[2, 2], rtol=1e-6, atol=1e-9)


def test_compute_homography_least_squares_on_exact_data():
    rng = np.random.default_rng(1)
    src = [Point(float(x), float(y)) for x, y in rng.uniform(0.0, 640.0, size=(12, 2))]
    dst = _project(src, H_TRUE)
    H = compute_homography(np.array([[p.x, p.y] for p in src]), np.array([[p.x, p.y] for p in dst]))
    assert H is not None
    for p, q in zip(_project(src, H), dst):
        assert abs(p.x - q.x) < 1e-6
        assert abs(p.y - q.y) < 1e-6


def test_compute_homography_insufficient_points():
    src = [Point(0.0, 0.0), Point(1.0, 0.0), Point(1.0, 1.0)]
    assert compute_homography(src, src) is None
    assert compute_homography(src + [Point(0.0, 1.0)], src) is None


def test_compute_homography_singular_configuration():
    src = [Point(5.0, 5.0)] * 4
    dst = [Point(0.0, 0.0), Point(1.0, 0.0), Point(1.0, 1.0), Point(0.0, 1.0)]
    assert compute_homography(src, dst) is None


def test_homography_from_rectangle():
    Hi = invert_homography(H_TRUE)
    assert Hi is not None
    world = [Point(0.0, 0.0), Point(4.5, 0.0), Point(4.5, 2.0), Point(0.0, 2.0)]
    corners = _project(world, Hi)

    H = homography_from_rectangle(corners, 4.5, 2.0)
    assert H is not None
    for p, q in zip(_project(corners, H), world):
        assert abs(p.x - q.x) < 1e-6
        assert abs(p.y - q.y) < 1e-6

    undefined = corners[:3] + [Point(0.0, 0.0, defined=False)]
    assert homography_from_rectangle(undefined, 4.5, 2.0) is None


def test_transform_world_homography_preserves_distances():
    a = Point(100.0, 200.0)
    b = Point(400.0, 260.0)
    d0 = euclidean_distance(apply_homography(a, H_TRUE), apply_homography(b, H_TRUE))
    for kind in ("rotate", "flip_h", "flip_v"):
        Ht = transform_world_homography(H_TRUE, kind)
        d = euclidean_distance(apply_homography(a, Ht), apply_homography(b, Ht))
        assert math.isclose(d, d0, rel_tol=1e-12)

    pa = apply_homography(a, H_TRUE)
    flipped = apply_homography(a, transform_world_homography(H_TRUE, "flip_v"))
    assert flipped.x == pytest.approx(pa.x)
    assert flipped.y == pytest.approx(-pa.y)

    with pytest.raises(ValueError):
        transform_world_homography(H_TRUE, "shear")  # type: ignore[arg-type]


def test_compute_homography_agrees_with_opencv():
    cv2 = pytest.importorskip("cv2")
    rng = np.random.default_rng(2)
    src = rng.uniform(0.0, 640.0, size=(8, 2))
    dst = np.array([[p.x, p.y] for p in _project([Point(*xy) for xy in src], H_TRUE)])

    H_cv, _mask = cv2.findHomography(src, dst, method=0)
    H = compute_homography(src, dst)
    assert H_cv is not None and H is not None
    assert np.allclose(H, H_cv / H_cv[2, 2], rtol=1e-5, atol=1e-8)

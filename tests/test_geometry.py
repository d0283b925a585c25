import math

import numpy as np

from tracemetric.core.distortion import RadialDistortion, undistort, undistort_xy
from tracemetric.core.geometry import (
    Point,
    apply_homography,
    apply_homography_xy,
    compose_homography,
    invert_homography,
    normalize_points,
)


def _random_homography(rng: np.random.Generator) -> np.ndarray:
    H = np.eye(3, dtype=np.float64)
    H[:2, :2] += rng.normal(scale=0.1, size=(2, 2))
    H[:2, 2] = rng.uniform(-20.0, 20.0, size=2)
    H[2, :2] = rng.uniform(-1e-4, 1e-4, size=2)
    return H


def test_undistort_is_identity_without_k1():
    rng = np.random.default_rng(0)
    center = Point(320.0, 240.0)
    for x, y in rng.uniform(-1000.0, 2000.0, size=(200, 2)):
        p = Point(float(x), float(y))
        assert undistort(p, 0.0, center, 800.0) == p


def test_undistort_moves_points_radially():
    center = Point(320.0, 240.0)
    lens = RadialDistortion(k1=0.2, center=center, diagonal=800.0)
    assert lens.undistort_point(center) == center

    p = Point(620.0, 240.0)
    q = lens.undistort_point(p)
    r2 = 300.0**2 / 800.0**2
    assert math.isclose(q.x, 320.0 + 300.0 / (1.0 + 0.2 * r2), rel_tol=1e-12)
    assert q.y == 240.0


def test_undistort_xy_matches_scalar_version():
    rng = np.random.default_rng(1)
    center = Point(100.0, 50.0)
    xy = rng.uniform(0.0, 200.0, size=(50, 2))
    x, y = undistort_xy(xy[:, 0], xy[:, 1], -0.3, center, 223.6)
    for i in range(xy.shape[0]):
        q = undistort(Point(float(xy[i, 0]), float(xy[i, 1])), -0.3, center, 223.6)
        assert q.x == x[i]
        assert q.y == y[i]


def test_lens_from_image_size():
    lens = RadialDistortion.from_image_size(640, 480, k1=0.1)
    assert lens.center == Point(320.0, 240.0)
    assert lens.diagonal == 800.0
    assert lens.k1 == 0.1


def test_homography_roundtrip():
    rng = np.random.default_rng(2)
    for _ in range(10):
        H = _random_homography(rng)
        Hi = invert_homography(H)
        assert Hi is not None
        for x, y in rng.uniform(0.0, 500.0, size=(50, 2)):
            p = Point(float(x), float(y))
            q = apply_homography(apply_homography(p, H), Hi)
            assert abs(q.x - p.x) < 1e-8
            assert abs(q.y - p.y) < 1e-8


def test_apply_homography_degenerate_w_returns_origin():
    H = np.array([[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [1.0, 0.0, -5.0]])
    assert apply_homography(Point(5.0, 3.0), H) == Point(0.0, 0.0)
    X, Y = apply_homography_xy(H, np.array([5.0, 6.0]), np.array([3.0, 3.0]))
    assert X[0] == 0.0 and Y[0] == 0.0
    assert X[1] == 6.0 and Y[1] == 3.0


def test_apply_homography_accepts_row_major_list():
    H = [2.0, 0.0, 1.0, 0.0, 3.0, -1.0, 0.0, 0.0, 1.0]
    assert apply_homography(Point(1.0, 1.0), H) == Point(3.0, 2.0)


def test_compose_applies_right_then_left():
    rng = np.random.default_rng(3)
    A = _random_homography(rng)
    B = _random_homography(rng)
    p = Point(123.0, 45.0)
    direct = apply_homography(apply_homography(p, B), A)
    composed = apply_homography(p, compose_homography(A, B))
    assert math.isclose(direct.x, composed.x, rel_tol=1e-12, abs_tol=1e-9)
    assert math.isclose(direct.y, composed.y, rel_tol=1e-12, abs_tol=1e-9)


def test_normalize_points_centroid_and_scale():
    rng = np.random.default_rng(4)
    pts = rng.uniform(0.0, 1000.0, size=(20, 2))
    norm, T = normalize_points(pts)
    assert np.allclose(norm.mean(axis=0), 0.0, atol=1e-12)
    assert math.isclose(float(np.mean(np.linalg.norm(norm, axis=1))), math.sqrt(2.0), rel_tol=1e-12)

    ph = np.concatenate([pts, np.ones((pts.shape[0], 1))], axis=1)
    assert np.allclose((T @ ph.T).T[:, :2], norm, atol=1e-12)


def test_normalize_points_coincident_set():
    norm, T = normalize_points([Point(5.0, 5.0), Point(5.0, 5.0), Point(5.0, 5.0)])
    assert np.all(norm == 0.0)
    assert T[0, 0] == math.sqrt(2.0)

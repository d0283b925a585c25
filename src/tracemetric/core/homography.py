from __future__ import annotations

import logging
from typing import Literal, Sequence

import numpy as np

from tracemetric.core.distortion import RadialDistortion
from tracemetric.core.geometry import Point, as_homography, normalize_points, points_to_array, similarity_inverse

logger = logging.getLogger(__name__)

PIVOT_TOL = 1e-18


def solve_linear_system(A: np.ndarray, b: np.ndarray, pivot_tol: float = PIVOT_TOL) -> np.ndarray | None:
    """
    Gaussian elimination with partial pivoting.

    Returns None when a pivot falls below `pivot_tol` in magnitude (numerically
    singular system) instead of raising.
    """
    A = np.array(A, dtype=np.float64)
    b = np.array(b, dtype=np.float64).reshape(-1)
    n = A.shape[0]
    if A.shape != (n, n) or b.shape[0] != n:
        raise ValueError("A must be square and match b")

    M = np.concatenate([A, b[:, None]], axis=1)
    for col in range(n):
        pivot_row = col + int(np.argmax(np.abs(M[col:, col])))
        if abs(M[pivot_row, col]) < pivot_tol:
            logger.debug("singular system: pivot %.3e at column %d", M[pivot_row, col], col)
            return None
        if pivot_row != col:
            M[[col, pivot_row]] = M[[pivot_row, col]]
        M[col + 1 :] -= (M[col + 1 :, col] / M[col, col])[:, None] * M[col]

    x = np.zeros((n,), dtype=np.float64)
    for row in range(n - 1, -1, -1):
        x[row] = (M[row, n] - M[row, row + 1 : n] @ x[row + 1 :]) / M[row, row]
    return x


def _dlt_system(src: np.ndarray, dst: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    n = src.shape[0]
    A = np.zeros((2 * n, 8), dtype=np.float64)
    b = np.zeros((2 * n,), dtype=np.float64)
    x, y = src[:, 0], src[:, 1]
    u, v = dst[:, 0], dst[:, 1]
    A[0::2, 0] = x
    A[0::2, 1] = y
    A[0::2, 2] = 1.0
    A[0::2, 6] = -u * x
    A[0::2, 7] = -u * y
    A[1::2, 3] = x
    A[1::2, 4] = y
    A[1::2, 5] = 1.0
    A[1::2, 6] = -v * x
    A[1::2, 7] = -v * y
    b[0::2] = u
    b[1::2] = v
    return A, b


def compute_homography(
    src_points: Sequence[Point] | np.ndarray, dst_points: Sequence[Point] | np.ndarray
) -> np.ndarray | None:
    """
    Exact 8-parameter DLT homography mapping src -> dst (h22 fixed to 1).

    Both point sets are Hartley-normalized first. Four correspondences give a
    square system; more are solved in least squares through the normal
    equations. Returns None for fewer than 4 correspondences or a singular
    system.
    """
    src = _as_array(src_points)
    dst = _as_array(dst_points)
    if src.shape[0] < 4 or src.shape[0] != dst.shape[0]:
        return None

    src_n, T_src = normalize_points(src)
    dst_n, T_dst = normalize_points(dst)
    A, b = _dlt_system(src_n, dst_n)
    if A.shape[0] > 8:
        A, b = A.T @ A, A.T @ b

    h = solve_linear_system(A, b)
    if h is None:
        return None

    Hn = np.append(h, 1.0).reshape(3, 3)
    H = similarity_inverse(T_dst) @ Hn @ T_src
    if abs(H[2, 2]) < 1e-12 or not np.all(np.isfinite(H)):
        return None
    return H / H[2, 2]


def homography_from_rectangle(
    corners: Sequence[Point],
    width: float,
    height: float,
    lens: RadialDistortion | None = None,
) -> np.ndarray | None:
    """
    Image -> world homography from the four corners of a known rectangle.

    Corner order is top-left, top-right, bottom-right, bottom-left; the world
    frame has the top-left corner at the origin.
    """
    if len(corners) != 4 or not all(p.defined for p in corners):
        return None
    if lens is not None:
        corners = [lens.undistort_point(p) for p in corners]
    world = [Point(0.0, 0.0), Point(width, 0.0), Point(width, height), Point(0.0, height)]
    return compute_homography(corners, world)


_WORLD_TRANSFORMS = {
    "rotate": np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]]),
    "flip_h": np.array([[-1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]),
    "flip_v": np.array([[1.0, 0.0, 0.0], [0.0, -1.0, 0.0], [0.0, 0.0, 1.0]]),
}


def transform_world_homography(H: np.ndarray, kind: Literal["rotate", "flip_h", "flip_v"]) -> np.ndarray:
    """Re-orient the world frame of an image -> world homography (distances are preserved)."""
    if kind not in _WORLD_TRANSFORMS:
        raise ValueError(f"unsupported world transform: {kind}")
    return _WORLD_TRANSFORMS[kind] @ as_homography(H)


def _as_array(points: Sequence[Point] | np.ndarray) -> np.ndarray:
    if isinstance(points, np.ndarray):
        return np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return points_to_array(points)

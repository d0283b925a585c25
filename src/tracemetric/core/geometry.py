from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np


@dataclass(frozen=True)
class Point:
    """Pixel-space (or world-space) 2D point. `defined` is False for unplaced UI points."""

    x: float
    y: float
    defined: bool = True


def as_homography(H: np.ndarray | Sequence[float]) -> np.ndarray:
    """Accept a 3x3 matrix or 9 row-major numbers; return a float64 (3,3) array."""
    H = np.asarray(H, dtype=np.float64)
    if H.size != 9:
        raise ValueError(f"homography must have 9 entries (got {H.size})")
    return H.reshape(3, 3)


def apply_homography_xy(H: np.ndarray, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Projective transform of arrays of points.

    Points whose homogeneous scale is near zero (|w| < 1e-12) map to the origin
    instead of producing inf/nan.
    """
    H = as_homography(H)
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    w = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    bad = np.abs(w) < 1e-12
    w_safe = np.where(bad, 1.0, w)
    X = np.where(bad, 0.0, (H[0, 0] * x + H[0, 1] * y + H[0, 2]) / w_safe)
    Y = np.where(bad, 0.0, (H[1, 0] * x + H[1, 1] * y + H[1, 2]) / w_safe)
    return X, Y


def apply_homography(point: Point, H: np.ndarray | Sequence[float]) -> Point:
    X, Y = apply_homography_xy(H, point.x, point.y)
    return Point(float(X), float(Y))


def compose_homography(A: np.ndarray, B: np.ndarray) -> np.ndarray:
    """A @ B: apply B first, then A."""
    return as_homography(A) @ as_homography(B)


def invert_homography(H: np.ndarray) -> np.ndarray | None:
    H = as_homography(H)
    try:
        Hi = np.linalg.inv(H)
    except np.linalg.LinAlgError:
        return None
    if not np.all(np.isfinite(Hi)):
        return None
    if abs(Hi[2, 2]) > 1e-12:
        Hi = Hi / Hi[2, 2]
    return Hi


def euclidean_distance(a: Point, b: Point) -> float:
    dx = a.x - b.x
    dy = a.y - b.y
    return math.sqrt(dx * dx + dy * dy)


def points_to_array(points: Iterable[Point]) -> np.ndarray:
    return np.asarray([[p.x, p.y] for p in points], dtype=np.float64).reshape(-1, 2)


def normalize_points(points: np.ndarray | Sequence[Point]) -> tuple[np.ndarray, np.ndarray]:
    """
    Hartley normalization: move the centroid to the origin and scale so the mean
    distance to it is sqrt(2).

    Returns (normalized (N,2), T) with normalized = T applied to the input points.
    A degenerate set (all points coincident) keeps scale sqrt(2)/1.
    """
    if len(points) and isinstance(points[0], Point):
        pts = points_to_array(points)
    else:
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    centroid = pts.mean(axis=0)
    mean_dist = float(np.mean(np.sqrt(np.sum((pts - centroid[None, :]) ** 2, axis=1))))
    scale = math.sqrt(2.0) / (mean_dist or 1.0)

    T = np.array(
        [
            [scale, 0.0, -scale * centroid[0]],
            [0.0, scale, -scale * centroid[1]],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )
    return (pts - centroid[None, :]) * scale, T


def similarity_inverse(T: np.ndarray) -> np.ndarray:
    """Closed-form inverse of a Hartley similarity [[s,0,tx],[0,s,ty],[0,0,1]]."""
    s = float(T[0, 0])
    return np.array(
        [[1.0 / s, 0.0, -T[0, 2] / s], [0.0, 1.0 / s, -T[1, 2] / s], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )

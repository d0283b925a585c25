from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from tracemetric.core.geometry import Point


@dataclass(frozen=True)
class RadialDistortion:
    """
    Single-coefficient division model on pixel coordinates.

    The radius is measured from `center` and normalized by `diagonal` (the image
    diagonal in pixels), so `k1` is resolution independent.
    """

    k1: float = 0.0
    center: Point = Point(0.0, 0.0)
    diagonal: float = 1.0

    @classmethod
    def from_image_size(cls, width_px: int, height_px: int, k1: float = 0.0) -> "RadialDistortion":
        w = float(width_px)
        h = float(height_px)
        return cls(k1=float(k1), center=Point(w / 2.0, h / 2.0), diagonal=math.sqrt(w * w + h * h))

    def undistort_point(self, point: Point) -> Point:
        return undistort(point, self.k1, self.center, self.diagonal)


def undistort_xy(
    x: np.ndarray, y: np.ndarray, k1: float, center: Point, diagonal: float
) -> tuple[np.ndarray, np.ndarray]:
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if k1 == 0:
        return x, y
    dx = x - center.x
    dy = y - center.y
    r2 = (dx * dx + dy * dy) / (diagonal * diagonal)
    factor = 1.0 + k1 * r2
    return center.x + dx / factor, center.y + dy / factor


def undistort(point: Point, k1: float, center: Point, diagonal: float) -> Point:
    if k1 == 0:
        return point
    x, y = undistort_xy(point.x, point.y, k1, center, diagonal)
    return Point(float(x), float(y), point.defined)


def distortion_to_dict(m: RadialDistortion) -> dict:
    return {"k1": m.k1, "center": [m.center.x, m.center.y], "diagonal": m.diagonal}

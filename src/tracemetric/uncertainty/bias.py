from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from tracemetric.config import BiasConfig
from tracemetric.core.geometry import Point


@dataclass(frozen=True)
class ValidationEntry:
    """A segment with known true length, measured through the current calibration."""

    point_a: Point
    point_b: Point
    midpoint: Point
    measured_dist: float
    true_dist: float
    error_pct: float = 0.0
    uncertainty: float = 0.0
    id: str = ""


@dataclass(frozen=True)
class BiasPrediction:
    ratio: float
    confidence: float
    local_sigma: float  # relative (fraction of the distance)


def predict_bias(
    midpoint: Point,
    history: Sequence[ValidationEntry],
    config: BiasConfig | None = None,
) -> BiasPrediction:
    """
    Local correction ratio true/measured from validation segments near `midpoint`.

    Gaussian kernel weights over pixel distance between midpoints; the summed
    weight (clamped to [0, 1]) is used directly as the confidence. This is a
    fixed-bandwidth density proxy, not a calibrated Gaussian process: low
    confidence pulls the ratio back to 1 and widens the local sigma towards the
    baseline.
    """
    cfg = config or BiasConfig()
    neutral = BiasPrediction(ratio=1.0, confidence=0.0, local_sigma=float(cfg.base_sigma))
    if not history:
        return neutral

    mids = np.asarray([[e.midpoint.x, e.midpoint.y] for e in history], dtype=np.float64)
    measured = np.asarray([e.measured_dist for e in history], dtype=np.float64)
    true = np.asarray([e.true_dist for e in history], dtype=np.float64)

    d2 = (midpoint.x - mids[:, 0]) ** 2 + (midpoint.y - mids[:, 1]) ** 2
    weights = np.exp(-d2 / (2.0 * cfg.kernel_sigma_px * cfg.kernel_sigma_px))
    ratios = true / np.where(measured == 0.0, 1.0, measured)

    total = float(np.sum(weights))
    if total < cfg.min_weight:
        return neutral

    confidence = min(1.0, total)
    ratio = float(np.sum(ratios * weights)) / total
    return BiasPrediction(
        ratio=ratio * confidence + 1.0 * (1.0 - confidence),
        confidence=confidence,
        local_sigma=cfg.base_sigma * (1.0 - confidence) + cfg.floor_sigma * confidence,
    )

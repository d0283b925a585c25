from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Literal, Sequence

import numpy as np

from tracemetric.config import EngineConfig
from tracemetric.core.distortion import RadialDistortion
from tracemetric.core.geometry import Point, apply_homography, euclidean_distance
from tracemetric.core.homography import homography_from_rectangle
from tracemetric.core.line_fit import CalibrationLine, LineFitResult, optimize_homography_from_lines
from tracemetric.scene import Scene
from tracemetric.uncertainty.bias import ValidationEntry, predict_bias
from tracemetric.uncertainty.combine import DistanceEstimate, combine_uncertainty
from tracemetric.uncertainty.monte_carlo import run_monte_carlo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SceneCalibration:
    matrix: np.ndarray
    method: Literal["lines", "rectangle"]
    fit: LineFitResult | None = None


def measure_distance(point_a: Point, point_b: Point, H: np.ndarray, lens: RadialDistortion) -> float:
    """Raw metric distance between two pixel points (undistort, project, measure)."""
    a = apply_homography(lens.undistort_point(point_a), H)
    b = apply_homography(lens.undistort_point(point_b), H)
    return euclidean_distance(a, b)


def midpoint(a: Point, b: Point) -> Point:
    return Point((a.x + b.x) / 2.0, (a.y + b.y) / 2.0)


def build_validation_entries(
    lines: Sequence[CalibrationLine], H: np.ndarray, lens: RadialDistortion
) -> list[ValidationEntry]:
    """Measure every defined validation segment with a known length through `H`."""
    entries: list[ValidationEntry] = []
    for line in lines:
        if not line.active:
            continue
        measured = measure_distance(line.start, line.end, H, lens)
        entries.append(
            ValidationEntry(
                point_a=line.start,
                point_b=line.end,
                midpoint=midpoint(line.start, line.end),
                measured_dist=measured,
                true_dist=line.true_length,
                error_pct=(measured - line.true_length) / (line.true_length or 1.0) * 100.0,
                id=line.id,
            )
        )
    return entries


def validation_stats(entries: Sequence[ValidationEntry]) -> dict[str, float | None]:
    """Global MAPE (percent) and RMSE (meters); both None when there is nothing to compare."""
    if not entries:
        return {"global_mape": None, "rmse": None, "valid_count": 0}
    err = np.asarray([e.measured_dist - e.true_dist for e in entries], dtype=np.float64)
    pct = np.asarray([abs(e.error_pct) for e in entries], dtype=np.float64)
    return {
        "global_mape": float(np.mean(pct)),
        "rmse": float(np.sqrt(np.mean(err * err))),
        "valid_count": int(err.size),
    }


def estimate_distance(
    point_a: Point,
    point_b: Point,
    H: np.ndarray,
    lens: RadialDistortion,
    history: Sequence[ValidationEntry] = (),
    config: EngineConfig | None = None,
) -> DistanceEstimate:
    """
    Full measurement: raw distance, local bias correction, Monte Carlo precision,
    combined confidence intervals.
    """
    cfg = config or EngineConfig()
    raw = measure_distance(point_a, point_b, H, lens)
    bias = predict_bias(midpoint(point_a, point_b), history, cfg.bias)
    mc = run_monte_carlo(
        point_a,
        point_b,
        H,
        lens.k1,
        lens.center,
        lens.diagonal,
        iterations=cfg.monte_carlo.iterations,
        sigma=cfg.monte_carlo.sigma_px,
        seeds=range(cfg.monte_carlo.n_seeds),
    )
    est = combine_uncertainty(raw, mc, bias)
    if not math.isfinite(est.corrected_distance):
        logger.warning("non-finite distance for segment %s -> %s", point_a, point_b)
    return est


def calibrate_scene(scene: Scene, config: EngineConfig | None = None) -> SceneCalibration | None:
    """
    Calibrate from reference lines when at least two are usable, otherwise from
    the rectangle target. None when neither path has enough data.
    """
    lens = scene.lens
    fit = optimize_homography_from_lines(scene.calibration_lines, lens.k1, lens.center, lens.diagonal, config)
    if fit is not None:
        return SceneCalibration(matrix=fit.matrix, method="lines", fit=fit)
    if scene.rectangle is not None:
        rect = scene.rectangle
        H = homography_from_rectangle(rect.corners, rect.width, rect.height, lens)
        if H is not None:
            return SceneCalibration(matrix=H, method="rectangle")
        logger.debug("rectangle calibration is singular")
    return None

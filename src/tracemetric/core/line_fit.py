from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from tracemetric.config import EngineConfig, OptimizerConfig
from tracemetric.core.distortion import undistort
from tracemetric.core.geometry import Point, apply_homography, euclidean_distance, normalize_points
from tracemetric.uncertainty.monte_carlo import run_monte_carlo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationLine:
    """
    Reference segment with known real-world length (meters) and orientation.

    `angle` is in degrees: 0 is the world +Y axis ("N-S"), 90 the world +X axis
    ("E-W"); the unit direction is (sin(angle), cos(angle)).
    """

    start: Point
    end: Point
    true_length: float
    angle: float = 0.0
    defined: bool = True
    id: str = ""

    @property
    def active(self) -> bool:
        return bool(self.defined) and self.true_length > 0


@dataclass(frozen=True)
class LineProblem:
    """Normalized fitting data. `points` holds (start, end) pairs: rows 2i and 2i+1 belong to line i."""

    points: np.ndarray  # (2N,2)
    lengths: np.ndarray  # (N,)
    ux: np.ndarray  # (N,)
    uy: np.ndarray  # (N,)
    weights: np.ndarray  # (N,)
    angles_deg: np.ndarray  # (N,)
    ortho_pairs: np.ndarray  # (P,2) line indices


@dataclass(frozen=True)
class LineFitResult:
    matrix: np.ndarray  # (3,3), image (undistorted px) -> world (m), h22 == 1
    condition_number: float
    mape: float  # percent
    rmse: float  # meters
    line_errors: tuple[float, ...]  # ensemble mean length - true length, per active line
    anchor_index: int  # index into the active lines


def orthogonal_pairs(angles_deg: Sequence[float], tolerance_deg: float = 5.0) -> np.ndarray:
    """Pairs (i<j) whose ground-truth angles differ by ~90 or ~270 degrees."""
    pairs = []
    n = len(angles_deg)
    for i in range(n):
        for j in range(i + 1, n):
            diff = abs(float(angles_deg[i]) - float(angles_deg[j]))
            if abs(diff - 90.0) < tolerance_deg or abs(diff - 270.0) < tolerance_deg:
                pairs.append((i, j))
    return np.asarray(pairs, dtype=np.int64).reshape(-1, 2)


def build_line_problem(
    lines: Sequence[CalibrationLine],
    k1: float,
    center: Point,
    diagonal: float,
    config: OptimizerConfig | None = None,
) -> tuple[LineProblem, np.ndarray]:
    """Undistort and Hartley-normalize line endpoints. Returns (problem, T_norm)."""
    cfg = config or OptimizerConfig()
    raw: list[Point] = []
    for line in lines:
        raw.append(undistort(line.start, k1, center, diagonal))
        raw.append(undistort(line.end, k1, center, diagonal))
    normalized, T = normalize_points(raw)

    angles = np.asarray([line.angle for line in lines], dtype=np.float64)
    rad = np.deg2rad(angles)
    weights = np.ones((len(lines),), dtype=np.float64)
    weights[0] = float(cfg.anchor_weight)
    problem = LineProblem(
        points=normalized,
        lengths=np.asarray([line.true_length for line in lines], dtype=np.float64),
        ux=np.sin(rad),
        uy=np.cos(rad),
        weights=weights,
        angles_deg=angles,
        ortho_pairs=orthogonal_pairs(angles, cfg.ortho_tolerance_deg),
    )
    return problem, T


def perturbed_projection(h: np.ndarray, points: np.ndarray, eps: float) -> np.ndarray:
    """
    Project `points` through the homography [h, 1] and through its 8 forward
    perturbations (h + eps*e_i).

    Returns (9, M, 2): index 0 is the unperturbed projection, index i+1 the one
    with parameter i perturbed. Degenerate points (|w| < 1e-12) map to the origin.
    """
    base = np.append(np.asarray(h, dtype=np.float64).reshape(8), 1.0)
    Hs = np.tile(base, (9, 1))
    Hs[np.arange(1, 9), np.arange(8)] += eps
    x = points[None, :, 0]
    y = points[None, :, 1]
    w = Hs[:, 6, None] * x + Hs[:, 7, None] * y + Hs[:, 8, None]
    bad = np.abs(w) < 1e-12
    w = np.where(bad, 1.0, w)
    X = np.where(bad, 0.0, (Hs[:, 0, None] * x + Hs[:, 1, None] * y + Hs[:, 2, None]) / w)
    Y = np.where(bad, 0.0, (Hs[:, 3, None] * x + Hs[:, 4, None] * y + Hs[:, 5, None]) / w)
    return np.stack([X, Y], axis=-1)


def _directions(proj: np.ndarray) -> np.ndarray:
    return proj[..., 1::2, :] - proj[..., 0::2, :]


def length_alignment_gradient(proj: np.ndarray, problem: LineProblem, eps: float, lambda_align: float) -> np.ndarray:
    """Gradient of sum_i [res_len_i^2 + lambda_align * res_align_i^2] by forward differences."""
    v = _directions(proj)
    vx = v[..., 0]
    vy = v[..., 1]
    res_len = (np.sqrt(vx * vx + vy * vy) - problem.lengths) * problem.weights
    res_align = (vx * problem.uy - vy * problem.ux) * problem.weights
    d_len = (res_len[1:] - res_len[0]) / eps
    d_align = (res_align[1:] - res_align[0]) / eps
    return np.sum(2.0 * res_len[0] * d_len + 2.0 * lambda_align * res_align[0] * d_align, axis=1)


def spread_ratio(proj: np.ndarray) -> np.ndarray:
    """
    sqrt(l_min / l_max) of the 2x2 scatter matrix of each point set in `proj` (..., M, 2).

    Eigenvalues use the trace/determinant closed form; 0 means collinear points.
    """
    c = proj - proj.mean(axis=-2, keepdims=True)
    mxx = np.sum(c[..., 0] * c[..., 0], axis=-1)
    mxy = np.sum(c[..., 0] * c[..., 1], axis=-1)
    myy = np.sum(c[..., 1] * c[..., 1], axis=-1)
    tr = mxx + myy
    det = mxx * myy - mxy * mxy
    disc = np.sqrt(np.maximum(0.0, tr * tr - 4.0 * det))
    l_max = (tr + disc) / 2.0
    l_min = np.maximum(0.0, (tr - disc) / 2.0)
    s_max = np.sqrt(l_max)
    return np.sqrt(l_min) / np.where(s_max == 0.0, 1e-12, s_max)


def isotropy_gradient(proj: np.ndarray, eps: float, min_ratio: float, lambda_isotropy: float) -> np.ndarray:
    """Anti-collapse penalty lambda*(min_ratio - spread)^2, active only while spread < min_ratio."""
    ratio = spread_ratio(proj)
    if not ratio[0] < min_ratio:
        return np.zeros((8,), dtype=np.float64)
    penalty = (min_ratio - ratio) ** 2
    return lambda_isotropy * (penalty[1:] - penalty[0]) / eps


def orthogonality_gradient(proj: np.ndarray, pairs: np.ndarray, eps: float, lambda_ortho: float) -> np.ndarray:
    """Penalty lambda*cos^2 between projected directions of lines that are perpendicular in the world."""
    if pairs.shape[0] == 0:
        return np.zeros((8,), dtype=np.float64)
    v = _directions(proj)
    vi = v[:, pairs[:, 0], :]
    vj = v[:, pairs[:, 1], :]
    den = np.linalg.norm(vi, axis=-1) * np.linalg.norm(vj, axis=-1)
    cos = np.sum(vi * vj, axis=-1) / np.where(den == 0.0, 1e-12, den)
    return np.sum(lambda_ortho * 2.0 * cos[0] * (cos[1:] - cos[0]) / eps, axis=1)


def loss_gradient(h: np.ndarray, problem: LineProblem, config: OptimizerConfig) -> np.ndarray:
    eps = float(config.fd_epsilon)
    proj = perturbed_projection(h, problem.points, eps)
    g = length_alignment_gradient(proj, problem, eps, config.lambda_align)
    g = g + isotropy_gradient(proj, eps, config.min_spread_ratio, config.lambda_isotropy)
    g = g + orthogonality_gradient(proj, problem.ortho_pairs, eps, config.lambda_ortho)
    return g


def initial_parameters(problem: LineProblem, config: OptimizerConfig) -> np.ndarray:
    """
    Seed: line 0's length ratio on a scaled rotation that points line 0 along its
    ground-truth angle, plus a small perspective term so the last row is not
    degenerate at start.
    """
    d = problem.points[1] - problem.points[0]
    scale = float(problem.lengths[0]) / (math.hypot(float(d[0]), float(d[1])) or 1.0)
    theta = math.atan2(float(d[0]), float(d[1])) - math.radians(float(problem.angles_deg[0]))
    c = math.cos(theta)
    s = math.sin(theta)
    return np.array(
        [scale * c, -scale * s, 0.0, scale * s, scale * c, 0.0, 0.0, float(config.seed_perspective)],
        dtype=np.float64,
    )


def fit_normalized_parameters(problem: LineProblem, config: OptimizerConfig | None = None) -> np.ndarray:
    """
    Fixed-budget normalized gradient descent over h0..h7 (h8 = 1).

    There is no convergence test: all `config.iterations` steps are taken.
    """
    cfg = config or OptimizerConfig()
    h = initial_parameters(problem, cfg)
    step_size = float(cfg.initial_step)
    for it in range(int(cfg.iterations)):
        g = loss_gradient(h, problem, cfg)
        g_norm = math.sqrt(float(g @ g))
        if g_norm > 1e-12:
            h = h - min(step_size, cfg.max_step / g_norm) * g
        if it % cfg.decay_every == 0:
            step_size *= cfg.step_decay
    return h


def optimize_homography_from_lines(
    lines: Sequence[CalibrationLine],
    k1: float,
    center: Point,
    diagonal: float,
    config: EngineConfig | None = None,
) -> LineFitResult | None:
    """
    Fit an image -> world homography from reference segments.

    Returns None when fewer than two lines are defined with a positive length.
    Otherwise a matrix is always produced; the regularizers make collapse rare
    but the fit is not guaranteed to be the global optimum.
    """
    cfg = config or EngineConfig()
    active = [line for line in lines if line.active]
    if len(active) < 2:
        logger.debug("line fit skipped: %d active line(s), need >= 2", len(active))
        return None

    problem, T = build_line_problem(active, k1, center, diagonal, cfg.optimizer)
    logger.debug(
        "line fit: %d lines, %d orthogonal pairs, %d iterations",
        len(active),
        problem.ortho_pairs.shape[0],
        cfg.optimizer.iterations,
    )
    h = fit_normalized_parameters(problem, cfg.optimizer)
    final_spread = float(spread_ratio(perturbed_projection(h, problem.points, 0.0)[0]))
    if final_spread < cfg.optimizer.min_spread_ratio:
        logger.warning("line fit ended near collapse (spread ratio %.3f)", final_spread)

    H = np.append(h, 1.0).reshape(3, 3) @ T

    def project(p: Point, M: np.ndarray) -> Point:
        return apply_homography(undistort(p, k1, center, diagonal), M)

    # Scale lock on the longest reference.
    anchor_index = 0
    for i, line in enumerate(active):
        if line.true_length > active[anchor_index].true_length:
            anchor_index = i
    anchor = active[anchor_index]
    calc = euclidean_distance(project(anchor.start, H), project(anchor.end, H))
    s = anchor.true_length / (calc or 1.0)
    H = np.diag([s, s, 1.0]) @ H

    # Line 0 start at the origin, direction on its ground-truth angle.
    p1 = project(active[0].start, H)
    p2 = project(active[0].end, H)
    Tr = np.array([[1.0, 0.0, -p1.x], [0.0, 1.0, -p1.y], [0.0, 0.0, 1.0]], dtype=np.float64)
    theta = math.atan2(p2.x - p1.x, p2.y - p1.y) - math.radians(active[0].angle)
    c = math.cos(theta)
    sn = math.sin(theta)
    R = np.array([[c, -sn, 0.0], [sn, c, 0.0], [0.0, 0.0, 1.0]], dtype=np.float64)
    H = R @ Tr @ H

    # Image rows growing downwards must map to decreasing world Y.
    up = apply_homography(Point(center.x, center.y - diagonal / 2.0), H)
    down = apply_homography(Point(center.x, center.y + diagonal / 2.0), H)
    if up.y < down.y:
        H = np.diag([1.0, -1.0, 1.0]) @ H
    if abs(H[2, 2]) > 1e-12:
        H = H / H[2, 2]

    mc_cfg = cfg.monte_carlo
    errors = []
    for line in active:
        mc = run_monte_carlo(
            line.start,
            line.end,
            H,
            k1,
            center,
            diagonal,
            iterations=mc_cfg.iterations,
            sigma=mc_cfg.sigma_px,
            seeds=range(mc_cfg.n_seeds),
        )
        errors.append(mc.mean - line.true_length)
    err = np.asarray(errors, dtype=np.float64)
    lengths = np.asarray([line.true_length for line in active], dtype=np.float64)

    result = LineFitResult(
        matrix=H,
        condition_number=float(1.0 / (final_spread + 1e-9)),
        mape=float(np.mean(np.abs(err / lengths)) * 100.0),
        rmse=float(np.sqrt(np.mean(err * err))),
        line_errors=tuple(float(e) for e in err),
        anchor_index=anchor_index,
    )
    logger.debug(
        "line fit done: rmse=%.4f m mape=%.3f%% cond=%.2f", result.rmse, result.mape, result.condition_number
    )
    return result

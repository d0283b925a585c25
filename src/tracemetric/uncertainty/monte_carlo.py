from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from tracemetric.core.distortion import undistort_xy
from tracemetric.core.geometry import Point, apply_homography_xy, as_homography

LCG_MULTIPLIER = 1664525
LCG_INCREMENT = 1013904223
LCG_MODULUS = 2**32
ENSEMBLE_SEEDS = tuple(range(30))


@dataclass(frozen=True)
class MonteCarloResult:
    mean: float
    std_dev: float


def lcg_uniform(seeds: Sequence[int], count: int) -> np.ndarray:
    """
    `count` uniform draws in [0, 1) per seed from the linear congruential
    generator s <- (s*1664525 + 1013904223) mod 2^32, u = s / 2^32.

    Returns (len(seeds), count). Each row only depends on its own seed.
    """
    state = np.asarray(seeds, dtype=np.uint64).reshape(-1) % np.uint64(LCG_MODULUS)
    mult = np.uint64(LCG_MULTIPLIER)
    inc = np.uint64(LCG_INCREMENT)
    mask = np.uint64(LCG_MODULUS - 1)
    out = np.empty((state.shape[0], int(count)), dtype=np.float64)
    for i in range(int(count)):
        # state < 2^32 and mult < 2^21: the product fits in uint64 without wrapping.
        state = (state * mult + inc) & mask
        out[:, i] = state.astype(np.float64) / float(LCG_MODULUS)
    return out


def run_monte_carlo(
    point_a: Point,
    point_b: Point,
    H: np.ndarray,
    k1: float,
    center: Point,
    diagonal: float,
    iterations: int = 100,
    sigma: float = 2.0,
    seeds: Sequence[int] = ENSEMBLE_SEEDS,
) -> MonteCarloResult:
    """
    Ensemble Monte Carlo of the metric length of segment (A, B).

    For every seed, `iterations` noisy copies of both endpoints are drawn
    (uniform in [-sigma, sigma] per coordinate, order a.x, a.y, b.x, b.y),
    undistorted, projected and measured. Each seed contributes its sample mean
    and Bessel-corrected standard deviation; the result averages both over the
    ensemble. Identical inputs give bit-identical outputs.
    """
    H = as_homography(H)
    n = int(iterations)
    if n < 1:
        raise ValueError("iterations must be >= 1")

    u = lcg_uniform(seeds, 4 * n).reshape(-1, n, 4)
    noise = (u * 2.0 - 1.0) * float(sigma)

    ax, ay = undistort_xy(point_a.x + noise[..., 0], point_a.y + noise[..., 1], k1, center, diagonal)
    bx, by = undistort_xy(point_b.x + noise[..., 2], point_b.y + noise[..., 3], k1, center, diagonal)
    pax, pay = apply_homography_xy(H, ax, ay)
    pbx, pby = apply_homography_xy(H, bx, by)
    dx = pax - pbx
    dy = pay - pby
    dist = np.sqrt(dx * dx + dy * dy)  # (n_seeds, iterations)

    means = dist.mean(axis=1)
    stds = dist.std(axis=1, ddof=1 if n > 1 else 0)
    return MonteCarloResult(mean=float(means.mean()), std_dev=float(stds.mean()))

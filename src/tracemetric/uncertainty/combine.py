from __future__ import annotations

import math
from dataclasses import dataclass

from tracemetric.uncertainty.bias import BiasPrediction
from tracemetric.uncertainty.monte_carlo import MonteCarloResult

# Two-sided standard normal critical values.
Z_90 = 1.645
Z_95 = 1.960
Z_99 = 2.576

BASELINE_RELATIVE_SIGMA = 0.15


@dataclass(frozen=True)
class ConfidenceIntervals:
    """Symmetric half-widths around the corrected distance."""

    ci90: float
    ci95: float
    ci99: float

    def bounds(self, center: float) -> dict[str, tuple[float, float]]:
        return {
            "ci90": (center - self.ci90, center + self.ci90),
            "ci95": (center - self.ci95, center + self.ci95),
            "ci99": (center - self.ci99, center + self.ci99),
        }


@dataclass(frozen=True)
class DistanceEstimate:
    raw_distance: float
    corrected_distance: float
    bias_ratio: float
    bias_confidence: float
    sigma_monte_carlo: float
    sigma_bias: float
    sigma_total: float
    intervals: ConfidenceIntervals


def confidence_intervals(sigma_total: float) -> ConfidenceIntervals:
    return ConfidenceIntervals(ci90=Z_90 * sigma_total, ci95=Z_95 * sigma_total, ci99=Z_99 * sigma_total)


def interval_half_width(sigma: float, level: float) -> float:
    """
    Half-width of a two-sided normal interval at `level` (e.g. 0.95).

    Critical values are rounded to three decimals, which reproduces 1.645, 1.960
    and 2.576 for the standard levels.
    """
    from scipy.stats import norm  # type: ignore

    if not 0.0 < level < 1.0:
        raise ValueError("level must be in (0, 1)")
    z = round(float(norm.ppf(0.5 + level / 2.0)), 3)
    return z * float(sigma)


def combine_uncertainty(
    raw_distance: float,
    monte_carlo: MonteCarloResult,
    bias: BiasPrediction,
) -> DistanceEstimate:
    """
    Bias-corrected distance with Monte Carlo and bias-model uncertainty added in
    quadrature.

    The bias model's local sigma is relative, so it is scaled by the corrected
    distance; with zero confidence the baseline 15 % is used.
    """
    corrected = float(raw_distance) * bias.ratio
    if bias.confidence > 0:
        sigma_bias = bias.local_sigma * abs(corrected)
    else:
        sigma_bias = BASELINE_RELATIVE_SIGMA * abs(corrected)
    sigma_total = math.sqrt(monte_carlo.std_dev**2 + sigma_bias**2)
    return DistanceEstimate(
        raw_distance=float(raw_distance),
        corrected_distance=corrected,
        bias_ratio=bias.ratio,
        bias_confidence=bias.confidence,
        sigma_monte_carlo=monte_carlo.std_dev,
        sigma_bias=sigma_bias,
        sigma_total=sigma_total,
        intervals=confidence_intervals(sigma_total),
    )

from __future__ import annotations

import math

import pytest

from tracemetric.uncertainty.bias import BiasPrediction
from tracemetric.uncertainty.combine import combine_uncertainty, confidence_intervals, interval_half_width
from tracemetric.uncertainty.monte_carlo import MonteCarloResult


def test_neutral_bias_uses_baseline_sigma():
    est = combine_uncertainty(10.0, MonteCarloResult(mean=10.0, std_dev=0.3), BiasPrediction(1.0, 0.0, 0.15))
    assert est.corrected_distance == 10.0
    assert est.sigma_bias == pytest.approx(1.5)
    assert est.sigma_total == pytest.approx(math.sqrt(0.3**2 + 1.5**2))
    assert est.intervals.ci90 == pytest.approx(1.645 * est.sigma_total)
    assert est.intervals.ci95 == pytest.approx(1.960 * est.sigma_total)
    assert est.intervals.ci99 == pytest.approx(2.576 * est.sigma_total)


def test_confident_bias_scales_local_sigma_by_distance():
    est = combine_uncertainty(10.0, MonteCarloResult(mean=10.0, std_dev=0.1), BiasPrediction(1.05, 1.0, 0.02))
    assert est.corrected_distance == pytest.approx(10.5)
    assert est.sigma_bias == pytest.approx(0.21)
    assert est.sigma_total == pytest.approx(math.sqrt(0.1**2 + 0.21**2))
    assert est.bias_ratio == 1.05
    assert est.bias_confidence == 1.0


def test_intervals_are_ordered_and_symmetric():
    ci = confidence_intervals(0.5)
    assert ci.ci90 < ci.ci95 < ci.ci99
    lo, hi = ci.bounds(7.0)["ci95"]
    assert lo == pytest.approx(7.0 - 0.98)
    assert hi == pytest.approx(7.0 + 0.98)


def test_interval_half_width_reproduces_standard_critical_values():
    assert interval_half_width(1.0, 0.90) == pytest.approx(1.645)
    assert interval_half_width(1.0, 0.95) == pytest.approx(1.960)
    assert interval_half_width(1.0, 0.99) == pytest.approx(2.576)
    assert interval_half_width(2.0, 0.95) == pytest.approx(3.92)
    with pytest.raises(ValueError):
        interval_half_width(1.0, 1.0)

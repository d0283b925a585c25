from tracemetric import config
from tracemetric.api import calibrate_scene, estimate_distance, measure_distance
from tracemetric.core.geometry import Point, apply_homography
from tracemetric.core.homography import compute_homography
from tracemetric.core.line_fit import CalibrationLine, optimize_homography_from_lines
from tracemetric.uncertainty.bias import ValidationEntry, predict_bias
from tracemetric.uncertainty.monte_carlo import run_monte_carlo

__all__ = [
    "config",
    "Point",
    "CalibrationLine",
    "ValidationEntry",
    "apply_homography",
    "compute_homography",
    "optimize_homography_from_lines",
    "run_monte_carlo",
    "predict_bias",
    "calibrate_scene",
    "estimate_distance",
    "measure_distance",
]

from tracemetric.api.measurement import (
    SceneCalibration,
    build_validation_entries,
    calibrate_scene,
    estimate_distance,
    measure_distance,
    validation_stats,
)

__all__ = [
    "SceneCalibration",
    "build_validation_entries",
    "calibrate_scene",
    "estimate_distance",
    "measure_distance",
    "validation_stats",
]

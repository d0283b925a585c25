from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from tracemetric.api.measurement import (
    build_validation_entries,
    calibrate_scene,
    estimate_distance,
    validation_stats,
)
from tracemetric.config import EngineConfig, load_engine_config
from tracemetric.core.distortion import distortion_to_dict
from tracemetric.core.image_io import read_image_size
from tracemetric.scene import Scene, load_scene, parse_point_arg


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="tracemetric")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_scene_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("scene", type=Path, help="Scene JSON (tracemetric.scene.v0).")
        p.add_argument("--config", type=Path, default=None, help="Engine config JSON (tracemetric.config.v0).")
        p.add_argument(
            "--image",
            type=Path,
            default=None,
            help="Photograph the scene was annotated on; its size replaces the scene's image block.",
        )

    cal = sub.add_parser("calibrate", help="Fit the image -> world homography and report calibration metrics.")
    add_scene_args(cal)
    cal.add_argument("--out", type=Path, default=None, help="Write the calibration report as JSON.")

    meas = sub.add_parser("measure", help="Measure a segment with bias correction and confidence intervals.")
    add_scene_args(meas)
    meas.add_argument("--a", required=True, help="First endpoint in pixels, 'x,y'.")
    meas.add_argument("--b", required=True, help="Second endpoint in pixels, 'x,y'.")

    val = sub.add_parser("validate", help="Measure the scene's validation lines against their true lengths.")
    add_scene_args(val)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = load_engine_config(args.config) if args.config else EngineConfig()
    image_size = read_image_size(args.image) if args.image else None
    scene = load_scene(args.scene, image_size=image_size)

    calibration = calibrate_scene(scene, config)
    if calibration is None:
        print("No calibration: need >= 2 defined reference lines or a complete rectangle target.")
        return 1

    if args.cmd == "calibrate":
        report = _calibration_report(scene, calibration)
        print(json.dumps(report, indent=2, sort_keys=True))
        if args.out:
            args.out.parent.mkdir(parents=True, exist_ok=True)
            args.out.write_text(json.dumps(report, indent=2, sort_keys=True), encoding="utf-8")
            print(f"Wrote {args.out}")
        return 0

    history = build_validation_entries(scene.validation_lines, calibration.matrix, scene.lens)

    if args.cmd == "measure":
        a = parse_point_arg(args.a)
        b = parse_point_arg(args.b)
        est = estimate_distance(a, b, calibration.matrix, scene.lens, history, config)
        out = {
            "raw_distance_m": est.raw_distance,
            "corrected_distance_m": est.corrected_distance,
            "bias_ratio": est.bias_ratio,
            "bias_confidence": est.bias_confidence,
            "sigma_monte_carlo_m": est.sigma_monte_carlo,
            "sigma_bias_m": est.sigma_bias,
            "sigma_total_m": est.sigma_total,
            "intervals_m": {k: list(v) for k, v in est.intervals.bounds(est.corrected_distance).items()},
        }
        print(json.dumps(out, indent=2, sort_keys=True))
        return 0

    if args.cmd == "validate":
        out = {
            "stats": validation_stats(history),
            "entries": [
                {
                    "id": e.id,
                    "measured_m": e.measured_dist,
                    "true_m": e.true_dist,
                    "error_pct": e.error_pct,
                }
                for e in history
            ],
        }
        print(json.dumps(out, indent=2, sort_keys=True))
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


def _calibration_report(scene: Scene, calibration) -> dict[str, Any]:
    report: dict[str, Any] = {
        "schema_version": "tracemetric.calibration.v0",
        "method": calibration.method,
        "image": {"width_px": scene.width_px, "height_px": scene.height_px},
        "lens": distortion_to_dict(scene.lens),
        "matrix": np.asarray(calibration.matrix, dtype=np.float64).tolist(),
    }
    if calibration.fit is not None:
        fit = calibration.fit
        report["metrics"] = {
            "rmse_m": fit.rmse,
            "mape_pct": fit.mape,
            "condition_number": fit.condition_number,
            "anchor_index": fit.anchor_index,
            "line_errors_m": list(fit.line_errors),
        }
    return report


if __name__ == "__main__":
    raise SystemExit(main())

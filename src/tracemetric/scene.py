from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tracemetric.core.distortion import RadialDistortion
from tracemetric.core.geometry import Point
from tracemetric.core.line_fit import CalibrationLine

SCHEMA_VERSION = "tracemetric.scene.v0"


class SceneValidationError(ValueError):
    pass


@dataclass(frozen=True)
class RectangleTarget:
    corners: tuple[Point, Point, Point, Point]  # TL, TR, BR, BL in pixels
    width: float
    height: float


@dataclass(frozen=True)
class Scene:
    width_px: int
    height_px: int
    lens: RadialDistortion
    calibration_lines: tuple[CalibrationLine, ...]
    validation_lines: tuple[CalibrationLine, ...] = ()
    rectangle: RectangleTarget | None = None


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise SceneValidationError(msg)


def load_scene(path: Path, image_size: tuple[int, int] | None = None) -> Scene:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_scene(data, image_size=image_size)


def parse_scene(data: dict[str, Any], image_size: tuple[int, int] | None = None) -> Scene:
    """
    Parse a scene description. `image_size` (width, height) overrides / replaces
    the `image` block, e.g. when it was read from the photograph itself.
    """
    _require(data.get("schema_version") == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    if image_size is not None:
        w, h = int(image_size[0]), int(image_size[1])
    else:
        image = data.get("image", {})
        w_raw = image.get("width_px")
        h_raw = image.get("height_px")
        _require(w_raw is not None and h_raw is not None, "image.width_px and image.height_px are required")
        w, h = int(w_raw), int(h_raw)
    _require(w > 0 and h > 0, "image.width_px and image.height_px must be > 0")

    lens = data.get("lens", {})
    _require(isinstance(lens, dict), "lens must be an object")
    k1 = float(lens.get("k1", 0.0))
    _require(k1 > -4.0, "lens.k1 must be > -4 (the division model folds inside the image otherwise)")

    cal_raw = data.get("calibration_lines", [])
    val_raw = data.get("validation_lines", [])
    _require(isinstance(cal_raw, list), "calibration_lines must be a list")
    _require(isinstance(val_raw, list), "validation_lines must be a list")
    calibration = tuple(_parse_line(obj, f"calibration_lines[{i}]") for i, obj in enumerate(cal_raw))
    validation = tuple(_parse_line(obj, f"validation_lines[{i}]") for i, obj in enumerate(val_raw))

    rectangle = None
    if data.get("rectangle") is not None:
        rectangle = _parse_rectangle(data["rectangle"])

    return Scene(
        width_px=w,
        height_px=h,
        lens=RadialDistortion.from_image_size(w, h, k1),
        calibration_lines=calibration,
        validation_lines=validation,
        rectangle=rectangle,
    )


def _parse_point(raw: Any, where: str) -> Point:
    _require(isinstance(raw, (list, tuple)) and len(raw) == 2, f"{where} must be [x,y]")
    return Point(float(raw[0]), float(raw[1]))


def _parse_line(obj: Any, where: str) -> CalibrationLine:
    _require(isinstance(obj, dict), f"{where} must be an object")
    for k in ("start", "end", "true_length_m"):
        _require(k in obj, f"{where}.{k} is required")
    length = float(obj["true_length_m"])
    _require(length >= 0.0, f"{where}.true_length_m must be >= 0")
    return CalibrationLine(
        start=_parse_point(obj["start"], f"{where}.start"),
        end=_parse_point(obj["end"], f"{where}.end"),
        true_length=length,
        angle=float(obj.get("angle_deg", 0.0)),
        defined=bool(obj.get("defined", True)),
        id=str(obj.get("id", where)),
    )


def _parse_rectangle(obj: Any) -> RectangleTarget:
    _require(isinstance(obj, dict), "rectangle must be an object")
    corners = obj.get("corners_px")
    _require(isinstance(corners, list) and len(corners) == 4, "rectangle.corners_px must list 4 corners (TL,TR,BR,BL)")
    width = float(obj.get("width_m", 0.0))
    height = float(obj.get("height_m", 0.0))
    _require(width > 0.0 and height > 0.0, "rectangle.width_m and rectangle.height_m must be > 0")
    pts = tuple(_parse_point(c, f"rectangle.corners_px[{i}]") for i, c in enumerate(corners))
    return RectangleTarget(corners=pts, width=width, height=height)  # type: ignore[arg-type]


def parse_point_arg(text: str) -> Point:
    """'x,y' -> Point (CLI helper)."""
    parts = [p.strip() for p in str(text).split(",")]
    _require(len(parts) == 2, f"point must be 'x,y' (got {text!r})")
    try:
        return Point(float(parts[0]), float(parts[1]))
    except ValueError as e:
        raise SceneValidationError(f"point must be numeric 'x,y' (got {text!r})") from e

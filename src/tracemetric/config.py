from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

SCHEMA_VERSION = "tracemetric.config.v0"


class ConfigValidationError(ValueError):
    pass


@dataclass(frozen=True)
class OptimizerConfig:
    iterations: int = 30000
    initial_step: float = 1e-6
    step_decay: float = 0.65
    decay_every: int = 3000
    max_step: float = 0.1
    anchor_weight: float = 50.0
    lambda_align: float = 1.0
    lambda_isotropy: float = 1e6
    lambda_ortho: float = 5e5
    min_spread_ratio: float = 0.2
    fd_epsilon: float = 1e-8
    ortho_tolerance_deg: float = 5.0
    seed_perspective: float = 1e-4


@dataclass(frozen=True)
class MonteCarloConfig:
    iterations: int = 100
    sigma_px: float = 2.0
    n_seeds: int = 30


@dataclass(frozen=True)
class BiasConfig:
    kernel_sigma_px: float = 800.0
    min_weight: float = 0.1
    base_sigma: float = 0.15
    floor_sigma: float = 0.02


@dataclass(frozen=True)
class EngineConfig:
    optimizer: OptimizerConfig = field(default_factory=OptimizerConfig)
    monte_carlo: MonteCarloConfig = field(default_factory=MonteCarloConfig)
    bias: BiasConfig = field(default_factory=BiasConfig)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def load_engine_config(path: Path) -> EngineConfig:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_engine_config(data)


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    schema_version = data.get("schema_version", SCHEMA_VERSION)
    _require(schema_version == SCHEMA_VERSION, f"schema_version must be {SCHEMA_VERSION}")

    optimizer = _parse_section(OptimizerConfig, data.get("optimizer", {}), "optimizer")
    _require(optimizer.iterations >= 0, "optimizer.iterations must be >= 0")
    _require(optimizer.decay_every >= 1, "optimizer.decay_every must be >= 1")
    _require(optimizer.initial_step > 0.0, "optimizer.initial_step must be > 0")
    _require(0.0 < optimizer.step_decay <= 1.0, "optimizer.step_decay must be in (0, 1]")
    _require(optimizer.max_step > 0.0, "optimizer.max_step must be > 0")
    _require(optimizer.fd_epsilon > 0.0, "optimizer.fd_epsilon must be > 0")
    _require(0.0 < optimizer.min_spread_ratio <= 1.0, "optimizer.min_spread_ratio must be in (0, 1]")
    for name in ("anchor_weight", "lambda_align", "lambda_isotropy", "lambda_ortho", "ortho_tolerance_deg"):
        _require(getattr(optimizer, name) >= 0.0, f"optimizer.{name} must be >= 0")

    monte_carlo = _parse_section(MonteCarloConfig, data.get("monte_carlo", {}), "monte_carlo")
    _require(monte_carlo.iterations >= 1, "monte_carlo.iterations must be >= 1")
    _require(monte_carlo.n_seeds >= 1, "monte_carlo.n_seeds must be >= 1")
    _require(monte_carlo.sigma_px >= 0.0, "monte_carlo.sigma_px must be >= 0")

    bias = _parse_section(BiasConfig, data.get("bias", {}), "bias")
    _require(bias.kernel_sigma_px > 0.0, "bias.kernel_sigma_px must be > 0")
    _require(bias.min_weight >= 0.0, "bias.min_weight must be >= 0")
    _require(0.0 <= bias.floor_sigma <= bias.base_sigma, "bias sigmas must satisfy 0 <= floor_sigma <= base_sigma")

    return EngineConfig(optimizer=optimizer, monte_carlo=monte_carlo, bias=bias)


def engine_config_to_dict(cfg: EngineConfig) -> dict[str, Any]:
    out: dict[str, Any] = {"schema_version": SCHEMA_VERSION}
    for name in ("optimizer", "monte_carlo", "bias"):
        section = getattr(cfg, name)
        out[name] = {f.name: getattr(section, f.name) for f in fields(section)}
    return out


def _parse_section(cls, raw: Any, name: str):
    _require(isinstance(raw, dict), f"{name} must be an object")
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(known))
    _require(not unknown, f"{name} has unknown keys: {unknown}")

    values: dict[str, Any] = {}
    for key, value in raw.items():
        default = known[key].default
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"{name}.{key} must be numeric (got {value!r})") from e
        if isinstance(default, int):
            _require(number.is_integer(), f"{name}.{key} must be an integer (got {value!r})")
            values[key] = int(number)
        else:
            values[key] = number
    return cls(**values)

from __future__ import annotations

import json
from pathlib import Path

import pytest

from tracemetric.config import (
    ConfigValidationError,
    EngineConfig,
    engine_config_to_dict,
    load_engine_config,
    parse_engine_config,
)


def test_defaults_without_sections() -> None:
    cfg = parse_engine_config({})
    assert cfg == EngineConfig()
    assert cfg.optimizer.iterations == 30000
    assert cfg.optimizer.anchor_weight == 50.0
    assert cfg.monte_carlo.n_seeds == 30
    assert cfg.bias.kernel_sigma_px == 800.0


def test_partial_override_and_casting() -> None:
    cfg = parse_engine_config(
        {
            "schema_version": "tracemetric.config.v0",
            "optimizer": {"iterations": "500", "lambda_ortho": 1},
            "monte_carlo": {"sigma_px": 1.5},
        }
    )
    assert cfg.optimizer.iterations == 500
    assert isinstance(cfg.optimizer.iterations, int)
    assert cfg.optimizer.lambda_ortho == 1.0
    assert isinstance(cfg.optimizer.lambda_ortho, float)
    assert cfg.monte_carlo.sigma_px == 1.5
    assert cfg.monte_carlo.iterations == 100


@pytest.mark.parametrize(
    "data",
    [
        {"schema_version": "tracemetric.config.v1"},
        {"optimizer": []},
        {"optimizer": {"learning_rate": 0.1}},
        {"optimizer": {"iterations": "many"}},
        {"optimizer": {"iterations": 2.5}},
        {"monte_carlo": {"n_seeds": "3.5"}},
        {"optimizer": {"step_decay": 1.5}},
        {"monte_carlo": {"iterations": 0}},
        {"bias": {"floor_sigma": 0.3}},
        {"bias": {"kernel_sigma_px": 0}},
    ],
)
def test_invalid_configs(data) -> None:
    with pytest.raises(ConfigValidationError):
        parse_engine_config(data)


def test_load_roundtrip(tmp_path: Path) -> None:
    cfg = parse_engine_config({"optimizer": {"iterations": 1234}, "bias": {"base_sigma": 0.2}})
    p = tmp_path / "engine.json"
    p.write_text(json.dumps(engine_config_to_dict(cfg)), encoding="utf-8")
    assert load_engine_config(p) == cfg


def test_integral_floats_are_accepted_for_int_fields() -> None:
    cfg = parse_engine_config({"optimizer": {"iterations": 3000.0, "decay_every": "300"}})
    assert cfg.optimizer.iterations == 3000
    assert isinstance(cfg.optimizer.iterations, int)
    assert cfg.optimizer.decay_every == 300

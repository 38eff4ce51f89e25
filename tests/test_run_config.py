"""RunConfig validation and JSON / environment loading."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from signal_evolver.optimization.islands import RUN_CONFIG_SCHEMA, RunConfig, _coerce_run_config, load_run_config
from signal_evolver.utils.config import coerce_value, read_config_json


def test_defaults_and_derived_values() -> None:
    cfg = RunConfig()
    assert cfg.island_capacity == 40
    assert cfg.elites_per_island == 4
    assert cfg.resolved_max_generations() == 75
    assert RunConfig(max_generations=3).resolved_max_generations() == 3
    payload = cfg.to_log_payload()
    assert payload["island_capacity"] == 40
    assert payload["selection_method"] == "tournament"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"population_size": 5, "island_count": 5},
        {"crossover_rate": 1.5},
        {"selection_method": "lottery"},
        {"migration_count": 40},
        {"batch_size": 0},
        {"max_generations": 0},
    ],
)
def test_invalid_configs_raise(kwargs) -> None:
    with pytest.raises(ValueError):
        RunConfig(**kwargs)


def test_coerce_run_config_filters_unknown_keys() -> None:
    cfg = _coerce_run_config({"population_size": 20, "island_count": 2, "bogus": 1})
    assert cfg.population_size == 20
    assert _coerce_run_config(None) == RunConfig()
    with pytest.raises(TypeError):
        _coerce_run_config(["population_size"])


def test_schema_types() -> None:
    assert RUN_CONFIG_SCHEMA["population_size"] is int
    assert RUN_CONFIG_SCHEMA["seed"] is int
    assert RUN_CONFIG_SCHEMA["time_budget_sec"] is float
    assert RUN_CONFIG_SCHEMA["selection_method"] is str
    assert RUN_CONFIG_SCHEMA["checkpoint_dir"] is str
    assert RUN_CONFIG_SCHEMA["starting_capital"] is float
    assert set(RUN_CONFIG_SCHEMA) == set(RunConfig.__dataclass_fields__)


def test_coerce_value() -> None:
    assert coerce_value("yes", bool) is True
    assert coerce_value("3", int) == 3
    assert coerce_value("3.5", int) is None
    assert coerce_value("nan", float) is None
    assert coerce_value(7, str) == "7"


def test_load_run_config_layers_file_env_and_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "optimizer.json"
    path.write_text(
        json.dumps({"population_size": 40, "island_count": 4, "seed": 1, "workers": "2", "mystery": True}),
        encoding="utf-8",
    )
    monkeypatch.setenv("OPTIMIZER_SEED", "99")
    monkeypatch.delenv("OPTIMIZER_WORKERS", raising=False)
    monkeypatch.delenv("OPTIMIZER_POPULATION", raising=False)
    monkeypatch.delenv("OPTIMIZER_ISLANDS", raising=False)
    monkeypatch.delenv("OPTIMIZER_MAX_GENERATIONS", raising=False)
    monkeypatch.delenv("OPTIMIZER_TIME_BUDGET_SEC", raising=False)

    cfg = load_run_config(path, max_generations=5, time_budget_sec=None)
    assert cfg.population_size == 40
    assert cfg.island_count == 4
    assert cfg.workers == 2
    assert cfg.seed == 99
    assert cfg.max_generations == 5
    assert cfg.time_budget_sec is None


def test_missing_or_malformed_config_is_ignored(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    assert read_config_json(tmp_path / "absent.json", RUN_CONFIG_SCHEMA) == {}
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with caplog.at_level("WARNING"):
        assert read_config_json(bad, RUN_CONFIG_SCHEMA) == {}
    assert "Ignoring config" in caplog.text

import math
from pathlib import Path

import pytest

from mss_core.config import load_settings
from mss_core.models import NetworkSettings, SolverSettings


def test_load_settings_reads_both_sections(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "solver:\n"
        "  horizon: 2.0\n"
        "  step: 0.01\n"
        "  time_unit: d\n"
        "  ode_method: LSODA\n"
        "network:\n"
        "  max_iterations: 50\n"
        "  time_indexed: true\n",
        encoding="utf-8",
    )

    solver, network = load_settings(path)

    assert math.isclose(solver.horizon, 2.0)
    assert solver.time_unit == "d"
    assert solver.ode_method == "LSODA"
    assert network.max_iterations == 50
    assert network.time_indexed is True


def test_missing_sections_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")

    assert load_settings(path) == (SolverSettings(), NetworkSettings())


def test_null_step_selects_adaptive_grid(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("solver:\n  step: null\n", encoding="utf-8")

    solver, _ = load_settings(str(path))

    assert solver.step is None


def test_unknown_keys_are_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("solver:\n  tsim: 1.0\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings(path)

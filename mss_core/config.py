"""YAML configuration loading for solver and network settings."""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any, Mapping, Tuple, Type, TypeVar, Union

import yaml

from .models import NetworkSettings, SolverSettings

logger = logging.getLogger(__name__)

T = TypeVar("T", SolverSettings, NetworkSettings)


def load_settings(config_path: Union[str, Path]) -> Tuple[SolverSettings, NetworkSettings]:
    """Read ``solver:`` and ``network:`` sections of a YAML file.

    A missing file section yields the defaults; unknown keys raise
    :class:`ValueError`.
    """

    with open(config_path, "r", encoding="utf-8") as file:
        config = yaml.safe_load(file) or {}
    if not isinstance(config, Mapping):
        raise ValueError(f"Configuration file '{config_path}' must contain a mapping.")

    solver = _section(SolverSettings, config.get("solver"), "solver")
    network = _section(NetworkSettings, config.get("network"), "network")
    logger.debug("Loaded settings from %s: %s, %s", config_path, solver, network)
    return solver, network


def _section(cls: Type[T], raw: Any, name: str) -> T:
    if raw is None:
        return cls()
    if not isinstance(raw, Mapping):
        raise ValueError(f"Section '{name}' must be a mapping.")
    known = {field.name for field in dataclasses.fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown key(s) in section '{name}': {', '.join(sorted(map(str, unknown)))}.")
    return cls(**raw)

"""Domain models for multi-state system computations."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Tuple

import numpy as np

from .distributions import Distribution


class ProcessKind(str, Enum):
    """Stochastic process used to solve a state-transition diagram."""

    STEADY_STATE = "steady_state"
    MARKOV = "markov"
    SEMI_MARKOV = "semi_markov"


class TransitionType(str, Enum):
    """Bookkeeping tag of a transition."""

    FAILURE = "failure"
    REPAIR = "repair"
    MAINTENANCE = "maintenance"
    OTHER = "other"


@dataclass(frozen=True)
class SolverSettings:
    """Stochastic process solver configuration, times expressed in ``time_unit``."""

    start: float = 0.0  # calendar time of the first grid point
    horizon: float = 1.0  # simulated duration
    step: Optional[float] = 1.0 / 365.25  # grid spacing, None lets the ODE solver choose
    tolerance: float = 1e-8  # ODE tolerance and distribution truncation
    time_unit: str = "yr"
    ode_method: str = "RK45"  # any fixed-grid capable scipy.integrate.solve_ivp method


@dataclass(frozen=True)
class NetworkSettings:
    """Network composition configuration."""

    tolerance: float = 1e-9  # max change of a user probability between sweeps
    max_iterations: int = 100
    time_indexed: bool = False  # compose full trajectories instead of final values


@dataclass
class State:
    """A state of a state-transition diagram."""

    index: int
    performance: float
    init: float
    name: Optional[str] = None
    trapping: bool = False
    prob: np.ndarray = field(default_factory=lambda: np.empty(0))


@dataclass
class Transition:
    """A directed transition between two states; parallel transitions compete."""

    index: int
    source: int
    target: int
    distr: Optional[Distribution] = None
    rate: Optional[float] = None  # per ``rate_unit``
    rate_unit: str = ""
    type: TransitionType = TransitionType.OTHER
    freq: np.ndarray = field(default_factory=lambda: np.empty(0))

    @property
    def pair(self) -> tuple:
        return (self.source, self.target)


@dataclass
class Source:
    """A supply attached to a network node."""

    index: int
    node: int
    name: Optional[str] = None
    std: Any = None
    ugf: Any = None
    network: Optional[Tuple[Any, int]] = None  # (subnetwork, user node) acting as super-source
    dependent: bool = False


@dataclass
class User:
    """A consumer attached to a network node; ``ugf`` and ``std`` are set by a solve."""

    index: int
    node: int
    name: Optional[str] = None
    demand: Optional[float] = None
    ugf: Any = None
    std: Any = None


@dataclass
class Component:
    """A network element on a node or on an edge between two nodes."""

    index: int
    node: Optional[int] = None
    edge: Optional[Tuple[int, int]] = None
    name: Optional[str] = None
    std: Any = None
    ugf: Any = None
    bidirectional: bool = False

    @property
    def on_edge(self) -> bool:
        return self.edge is not None

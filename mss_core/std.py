"""State-transition diagrams (STD) of multi-state components."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np

from .conversions import Quantity, check_compatible, convert, magnitude, unit_of
from .distributions import Distribution, Exponential, to_unit
from .errors import InvalidProbability, StructuralError
from .models import ProcessKind, SolverSettings, State, Transition, TransitionType

if TYPE_CHECKING:  # pragma: no cover
    from .ugf import UGF

INIT_TOLERANCE = 1e-9
SOLVED_TOLERANCE = 1e-6


class STD:
    """A component's states, competing transitions and, once solved, trajectories.

    Transitions live in an arena indexed by a stable integer id; the same ids
    key the edges of :attr:`graph`, a :class:`networkx.MultiDiGraph`, so
    parallel transitions between one pair of states stay distinct.
    """

    def __init__(self, unit: str = "") -> None:
        self.unit = unit
        self.states: List[State] = []
        self.transitions: List[Transition] = []
        self.graph = nx.MultiDiGraph()
        self.time = np.empty(0)
        self.time_unit = ""
        self.process: Optional[ProcessKind] = None
        self.solved = False

    # states -------------------------------------------------------------------

    @property
    def n_states(self) -> int:
        return len(self.states)

    @property
    def n_transitions(self) -> int:
        return len(self.transitions)

    def add_state(
        self,
        init: float = 0.0,
        performance: Union[Quantity, float] = 0.0,
        name: Optional[str] = None,
        trapping: bool = False,
    ) -> int:
        """Append one state and return its index.

        Unlike :meth:`add_states`, the initial distribution is not checked here;
        it is checked when the diagram is solved.
        """

        _check_probability(init, "initial probability")
        state = State(
            index=self.n_states,
            performance=self._performance(performance),
            init=float(init),
            name=name,
            trapping=bool(trapping),
        )
        self.states.append(state)
        self.graph.add_node(state.index)
        self._invalidate()
        return state.index

    def add_states(
        self,
        init: Sequence[float],
        performance: Union[Sequence[Any], Quantity, float] = 0.0,
        names: Optional[Sequence[Optional[str]]] = None,
        unit: Optional[str] = None,
        trapping: Union[Sequence[bool], bool] = False,
    ) -> List[int]:
        """Append several states at once.

        Parameters
        ----------
        init:
            Initial probabilities of the new states. Together with the states
            already present they must sum to 1 within ``1e-9``.
        performance:
            Performance level per state, or one value shared by all. Bare
            numbers are expressed in ``unit`` (or the diagram's unit).
        names, trapping:
            Optional per-state names and trapping flags.
        """

        init = [float(p) for p in init]
        count = len(init)
        performance = broadcast(performance, count, "performance")
        names = broadcast(names, count, "names")
        trapping = broadcast(trapping, count, "trapping")
        if unit is not None:
            if self.unit and self.unit != unit:
                check_compatible(self.unit, unit, "state performance")
            performance = [p if isinstance(p, Quantity) else Quantity(float(p), unit) for p in performance]

        for value in init:
            _check_probability(value, "initial probability")
        total = sum(s.init for s in self.states) + sum(init)
        if abs(total - 1.0) > INIT_TOLERANCE:
            raise InvalidProbability(f"Initial probabilities sum to {total!r}, expected 1.")

        values = [self._performance(p) for p in performance]
        return [
            self.add_state(init=p, performance=v, name=n, trapping=bool(f))
            for p, v, n, f in zip(init, values, names, trapping)
        ]

    @property
    def init(self) -> np.ndarray:
        return np.array([s.init for s in self.states], dtype=float)

    @property
    def performance(self) -> np.ndarray:
        return np.array([s.performance for s in self.states], dtype=float)

    def is_trapping(self, index: int) -> bool:
        """A state is trapping when flagged or when nothing leaves it."""

        return self.state(index).trapping or self.graph.out_degree(index) == 0

    def state(self, index: int) -> State:
        if not 0 <= index < self.n_states:
            raise StructuralError(f"State {index} does not exist (diagram has {self.n_states}).")
        return self.states[index]

    # transitions --------------------------------------------------------------

    def add_transition(
        self,
        source: int,
        target: int,
        rate: Union[Quantity, float, None] = None,
        distr: Optional[Distribution] = None,
        type: Union[TransitionType, str] = TransitionType.OTHER,
    ) -> int:
        """Append one transition ``source -> target`` and return its id."""

        if (rate is None) == (distr is None):
            raise ValueError("Exactly one of 'rate' or 'distr' must be given for a transition.")
        self.state(source)
        self.state(target)
        if source == target:
            raise StructuralError(f"Self-transition on state {source} is not allowed.")

        rate_value, rate_unit = None, ""
        if rate is not None:
            rate_unit = unit_of(rate)
            rate_value = float(magnitude(rate, rate_unit))
            if rate_unit:
                check_compatible(rate_unit, "1/hr", "transition rate")
            if rate_value < 0.0:
                raise ValueError(f"Transition rate must be non-negative, got {rate_value}.")

        transition = Transition(
            index=self.n_transitions,
            source=source,
            target=target,
            distr=distr,
            rate=rate_value,
            rate_unit=rate_unit,
            type=TransitionType(type),
        )
        self.transitions.append(transition)
        self.graph.add_edge(source, target, key=transition.index)
        self._invalidate()
        return transition.index

    def add_transitions(
        self,
        states: Optional[Sequence[Tuple[int, int]]] = None,
        rate: Any = None,
        distr: Any = None,
        type: Any = TransitionType.OTHER,
    ) -> List[int]:
        """Append several transitions.

        Either ``rate`` or ``distr`` is given, never both. With ``states`` they
        are lists aligned with the ``(source, target)`` pairs (or one value for
        all). Without ``states`` they are square matrices whose non-empty
        off-diagonal entries define the transitions.
        """

        if (rate is None) == (distr is None):
            raise ValueError("Exactly one of 'rate' or 'distr' must be given.")
        values = rate if rate is not None else distr
        if states is None:
            states, values = _matrix_entries(values, self.n_states)
        else:
            states = [tuple(pair) for pair in states]
            values = broadcast(values, len(states), "rate" if rate is not None else "distr")
        types = broadcast(type, len(states), "type")

        ids = []
        for (source, target), value, kind in zip(states, values, types):
            if rate is not None:
                ids.append(self.add_transition(source, target, rate=value, type=kind))
            else:
                ids.append(self.add_transition(source, target, distr=value, type=kind))
        return ids

    def outgoing(self, index: int) -> List[Transition]:
        return [self.transitions[key] for _, _, key in self.graph.out_edges(index, keys=True)]

    def incoming(self, index: int) -> List[Transition]:
        return [self.transitions[key] for _, _, key in self.graph.in_edges(index, keys=True)]

    def lowered(self, index: int, time_unit: str) -> Distribution:
        """Return the distribution of transition ``index`` expressed in ``time_unit``.

        Rate-only transitions are lowered to an exponential distribution with
        mean ``1 / rate``.
        """

        transition = self.transitions[index]
        if transition.distr is not None:
            return to_unit(transition.distr, time_unit)
        value = transition.rate
        if transition.rate_unit:
            value = convert(value, transition.rate_unit, f"1/{time_unit}")
        if value <= 0.0:
            raise ValueError(f"Transition {index} has a zero rate and cannot be lowered.")
        return Exponential(1.0 / value)

    # results ------------------------------------------------------------------

    @property
    def probabilities(self) -> np.ndarray:
        """State probabilities as an ``(n_states, n_times)`` array."""

        self._require_solved()
        return np.vstack([s.prob for s in self.states])

    @property
    def frequencies(self) -> np.ndarray:
        """Transition frequency densities as an ``(n_transitions, n_times)`` array."""

        self._require_solved()
        if not self.transitions:
            return np.empty((0, self.time.size))
        return np.vstack([t.freq for t in self.transitions])

    def solve(
        self,
        process: Union[ProcessKind, str] = ProcessKind.MARKOV,
        settings: Optional[SolverSettings] = None,
        **config: Any,
    ) -> "STD":
        from .engine import solve

        return solve(self, process, settings, **config)

    @classmethod
    def from_ugf(cls, ugf: "UGF") -> "STD":
        """Build a solved diagram with one state per value of ``ugf``."""

        prob = ugf.prb
        total = prob.sum(axis=0)
        if np.any(np.abs(total - 1.0) > SOLVED_TOLERANCE):
            # the implicit unavailable mass becomes an explicit zero-performance state
            values = np.append(ugf.val, 0.0)
            prob = np.vstack([prob, 1.0 - total])
        else:
            values = ugf.val
        return solved_std(prob, values, time=ugf.time, unit=ugf.unit)

    def _performance(self, value: Union[Quantity, float]) -> float:
        if isinstance(value, Quantity):
            if not self.unit:
                self.unit = value.unit
            return float(magnitude(value, self.unit, "state performance"))
        return float(value)

    def _require_solved(self) -> None:
        if not self.solved:
            raise StructuralError("State-transition diagram has not been solved.")

    def _invalidate(self) -> None:
        self.solved = False
        self.process = None

    def __repr__(self) -> str:
        status = f"solved by {self.process.value}" if self.solved and self.process else (
            "solved" if self.solved else "unsolved"
        )
        return f"STD({self.n_states} states, {self.n_transitions} transitions, {status})"


def solved_std(
    prob: Union[Sequence[float], np.ndarray],
    performance: Union[Sequence[Any], np.ndarray],
    time: Optional[Iterable[float]] = None,
    unit: str = "",
    names: Optional[Sequence[Optional[str]]] = None,
) -> STD:
    """Build an already solved STD from externally computed results.

    ``prob`` is either one probability per state or an ``(n_states, n_times)``
    array aligned with ``time``. Each time column must sum to 1 within ``1e-6``.
    """

    prob = np.asarray(prob, dtype=float)
    if prob.ndim == 1:
        prob = prob[:, None]
    count = prob.shape[0]
    performance = list(performance)
    if len(performance) != count:
        raise ValueError(f"Expected {count} performance values, got {len(performance)}.")
    if np.any(prob < -SOLVED_TOLERANCE) or np.any(prob > 1.0 + SOLVED_TOLERANCE):
        raise InvalidProbability("State probabilities must lie in [0, 1].")
    total = prob.sum(axis=0)
    if np.any(np.abs(total - 1.0) > SOLVED_TOLERANCE):
        raise InvalidProbability(f"State probabilities sum to {total.tolist()}, expected 1.")

    if time is None:
        grid = np.array([np.inf]) if prob.shape[1] == 1 else np.arange(prob.shape[1], dtype=float)
    else:
        grid = np.asarray(list(time), dtype=float)
    if grid.size != prob.shape[1]:
        raise ValueError(f"Time grid has {grid.size} points but probabilities have {prob.shape[1]}.")

    std = STD(unit=unit)
    names = broadcast(names, count, "names")
    for ns in range(count):
        std.add_state(init=float(prob[ns, 0]), performance=performance[ns], name=names[ns])
    for state, row in zip(std.states, prob):
        state.prob = row.copy()
    std.time = grid
    std.solved = True
    return std


def broadcast(value: Any, count: int, name: str, scalars: tuple = ()) -> list:
    """Repeat a scalar argument ``count`` times or check a sequence has ``count`` entries."""

    if value is None or isinstance(value, (str, bytes, Quantity, Distribution, TransitionType) + scalars):
        return [value] * count
    if np.isscalar(value) or callable(value):
        return [value] * count
    items = list(value)
    if len(items) != count:
        raise ValueError(f"'{name}' has {len(items)} entries, expected {count}.")
    return items


def _matrix_entries(matrix: Any, n_states: int) -> Tuple[List[Tuple[int, int]], list]:
    rows = [list(row) for row in matrix]
    if len(rows) != n_states or any(len(row) != n_states for row in rows):
        raise StructuralError(f"Transition matrix must be {n_states}x{n_states}.")
    pairs, values = [], []
    for ni, row in enumerate(rows):
        for nj, value in enumerate(row):
            if ni == nj or value is None:
                continue
            if isinstance(value, Distribution) or isinstance(value, Quantity) or float(value) != 0.0:
                pairs.append((ni, nj))
                values.append(value)
    return pairs, values


def _check_probability(value: float, what: str) -> None:
    if not 0.0 <= float(value) <= 1.0:
        raise InvalidProbability(f"{what.capitalize()} must lie in [0, 1], got {value}.")

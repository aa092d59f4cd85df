"""Stochastic process solvers that populate the solved fields of an STD."""

from __future__ import annotations

import dataclasses
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import networkx as nx
import numpy as np
from scipy import integrate, linalg

from .conversions import Quantity, convert, magnitude
from .distributions import Distribution, DistributionKind, cdf, pdf, rate, to_unit
from .errors import InvalidProbability, Singular, StructuralError
from .models import ProcessKind, SolverSettings, Transition
from .std import INIT_TOLERANCE, STD

logger = logging.getLogger(__name__)

_TIME_FIELDS = ("start", "horizon", "step")


def solve(
    std: STD,
    process: Union[ProcessKind, str] = ProcessKind.MARKOV,
    settings: Optional[SolverSettings] = None,
    **config: Any,
) -> STD:
    """Solve ``std`` in place with the selected process and return it.

    ``config`` overrides fields of ``settings`` (``start_time`` is accepted as
    an alias of ``start``). Time-valued overrides may be :class:`Quantity`
    values; they are converted to the settings' time unit.
    """

    kind = ProcessKind(process)
    settings = resolve_settings(settings, **config)
    _check_initial(std)

    logger.debug(
        "Solving %r with %s process (horizon %s %s, step %s).",
        std,
        kind.value,
        settings.horizon,
        settings.time_unit,
        settings.step,
    )
    _SOLVERS[kind](std, settings)
    std.process = kind
    std.time_unit = settings.time_unit
    std.solved = True
    logger.info("Solved %r on %d time points.", std, std.time.size)
    return std


def resolve_settings(settings: Optional[SolverSettings] = None, **config: Any) -> SolverSettings:
    """Merge keyword overrides into ``settings`` (or the defaults)."""

    settings = settings or SolverSettings()
    if "start_time" in config:
        config["start"] = config.pop("start_time")
    known = {f.name for f in dataclasses.fields(SolverSettings)}
    unknown = set(config) - known
    if unknown:
        raise ValueError(f"Unknown solver setting(s): {', '.join(sorted(unknown))}.")

    time_unit = config.get("time_unit", settings.time_unit)
    if time_unit != settings.time_unit:
        # fields not overridden keep their meaning in the new unit
        for name in _TIME_FIELDS:
            if name not in config and getattr(settings, name) is not None:
                config[name] = convert(getattr(settings, name), settings.time_unit, time_unit)
    for name in _TIME_FIELDS:
        value = config.get(name)
        if isinstance(value, Quantity):
            config[name] = float(magnitude(value, time_unit, f"solver setting '{name}'"))

    resolved = dataclasses.replace(settings, **config)
    if not resolved.horizon > 0.0:
        raise ValueError(f"Solver horizon must be positive, got {resolved.horizon}.")
    if resolved.step is not None and not resolved.step > 0.0:
        raise ValueError(f"Solver step must be positive, got {resolved.step}.")
    if not resolved.tolerance > 0.0:
        raise ValueError(f"Solver tolerance must be positive, got {resolved.tolerance}.")
    return resolved


def time_grid(settings: SolverSettings) -> np.ndarray:
    """Return ``start, start + step, ...`` up to ``start + horizon``."""

    if settings.step is None:
        raise ValueError("A fixed time grid requires a step.")
    count = int(math.floor(settings.horizon / settings.step + 1e-9))
    return settings.start + settings.step * np.arange(count + 1)


# generator --------------------------------------------------------------------


def transition_rate(std: STD, transition: Transition, time_unit: str, t: float = 0.0) -> float:
    """Constant-hazard rate of ``transition`` per ``time_unit`` at time ``t``."""

    if std.state(transition.source).trapping:
        return 0.0
    if transition.rate is not None:
        if transition.rate_unit:
            return float(convert(transition.rate, transition.rate_unit, f"1/{time_unit}"))
        return transition.rate
    return float(rate(to_unit(transition.distr, time_unit), t))


def generator(std: STD, time_unit: str = "yr", t: float = 0.0) -> np.ndarray:
    """Infinitesimal generator ``Q`` of ``std`` at time ``t``.

    Parallel transitions between one pair of states are summed and
    transitions leaving a flagged trapping state are skipped.
    """

    size = std.n_states
    q = np.zeros((size, size))
    for transition in std.transitions:
        q[transition.source, transition.target] += transition_rate(std, transition, time_unit, t)
    q[np.diag_indices(size)] = -q.sum(axis=1)
    return q


def _is_homogeneous(std: STD) -> bool:
    return all(tr.distr is None or tr.distr.has_constant_weight for tr in std.transitions)


def _rates(std: STD, time_unit: str, times: np.ndarray) -> np.ndarray:
    """Per-transition rates on ``times`` as a ``(n_transitions, n_times)`` array."""

    if _is_homogeneous(std):
        values = [transition_rate(std, tr, time_unit) for tr in std.transitions]
        return np.outer(values, np.ones(times.size))
    return np.array(
        [[transition_rate(std, tr, time_unit, t) for t in times] for tr in std.transitions]
    ).reshape(std.n_transitions, times.size)


# steady state -----------------------------------------------------------------


def solve_steady_state(std: STD, settings: SolverSettings) -> None:
    """Stationary distribution ``pi Q = 0``, ``sum(pi) = 1``.

    A generator with more than one closed communicating class has no unique
    stationary distribution; each class is then solved on its own and
    weighted by the probability of ending up in it from the initial vector.
    """

    q = generator(std, settings.time_unit)
    basis = linalg.null_space(q.T)
    if basis.shape[1] == 1:
        pi = _normalise(basis[:, 0])
    else:
        logger.warning(
            "Generator of %r has a %d-dimensional null space; solving its closed classes separately.",
            std,
            basis.shape[1],
        )
        pi = _class_decomposition(q, std.init)

    for state, value in zip(std.states, pi):
        state.prob = np.array([value])
    for transition in std.transitions:
        value = pi[transition.source] * transition_rate(std, transition, settings.time_unit)
        transition.freq = np.array([value])
    std.time = np.array([np.inf])


def _normalise(vector: np.ndarray) -> np.ndarray:
    total = vector.sum()
    if total == 0.0 or not np.isfinite(total):
        raise Singular("Stationary vector cannot be normalised.")
    vector = np.clip(vector / total, 0.0, None)
    return vector / vector.sum()


def _class_decomposition(q: np.ndarray, init: np.ndarray) -> np.ndarray:
    graph = nx.DiGraph()
    graph.add_nodes_from(range(q.shape[0]))
    graph.add_edges_from(zip(*np.nonzero(q > 0.0)))
    condensed = nx.condensation(graph)
    closed = [
        sorted(condensed.nodes[node]["members"])
        for node in condensed.nodes
        if condensed.out_degree(node) == 0
    ]
    members = {ns for cls in closed for ns in cls}
    transient = [ns for ns in range(q.shape[0]) if ns not in members]

    if transient:
        q_tt = q[np.ix_(transient, transient)]
        exits = np.column_stack([q[np.ix_(transient, cls)].sum(axis=1) for cls in closed])
        try:
            absorption = np.linalg.solve(-q_tt, exits)
        except np.linalg.LinAlgError as exc:
            raise Singular("Transient states never reach a closed class.") from exc
    shares = np.array([init[cls].sum() for cls in closed])
    if transient:
        shares = shares + init[transient] @ absorption

    pi = np.zeros(q.shape[0])
    for cls, share in zip(closed, shares):
        if share <= 0.0:
            continue
        basis = linalg.null_space(q[np.ix_(cls, cls)].T)
        if basis.shape[1] != 1:
            raise Singular(f"Communicating class {cls} has no unique stationary distribution.")
        pi[cls] = share * _normalise(basis[:, 0])
    logger.debug("Closed classes %s carry shares %s.", closed, shares.tolist())
    return pi


# markov -----------------------------------------------------------------------


def solve_markov(std: STD, settings: SolverSettings) -> None:
    """Integrate the forward Kolmogorov equations ``dP/dt = P Q(t)``."""

    for transition in std.transitions:
        if transition.distr is not None and transition.distr.kind is not DistributionKind.EXPONENTIAL:
            raise ValueError(
                f"Markov process requires exponential transitions, transition {transition.index} "
                f"is {transition.distr.kind.value}."
            )

    unit = settings.time_unit
    t0, t1 = settings.start, settings.start + settings.horizon
    if _is_homogeneous(std):
        q = generator(std, unit)
        rhs: Callable[[float, np.ndarray], np.ndarray] = lambda t, p: p @ q  # noqa: E731
    else:
        rhs = lambda t, p: p @ generator(std, unit, t)  # noqa: E731

    t_eval = np.clip(time_grid(settings), t0, t1) if settings.step is not None else None
    result = integrate.solve_ivp(
        rhs,
        (t0, t1),
        std.init,
        method=settings.ode_method,
        t_eval=t_eval,
        rtol=settings.tolerance,
        atol=settings.tolerance,
    )
    if not result.success:
        raise RuntimeError(f"Markov integration failed: {result.message}")
    logger.debug("Markov integration used %d right-hand side evaluations.", result.nfev)

    probabilities = np.clip(result.y, 0.0, 1.0)
    rates = _rates(std, unit, result.t)
    for state, row in zip(std.states, probabilities):
        state.prob = row
    for transition, row in zip(std.transitions, rates):
        transition.freq = probabilities[transition.source] * row
    std.time = result.t


# semi-markov ------------------------------------------------------------------


def quadrature_weights(count: int) -> np.ndarray:
    """Newton-Cotes weights for ``count`` equidistant points, per unit step.

    Closed rules are used up to eight points; beyond, an extended rule with
    end corrections ``17, 59, 43, 49`` (over 48) keeps fourth order accuracy.
    """

    if count < 1:
        raise ValueError("Quadrature needs at least one point.")
    if count in _NEWTON_COTES:
        return np.array(_NEWTON_COTES[count], dtype=float)
    weights = np.full(count, 48.0)
    weights[:4] = [17.0, 59.0, 43.0, 49.0]
    weights[-4:] = [49.0, 43.0, 59.0, 17.0]
    return weights / 48.0


_NEWTON_COTES: Dict[int, List[float]] = {
    1: [0.0],
    2: [1 / 2, 1 / 2],
    3: [1 / 3, 4 / 3, 1 / 3],
    4: [3 / 8, 9 / 8, 9 / 8, 3 / 8],
    5: [2 / 45 * w for w in (7, 32, 12, 32, 7)],
    6: [5 / 288 * w for w in (19, 75, 50, 50, 75, 19)],
    7: [1 / 140 * w for w in (41, 216, 27, 272, 27, 216, 41)],
    8: [7 / 17280 * w for w in (751, 3577, 1323, 2989, 2989, 1323, 3577, 751)],
}


def solve_semi_markov(std: STD, settings: SolverSettings) -> None:
    """Solve the Markov renewal equations on a fixed grid.

    For every transition ``k = i -> j`` the frequency density is

        h_k(t) = init_i q_k(t, 0) + int_0^t phi_i(s) q_k(t - s, s) ds

    where ``phi_i`` is the total entry density of ``i`` and the kernel
    ``q_k(x, s) = pdf_k(x, s) * prod_l (1 - cdf_l(x, s))`` runs over the other
    exits ``l`` of ``i``. Occupancy follows from the survival of each state,
    ``P_i(t) = init_i S_i(t, 0) + int_0^t phi_i(s) S_i(t - s, s) ds``.
    """

    if settings.step is None:
        raise ValueError("Semi-Markov process requires a fixed step.")
    grid = time_grid(settings)
    dt = settings.step
    size = grid.size
    lags = np.subtract.outer(np.arange(size), np.arange(size))
    valid = lags >= 0
    lags = np.where(valid, lags, 0)
    logger.debug("Semi-Markov grid has %d points for %d transitions.", size, std.n_transitions)

    density = np.zeros((std.n_transitions, size, size))
    cumulative = np.zeros((std.n_transitions, size, size))
    active = [tr for tr in std.transitions if not std.state(tr.source).trapping]
    for transition in active:
        d = std.lowered(transition.index, settings.time_unit)
        if d.kind is DistributionKind.DIRAC:
            raise ValueError(f"Transition {transition.index} has a Dirac distribution without density.")
        f, big_f = _lag_matrices(d, lags, grid, dt)
        density[transition.index] = np.where(valid, f, 0.0)
        cumulative[transition.index] = np.where(valid, big_f, 0.0)

    survival = np.ones((std.n_states, size, size))
    kernel = np.zeros((std.n_transitions, size, size))
    for state in std.states:
        exits = [tr.index for tr in active if tr.source == state.index]
        for k in exits:
            survival[state.index] *= 1.0 - cumulative[k]
        for k in exits:
            others = np.ones((size, size))
            for l in exits:
                if l != k:
                    others *= 1.0 - cumulative[l]
            kernel[k] = np.where(valid, density[k] * others, 0.0)

    weights = np.zeros((size, size))
    for n in range(size):
        weights[n, : n + 1] = quadrature_weights(n + 1)

    init = std.init
    sources = np.array([tr.source for tr in std.transitions], dtype=int)
    targets = np.array([tr.target for tr in std.transitions], dtype=int)
    # coupling[k, l] is 1 when transition l enters the state transition k leaves
    coupling = (targets[None, :] == sources[:, None]).astype(float)

    freq = np.zeros((std.n_transitions, size))
    entry = np.zeros((std.n_states, size))
    identity = np.eye(std.n_transitions)
    for n in range(size):
        w = weights[n]
        explicit = init[sources] * kernel[:, n, 0]
        if n > 0:
            history = entry[sources, :n] * w[:n] * kernel[:, n, :n]
            explicit = explicit + dt * history.sum(axis=1)
        implicit = dt * w[n] * kernel[:, n, n]
        freq[:, n] = np.linalg.solve(identity - implicit[:, None] * coupling, explicit)
        np.add.at(entry[:, n], targets, freq[:, n])

    for state in std.states:
        ns = state.index
        occupied = init[ns] * survival[ns, :, 0]
        occupied = occupied + dt * (weights * survival[ns] * entry[ns][None, :]).sum(axis=1)
        state.prob = np.clip(occupied, 0.0, 1.0)
    for transition in std.transitions:
        transition.freq = freq[transition.index]
    std.time = grid


def _lag_matrices(
    d: Distribution, lags: np.ndarray, grid: np.ndarray, dt: float
) -> Tuple[np.ndarray, np.ndarray]:
    """Density and cdf of ``d`` on the ``(t_n, entry s_m)`` plane."""

    if d.has_constant_weight:
        x = np.arange(grid.size) * dt
        f, big_f = np.asarray(pdf(d, x)), np.asarray(cdf(d, x))
        f, big_f = f[lags], big_f[lags]
    else:
        x = lags * dt
        entry = grid[None, :]
        f, big_f = np.asarray(pdf(d, x, entry)), np.asarray(cdf(d, x, entry))
    f = np.nan_to_num(f, nan=0.0, posinf=0.0, neginf=0.0)
    big_f = np.nan_to_num(big_f, nan=0.0, posinf=0.0, neginf=0.0)
    return f, big_f


# dispatch ---------------------------------------------------------------------

_SOLVERS: Dict[ProcessKind, Callable[[STD, SolverSettings], None]] = {
    ProcessKind.STEADY_STATE: solve_steady_state,
    ProcessKind.MARKOV: solve_markov,
    ProcessKind.SEMI_MARKOV: solve_semi_markov,
}


def _check_initial(std: STD) -> None:
    if std.n_states == 0:
        raise StructuralError("Cannot solve a state-transition diagram without states.")
    total = std.init.sum()
    if abs(total - 1.0) > INIT_TOLERANCE:
        raise InvalidProbability(f"Initial probabilities sum to {total!r}, expected 1.")

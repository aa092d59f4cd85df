"""Universal generating functions and their composition operators.

A UGF pairs sorted distinct performance values with their probabilities.
Probabilities are stored as an ``(n_values, n_times)`` array; a static UGF has
a single column. Any shortfall of a column below 1 is unavailable mass that is
left implicit: operators multiply totals, so ``total(series(a, b))`` equals
``total(a) * total(b)`` and no explicit zero-valued entry is ever invented.
"""

from __future__ import annotations

from enum import Enum
from functools import reduce
from typing import Callable, Dict, Optional, Sequence, Union

import numpy as np

from .conversions import Quantity, check_compatible, convert, magnitude
from .errors import InvalidProbability, StructuralError

PROBABILITY_TOLERANCE = 1e-9

Combine = Callable[[float, float], float]

_UFUNCS: Dict[Callable, np.ufunc] = {min: np.minimum, max: np.maximum, sum: np.add}


class Direction(str, Enum):
    """Flow direction evaluated over a two-way edge."""

    FORWARD = "forward"
    BACKWARD = "backward"
    BOTH = "both"


class UGF:
    """Value/probability pairs of a deliverable performance."""

    def __init__(
        self,
        val: Sequence[float],
        prb: Union[Sequence[float], np.ndarray],
        unit: str = "",
        time: Optional[Sequence[float]] = None,
    ) -> None:
        val = np.asarray(val, dtype=float).ravel()
        prb = np.asarray(prb, dtype=float)
        if prb.ndim == 1:
            prb = prb[:, None]
        if prb.ndim != 2 or prb.shape[0] != val.size:
            raise ValueError(f"Expected {val.size} probability rows, got shape {prb.shape}.")
        if np.any(np.isnan(val)):
            raise ValueError("UGF values must not be NaN.")
        if np.any(prb < -PROBABILITY_TOLERANCE) or np.any(prb > 1.0 + PROBABILITY_TOLERANCE):
            raise InvalidProbability("UGF probabilities must lie in [0, 1].")
        if prb.size and np.any(prb.sum(axis=0) > 1.0 + PROBABILITY_TOLERANCE):
            raise InvalidProbability("UGF probabilities sum to more than 1.")

        values, inverse = np.unique(val, return_inverse=True)
        reduced = np.zeros((values.size, prb.shape[1]))
        np.add.at(reduced, inverse.ravel(), np.clip(prb, 0.0, None))
        self.val = values
        self.prb = reduced
        self.unit = unit
        self.time = None if time is None else np.asarray(time, dtype=float)
        if self.time is not None and self.time.size != self.prb.shape[1]:
            raise ValueError("UGF time grid does not match its probability columns.")

    @classmethod
    def from_std(cls, std, time_indexed: bool = False) -> "UGF":
        """Group the states of a solved STD by performance and sum their probabilities."""

        if not std.solved:
            raise StructuralError("Cannot extract a UGF from an unsolved state-transition diagram.")
        prob = std.probabilities
        if time_indexed:
            return cls(std.performance, prob, std.unit, time=std.time)
        return cls(std.performance, prob[:, -1:], std.unit)

    @classmethod
    def perfect(cls, unit: str = "") -> "UGF":
        return cls([np.inf], [1.0], unit)

    @classmethod
    def zero(cls, unit: str = "") -> "UGF":
        return cls([0.0], [1.0], unit)

    @property
    def n_times(self) -> int:
        return self.prb.shape[1]

    @property
    def total(self) -> np.ndarray:
        return self.prb.sum(axis=0)

    @property
    def final(self) -> np.ndarray:
        """Probabilities at the last time column."""
        return self.prb[:, -1]

    def to(self, unit: str) -> "UGF":
        if not self.unit:
            return UGF(self.val, self.prb, unit, self.time)
        return UGF(convert(self.val, self.unit, unit), self.prb, unit, self.time)

    def as_dict(self, column: int = -1) -> Dict[float, float]:
        return {float(v): float(p) for v, p in zip(self.val, self.prb[:, column])}

    def __len__(self) -> int:
        return self.val.size

    def __repr__(self) -> str:
        unit = f" {self.unit}" if self.unit else ""
        pairs = ", ".join(f"{v:g}{unit}: {p:.6g}" for v, p in zip(self.val, self.final))
        return f"UGF({{{pairs}}}, n_times={self.n_times})"


def series(a: UGF, b: UGF, combine: Combine = min) -> UGF:
    """Flow through ``a`` then ``b``; values combine by ``min`` by default."""

    return _compose(a, b, combine)


def parallel(a: UGF, b: UGF, combine: Combine = sum) -> UGF:
    """Flow through ``a`` or ``b``; values add by default."""

    return _compose(a, b, combine)


def bidirectional(
    a: Optional[UGF],
    b: Optional[UGF],
    edge: UGF,
    direction: Union[Direction, str] = Direction.BOTH,
) -> UGF:
    """Flow over a two-way ``edge`` between boundary nodes ``a`` and ``b``.

    ``FORWARD`` evaluates ``a -> b``, ``BACKWARD`` evaluates ``b -> a`` and
    ``BOTH`` reconciles the two boundary supplies before crossing the edge.
    Only the boundary used by the selected direction is required.
    """

    direction = Direction(direction)
    if direction is Direction.FORWARD:
        return series(_required(a, "a"), edge)
    if direction is Direction.BACKWARD:
        return series(_required(b, "b"), edge)
    return series(parallel(_required(a, "a"), _required(b, "b")), edge)


def mixture(ugfs: Sequence[UGF], weights: Sequence[Union[float, np.ndarray]]) -> UGF:
    """Weighted union of ``ugfs``; a weight may vary per time column."""

    if len(ugfs) != len(weights) or not ugfs:
        raise ValueError("Mixture needs one weight per UGF.")
    unit = _common_unit(ugfs)
    columns = _columns(*(u.n_times for u in ugfs), *(np.size(w) for w in weights))
    values, probabilities = [], []
    for ugf, weight in zip(ugfs, weights):
        weight = np.broadcast_to(np.asarray(weight, dtype=float).ravel(), (columns,))
        if np.any(weight < -PROBABILITY_TOLERANCE):
            raise InvalidProbability("Mixture weights must be non-negative.")
        values.append(_values_in(ugf, unit))
        probabilities.append(np.broadcast_to(ugf.prb, (len(ugf), columns)) * weight[None, :])
    total_weight = sum(np.broadcast_to(np.asarray(w, dtype=float).ravel(), (columns,)) for w in weights)
    if np.any(total_weight > 1.0 + PROBABILITY_TOLERANCE):
        raise InvalidProbability("Mixture weights sum to more than 1.")
    return UGF(np.concatenate(values), np.vstack(probabilities), unit, _time(columns, *ugfs))


def clip(ugf: UGF, cap: Union[Quantity, float]) -> UGF:
    """Cap every value of ``ugf`` at ``cap``."""

    limit = float(magnitude(cap, ugf.unit, "UGF cap"))
    return UGF(np.minimum(ugf.val, limit), ugf.prb, ugf.unit, ugf.time)


def max_difference(a: Optional[UGF], b: Optional[UGF]) -> float:
    """Largest absolute probability difference of ``a`` and ``b`` over the union of their values.

    ``None`` stands for a UGF that delivers nothing.
    """

    if a is None and b is None:
        return 0.0
    a = a if a is not None else UGF.zero(b.unit)
    b = b if b is not None else UGF.zero(a.unit)
    values_b = _values_in(b, a.unit)
    support = np.union1d(a.val, values_b)
    columns = _columns(a.n_times, b.n_times)
    aligned_a = np.zeros((support.size, columns))
    aligned_b = np.zeros((support.size, columns))
    aligned_a[np.searchsorted(support, a.val)] = a.prb
    np.add.at(aligned_b, np.searchsorted(support, values_b), np.broadcast_to(b.prb, (b.val.size, columns)))
    return float(np.max(np.abs(aligned_a - aligned_b))) if support.size else 0.0


def expected_value(ugf: UGF) -> Union[float, np.ndarray]:
    """Expected performance per time column; an infinite value with positive mass gives ``inf``."""

    terms = np.where(ugf.prb > 0.0, ugf.val[:, None] * ugf.prb, 0.0)
    result = terms.sum(axis=0)
    return float(result[0]) if result.size == 1 else result


def compose_all(ugfs: Sequence[UGF], operator: Callable[[UGF, UGF], UGF]) -> UGF:
    """Fold ``ugfs`` left to right with a binary operator."""

    if not ugfs:
        raise ValueError("Nothing to compose.")
    return reduce(operator, ugfs)


def _compose(a: UGF, b: UGF, combine: Combine) -> UGF:
    unit = _common_unit((a, b))
    values_a, values_b = _values_in(a, unit), _values_in(b, unit)
    columns = _columns(a.n_times, b.n_times)

    ufunc = _UFUNCS.get(combine)
    grid_a, grid_b = np.meshgrid(values_a, values_b, indexing="ij")
    if ufunc is not None:
        values = ufunc(grid_a, grid_b)
    else:
        values = np.vectorize(combine, otypes=[float])(grid_a, grid_b)
    probabilities = a.prb[:, None, :] * b.prb[None, :, :]
    probabilities = np.broadcast_to(probabilities, (a.val.size, b.val.size, columns))
    return UGF(values.ravel(), probabilities.reshape(-1, columns), unit, _time(columns, a, b))


def _common_unit(ugfs: Sequence[UGF]) -> str:
    unit = ""
    for ugf in ugfs:
        if not ugf.unit:
            continue
        if unit:
            check_compatible(unit, ugf.unit, "UGF composition")
        else:
            unit = ugf.unit
    return unit


def _values_in(ugf: UGF, unit: str) -> np.ndarray:
    if not ugf.unit or not unit or ugf.unit == unit:
        return ugf.val
    return np.asarray(convert(ugf.val, ugf.unit, unit), dtype=float)


def _columns(*counts: int) -> int:
    wide = {count for count in counts if count != 1}
    if len(wide) > 1:
        raise ValueError(f"Cannot align UGFs with {sorted(wide)} time columns.")
    return wide.pop() if wide else 1


def _time(columns: int, *ugfs: UGF) -> Optional[np.ndarray]:
    for ugf in ugfs:
        if ugf.time is not None and ugf.time.size == columns:
            return ugf.time
    return None


def _required(ugf: Optional[UGF], name: str) -> UGF:
    if ugf is None:
        raise ValueError(f"Boundary UGF '{name}' is required for this direction.")
    return ugf

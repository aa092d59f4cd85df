"""Reliability indices computed from a delivered UGF."""

from __future__ import annotations

from typing import Iterable, Optional, Union

import numpy as np

from .conversions import Quantity, magnitude
from .errors import InvalidProbability
from .ugf import UGF

HOURS_PER_YEAR = 8760.0


def eens(
    ugf: UGF,
    demand: Union[Quantity, float, None] = None,
    hours: float = HOURS_PER_YEAR,
) -> Union[float, np.ndarray]:
    """Expected energy not served over ``hours``.

    The shortfall of every value against ``demand`` (default: the largest
    finite value of ``ugf``) is weighted by its probability. The result is
    expressed in ``ugf.unit`` times hours.
    """

    level = _maximum(ugf) if demand is None else float(magnitude(demand, ugf.unit, "EENS demand"))
    shortfall = np.clip(level - ugf.val, 0.0, None)
    terms = np.where(ugf.prb > 0.0, shortfall[:, None] * ugf.prb, 0.0)
    result = hours * terms.sum(axis=0)
    return float(result[0]) if result.size == 1 else result


def gra(ugf: UGF, ratio: float) -> Union[float, np.ndarray]:
    """Generation ratio availability: probability of delivering at least ``ratio`` times the maximum."""

    if not 0.0 <= ratio <= 1.0:
        raise InvalidProbability(f"Generation ratio must lie in [0, 1], got {ratio}.")
    result = ugf.prb[ugf.val >= ratio * _maximum(ugf)].sum(axis=0)
    return float(result[0]) if result.size == 1 else result


def gra_curve(ugf: UGF, ratios: Optional[Iterable[float]] = None) -> np.ndarray:
    """GRA for each ratio, by default ``0.00, 0.01, ..., 1.00``."""

    ratios = np.linspace(0.0, 1.0, 101) if ratios is None else np.asarray(list(ratios), dtype=float)
    return np.array([gra(ugf, ratio) for ratio in ratios])


def _maximum(ugf: UGF) -> float:
    finite = ugf.val[np.isfinite(ugf.val)]
    if finite.size == 0:
        raise ValueError("UGF has no finite value to use as reference.")
    return float(finite.max())

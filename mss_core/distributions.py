"""Holding-time distributions used by state-transition diagrams.

Each distribution is an immutable value tagged with its :class:`DistributionKind`.
The density, cumulative and quantile functions are looked up in an operation
table keyed by that tag, so adding a kind means adding one table entry.

Every distribution carries a *weight* ``w`` which is either a constant in
``(0, 1]`` or a callable of elapsed time returning such a value. The weight
scales the distribution: ``pdf = w * f``, ``cdf = w * F`` and
``ccdf = w - cdf``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, NamedTuple, Tuple, Union

import numpy as np
from scipy import stats

from .conversions import Quantity, convert, magnitude, unit_of
from .errors import InvalidProbability

Weight = Union[float, Callable[[float], float]]
ArrayLike = Union[float, np.ndarray]


class DistributionKind(str, Enum):
    EXPONENTIAL = "exponential"
    WEIBULL = "weibull"
    LOGNORMAL = "lognormal"
    UNIFORM = "uniform"
    DIRAC = "dirac"


@dataclass(frozen=True)
class Distribution:
    """Closed-form holding-time model.

    ``params`` holds the kind-specific parameters expressed in ``unit``:
    exponential ``(scale,)``, Weibull ``(scale, shape)``, log-normal
    ``(mu, sigma)`` of ``log(x)``, uniform ``(low, high)`` and Dirac
    ``(offset,)``.
    """

    kind: DistributionKind
    params: Tuple[float, ...]
    unit: str = ""
    weight: Weight = 1.0

    def __post_init__(self) -> None:
        if not callable(self.weight):
            _check_weight(float(self.weight))
        _OPERATIONS[self.kind].validate(self.params)

    @property
    def has_constant_weight(self) -> bool:
        return not callable(self.weight)


# constructors -----------------------------------------------------------------


def Exponential(scale: Union[Quantity, float] = 1.0, weight: Weight = 1.0) -> Distribution:
    """Exponential distribution with mean ``scale``."""

    unit = unit_of(scale)
    return Distribution(DistributionKind.EXPONENTIAL, (float(magnitude(scale, unit)),), unit, weight)


def Weibull(
    scale: Union[Quantity, float] = 1.0, shape: float = 1.0, weight: Weight = 1.0
) -> Distribution:
    unit = unit_of(scale)
    return Distribution(
        DistributionKind.WEIBULL, (float(magnitude(scale, unit)), float(shape)), unit, weight
    )


def LogNormal(mu: float = 0.0, sigma: float = 1.0, weight: Weight = 1.0, unit: str = "") -> Distribution:
    """Log-normal distribution; ``mu`` and ``sigma`` describe ``log(x)`` with ``x`` in ``unit``."""

    return Distribution(DistributionKind.LOGNORMAL, (float(mu), float(sigma)), unit, weight)


def Uniform(
    low: Union[Quantity, float] = 0.0, high: Union[Quantity, float] = 1.0, weight: Weight = 1.0
) -> Distribution:
    unit = unit_of(low, unit_of(high))
    return Distribution(
        DistributionKind.UNIFORM,
        (float(magnitude(low, unit)), float(magnitude(high, unit, "uniform bounds"))),
        unit,
        weight,
    )


def Dirac(offset: Union[Quantity, float] = 1.0, weight: Weight = 1.0) -> Distribution:
    """Deterministic holding time ``offset``; it has a step cdf and no density."""

    unit = unit_of(offset)
    return Distribution(DistributionKind.DIRAC, (float(magnitude(offset, unit)),), unit, weight)


# operations -------------------------------------------------------------------


def weight_at(d: Distribution, t: ArrayLike = 0.0) -> ArrayLike:
    """Evaluate the weight of ``d`` at elapsed time ``t`` (in ``d.unit``)."""

    if not callable(d.weight):
        return float(d.weight)
    values = np.vectorize(d.weight, otypes=[float])(t)
    if np.any(values <= 0.0) or np.any(values > 1.0):
        raise InvalidProbability("Distribution weight must lie in (0, 1].")
    return values if np.ndim(values) else float(values)


def pdf(d: Distribution, x: Union[Quantity, ArrayLike], t: Union[Quantity, ArrayLike] = 0.0) -> ArrayLike:
    xs = _argument(d, x)
    return _scalar(weight_at(d, _argument(d, t)) * _OPERATIONS[d.kind].pdf(d.params, xs))


def cdf(d: Distribution, x: Union[Quantity, ArrayLike], t: Union[Quantity, ArrayLike] = 0.0) -> ArrayLike:
    xs = _argument(d, x)
    base = np.where(xs > 0.0, _OPERATIONS[d.kind].cdf(d.params, xs), 0.0)
    return _scalar(weight_at(d, _argument(d, t)) * base)


def ccdf(d: Distribution, x: Union[Quantity, ArrayLike], t: Union[Quantity, ArrayLike] = 0.0) -> ArrayLike:
    ts = _argument(d, t)
    return _scalar(weight_at(d, ts) - cdf(d, x, ts))


def quantile(d: Distribution, p: float) -> float:
    """Quantile of the unweighted distribution."""

    _check_level(p)
    return float(_OPERATIONS[d.kind].quantile(d.params, p))


def cquantile(d: Distribution, p: float) -> float:
    """Complementary quantile: the point where the unweighted survival equals ``p``."""

    _check_level(p)
    return float(_OPERATIONS[d.kind].quantile(d.params, 1.0 - p))


def sojourn(d: Distribution, step: Union[Quantity, float], tol: float = 1e-8) -> np.ndarray:
    """Sample points ``0, step, 2*step, ...`` until the survival drops below ``tol``."""

    dx = float(magnitude(step, d.unit, "sojourn step"))
    if dx <= 0.0:
        raise ValueError("Sojourn step must be positive.")
    upper = cquantile(d, tol)
    return np.arange(int(math.ceil(upper / dx)) + 1) * dx


def mean(d: Distribution) -> float:
    return float(_OPERATIONS[d.kind].mean(d.params))


def rate(d: Distribution, t: ArrayLike = 0.0) -> ArrayLike:
    """Constant-hazard rate of an exponential distribution, scaled by its weight."""

    if d.kind is not DistributionKind.EXPONENTIAL:
        raise ValueError(f"A {d.kind.value} distribution has no constant rate.")
    return weight_at(d, t) / d.params[0]


def to_unit(d: Distribution, unit: str) -> Distribution:
    """Return ``d`` with its parameters expressed in ``unit``.

    A distribution without a unit is assumed to be expressed in ``unit``.
    """

    if not d.unit or d.unit == unit:
        return d
    factor = float(convert(1.0, d.unit, unit))
    params = _OPERATIONS[d.kind].rescale(d.params, factor)
    weight = d.weight
    if callable(weight):
        original = weight
        weight = lambda t: original(t / factor)  # noqa: E731
    return Distribution(d.kind, params, unit, weight)


# operation table --------------------------------------------------------------


class _Operations(NamedTuple):
    pdf: Callable[[Tuple[float, ...], np.ndarray], np.ndarray]
    cdf: Callable[[Tuple[float, ...], np.ndarray], np.ndarray]
    quantile: Callable[[Tuple[float, ...], float], float]
    mean: Callable[[Tuple[float, ...]], float]
    rescale: Callable[[Tuple[float, ...], float], Tuple[float, ...]]
    validate: Callable[[Tuple[float, ...]], None]


def _positive(*names: str) -> Callable[[Tuple[float, ...]], None]:
    def validate(params: Tuple[float, ...]) -> None:
        for name, value in zip(names, params):
            if not value > 0.0:
                raise ValueError(f"Distribution parameter '{name}' must be positive, got {value}.")

    return validate


def _validate_uniform(params: Tuple[float, ...]) -> None:
    low, high = params
    if low < 0.0 or high <= low:
        raise ValueError("Uniform bounds must satisfy 0 <= low < high.")


def _validate_lognormal(params: Tuple[float, ...]) -> None:
    if not params[1] > 0.0:
        raise ValueError("Log-normal sigma must be positive.")


def _dirac_cdf(params: Tuple[float, ...], x: np.ndarray) -> np.ndarray:
    return np.where(x >= params[0], 1.0, 0.0)


_OPERATIONS: Dict[DistributionKind, _Operations] = {
    DistributionKind.EXPONENTIAL: _Operations(
        pdf=lambda p, x: stats.expon.pdf(x, scale=p[0]),
        cdf=lambda p, x: stats.expon.cdf(x, scale=p[0]),
        quantile=lambda p, q: stats.expon.ppf(q, scale=p[0]),
        mean=lambda p: p[0],
        rescale=lambda p, c: (p[0] * c,),
        validate=_positive("scale"),
    ),
    DistributionKind.WEIBULL: _Operations(
        pdf=lambda p, x: stats.weibull_min.pdf(x, p[1], scale=p[0]),
        cdf=lambda p, x: stats.weibull_min.cdf(x, p[1], scale=p[0]),
        quantile=lambda p, q: stats.weibull_min.ppf(q, p[1], scale=p[0]),
        mean=lambda p: stats.weibull_min.mean(p[1], scale=p[0]),
        rescale=lambda p, c: (p[0] * c, p[1]),
        validate=_positive("scale", "shape"),
    ),
    DistributionKind.LOGNORMAL: _Operations(
        pdf=lambda p, x: stats.lognorm.pdf(x, p[1], scale=math.exp(p[0])),
        cdf=lambda p, x: stats.lognorm.cdf(x, p[1], scale=math.exp(p[0])),
        quantile=lambda p, q: stats.lognorm.ppf(q, p[1], scale=math.exp(p[0])),
        mean=lambda p: stats.lognorm.mean(p[1], scale=math.exp(p[0])),
        rescale=lambda p, c: (p[0] + math.log(c), p[1]),
        validate=_validate_lognormal,
    ),
    DistributionKind.UNIFORM: _Operations(
        pdf=lambda p, x: stats.uniform.pdf(x, loc=p[0], scale=p[1] - p[0]),
        cdf=lambda p, x: stats.uniform.cdf(x, loc=p[0], scale=p[1] - p[0]),
        quantile=lambda p, q: stats.uniform.ppf(q, loc=p[0], scale=p[1] - p[0]),
        mean=lambda p: 0.5 * (p[0] + p[1]),
        rescale=lambda p, c: (p[0] * c, p[1] * c),
        validate=_validate_uniform,
    ),
    DistributionKind.DIRAC: _Operations(
        pdf=lambda p, x: np.zeros_like(x, dtype=float),
        cdf=_dirac_cdf,
        quantile=lambda p, q: p[0],
        mean=lambda p: p[0],
        rescale=lambda p, c: (p[0] * c,),
        validate=_positive("offset"),
    ),
}


def _argument(d: Distribution, x: Union[Quantity, ArrayLike]) -> np.ndarray:
    return np.asarray(magnitude(x, d.unit, f"{d.kind.value} distribution"), dtype=float)


def _scalar(value: ArrayLike) -> ArrayLike:
    return float(value) if np.ndim(value) == 0 else value


def _check_weight(value: float) -> None:
    if not 0.0 < value <= 1.0:
        raise InvalidProbability(f"Distribution weight must lie in (0, 1], got {value}.")


def _check_level(p: float) -> None:
    if not 0.0 <= p <= 1.0:
        raise InvalidProbability(f"Probability level must lie in [0, 1], got {p}.")

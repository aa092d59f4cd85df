import math

import numpy as np
import pytest

from mss_core.conversions import Quantity, UnitMismatch
from mss_core.distributions import (
    Dirac,
    DistributionKind,
    Exponential,
    LogNormal,
    Uniform,
    Weibull,
    ccdf,
    cdf,
    cquantile,
    mean,
    pdf,
    quantile,
    rate,
    sojourn,
    to_unit,
)
from mss_core.errors import InvalidProbability


@pytest.mark.parametrize(
    "distribution",
    [Exponential(2.0), Weibull(1.5, 2.0), LogNormal(0.0, 0.5), Uniform(0.5, 3.0), Exponential(1.0, weight=0.4)],
)
def test_contracts_hold(distribution) -> None:
    x = np.linspace(-1.0, 5.0, 61)
    weight = distribution.weight

    assert np.all(pdf(distribution, x) >= 0.0)
    np.testing.assert_allclose(cdf(distribution, x) + ccdf(distribution, x), weight)
    assert cdf(distribution, 0.0) == 0.0
    assert ccdf(distribution, -1.0) == weight


def test_exponential_formulas() -> None:
    d = Exponential(2.0)

    assert math.isclose(cdf(d, 1.0), 1.0 - math.exp(-0.5))
    assert math.isclose(pdf(d, 1.0), 0.5 * math.exp(-0.5))
    assert math.isclose(mean(d), 2.0)
    assert math.isclose(rate(d), 0.5)
    assert math.isclose(quantile(d, 0.5), 2.0 * math.log(2.0))
    assert math.isclose(cquantile(d, 1e-3), 2.0 * math.log(1e3))


def test_weight_scales_distribution() -> None:
    d = Exponential(1.0, weight=0.25)

    assert math.isclose(cdf(d, 50.0), 0.25)
    assert math.isclose(rate(d), 0.25)


def test_time_varying_weight() -> None:
    d = Exponential(1.0, weight=lambda t: 0.5 if t < 1.0 else 1.0)

    assert math.isclose(cdf(d, 50.0, 0.0), 0.5)
    assert math.isclose(cdf(d, 50.0, 2.0), 1.0)
    assert not d.has_constant_weight


def test_weight_out_of_range_is_rejected() -> None:
    with pytest.raises(InvalidProbability):
        Exponential(1.0, weight=1.5)
    d = Exponential(1.0, weight=lambda t: 2.0)
    with pytest.raises(InvalidProbability):
        cdf(d, 1.0)


def test_weibull_with_unit_shape_is_exponential() -> None:
    x = np.array([0.1, 1.0, 3.0])

    np.testing.assert_allclose(cdf(Weibull(2.0, 1.0), x), cdf(Exponential(2.0), x))


def test_lognormal_mean() -> None:
    assert math.isclose(mean(LogNormal(1.0, 0.5)), math.exp(1.0 + 0.125))


def test_uniform_and_dirac() -> None:
    assert math.isclose(cdf(Uniform(1.0, 3.0), 2.0), 0.5)
    with pytest.raises(ValueError):
        Uniform(3.0, 1.0)

    d = Dirac(2.0)
    assert cdf(d, 1.9) == 0.0
    assert cdf(d, 2.0) == 1.0
    assert pdf(d, 2.0) == 0.0
    assert d.kind is DistributionKind.DIRAC


def test_sojourn_reaches_tolerance() -> None:
    points = sojourn(Exponential(1.0), 0.5, tol=1e-2)

    assert points[0] == 0.0
    assert math.isclose(points[-1], 5.0)
    assert ccdf(Exponential(1.0), points[-1]) < 1e-2


def test_units_are_checked_and_converted() -> None:
    d = Exponential(Quantity(2.0, "hr"))

    assert d.unit == "hr"
    assert math.isclose(pdf(d, Quantity(60.0, "min")), pdf(d, 1.0))
    with pytest.raises(UnitMismatch):
        pdf(d, Quantity(1.0, "MW"))


def test_to_unit_rescales_parameters() -> None:
    d = to_unit(Exponential(Quantity(1.0, "d")), "hr")

    assert d.unit == "hr"
    assert math.isclose(mean(d), 24.0)
    assert math.isclose(mean(to_unit(Weibull(Quantity(2.0, "yr"), 1.0), "d")), 730.5)


def test_rate_requires_exponential() -> None:
    with pytest.raises(ValueError):
        rate(Weibull(1.0, 2.0))

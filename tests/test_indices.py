import math

import numpy as np
import pytest

from mss_core.errors import InvalidProbability
from mss_core.indices import eens, gra, gra_curve
from mss_core.ugf import UGF


@pytest.fixture
def plant() -> UGF:
    """Plant output in MW: down, half and full power."""
    return UGF([0.0, 50.0, 100.0], [0.1, 0.2, 0.7], "MW")


def test_eens_against_maximum(plant: UGF) -> None:
    assert math.isclose(eens(plant), 8760.0 * (100.0 * 0.1 + 50.0 * 0.2))


def test_eens_against_demand(plant: UGF) -> None:
    assert math.isclose(eens(plant, demand=60.0, hours=1.0), 60.0 * 0.1 + 10.0 * 0.2)


def test_gra(plant: UGF) -> None:
    assert math.isclose(gra(plant, 0.5), 0.9)
    assert math.isclose(gra(plant, 1.0), 0.7)
    assert math.isclose(gra(plant, 0.0), 1.0)
    with pytest.raises(InvalidProbability):
        gra(plant, 1.5)


def test_gra_curve_is_non_increasing(plant: UGF) -> None:
    curve = gra_curve(plant)

    assert curve.shape == (101,)
    assert np.all(np.diff(curve) <= 1e-12)
    np.testing.assert_allclose(gra_curve(plant, [0.25, 0.75]), [0.9, 0.7])

import math

import numpy as np
import pytest

from mss_core.conversions import (
    ConversionError,
    Quantity,
    UnitMismatch,
    check_compatible,
    convert,
    dimension,
    magnitude,
)


@pytest.mark.parametrize(
    "value, from_unit, to_unit, expected",
    [
        (1.0, "yr", "d", 365.25),
        (2.0, "hr", "min", 120.0),
        (1.0, "MW", "kW", 1000.0),
        (3600.0, "m^3/hr", "m^3/s", 1.0),
        (1.0, "1/d", "1/yr", 365.25),
        (1.0, "yr", "hr", 8766.0),
        (2.0, "l/s", "m^3/s", 0.002),
    ],
)
def test_convert_between_units(value: float, from_unit: str, to_unit: str, expected: float) -> None:
    assert math.isclose(convert(value, from_unit, to_unit), expected)


def test_convert_arrays() -> None:
    np.testing.assert_allclose(convert(np.array([1.0, 2.0]), "d", "hr"), [24.0, 48.0])


def test_quantity_to_other_unit() -> None:
    q = Quantity(90.0, "min").to("hr")

    assert q.unit == "hr"
    assert math.isclose(q.value, 1.5)
    assert q.dimension == "[time]"
    assert str(q) == "1.5 hr"


def test_unit_mismatch_is_a_value_error() -> None:
    with pytest.raises(UnitMismatch):
        convert(1.0, "hr", "MW")
    with pytest.raises(ValueError):
        check_compatible("1/yr", "yr", "transition rate")


def test_unknown_unit_is_rejected() -> None:
    with pytest.raises(ConversionError):
        dimension("flurbs")
    with pytest.raises(ConversionError):
        Quantity(1.0, "blorp")


def test_magnitude_passes_bare_numbers() -> None:
    assert magnitude(2.5, "hr") == 2.5
    assert math.isclose(magnitude(Quantity(30.0, "min"), "hr"), 0.5)
    with pytest.raises(UnitMismatch):
        magnitude(Quantity(1.0, "kW"), "hr")

"""Helpers that check and convert physical units at API boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Union

import numpy as np
from pint import DimensionalityError, UndefinedUnitError, UnitRegistry

from .errors import MultiStateError

ureg = UnitRegistry()

Number = Union[float, int, np.ndarray]


class ConversionError(MultiStateError, ValueError):
    """Raised when a unit string cannot be interpreted."""


class UnitMismatch(ConversionError):
    """Raised when two quantities of different physical dimension are combined."""


@dataclass(frozen=True)
class Quantity:
    """A value tagged with its physical unit."""

    value: float
    unit: str = ""

    def __post_init__(self) -> None:
        _units(self.unit)

    @property
    def dimension(self) -> str:
        return dimension(self.unit)

    def to(self, unit: str) -> "Quantity":
        return Quantity(convert(self.value, self.unit, unit), unit)

    def __str__(self) -> str:
        return f"{self.value:g} {self.unit}".rstrip()


def dimension(unit: str) -> str:
    """Return the pint dimensionality of ``unit``, e.g. ``'[time]'``."""

    return str(_units(unit).dimensionality)


def check_compatible(unit_a: str, unit_b: str, context: str = "") -> None:
    """Raise :class:`UnitMismatch` unless both units share a dimension."""

    if _units(unit_a).dimensionality != _units(unit_b).dimensionality:
        where = f"{context}: " if context else ""
        raise UnitMismatch(
            f"{where}cannot combine '{unit_a}' ({dimension(unit_a)}) with '{unit_b}' ({dimension(unit_b)})."
        )


def convert(value: Number, from_unit: str, to_unit: str) -> Number:
    """Express ``value`` given in ``from_unit`` in ``to_unit``."""

    check_compatible(from_unit, to_unit)
    if from_unit == to_unit:
        return value
    return value * _factor(from_unit, to_unit)


def magnitude(value: Union[Quantity, Number], unit: str, context: str = "") -> Number:
    """Return the bare magnitude of ``value`` in ``unit``.

    Plain numbers and arrays are taken to be expressed in ``unit`` already;
    a :class:`Quantity` is converted after its dimension has been checked.
    """

    if isinstance(value, Quantity):
        check_compatible(value.unit, unit, context)
        return convert(value.value, value.unit, unit)
    return value


def unit_of(value: object, default: str = "") -> str:
    """Return the unit carried by ``value`` or ``default`` for bare numbers."""

    if isinstance(value, Quantity):
        return value.unit
    return default


@lru_cache(maxsize=None)
def _units(unit: str):
    if not isinstance(unit, str):
        raise ConversionError(f"Unknown unit: {unit!r}")
    if not unit.strip():
        return ureg.dimensionless
    try:
        return ureg.parse_units(unit.strip())
    except UndefinedUnitError as exc:
        raise ConversionError(f"Unknown unit: {unit!r}") from exc


@lru_cache(maxsize=None)
def _factor(from_unit: str, to_unit: str) -> float:
    try:
        return float(ureg.Quantity(1.0, _units(from_unit)).to(_units(to_unit)).magnitude)
    except DimensionalityError as exc:
        raise UnitMismatch(f"cannot convert '{from_unit}' to '{to_unit}'.") from exc

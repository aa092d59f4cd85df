"""Core math package for multi-state system reliability."""

from .errors import InvalidProbability, MultiStateError, NonConvergent, Singular, StructuralError
from .conversions import ConversionError, Quantity, UnitMismatch, convert
from .distributions import (
    Dirac,
    Distribution,
    DistributionKind,
    Exponential,
    LogNormal,
    Uniform,
    Weibull,
)
from .models import NetworkSettings, ProcessKind, SolverSettings, TransitionType
from .std import STD, solved_std
from .engine import solve
from .ugf import UGF, Direction, bidirectional, mixture, parallel, series
from .network import Network
from .indices import eens, gra, gra_curve
from .config import load_settings

__all__ = [
    "MultiStateError",
    "InvalidProbability",
    "NonConvergent",
    "Singular",
    "StructuralError",
    "ConversionError",
    "UnitMismatch",
    "Quantity",
    "convert",
    "Distribution",
    "DistributionKind",
    "Exponential",
    "Weibull",
    "LogNormal",
    "Uniform",
    "Dirac",
    "ProcessKind",
    "TransitionType",
    "SolverSettings",
    "NetworkSettings",
    "STD",
    "solved_std",
    "solve",
    "UGF",
    "Direction",
    "series",
    "parallel",
    "bidirectional",
    "mixture",
    "Network",
    "eens",
    "gra",
    "gra_curve",
    "load_settings",
]

"""Exceptions raised by the multi-state system core."""

from __future__ import annotations

from typing import Any, Dict, Optional


class MultiStateError(Exception):
    """Base class for every error raised by :mod:`mss_core`."""


class InvalidProbability(MultiStateError, ValueError):
    """Raised when probabilities or weights leave [0, 1] or do not sum correctly."""


class Singular(MultiStateError, ArithmeticError):
    """Raised when a steady-state system has no unique stationary distribution."""


class StructuralError(MultiStateError, LookupError):
    """Raised for unknown states/nodes, unsolved models or unreachable users."""


class NonConvergent(MultiStateError, RuntimeError):
    """Raised when the network fixed-point loop exceeds its iteration cap.

    The last iterate is kept on the exception so callers can inspect it, but
    it is never returned as if it were a converged result.
    """

    def __init__(
        self,
        message: str,
        ugfs: Optional[Dict[int, Any]] = None,
        residual: float = float("inf"),
        iterations: int = 0,
    ) -> None:
        super().__init__(message)
        self.ugfs = ugfs or {}
        self.residual = residual
        self.iterations = iterations

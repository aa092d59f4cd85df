import pytest

from mss_core.models import SolverSettings
from mss_core.std import STD, solved_std


@pytest.fixture
def two_state_std() -> STD:
    """Repairable component: failure rate 1/yr, repair rate 10/yr, starts available."""
    std = STD()
    std.add_states(init=[1.0, 0.0], performance=[1.0, 0.0], names=["available", "unavailable"])
    std.add_transitions(states=[(0, 1), (1, 0)], rate=[1.0, 10.0], type=["failure", "repair"])
    return std


@pytest.fixture
def fine_settings() -> SolverSettings:
    """Half a year on a fine grid, accurate enough to compare solvers."""
    return SolverSettings(horizon=0.5, step=0.002, tolerance=1e-10)


@pytest.fixture
def available_95() -> STD:
    """Already solved source that delivers 1 unit 95% of the time."""
    return solved_std([0.95, 0.05], [1.0, 0.0])

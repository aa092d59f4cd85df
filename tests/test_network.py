import numpy as np
import pytest

from mss_core.engine import solve
from mss_core.errors import NonConvergent, StructuralError
from mss_core.models import ProcessKind
from mss_core.network import Network
from mss_core.std import STD, solved_std
from mss_core.ugf import UGF


def _single_state_source() -> STD:
    std = STD()
    std.add_states(init=[1.0], performance=[1.0], names=["on"])
    return solve(std, ProcessKind.STEADY_STATE)


def _triangle(max_iterations: int = 100) -> Network:
    network = Network("triangle")
    network.add_source(1, std=solved_std([0.1, 0.9], [0.0, 1.0]))
    network.add_bidirectional_components([(1, 2), (2, 3), (1, 3)])
    network.add_user(3)
    return network


def test_single_source_through_component(two_state_std: STD) -> None:
    solve(two_state_std, ProcessKind.STEADY_STATE)
    network = Network("feeder")
    network.add_source(1, name="grid", std=_single_state_source())
    network.add_component((1, 2), name="cable", std=two_state_std)
    network.add_user(2, name="load")

    network.solve()

    assert network.user_ugf(2).as_dict() == pytest.approx({0.0: 1.0 / 11.0, 1.0: 10.0 / 11.0})
    user = network.users[0]
    assert user.std.solved
    np.testing.assert_allclose(user.std.probabilities.sum(axis=0), 1.0)


def test_redundant_sources_capped_by_demand(available_95: STD) -> None:
    network = Network()
    network.add_sources([1, 2], std=available_95)
    network.add_components([(1, 3), (2, 3)])
    network.add_user(3, demand=1.0)

    network.solve()

    assert network.user_ugf(3).as_dict() == pytest.approx({0.0: 0.0025, 1.0: 0.9975})


def test_flow_transmission_network() -> None:
    network = Network("flow transmission")
    network.add_source(1)
    network.add_components(
        [(1, 2), (1, 2), (2, 3)],
        names=["pipe 1", "pipe 2", "pipe 3"],
        std=[
            solved_std([0.2, 0.8], [0.0, 1500.0]),
            solved_std([0.4, 0.6], [0.0, 2000.0]),
            solved_std([0.1, 0.2, 0.7], [0.0, 1800.0, 4000.0]),
        ],
    )
    network.add_user(3)

    network.solve()

    ugf = network.user_ugf(3)
    np.testing.assert_allclose(ugf.val, [0.0, 1500.0, 1800.0, 2000.0, 3500.0])
    np.testing.assert_allclose(ugf.final, [0.172, 0.288, 0.12, 0.084, 0.336])
    assert network.iterations == 1


def _available(p: float = 10.0 / 11.0) -> UGF:
    return UGF([0.0, 1.0], [1.0 - p, p])


def test_downstream_edge_shared_by_two_sources_has_one_state() -> None:
    network = Network()
    network.add_sources([1, 2])
    network.add_components([(1, 3), (2, 3)])
    network.add_component((3, 4), name="trunk", ugf=_available())
    network.add_user(4)

    network.solve()

    assert network.user_ugf(4).as_dict() == pytest.approx({0.0: 1.0 / 11.0, 1.0: 10.0 / 11.0})


def test_upstream_edge_feeding_parallel_pipes_has_one_state() -> None:
    network = Network()
    network.add_source(1)
    network.add_component((1, 2), name="trunk", ugf=_available())
    network.add_components([(2, 3), (2, 3)], names=["pipe 1", "pipe 2"])
    network.add_user(3)

    network.solve()

    assert network.user_ugf(3).as_dict() == pytest.approx({0.0: 1.0 / 11.0, 1.0: 10.0 / 11.0})
    assert network.iterations == 1


def test_reconverging_routes_share_their_upstream_edge() -> None:
    network = Network("diamond")
    network.add_source(1)
    network.add_component((1, 2), name="trunk", ugf=_available())
    network.add_components([(2, 3), (2, 4), (3, 5), (4, 5)])
    network.add_user(5)

    network.solve()

    assert network.user_ugf(5).as_dict() == pytest.approx({0.0: 1.0 / 11.0, 1.0: 10.0 / 11.0})


def test_unlimited_reconverging_routes_stay_unlimited() -> None:
    network = Network()
    network.add_source(1)
    network.add_components([(1, 2), (1, 3), (2, 4), (3, 4)])
    network.add_user(4)

    network.solve()

    assert network.user_ugf(4).as_dict() == {np.inf: 1.0}


def test_bridge_network_is_evaluated_over_joint_states() -> None:
    network = Network("bridge")
    network.add_source(1)
    network.add_components([(1, 2), (1, 3), (2, 3), (2, 4), (3, 4)], ugf=_available(0.9))
    network.add_user(4)

    network.solve()

    assert network.user_ugf(4).as_dict() == pytest.approx({0.0: 0.02881, 1.0: 0.31509, 2.0: 0.6561})
    assert network.iterations == 1


def test_bidirectional_edge_serves_both_ends() -> None:
    source = solved_std([0.1, 0.9], [0.0, 1.0])
    network = Network()
    network.add_sources([1, 2], std=source)
    network.add_bidirectional_component((1, 2))
    network.add_users([1, 2])

    network.solve()

    expected = {0.0: 0.01, 1.0: 0.18, 2.0: 0.81}
    assert network.user_ugf(1).as_dict() == pytest.approx(expected)
    assert network.user_ugf(2).as_dict() == pytest.approx(expected)


def test_cycles_are_iterated_without_double_counting() -> None:
    network = _triangle()

    network.solve()

    assert network.user_ugf(3).as_dict() == pytest.approx({0.0: 0.1, 1.0: 0.9})
    assert network.iterations > 1
    assert network.residual < 1e-9


def test_iteration_cap_raises_non_convergent() -> None:
    network = _triangle()

    with pytest.raises(NonConvergent) as info:
        network.solve(max_iterations=1)

    assert info.value.iterations == 1
    assert info.value.residual > 0.0
    assert set(info.value.ugfs) == {0}
    assert not network.solved


def test_dependent_sources_share_one_state(available_95: STD) -> None:
    network = Network()
    network.add_sources([1, 2], std=available_95, dependent=True)
    network.add_components([(1, 3), (2, 3)])
    network.add_user(3)

    network.solve()

    assert network.user_ugf(3).as_dict() == pytest.approx({0.0: 0.05, 2.0: 0.95})


def test_nested_network_acts_as_source(two_state_std: STD) -> None:
    solve(two_state_std, ProcessKind.STEADY_STATE)
    feeder = Network("feeder")
    feeder.add_source(1)
    feeder.add_component((1, 2), std=two_state_std)
    feeder.add_user(2)

    network = Network("main")
    network.add_source(10, network=(feeder, 2))
    network.add_user(10)
    network.solve()

    assert feeder.solved
    assert network.user_ugf(10).as_dict() == pytest.approx({0.0: 1.0 / 11.0, 1.0: 10.0 / 11.0})


def test_node_component_acts_in_series() -> None:
    network = Network()
    network.add_source(1)
    network.add_component((1, 2))
    network.add_component(2, ugf=UGF([0.0, 5.0], [0.2, 0.8]))
    network.add_user(2)

    network.solve()

    assert network.user_ugf(2).as_dict() == pytest.approx({0.0: 0.2, 5.0: 0.8})


def test_time_indexed_solve(two_state_std: STD) -> None:
    solve(two_state_std, ProcessKind.MARKOV, horizon=0.1, step=0.01)
    network = Network()
    network.add_source(1, std=solved_std([1.0], [1.0]))
    network.add_component((1, 2), std=two_state_std)
    network.add_user(2)

    network.solve(time_indexed=True)

    ugf = network.user_ugf(2)
    assert ugf.n_times == two_state_std.time.size
    np.testing.assert_allclose(ugf.prb[1], two_state_std.probabilities[0])


def test_caller_models_are_not_mutated(available_95: STD) -> None:
    before = available_95.probabilities.copy()
    network = Network()
    network.add_sources([1, 2], std=available_95)
    network.add_components([(1, 3), (2, 3)])
    network.add_user(3)

    network.solve()

    np.testing.assert_array_equal(available_95.probabilities, before)
    assert network.sources[0].std is available_95


def test_unreachable_user_is_structural() -> None:
    network = Network()
    network.add_source(1)
    network.add_component((1, 2))
    network.add_user(3)

    with pytest.raises(StructuralError):
        network.solve()


def test_unsolved_model_is_structural(two_state_std: STD) -> None:
    network = Network()
    network.add_source(1)
    network.add_component((1, 2), std=two_state_std)
    network.add_user(2)

    with pytest.raises(StructuralError):
        network.solve()


def test_results_require_a_solve() -> None:
    network = Network()
    network.add_source(1)
    network.add_user(1)

    with pytest.raises(StructuralError):
        network.user_ugf(1)
    with pytest.raises(ValueError):
        network.solve(tolerance=1e-6, sweeps=3)

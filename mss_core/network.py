"""Network of sources, components and users composed through UGFs."""

from __future__ import annotations

import dataclasses
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np

from .conversions import Quantity, magnitude
from .errors import NonConvergent, StructuralError
from .models import Component, NetworkSettings, Source, User
from .std import STD, broadcast
from .ugf import (
    UGF,
    Direction,
    bidirectional,
    clip,
    compose_all,
    max_difference,
    mixture,
    parallel,
    series,
)

logger = logging.getLogger(__name__)

Edge = Tuple[int, int]


@dataclass(frozen=True)
class _Slot:
    """Flow sent along one direction of an edge component."""

    index: int
    component: int
    tail: int
    head: int
    direction: Direction
    reverse: Optional[int] = None


class Network:
    """Directed multigraph of sources, components and users.

    Nodes are plain integers and may carry any combination of roles. Edge
    components form an arena indexed by component id and every component is
    mirrored as a keyed edge of :attr:`graph`, so parallel feeders between the
    same nodes stay distinct. Caller-owned STDs are referenced, never mutated.
    """

    def __init__(self, name: Optional[str] = None) -> None:
        self.name = name
        self.graph = nx.MultiDiGraph()
        self.sources: List[Source] = []
        self.users: List[User] = []
        self.components: List[Component] = []
        self.solved = False
        self.iterations = 0
        self.residual = 0.0

    # construction -------------------------------------------------------------

    def add_source(
        self,
        node: int,
        name: Optional[str] = None,
        std: Optional[STD] = None,
        ugf: Optional[UGF] = None,
        network: Optional[Tuple["Network", int]] = None,
        dependent: bool = False,
    ) -> int:
        _check_model(std, ugf, network)
        source = Source(
            index=len(self.sources),
            node=self._node(node),
            name=name,
            std=std,
            ugf=ugf,
            network=network,
            dependent=bool(dependent),
        )
        self.sources.append(source)
        self.solved = False
        return source.index

    def add_sources(
        self,
        nodes: Sequence[int],
        names: Any = None,
        std: Any = None,
        ugf: Any = None,
        network: Any = None,
        dependent: Any = False,
    ) -> List[int]:
        count = len(nodes)
        return [
            self.add_source(node, name=n, std=s, ugf=u, network=w, dependent=d)
            for node, n, s, u, w, d in zip(
                nodes,
                broadcast(names, count, "names"),
                broadcast(std, count, "std", (STD,)),
                broadcast(ugf, count, "ugf", (UGF,)),
                _broadcast_networks(network, count),
                broadcast(dependent, count, "dependent"),
            )
        ]

    def add_user(
        self,
        node: int,
        name: Optional[str] = None,
        demand: Union[Quantity, float, None] = None,
    ) -> int:
        user = User(index=len(self.users), node=self._node(node), name=name, demand=demand)
        self.users.append(user)
        self.solved = False
        return user.index

    def add_users(self, nodes: Sequence[int], names: Any = None, demand: Any = None) -> List[int]:
        count = len(nodes)
        return [
            self.add_user(node, name=n, demand=d)
            for node, n, d in zip(
                nodes,
                broadcast(names, count, "names"),
                broadcast(demand, count, "demand"),
            )
        ]

    def add_component(
        self,
        edge: Union[Edge, int],
        name: Optional[str] = None,
        std: Optional[STD] = None,
        ugf: Optional[UGF] = None,
        bidirectional: bool = False,
    ) -> int:
        """Add a component on ``edge`` (a node pair) or on a single node.

        A node component acts in series on everything that flows through its
        node. ``bidirectional`` is only meaningful for edge components.
        """

        _check_model(std, ugf, None)
        index = len(self.components)
        if isinstance(edge, (int, np.integer)):
            if bidirectional:
                raise ValueError("A node component cannot be bidirectional.")
            component = Component(index=index, node=self._node(edge), name=name, std=std, ugf=ugf)
        else:
            tail, head = (int(n) for n in edge)
            if tail == head:
                raise StructuralError(f"Edge ({tail}, {head}) is a self-loop.")
            self._node(tail)
            self._node(head)
            component = Component(
                index=index,
                edge=(tail, head),
                name=name,
                std=std,
                ugf=ugf,
                bidirectional=bool(bidirectional),
            )
            self.graph.add_edge(tail, head, key=index)
        self.components.append(component)
        self.solved = False
        return index

    def add_components(
        self,
        edges: Sequence[Union[Edge, int]],
        names: Any = None,
        std: Any = None,
        ugf: Any = None,
        bidirectional: Any = False,
    ) -> List[int]:
        count = len(edges)
        return [
            self.add_component(edge, name=n, std=s, ugf=u, bidirectional=b)
            for edge, n, s, u, b in zip(
                edges,
                broadcast(names, count, "names"),
                broadcast(std, count, "std", (STD,)),
                broadcast(ugf, count, "ugf", (UGF,)),
                broadcast(bidirectional, count, "bidirectional"),
            )
        ]

    def add_bidirectional_component(
        self,
        edge: Edge,
        name: Optional[str] = None,
        std: Optional[STD] = None,
        ugf: Optional[UGF] = None,
    ) -> int:
        return self.add_component(edge, name=name, std=std, ugf=ugf, bidirectional=True)

    def add_bidirectional_components(
        self, edges: Sequence[Edge], names: Any = None, std: Any = None, ugf: Any = None
    ) -> List[int]:
        return self.add_components(edges, names=names, std=std, ugf=ugf, bidirectional=True)

    def _node(self, node: int) -> int:
        node = int(node)
        self.graph.add_node(node)
        return node

    # results ------------------------------------------------------------------

    def user_ugf(self, node: int) -> UGF:
        """UGF delivered to the first user on ``node``."""

        if not self.solved:
            raise StructuralError(f"{self!r} has not been solved.")
        for user in self.users:
            if user.node == node:
                return user.ugf
        raise StructuralError(f"Node {node} has no user.")

    def solve(self, settings: Optional[NetworkSettings] = None, **config: Any) -> "Network":
        """Compose the UGF delivered to every user and attach it with an equivalent STD."""

        settings = settings or NetworkSettings()
        unknown = set(config) - {field.name for field in dataclasses.fields(NetworkSettings)}
        if unknown:
            raise ValueError(f"Unknown network setting(s): {', '.join(sorted(unknown))}.")
        settings = dataclasses.replace(settings, **config)
        if not self.users:
            raise StructuralError("Network has no users.")
        if not self.sources:
            raise StructuralError("Network has no sources.")
        self._check_reachable()

        components = [self._model(c.std, c.ugf, settings) for c in self.components]
        supplies = [self._source_ugf(s, settings) for s in self.sources]
        dependent = [s.index for s in self.sources if s.dependent]

        if dependent:
            shared = supplies[dependent[0]]
            outcomes, weights = [], []
            for value, prob in zip(shared.val, shared.prb):
                fixed = list(supplies)
                for index in dependent:
                    fixed[index] = UGF([value], [1.0], shared.unit)
                outcomes.append(self._deliver(fixed, components, settings))
                weights.append(prob)
            results = {
                user.index: mixture([outcome[user.index] for outcome in outcomes], weights)
                for user in self.users
            }
        else:
            results = self._deliver(supplies, components, settings)

        for user in self.users:
            user.ugf = results[user.index]
            user.std = STD.from_ugf(user.ugf)
        self.solved = True
        logger.info(
            "Solved network %s for %d user(s) in %d sweep(s).",
            self.name or "<unnamed>",
            len(self.users),
            self.iterations,
        )
        return self

    # solver -------------------------------------------------------------------

    def _check_reachable(self) -> None:
        flow = self._flow_graph()
        origins = {source.node for source in self.sources}
        for user in self.users:
            if not any(nx.has_path(flow, origin, user.node) for origin in origins):
                raise StructuralError(f"User on node {user.node} is unreachable from every source.")

    def _flow_graph(self) -> nx.DiGraph:
        flow = nx.DiGraph()
        flow.add_nodes_from(self.graph.nodes)
        flow.add_edges_from((slot.tail, slot.head) for slot in self._slots())
        return flow

    def _model(self, std: Optional[STD], ugf: Optional[UGF], settings: NetworkSettings) -> UGF:
        if ugf is not None:
            return ugf
        if std is not None:
            if not std.solved:
                raise StructuralError(f"Element model {std!r} has not been solved.")
            return UGF.from_std(std, time_indexed=settings.time_indexed)
        return UGF.perfect()

    def _source_ugf(self, source: Source, settings: NetworkSettings) -> UGF:
        if source.network is None:
            return self._model(source.std, source.ugf, settings)
        subnetwork, node = source.network
        if not subnetwork.solved:
            logger.debug("Solving nested network %s first.", subnetwork.name or "<unnamed>")
            subnetwork.solve(settings)
        return subnetwork.user_ugf(node)

    def _slots(self) -> List[_Slot]:
        slots: List[_Slot] = []
        for component in self.components:
            if not component.on_edge:
                continue
            tail, head = component.edge
            forward = len(slots)
            if component.bidirectional:
                slots.append(_Slot(forward, component.index, tail, head, Direction.FORWARD, forward + 1))
                slots.append(_Slot(forward + 1, component.index, head, tail, Direction.BACKWARD, forward))
            else:
                slots.append(_Slot(forward, component.index, tail, head, Direction.FORWARD))
        return slots

    def _deliver(
        self, supplies: Sequence[UGF], components: Sequence[UGF], settings: NetworkSettings
    ) -> Dict[int, UGF]:
        slots = self._slots()
        if _is_cyclic(slots):
            return self._propagate(slots, supplies, components, settings)
        results = {}
        for user in self.users:
            delivered = self._evaluate(user.node, slots, supplies, components)
            if user.demand is not None:
                delivered = clip(delivered, magnitude(user.demand, delivered.unit, "user demand"))
            results[user.index] = delivered
        self.iterations, self.residual = 1, 0.0
        return results

    # acyclic networks ---------------------------------------------------------

    def _evaluate(
        self, node: int, slots: Sequence[_Slot], supplies: Sequence[UGF], components: Sequence[UGF]
    ) -> UGF:
        """Exact UGF delivered at ``node`` of an acyclic network.

        Only slots between nodes that are fed by a source and lead to ``node``
        take part. When every such node has a single downstream neighbour the
        feed is a tree and is folded directly: ``parallel`` where flows merge,
        ``series`` along each edge. Otherwise an element would be met along
        more than one route, so its state is fixed jointly with every other
        element and the deliverable flow of each joint state is its maximum
        flow.
        """

        flow = self._flow_graph()
        fed = set()
        for source in self.sources:
            fed |= nx.descendants(flow, source.node) | {source.node}
        relevant = (nx.ancestors(flow, node) & fed) | {node}
        used = [s for s in slots if s.tail in relevant and s.head in relevant and s.tail != node]

        downstream: Dict[int, set] = {}
        for slot in used:
            downstream.setdefault(slot.tail, set()).add(slot.head)
        if all(len(heads) == 1 for heads in downstream.values()):
            return self._fold(node, used, supplies, components)
        return self._enumerate(node, relevant, used, supplies, components)

    def _fold(
        self, node: int, used: Sequence[_Slot], supplies: Sequence[UGF], components: Sequence[UGF]
    ) -> UGF:
        parts = [supplies[s.index] for s in self.sources if s.node == node]
        for tail in sorted({slot.tail for slot in used if slot.head == node}):
            upstream = self._fold(tail, used, supplies, components)
            edges = [components[s.component] for s in used if s.tail == tail and s.head == node]
            parts.append(series(upstream, compose_all(edges, parallel)))
        total = compose_all(parts, parallel) if parts else UGF.zero()
        for component in self.components:
            if not component.on_edge and component.node == node:
                total = series(total, components[component.index])
        return total

    def _enumerate(
        self,
        node: int,
        relevant: set,
        used: Sequence[_Slot],
        supplies: Sequence[UGF],
        components: Sequence[UGF],
    ) -> UGF:
        sources = [s.index for s in self.sources if s.node in relevant]
        members = sorted({s.component for s in used})
        members += [c.index for c in self.components if not c.on_edge and c.node in relevant]
        factors = [supplies[i] for i in sources] + [components[i] for i in members]
        unit = next((ugf.unit for ugf in factors if ugf.unit), "")
        values = [ugf.to(unit).val if ugf.unit and unit else ugf.val for ugf in factors]
        columns = max(ugf.n_times for ugf in factors)
        time = next((ugf.time for ugf in factors if ugf.time is not None and ugf.time.size == columns), None)
        logger.debug(
            "Feed of node %d reconverges; enumerating %d joint state(s).",
            node,
            int(np.prod([len(ugf) for ugf in factors])),
        )

        outcomes: Dict[float, np.ndarray] = {}
        for combination in itertools.product(*(range(len(ugf)) for ugf in factors)):
            weight = np.ones(columns)
            for ugf, row in zip(factors, combination):
                weight = weight * ugf.prb[row]
            if not np.any(weight):
                continue
            fixed = [v[row] for v, row in zip(values, combination)]
            supply = dict(zip(sources, fixed[: len(sources)]))
            capacity = dict(zip(members, fixed[len(sources):]))
            delivered = self._max_flow(node, relevant, used, supply, capacity)
            outcomes[delivered] = outcomes.get(delivered, 0.0) + weight
        if not outcomes:
            return UGF([], np.empty((0, columns)), unit, time)
        return UGF(list(outcomes), np.vstack(list(outcomes.values())), unit, time)

    def _max_flow(
        self,
        node: int,
        relevant: set,
        used: Sequence[_Slot],
        supply: Dict[int, float],
        capacity: Dict[int, float],
    ) -> float:
        """Largest flow into ``node`` for fixed element values.

        Every node is split into an inlet and an outlet joined by its node
        components; an infinite capacity is replaced by a bound above the sum
        of all finite ones so that reaching the bound means unlimited flow.
        """

        arcs: Dict[Tuple[Any, Any], List[float]] = {}
        for index, value in supply.items():
            arcs.setdefault(("supply", (self.sources[index].node, "in")), []).append(value)
        for slot in used:
            arcs.setdefault(((slot.tail, "out"), (slot.head, "in")), []).append(capacity[slot.component])
        limits: Dict[int, float] = {}
        for component in self.components:
            if not component.on_edge and component.index in capacity:
                limits[component.node] = min(limits.get(component.node, np.inf), capacity[component.index])
        for n in relevant:
            arcs[((n, "in"), (n, "out"))] = [limits.get(n, np.inf)]

        totals = {arc: float(np.sum(np.maximum(v, 0.0))) for arc, v in arcs.items()}
        bound = 1.0 + sum(c for c in totals.values() if np.isfinite(c))
        graph = nx.DiGraph()
        graph.add_nodes_from(["supply", (node, "out")])
        for (tail, head), total in totals.items():
            graph.add_edge(tail, head, capacity=total if np.isfinite(total) else bound)
        value = nx.maximum_flow_value(graph, "supply", (node, "out"))
        return np.inf if value >= bound else float(value)

    # cyclic networks ----------------------------------------------------------

    def _propagate(
        self,
        slots: Sequence[_Slot],
        supplies: Sequence[UGF],
        components: Sequence[UGF],
        settings: NetworkSettings,
    ) -> Dict[int, UGF]:
        """Deliver ``supplies`` over a network with cycles by fixed-point iteration.

        Messages carry the capacity of the network from one origin node,
        which starts out perfect, so supply circulating around a cycle is
        never counted twice. Each origin's supply then acts in series on its
        capacity towards a user, and origins combine in parallel. Elements met
        again around a cycle or from another origin are treated as
        independent, so the result approximates the joint evaluation used for
        acyclic networks.
        """

        origins: Dict[int, List[UGF]] = {}
        for source, ugf in zip(self.sources, supplies):
            origins.setdefault(source.node, []).append(ugf)
        maxima = [float(np.max(u.val)) if len(u) else 0.0 for u in supplies]
        cap = float(np.sum(maxima)) if all(np.isfinite(maxima)) else np.inf

        capacities: Dict[int, Dict[int, Optional[UGF]]] = {}
        residual, sweeps, converged = 0.0, 0, True
        for node, ugfs in origins.items():
            supply = compose_all(ugfs, parallel)
            capacity, node_residual, node_sweeps = self._capacity(node, supply, slots, components, settings)
            capacities[node] = capacity
            residual, sweeps = max(residual, node_residual), max(sweeps, node_sweeps)
            converged = converged and node_residual < settings.tolerance

        results = {}
        for user in self.users:
            parts = [
                series(compose_all(origins[node], parallel), capacity[user.node])
                for node, capacity in capacities.items()
                if capacity[user.node] is not None
            ]
            delivered = compose_all(parts, parallel) if parts else UGF.zero()
            if np.isfinite(cap):
                delivered = clip(delivered, cap)
            if user.demand is not None:
                delivered = clip(delivered, magnitude(user.demand, delivered.unit, "user demand"))
            results[user.index] = delivered

        self.iterations, self.residual = sweeps, residual
        if not converged:
            raise NonConvergent(
                f"Network did not converge within {settings.max_iterations} sweeps (residual {residual:.3e}).",
                ugfs=results,
                residual=residual,
                iterations=settings.max_iterations,
            )
        return results

    def _capacity(
        self,
        origin: int,
        supply: UGF,
        slots: Sequence[_Slot],
        components: Sequence[UGF],
        settings: NetworkSettings,
    ) -> Tuple[Dict[int, Optional[UGF]], float, int]:
        """Capacity from ``origin`` to every user node, with the final residual and sweep count."""

        inflow: Dict[int, List[int]] = {}
        for slot in slots:
            inflow.setdefault(slot.head, []).append(slot.index)
        node_components: Dict[int, List[UGF]] = {}
        for component, ugf in zip(self.components, components):
            if not component.on_edge:
                node_components.setdefault(component.node, []).append(ugf)
        limit = float(np.max(supply.val)) if len(supply) else 0.0
        messages: List[Optional[UGF]] = [None] * len(slots)

        def throughput(node: int, exclude: Optional[int] = None) -> Optional[UGF]:
            parts = [UGF.perfect(supply.unit)] if node == origin else []
            parts += [messages[s] for s in inflow.get(node, []) if s != exclude and messages[s] is not None]
            if not parts:
                return None
            total = compose_all(parts, parallel)
            for ugf in node_components.get(node, []):
                total = series(total, ugf)
            return clip(total, limit) if np.isfinite(limit) else total

        def message(slot: _Slot) -> Optional[UGF]:
            upstream = throughput(slot.tail, slot.reverse)
            if upstream is None:
                return None
            edge = components[slot.component]
            if slot.direction is Direction.BACKWARD:
                return bidirectional(None, upstream, edge, Direction.BACKWARD)
            return bidirectional(upstream, None, edge, Direction.FORWARD)

        def at_users() -> Dict[int, Optional[UGF]]:
            return {user.node: throughput(user.node) for user in self.users}

        previous = at_users()
        residual = np.inf
        for sweep in range(1, settings.max_iterations + 1):
            updated = [message(slot) for slot in slots]
            residual = max((max_difference(old, new) for old, new in zip(messages, updated)), default=0.0)
            messages[:] = updated
            current = at_users()
            residual = max([residual] + [max_difference(previous[n], current[n]) for n in current])
            previous = current
            logger.debug("Sweep %d from node %d has residual %.3e.", sweep, origin, residual)
            if residual < settings.tolerance:
                return current, residual, sweep
        logger.warning("Messages from node %d did not converge (residual %.3e).", origin, residual)
        return previous, residual, settings.max_iterations

    def __repr__(self) -> str:
        return (
            f"Network({self.name or ''!s}, {len(self.sources)} sources, "
            f"{len(self.components)} components, {len(self.users)} users)"
        )


def _is_cyclic(slots: Sequence[_Slot]) -> bool:
    """Whether messages depend on each other around a cycle.

    A slot never feeds the reverse slot of its own two-way edge.
    """

    dependencies = nx.DiGraph()
    dependencies.add_nodes_from(slot.index for slot in slots)
    for downstream in slots:
        for upstream in slots:
            if upstream.head == downstream.tail and upstream.index != downstream.reverse:
                dependencies.add_edge(upstream.index, downstream.index)
    return not nx.is_directed_acyclic_graph(dependencies)


def _check_model(std: Optional[STD], ugf: Optional[UGF], network: Optional[Tuple[Any, int]]) -> None:
    given = sum(model is not None for model in (std, ugf, network))
    if given > 1:
        raise ValueError("Give at most one of 'std', 'ugf' or 'network' per element.")


def _broadcast_networks(network: Any, count: int) -> list:
    if network is None or (isinstance(network, tuple) and isinstance(network[0], Network)):
        return [network] * count
    return broadcast(network, count, "network")

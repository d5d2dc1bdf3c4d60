"""Capability index and module dependency graph.

:class:`CapabilityGraph` is pure data: it maps capability names to the modules
that provide them. :class:`DependencyGraph` holds provider -> dependant edges
between module indices and implements the deterministic topological sort and
cycle detection used by the resolver.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Sequence

import networkx as nx

from stackweave.resolver.models import Module


# ---------------------------------------------------------------------------
# Capability index
# ---------------------------------------------------------------------------


class CapabilityGraph:
    """Read-only index of ``capability name -> providers``.

    Providers are listed in module declaration order.
    """

    def __init__(self, modules: Sequence[Module]) -> None:
        self._providers: dict[str, list[Module]] = defaultdict(list)
        for module in modules:
            for capability in module.provides:
                self._providers[capability.name].append(module)

    def providers(self, name: str) -> list[Module]:
        return list(self._providers.get(name, []))

    def provided_version(self, module: Module, name: str) -> str:
        for capability in module.provides:
            if capability.name == name:
                return capability.version
        return ""

    def names(self) -> list[str]:
        return sorted(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers


# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------


class DependencyGraph:
    """Directed graph over module positions, backed by :mod:`networkx`.

    An edge ``u -> v`` means module ``u`` must execute before module ``v``.
    Node identity is the module's declaration index, which doubles as the
    stable tie-break for ordering.
    """

    def __init__(self, size: int) -> None:
        self.size = size
        self._graph = nx.DiGraph()
        self._graph.add_nodes_from(range(size))

    def add_edge(self, before: int, after: int) -> None:
        if before != after:
            self._graph.add_edge(before, after)

    def successors(self, node: int) -> list[int]:
        return sorted(self._graph.successors(node))

    def edges(self) -> Iterable[tuple[int, int]]:
        return sorted(self._graph.edges())

    def topological_order(self) -> list[int] | None:
        """Kahn order, lowest declaration index first among ready nodes.

        Returns ``None`` when the graph contains a cycle.
        """
        try:
            return list(nx.lexicographical_topological_sort(self._graph))
        except nx.NetworkXUnfeasible:
            return None

    def strongly_connected_components(self) -> list[list[int]]:
        return sorted(sorted(component) for component in nx.strongly_connected_components(self._graph))

    def cycles(self) -> list[list[int]]:
        """One cycle path per cyclic component.

        The path starts and ends at the lowest declaration index on the cycle
        and follows "depends on" direction, e.g. ``[a, b, a]`` when ``a``
        needs ``b`` and ``b`` needs ``a``.
        """
        result: list[list[int]] = []
        for component in self.strongly_connected_components():
            if len(component) < 2:
                continue
            needs = nx.DiGraph()
            needs.add_edges_from(sorted((after, before) for before, after in self._graph.subgraph(component).edges()))
            nodes = [u for u, _ in nx.find_cycle(needs, source=component[0])]
            start = nodes.index(min(nodes))
            nodes = nodes[start:] + nodes[:start]
            result.append(nodes + [nodes[0]])
        return result

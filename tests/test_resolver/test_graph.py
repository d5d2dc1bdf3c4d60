"""Tests for the capability index and the dependency graph primitives."""

from __future__ import annotations

import pytest

from stackweave.resolver.graph import CapabilityGraph, DependencyGraph
from stackweave.resolver.models import Module

pytestmark = pytest.mark.unit


class TestCapabilityGraph:
    def test_providers_in_declaration_order(self):
        a = Module(id="a", provides=["cache@1.0"])
        b = Module(id="b", provides=["cache@1.2", "queue"])
        graph = CapabilityGraph([a, b])

        assert [m.id for m in graph.providers("cache")] == ["a", "b"]
        assert graph.provided_version(b, "cache") == "1.2"
        assert graph.provided_version(b, "queue") == ""
        assert graph.names() == ["cache", "queue"]
        assert "queue" in graph
        assert "mail" not in graph
        assert graph.providers("mail") == []


class TestTopologicalOrder:
    def test_respects_edges(self):
        graph = DependencyGraph(4)
        graph.add_edge(3, 0)
        graph.add_edge(2, 1)
        order = graph.topological_order()
        assert order is not None
        assert order.index(3) < order.index(0)
        assert order.index(2) < order.index(1)

    def test_ties_break_on_declaration_index(self):
        graph = DependencyGraph(3)
        assert graph.topological_order() == [0, 1, 2]

    def test_self_edges_are_ignored(self):
        graph = DependencyGraph(2)
        graph.add_edge(1, 1)
        assert graph.topological_order() == [0, 1]
        assert list(graph.edges()) == []

    def test_cycle_returns_none(self):
        graph = DependencyGraph(2)
        graph.add_edge(0, 1)
        graph.add_edge(1, 0)
        assert graph.topological_order() is None


class TestCycles:
    def test_two_node_cycle_path(self):
        graph = DependencyGraph(2)
        # 0 needs 1 and 1 needs 0
        graph.add_edge(1, 0)
        graph.add_edge(0, 1)
        assert graph.cycles() == [[0, 1, 0]]

    def test_three_node_cycle_follows_dependency_direction(self):
        graph = DependencyGraph(3)
        # 0 needs 1, 1 needs 2, 2 needs 0
        graph.add_edge(1, 0)
        graph.add_edge(2, 1)
        graph.add_edge(0, 2)
        assert graph.cycles() == [[0, 1, 2, 0]]

    def test_acyclic_graph_has_no_cycles(self):
        graph = DependencyGraph(3)
        graph.add_edge(0, 1)
        graph.add_edge(1, 2)
        assert graph.cycles() == []
        assert graph.strongly_connected_components() == [[0], [1], [2]]

    def test_independent_cycles_are_reported_separately(self):
        graph = DependencyGraph(4)
        graph.add_edge(0, 1)
        graph.add_edge(1, 0)
        graph.add_edge(2, 3)
        graph.add_edge(3, 2)
        assert len(graph.cycles()) == 2

    def test_tangled_component_yields_one_valid_path(self):
        graph = DependencyGraph(3)
        # 0 needs 1, 1 needs 2, 2 needs 1, 2 needs 0
        graph.add_edge(1, 0)
        graph.add_edge(2, 1)
        graph.add_edge(1, 2)
        graph.add_edge(0, 2)
        [path] = graph.cycles()
        assert path[0] == path[-1] == min(path[:-1])
        for node, dependency in zip(path, path[1:]):
            assert (dependency, node) in graph.edges()

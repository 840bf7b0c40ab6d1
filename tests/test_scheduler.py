"""Tests for topological ordering of workflow graphs."""

import random

import pytest

from botflow.core.exceptions import CyclicGraphError, GraphValidationError
from botflow.core.scheduler import find_unordered_nodes, topological_sort

from fakes import build_graph, edge, node


def ids(nodes):
    return [n.id for n in nodes]


class TestTopologicalSort:
    """Ordering contract of topological_sort."""

    def test_linear_chain(self):
        nodes, edges = build_graph(
            [node("c", "mensagem"), node("a", "mensagem"), node("b", "mensagem")],
            [edge("a", "b"), edge("b", "c")]
        )
        assert ids(topological_sort(nodes, edges)) == ["a", "b", "c"]

    def test_ready_nodes_keep_input_order(self):
        nodes, edges = build_graph([node("3", "mensagem"), node("1", "mensagem"), node("2", "mensagem")])
        assert ids(topological_sort(nodes, edges)) == ["3", "1", "2"]

    def test_released_nodes_queue_behind_seeds(self):
        nodes, edges = build_graph(
            [node("A", "mensagem"), node("B", "mensagem"), node("C", "mensagem")],
            [edge("C", "A")]
        )
        assert ids(topological_sort(nodes, edges)) == ["B", "C", "A"]

    def test_diamond(self):
        nodes, edges = build_graph(
            [node("1", "mensagem"), node("2", "mensagem"), node("3", "mensagem"), node("4", "mensagem")],
            [edge("1", "2"), edge("1", "3"), edge("2", "4"), edge("3", "4")]
        )
        assert ids(topological_sort(nodes, edges)) == ["1", "2", "3", "4"]

    def test_empty_graph(self):
        assert topological_sort([], []) == []

    def test_numeric_ids_are_strings(self):
        nodes, edges = build_graph([node(2, "mensagem"), node(1, "mensagem")], [edge(1, 2)])
        assert ids(topological_sort(nodes, edges)) == ["1", "2"]

    def test_order_is_stable_across_calls(self):
        nodes, edges = build_graph(
            [node(str(i), "mensagem") for i in range(8)],
            [edge("0", "5"), edge("1", "5"), edge("5", "7"), edge("2", "6")]
        )
        first = ids(topological_sort(nodes, edges))
        for _ in range(5):
            assert ids(topological_sort(nodes, edges)) == first

    @pytest.mark.parametrize("seed", range(10))
    def test_random_acyclic_graphs(self, seed):
        rng = random.Random(seed)
        count = rng.randint(1, 25)
        ranked = [f"n{i}" for i in range(count)]
        listed = ranked[:]
        rng.shuffle(listed)
        edges = [
            edge(ranked[i], ranked[j])
            for i in range(count)
            for j in range(i + 1, count)
            if rng.random() < 0.2
        ]
        nodes, edges = build_graph([node(i, "mensagem") for i in listed], edges)

        order = ids(topological_sort(nodes, edges))

        assert sorted(order) == sorted(listed)
        position = {node_id: index for index, node_id in enumerate(order)}
        for e in edges:
            assert position[e.source] < position[e.target]


class TestGraphErrors:
    """Cycles and integrity problems."""

    def test_two_node_cycle_raises(self):
        nodes, edges = build_graph([node("A", "mensagem"), node("B", "mensagem")], [edge("A", "B"), edge("B", "A")])

        with pytest.raises(CyclicGraphError) as exc_info:
            topological_sort(nodes, edges)

        assert exc_info.value.cycle_nodes == ["A", "B"]
        assert exc_info.value.details["cycle_nodes"] == ["A", "B"]

    def test_unordered_nodes_include_downstream_of_cycle(self):
        nodes, edges = build_graph(
            [node("D", "mensagem"), node("A", "mensagem"), node("B", "mensagem"), node("C", "mensagem")],
            [edge("A", "B"), edge("B", "A"), edge("B", "C")]
        )
        assert find_unordered_nodes(nodes, edges) == ["A", "B", "C"]

    def test_acyclic_graph_has_no_unordered_nodes(self):
        nodes, edges = build_graph([node("A", "mensagem"), node("B", "mensagem")], [edge("A", "B")])
        assert find_unordered_nodes(nodes, edges) == []

    def test_dangling_edge_raises_validation_error(self):
        nodes, edges = build_graph([node("A", "mensagem")], [edge("A", "missing")])

        with pytest.raises(GraphValidationError) as exc_info:
            topological_sort(nodes, edges)

        assert not isinstance(exc_info.value, CyclicGraphError)
        assert "missing" in exc_info.value.message

    def test_duplicate_ids_raise_validation_error(self):
        nodes, edges = build_graph([node("A", "mensagem"), node("A", "pergunta")])

        with pytest.raises(GraphValidationError) as exc_info:
            topological_sort(nodes, edges)

        assert any("Duplicate" in error for error in exc_info.value.validation_errors)

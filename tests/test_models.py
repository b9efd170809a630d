"""Tests for the graph model."""

import pytest

from flowgraph_cli.errors import GraphStructureError
from flowgraph_cli.models import (
    AggregatedEdgeType,
    ControlFlowKind,
    Edge,
    FlowEdgeKind,
    Graph,
    Node,
    SingleEdgeType,
    StructuralKind,
    merge_edge_types,
)


class TestEdgeTypes:
    def test_merge_same_single_tags(self):
        merged = merge_edge_types(SingleEdgeType("call"), SingleEdgeType("call"))
        assert merged == AggregatedEdgeType({"call": 2})

    def test_merge_different_single_tags(self):
        merged = merge_edge_types(SingleEdgeType("call"), SingleEdgeType("instantiation"))
        assert merged.counts == {"call": 1, "instantiation": 1}

    def test_merge_aggregated_with_single(self):
        merged = merge_edge_types(AggregatedEdgeType({"call": 2}), SingleEdgeType("call"))
        assert merged.counts == {"call": 3}
        assert merged.total == 3

    def test_merge_two_aggregated(self):
        merged = merge_edge_types(
            AggregatedEdgeType({"call": 2, "instantiation": 1}),
            AggregatedEdgeType({"call": 1, "other": 4}),
        )
        assert merged.counts == {"call": 3, "instantiation": 1, "other": 4}

    def test_enum_tags_are_plain_strings(self):
        assert SingleEdgeType(FlowEdgeKind.LOOP_BACK).tag == "loop_back"
        assert AggregatedEdgeType({FlowEdgeKind.TRUE: 1}).counts == {"true": 1}


class TestNodesAndEdges:
    def test_node_type_coerced_from_string(self):
        assert Node("a", "a", "method").node_type is StructuralKind.METHOD
        assert Node("b", "b", "condition").node_type is ControlFlowKind.CONDITION

    def test_unknown_node_type_rejected(self):
        with pytest.raises(ValueError):
            Node("a", "a", "module")

    def test_edge_type_defaults_to_sequence(self):
        edge = Edge("a", "b")
        assert edge.edge_type == SingleEdgeType("sequence")
        assert not edge.sends_data and not edge.returns_data

    def test_edge_type_coerced_from_string(self):
        assert Edge("a", "b", "function_call").edge_type == SingleEdgeType("function_call")


class TestGraphHierarchy:
    def test_children_derived_from_parent(self, sample_graph):
        assert set(sample_graph.children_of("cluster1")) == {"A", "B"}
        assert [n.node_id for n in sample_graph.top_level()] == ["cluster1", "cluster2"]

    def test_ancestors_nearest_first(self, deep_graph):
        assert list(deep_graph.ancestors("root::Klass::run::inner")) == [
            "root::Klass::run", "root::Klass", "root",
        ]

    def test_descendants(self, deep_graph):
        assert deep_graph.descendants_of("root") == [
            "root::Klass", "root::Klass::run", "root::Klass::run::inner",
        ]

    def test_parent_cycle_detected(self):
        graph = Graph()
        graph.add_node(Node("a", "a", "class", parent="b"))
        graph.add_node(Node("b", "b", "class", parent="a"))
        with pytest.raises(GraphStructureError):
            list(graph.ancestors("a"))

    def test_copy_is_independent(self, deep_graph):
        clone = deep_graph.copy()
        clone.nodes["root"].metadata["touched"] = True
        clone.edges[0].sends_data = False
        assert "touched" not in deep_graph.nodes["root"].metadata
        assert deep_graph.edges[0].sends_data is True


class TestSerialisation:
    def test_to_dict_shape(self, sample_graph):
        sample_graph.add_edge(Edge("A", "C", AggregatedEdgeType({"call": 2}), sends_data=True))
        data = sample_graph.to_dict()

        cluster1 = next(n for n in data["nodes"] if n["id"] == "cluster1")
        assert cluster1["children"] == ["A", "B"]
        assert cluster1["type"] == "file"
        assert data["edges"] == [
            {"from": "A", "to": "C", "type": {"call": 2}, "sendsData": True, "returnsData": False}
        ]

    def test_round_trip_keeps_edge_variants(self, sample_graph):
        sample_graph.add_edge(Edge("A", "B", "call"))
        sample_graph.add_edge(Edge("B", "C", AggregatedEdgeType({"call": 1, "instantiation": 1})))
        restored = Graph.from_dict(sample_graph.to_dict())

        assert isinstance(restored.edges[0].edge_type, SingleEdgeType)
        assert restored.edges[1].edge_type.counts == {"call": 1, "instantiation": 1}
        assert restored.nodes["A"].parent == "cluster1"

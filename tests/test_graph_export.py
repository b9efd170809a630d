"""Tests for DOT and JSON rendering."""

import json

from flowgraph_cli.graph_export import (
    focused_subgraph,
    render_call_graph_dot,
    render_control_flow_dot,
    render_json,
    sanitize_id,
)
from flowgraph_cli.graph_ops import dedupe
from flowgraph_cli.models import Edge, Graph, Node


def _edge_line(dot: str, src: str, dst: str) -> str:
    prefix = f'"{sanitize_id(src)}" -> "{sanitize_id(dst)}"'
    lines = [line.strip() for line in dot.splitlines() if line.strip().startswith(prefix)]
    assert lines, f"no edge line for {src} -> {dst}"
    return lines[0]


def test_sanitize_id():
    assert sanitize_id("src/app.ts::Klass::run") == "src_app_ts__Klass__run"


class TestCallGraphDot:
    def test_nested_clusters(self, deep_graph):
        dot = render_call_graph_dot(deep_graph)

        assert dot.startswith("digraph CallGraph {")
        assert 'subgraph "cluster_root" {' in dot
        assert 'subgraph "cluster_root__Klass" {' in dot
        assert "style=dashed;" in dot
        assert "color=lightblue;" in dot
        assert '"root__Klass__run__inner" [label="inner", shape=ellipse];' in dot
        assert dot.rstrip().endswith("}")

    def test_arrowheads_follow_data_flow(self, sample_graph):
        sample_graph.add_edge(Edge("A", "B", "function_call", sends_data=True, returns_data=True))
        sample_graph.add_edge(Edge("A", "C", "function_call", sends_data=True))
        sample_graph.add_edge(Edge("B", "C", "function_call", returns_data=True))
        sample_graph.add_edge(Edge("C", "A", "function_call"))

        dot = render_call_graph_dot(sample_graph)

        assert "dir=both" in _edge_line(dot, "A", "B")
        assert _edge_line(dot, "A", "C").endswith("[arrowhead=normal];")
        assert "dir=back" in _edge_line(dot, "B", "C")
        assert "arrowhead=none" in _edge_line(dot, "C", "A")

    def test_aggregated_label_and_instantiation(self, sample_graph):
        sample_graph.add_edge(Edge("A", "C", "function_call"))
        sample_graph.add_edge(Edge("A", "C", "instantiation"))
        sample_graph.add_edge(Edge("B", "C", "function_call"))

        dot = render_call_graph_dot(dedupe(sample_graph))

        line = _edge_line(dot, "A", "C")
        assert 'label="function_call:1, instantiation:1"' in line
        assert "style=dashed" in line
        assert "label=" not in _edge_line(dot, "B", "C")

    def test_labels_escaped(self):
        graph = Graph()
        graph.add_node(Node("x", 'say "hi"', "function"))
        assert 'label="say \\"hi\\""' in render_call_graph_dot(graph)

    def test_focus(self, deep_graph):
        focused = focused_subgraph(deep_graph, "helper")
        assert "root::Klass::run::inner" in focused.nodes
        assert "root" in focused.nodes
        assert len(focused.edges) == 2

    def test_focus_without_match_keeps_graph(self, deep_graph):
        assert focused_subgraph(deep_graph, "zzz") is deep_graph


class TestControlFlowDot:
    def test_node_and_edge_styles(self, build_flow):
        graph = build_flow("function f(x) { while (x) { step(); } try { go(); } catch (e) { throw e; } }")

        dot = render_control_flow_dot(graph, "f")

        assert 'label="f Control Flow";' in dot
        assert 'cf_0 [shape=ellipse, style="filled", fillcolor="lightgreen"' in dot
        assert 'cf_1 [shape=ellipse, style="filled", fillcolor="lightcoral"' in dot
        assert 'shape=diamond, style="filled", fillcolor="lightyellow"' in dot
        assert 'fillcolor="red", fontcolor="white", label="throw e"' in dot
        assert '[color="green", style="solid", label="true"]' in dot
        assert '[color="blue", style="dashed"]' in dot
        assert '[color="red", style="dashed", label="exception"]' in dot

    def test_false_edge(self, build_flow):
        graph = build_flow("function f(x) { if (x) { a(); } }")
        assert '[color="red", style="solid", label="false"]' in render_control_flow_dot(graph, "f")


class TestJson:
    def test_render_json(self, sample_graph):
        sample_graph.add_edge(Edge("A", "C", "function_call", sends_data=True))
        data = json.loads(render_json(sample_graph))
        assert {n["id"] for n in data["nodes"]} == {"cluster1", "cluster2", "A", "B", "C"}
        assert data["edges"][0] == {
            "from": "A", "to": "C", "type": "function_call", "sendsData": True, "returnsData": False,
        }

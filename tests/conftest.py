"""Pytest configuration and fixtures for FlowGraph CLI tests."""

import shutil
import tempfile
from collections import deque
from pathlib import Path
from typing import Callable, Generator, List, Optional, Set

import pytest

from flowgraph_cli.control_flow import ControlFlowBuilder
from flowgraph_cli.languages import GrammarRegistry
from flowgraph_cli.models import Edge, Graph, Node
from flowgraph_cli.parser import SymbolIndex, family_of, iter_definitions


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path_factory, monkeypatch):
    """Keep tests away from the real ~/.flowgraph/config.toml."""
    home = tmp_path_factory.mktemp("flowgraph_home")
    monkeypatch.setattr("flowgraph_cli.config.BASE_DIR", home)
    monkeypatch.setattr("flowgraph_cli.config.CONFIG_FILE", home / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def build_flow() -> Callable[..., Graph]:
    """Build the CFG of a function written inline in a test.

    ``build_flow(source, language="typescript", name=None)`` picks the first
    function in *source* unless *name* is given.
    """
    registry = GrammarRegistry()

    def _build(source: str, language: str = "typescript", name: Optional[str] = None) -> Graph:
        tree = registry.parse(source.encode("utf-8"), language)
        definitions = [
            d for d in iter_definitions(tree.root_node, family_of(language))
            if d.kind.value in ("function", "method")
        ]
        symbols = SymbolIndex.from_definitions(definitions)
        if name is not None:
            definitions = [d for d in definitions if d.name == name]
        return ControlFlowBuilder(language, symbols=symbols).build(definitions[0].node)

    return _build


# ---------------------------------------------------------------------------
# Graph lookup helpers
# ---------------------------------------------------------------------------

def node_named(graph: Graph, name: str) -> Node:
    matches = [n for n in graph.nodes.values() if n.name == name]
    assert matches, f"no node named {name!r} in {[n.name for n in graph.nodes.values()]}"
    return matches[0]


def nodes_of_type(graph: Graph, node_type: str) -> List[Node]:
    return [n for n in graph.nodes.values() if n.node_type.value == node_type]


def edge_between(graph: Graph, src: str, dst: str) -> Edge:
    matches = [e for e in graph.edges if e.src == src and e.dst == dst]
    assert matches, f"no edge {src} -> {dst}"
    return matches[0]


def tag_of(edge: Edge) -> str:
    return edge.edge_type.tag


def reachable_from(graph: Graph, start: str) -> Set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for edge in graph.outgoing(current):
            if edge.dst not in seen:
                seen.add(edge.dst)
                queue.append(edge.dst)
    return seen


@pytest.fixture
def sample_graph() -> Graph:
    """Two top-level clusters: cluster1 holds A and B, cluster2 holds C."""
    graph = Graph()
    graph.add_node(Node("cluster1", "cluster1", "file"))
    graph.add_node(Node("cluster2", "cluster2", "file"))
    graph.add_node(Node("A", "A", "function", parent="cluster1"))
    graph.add_node(Node("B", "B", "function", parent="cluster1"))
    graph.add_node(Node("C", "C", "function", parent="cluster2"))
    return graph


@pytest.fixture
def deep_graph() -> Graph:
    """root -> mod -> Klass -> method, plus a second root with one function."""
    graph = Graph()
    graph.add_node(Node("root", "root", "file"))
    graph.add_node(Node("root::Klass", "Klass", "class", parent="root"))
    graph.add_node(Node("root::Klass::run", "run", "method", parent="root::Klass"))
    graph.add_node(Node("root::Klass::run::inner", "inner", "function", parent="root::Klass::run"))
    graph.add_node(Node("other", "other", "file"))
    graph.add_node(Node("other::helper", "helper", "function", parent="other"))
    graph.add_edge(Edge("root::Klass::run::inner", "other::helper", "function_call", sends_data=True))
    graph.add_edge(Edge("other::helper", "root::Klass::run", "function_call", returns_data=True))
    graph.add_edge(Edge("root::Klass::run", "root::Klass::run::inner", "function_call"))
    return graph

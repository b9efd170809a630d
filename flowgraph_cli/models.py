"""Core graph model shared by the call-graph and control-flow builders."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

from .errors import GraphStructureError


class StructuralKind(str, Enum):
    FILE = "file"
    CLASS = "class"
    FUNCTION = "function"
    METHOD = "method"
    CLUSTER = "cluster"


class ControlFlowKind(str, Enum):
    START = "start"
    END = "end"
    CONDITION = "condition"
    STATEMENT = "statement"
    FUNCTION_CALL = "function_call"
    RETURN = "return"
    THROW = "throw"
    TRY = "try"
    CATCH = "catch"
    FINALLY = "finally"
    LOOP = "loop"
    SWITCH = "switch"
    CASE = "case"


class CallEdgeKind(str, Enum):
    FUNCTION_CALL = "function_call"
    INSTANTIATION = "instantiation"


class FlowEdgeKind(str, Enum):
    SEQUENCE = "sequence"
    TRUE = "true"
    FALSE = "false"
    LOOP_BODY = "loop_body"
    LOOP_BACK = "loop_back"
    EXCEPTION = "exception"
    FINALLY = "finally"
    CASE = "case"


NodeKind = Union[StructuralKind, ControlFlowKind]


def _coerce_kind(value: Any) -> NodeKind:
    if isinstance(value, (StructuralKind, ControlFlowKind)):
        return value
    for enum_cls in (StructuralKind, ControlFlowKind):
        try:
            return enum_cls(value)
        except ValueError:
            continue
    raise ValueError(f"Unknown node type: {value!r}")


def _tag(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


# ---------------------------------------------------------------------------
# Edge types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SingleEdgeType:
    """One edge with one tag, e.g. ``function_call`` or ``loop_back``."""

    tag: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "tag", _tag(self.tag))

    @property
    def counts(self) -> Dict[str, int]:
        return {self.tag: 1}

    @property
    def total(self) -> int:
        return 1

    def to_json(self) -> Any:
        return self.tag


@dataclass(frozen=True)
class AggregatedEdgeType:
    """Several merged edges, stored as tag -> number of merged edges."""

    counts: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "counts", {_tag(k): int(v) for k, v in self.counts.items()})

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_json(self) -> Any:
        return dict(self.counts)


EdgeType = Union[SingleEdgeType, AggregatedEdgeType]


def merge_edge_types(existing: EdgeType, incoming: EdgeType) -> AggregatedEdgeType:
    """Merge two edge types into the aggregated form.

    ``single(a) + single(a)`` gives ``{a: 2}``, ``single(a) + single(b)``
    gives ``{a: 1, b: 1}`` and aggregated counts are summed per tag.
    """
    merged: Dict[str, int] = dict(existing.counts)
    for tag, count in incoming.counts.items():
        merged[tag] = merged.get(tag, 0) + count
    return AggregatedEdgeType(merged)


def edge_type_from_json(value: Any) -> EdgeType:
    if isinstance(value, dict):
        return AggregatedEdgeType(value)
    return SingleEdgeType(value)


# ---------------------------------------------------------------------------
# Nodes, edges, graph
# ---------------------------------------------------------------------------

@dataclass
class Node:
    node_id: str
    name: str
    node_type: NodeKind
    metadata: Dict[str, Any] = field(default_factory=dict)
    parent: Optional[str] = None

    def __post_init__(self) -> None:
        self.node_type = _coerce_kind(self.node_type)

    def copy(self) -> "Node":
        return replace(self, metadata=dict(self.metadata))


@dataclass
class Edge:
    src: str
    dst: str
    edge_type: EdgeType = field(default_factory=lambda: SingleEdgeType(FlowEdgeKind.SEQUENCE))
    sends_data: bool = False
    returns_data: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.edge_type, (SingleEdgeType, AggregatedEdgeType)):
            self.edge_type = SingleEdgeType(self.edge_type)

    @property
    def key(self) -> str:
        return f"{self.src}->{self.dst}"

    def copy(self) -> "Edge":
        return replace(self)


@dataclass
class Graph:
    """Nodes keyed by id plus an ordered edge list.

    Ownership is stored only as ``Node.parent``; children are derived on
    demand so the parent/child views can never disagree.
    """

    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: List[Edge] = field(default_factory=list)

    def add_node(self, node: Node) -> Node:
        self.nodes[node.node_id] = node
        return node

    def add_edge(self, edge: Edge) -> Edge:
        self.edges.append(edge)
        return edge

    # -- hierarchy -----------------------------------------------------

    def child_index(self) -> Dict[str, List[str]]:
        """Map each parent id to the ids of its children, in node order."""
        index: Dict[str, List[str]] = {}
        for node in self.nodes.values():
            if node.parent is not None and node.parent in self.nodes:
                index.setdefault(node.parent, []).append(node.node_id)
        return index

    def children_of(self, node_id: str) -> Dict[str, Node]:
        return {
            nid: node for nid, node in self.nodes.items() if node.parent == node_id
        }

    def top_level(self) -> List[Node]:
        return [node for node in self.nodes.values() if node.parent is None]

    def ancestors(self, node_id: str) -> Iterator[str]:
        """Yield the parent chain of *node_id*, nearest first."""
        seen = {node_id}
        node = self.nodes.get(node_id)
        while node is not None and node.parent is not None:
            if node.parent in seen:
                raise GraphStructureError(f"Parent cycle through '{node.parent}'")
            seen.add(node.parent)
            yield node.parent
            node = self.nodes.get(node.parent)

    def descendants_of(self, node_id: str) -> List[str]:
        index = self.child_index()
        found: List[str] = []
        seen = {node_id}
        stack = list(reversed(index.get(node_id, [])))
        while stack:
            current = stack.pop()
            if current in seen:
                raise GraphStructureError(f"Parent cycle through '{current}'")
            seen.add(current)
            found.append(current)
            stack.extend(reversed(index.get(current, [])))
        return found

    def dangling_edges(self) -> List[Edge]:
        return [e for e in self.edges if e.src not in self.nodes or e.dst not in self.nodes]

    def outgoing(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.src == node_id]

    def copy(self) -> "Graph":
        return Graph(
            nodes={nid: node.copy() for nid, node in self.nodes.items()},
            edges=[edge.copy() for edge in self.edges],
        )

    # -- serialisation -------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        index = self.child_index()
        return {
            "nodes": [
                {
                    "id": node.node_id,
                    "name": node.name,
                    "type": node.node_type.value,
                    "metadata": node.metadata,
                    "parent": node.parent,
                    "children": index.get(node.node_id, []),
                }
                for node in self.nodes.values()
            ],
            "edges": [
                {
                    "from": edge.src,
                    "to": edge.dst,
                    "type": edge.edge_type.to_json(),
                    "sendsData": edge.sends_data,
                    "returnsData": edge.returns_data,
                }
                for edge in self.edges
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Graph":
        graph = cls()
        for raw in data.get("nodes", []):
            graph.add_node(Node(
                node_id=raw["id"],
                name=raw.get("name", raw["id"]),
                node_type=raw["type"],
                metadata=dict(raw.get("metadata") or {}),
                parent=raw.get("parent"),
            ))
        for raw in data.get("edges", []):
            graph.add_edge(Edge(
                src=raw["from"],
                dst=raw["to"],
                edge_type=edge_type_from_json(raw["type"]),
                sends_data=bool(raw.get("sendsData", False)),
                returns_data=bool(raw.get("returnsData", False)),
            ))
        return graph

"""Graph export helpers for DOT and JSON outputs."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .models import ControlFlowKind, Edge, FlowEdgeKind, Graph, Node, SingleEdgeType, StructuralKind

# (shape, style, fillcolor, fontcolor) per control-flow node kind
_FLOW_NODE_STYLES: Dict[ControlFlowKind, Tuple[str, str, str, str]] = {
    ControlFlowKind.START: ("ellipse", "filled", "lightgreen", "black"),
    ControlFlowKind.END: ("ellipse", "filled", "lightcoral", "black"),
    ControlFlowKind.CONDITION: ("diamond", "filled", "lightyellow", "black"),
    ControlFlowKind.FUNCTION_CALL: ("box", "filled,rounded", "lightblue", "black"),
    ControlFlowKind.RETURN: ("box", "filled,rounded", "orange", "black"),
    ControlFlowKind.THROW: ("box", "filled,rounded", "red", "white"),
    ControlFlowKind.TRY: ("box", "filled,rounded", "lightcyan", "black"),
    ControlFlowKind.CATCH: ("box", "filled,rounded", "lightpink", "black"),
    ControlFlowKind.FINALLY: ("box", "filled,rounded", "lavender", "black"),
    ControlFlowKind.LOOP: ("box", "filled,rounded", "lightgray", "black"),
    ControlFlowKind.SWITCH: ("hexagon", "filled", "lightyellow", "black"),
    ControlFlowKind.CASE: ("box", "filled,rounded", "wheat", "black"),
    ControlFlowKind.STATEMENT: ("box", "rounded", "white", "black"),
}

# (color, style, label) per control-flow edge kind
_FLOW_EDGE_STYLES: Dict[str, Tuple[str, str, str]] = {
    FlowEdgeKind.TRUE.value: ("green", "solid", "true"),
    FlowEdgeKind.FALSE.value: ("red", "solid", "false"),
    FlowEdgeKind.CASE.value: ("blue", "solid", ""),
    FlowEdgeKind.EXCEPTION.value: ("red", "dashed", "exception"),
    FlowEdgeKind.FINALLY.value: ("purple", "dashed", ""),
    FlowEdgeKind.LOOP_BACK.value: ("blue", "dashed", ""),
    FlowEdgeKind.LOOP_BODY.value: ("blue", "solid", ""),
}

# (shape, extra attributes) per structural node kind
_CALL_NODE_STYLES: Dict[StructuralKind, Tuple[str, str]] = {
    StructuralKind.CLASS: ("box", ', style="filled,rounded", fillcolor=lightcyan'),
    StructuralKind.FUNCTION: ("ellipse", ""),
    StructuralKind.METHOD: ("ellipse", ", style=filled, fillcolor=lightyellow"),
    StructuralKind.FILE: ("folder", ", style=filled, fillcolor=lightgray"),
    StructuralKind.CLUSTER: ("box3d", ""),
}

# (style, color) of the subgraph drawn for a node with children
_CLUSTER_STYLES: Dict[StructuralKind, Tuple[str, str]] = {
    StructuralKind.FILE: ("dashed", "gray"),
    StructuralKind.CLASS: ("solid", "lightblue"),
}


def sanitize_id(node_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_]", "_", node_id)


def _esc(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


# ===================================================================
# Call graphs
# ===================================================================

def render_call_graph_dot(graph: Graph, focus: str = "") -> str:
    """Render a hierarchical call graph; nodes with children become clusters."""
    if focus:
        graph = focused_subgraph(graph, focus)

    lines = ["digraph CallGraph {"]
    lines.append("  compound=true;")
    lines.append("  rankdir=LR;")
    lines.append("  node [shape=box, style=rounded];")
    lines.append("  edge [color=blue];")
    lines.append("")

    index = graph.child_index()
    for node in graph.nodes.values():
        if node.parent is None or node.parent not in graph.nodes:
            _emit_node(lines, graph, index, node, 1)

    for edge in graph.edges:
        lines.append(_call_edge(edge))

    lines.append("}")
    return "\n".join(lines) + "\n"


def _emit_node(lines: List[str], graph: Graph, index: Dict[str, List[str]], node: Node, depth: int) -> None:
    indent = "  " * depth
    children = index.get(node.node_id, [])
    if not children:
        shape, extra = _CALL_NODE_STYLES.get(node.node_type, ("box", ""))
        lines.append(f'{indent}"{sanitize_id(node.node_id)}" [label="{_esc(node.name)}", shape={shape}{extra}];')
        return

    style, color = _CLUSTER_STYLES.get(node.node_type, ("dotted", "black"))
    lines.append(f'{indent}subgraph "cluster_{sanitize_id(node.node_id)}" {{')
    lines.append(f'{indent}  label="{_esc(node.name)}";')
    lines.append(f"{indent}  style={style};")
    lines.append(f"{indent}  color={color};")
    for child_id in children:
        _emit_node(lines, graph, index, graph.nodes[child_id], depth + 1)
    lines.append(f"{indent}}}")
    lines.append("")


def _call_edge(edge: Edge) -> str:
    attrs: List[str] = []
    if edge.sends_data and edge.returns_data:
        attrs += ["dir=both", "arrowhead=normal", "arrowtail=normal"]
    elif edge.sends_data:
        attrs.append("arrowhead=normal")
    elif edge.returns_data:
        attrs += ["dir=back", "arrowtail=normal"]
    else:
        attrs.append("arrowhead=none")

    counts = edge.edge_type.counts
    if not isinstance(edge.edge_type, SingleEdgeType) and edge.edge_type.total > 1:
        label = ", ".join(f"{tag}:{count}" for tag, count in counts.items())
        attrs.append(f'label="{_esc(label)}"')
    if counts.get("instantiation", 0) > 0:
        attrs.append("style=dashed")

    return f'  "{sanitize_id(edge.src)}" -> "{sanitize_id(edge.dst)}" [{", ".join(attrs)}];'


def focused_subgraph(graph: Graph, focus: str) -> Graph:
    """Nodes matching *focus*, their direct neighbours and the ancestors of both."""
    focus_ids = {nid for nid, node in graph.nodes.items() if focus in nid or focus in node.name}
    if not focus_ids:
        return graph

    edges = [e for e in graph.edges if e.src in focus_ids or e.dst in focus_ids]
    keep: Set[str] = set(focus_ids)
    for edge in edges:
        keep.update((edge.src, edge.dst))
    for node_id in list(keep):
        keep.update(graph.ancestors(node_id))

    return Graph(
        nodes={nid: node.copy() for nid, node in graph.nodes.items() if nid in keep},
        edges=[e.copy() for e in edges if e.src in keep and e.dst in keep],
    )


# ===================================================================
# Control-flow graphs
# ===================================================================

def render_control_flow_dot(graph: Graph, function_name: str) -> str:
    lines = ["digraph ControlFlow {"]
    lines.append("  rankdir=TB;")
    lines.append('  node [fontname="Arial", fontsize=10];')
    lines.append('  edge [fontname="Arial", fontsize=9];')
    lines.append(f'  label="{_esc(function_name)} Control Flow";')
    lines.append("  labelloc=t;")
    lines.append("")

    for node in graph.nodes.values():
        lines.append(_flow_node(node))
    lines.append("")
    for edge in graph.edges:
        lines.append(_flow_edge(edge))

    lines.append("}")
    return "\n".join(lines) + "\n"


def _flow_node(node: Node) -> str:
    shape, style, fill, font = _FLOW_NODE_STYLES.get(node.node_type, _FLOW_NODE_STYLES[ControlFlowKind.STATEMENT])
    return (
        f'  {sanitize_id(node.node_id)} [shape={shape}, style="{style}", '
        f'fillcolor="{fill}", fontcolor="{font}", label="{_esc(node.name)}"];'
    )


def _flow_edge(edge: Edge) -> str:
    # Merged CFG edges take the style of their most frequent tag.
    counts = edge.edge_type.counts
    tag = max(counts, key=counts.get) if counts else FlowEdgeKind.SEQUENCE.value
    color, style, label = _FLOW_EDGE_STYLES.get(tag, ("black", "solid", ""))
    label_attr = f', label="{label}"' if label else ""
    return f'  {sanitize_id(edge.src)} -> {sanitize_id(edge.dst)} [color="{color}", style="{style}"{label_attr}];'


# ===================================================================
# JSON / files
# ===================================================================

def render_json(graph: Graph, indent: Optional[int] = 2) -> str:
    return json.dumps(graph.to_dict(), indent=indent)


def write_output(content: str, output_file: Path) -> Path:
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(content, encoding="utf-8")
    return output_file

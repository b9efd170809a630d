"""Graph operations: dedupe, collapse and depth-controlled high-level views.

Every operation returns a new :class:`~flowgraph_cli.models.Graph`; the input
graph is never mutated.  Edges whose endpoints disappear are rewritten to the
nearest surviving ancestor, or dropped when none survives.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import Edge, Graph, Node, merge_edge_types

logger = logging.getLogger(__name__)

# Depth value meaning "expand the whole subtree".
UNLIMITED: Optional[int] = None


# ===================================================================
# Dedupe
# ===================================================================

def dedupe(graph: Graph) -> Graph:
    """Merge all edges sharing the same ``(src, dst)`` pair.

    Edge types are merged into counts and the data-flow flags are OR-ed,
    so a merged edge never loses ``sends_data`` / ``returns_data``.
    """
    merged: Dict[Tuple[str, str], Edge] = {}
    for edge in graph.edges:
        key = (edge.src, edge.dst)
        existing = merged.get(key)
        if existing is None:
            merged[key] = edge.copy()
            continue
        existing.edge_type = merge_edge_types(existing.edge_type, edge.edge_type)
        existing.sends_data = existing.sends_data or edge.sends_data
        existing.returns_data = existing.returns_data or edge.returns_data

    return Graph(
        nodes={nid: node.copy() for nid, node in graph.nodes.items()},
        edges=list(merged.values()),
    )


# ===================================================================
# Collapse
# ===================================================================

def collapse(graph: Graph, target_node_id: Optional[str] = None) -> Graph:
    """Remove the descendants of *target_node_id* (or of every top-level node).

    Edges touching a removed node are redirected to its nearest surviving
    ancestor; self-loops created by the redirection are dropped.
    """
    if target_node_id is not None:
        targets = [target_node_id]
    else:
        targets = [node.node_id for node in graph.top_level()]

    removed = set()
    for node_id in targets:
        if node_id not in graph.nodes:
            logger.debug("Collapse target '%s' is not in the graph", node_id)
            continue
        removed.update(graph.descendants_of(node_id))

    kept = {nid: node.copy() for nid, node in graph.nodes.items() if nid not in removed}
    return Graph(nodes=kept, edges=_remap_edges(graph, kept, graph.edges))


def get_high_level_graph(graph: Graph) -> Graph:
    """File-to-file view: collapse every top-level node, then merge edges."""
    return dedupe(collapse(graph))


# ===================================================================
# Selective high-level view
# ===================================================================

@dataclass
class ClusterDepthPlan:
    """Expansion depth per top-level cluster.

    ``None`` means unlimited, ``0`` fully collapsed and ``k`` keeps exactly
    ``k`` levels below the cluster root.
    """

    default_depth: Optional[int] = UNLIMITED
    overrides: Dict[str, Optional[int]] = field(default_factory=dict)
    uses_all: bool = False

    def depth_for(self, node: Node) -> Optional[int]:
        for key in (node.node_id, node.name):
            if key in self.overrides:
                return self.overrides[key]
        return self.default_depth


def _parse_depth(text: str, token: str) -> int:
    try:
        depth = int(text)
    except ValueError:
        logger.debug("Malformed depth in cluster spec '%s'; using 0", token)
        return 0
    if depth < 0:
        logger.debug("Negative depth in cluster spec '%s'; using 0", token)
        return 0
    return depth


def _iter_tokens(specs: Iterable[str]) -> Iterable[str]:
    for spec in specs:
        for token in spec.split(","):
            token = token.strip()
            if token:
                yield token


def parse_cluster_specs(specs: Iterable[str]) -> ClusterDepthPlan:
    """Parse ``all[:N]``, ``-name[:N]`` and ``name[:N]`` tokens.

    ``all`` sets the default depth (0 unless given), ``-name`` expands one
    cluster (unlimited unless given) and a bare ``name`` pins one cluster
    (0 unless given).  Clusters not mentioned default to 0 when ``all`` was
    used and to unlimited otherwise.
    """
    if isinstance(specs, str):
        specs = [specs]

    plan = ClusterDepthPlan()
    for token in _iter_tokens(specs):
        expand = token.startswith("-")
        body = token[1:] if expand else token
        name, _, depth_text = body.rpartition(":")
        depth: Optional[int] = None
        if not name or name.endswith(":"):
            # no depth, or the last colon belongs to a "::" id separator
            name = body
        else:
            depth = _parse_depth(depth_text, token)
        name = name.strip()
        if not name:
            logger.debug("Ignoring cluster spec without a name: '%s'", token)
            continue

        if name == "all" and not expand:
            plan.uses_all = True
            plan.default_depth = depth if depth is not None else 0
        elif expand:
            plan.overrides[name] = depth
        else:
            plan.overrides[name] = depth if depth is not None else 0

    if not plan.uses_all:
        plan.default_depth = UNLIMITED
    return plan


def cluster_depths(graph: Graph, specs: Iterable[str]) -> Dict[str, Optional[int]]:
    """Resolve a spec list to ``{top-level node id: depth}``."""
    plan = parse_cluster_specs(specs)
    roots = graph.top_level()
    known = {key for root in roots for key in (root.node_id, root.name)}
    for name in plan.overrides:
        if name not in known:
            logger.debug("Cluster '%s' matches no top-level node; ignored", name)
    return {root.node_id: plan.depth_for(root) for root in roots}


def get_selective_high_level_graph(graph: Graph, cluster_specs: Sequence[str]) -> Graph:
    """Collapse each top-level cluster to its own depth, then merge edges."""
    depths = cluster_depths(graph, cluster_specs)
    index = graph.child_index()

    visible: set = set()
    for root_id, depth in depths.items():
        _collect_to_depth(index, root_id, depth, 0, visible)

    kept = {nid: node.copy() for nid, node in graph.nodes.items() if nid in visible}
    return dedupe(Graph(nodes=kept, edges=_remap_edges(graph, kept, graph.edges)))


def _collect_to_depth(
    index: Mapping[str, List[str]],
    node_id: str,
    depth: Optional[int],
    level: int,
    visible: set,
) -> None:
    visible.add(node_id)
    if depth is not None and level >= depth:
        return
    for child_id in index.get(node_id, []):
        _collect_to_depth(index, child_id, depth, level + 1, visible)


# ===================================================================
# Shared helpers
# ===================================================================

def _remap_edges(original: Graph, kept: Mapping[str, Node], edges: Iterable[Edge]) -> List[Edge]:
    """Point every edge at surviving nodes; drop self-loops and dangling edges."""
    cache: Dict[str, Optional[str]] = {}

    def surviving(node_id: str) -> Optional[str]:
        if node_id not in cache:
            cache[node_id] = _surviving_ancestor(original, kept, node_id)
        return cache[node_id]

    remapped: List[Edge] = []
    dropped = 0
    for edge in edges:
        src = surviving(edge.src)
        dst = surviving(edge.dst)
        if src is None or dst is None:
            dropped += 1
            continue
        if src == dst:
            continue
        remapped.append(replace(edge, src=src, dst=dst))

    if dropped:
        logger.debug("Dropped %d edge(s) with no surviving endpoint", dropped)
    return remapped


def _surviving_ancestor(original: Graph, kept: Mapping[str, Node], node_id: str) -> Optional[str]:
    if node_id in kept:
        return node_id
    if node_id not in original.nodes:
        return None
    for ancestor in original.ancestors(node_id):
        if ancestor in kept:
            return ancestor
    return None


class GraphOperations:
    """Object form of the graph operations, for callers that inject them."""

    def dedupe(self, graph: Graph) -> Graph:
        return dedupe(graph)

    def collapse(self, graph: Graph, target_node_id: Optional[str] = None) -> Graph:
        return collapse(graph, target_node_id)

    def get_high_level_graph(self, graph: Graph) -> Graph:
        return get_high_level_graph(graph)

    def get_selective_high_level_graph(self, graph: Graph, cluster_specs: Sequence[str]) -> Graph:
        return get_selective_high_level_graph(graph, cluster_specs)


graph_ops = GraphOperations()

"""Domain clustering of a call graph.

A clustering is produced outside this tool (by hand or by an LLM) as JSON::

    {
      "clusters": [
        {"id": "auth", "name": "Authentication", "description": "...",
         "domain": "security", "nodes": ["src/auth.ts::login"],
         "dependencies": ["storage"], "reasoning": "..."}
      ],
      "reasoning": "..."
    }

:func:`apply_clustering` turns it into a one-level hierarchy of ``cluster``
nodes over the graph's functions and methods.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .errors import ClusteringError
from .models import Graph, Node, StructuralKind

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_CLUSTERABLE = (StructuralKind.FUNCTION, StructuralKind.METHOD)


@dataclass
class Cluster:
    id: str
    name: str
    description: str = ""
    domain: str = ""
    nodes: List[str] = field(default_factory=list)
    pattern: Optional[str] = None
    responsibilities: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    cohesion: Optional[str] = None
    reasoning: str = ""

    @property
    def node_id(self) -> str:
        return re.sub(r"\s+", "_", self.name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cluster":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            description=str(data.get("description") or ""),
            domain=str(data.get("domain") or ""),
            nodes=[str(n) for n in data.get("nodes") or []],
            pattern=data.get("pattern"),
            responsibilities=[str(r) for r in data.get("responsibilities") or []],
            dependencies=[str(d) for d in data.get("dependencies") or []],
            cohesion=data.get("cohesion"),
            reasoning=str(data.get("reasoning") or ""),
        )


@dataclass
class ClusteringResponse:
    clusters: List[Cluster]
    reasoning: str = ""
    architecture: Optional[Dict[str, Any]] = None


def parse_clustering(text: str) -> ClusteringResponse:
    """Parse a clustering from *text*, ignoring prose around the JSON object.

    Raises:
        ClusteringError: no JSON object, invalid JSON, or no ``clusters`` list.
    """
    match = _JSON_OBJECT.search(text)
    if match is None:
        raise ClusteringError("No JSON object found in clustering input")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise ClusteringError(f"Invalid clustering JSON: {exc}") from exc

    clusters = data.get("clusters") if isinstance(data, dict) else None
    if not isinstance(clusters, list):
        raise ClusteringError("Invalid clustering: missing or invalid 'clusters' array")

    return ClusteringResponse(
        clusters=[Cluster.from_dict(c) for c in clusters if isinstance(c, dict)],
        reasoning=str(data.get("reasoning") or ""),
        architecture=data.get("architecture"),
    )


def load_clustering(path: Path) -> ClusteringResponse:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ClusteringError(f"Cannot read clustering file {path}: {exc}") from exc
    return parse_clustering(text)


def validate_clustering(response: ClusteringResponse) -> List[str]:
    """Return human-readable problems with *response* (empty when valid)."""
    problems: List[str] = []
    if not response.clusters:
        problems.append("No clusters found")

    all_ids = {c.id for c in response.clusters}
    seen_ids: set = set()
    assigned: Dict[str, str] = {}
    for cluster in response.clusters:
        if not (cluster.id and cluster.name and cluster.description and cluster.domain):
            problems.append(
                f"Invalid cluster: missing required fields (id: {cluster.id or '?'}, name: {cluster.name or '?'})"
            )
        if cluster.id in seen_ids:
            problems.append(f"Duplicate cluster ID: {cluster.id}")
        seen_ids.add(cluster.id)

        if not cluster.nodes:
            problems.append(f"Cluster '{cluster.id}' has no nodes assigned")
        for node_id in cluster.nodes:
            if node_id in assigned:
                problems.append(f"Node '{node_id}' is assigned to multiple clusters")
            else:
                assigned[node_id] = cluster.id

        for dep in cluster.dependencies:
            if dep not in all_ids:
                problems.append(f"Cluster '{cluster.id}' depends on unknown cluster: {dep}")

    if not response.reasoning.strip():
        problems.append("Missing overall reasoning for clustering approach")
    return problems


def apply_clustering(graph: Graph, response: ClusteringResponse) -> Graph:
    """Regroup the graph's functions and methods under cluster nodes.

    Only cluster, function and method nodes appear in the result; all edges
    are kept.  Functions no cluster claims go to ``Uncategorized``.  The
    first cluster to claim a node wins.
    """
    result = Graph(edges=[edge.copy() for edge in graph.edges])

    for cluster in response.clusters:
        cluster_id = cluster.node_id
        result.add_node(Node(
            node_id=cluster_id,
            name=cluster.name,
            node_type=StructuralKind.CLUSTER,
            metadata={
                "domain": cluster.domain,
                "cluster": cluster.name,
                "description": cluster.description,
                "responsibilities": list(cluster.responsibilities),
            },
        ))
        for node_id in cluster.nodes:
            original = graph.nodes.get(node_id)
            if original is None:
                logger.debug("Cluster '%s' names unknown node '%s'", cluster.name, node_id)
                continue
            if original.node_type not in _CLUSTERABLE or node_id in result.nodes:
                continue
            result.add_node(_reparent(original, cluster_id, cluster.domain, cluster.name))

    for node_id, node in graph.nodes.items():
        if node.node_type not in _CLUSTERABLE or node_id in result.nodes:
            continue
        if UNCATEGORIZED not in result.nodes:
            result.add_node(Node(
                node_id=UNCATEGORIZED,
                name=UNCATEGORIZED,
                node_type=StructuralKind.CLUSTER,
                metadata={"domain": UNCATEGORIZED, "cluster": UNCATEGORIZED},
            ))
        result.add_node(_reparent(node, UNCATEGORIZED, UNCATEGORIZED, UNCATEGORIZED))

    dangling = result.dangling_edges()
    if dangling:
        result.edges = [e for e in result.edges if e not in dangling]
        logger.debug("Dropped %d edge(s) to nodes outside the clustering", len(dangling))
    return result


def _reparent(node: Node, cluster_id: str, domain: str, cluster_name: str) -> Node:
    moved = node.copy()
    moved.parent = cluster_id
    moved.metadata.update({"domain": domain, "cluster": cluster_name})
    return moved


def graph_listing(graph: Graph) -> Tuple[str, str]:
    """Plain-text node and edge listings, one item per line.

    This is the input format clustering prompts are written against.
    """
    nodes = []
    for node_id, node in graph.nodes.items():
        file_name = node.metadata.get("file") or "unknown"
        class_name = node.metadata.get("class_name")
        location = f"{file_name}::{class_name}" if class_name else file_name
        nodes.append(f'- {node_id} [{node.node_type.value}] "{node.name}" in {location}')

    edges = []
    for edge in graph.edges:
        data = []
        if edge.sends_data:
            data.append("sends data")
        if edge.returns_data:
            data.append("returns data")
        suffix = f" ({', '.join(data)})" if data else ""
        tags = "|".join(edge.edge_type.counts)
        edges.append(f"- {edge.src} --({tags})--> {edge.dst}{suffix}")

    return "\n".join(nodes), "\n".join(edges)


def clustering_summary(response: ClusteringResponse) -> str:
    lines = ["Domain-Based Clustering Analysis", "=" * 37, ""]

    arch = response.architecture or {}
    if arch:
        lines.append(f"Architecture Style: {arch.get('style', 'unknown')}")
        if arch.get("layers"):
            lines.append(f"Layers: {', '.join(arch['layers'])}")
        if arch.get("patterns"):
            lines.append(f"Patterns: {', '.join(arch['patterns'])}")
        lines.append("")

    lines.append(f"Found {len(response.clusters)} domain clusters:")
    lines.append("")
    for cluster in response.clusters:
        lines.append(f"{cluster.name} ({cluster.id})")
        lines.append(f"   Domain: {cluster.domain}")
        lines.append(f"   Description: {cluster.description}")
        lines.append(f"   Nodes: {len(cluster.nodes)} functions/methods")
        if cluster.cohesion:
            lines.append(f"   Cohesion: {cluster.cohesion}")
        if cluster.dependencies:
            lines.append(f"   Dependencies: {', '.join(cluster.dependencies)}")
        if cluster.responsibilities:
            lines.append(f"   Responsibilities: {', '.join(cluster.responsibilities)}")
        lines.append(f"   Reasoning: {cluster.reasoning}")
        lines.append("")

    lines.append("Overall Reasoning:")
    lines.append(response.reasoning)
    return "\n".join(lines) + "\n"

"""Exception types raised by the graph builders and transforms."""

from __future__ import annotations

from typing import Optional


class FlowGraphError(Exception):
    """Base class for every error surfaced by flowgraph_cli."""


class FunctionNotFoundError(FlowGraphError):
    """The function requested for control-flow analysis could not be located."""

    def __init__(self, function_name: str, file_filter: Optional[str] = None) -> None:
        self.function_name = function_name
        self.file_filter = file_filter
        where = f" in {file_filter}" if file_filter else ""
        super().__init__(f'Function "{function_name}" not found{where}')


class GraphStructureError(FlowGraphError):
    """A node's parent chain is inconsistent (it loops back on itself)."""


class ClusteringError(FlowGraphError):
    """A clustering document could not be parsed."""


class UnsupportedLanguageError(FlowGraphError):
    """No tree-sitter grammar is available for the requested language."""

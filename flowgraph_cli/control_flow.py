"""Control-flow graph construction for a single function.

Each statement maps a set of entry node ids to a set of exit node ids.
Control points (conditions, loops, calls, returns, ...) become nodes and the
edges between them carry the branch semantics (``true``, ``false``,
``loop_back``, ``exception``, ...).  Every node is reachable from the
``start`` node, and every path that completes normally ends at ``end``.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import STATEMENT_LABEL_LIMIT, load_settings
from .models import ControlFlowKind, Edge, FlowEdgeKind, Graph, Node, SingleEdgeType
from .parser import (
    CallGraphParser,
    SymbolIndex,
    call_name,
    family_of,
    iter_calls,
    node_text,
    squash,
)

logger = logging.getLogger(__name__)

_SKIPPED = {"comment", "empty_statement", "pass_statement"}
_SEQUENCE = SingleEdgeType(FlowEdgeKind.SEQUENCE)


def _unique(ids: List[str]) -> List[str]:
    return list(dict.fromkeys(ids))


def _statements(node: Any) -> List[Any]:
    return [c for c in node.named_children if c.type not in _SKIPPED]


def _header(node: Any, body: Any) -> str:
    """Source of *node* up to where *body* starts, e.g. ``for x in items``."""
    if body is None:
        return squash(node_text(node))
    head = node.text[: body.start_byte - node.start_byte].decode("utf-8", errors="replace")
    return squash(head).rstrip(":").rstrip("{").strip()


def _condition_text(node: Any) -> str:
    text = squash(node_text(node))
    if node is not None and node.type == "parenthesized_expression" and text.startswith("(") and text.endswith(")"):
        text = text[1:-1].strip()
    return text


def _child_of_type(node: Any, *types: str) -> Optional[Any]:
    for child in node.named_children:
        if child.type in types:
            return child
    return None


@dataclass
class _JumpTarget:
    """Where ``break`` / ``continue`` inside a loop or switch lead."""

    continue_to: Optional[str] = None
    continue_type: FlowEdgeKind = FlowEdgeKind.LOOP_BACK
    breaks: List[str] = field(default_factory=list)


class ControlFlowBuilder:
    """Turn a function's syntax tree into a control-flow :class:`Graph`.

    Args:
        language: tree-sitter language name of the function's file.
        symbols: project definitions, used to tell internal calls from
            external ones.  Without an index every call is external.
        label_limit: statement labels longer than this are truncated.
    """

    def __init__(
        self,
        language: str,
        symbols: Optional[SymbolIndex] = None,
        label_limit: int = STATEMENT_LABEL_LIMIT,
    ) -> None:
        self.language = language
        self.family = family_of(language)
        self.symbols = symbols or SymbolIndex()
        self.label_limit = label_limit

    def build(self, function_node: Any) -> Graph:
        """Build the CFG of *function_node* (a function / method / arrow node)."""
        body = function_node.child_by_field_name("body")
        return _FlowWalk(self).run(body)

    # -- labels --------------------------------------------------------

    def statement_label(self, text: str) -> str:
        text = squash(text)
        if len(text) > self.label_limit:
            return text[: self.label_limit - 3] + "..."
        return text

    def is_external(self, name: str) -> bool:
        return not self.symbols.is_internal(name)


class _FlowWalk:
    """State of one ``build()`` call: the graph, id counter and jump stacks."""

    def __init__(self, builder: ControlFlowBuilder) -> None:
        self.builder = builder
        self.graph = Graph()
        self._ids = itertools.count()
        self._pending: Dict[str, FlowEdgeKind] = {}
        self._jumps: List[_JumpTarget] = []
        self._throw_scopes: List[List[str]] = []
        self._switches: Dict[str, Tuple[str, List[str]]] = {}

        if builder.family == "python":
            self._handlers: Dict[str, Callable[[Any, List[str]], List[str]]] = {
                "block": self._block,
                "if_statement": self._python_if,
                "while_statement": self._while,
                "for_statement": self._for,
                "try_statement": self._python_try,
                "match_statement": self._python_match,
                "with_statement": self._python_with,
                "return_statement": self._return,
                "raise_statement": self._throw,
                "break_statement": self._break,
                "continue_statement": self._continue,
            }
        else:
            self._handlers = {
                "statement_block": self._block,
                "if_statement": self._ecma_if,
                "while_statement": self._while,
                "do_statement": self._do_while,
                "for_statement": self._for,
                "for_in_statement": self._for,
                "switch_statement": self._ecma_switch,
                "try_statement": self._ecma_try,
                "labeled_statement": self._labeled,
                "return_statement": self._return,
                "throw_statement": self._throw,
                "break_statement": self._break,
                "continue_statement": self._continue,
            }

        self.start_id = self._new_node("START", ControlFlowKind.START)
        self.end_id = self._new_node("END", ControlFlowKind.END)

    def run(self, body: Any) -> Graph:
        if body is None:
            self._add_edge(self.start_id, self.end_id)
            return self.graph

        if body.type in ("block", "statement_block"):
            statements = _statements(body)
            if self.builder.family == "python" and statements and _is_docstring(statements[0]):
                statements = statements[1:]
            exits = self._sequence(statements, [self.start_id])
        else:
            # Arrow function with an expression body.
            exits = self._analyze(body, [self.start_id])
        self._link(exits, self.end_id)

        logger.debug(
            "Control flow: %d nodes, %d edges", len(self.graph.nodes), len(self.graph.edges)
        )
        return self.graph

    # ------------------------------------------------------------------
    # Graph primitives
    # ------------------------------------------------------------------

    def _new_node(self, name: str, kind: ControlFlowKind, **metadata: Any) -> str:
        node_id = f"cf_{next(self._ids)}"
        self.graph.add_node(Node(node_id=node_id, name=name, node_type=kind, metadata=metadata))
        return node_id

    def _add_edge(self, src: str, dst: str, kind: FlowEdgeKind = FlowEdgeKind.SEQUENCE) -> None:
        self.graph.add_edge(Edge(src=src, dst=dst, edge_type=kind))

    def _link(self, entries: List[str], target: str, kind: FlowEdgeKind = FlowEdgeKind.SEQUENCE) -> None:
        """Connect every entry to *target*.

        Entries carrying a deferred ``false`` path use that label instead of
        a plain ``sequence``.
        """
        for entry in entries:
            pending = self._pending.pop(entry, None)
            if pending is not None and kind == FlowEdgeKind.SEQUENCE:
                self._add_edge(entry, target, pending)
            else:
                self._add_edge(entry, target, kind)

    def _label_first(self, source: str, mark: int, kind: FlowEdgeKind) -> None:
        """Relabel the first plain edge out of *source* added after *mark*."""
        for edge in self.graph.edges[mark:]:
            if edge.src == source:
                if edge.edge_type == _SEQUENCE:
                    edge.edge_type = SingleEdgeType(kind)
                return

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _analyze(self, node: Any, entries: List[str]) -> List[str]:
        if not entries:
            return []
        if node is None or node.type in _SKIPPED:
            return entries
        handler = self._handlers.get(node.type)
        if handler is None:
            return self._plain(node, entries)
        return handler(node, entries)

    def _sequence(self, statements: List[Any], entries: List[str]) -> List[str]:
        """Thread *statements* in order, analysing each once per live path."""
        current = entries
        for statement in statements:
            if not current:
                break
            exits: List[str] = []
            for entry in current:
                exits.extend(self._analyze(statement, [entry]))
            current = _unique(exits)
        return current

    def _block(self, node: Any, entries: List[str]) -> List[str]:
        return self._sequence(_statements(node), entries)

    def _labeled(self, node: Any, entries: List[str]) -> List[str]:
        return self._analyze(node.child_by_field_name("body"), entries)

    # ------------------------------------------------------------------
    # Plain statements
    # ------------------------------------------------------------------

    def _plain(self, node: Any, entries: List[str]) -> List[str]:
        node_id = self._statement_node(node, node_text(node))
        self._link(entries, node_id)
        return [node_id]

    def _statement_node(self, scan_root: Any, text: str) -> str:
        text = text.strip()
        names: List[str] = []
        for call in iter_calls(scan_root, self.builder.family, skip_definitions=False):
            name = call_name(call)
            if name and name not in names:
                names.append(name)

        if not names:
            return self._new_node(self.builder.statement_label(text), ControlFlowKind.STATEMENT)
        calls = [{"name": n, "external": self.builder.is_external(n)} for n in names]
        return self._new_node(
            ", ".join(names), ControlFlowKind.FUNCTION_CALL,
            calls=calls, original_text=text,
        )

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _ecma_if(self, node: Any, entries: List[str]) -> List[str]:
        branches = [(node.child_by_field_name("condition"), node.child_by_field_name("consequence"))]
        else_body = None
        alternative = node.child_by_field_name("alternative")
        if alternative is not None:
            inner = _statements(alternative)
            else_body = inner[0] if inner else alternative
        return self._conditional(branches, else_body, entries)

    def _python_if(self, node: Any, entries: List[str]) -> List[str]:
        branches = [(node.child_by_field_name("condition"), node.child_by_field_name("consequence"))]
        else_body = None
        for clause in node.children_by_field_name("alternative"):
            if clause.type == "elif_clause":
                branches.append((clause.child_by_field_name("condition"), clause.child_by_field_name("consequence")))
            elif clause.type == "else_clause":
                else_body = clause.child_by_field_name("body")
        return self._conditional(branches, else_body, entries)

    def _conditional(self, branches: List[Tuple[Any, Any]], else_body: Any, entries: List[str]) -> List[str]:
        condition, consequence = branches[0]
        cond_id = self._new_node(_condition_text(condition), ControlFlowKind.CONDITION)
        self._link(entries, cond_id)

        mark = len(self.graph.edges)
        exits = list(self._analyze(consequence, [cond_id]))
        self._label_first(cond_id, mark, FlowEdgeKind.TRUE)

        if len(branches) > 1 or else_body is not None:
            mark = len(self.graph.edges)
            if len(branches) > 1:
                exits.extend(self._conditional(branches[1:], else_body, [cond_id]))
            else:
                exits.extend(self._analyze(else_body, [cond_id]))
            self._label_first(cond_id, mark, FlowEdgeKind.FALSE)
        else:
            exits.append(cond_id)
            self._pending[cond_id] = FlowEdgeKind.FALSE
        return _unique(exits)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _while(self, node: Any, entries: List[str]) -> List[str]:
        cond_id = self._new_node(_condition_text(node.child_by_field_name("condition")), ControlFlowKind.CONDITION)
        self._link(entries, cond_id)
        return self._loop(cond_id, node, FlowEdgeKind.TRUE)

    def _for(self, node: Any, entries: List[str]) -> List[str]:
        loop_id = self._new_node(_header(node, node.child_by_field_name("body")), ControlFlowKind.LOOP)
        self._link(entries, loop_id)
        return self._loop(loop_id, node, FlowEdgeKind.LOOP_BODY)

    def _loop(self, loop_id: str, node: Any, body_kind: FlowEdgeKind) -> List[str]:
        target = _JumpTarget(continue_to=loop_id)
        self._jumps.append(target)
        mark = len(self.graph.edges)
        body_exits = self._analyze(node.child_by_field_name("body"), [loop_id])
        self._jumps.pop()
        self._label_first(loop_id, mark, body_kind)
        self._link(body_exits, loop_id, FlowEdgeKind.LOOP_BACK)

        exits = [loop_id]
        self._pending[loop_id] = FlowEdgeKind.FALSE
        else_clause = node.child_by_field_name("alternative")
        if else_clause is not None and else_clause.type == "else_clause":
            exits = self._analyze(else_clause.child_by_field_name("body"), exits)
        return _unique(exits + target.breaks)

    def _do_while(self, node: Any, entries: List[str]) -> List[str]:
        cond_id = self._new_node(_condition_text(node.child_by_field_name("condition")), ControlFlowKind.CONDITION)
        target = _JumpTarget(continue_to=cond_id, continue_type=FlowEdgeKind.SEQUENCE)
        self._jumps.append(target)
        body_exits = self._analyze(node.child_by_field_name("body"), entries)
        self._jumps.pop()

        self._link(body_exits, cond_id)
        for entry in entries:
            self._add_edge(cond_id, entry, FlowEdgeKind.TRUE)
        self._pending[cond_id] = FlowEdgeKind.FALSE
        return _unique([cond_id] + target.breaks)

    def _break(self, node: Any, entries: List[str]) -> List[str]:
        if not self._jumps:
            return self._plain(node, entries)
        self._jumps[-1].breaks.extend(entries)
        return []

    def _continue(self, node: Any, entries: List[str]) -> List[str]:
        for target in reversed(self._jumps):
            if target.continue_to is not None:
                self._link(entries, target.continue_to, target.continue_type)
                return []
        return self._plain(node, entries)

    # ------------------------------------------------------------------
    # Switch / match
    # ------------------------------------------------------------------

    def _switch_node(self, text: str, entries: List[str]) -> Optional[List[str]]:
        """Reuse the switch node already built for *text*, if any."""
        known = self._switches.get(text)
        if known is None:
            return None
        switch_id, exits = known
        self._link([e for e in entries if e != switch_id], switch_id)
        return list(exits)

    def _ecma_switch(self, node: Any, entries: List[str]) -> List[str]:
        text = f"switch {squash(node_text(node.child_by_field_name('value')))}"
        reused = self._switch_node(text, entries)
        if reused is not None:
            return reused

        switch_id = self._new_node(text, ControlFlowKind.SWITCH)
        self._link(entries, switch_id)
        target = _JumpTarget()
        self._jumps.append(target)

        exits: List[str] = []
        has_default = False
        body = node.child_by_field_name("body")
        for clause in (body.named_children if body is not None else []):
            if clause.type == "switch_case":
                value = clause.child_by_field_name("value")
                case_id = self._new_node(f"case {squash(node_text(value))}", ControlFlowKind.CASE)
            elif clause.type == "switch_default":
                value = None
                has_default = True
                case_id = self._new_node("default", ControlFlowKind.CASE)
            else:
                continue
            self._add_edge(switch_id, case_id, FlowEdgeKind.CASE)

            statements = _case_statements(clause, value)
            if not statements:
                exits.append(case_id)
                continue
            breaks_before = len(target.breaks)
            exits.extend(self._sequence(statements, [case_id]))
            exits.extend(target.breaks[breaks_before:])

        self._jumps.pop()
        if not has_default:
            exits.append(switch_id)
        exits = _unique(exits)
        self._switches[text] = (switch_id, exits)
        return exits

    def _python_match(self, node: Any, entries: List[str]) -> List[str]:
        subjects = ", ".join(squash(node_text(s)) for s in node.children_by_field_name("subject"))
        text = f"match {subjects}"
        reused = self._switch_node(text, entries)
        if reused is not None:
            return reused

        switch_id = self._new_node(text, ControlFlowKind.SWITCH)
        self._link(entries, switch_id)

        exits: List[str] = []
        has_default = False
        body = node.child_by_field_name("body")
        for clause in (body.named_children if body is not None else []):
            if clause.type != "case_clause":
                continue
            consequence = clause.child_by_field_name("consequence") or _child_of_type(clause, "block")
            name = _header(clause, consequence)
            if name == "case _":
                has_default = True
            case_id = self._new_node(name, ControlFlowKind.CASE)
            self._add_edge(switch_id, case_id, FlowEdgeKind.CASE)
            exits.extend(self._analyze(consequence, [case_id]))

        if not has_default:
            exits.append(switch_id)
        exits = _unique(exits)
        self._switches[text] = (switch_id, exits)
        return exits

    # ------------------------------------------------------------------
    # Exceptions
    # ------------------------------------------------------------------

    def _ecma_try(self, node: Any, entries: List[str]) -> List[str]:
        catches = []
        handler = node.child_by_field_name("handler")
        if handler is not None:
            param = handler.child_by_field_name("parameter")
            name = f"catch ({squash(node_text(param))})" if param is not None else "catch"
            catches.append((name, handler.child_by_field_name("body")))
        finalizer = node.child_by_field_name("finalizer")
        finally_body = finalizer.child_by_field_name("body") if finalizer is not None else None
        return self._try(entries, node.child_by_field_name("body"), catches, None, finally_body)

    def _python_try(self, node: Any, entries: List[str]) -> List[str]:
        catches = []
        else_body = None
        finally_body = None
        for clause in node.named_children:
            if clause.type in ("except_clause", "except_group_clause"):
                block = _child_of_type(clause, "block")
                catches.append((_header(clause, block), block))
            elif clause.type == "else_clause":
                else_body = clause.child_by_field_name("body")
            elif clause.type == "finally_clause":
                finally_body = _child_of_type(clause, "block")
        return self._try(entries, node.child_by_field_name("body"), catches, else_body, finally_body)

    def _try(
        self,
        entries: List[str],
        body: Any,
        catches: List[Tuple[str, Any]],
        else_body: Any,
        finally_body: Any,
    ) -> List[str]:
        try_id = self._new_node("try", ControlFlowKind.TRY)
        self._link(entries, try_id)

        thrown: List[str] = []
        self._throw_scopes.append(thrown)
        exits = list(self._analyze(body, [try_id]))
        self._throw_scopes.pop()
        if else_body is not None:
            exits = list(self._analyze(else_body, exits))

        catch_ids = []
        for name, catch_body in catches:
            catch_id = self._new_node(name, ControlFlowKind.CATCH)
            self._add_edge(try_id, catch_id, FlowEdgeKind.EXCEPTION)
            catch_ids.append(catch_id)
            exits.extend(self._analyze(catch_body, [catch_id]))

        for throw_id in thrown:
            if catch_ids:
                for catch_id in catch_ids:
                    self._add_edge(throw_id, catch_id, FlowEdgeKind.EXCEPTION)
            elif self._throw_scopes:
                self._throw_scopes[-1].append(throw_id)

        exits = _unique(exits)
        if finally_body is None:
            return exits
        finally_id = self._new_node("finally", ControlFlowKind.FINALLY)
        # Every branch returned or threw: finally still runs on the way out.
        self._link(exits or [try_id], finally_id, FlowEdgeKind.FINALLY)
        return self._analyze(finally_body, [finally_id])

    # ------------------------------------------------------------------
    # Terminators
    # ------------------------------------------------------------------

    def _return(self, node: Any, entries: List[str]) -> List[str]:
        return_id = self._new_node(squash(node_text(node)).rstrip(";").strip(), ControlFlowKind.RETURN)
        self._link(entries, return_id)
        self._add_edge(return_id, self.end_id)
        return []

    def _throw(self, node: Any, entries: List[str]) -> List[str]:
        throw_id = self._new_node(squash(node_text(node)).rstrip(";").strip(), ControlFlowKind.THROW)
        self._link(entries, throw_id)
        if self._throw_scopes:
            self._throw_scopes[-1].append(throw_id)
        return []

    # ------------------------------------------------------------------
    # Python ``with``
    # ------------------------------------------------------------------

    def _python_with(self, node: Any, entries: List[str]) -> List[str]:
        body = node.child_by_field_name("body")
        clause = _child_of_type(node, "with_clause") or node
        head_id = self._statement_node(clause, _header(node, body))
        self._link(entries, head_id)
        return self._analyze(body, [head_id])


def _is_docstring(statement: Any) -> bool:
    if statement.type != "expression_statement":
        return False
    children = statement.named_children
    return len(children) == 1 and children[0].type == "string"


def _case_statements(clause: Any, value: Any) -> List[Any]:
    statements = clause.children_by_field_name("body")
    if statements:
        return [s for s in statements if s.type not in _SKIPPED]
    return [
        c for c in clause.named_children
        if c.type not in _SKIPPED
        and not (value is not None and c.start_byte == value.start_byte and c.end_byte == value.end_byte)
    ]


def build_control_flow(
    project_root: Path,
    function_name: str,
    file_filter: Optional[str] = None,
    settings: Optional[Dict[str, Any]] = None,
) -> Graph:
    """Locate *function_name* in the project and build its CFG.

    Raises:
        FunctionNotFoundError: when the function does not exist (in
            *file_filter*, if given).
    """
    settings = settings or load_settings(project_root)
    parser = CallGraphParser(
        Path(project_root),
        languages=settings.get("languages"),
        skip_dirs=settings.get("skip_dirs", ()),
    )
    location = parser.find_function(function_name, file_filter)
    logger.debug("Building control flow for %s in %s", function_name, location.rel_path)

    builder = ControlFlowBuilder(
        location.language,
        symbols=parser.symbol_index(),
        label_limit=settings.get("statement_label_limit", STATEMENT_LABEL_LIMIT),
    )
    return builder.build(location.node)

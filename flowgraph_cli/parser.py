"""Tree-sitter symbol resolution: project files -> hierarchical call graph.

Walks every Python / TypeScript / JavaScript file of a project, records the
file -> class -> function/method ownership tree and resolves call sites to
project definitions by name.  The same walk backs function lookup for the
control-flow builder and the internal/external classification of calls.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .errors import FunctionNotFoundError
from .languages import GrammarRegistry, is_python, iter_source_files, language_for_path
from .models import CallEdgeKind, Edge, Graph, Node, StructuralKind

logger = logging.getLogger(__name__)

# Receivers that always refer to the enclosing instance / class.
SELF_NAMES: Set[str] = {"self", "this", "cls", "super"}

# Well-known runtime globals; a method call on them never targets project code.
BUILTIN_RECEIVERS: Set[str] = {
    "console", "Math", "JSON", "Object", "Array", "Promise", "Number", "String",
    "Date", "Reflect", "process", "window", "document", "os", "sys", "json",
    "re", "math", "logging", "logger", "log", "time", "datetime", "path",
}

_SIMPLE_CALLEE = re.compile(r"[\w$]+(\.[\w$]+)*")

# ---------------------------------------------------------------------------
# Node-type tables
# ---------------------------------------------------------------------------
_ES_CLASS_TYPES = {"class_declaration", "abstract_class_declaration"}
_ES_FUNCTION_TYPES = {"function_declaration", "generator_function_declaration"}
_ES_FUNCTION_VALUES = {"arrow_function", "function_expression", "function", "generator_function"}

CALL_TYPES: Dict[str, Set[str]] = {
    "python": {"call"},
    "ecmascript": {"call_expression"},
}
_AWAIT_TYPES = {"await", "await_expression"}


# ===================================================================
# Syntax-tree helpers (shared with the control-flow builder)
# ===================================================================

def node_text(node: Any) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace")


def squash(text: str) -> str:
    """Collapse all whitespace runs to single spaces."""
    return " ".join(text.split())


def family_of(language: str) -> str:
    return "python" if is_python(language) else "ecmascript"


def call_name(call: Any) -> str:
    """Callee text of a call node, e.g. ``this.save`` or ``console.log``."""
    func = call.child_by_field_name("function")
    if func is None:
        func = call.child_by_field_name("constructor")
    return re.sub(r"\s+", "", node_text(func)).replace("?.", ".")


def call_arguments(call: Any) -> List[Any]:
    args = call.child_by_field_name("arguments")
    if args is None:
        return []
    return [a for a in args.named_children if a.type != "comment"]


def call_result_used(call: Any) -> bool:
    """True when the call's value feeds an enclosing expression."""
    parent = call.parent
    while parent is not None and parent.type in _AWAIT_TYPES:
        parent = parent.parent
    return parent is not None and parent.type != "expression_statement"


# ===================================================================
# Definitions
# ===================================================================

@dataclass
class Definition:
    """A class, function or method found in a syntax tree."""

    kind: StructuralKind
    name: str
    scope: Tuple[Tuple[StructuralKind, str], ...]
    node: Any
    body: Any
    outer: Any

    @property
    def qualname(self) -> str:
        return ".".join([n for _, n in self.scope] + [self.name])

    @property
    def enclosing_class(self) -> Optional[Tuple[str, ...]]:
        """Scope names up to and including the innermost enclosing class."""
        names = [n for _, n in self.scope]
        for i in range(len(self.scope) - 1, -1, -1):
            if self.scope[i][0] == StructuralKind.CLASS:
                return tuple(names[: i + 1])
        return None


def as_definition(node: Any, family: str, scope: Tuple[Tuple[StructuralKind, str], ...] = ()) -> Optional[Definition]:
    """Return a :class:`Definition` when *node* declares a class or function."""
    enclosing = scope[-1][0] if scope else None

    if family == "python":
        target = node
        if node.type == "decorated_definition":
            target = node.child_by_field_name("definition")
            if target is None:
                return None
        if target.type == "class_definition":
            kind = StructuralKind.CLASS
        elif target.type == "function_definition":
            kind = StructuralKind.METHOD if enclosing == StructuralKind.CLASS else StructuralKind.FUNCTION
        else:
            return None
        name = node_text(target.child_by_field_name("name"))
        return Definition(kind, name, scope, target, target.child_by_field_name("body"), node)

    if node.type in _ES_CLASS_TYPES:
        kind = StructuralKind.CLASS
    elif node.type in _ES_FUNCTION_TYPES:
        kind = StructuralKind.FUNCTION
    elif node.type == "method_definition":
        kind = StructuralKind.METHOD
    elif node.type == "variable_declarator":
        value = node.child_by_field_name("value")
        name_node = node.child_by_field_name("name")
        if value is None or value.type not in _ES_FUNCTION_VALUES:
            return None
        if name_node is None or name_node.type != "identifier":
            return None
        return Definition(
            StructuralKind.FUNCTION, node_text(name_node), scope,
            value, value.child_by_field_name("body"), node,
        )
    else:
        return None

    name_node = node.child_by_field_name("name")
    if name_node is None:
        return None
    return Definition(kind, node_text(name_node), scope, node, node.child_by_field_name("body"), node)


def iter_definitions(root: Any, family: str, scope: Tuple[Tuple[StructuralKind, str], ...] = ()) -> Iterator[Definition]:
    """Yield every definition below *root*, outer definitions first."""
    for child in root.named_children:
        definition = as_definition(child, family, scope)
        if definition is None:
            yield from iter_definitions(child, family, scope)
            continue
        yield definition
        if definition.body is not None:
            inner = scope + ((definition.kind, definition.name),)
            yield from iter_definitions(definition.body, family, inner)


def iter_calls(root: Any, family: str, skip_definitions: bool = True) -> Iterator[Any]:
    """Yield call nodes under *root* in source order.

    Nested class / function definitions are not entered when
    *skip_definitions* is set; their calls belong to them.
    """
    call_types = CALL_TYPES[family]
    stack = [root]
    while stack:
        node = stack.pop()
        if node is not root and skip_definitions and as_definition(node, family) is not None:
            continue
        if node.type in call_types or (family == "ecmascript" and node.type == "new_expression"):
            yield node
        stack.extend(reversed(node.named_children))


# ===================================================================
# Symbol index
# ===================================================================

@dataclass
class SymbolIndex:
    """Names defined by the analysed project."""

    callables: Set[str] = field(default_factory=set)
    classes: Set[str] = field(default_factory=set)
    methods: Dict[str, Set[str]] = field(default_factory=dict)

    @property
    def method_names(self) -> Set[str]:
        names: Set[str] = set()
        for members in self.methods.values():
            names |= members
        return names

    def add(self, definition: Definition) -> None:
        if definition.kind == StructuralKind.METHOD:
            owner = definition.scope[-1][1] if definition.scope else ""
            self.methods.setdefault(owner, set()).add(definition.name)
            return
        self.callables.add(definition.name)
        if definition.kind == StructuralKind.CLASS:
            self.classes.add(definition.name)

    def is_internal(self, name: str) -> bool:
        """True if a call to *name* targets code defined in the project."""
        parts = name.replace("?.", ".").split(".")
        if len(parts) == 1:
            return parts[0] in self.callables
        receiver, member = parts[-2], parts[-1]
        if parts[0] in SELF_NAMES and len(parts) == 2:
            return member in self.method_names
        if receiver in self.classes:
            return member in self.methods.get(receiver, set())
        return False

    @classmethod
    def from_definitions(cls, definitions: Iterable[Definition]) -> "SymbolIndex":
        index = cls()
        for definition in definitions:
            index.add(definition)
        return index


@dataclass
class FunctionLocation:
    """Where a function chosen for control-flow analysis lives."""

    file_path: Path
    rel_path: str
    language: str
    definition: Definition

    @property
    def node(self) -> Any:
        return self.definition.node


@dataclass
class _RawCall:
    caller_id: str
    class_id: Optional[str]
    file_id: str
    callee: str
    is_new: bool
    sends_data: bool
    returns_data: bool


@dataclass
class _ParsedFile:
    rel_path: str
    language: str
    tree: Any
    definitions: List[Definition]


# ===================================================================
# Call-graph parser
# ===================================================================

class CallGraphParser:
    """Build the project call graph with tree-sitter.

    Node ids follow ``<file>``, ``<file>::<Class>`` and
    ``<file>::<Class>::<method>``; every node's ``parent`` is its enclosing
    scope, so files are the top-level clusters.
    """

    def __init__(
        self,
        project_root: Path,
        languages: Optional[List[str]] = None,
        skip_dirs: Iterable[str] = (),
    ) -> None:
        self.project_root = Path(project_root)
        self.registry = GrammarRegistry(languages)
        self.skip_dirs = list(skip_dirs)
        self._parsed: Optional[List[_ParsedFile]] = None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _parse_source(self, file_path: Path, language: str, source: Optional[bytes] = None) -> Optional[_ParsedFile]:
        if source is None:
            try:
                source = file_path.read_bytes()
            except OSError as exc:
                logger.warning("Failed to read %s: %s", file_path, exc)
                return None
        tree = self.registry.parse(source, language)
        rel_path = file_path.relative_to(self.project_root).as_posix()
        if tree.root_node.has_error:
            logger.debug("Syntax errors in %s; extracting what parsed", rel_path)
        definitions = list(iter_definitions(tree.root_node, family_of(language)))
        return _ParsedFile(rel_path, language, tree, definitions)

    def parsed_files(self) -> List[_ParsedFile]:
        if self._parsed is None:
            parsed: List[_ParsedFile] = []
            languages = [lang for lang in self.registry.languages if self.registry.supports(lang)]
            for file_path, language in iter_source_files(self.project_root, languages, self.skip_dirs):
                result = self._parse_source(file_path, language)
                if result is not None:
                    parsed.append(result)
            logger.debug("Parsed %d source file(s) under %s", len(parsed), self.project_root)
            self._parsed = parsed
        return self._parsed

    def symbol_index(self) -> SymbolIndex:
        return SymbolIndex.from_definitions(
            d for parsed in self.parsed_files() for d in parsed.definitions
        )

    def parse_project(self) -> Graph:
        return self._build_graph(self.parsed_files())

    def parse_file(self, file_path: Path, source: Optional[str] = None) -> Graph:
        """Call graph of a single file; calls resolve only within it."""
        language = language_for_path(file_path)
        if language is None:
            return Graph()
        raw = source.encode("utf-8") if source is not None else None
        parsed = self._parse_source(file_path, language, raw)
        return self._build_graph([parsed] if parsed else [])

    # ------------------------------------------------------------------
    # Function lookup
    # ------------------------------------------------------------------

    def find_function(self, function_name: str, file_filter: Optional[str] = None) -> FunctionLocation:
        """Locate *function_name* (``name`` or ``Class.method``).

        Raises:
            FunctionNotFoundError: no matching function or method exists.
        """
        for parsed in self.parsed_files():
            if file_filter and file_filter not in parsed.rel_path:
                continue
            for definition in parsed.definitions:
                if definition.kind == StructuralKind.CLASS:
                    continue
                if function_name in (definition.name, definition.qualname):
                    return FunctionLocation(
                        file_path=self.project_root / parsed.rel_path,
                        rel_path=parsed.rel_path,
                        language=parsed.language,
                        definition=definition,
                    )
        raise FunctionNotFoundError(function_name, file_filter)

    # ------------------------------------------------------------------
    # Graph assembly
    # ------------------------------------------------------------------

    def _build_graph(self, files: List[_ParsedFile]) -> Graph:
        graph = Graph()
        raw_calls: List[_RawCall] = []

        for parsed in files:
            file_id = parsed.rel_path
            graph.add_node(Node(
                node_id=file_id,
                name=file_id.rsplit("/", 1)[-1],
                node_type=StructuralKind.FILE,
                metadata={"file_path": file_id, "language": parsed.language},
            ))
            family = family_of(parsed.language)
            for definition in parsed.definitions:
                scope_names = [n for _, n in definition.scope]
                node_id = "::".join([file_id] + scope_names + [definition.name])
                parent_id = "::".join([file_id] + scope_names) if scope_names else file_id
                class_path = definition.enclosing_class
                class_id = "::".join((file_id,) + class_path) if class_path else None
                graph.add_node(Node(
                    node_id=node_id,
                    name=definition.name,
                    node_type=definition.kind,
                    metadata={
                        "file": file_id,
                        "class_name": class_path[-1] if class_path else None,
                        "start_line": definition.outer.start_point[0] + 1,
                        "end_line": definition.outer.end_point[0] + 1,
                    },
                    parent=parent_id,
                ))
                if definition.kind == StructuralKind.CLASS or definition.body is None:
                    continue
                for call in iter_calls(definition.body, family):
                    raw_calls.append(_RawCall(
                        caller_id=node_id,
                        class_id=class_id,
                        file_id=file_id,
                        callee=call_name(call),
                        is_new=call.type == "new_expression",
                        sends_data=bool(call_arguments(call)),
                        returns_data=call_result_used(call),
                    ))

        resolver = _CallResolver(graph)
        unresolved = 0
        for raw in raw_calls:
            target = resolver.resolve(raw)
            if target is None:
                unresolved += 1
                continue
            is_class = graph.nodes[target].node_type == StructuralKind.CLASS
            if raw.is_new and not is_class:
                unresolved += 1
                continue
            graph.add_edge(Edge(
                src=raw.caller_id,
                dst=target,
                edge_type=CallEdgeKind.INSTANTIATION if is_class else CallEdgeKind.FUNCTION_CALL,
                sends_data=raw.sends_data,
                returns_data=raw.returns_data,
            ))

        logger.debug(
            "Call graph: %d nodes, %d edges, %d unresolved call(s)",
            len(graph.nodes), len(graph.edges), unresolved,
        )
        return graph


class _CallResolver:
    """Name-based resolution of call sites to project node ids."""

    def __init__(self, graph: Graph) -> None:
        self.by_name: Dict[str, List[str]] = {}
        self.classes_by_name: Dict[str, List[str]] = {}
        self.methods_by_name: Dict[str, List[str]] = {}
        self.members: Dict[str, Dict[str, str]] = {}

        for node in graph.nodes.values():
            if node.node_type == StructuralKind.METHOD:
                self.methods_by_name.setdefault(node.name, []).append(node.node_id)
                if node.parent is not None:
                    self.members.setdefault(node.parent, {})[node.name] = node.node_id
            elif node.node_type in (StructuralKind.FUNCTION, StructuralKind.CLASS):
                self.by_name.setdefault(node.name, []).append(node.node_id)
                if node.node_type == StructuralKind.CLASS:
                    self.classes_by_name.setdefault(node.name, []).append(node.node_id)

    @staticmethod
    def _prefer_file(candidates: List[str], file_id: str) -> Optional[str]:
        if not candidates:
            return None
        for cand in candidates:
            if cand.startswith(file_id + "::"):
                return cand
        return candidates[0]

    @staticmethod
    def _unique(candidates: List[str], file_id: str) -> Optional[str]:
        if len(candidates) == 1:
            return candidates[0]
        local = [c for c in candidates if c.startswith(file_id + "::")]
        return local[0] if len(local) == 1 else None

    def resolve(self, raw: _RawCall) -> Optional[str]:
        if not _SIMPLE_CALLEE.fullmatch(raw.callee):
            return None
        parts = raw.callee.split(".")
        if len(parts) == 1:
            return self._prefer_file(self.by_name.get(parts[0], []), raw.file_id)

        receiver, member = parts[-2], parts[-1]
        if len(parts) == 2 and receiver in SELF_NAMES:
            if raw.class_id is not None:
                target = self.members.get(raw.class_id, {}).get(member)
                if target is not None:
                    return target
            return self._unique(self.methods_by_name.get(member, []), raw.file_id)

        for class_id in self.classes_by_name.get(receiver, []):
            target = self.members.get(class_id, {}).get(member)
            if target is not None:
                return target

        if receiver in BUILTIN_RECEIVERS:
            return None
        target = self._unique(self.methods_by_name.get(member, []), raw.file_id)
        if target is None:
            target = self._unique(self.by_name.get(member, []), raw.file_id)
        return target

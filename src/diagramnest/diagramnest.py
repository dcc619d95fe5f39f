"""Nested diagram resolution for Mermaid sources with embedded diagrams."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

logger = logging.getLogger(__name__)

MAX_NESTING_DEPTH = 10
WARNING_NESTING_DEPTH = 7

_ID_PATTERN = r"[A-Za-z0-9_-]+"
_EMBED_RE = re.compile(r"\{\{embed:(?:([^:}]+):)?(" + _ID_PATTERN + r")\}\}")
_DEFINITION_HEADER_RE = re.compile(r"^[ \t]*---definition:(?:([^:\n]+):)?(" + _ID_PATTERN + r")---[ \t]*$")
_DEFINITION_END_RE = re.compile(r"^[ \t]*---end---[ \t]*$")


class DiagramType(str, Enum):
    FLOWCHART = "flowchart"
    SEQUENCE = "sequence"
    GANTT = "gantt"
    CLASS = "class"
    STATE = "state"
    PIE = "pie"
    GIT = "git"
    ER = "er"
    JOURNEY = "journey"

    @classmethod
    def parse(cls, value: str) -> Optional["DiagramType"]:
        """Return the member spelled exactly ``value``, or None."""
        for member in cls:
            if member.value == value:
                return member
        return None

    @property
    def keyword(self) -> str:
        return _KEYWORDS[self]

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_KEYWORDS = {
    DiagramType.FLOWCHART: "flowchart",
    DiagramType.SEQUENCE: "sequenceDiagram",
    DiagramType.GANTT: "gantt",
    DiagramType.CLASS: "classDiagram",
    DiagramType.STATE: "stateDiagram",
    DiagramType.PIE: "pie",
    DiagramType.GIT: "gitGraph",
    DiagramType.ER: "erDiagram",
    DiagramType.JOURNEY: "journey",
}

_DISPLAY_NAMES = {
    DiagramType.FLOWCHART: "Flowchart",
    DiagramType.SEQUENCE: "Sequence diagram",
    DiagramType.GANTT: "Gantt chart",
    DiagramType.CLASS: "Class diagram",
    DiagramType.STATE: "State diagram",
    DiagramType.PIE: "Pie chart",
    DiagramType.GIT: "Git graph",
    DiagramType.ER: "Entity relationship diagram",
    DiagramType.JOURNEY: "User journey",
}

# Checked in order against the lower-cased first keyword line.
_TYPE_PREFIXES: List[Tuple[str, DiagramType]] = [
    ("flowchart", DiagramType.FLOWCHART),
    ("graph", DiagramType.FLOWCHART),
    ("sequencediagram", DiagramType.SEQUENCE),
    ("gantt", DiagramType.GANTT),
    ("classdiagram", DiagramType.CLASS),
    ("statediagram", DiagramType.STATE),
    ("pie", DiagramType.PIE),
    ("gitgraph", DiagramType.GIT),
    ("erdiagram", DiagramType.ER),
    ("journey", DiagramType.JOURNEY),
]

_EXAMPLES = {
    DiagramType.FLOWCHART: """flowchart TD
    A[Start] --> B{Decision}
    B -->|yes| C[Run]
    B -->|no| D[Stop]""",
    DiagramType.SEQUENCE: """sequenceDiagram
    participant U as User
    participant S as System
    U->>S: Request
    S-->>U: Response""",
    DiagramType.GANTT: """gantt
    title Project plan
    dateFormat YYYY-MM-DD
    section Build
    Task one :2024-01-01, 30d
    Task two :2024-02-01, 20d""",
    DiagramType.CLASS: """classDiagram
    class Animal {
        +String name
        +makeSound()
    }
    class Dog {
        +bark()
    }
    Animal <|-- Dog""",
    DiagramType.STATE: """stateDiagram
    [*] --> Idle
    Idle --> Running
    Running --> Idle
    Running --> [*]""",
    DiagramType.PIE: """pie title Distribution
    "A" : 386
    "B" : 85
    "C" : 15""",
    DiagramType.GIT: """gitGraph
    commit
    branch develop
    checkout develop
    commit
    checkout main
    merge develop""",
    DiagramType.ER: """erDiagram
    CUSTOMER {
        string name
        string email
    }
    ORDER {
        int id
        date created
    }
    CUSTOMER ||--o{ ORDER : places""",
    DiagramType.JOURNEY: """journey
    title Checkout
    section Browse
        Visit site: 5: User
        View item: 4: User
    section Buy
        Add to cart: 3: User
        Pay: 2: User""",
}


def example_source(diagram_type: DiagramType) -> str:
    return _EXAMPLES[diagram_type]


class NestingError(ValueError):
    """Fatal resolution failure with a stable code."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        diagram_id: Optional[str] = None,
        path: Tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.diagram_id = diagram_id
        self.path = tuple(path)

    def __str__(self) -> str:
        return self.message


class RenderError(ValueError):
    """Raised when the external Mermaid renderer fails."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class DefinitionEntry:
    id: str
    raw_text: str
    explicit_type: Optional[DiagramType] = None


@dataclass(frozen=True)
class ResolvedDiagram:
    type: DiagramType
    content: str
    nested_diagrams: Mapping[str, "ResolvedDiagram"] = field(default_factory=dict)
    parent_references: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        # Read-only copy; the tree must not change once returned.
        object.__setattr__(self, "nested_diagrams", MappingProxyType(dict(self.nested_diagrams)))


@dataclass(frozen=True)
class DependencyNode:
    id: str
    dependencies: Tuple[str, ...] = ()
    dependents: Tuple[str, ...] = ()
    unresolved: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NestingWarning:
    diagram_id: str
    current_depth: int
    max_depth: int
    path: Tuple[str, ...]

    @property
    def message(self) -> str:
        return (
            f"diagram {self.diagram_id} is nested {self.current_depth} levels deep "
            f"(limit {self.max_depth}): {' -> '.join(self.path)}"
        )


@dataclass(frozen=True)
class TopologicalOrder:
    success: bool
    order: Tuple[str, ...] = ()
    error: Optional[NestingError] = None


@dataclass(frozen=True)
class ResolutionResult:
    success: bool
    resolved_tree: Optional[ResolvedDiagram] = None
    error: Optional[NestingError] = None
    dependency_report: Tuple[DependencyNode, ...] = ()
    warnings: Tuple[NestingWarning, ...] = ()
    topological_order: Tuple[str, ...] = ()
    duplicates: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DependencyChangeEvent:
    diagram_id: str
    change_type: str
    affected: Tuple[str, ...]


@dataclass
class _DefinitionBlock:
    diagram_id: str
    type_text: Optional[str]
    body: str


@dataclass
class _EmbedReference:
    diagram_id: str
    type_text: Optional[str]
    start: int
    end: int


# ── Type detection ──


def detect_type(text: str) -> Optional[DiagramType]:
    """Infer the diagram type from the first keyword line of ``text``.

    Blank lines and ``%%`` comment/directive lines are skipped. Returns None
    when nothing matches; callers decide whether that is fatal.
    """
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("%%"):
            continue
        lowered = stripped.lower()
        for prefix, diagram_type in _TYPE_PREFIXES:
            if lowered.startswith(prefix):
                return diagram_type
        return None
    return None


# ── Definition blocks ──


def _matching_end(lines: List[str], start: int) -> Optional[int]:
    depth = 0
    for pos in range(start, len(lines)):
        text = lines[pos].rstrip("\r\n")
        if _DEFINITION_HEADER_RE.match(text):
            depth += 1
        elif _DEFINITION_END_RE.match(text):
            depth -= 1
            if depth == 0:
                return pos
    return None


def _split_definitions(source: str) -> Tuple[str, List[_DefinitionBlock]]:
    """Separate definition blocks from the surrounding text.

    Each block runs to its own matching ``---end---``; blocks nested inside a
    body are hoisted out of it and listed after their enclosing block. An
    unterminated header is left in place as ordinary text.
    """
    lines = source.splitlines(keepends=True)
    kept: List[str] = []
    blocks: List[_DefinitionBlock] = []
    idx = 0
    while idx < len(lines):
        header = _DEFINITION_HEADER_RE.match(lines[idx].rstrip("\r\n"))
        close = _matching_end(lines, idx) if header else None
        if close is None:
            kept.append(lines[idx])
            idx += 1
            continue
        body, inner_blocks = _split_definitions("".join(lines[idx + 1 : close]))
        body = body.strip()
        if body:
            blocks.append(_DefinitionBlock(diagram_id=header.group(2), type_text=header.group(1), body=body))
        blocks.extend(inner_blocks)
        idx = close + 1
    return "".join(kept), blocks


def _scan_definitions(source: str) -> List[_DefinitionBlock]:
    return _split_definitions(source)[1]


def extract_definitions(source: str) -> Dict[str, str]:
    """Map definition id to trimmed body; blocks with an unknown type are skipped."""
    registry: Dict[str, str] = {}
    for block in _scan_definitions(source):
        if block.type_text is not None and DiagramType.parse(block.type_text) is None:
            continue
        registry[block.diagram_id] = block.body
    return registry


def strip_definitions(source: str) -> str:
    return _split_definitions(source)[0].strip()


# ── Embed references ──


def _scan_references(content: str) -> List[_EmbedReference]:
    return [
        _EmbedReference(
            diagram_id=match.group(2),
            type_text=match.group(1),
            start=match.start(),
            end=match.end(),
        )
        for match in _EMBED_RE.finditer(content)
    ]


def referenced_ids(content: str) -> List[str]:
    """Return referenced ids in first-seen order without duplicates."""
    ids: List[str] = []
    for ref in _scan_references(content):
        if ref.diagram_id not in ids:
            ids.append(ref.diagram_id)
    return ids


def is_link_statement_context(text: str, start: int, end: int) -> bool:
    """True when text[start:end] sits directly between two double quotes."""
    return text[start - 1 : start] == '"' and text[end : end + 1] == '"'


def substitute_references(content: str) -> str:
    """Replace every embed reference with its id, quoted unless already in quotes."""

    def _replace(match: re.Match) -> str:
        diagram_id = match.group(2)
        if is_link_statement_context(content, match.start(), match.end()):
            return diagram_id
        return f'"{diagram_id}"'

    return _EMBED_RE.sub(_replace, content)


# ── Dependency graph ──


def build_dependency_graph(registry: Dict[str, DefinitionEntry]) -> Dict[str, DependencyNode]:
    """Build one node per registered id with symmetric dependency/dependent edges."""
    dependencies: Dict[str, List[str]] = {}
    unresolved: Dict[str, List[str]] = {}
    dependents: Dict[str, List[str]] = {diagram_id: [] for diagram_id in registry}
    for diagram_id, entry in registry.items():
        deps = []
        missing = []
        for dep_id in referenced_ids(entry.raw_text):
            if dep_id in registry:
                deps.append(dep_id)
            else:
                missing.append(dep_id)
        dependencies[diagram_id] = deps
        unresolved[diagram_id] = missing
        for dep_id in deps:
            if diagram_id not in dependents[dep_id]:
                dependents[dep_id].append(diagram_id)
    return {
        diagram_id: DependencyNode(
            id=diagram_id,
            dependencies=tuple(dependencies[diagram_id]),
            dependents=tuple(dependents[diagram_id]),
            unresolved=tuple(unresolved[diagram_id]),
        )
        for diagram_id in registry
    }


def find_cycle(graph: Dict[str, DependencyNode]) -> Optional[List[str]]:
    """Return the first cycle found as ``[a, b, ..., a]``, or None."""
    visited: Set[str] = set()
    on_stack: Set[str] = set()

    def _visit(node_id: str, path: List[str]) -> Optional[List[str]]:
        visited.add(node_id)
        on_stack.add(node_id)
        path.append(node_id)
        node = graph.get(node_id)
        if node is not None:
            for dep_id in node.dependencies:
                if dep_id in on_stack:
                    return path[path.index(dep_id) :] + [dep_id]
                if dep_id not in visited:
                    cycle = _visit(dep_id, path)
                    if cycle:
                        return cycle
        on_stack.discard(node_id)
        path.pop()
        return None

    for node_id in graph:
        if node_id not in visited:
            cycle = _visit(node_id, [])
            if cycle:
                return cycle
    return None


def topological_order(graph: Dict[str, DependencyNode]) -> TopologicalOrder:
    """Order ids so every dependency precedes its dependents."""
    white, gray, black = 0, 1, 2
    color = {node_id: white for node_id in graph}
    order: List[str] = []

    def _visit(node_id: str) -> bool:
        if color[node_id] == gray:
            return False
        if color[node_id] == black:
            return True
        color[node_id] = gray
        for dep_id in graph[node_id].dependencies:
            if dep_id in graph and not _visit(dep_id):
                return False
        color[node_id] = black
        order.append(node_id)
        return True

    for node_id in graph:
        if color[node_id] == white and not _visit(node_id):
            return TopologicalOrder(
                success=False,
                error=NestingError("E_CYCLE", "Circular dependency detected during topological sort"),
            )
    return TopologicalOrder(success=True, order=tuple(order))


def iter_diagrams(
    node: ResolvedDiagram, path: Tuple[str, ...] = ()
) -> Iterator[Tuple[Tuple[str, ...], ResolvedDiagram]]:
    """Yield ``(path, node)`` for ``node`` and each nested diagram, depth first."""
    yield path, node
    for diagram_id, child in node.nested_diagrams.items():
        yield from iter_diagrams(child, path + (diagram_id,))


# ── Resolver ──


class NestedDiagramResolver:
    """Resolves ``{{embed:...}}`` references for one document.

    Instances hold the definition registry and dependency graph of the last
    pass; use one instance per document.
    """

    def __init__(
        self,
        *,
        max_depth: int = MAX_NESTING_DEPTH,
        warning_depth: int = WARNING_NESTING_DEPTH,
    ) -> None:
        if warning_depth > max_depth:
            raise ValueError(f"warning_depth ({warning_depth}) must not exceed max_depth ({max_depth})")
        self.max_depth = max_depth
        self.warning_depth = warning_depth
        self._registry: Dict[str, DefinitionEntry] = {}
        self._graph: Dict[str, DependencyNode] = {}
        self._warnings: List[NestingWarning] = []
        self._listeners: List[Callable[[DependencyChangeEvent], None]] = []

    @property
    def registry(self) -> Dict[str, DefinitionEntry]:
        return dict(self._registry)

    @property
    def dependency_graph(self) -> Dict[str, DependencyNode]:
        return dict(self._graph)

    @property
    def warnings(self) -> List[NestingWarning]:
        return list(self._warnings)

    def resolve(self, source: str) -> ResolutionResult:
        self._warnings = []
        self._registry = {}
        self._graph = {}
        duplicates: List[str] = []
        try:
            duplicates = self._load_definitions(source)
            root_text = strip_definitions(source)
            root_type = detect_type(root_text)
            if root_type is None:
                return ResolutionResult(
                    success=False,
                    error=NestingError(
                        "E_SYNTAX",
                        f"Unable to detect diagram type from content: {_first_line(root_text)!r}",
                    ),
                    duplicates=tuple(duplicates),
                )

            content, nested = self.rewrite_references(root_text, (), 0)
            self._graph = build_dependency_graph(self._registry)

            cycle = find_cycle(self._graph)
            if cycle:
                raise NestingError(
                    "E_CYCLE",
                    f"Circular reference detected: {' -> '.join(cycle)}",
                    diagram_id=cycle[0],
                    path=tuple(cycle),
                )

            ordering = topological_order(self._graph)
            if not ordering.success:
                raise ordering.error
        except NestingError as exc:
            logger.debug("Resolution failed: [%s] %s", exc.code, exc.message)
            self._graph = build_dependency_graph(self._registry)
            return ResolutionResult(
                success=False,
                error=exc,
                dependency_report=tuple(self._graph.values()),
                warnings=tuple(self._warnings),
                duplicates=tuple(duplicates),
            )

        logger.debug(
            "Resolved %s diagram with %d definition(s), %d warning(s)",
            root_type.value,
            len(self._registry),
            len(self._warnings),
        )
        return ResolutionResult(
            success=True,
            resolved_tree=ResolvedDiagram(type=root_type, content=content, nested_diagrams=nested),
            dependency_report=tuple(self._graph.values()),
            warnings=tuple(self._warnings),
            topological_order=ordering.order,
            duplicates=tuple(duplicates),
        )

    def rewrite_references(
        self, content: str, parent_chain: Tuple[str, ...], depth: int
    ) -> Tuple[str, Dict[str, ResolvedDiagram]]:
        """Resolve each reference in ``content`` recursively, then substitute.

        Raises NestingError on a missing id, an unknown or undetectable type,
        a cycle through ``parent_chain``, or depth beyond ``max_depth``.
        """
        if depth > self.max_depth:
            raise NestingError(
                "E_DEPTH",
                f"Maximum nesting depth ({self.max_depth}) exceeded",
                diagram_id=parent_chain[-1] if parent_chain else None,
                path=parent_chain,
            )
        if depth >= self.warning_depth and parent_chain:
            warning = NestingWarning(
                diagram_id=parent_chain[-1],
                current_depth=depth,
                max_depth=self.max_depth,
                path=parent_chain,
            )
            logger.info("%s", warning.message)
            self._warnings.append(warning)

        nested: Dict[str, ResolvedDiagram] = {}
        for ref in _scan_references(content):
            entry = self._registry.get(ref.diagram_id)
            if entry is None:
                raise NestingError(
                    "E_MISSING_REFERENCE",
                    f"Referenced diagram not found: {ref.diagram_id}",
                    diagram_id=ref.diagram_id,
                    path=parent_chain,
                )
            diagram_type = self._effective_type(ref, entry)

            if ref.diagram_id in parent_chain:
                cycle = parent_chain + (ref.diagram_id,)
                raise NestingError(
                    "E_CYCLE",
                    f"Circular reference detected: {' -> '.join(cycle)}",
                    diagram_id=ref.diagram_id,
                    path=cycle,
                )

            child_chain = parent_chain + (ref.diagram_id,)
            child_content, child_nested = self.rewrite_references(entry.raw_text, child_chain, depth + 1)
            nested[ref.diagram_id] = ResolvedDiagram(
                type=diagram_type,
                content=child_content,
                nested_diagrams=child_nested,
                parent_references=child_chain,
            )
            logger.debug("Resolved %s as %s at depth %d", ref.diagram_id, diagram_type.value, depth + 1)

        return substitute_references(content), nested

    def has_changed(self, new_source: str) -> bool:
        """Compare the definition bodies of ``new_source`` against the last pass."""
        current = extract_definitions(new_source)
        previous = {diagram_id: entry.raw_text for diagram_id, entry in self._registry.items()}
        if current.keys() != previous.keys():
            return True
        return any(current[diagram_id] != previous[diagram_id] for diagram_id in current)

    # Dependency queries

    def dependencies_of(self, diagram_id: str) -> List[str]:
        node = self._graph.get(diagram_id)
        return list(node.dependencies) if node else []

    def dependents_of(self, diagram_id: str) -> List[str]:
        node = self._graph.get(diagram_id)
        return list(node.dependents) if node else []

    def depends_on(self, diagram_id: str, other_id: str) -> bool:
        """True if ``diagram_id`` reaches ``other_id`` through dependency edges."""
        seen: Set[str] = set()
        stack = [diagram_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            if current == other_id:
                return True
            node = self._graph.get(current)
            if node is not None:
                stack.extend(node.dependencies)
        return False

    # Live registry edits

    def add_listener(self, listener: Callable[[DependencyChangeEvent], None]) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[DependencyChangeEvent], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def update_definition(self, diagram_id: str, raw_text: str) -> DependencyChangeEvent:
        old = self._registry.get(diagram_id)
        old_deps = referenced_ids(old.raw_text) if old else []
        new_text = raw_text.strip()
        self._registry[diagram_id] = DefinitionEntry(
            id=diagram_id,
            raw_text=new_text,
            explicit_type=old.explicit_type if old else None,
        )
        self._graph = build_dependency_graph(self._registry)

        affected = _ordered_union(self.dependents_of(diagram_id), referenced_ids(new_text), old_deps)
        event = DependencyChangeEvent(
            diagram_id=diagram_id,
            change_type="modified" if old else "added",
            affected=tuple(affected),
        )
        self._notify(event)
        return event

    def remove_definition(self, diagram_id: str) -> Optional[DependencyChangeEvent]:
        old = self._registry.get(diagram_id)
        if old is None:
            return None
        affected = _ordered_union(self.dependents_of(diagram_id), referenced_ids(old.raw_text))
        del self._registry[diagram_id]
        self._graph = build_dependency_graph(self._registry)
        event = DependencyChangeEvent(diagram_id=diagram_id, change_type="removed", affected=tuple(affected))
        self._notify(event)
        return event

    def invalidate_all(self) -> DependencyChangeEvent:
        event = DependencyChangeEvent(
            diagram_id="all",
            change_type="modified",
            affected=tuple(self._registry),
        )
        self._notify(event)
        return event

    def clear(self) -> None:
        self._registry.clear()
        self._graph.clear()
        self._warnings.clear()
        self._listeners.clear()

    def _load_definitions(self, source: str) -> List[str]:
        duplicates: List[str] = []
        invalid: Optional[NestingError] = None
        for block in _scan_definitions(source):
            explicit_type = None
            if block.type_text is not None:
                explicit_type = DiagramType.parse(block.type_text)
                if explicit_type is None:
                    # Raised after the loop; the registry holds every valid block.
                    if invalid is None:
                        invalid = NestingError(
                            "E_INVALID_TYPE",
                            f"Invalid diagram type: {block.type_text} (definition {block.diagram_id})",
                            diagram_id=block.diagram_id,
                        )
                    continue
            if block.diagram_id in self._registry:
                logger.warning("Duplicate definition %s; the later block wins", block.diagram_id)
                if block.diagram_id not in duplicates:
                    duplicates.append(block.diagram_id)
            self._registry[block.diagram_id] = DefinitionEntry(
                id=block.diagram_id,
                raw_text=block.body,
                explicit_type=explicit_type,
            )
        logger.debug("Extracted %d definition(s)", len(self._registry))
        if invalid is not None:
            raise invalid
        return duplicates

    def _effective_type(self, ref: _EmbedReference, entry: DefinitionEntry) -> DiagramType:
        if ref.type_text is not None:
            explicit = DiagramType.parse(ref.type_text)
            if explicit is None:
                raise NestingError(
                    "E_INVALID_TYPE",
                    f"Invalid diagram type: {ref.type_text}",
                    diagram_id=ref.diagram_id,
                )
            return explicit
        if entry.explicit_type is not None:
            return entry.explicit_type
        detected = detect_type(entry.raw_text)
        if detected is None:
            raise NestingError(
                "E_TYPE_DETECTION",
                f"Unable to detect diagram type for: {ref.diagram_id}",
                diagram_id=ref.diagram_id,
            )
        return detected

    def _notify(self, event: DependencyChangeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Dependency change listener failed for %s", event.diagram_id)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            line = line.strip()
            return line if len(line) <= 80 else line[:80] + "..."
    return ""


def _ordered_union(*groups: List[str]) -> List[str]:
    merged: List[str] = []
    for group in groups:
        for item in group:
            if item not in merged:
                merged.append(item)
    return merged


def resolve(source: str, **kwargs) -> ResolutionResult:
    """Resolve ``source`` with a fresh resolver."""
    return NestedDiagramResolver(**kwargs).resolve(source)


# ── Rendering bridge ──

_RENDER_FORMATS = {"svg", "png", "pdf"}


class MermaidCliRenderer:
    """Renders Mermaid text through the ``mmdc`` command line tool."""

    def __init__(self, executable: str = "mmdc", *, timeout: float = 30.0) -> None:
        self.executable = executable
        self.timeout = timeout

    def render(self, diagram_type: DiagramType, content: str, output_format: str = "svg") -> bytes:
        if output_format not in _RENDER_FORMATS:
            raise RenderError("E_RENDER_FAILED", f"unsupported output format: {output_format}")
        mmdc_path = shutil.which(self.executable)
        if not mmdc_path:
            raise RenderError(
                "E_RENDERER_MISSING",
                f"Mermaid CLI not found: {self.executable}",
            )
        with tempfile.TemporaryDirectory() as td:
            input_path = Path(td) / "diagram.mmd"
            output_path = Path(td) / f"diagram.{output_format}"
            input_path.write_text(content, encoding="utf-8")
            try:
                proc = subprocess.run(
                    [mmdc_path, "-i", str(input_path), "-o", str(output_path)],
                    text=True,
                    capture_output=True,
                    check=False,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as exc:
                raise RenderError(
                    "E_RENDER_FAILED",
                    f"{diagram_type.value} diagram rendering timed out after {self.timeout:g}s",
                ) from exc
            except OSError as exc:
                raise RenderError("E_RENDER_FAILED", f"failed to execute Mermaid CLI: {exc}") from exc
            if proc.returncode != 0:
                detail = (proc.stderr or "").strip()
                if len(detail) > 240:
                    detail = detail[:240] + "..."
                raise RenderError(
                    "E_RENDER_FAILED",
                    f"Mermaid CLI failed for {diagram_type.value} diagram: {detail or 'unknown error'}",
                )
            return output_path.read_bytes()


def render_tree(
    tree: ResolvedDiagram, renderer: MermaidCliRenderer, output_format: str = "svg"
) -> Dict[str, bytes]:
    """Render every node of ``tree``; keys are dotted id paths, ``""`` for the root."""
    rendered: Dict[str, bytes] = {}
    for path, node in iter_diagrams(tree):
        key = ".".join(path)
        logger.debug("Rendering %s", key or "<root>")
        rendered[key] = renderer.render(node.type, node.content, output_format)
    return rendered

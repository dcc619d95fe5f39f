"""Public API for diagramnest."""
from .diagramnest import (
    DependencyChangeEvent,
    DependencyNode,
    DiagramType,
    MermaidCliRenderer,
    NestedDiagramResolver,
    NestingError,
    NestingWarning,
    RenderError,
    ResolutionResult,
    ResolvedDiagram,
    detect_type,
    extract_definitions,
    iter_diagrams,
    render_tree,
    resolve,
    strip_definitions,
)

__all__ = [
    "DependencyChangeEvent",
    "DependencyNode",
    "DiagramType",
    "MermaidCliRenderer",
    "NestedDiagramResolver",
    "NestingError",
    "NestingWarning",
    "RenderError",
    "ResolutionResult",
    "ResolvedDiagram",
    "detect_type",
    "extract_definitions",
    "iter_diagrams",
    "render_tree",
    "resolve",
    "strip_definitions",
]

"""Command-line interface for diagramnest resolve/render workflows."""
from __future__ import annotations

import argparse
import json
import logging
import sys
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from . import config
from .diagramnest import (
    DiagramType,
    MermaidCliRenderer,
    NestedDiagramResolver,
    NestingError,
    RenderError,
    ResolutionResult,
    ResolvedDiagram,
    example_source,
    render_tree,
)
from .resources import load_cheatsheet

_COMMANDS = "resolve, deps, render, check, types, example, cheatsheet"

_ERROR_HINTS = {
    "E_SYNTAX": "Start the root diagram with a Mermaid keyword such as 'flowchart TD'.",
    "E_MISSING_REFERENCE": "Add a ---definition:ID--- ... ---end--- block for the embedded id.",
    "E_TYPE_DETECTION": "Start the definition body with a Mermaid keyword or give an explicit type.",
    "E_INVALID_TYPE": "Use one of: " + ", ".join(t.value for t in DiagramType) + ".",
    "E_CYCLE": "Remove one of the embeds along the reported path.",
    "E_DEPTH": "Flatten the embedding chain.",
}


@dataclass
class CliError(Exception):
    code: str
    message: str
    hint: Optional[str] = None
    exit_code: int = 1
    file: Optional[str] = None
    retryable: bool = True


class UsageError(Exception):
    pass


class FriendlyArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:  # pragma: no cover - argparse callback
        raise UsageError(message)


def _build_parser() -> argparse.ArgumentParser:
    parser = FriendlyArgumentParser(
        prog="diagramnest",
        description="Resolve nested Mermaid diagrams and render them.",
    )
    parser.add_argument("--error-format", choices=["text", "json"], default="text")
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--verbose", action="store_true", help="Log resolution details to stderr")

    subparsers = parser.add_subparsers(dest="command")

    resolve_parser = subparsers.add_parser("resolve", help="Resolve embeds and print the root diagram")
    resolve_parser.add_argument("input", nargs="?", help="Input .mmd file")
    resolve_parser.add_argument("--text", help="Raw diagram source")
    resolve_parser.add_argument("--format", choices=["text", "json"], default="text")

    deps_parser = subparsers.add_parser("deps", help="Print the dependency report")
    deps_parser.add_argument("input", nargs="?", help="Input .mmd file")
    deps_parser.add_argument("--text", help="Raw diagram source")

    render_parser = subparsers.add_parser("render", help="Render the root and nested diagrams")
    render_parser.add_argument("input", nargs="?", help="Input .mmd file")
    render_parser.add_argument("--text", help="Raw diagram source")
    render_parser.add_argument("-o", "--output-dir", help="Directory for rendered files")
    render_parser.add_argument("--format", choices=["svg", "png", "pdf"], default="svg")

    check_parser = subparsers.add_parser("check", help="Report whether nested definitions changed")
    check_parser.add_argument("old", help="Previous .mmd file")
    check_parser.add_argument("new", help="Current .mmd file")

    subparsers.add_parser("types", help="List supported diagram types")
    example_parser = subparsers.add_parser("example", help="Print an example diagram")
    example_parser.add_argument("type", choices=[t.value for t in DiagramType])
    subparsers.add_parser("cheatsheet", help="Print embed syntax quick reference")

    return parser


def _read_file(path: str) -> str:
    input_path = Path(path)
    if not input_path.exists():
        raise CliError(
            "E_IO_READ",
            f"input file not found: {input_path}",
            exit_code=2,
            file=str(input_path),
        )
    try:
        return input_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CliError(
            "E_IO_READ",
            f"failed to read input file: {input_path}",
            hint=str(exc),
            exit_code=2,
            file=str(input_path),
        )


def _read_input(path: Optional[str], text: Optional[str]) -> tuple[str, Optional[Path]]:
    if path and text is not None:
        raise CliError(
            "E_ARGS",
            "--text cannot be combined with file input",
            hint="Use either FILE or --text.",
            exit_code=2,
        )

    if text is not None:
        return text, None

    if path:
        return _read_file(path), Path(path)

    if sys.stdin.isatty():
        raise CliError(
            "E_ARGS",
            "no input provided",
            hint="Use a subcommand with FILE, --text, or pipe stdin.",
            exit_code=2,
        )

    data = sys.stdin.read()
    if not data.strip():
        raise CliError(
            "E_ARGS",
            "stdin was empty",
            hint="Pipe Mermaid source into stdin.",
            exit_code=2,
        )
    return data, None


def _config_value(read):
    try:
        return read()
    except ValueError as exc:
        raise CliError(
            "E_ARGS",
            str(exc),
            hint="Check the DIAGRAMNEST_* environment variables.",
            exit_code=2,
        )


def _new_resolver() -> NestedDiagramResolver:
    return _config_value(
        lambda: NestedDiagramResolver(max_depth=config.max_depth(), warning_depth=config.warning_depth())
    )


def _resolve_or_fail(source: str, *, echo_warnings: bool = True) -> ResolutionResult:
    result = _new_resolver().resolve(source)
    if echo_warnings:
        for warning in result.warnings:
            sys.stderr.write(f"warning: {warning.message}\n")
    if not result.success:
        raise result.error
    return result


def _tree_to_dict(node: ResolvedDiagram) -> dict:
    return {
        "type": node.type.value,
        "content": node.content,
        "parentReferences": list(node.parent_references),
        "nestedDiagrams": {key: _tree_to_dict(child) for key, child in node.nested_diagrams.items()},
    }


def _result_to_dict(result: ResolutionResult) -> dict:
    payload = {
        "success": result.success,
        "resolvedTree": _tree_to_dict(result.resolved_tree) if result.resolved_tree else None,
        "dependencyReport": [
            {
                "id": node.id,
                "dependencies": list(node.dependencies),
                "dependents": list(node.dependents),
            }
            for node in result.dependency_report
        ],
        "warnings": [
            {
                "diagramId": w.diagram_id,
                "currentDepth": w.current_depth,
                "maxDepth": w.max_depth,
                "path": list(w.path),
            }
            for w in result.warnings
        ],
        "topologicalOrder": list(result.topological_order),
        "duplicates": list(result.duplicates),
    }
    return payload


def _write_bytes(path: Path, content: bytes) -> None:
    try:
        path.write_bytes(content)
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to write output file: {path}",
            hint=str(exc),
            exit_code=4,
            file=str(path),
        )


def _error_from_exception(exc: Exception) -> CliError:
    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, NestingError):
        return CliError(
            exc.code,
            exc.message,
            hint=_ERROR_HINTS.get(exc.code),
            exit_code=3,
            retryable=True,
        )
    if isinstance(exc, RenderError):
        hint = "Install @mermaid-js/mermaid-cli or set DIAGRAMNEST_MMDC." if exc.code == "E_RENDERER_MISSING" else None
        return CliError(
            exc.code,
            exc.message,
            hint=hint,
            exit_code=4,
            retryable=exc.code != "E_RENDERER_MISSING",
        )
    return CliError(
        "E_INTERNAL",
        str(exc) or exc.__class__.__name__,
        hint="Re-run with --debug to see traceback.",
        exit_code=1,
        retryable=False,
    )


def _emit_error(err: CliError, *, error_format: str) -> None:
    if error_format == "json":
        payload = {
            "ok": False,
            "code": err.code,
            "message": err.message,
            "file": err.file,
            "hint": err.hint,
            "retryable": err.retryable,
        }
        sys.stderr.write(json.dumps(payload) + "\n")
        return

    sys.stderr.write(f"error[{err.code}]: {err.message}\n")
    if err.hint:
        sys.stderr.write(f"hint: {err.hint}\n")


def _handle_resolve(args: argparse.Namespace) -> int:
    source, _source_path = _read_input(args.input, args.text)
    result = _resolve_or_fail(source, echo_warnings=args.format != "json")
    if args.format == "json":
        sys.stdout.write(json.dumps(_result_to_dict(result), indent=2) + "\n")
        return 0
    content = result.resolved_tree.content
    sys.stdout.write(content)
    if not content.endswith("\n"):
        sys.stdout.write("\n")
    return 0


def _handle_deps(args: argparse.Namespace) -> int:
    source, _source_path = _read_input(args.input, args.text)
    result = _resolve_or_fail(source)
    for node in result.dependency_report:
        deps = ", ".join(node.dependencies) or "-"
        dependents = ", ".join(node.dependents) or "-"
        print(f"{node.id}: depends on {deps}; used by {dependents}")
    print("order: " + " ".join(result.topological_order))
    return 0


def _handle_render(args: argparse.Namespace) -> int:
    source, source_path = _read_input(args.input, args.text)
    result = _resolve_or_fail(source)

    if args.output_dir:
        output_dir = Path(args.output_dir)
    elif source_path is not None:
        output_dir = source_path.parent
    else:
        output_dir = Path.cwd()
    stem = source_path.stem if source_path is not None else "diagram"
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CliError(
            "E_IO_WRITE",
            f"failed to create output directory: {output_dir}",
            hint=str(exc),
            exit_code=4,
        )

    renderer = MermaidCliRenderer(config.MMDC, timeout=_config_value(config.render_timeout))
    rendered = render_tree(result.resolved_tree, renderer, args.format)
    for key, blob in rendered.items():
        name = f"{stem}.{key}.{args.format}" if key else f"{stem}.{args.format}"
        target = output_dir / name
        _write_bytes(target, blob)
        print(f"Wrote {target}")
    return 0


def _handle_check(args: argparse.Namespace) -> int:
    resolver = _new_resolver()
    resolver.resolve(_read_file(args.old))
    changed = resolver.has_changed(_read_file(args.new))
    print("changed" if changed else "unchanged")
    return 0


def _handle_types(_args: argparse.Namespace) -> int:
    for diagram_type in DiagramType:
        print(f"{diagram_type.value:<10} {diagram_type.keyword:<16} {diagram_type.display_name}")
    return 0


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.LOG_LEVEL, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[Iterable[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    parser = _build_parser()

    if not raw_argv:
        err = CliError(
            "E_ARGS",
            "missing subcommand",
            hint=f"Use one of: {_COMMANDS}.",
            exit_code=2,
        )
        _emit_error(err, error_format="text")
        return err.exit_code

    debug_enabled = "--debug" in raw_argv or config.DEBUG
    error_format = "text"
    if "--error-format" in raw_argv:
        idx = raw_argv.index("--error-format")
        if idx + 1 < len(raw_argv):
            error_format = raw_argv[idx + 1]

    try:
        args = parser.parse_args(raw_argv)
        error_format = args.error_format
        _configure_logging(args.verbose)

        if args.command == "resolve":
            return _handle_resolve(args)
        if args.command == "deps":
            return _handle_deps(args)
        if args.command == "render":
            return _handle_render(args)
        if args.command == "check":
            return _handle_check(args)
        if args.command == "types":
            return _handle_types(args)
        if args.command == "example":
            print(example_source(DiagramType(args.type)))
            return 0
        if args.command == "cheatsheet":
            print(load_cheatsheet())
            return 0

        raise CliError(
            "E_ARGS",
            "missing subcommand",
            hint=f"Use one of: {_COMMANDS}.",
            exit_code=2,
        )
    except UsageError as exc:
        err = CliError(
            "E_ARGS",
            str(exc),
            hint=f"Use subcommands: {_COMMANDS}.",
            exit_code=2,
        )
        _emit_error(err, error_format=error_format)
        return err.exit_code
    except Exception as exc:  # pragma: no cover - exercised in integration tests
        err = _error_from_exception(exc)
        _emit_error(err, error_format=error_format)
        if debug_enabled:
            traceback.print_exc(file=sys.stderr)
        return err.exit_code


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import sys
import unittest
from pathlib import Path

TESTS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from diagramnest.diagramnest import (
    DiagramType,
    NestedDiagramResolver,
    detect_type,
    extract_definitions,
    iter_diagrams,
    resolve,
    strip_definitions,
    substitute_references,
)

LOGIN_EXAMPLE = """flowchart TD
  A --> {{embed:login}}
---definition:login---
sequenceDiagram
  U->>S: hi
---end---
"""


def embed(diagram_id: str) -> str:
    return "{{embed:" + diagram_id + "}}"


def chain_source(length: int) -> str:
    """Root embeds d1, each dN embeds dN+1, the last one embeds nothing."""
    parts = ["flowchart TD", "  A --> " + embed("d1")]
    for idx in range(1, length + 1):
        body = f"  X{idx} --> " + (embed(f"d{idx + 1}") if idx < length else "Y")
        parts.extend([f"---definition:d{idx}---", "flowchart LR", body, "---end---"])
    return "\n".join(parts) + "\n"


class TypeDetectionTests(unittest.TestCase):
    def test_every_keyword_is_detected_case_insensitively(self) -> None:
        for diagram_type in DiagramType:
            keyword = diagram_type.keyword
            for text in (keyword + " ...", "   " + keyword.upper() + " ...", "\n\t" + keyword.lower() + "\n  x"):
                self.assertEqual(detect_type(text), diagram_type, text)

    def test_graph_alias_and_versioned_keywords(self) -> None:
        self.assertEqual(detect_type("graph LR\n A-->B"), DiagramType.FLOWCHART)
        self.assertEqual(detect_type("stateDiagram-v2\n [*] --> S"), DiagramType.STATE)

    def test_comment_and_directive_lines_are_skipped(self) -> None:
        text = "%%{init: {'theme': 'dark'}}%%\n%% a note\n\nsequenceDiagram\n A->>B: hi"
        self.assertEqual(detect_type(text), DiagramType.SEQUENCE)

    def test_unknown_text_returns_none(self) -> None:
        self.assertIsNone(detect_type("A --> B"))
        self.assertIsNone(detect_type(""))
        self.assertIsNone(detect_type("%% only a comment"))

    def test_display_names_and_examples(self) -> None:
        from diagramnest.diagramnest import example_source

        for diagram_type in DiagramType:
            self.assertTrue(diagram_type.display_name)
            self.assertEqual(detect_type(example_source(diagram_type)), diagram_type)


class DefinitionExtractionTests(unittest.TestCase):
    def test_extracts_typed_and_untyped_blocks(self) -> None:
        source = """flowchart TD
  A --> {{embed:one}}
---definition:one---
  sequenceDiagram
    A->>B: hi
---end---
text between
---definition:class:two---
classDiagram
  class Foo
---end---
"""
        registry = extract_definitions(source)
        self.assertEqual(list(registry), ["one", "two"])
        self.assertEqual(registry["one"], "sequenceDiagram\n    A->>B: hi")
        self.assertEqual(registry["two"], "classDiagram\n  class Foo")

    def test_indented_markers_and_crlf(self) -> None:
        source = "flowchart TD\r\n    ---definition:x---\r\n    pie\r\n    \"a\" : 1\r\n    ---end---\r\n"
        registry = extract_definitions(source)
        self.assertIn("x", registry)
        self.assertTrue(registry["x"].startswith("pie"))

    def test_invalid_explicit_type_is_skipped(self) -> None:
        source = "---definition:bogus:x---\nflowchart TD\n---end---\n"
        self.assertEqual(extract_definitions(source), {})

    def test_empty_body_is_skipped(self) -> None:
        self.assertEqual(extract_definitions("---definition:x---\n   \n---end---\n"), {})

    def test_nested_block_is_hoisted_out_of_its_parent(self) -> None:
        source = (
            "flowchart TD\n  A --> {{embed:outer}}\n"
            "---definition:outer---\nflowchart LR\n  B --> {{embed:inner}}\n"
            "  ---definition:inner---\n  pie\n    \"x\" : 1\n  ---end---\n"
            "---end---\n"
        )
        registry = extract_definitions(source)
        self.assertEqual(list(registry), ["outer", "inner"])
        self.assertEqual(registry["outer"], "flowchart LR\n  B --> {{embed:inner}}")
        self.assertEqual(registry["inner"], "pie\n    \"x\" : 1")
        self.assertEqual(strip_definitions(source), "flowchart TD\n  A --> {{embed:outer}}")

    def test_unterminated_header_stays_in_text(self) -> None:
        source = "flowchart TD\n  A --> B\n---definition:x---\npie\n"
        self.assertEqual(extract_definitions(source), {})
        self.assertEqual(strip_definitions(source), source.strip())

    def test_strip_definitions_leaves_root(self) -> None:
        self.assertEqual(strip_definitions(LOGIN_EXAMPLE), "flowchart TD\n  A --> {{embed:login}}")


class SubstitutionTests(unittest.TestCase):
    def test_label_context_is_quoted(self) -> None:
        self.assertEqual(substitute_references("D[" + embed("x") + "]"), 'D["x"]')

    def test_link_statement_context_is_bare(self) -> None:
        self.assertEqual(substitute_references('click D "' + embed("x") + '"'), 'click D "x"')

    def test_typed_reference_is_substituted(self) -> None:
        self.assertEqual(substitute_references("A --> {{embed:class:x}}"), 'A --> "x"')

    def test_single_quote_on_one_side_counts_as_label(self) -> None:
        self.assertEqual(substitute_references('"' + embed("x") + " tail"), '""x" tail')


class ResolverTests(unittest.TestCase):
    def test_end_to_end_example(self) -> None:
        result = resolve(LOGIN_EXAMPLE)
        self.assertTrue(result.success, result.error)
        tree = result.resolved_tree
        self.assertEqual(tree.type, DiagramType.FLOWCHART)
        self.assertEqual(tree.type.value, "flowchart")
        self.assertIn('A --> "login"', tree.content)
        self.assertEqual(tree.parent_references, ())
        self.assertIn("login", tree.nested_diagrams)
        login = tree.nested_diagrams["login"]
        self.assertEqual(login.type, DiagramType.SEQUENCE)
        self.assertEqual(login.content, "sequenceDiagram\n  U->>S: hi")
        self.assertEqual(login.parent_references, ("login",))
        self.assertEqual(result.topological_order, ("login",))
        self.assertEqual(result.warnings, ())

    def test_nested_map_is_read_only(self) -> None:
        tree = resolve(LOGIN_EXAMPLE).resolved_tree
        with self.assertRaises(TypeError):
            tree.nested_diagrams["other"] = tree.nested_diagrams["login"]
        self.assertEqual(list(tree.nested_diagrams), ["login"])

    def test_definition_declared_inside_another_resolves(self) -> None:
        source = """flowchart TD
  A --> {{embed:outer}}
---definition:outer---
flowchart LR
  B --> {{embed:inner}}
---definition:inner---
sequenceDiagram
  C->>D: hi
---end---
---end---
"""
        result = resolve(source)
        self.assertTrue(result.success, result.error)
        tree = result.resolved_tree
        outer = tree.nested_diagrams["outer"]
        inner = outer.nested_diagrams["inner"]
        self.assertEqual(outer.content, 'flowchart LR\n  B --> "inner"')
        self.assertEqual(inner.type, DiagramType.SEQUENCE)
        self.assertEqual(inner.parent_references, ("outer", "inner"))
        self.assertEqual(result.topological_order, ("inner", "outer"))
        for node in (tree, outer, inner):
            self.assertNotIn("---definition", node.content)
            self.assertNotIn("---end---", node.content)

    def test_forward_and_backward_definitions_resolve(self) -> None:
        source = (
            "---definition:early---\npie\n  \"a\" : 1\n---end---\n"
            "flowchart TD\n  A --> " + embed("early") + "\n  B --> " + embed("late") + "\n"
            "---definition:late---\njourney\n  title t\n---end---\n"
        )
        result = resolve(source)
        self.assertTrue(result.success, result.error)
        self.assertEqual(set(result.resolved_tree.nested_diagrams), {"early", "late"})
        self.assertNotIn("{{embed:", result.resolved_tree.content)
        self.assertNotIn("---definition", result.resolved_tree.content)

    def test_click_and_label_contexts_in_one_diagram(self) -> None:
        source = """flowchart TD
  A --> B
  B --> C[{{embed:node-ref}}]
  B --> D[Details]
  click D "{{embed:click-ref}}"
---definition:node-ref---
sequenceDiagram
  User->>System: Node
---end---
---definition:click-ref---
sequenceDiagram
  User->>System: Click
---end---
"""
        result = resolve(source)
        self.assertTrue(result.success, result.error)
        content = result.resolved_tree.content
        self.assertIn('C["node-ref"]', content)
        self.assertIn('click D "click-ref"', content)
        self.assertEqual(content.count("click-ref"), 1)

    def test_missing_reference_fails_naming_the_id(self) -> None:
        result = resolve("A --> {{embed:x}}")
        self.assertFalse(result.success)
        self.assertIn("x", result.error.message)

        result = resolve("flowchart TD\n  A --> {{embed:x}}\n---definition:other---\npie\n---end---\n")
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_MISSING_REFERENCE")
        self.assertEqual(result.error.message, "Referenced diagram not found: x")
        self.assertEqual([node.id for node in result.dependency_report], ["other"])

    def test_root_without_keyword_is_syntax_error(self) -> None:
        result = resolve("hello world\n---definition:a---\npie\n---end---\n")
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_SYNTAX")
        self.assertIn("Unable to detect diagram type from content", result.error.message)
        self.assertEqual(result.dependency_report, ())

    def test_mutual_embedding_is_a_cycle(self) -> None:
        source = (
            "flowchart TD\n  A --> " + embed("a") + "\n"
            "---definition:a---\nflowchart TD\n  X --> " + embed("b") + "\n---end---\n"
            "---definition:b---\nflowchart TD\n  Y --> " + embed("a") + "\n---end---\n"
        )
        result = resolve(source)
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_CYCLE")
        self.assertIn("Circular reference detected", result.error.message)
        self.assertIn("a -> b -> a", result.error.message)
        self.assertEqual({node.id for node in result.dependency_report}, {"a", "b"})

    def test_self_embedding_is_a_cycle(self) -> None:
        source = "flowchart TD\n  A --> " + embed("a") + "\n---definition:a---\ngraph TD\n  " + embed("a") + "\n---end---\n"
        result = resolve(source)
        self.assertFalse(result.success)
        self.assertIn("a -> a", result.error.message)

    def test_cycle_among_unreferenced_definitions_is_detected(self) -> None:
        source = (
            "flowchart TD\n  A --> B\n"
            "---definition:a---\nflowchart TD\n  X --> " + embed("b") + "\n---end---\n"
            "---definition:b---\nflowchart TD\n  Y --> " + embed("a") + "\n---end---\n"
        )
        result = resolve(source)
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_CYCLE")
        self.assertIn("Circular reference detected: a -> b -> a", result.error.message)

    def test_chain_of_ten_succeeds_with_warnings(self) -> None:
        result = resolve(chain_source(10))
        self.assertTrue(result.success, result.error)
        self.assertEqual([w.diagram_id for w in result.warnings], ["d7", "d8", "d9", "d10"])
        first = result.warnings[0]
        self.assertEqual(first.current_depth, 7)
        self.assertEqual(first.max_depth, 10)
        self.assertEqual(first.path, tuple(f"d{i}" for i in range(1, 8)))

    def test_shallow_chain_has_no_warnings(self) -> None:
        result = resolve(chain_source(6))
        self.assertTrue(result.success, result.error)
        self.assertEqual(result.warnings, ())

    def test_chain_of_eleven_exceeds_depth(self) -> None:
        result = resolve(chain_source(11))
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_DEPTH")
        self.assertIn("Maximum nesting depth (10) exceeded", result.error.message)
        self.assertEqual(len(result.dependency_report), 11)

    def test_custom_depth_limits(self) -> None:
        resolver = NestedDiagramResolver(max_depth=3, warning_depth=2)
        self.assertFalse(resolver.resolve(chain_source(4)).success)
        result = resolver.resolve(chain_source(3))
        self.assertTrue(result.success)
        self.assertEqual([w.diagram_id for w in result.warnings], ["d2", "d3"])
        with self.assertRaises(ValueError):
            NestedDiagramResolver(max_depth=3, warning_depth=5)

    def test_explicit_reference_type_wins(self) -> None:
        source = "flowchart TD\n  A --> {{embed:sequence:test}}\n---definition:test---\nclassDiagram\n  class Foo\n---end---\n"
        result = resolve(source)
        self.assertTrue(result.success, result.error)
        self.assertEqual(result.resolved_tree.nested_diagrams["test"].type, DiagramType.SEQUENCE)

    def test_definition_type_used_when_reference_is_untyped(self) -> None:
        source = "flowchart TD\n  A --> {{embed:test}}\n---definition:state:test---\n%% body\nclassDiagram\n---end---\n"
        result = resolve(source)
        self.assertTrue(result.success, result.error)
        self.assertEqual(result.resolved_tree.nested_diagrams["test"].type, DiagramType.STATE)

    def test_invalid_reference_type(self) -> None:
        source = "flowchart TD\n  A --> {{embed:Sequence:test}}\n---definition:test---\npie\n---end---\n"
        result = resolve(source)
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_INVALID_TYPE")
        self.assertIn("Sequence", result.error.message)

    def test_invalid_definition_type_is_reported_eagerly(self) -> None:
        source = "flowchart TD\n  A --> {{embed:test}}\n---definition:bogus:test---\npie\n---end---\n"
        result = resolve(source)
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_INVALID_TYPE")
        self.assertEqual(result.error.diagram_id, "test")

    def test_undetectable_definition_type(self) -> None:
        source = "flowchart TD\n  A --> {{embed:test}}\n---definition:test---\njust words\n---end---\n"
        result = resolve(source)
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_TYPE_DETECTION")
        self.assertEqual(result.error.message, "Unable to detect diagram type for: test")

    def test_duplicate_definition_last_wins(self) -> None:
        source = (
            "flowchart TD\n  A --> {{embed:x}}\n"
            "---definition:x---\npie\n  \"old\" : 1\n---end---\n"
            "---definition:x---\npie\n  \"new\" : 1\n---end---\n"
        )
        with self.assertLogs("diagramnest.diagramnest", level="WARNING") as logs:
            result = resolve(source)
        self.assertTrue(result.success, result.error)
        self.assertEqual(result.duplicates, ("x",))
        self.assertIn('"new"', result.resolved_tree.nested_diagrams["x"].content)
        self.assertIn("Duplicate definition x", logs.output[0])

    def test_shared_definition_is_resolved_per_parent(self) -> None:
        source = (
            "flowchart TD\n  A --> {{embed:a}}\n  B --> {{embed:b}}\n"
            "---definition:a---\nflowchart TD\n  X --> {{embed:c}}\n---end---\n"
            "---definition:b---\nflowchart TD\n  Y --> {{embed:c}}\n---end---\n"
            "---definition:c---\npie\n  \"c\" : 1\n---end---\n"
        )
        result = resolve(source)
        self.assertTrue(result.success, result.error)
        tree = result.resolved_tree
        via_a = tree.nested_diagrams["a"].nested_diagrams["c"]
        via_b = tree.nested_diagrams["b"].nested_diagrams["c"]
        self.assertEqual(via_a.parent_references, ("a", "c"))
        self.assertEqual(via_b.parent_references, ("b", "c"))
        self.assertIsNot(via_a, via_b)
        order = list(result.topological_order)
        self.assertLess(order.index("c"), order.index("a"))
        self.assertLess(order.index("c"), order.index("b"))

        paths = [path for path, _node in iter_diagrams(tree)]
        self.assertEqual(paths, [(), ("a",), ("a", "c"), ("b",), ("b", "c")])

    def test_re_resolution_is_stable(self) -> None:
        source = (
            "flowchart TD\n  A --> {{embed:a}}\n"
            "---definition:a---\nflowchart TD\n  X --> {{embed:c}}\n---end---\n"
            "---definition:c---\npie\n  \"c\" : 1\n---end---\n"
            "---definition:lonely---\npie\n  \"l\" : 1\n---end---\n"
        )
        resolver = NestedDiagramResolver()
        first = resolver.resolve(source)
        second = resolver.resolve(source)
        self.assertTrue(first.success and second.success)
        self.assertEqual(set(first.dependency_report), set(second.dependency_report))
        self.assertEqual(set(first.topological_order), set(second.topological_order))
        self.assertEqual(set(first.topological_order), {"a", "c", "lonely"})


class ChangeTrackerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.resolver = NestedDiagramResolver()
        self.assertTrue(self.resolver.resolve(LOGIN_EXAMPLE).success)

    def test_identical_source_is_unchanged(self) -> None:
        self.assertFalse(self.resolver.has_changed(LOGIN_EXAMPLE))

    def test_whitespace_only_body_edit_is_unchanged(self) -> None:
        edited = LOGIN_EXAMPLE.replace("---definition:login---\n", "---definition:login---\n\n\n")
        self.assertFalse(self.resolver.has_changed(edited))

    def test_modified_body_is_changed(self) -> None:
        self.assertTrue(self.resolver.has_changed(LOGIN_EXAMPLE.replace("hi", "hello")))

    def test_removed_and_added_definitions_are_changed(self) -> None:
        self.assertTrue(self.resolver.has_changed("flowchart TD\n  A --> B\n"))
        added = LOGIN_EXAMPLE + "---definition:extra---\npie\n---end---\n"
        self.assertTrue(self.resolver.has_changed(added))

    def test_root_only_edit_is_unchanged(self) -> None:
        self.assertFalse(self.resolver.has_changed(LOGIN_EXAMPLE.replace("A -->", "Z -->")))

    def test_invalid_block_does_not_hide_later_definitions(self) -> None:
        source = (
            "flowchart TD\n  A --> B\n"
            "---definition:bogus:x---\npie\n---end---\n"
            "---definition:y---\npie\n  \"y\" : 1\n---end---\n"
        )
        resolver = NestedDiagramResolver()
        result = resolver.resolve(source)
        self.assertFalse(result.success)
        self.assertEqual(result.error.code, "E_INVALID_TYPE")
        self.assertEqual(list(resolver.registry), ["y"])
        self.assertFalse(resolver.has_changed(source))
        self.assertTrue(resolver.has_changed(source.replace('"y" : 1', '"y" : 2')))


if __name__ == "__main__":
    unittest.main()

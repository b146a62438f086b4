"""
Structural (syntax-tree) rewrites for layers 1 through 5.

Each layer transform parses the buffer, collects byte-span edits from the
syntax tree and applies them back to front. A transform raises
:class:`TransformError` when the buffer cannot be parsed or the layer has no
structural rewrite; the safety protocol then falls back to the rule
engine's pattern fixers.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

import tree_sitter as ts

from neurolint_mcp.catalogue import CLIENT_HOOKS, CONSOLE_METHODS, has_client_directive
from neurolint_mcp.exceptions import TransformError
from neurolint_mcp.models import AppliedFix
from neurolint_mcp.syntax import JSON_GRAMMAR, ParsedSource, SourceParser, grammar_for

logger = logging.getLogger(__name__)

_STATEMENT_CONTAINERS = frozenset({"program", "statement_block"})
_FUNCTION_TYPES = frozenset({
    "arrow_function",
    "function_expression",
    "function",
    "function_declaration",
    "generator_function",
    "method_definition",
    "class_body",
})
_BROWSER_WINDOW_PROPS = frozenset({"location", "history", "navigator", "document"})
_LEGACY_TARGETS = frozenset({"es3", "es5"})


@dataclass(frozen=True)
class Edit:
    """Replace ``source_bytes[start:end]`` with ``text``."""

    start: int
    end: int
    text: str
    fix: AppliedFix


@dataclass(frozen=True)
class TransformOutput:
    code: str
    applied_fixes: list[AppliedFix]

    @property
    def changed(self) -> bool:
        return bool(self.applied_fixes)


def apply_edits(parsed: ParsedSource, edits: list[Edit]) -> TransformOutput:
    """Apply non-overlapping edits from the end of the buffer backwards."""
    data = parsed.source_bytes
    applied: list[AppliedFix] = []
    limit = len(data) + 1
    for edit in sorted(edits, key=lambda e: (e.start, e.end), reverse=True):
        if edit.end > limit:
            continue
        data = data[: edit.start] + edit.text.encode("utf-8") + data[edit.end:]
        applied.append(edit.fix)
        limit = edit.start
    applied.reverse()
    return TransformOutput(code=data.decode("utf-8"), applied_fixes=applied)


class StructuralTransformer:
    """
    Syntax-tree rewrites keyed by layer.

    Example:
        >>> out = StructuralTransformer().transform("console.log(1);\\nrun();\\n", 2, "a.ts")
        >>> out.code
        'run();\\n'
    """

    def __init__(self, parser: SourceParser | None = None):
        self.parser = parser or SourceParser()
        self._layers = {
            1: self._layer_configuration,
            2: self._layer_patterns,
            3: self._layer_components,
            4: self._layer_hydration,
            5: self._layer_nextjs,
        }

    def supports(self, layer: int) -> bool:
        return layer in self._layers

    def transform(self, code: str, layer: int, filename: str | None = None) -> TransformOutput:
        """
        Run the structural rewrite for one layer.

        Raises:
            TransformError: The layer has no structural rewrite, or the
                buffer does not parse.
        """
        if layer not in self._layers:
            raise TransformError(f"layer {layer} has no structural transform", layer=layer)

        if grammar_for(filename) == JSON_GRAMMAR:
            if layer != 1:
                return TransformOutput(code=code, applied_fixes=[])
            return self._json_configuration(code)

        parsed = self.parser.parse(code, filename)
        if parsed.has_errors:
            raise TransformError("source does not parse cleanly", layer=layer)

        edits = self._layers[layer](parsed)
        if not edits:
            return TransformOutput(code=code, applied_fixes=[])
        logger.debug(f"Layer {layer} structural rewrite: {len(edits)} edits", extra={"source_file": filename})
        return apply_edits(parsed, edits)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _fix(parsed: ParsedSource, node: ts.Node, rule_id: str, layer: int, description: str) -> AppliedFix:
        return AppliedFix(
            id=f"{rule_id}-{parsed.char_offset(node.start_byte)}",
            layer=layer,
            description=description,
            line=node.start_point.row + 1,
        )

    @staticmethod
    def _statement_span(parsed: ParsedSource, node: ts.Node) -> tuple[int, int]:
        """Byte span of a statement, widened to its whole line when it stands alone."""
        data = parsed.source_bytes
        start, end = node.start_byte, node.end_byte
        line_start = data.rfind(b"\n", 0, start) + 1
        line_end = data.find(b"\n", end)
        line_end = len(data) if line_end == -1 else line_end
        if not data[line_start:start].strip() and not data[end:line_end].strip():
            return line_start, min(line_end + 1, len(data))
        while end < line_end and data[end:end + 1] in (b" ", b"\t"):
            end += 1
        return start, end

    # ------------------------------------------------------------------
    # Layer 1: configuration
    # ------------------------------------------------------------------

    def _json_configuration(self, code: str) -> TransformOutput:
        try:
            data = self.parser.parse_json(code)
        except json.JSONDecodeError as e:
            raise TransformError(f"invalid JSON: {e.msg}", layer=1) from e

        fixes: list[AppliedFix] = []

        def locate(key: str) -> tuple[int, int]:
            match = re.search(rf'"{key}"\s*:', code)
            offset = match.start() if match else 0
            return offset, code.count("\n", 0, offset) + 1

        def visit(node: object) -> None:
            if isinstance(node, dict):
                if node.get("strict") is False:
                    node["strict"] = True
                    offset, line = locate("strict")
                    fixes.append(AppliedFix(
                        id=f"ts-strict-mode-{offset}", layer=1,
                        description='Set "strict": true in compilerOptions', line=line,
                    ))
                target = node.get("target")
                if isinstance(target, str) and target.lower() in _LEGACY_TARGETS:
                    node["target"] = "es2020"
                    offset, line = locate("target")
                    fixes.append(AppliedFix(
                        id=f"ts-legacy-target-{offset}", layer=1,
                        description='Set "target": "es2020"', line=line,
                    ))
                for value in node.values():
                    visit(value)
            elif isinstance(node, list):
                for value in node:
                    visit(value)

        visit(data)
        if not fixes:
            return TransformOutput(code=code, applied_fixes=[])

        rendered = json.dumps(data, indent=2, ensure_ascii=False)
        if code.endswith("\n"):
            rendered += "\n"
        return TransformOutput(code=rendered, applied_fixes=fixes)

    def _layer_configuration(self, parsed: ParsedSource) -> list[Edit]:
        edits: list[Edit] = []

        def visit(node: ts.Node, depth: int) -> bool | None:
            if node.type != "pair":
                return None
            key = node.child_by_field_name("key")
            value = node.child_by_field_name("value")
            if key is None or value is None:
                return None
            if parsed.get_text(key).strip("'\"") == "reactStrictMode" and value.type == "false":
                edits.append(Edit(
                    value.start_byte, value.end_byte, "true",
                    self._fix(parsed, node, "react-strict-mode", 1, "Set reactStrictMode: true"),
                ))
            return None

        parsed.walk(visit)
        return edits

    # ------------------------------------------------------------------
    # Layer 2: patterns
    # ------------------------------------------------------------------

    def _is_console_call(self, parsed: ParsedSource, node: ts.Node) -> bool:
        if node.type != "call_expression":
            return False
        function = node.child_by_field_name("function")
        if function is None or function.type != "member_expression":
            return False
        obj = function.child_by_field_name("object")
        prop = function.child_by_field_name("property")
        return (
            obj is not None
            and prop is not None
            and obj.type == "identifier"
            and parsed.get_text(obj) == "console"
            and parsed.get_text(prop) in CONSOLE_METHODS
        )

    def _layer_patterns(self, parsed: ParsedSource) -> list[Edit]:
        edits: list[Edit] = []

        def visit(node: ts.Node, depth: int) -> bool | None:
            if node.type == "expression_statement" and node.parent is not None:
                expression = node.named_children[0] if node.named_children else None
                if (
                    expression is not None
                    and node.parent.type in _STATEMENT_CONTAINERS
                    and self._is_console_call(parsed, expression)
                ):
                    start, end = self._statement_span(parsed, node)
                    edits.append(Edit(
                        start, end, "",
                        self._fix(parsed, node, "console-statements", 2, "Remove console statement"),
                    ))
                    return False
            # Only element children; inside attribute strings a bare quote ends the string.
            if (
                node.type == "html_character_reference"
                and node.parent is not None
                and node.parent.type == "jsx_element"
                and parsed.get_text(node) == "&quot;"
            ):
                edits.append(Edit(
                    node.start_byte, node.end_byte, '"',
                    self._fix(parsed, node, "html-entities", 2, "Replace HTML entity with character"),
                ))
            return None

        parsed.walk(visit)
        return edits

    # ------------------------------------------------------------------
    # Layer 3: components
    # ------------------------------------------------------------------

    def _layer_components(self, parsed: ParsedSource) -> list[Edit]:
        edits: list[Edit] = []

        def visit(node: ts.Node, depth: int) -> bool | None:
            if node.type not in ("jsx_self_closing_element", "jsx_opening_element"):
                return None
            name = node.child_by_field_name("name")
            if name is None or parsed.get_text(name).lower() != "img":
                return None
            for attribute in node.named_children:
                if attribute.type == "jsx_attribute" and attribute.named_children:
                    if parsed.get_text(attribute.named_children[0]) == "alt":
                        return None
                elif attribute.type == "jsx_expression":
                    # Spread props may already carry alt.
                    return None
            edits.append(Edit(
                name.end_byte, name.end_byte, ' alt=""',
                self._fix(parsed, node, "img-alt", 3, "Add alt attribute to image"),
            ))
            return None

        parsed.walk(visit)
        return edits

    # ------------------------------------------------------------------
    # Layer 4: hydration
    # ------------------------------------------------------------------

    def _browser_access(self, parsed: ParsedSource, node: ts.Node) -> str | None:
        """Rule id of the first browser API use in ``node`` outside nested functions."""
        found: list[str] = []

        def visit(child: ts.Node, depth: int) -> bool | None:
            if found or child.type in _FUNCTION_TYPES:
                return False
            if child.type != "member_expression":
                return None
            obj = child.child_by_field_name("object")
            prop = child.child_by_field_name("property")
            if obj is None or prop is None or obj.type != "identifier":
                return None
            name = parsed.get_text(obj)
            if name == "localStorage":
                found.append("ssr-localstorage")
            elif name == "window" and parsed.get_text(prop) in _BROWSER_WINDOW_PROPS:
                found.append("ssr-window")
            return None

        def walk(current: ts.Node) -> None:
            if visit(current, 0) is False:
                return
            for child in current.children:
                walk(child)

        walk(node)
        return found[0] if found else None

    def _layer_hydration(self, parsed: ParsedSource) -> list[Edit]:
        # Client components still render on the server, so the directive is no guard here.
        edits: list[Edit] = []

        def visit(node: ts.Node, depth: int) -> bool | None:
            if node.type == "if_statement":
                condition = node.child_by_field_name("condition")
                if condition is not None and "typeof window" in parsed.get_text(condition):
                    return False
            if node.type != "expression_statement" or node.parent is None:
                return None
            if node.parent.type not in _STATEMENT_CONTAINERS:
                return None
            rule_id = self._browser_access(parsed, node)
            if rule_id is None:
                return None
            statement = parsed.get_text(node)
            edits.append(Edit(
                node.start_byte, node.end_byte,
                f"if (typeof window !== 'undefined') {{ {statement} }}",
                self._fix(parsed, node, rule_id, 4, 'Add typeof window !== "undefined" guard'),
            ))
            return False

        parsed.walk(visit)
        return edits

    # ------------------------------------------------------------------
    # Layer 5: Next.js
    # ------------------------------------------------------------------

    def _layer_nextjs(self, parsed: ParsedSource) -> list[Edit]:
        if has_client_directive(parsed.source):
            return []
        hook_calls: list[ts.Node] = []

        def visit(node: ts.Node, depth: int) -> bool | None:
            if hook_calls:
                return False
            if node.type == "call_expression":
                function = node.child_by_field_name("function")
                if function is not None and function.type == "identifier" and parsed.get_text(function) in CLIENT_HOOKS:
                    hook_calls.append(node)
                    return False
            return None

        parsed.walk(visit)
        if not hook_calls:
            return []
        return [
            Edit(
                0, 0, "'use client';\n\n",
                self._fix(parsed, hook_calls[0], "missing-use-client", 5,
                          "Add 'use client' directive at the top of the file"),
            )
        ]

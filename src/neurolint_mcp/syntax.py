"""Source parsing for structural transforms and validation.

JavaScript, TypeScript and TSX buffers are parsed with tree-sitter; JSON
configuration files are parsed with the ``json`` module. The grammar is
chosen from the file extension and defaults to TSX, which accepts plain
TypeScript and JSX alike.

Usage::

    parser = SourceParser()
    parsed = parser.parse("export const a = 1;", "mod.ts")
    parsed.exported_names()   # {'a'}
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import PurePath
from typing import Any

import tree_sitter as ts
import tree_sitter_javascript as ts_js
import tree_sitter_typescript as ts_ts

JSON_GRAMMAR = "json"

_GRAMMAR_BY_SUFFIX = {
    ".json": JSON_GRAMMAR,
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".tsx": "tsx",
}

_DECLARATION_TYPES = frozenset({
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "abstract_class_declaration",
    "interface_declaration",
    "type_alias_declaration",
    "enum_declaration",
})

_VARIABLE_TYPES = frozenset({"lexical_declaration", "variable_declaration"})


def grammar_for(filename: str | None) -> str:
    """Return the grammar name used for ``filename``."""
    if not filename:
        return "tsx"
    return _GRAMMAR_BY_SUFFIX.get(PurePath(filename).suffix.lower(), "tsx")


class ParsedSource:
    """A tree-sitter parse tree plus the source it came from.

    Attributes:
        tree: The underlying ``tree_sitter.Tree``.
        source: Original source string.
        grammar: ``javascript``, ``typescript`` or ``tsx``.
    """

    __slots__ = ("tree", "source", "grammar", "source_bytes")

    def __init__(self, tree: ts.Tree, source: str, grammar: str) -> None:
        self.tree = tree
        self.source = source
        self.grammar = grammar
        self.source_bytes: bytes = source.encode("utf-8")

    @property
    def root_node(self) -> ts.Node:
        return self.tree.root_node

    @property
    def has_errors(self) -> bool:
        return self.tree.root_node.has_error

    def error_count(self) -> int:
        """Number of ERROR and MISSING nodes in the tree."""
        count = 0

        def visit(node: ts.Node, depth: int) -> bool | None:
            nonlocal count
            if node.type == "ERROR" or node.is_missing:
                count += 1
            return None if node.has_error else False

        self.walk(visit)
        return count

    def get_text(self, node: ts.Node) -> str:
        return self.source_bytes[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    def char_offset(self, byte_offset: int) -> int:
        """Convert a byte offset into a ``str`` index."""
        return len(self.source_bytes[:byte_offset].decode("utf-8", errors="replace"))

    def walk(self, visitor: Callable[[ts.Node, int], bool | None]) -> None:
        """Depth-first walk; a visitor returning ``False`` skips the subtree."""
        self._walk(self.tree.root_node, visitor, 0)

    def _walk(self, node: ts.Node, visitor: Callable[[ts.Node, int], bool | None], depth: int) -> None:
        if visitor(node, depth) is False:
            return
        for child in node.children:
            self._walk(child, visitor, depth + 1)

    # ------------------------------------------------------------------
    # Top-level bindings
    # ------------------------------------------------------------------

    def _declared_names(self, node: ts.Node) -> set[str]:
        if node.type in _DECLARATION_TYPES:
            name = node.child_by_field_name("name")
            return {self.get_text(name)} if name is not None else set()
        if node.type in _VARIABLE_TYPES:
            names = set()
            for declarator in node.named_children:
                if declarator.type != "variable_declarator":
                    continue
                name = declarator.child_by_field_name("name")
                if name is not None:
                    names.add(self.get_text(name))
            return names
        return set()

    def exported_names(self) -> set[str]:
        """Names exported by top-level ``export`` statements."""
        exported: set[str] = set()
        for node in self.root_node.named_children:
            if node.type != "export_statement":
                continue
            if any(child.type == "default" for child in node.children):
                exported.add("default")
            declaration = node.child_by_field_name("declaration")
            if declaration is not None:
                exported |= self._declared_names(declaration)
            source = node.child_by_field_name("source")
            for child in node.named_children:
                if child.type == "export_clause":
                    for spec in child.named_children:
                        if spec.type != "export_specifier":
                            continue
                        alias = spec.child_by_field_name("alias")
                        name = alias if alias is not None else spec.child_by_field_name("name")
                        if name is not None:
                            exported.add(self.get_text(name))
                elif child.type == "namespace_export":
                    exported.add(self.get_text(child))
            if source is not None and not any(c.type == "export_clause" for c in node.named_children):
                exported.add(f"*:{self.get_text(source)}")
        return exported

    def top_level_bindings(self) -> set[str]:
        """Declarations and imports at the top level of the module."""
        bindings: set[str] = set()
        for node in self.root_node.named_children:
            if node.type == "import_statement":
                bindings.add("import:" + " ".join(self.get_text(node).split()).rstrip(";"))
                continue
            target = node
            if node.type == "export_statement":
                declaration = node.child_by_field_name("declaration")
                if declaration is None:
                    continue
                target = declaration
            bindings |= {f"decl:{name}" for name in self._declared_names(target)}
        return bindings


class SourceParser:
    """Builds tree-sitter languages once and parses buffers on demand.

    ``tree_sitter.Language`` objects are immutable and shared. A new
    ``Parser`` is created for every call because parsers hold per-parse
    state and are not safe to share between threads.
    """

    def __init__(self) -> None:
        self._languages: dict[str, ts.Language] = {
            "javascript": ts.Language(ts_js.language()),
            "typescript": ts.Language(ts_ts.language_typescript()),
            "tsx": ts.Language(ts_ts.language_tsx()),
        }

    def parse(self, source: str, filename: str | None = None) -> ParsedSource:
        """Parse ``source`` with the grammar chosen for ``filename``.

        Raises:
            ValueError: If ``filename`` names a JSON file; use ``parse_json``.
        """
        grammar = grammar_for(filename)
        if grammar == JSON_GRAMMAR:
            raise ValueError("JSON sources are parsed with parse_json")
        parser = ts.Parser(language=self._languages[grammar])
        tree = parser.parse(source.encode("utf-8"))
        return ParsedSource(tree=tree, source=source, grammar=grammar)

    @staticmethod
    def parse_json(source: str) -> Any:
        """Parse a JSON buffer; raises ``json.JSONDecodeError`` on bad input."""
        return json.loads(source)

"""
Java language plugin.

Uses tree-sitter for syntax checking and for locating package and import
declarations.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any

from reprogrammer.config.models import ParseResult, SymbolEntry, SyntaxIssue
from reprogrammer.languages.base.plugin import LanguagePlugin

if TYPE_CHECKING:
    from reprogrammer.symbols.index import SymbolIndex

logger = logging.getLogger(__name__)

TYPE_DECLARATIONS = {
    "class_declaration",
    "interface_declaration",
    "enum_declaration",
    "record_declaration",
    "annotation_type_declaration",
}


class JavaPlugin(LanguagePlugin):
    """Java language plugin using tree-sitter for parsing."""

    def __init__(self, version: str = "17"):
        self.version = version
        self._parser = None

    @property
    def language_name(self) -> str:
        return "java"

    @property
    def file_extension(self) -> str:
        return ".java"

    # =========================================================================
    # Parsing (using tree-sitter)
    # =========================================================================

    def _get_parser(self):
        """Lazy initialization of tree-sitter parser."""
        if self._parser is None:
            import tree_sitter_java as tsjava
            from tree_sitter import Language, Parser

            self._parser = Parser(Language(tsjava.language()))
        return self._parser

    def parse_source(self, source_code: str) -> Any:
        """Parse Java source code into a tree-sitter tree."""
        return self._get_parser().parse(source_code.encode("utf-8"))

    def _traverse_tree(self, node: Any):
        """Traverse tree-sitter tree depth-first."""
        yield node
        for child in node.children:
            yield from self._traverse_tree(child)

    def parse(self, code: str) -> ParseResult:
        tree = self.parse_source(code)
        if not tree.root_node.has_error:
            return ParseResult(success=True)

        errors: list[SyntaxIssue] = []
        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            line = node.start_point[0] + 1
            if node.is_missing:
                errors.append(SyntaxIssue(message=f"Missing '{node.type}'", line_number=line))
                continue
            if node.type == "ERROR":
                snippet = node.text.decode("utf-8", errors="replace").strip().splitlines()
                near = snippet[0][:40] if snippet else ""
                errors.append(SyntaxIssue(message=f"Unexpected syntax near '{near}'", line_number=line))
                continue
            if node.has_error:
                stack.extend(reversed(node.children))

        if not errors:
            errors.append(SyntaxIssue(message="Syntax error"))
        return ParseResult(success=False, errors=errors)

    def primary_type_name(self, code: str) -> str | None:
        """The public top-level type, else the first top-level type."""
        tree = self.parse_source(code)
        first = None
        for node in tree.root_node.children:
            if node.type not in TYPE_DECLARATIONS:
                continue
            name_node = node.child_by_field_name("name")
            if name_node is None:
                continue
            name = name_node.text.decode("utf-8")
            if first is None:
                first = name
            modifiers = next((c for c in node.children if c.type == "modifiers"), None)
            if modifiers is not None and b"public" in modifiers.text.split():
                return name
        return first or super().primary_type_name(code)

    # =========================================================================
    # Naming and Layout
    # =========================================================================

    def output_path_for(self, namespace: str, new_name: str, source_path: str) -> str:
        parts = [p for p in namespace.split(".") if p]
        return str(PurePosixPath(*parts, new_name + self.file_extension))

    # =========================================================================
    # Structural Rewriting
    # =========================================================================

    def _declarations(self, tree: Any) -> list[Any]:
        return [
            node
            for node in tree.root_node.children
            if node.type in ("package_declaration", "import_declaration")
        ]

    def structural_spans(self, code: str) -> list[tuple[int, int]]:
        data = code.encode("utf-8")
        spans = []
        for node in self._declarations(self.parse_source(code)):
            spans.append((_char_offset(data, node.start_byte), _char_offset(data, node.end_byte)))
        return spans

    def rewrite_structural(
        self, code: str, own_entry: SymbolEntry | None, index: SymbolIndex
    ) -> str:
        """Set the package to the indexed namespace and requalify imports."""
        data = code.encode("utf-8")
        tree = self.parse_source(code)
        edits: list[tuple[int, int, bytes]] = []
        has_package = False

        for node in self._declarations(tree):
            name_node = _name_child(node)
            if name_node is None:
                continue
            name = name_node.text.decode("utf-8")

            if node.type == "package_declaration":
                has_package = True
                if own_entry and own_entry.namespace and name != own_entry.namespace:
                    edits.append((name_node.start_byte, name_node.end_byte, own_entry.namespace.encode()))
                continue

            rewritten = self._rewrite_import_name(name, index)
            if rewritten != name:
                edits.append((name_node.start_byte, name_node.end_byte, rewritten.encode()))

        for start, end, replacement in sorted(edits, reverse=True):
            data = data[:start] + replacement + data[end:]
        result = data.decode("utf-8")

        if own_entry and own_entry.namespace and not has_package:
            result = f"package {own_entry.namespace};\n\n{result}"
        return result

    def _rewrite_import_name(self, name: str, index: SymbolIndex) -> str:
        """
        ``a.b.OldName[.member]`` -> ``ns.NewName[.member]``.

        The longest prefix naming an indexed type wins. A bare segment is
        only used when no prefix matches and the name is unambiguous.
        """
        segments = name.split(".")
        for position in range(len(segments), 0, -1):
            entry = index.resolve_qualified(".".join(segments[:position]))
            if entry is not None:
                return ".".join([entry.qualified_name, *segments[position:]])
        for position in range(len(segments) - 1, -1, -1):
            entry = index.resolve(segments[position])
            if entry is not None:
                return ".".join([entry.qualified_name, *segments[position + 1:]])
        return name


def _name_child(node: Any) -> Any:
    for child in node.named_children:
        if child.type in ("scoped_identifier", "identifier"):
            return child
    return None


def _char_offset(data: bytes, byte_offset: int) -> int:
    return len(data[:byte_offset].decode("utf-8", errors="ignore"))

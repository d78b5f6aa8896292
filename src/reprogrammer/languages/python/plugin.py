"""
Python language plugin.

Syntax checking and structural rewriting with the standard library ``ast``
module.
"""

from __future__ import annotations

import ast
import logging
import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from reprogrammer.config.models import ParseResult, SymbolEntry, SyntaxIssue
from reprogrammer.languages.base.plugin import LanguagePlugin, line_spans, to_snake_case

if TYPE_CHECKING:
    from reprogrammer.symbols.index import SymbolIndex

logger = logging.getLogger(__name__)

_IMPORT_LINE = re.compile(r"^\s*(?:from\s+[\w.]+\s+import\b|import\s+[\w.])")
_FROM_IMPORT = re.compile(r"^(?P<indent>[ \t]*)from\s+(?P<module>\.*[\w.]*)\s+import\s+(?P<names>[^()#\r\n]+?)[ \t]*$")


class PythonPlugin(LanguagePlugin):
    """Python target plugin."""

    def __init__(self, version: str = "3.10"):
        self.version = version

    @property
    def language_name(self) -> str:
        return "python"

    @property
    def file_extension(self) -> str:
        return ".py"

    # =========================================================================
    # Parsing
    # =========================================================================

    def parse(self, code: str) -> ParseResult:
        """Compile ``code`` without running it. Python reports one error at a time."""
        try:
            compile(code, "<translated>", "exec", dont_inherit=True)
        except SyntaxError as e:
            issue = SyntaxIssue(message=e.msg or "invalid syntax", line_number=e.lineno or -1)
            return ParseResult(success=False, errors=[issue])
        except ValueError as e:
            # e.g. source code string cannot contain null bytes
            return ParseResult(success=False, errors=[SyntaxIssue(message=str(e))])
        return ParseResult(success=True)

    def primary_type_name(self, code: str) -> str | None:
        try:
            tree = ast.parse(code)
        except (SyntaxError, ValueError):
            return super().primary_type_name(code)
        for node in tree.body:
            if isinstance(node, ast.ClassDef):
                return node.name
        return None

    # =========================================================================
    # Naming and Layout
    # =========================================================================

    def namespace_for(self, source_path: str, new_name: str, package_name: str | None = None) -> str:
        """Python namespaces name the module: ``pkg.dirs.snake_case_name``."""
        package = super().namespace_for(source_path, new_name, package_name)
        module = to_snake_case(new_name)
        return f"{package}.{module}" if package else module

    def output_path_for(self, namespace: str, new_name: str, source_path: str) -> str:
        return str(PurePosixPath(*namespace.split("."))) + self.file_extension

    # =========================================================================
    # Structural Rewriting
    # =========================================================================

    def structural_spans(self, code: str) -> list[tuple[int, int]]:
        try:
            tree = ast.parse(code)
        except (SyntaxError, ValueError):
            return line_spans(code, _IMPORT_LINE)

        lines = _split_lines(code)
        offsets = _line_offsets(lines)
        spans = []
        for node in ast.walk(tree):
            if isinstance(node, (ast.Import, ast.ImportFrom)):
                start = offsets[node.lineno - 1] + _char_col(lines[node.lineno - 1], node.col_offset)
                end = offsets[node.end_lineno - 1] + _char_col(lines[node.end_lineno - 1], node.end_col_offset)
                spans.append((start, end))
        return sorted(spans)

    def rewrite_structural(
        self, code: str, own_entry: SymbolEntry | None, index: SymbolIndex
    ) -> str:
        """Point ``from x import OldName`` at the indexed module and new name."""
        try:
            tree = ast.parse(code)
        except (SyntaxError, ValueError):
            logger.debug("Falling back to line-based import rewriting")
            return self._rewrite_import_lines(code, index)

        lines = _split_lines(code)
        offsets = _line_offsets(lines)
        edits: list[tuple[int, int, str]] = []
        for node in ast.walk(tree):
            if not isinstance(node, ast.ImportFrom):
                continue
            replacement = self._rewrite_import_from(node, index)
            if replacement is None:
                continue
            first_line = lines[node.lineno - 1]
            prefix = first_line[: _char_col(first_line, node.col_offset)]
            start = offsets[node.lineno - 1] + len(prefix)
            end = offsets[node.end_lineno - 1] + _char_col(lines[node.end_lineno - 1], node.end_col_offset)
            # Statements sharing a line with other code stay on that line
            if prefix.strip():
                separator = "; "
            else:
                separator = (_ending(lines[node.end_lineno - 1]) or "\n") + prefix
            edits.append((start, end, separator.join(replacement)))

        for start, end, text in sorted(edits, reverse=True):
            code = code[:start] + text + code[end:]
        return code

    def _rewrite_import_from(self, node: ast.ImportFrom, index: SymbolIndex) -> list[str] | None:
        """Return replacement statements, or None when the import is already right."""
        module = "." * node.level + (node.module or "")
        keep: list[ast.alias] = []
        moved: dict[str, list[ast.alias]] = {}
        changed = False

        for alias in node.names:
            entry = None
            if alias.name != "*":
                entry = index.resolve_qualified(f"{module}.{alias.name}") or index.resolve(alias.name)
            if entry is None:
                keep.append(alias)
                continue
            if entry.namespace == module and entry.new_name == alias.name:
                keep.append(alias)
                continue
            changed = True
            moved.setdefault(entry.namespace, []).append(
                ast.alias(name=entry.new_name, asname=alias.asname)
            )

        if not changed:
            return None

        statements = []
        if keep:
            statements.append(
                ast.unparse(ast.ImportFrom(module=node.module, names=keep, level=node.level))
            )
        for namespace, aliases in moved.items():
            statements.append(ast.unparse(ast.ImportFrom(module=namespace, names=aliases, level=0)))
        return statements

    def _rewrite_import_lines(self, code: str, index: SymbolIndex) -> str:
        """Single-line ``from`` imports only, for code that does not parse."""
        out = []
        for line in _split_lines(code):
            ending = _ending(line)
            match = _FROM_IMPORT.match(line[: len(line) - len(ending)])
            if not match:
                out.append(line)
                continue
            try:
                node = ast.parse(line.strip()).body[0]
            except (SyntaxError, ValueError, IndexError):
                out.append(line)
                continue
            statements = self._rewrite_import_from(node, index) if isinstance(node, ast.ImportFrom) else None
            if statements is None:
                out.append(line)
                continue
            out.append(_render(match.group("indent"), statements, ending))
        return "".join(out)


def _render(indent: str, statements: list[str], ending: str) -> str:
    return (ending or "\n").join(indent + stmt for stmt in statements) + ending


def _split_lines(code: str) -> list[str]:
    """Split on \\n only, the way ast numbers lines."""
    return re.findall(r"[^\n]*\n|[^\n]+\Z", code)


def _char_col(line: str, byte_col: int) -> int:
    # ast reports UTF-8 byte columns
    return len(line.encode("utf-8")[:byte_col].decode("utf-8", errors="ignore"))


def _line_offsets(lines: list[str]) -> list[int]:
    offsets = [0]
    for line in lines:
        offsets.append(offsets[-1] + len(line))
    return offsets


def _ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""

"""
Fallback plugin for targets without a dedicated parser.

Checks that block symbols balance and treats ``import``-like lines as the
structural constructs.
"""

from __future__ import annotations

import re
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from reprogrammer.config.models import ParseResult, SymbolEntry, SyntaxIssue
from reprogrammer.languages.base.plugin import LanguagePlugin, line_spans

if TYPE_CHECKING:
    from reprogrammer.symbols.index import SymbolIndex

_STRUCTURAL_LINE = re.compile(
    r"^\s*(?:import|using|use|from|package|namespace|require|#include)\b"
)
_PACKAGE_LINE = re.compile(
    r"^(?P<prefix>\s*(?:package|namespace)\s+)(?P<name>[A-Za-z_][\w.]*)(?P<suffix>\s*[;{]?\s*)$"
)
_WORD = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class GenericPlugin(LanguagePlugin):
    """Lexical checks for any brace-like language."""

    def __init__(
        self,
        language_name: str = "generic",
        file_extension: str = ".txt",
        open_symbol: str = "{",
        close_symbol: str = "}",
    ):
        self._language_name = language_name
        self._file_extension = file_extension
        self.open_symbol = open_symbol
        self.close_symbol = close_symbol

    @property
    def language_name(self) -> str:
        return self._language_name

    @property
    def file_extension(self) -> str:
        return self._file_extension

    def parse(self, code: str) -> ParseResult:
        """Report unmatched close symbols and unclosed open symbols by line."""
        errors: list[SyntaxIssue] = []
        open_lines: list[int] = []

        for number, line in enumerate(code.splitlines(), start=1):
            i = 0
            while i < len(line):
                if line.startswith(self.open_symbol, i):
                    open_lines.append(number)
                    i += len(self.open_symbol)
                elif line.startswith(self.close_symbol, i):
                    if open_lines:
                        open_lines.pop()
                    else:
                        errors.append(
                            SyntaxIssue(message=f"Unmatched '{self.close_symbol}'", line_number=number)
                        )
                    i += len(self.close_symbol)
                else:
                    i += 1

        for number in open_lines:
            errors.append(SyntaxIssue(message=f"Unclosed '{self.open_symbol}'", line_number=number))

        errors.sort(key=lambda e: e.line_number)
        return ParseResult(success=not errors, errors=errors)

    def output_path_for(self, namespace: str, new_name: str, source_path: str) -> str:
        parts = [p for p in namespace.split(".") if p]
        return str(PurePosixPath(*parts, new_name + self.file_extension))

    def structural_spans(self, code: str) -> list[tuple[int, int]]:
        return line_spans(code, _STRUCTURAL_LINE)

    def rewrite_structural(
        self, code: str, own_entry: SymbolEntry | None, index: SymbolIndex
    ) -> str:
        """Dotted package/namespace lines get the file's namespace; indexed
        names on import-like lines get their new names."""
        out = []
        for line in code.splitlines(keepends=True):
            body = line.rstrip("\r\n")
            ending = line[len(body):]
            if not _STRUCTURAL_LINE.match(body):
                out.append(line)
                continue
            package = _PACKAGE_LINE.match(body)
            if package and own_entry and own_entry.namespace:
                body = package.group("prefix") + own_entry.namespace + package.group("suffix")
            else:
                body = _WORD.sub(lambda m: _renamed(m.group(0), index), body)
            out.append(body + ending)
        return "".join(out)


def _renamed(word: str, index: SymbolIndex) -> str:
    entry = index.resolve(word)
    return entry.new_name if entry is not None else word

"""
Base language plugin interface.

A plugin is the target-language adapter used by the verifier (does this
parse?) and by the cross-file pass (what is the primary type, where does the
file go, and how are package/import statements rewritten).
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from reprogrammer.config.models import ParseResult, SymbolEntry

if TYPE_CHECKING:
    from reprogrammer.symbols.index import SymbolIndex

TYPE_DECLARATION = re.compile(
    r"\b(?:class|struct|interface|enum|record|trait)\s+([A-Za-z_][A-Za-z0-9_]*)"
)


def to_pascal_case(name: str) -> str:
    """Normalize a file stem such as ``my_file-name`` to ``MyFileName``."""
    parts = [p for p in re.split(r"[^A-Za-z0-9]+", name) if p]
    result = "".join(p[0].upper() + p[1:] for p in parts)
    if not result:
        return "Unnamed"
    if result[0].isdigit():
        result = "_" + result
    return result


def to_snake_case(name: str) -> str:
    """``HTTPServerConfig`` -> ``http_server_config``; digits stay attached."""
    name = re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", "_", name)
    return re.sub(r"[^A-Za-z0-9_]+", "_", name).strip("_").lower() or "module"


def sanitize_segment(segment: str) -> str:
    cleaned = re.sub(r"\W", "_", segment)
    if cleaned and cleaned[0].isdigit():
        cleaned = "_" + cleaned
    return cleaned


class LanguagePlugin(ABC):
    """
    Abstract base class for target-language plugins.

    Each plugin provides:
    - Syntax checking (``parse``)
    - Primary type detection
    - Namespace and output path rules
    - Structural rewriting of package and import statements
    """

    @property
    @abstractmethod
    def language_name(self) -> str:
        """Return the language name (e.g., 'python', 'java')."""
        pass

    @property
    @abstractmethod
    def file_extension(self) -> str:
        """Return the extension of files in this language (e.g. '.py')."""
        pass

    # =========================================================================
    # Parsing
    # =========================================================================

    @abstractmethod
    def parse(self, code: str) -> ParseResult:
        """
        Check that code parses as this language.

        Args:
            code: Source code as string

        Returns:
            ParseResult with an ordered list of errors when parsing fails
        """
        pass

    def primary_type_name(self, code: str) -> str | None:
        """Name of the main type declared in ``code``, if any."""
        match = TYPE_DECLARATION.search(code)
        return match.group(1) if match else None

    # =========================================================================
    # Naming and Layout
    # =========================================================================

    def normalize_type_name(self, stem: str) -> str:
        return to_pascal_case(stem)

    def namespace_for(self, source_path: str, new_name: str, package_name: str | None = None) -> str:
        """
        Dotted namespace of a file, from its directory and the base package.

        Args:
            source_path: Relative path of the source file
            new_name: New name of the file's primary type
            package_name: Optional base package prepended to the namespace

        Returns:
            Dotted namespace ('' for a top-level file without base package)
        """
        parts: list[str] = []
        if package_name:
            parts.extend(p for p in package_name.split(".") if p)
        parts.extend(sanitize_segment(p) for p in PurePosixPath(source_path).parent.parts)
        return ".".join(p for p in parts if p)

    @abstractmethod
    def output_path_for(self, namespace: str, new_name: str, source_path: str) -> str:
        """Relative output path of a file given its namespace and type name."""
        pass

    # =========================================================================
    # Structural Rewriting
    # =========================================================================

    @abstractmethod
    def structural_spans(self, code: str) -> list[tuple[int, int]]:
        """
        Character ranges of package/namespace declarations and imports.

        Identifier substitution leaves these ranges alone.
        """
        pass

    @abstractmethod
    def rewrite_structural(
        self, code: str, own_entry: SymbolEntry | None, index: SymbolIndex
    ) -> str:
        """
        Rewrite package declarations and import statements of one file.

        Args:
            code: Current file content
            own_entry: Index entry of this file (None when not indexed)
            index: The frozen symbol index

        Returns:
            Rewritten code (identical when nothing needed rewriting)
        """
        pass


def line_spans(code: str, pattern: re.Pattern) -> list[tuple[int, int]]:
    """Character ranges of every line matching ``pattern`` (line ending excluded)."""
    spans = []
    offset = 0
    for line in code.splitlines(keepends=True):
        if pattern.match(line):
            spans.append((offset, offset + len(line.rstrip("\r\n"))))
        offset += len(line)
    return spans

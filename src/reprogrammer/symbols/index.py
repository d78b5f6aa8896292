"""
Project-wide symbol index.

Maps the original name of each file's primary type to its new name,
namespace and output path. The index is append-only while it is being
built and frozen before the cross-file rewrite starts.
"""

import logging
from pathlib import PurePosixPath
from typing import Iterable, Mapping

from reprogrammer.config.models import SymbolEntry
from reprogrammer.errors import GenerationServiceError
from reprogrammer.languages.base.plugin import LanguagePlugin, sanitize_segment
from reprogrammer.translator.session import TranslationSession

logger = logging.getLogger(__name__)


class SymbolIndex:
    """Registry of ``original name -> SymbolEntry``."""

    def __init__(self):
        self._entries: dict[str, SymbolEntry] = {}
        self._by_source: dict[str, SymbolEntry] = {}
        self._by_new_name: dict[str, SymbolEntry] = {}
        self._by_qualified: dict[str, SymbolEntry] = {}
        self._ambiguous: set[str] = set()
        self._ambiguous_qualified: set[str] = set()
        self._output_paths: set[str] = set()
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add(self, entry: SymbolEntry, aliases: Iterable[str] = ()) -> SymbolEntry:
        """
        Register an entry.

        The first file to claim an original name owns it for reference
        rewriting; later files with the same original name are still
        reachable through ``by_source`` and their qualified names.

        Args:
            entry: The entry to register
            aliases: Extra dotted names the file's type may be imported by

        Raises:
            RuntimeError: If the index is frozen
        """
        if self._frozen:
            raise RuntimeError("SymbolIndex is frozen; no entries can be added while rewriting")

        if entry.original_name in self._entries:
            first = self._entries[entry.original_name]
            logger.info(
                f"Type '{entry.original_name}' is declared by both "
                f"{first.source_file_path} and {entry.source_file_path}"
            )
            self._ambiguous.add(entry.original_name)
        else:
            self._entries[entry.original_name] = entry
        if entry.new_name in self._by_new_name:
            self._ambiguous.add(entry.new_name)
        else:
            self._by_new_name[entry.new_name] = entry

        qualified = {entry.qualified_name, _join(entry.namespace, entry.original_name), *aliases}
        for name in qualified:
            known = self._by_qualified.get(name)
            if known is not None and known is not entry:
                self._ambiguous_qualified.add(name)
            else:
                self._by_qualified[name] = entry

        self._by_source[entry.source_file_path] = entry
        self._output_paths.add(entry.output_path)
        return entry

    def freeze(self) -> None:
        self._frozen = True

    def get(self, original_name: str) -> SymbolEntry | None:
        return self._entries.get(original_name)

    def resolve(self, name: str) -> SymbolEntry | None:
        """
        Look a simple name up as an original name, then as a new name.

        Returns None when several files declare the name, since a bare name
        cannot tell them apart.
        """
        if name in self._ambiguous:
            return None
        return self._entries.get(name) or self._by_new_name.get(name)

    def resolve_qualified(self, dotted_name: str) -> SymbolEntry | None:
        """Look up ``namespace.Name`` by the type's old or new qualified name."""
        if dotted_name in self._ambiguous_qualified:
            return None
        return self._by_qualified.get(dotted_name)

    def by_source(self, source_path: str) -> SymbolEntry | None:
        return self._by_source.get(source_path)

    def has_new_name(self, name: str) -> bool:
        return name in self._by_new_name

    def has_output_path(self, path: str) -> bool:
        return path in self._output_paths

    def renames(self) -> dict[str, str]:
        """Original -> new name for every entry whose name changes."""
        return {
            original: entry.new_name
            for original, entry in self._entries.items()
            if entry.new_name != original
        }

    def entries(self) -> list[SymbolEntry]:
        return list(self._by_source.values())

    def __len__(self) -> int:
        return len(self._by_source)

    def __contains__(self, original_name: str) -> bool:
        return original_name in self._entries


def _join(namespace: str, name: str) -> str:
    return f"{namespace}.{name}" if namespace else name


class SymbolIndexer:
    """Builds a SymbolIndex from the translated files of a project."""

    def __init__(
        self,
        plugin: LanguagePlugin,
        session: TranslationSession | None = None,
        generate_names: bool = False,
        package_name: str | None = None,
    ):
        self.plugin = plugin
        self.session = session
        self.generate_names = generate_names and session is not None
        self.package_name = package_name
        self._original_names: set[str] = set()

    def build(self, files: Mapping[str, str] | Iterable[tuple[str, str]]) -> SymbolIndex:
        """
        Index every file exactly once.

        Every original name is collected before any new name is chosen, so a
        new name never equals another file's original name and renames cannot
        chain into each other.

        Args:
            files: ``source path -> translated content`` (or pairs of them)

        Returns:
            The frozen index
        """
        index = SymbolIndex()
        items = files.items() if isinstance(files, Mapping) else files
        originals = [
            (source_path, content, self._original_name(source_path, content))
            for source_path, content in sorted(items, key=lambda item: item[0])
        ]
        self._original_names = {original for _, _, original in originals}

        for source_path, content, original in originals:
            entry = self._entry_for(index, source_path, content, original)
            index.add(entry, self._aliases(source_path, original))
        index.freeze()
        logger.info(f"Indexed {len(index)} file(s), {len(index.renames())} rename(s)")
        return index

    def _original_name(self, source_path: str, content: str) -> str:
        original = self.plugin.primary_type_name(content)
        return original or self.plugin.normalize_type_name(PurePosixPath(source_path).stem)

    def _aliases(self, source_path: str, original: str) -> list[str]:
        """Dotted names references may still use for the untouched type."""
        directories = ".".join(sanitize_segment(p) for p in PurePosixPath(source_path).parent.parts)
        return [
            _join(self.plugin.namespace_for(source_path, original, self.package_name), original),
            _join(self.plugin.namespace_for(source_path, original), original),
            _join(directories, original),
        ]

    def _entry_for(self, index: SymbolIndex, source_path: str, content: str, original: str) -> SymbolEntry:
        new_name = original
        if self.generate_names:
            try:
                new_name = self.session.suggest_name(original, content)
            except GenerationServiceError as e:
                logger.warning(f"Name suggestion for {source_path} failed, keeping {original}: {e}")

        if self._is_taken(index, new_name, original, source_path):
            new_name = self._resolve_conflict(index, new_name, original, source_path)

        namespace = self.plugin.namespace_for(source_path, new_name, self.package_name)
        return SymbolEntry(
            original_name=original,
            new_name=new_name,
            namespace=namespace,
            source_file_path=source_path,
            output_path=self.plugin.output_path_for(namespace, new_name, source_path),
        )

    def _is_taken(self, index: SymbolIndex, name: str, original: str, source_path: str) -> bool:
        """
        A name is taken when its output path is already used, or when a
        renamed type would take another type's original or new name.

        A type that keeps its own name only clashes on the output path, so
        equal names in different namespaces stay as they are.
        """
        namespace = self.plugin.namespace_for(source_path, name, self.package_name)
        if index.has_output_path(self.plugin.output_path_for(namespace, name, source_path)):
            return True
        if name == original:
            return False
        return name in self._original_names or index.has_new_name(name)

    def _resolve_conflict(self, index: SymbolIndex, name: str, original: str, source_path: str) -> str:
        """
        Resolve a naming conflict by appending a numeric suffix.

        Returns:
            A unique name with suffix (e.g., "Parser_1")
        """
        counter = 1
        while True:
            candidate = f"{name}_{counter}"
            if not self._is_taken(index, candidate, original, source_path):
                logger.info(f"Renamed '{name}' to '{candidate}' to avoid a collision")
                return candidate
            counter += 1

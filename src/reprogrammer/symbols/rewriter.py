"""
Cross-file reference rewriting.

Two strategies, chosen by construct kind:

* ``StructuralStrategy`` rewrites package/namespace declarations and
  import-like statements through the target plugin's syntax tree.
* ``IdentifierStrategy`` replaces whole-word original names with new names
  everywhere else.

``CrossFileRewriter`` applies both to every file and repeats until a pass
changes nothing, with a hard cap on the number of passes.
"""

import logging
import re
from dataclasses import dataclass, field

from reprogrammer.languages.base.plugin import LanguagePlugin
from reprogrammer.symbols.index import SymbolIndex

logger = logging.getLogger(__name__)


class StructuralStrategy:
    """Package declarations and imports, via the plugin."""

    def __init__(self, plugin: LanguagePlugin, index: SymbolIndex):
        self.plugin = plugin
        self.index = index

    def apply(self, source_path: str, code: str) -> str:
        return self.plugin.rewrite_structural(code, self.index.by_source(source_path), self.index)


class IdentifierStrategy:
    """Simultaneous whole-word renaming outside structural spans."""

    def __init__(self, plugin: LanguagePlugin, index: SymbolIndex):
        self.plugin = plugin
        self.index = index
        self._renames = index.renames()

    def renames_for(self, source_path: str) -> dict[str, str]:
        renames = dict(self._renames)
        own = self.index.by_source(source_path)
        if own is not None:
            if own.new_name != own.original_name:
                renames[own.original_name] = own.new_name
            else:
                renames.pop(own.original_name, None)
        return renames

    def apply(self, source_path: str, code: str) -> str:
        renames = self.renames_for(source_path)
        if not renames:
            return code

        # One alternation, longest names first, so every name is replaced in a
        # single simultaneous pass.
        names = sorted(renames, key=len, reverse=True)
        pattern = re.compile(r"(?<![\w$])(?:" + "|".join(map(re.escape, names)) + r")(?![\w$])")

        def substitute(segment: str) -> str:
            return pattern.sub(lambda m: renames[m.group(0)], segment)

        pieces = []
        cursor = 0
        for start, end in self.plugin.structural_spans(code):
            if start < cursor:
                continue
            pieces.append(substitute(code[cursor:start]))
            pieces.append(code[start:end])
            cursor = end
        pieces.append(substitute(code[cursor:]))
        return "".join(pieces)


@dataclass
class RewriteReport:
    """Outcome of a cross-file rewrite."""

    files: dict[str, str] = field(default_factory=dict)
    iterations: int = 0
    converged: bool = True
    modified: set[str] = field(default_factory=set)


class CrossFileRewriter:
    """Fixed-point rewrite of every translated file against a frozen index."""

    def __init__(self, index: SymbolIndex, plugin: LanguagePlugin, max_iterations: int = 10):
        if not index.frozen:
            index.freeze()
        self.index = index
        self.plugin = plugin
        self.max_iterations = max_iterations
        self.structural = StructuralStrategy(plugin, index)
        self.identifiers = IdentifierStrategy(plugin, index)

    def rewrite_file(self, source_path: str, code: str) -> str:
        """One pass over one file: structural constructs first, then identifiers."""
        code = self.structural.apply(source_path, code)
        return self.identifiers.apply(source_path, code)

    def rewrite_pass(self, files: dict[str, str]) -> tuple[dict[str, str], set[str]]:
        """
        Rewrite every file once.

        Returns:
            Tuple of (new_files, paths_that_changed)
        """
        result: dict[str, str] = {}
        changed: set[str] = set()
        for source_path in sorted(files):
            before = files[source_path]
            after = self.rewrite_file(source_path, before)
            result[source_path] = after
            if after != before:
                changed.add(source_path)
        return result, changed

    def rewrite(self, files: dict[str, str]) -> RewriteReport:
        """
        Rewrite until a pass modifies zero files or the cap is hit.

        Args:
            files: ``source path -> translated content``

        Returns:
            RewriteReport with the final contents
        """
        report = RewriteReport(files=dict(files))
        changed = True
        while changed:
            if report.iterations >= self.max_iterations:
                report.converged = False
                logger.warning(
                    f"Cross-file rewrite did not converge after {self.max_iterations} passes; "
                    f"a rename cycle is likely"
                )
                break
            report.files, modified = self.rewrite_pass(report.files)
            report.iterations += 1
            report.modified |= modified
            changed = bool(modified)
            logger.debug(f"Rewrite pass {report.iterations}: {len(modified)} file(s) changed")

        return report

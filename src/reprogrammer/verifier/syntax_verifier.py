"""
Syntax verification of translated code.
"""

import logging

from reprogrammer.config.models import SyntaxIssue
from reprogrammer.languages.base.plugin import LanguagePlugin

logger = logging.getLogger(__name__)


class SyntaxVerifier:
    """Stateless adapter from a language plugin to a list of syntax issues."""

    def __init__(self, plugin: LanguagePlugin):
        self.plugin = plugin

    def verify(self, code: str) -> list[SyntaxIssue]:
        """Return ``[]`` when ``code`` parses, else an ordered non-empty list."""
        result = self.plugin.parse(code)
        if result.success:
            return []
        if not result.errors:
            return [SyntaxIssue(message="Syntax error")]
        logger.debug(f"{len(result.errors)} syntax issue(s) in {self.plugin.language_name} code")
        return list(result.errors)

"""
Recursive syntax repair.

Each pass walks the verifier's errors in order, asks the session for a
replacement of the offending line, substitutes it and re-verifies. Passes
recurse with a depth bound; when the bound is hit the best code seen so far
(fewest errors) is returned.
"""

import logging
from dataclasses import dataclass, field

from reprogrammer.config.models import SyntaxIssue
from reprogrammer.errors import IncompleteTranslation
from reprogrammer.translator.conversation import ConversationHistory
from reprogrammer.translator.session import TranslationSession
from reprogrammer.verifier.syntax_verifier import SyntaxVerifier

logger = logging.getLogger(__name__)

MAX_DEPTH = 3
CONTEXT_LINES = 3

FIX_PROMPT = (
    "The line below does not parse as {language}. Rewrite it so that it does, "
    "keeping its meaning. Return only the replacement line(s), nothing else."
)


@dataclass
class RepairReport:
    """What the last ``repair`` call did."""

    attempts: int = 0
    depth_reached: int = 0
    budget_exhausted: bool = False
    remaining_errors: list[SyntaxIssue] = field(default_factory=list)


class RecursiveRepairEngine:
    """Localized, depth-bounded repair of syntax errors."""

    def __init__(
        self,
        session: TranslationSession,
        verifier: SyntaxVerifier,
        max_depth: int = MAX_DEPTH,
        history: ConversationHistory | None = None,
    ):
        self.session = session
        self.verifier = verifier
        self.max_depth = max_depth
        self.history = history
        self.last_report = RepairReport()
        self._best: tuple[str, list[SyntaxIssue]] = ("", [])

    def repair(self, code: str, errors: list[SyntaxIssue], depth: int = 0) -> str:
        """
        Repair ``code`` given the verifier's ``errors``.

        Args:
            code: Code to repair
            errors: Errors the verifier reported for ``code``
            depth: Current recursion depth (callers pass 0)

        Returns:
            Repaired code, or the best code seen when the budget ran out.
            ``last_report`` says which.
        """
        if depth == 0:
            self.last_report = RepairReport()
            self._best = (code, list(errors))
        self.last_report.depth_reached = depth

        if not errors:
            self.last_report.remaining_errors = []
            return code

        if depth >= self.max_depth:
            logger.info(f"Repair depth limit {self.max_depth} reached with {len(errors)} error(s)")
            return self._exhausted()

        lines = code.splitlines(keepends=True)
        current = code
        remaining = list(errors)
        substituted = False
        offset = 0

        for error in errors:
            if error.line_number < 1:
                logger.debug(f"Skipping error without a line: {error.message}")
                continue
            target = error.line_number + offset
            if target < 1 or target > len(lines):
                logger.debug(f"Skipping out-of-range line {error.line_number}")
                continue

            self.last_report.attempts += 1
            try:
                replacement = self._request_fix(lines, target - 1, error)
            except IncompleteTranslation:
                logger.debug(f"No usable fix for line {target}")
                continue

            original = lines[target - 1]
            new_lines = _as_lines(replacement, original)
            if new_lines == [original]:
                continue

            lines[target - 1:target] = new_lines
            offset += len(new_lines) - 1
            substituted = True
            current = "".join(lines)

            remaining = self.verifier.verify(current)
            self._track_best(current, remaining)
            if not remaining:
                logger.info(f"Repaired after {self.last_report.attempts} attempt(s)")
                self.last_report.remaining_errors = []
                return current

        if not substituted:
            logger.info("No repair could be applied")
            return self._exhausted()

        return self.repair(current, remaining, depth + 1)

    def _request_fix(self, lines: list[str], index: int, error: SyntaxIssue) -> str:
        start = max(0, index - CONTEXT_LINES)
        end = min(len(lines), index + CONTEXT_LINES + 1)
        neighbourhood = "".join(
            f"{number + 1:>5}{'>' if number == index else ' '} {lines[number].rstrip()}\n"
            for number in range(start, end)
        )
        context = f"Error: {error}\nSurrounding lines:\n{neighbourhood}"
        prompt = FIX_PROMPT.format(language=self.session.settings.target_language)
        code, history = self.session.translate(prompt, lines[index], context, self.history)
        if self.history is not None:
            self.history = history
        return code

    def _track_best(self, code: str, errors: list[SyntaxIssue]) -> None:
        if len(errors) < len(self._best[1]):
            self._best = (code, list(errors))

    def _exhausted(self) -> str:
        code, errors = self._best
        self.last_report.budget_exhausted = True
        self.last_report.remaining_errors = list(errors)
        return code


def _as_lines(replacement: str, original: str) -> list[str]:
    """Split a replacement into lines ending like the line it replaces."""
    if not replacement.strip():
        return []
    ending = original[len(original.rstrip("\r\n")):]
    body = replacement.rstrip("\r\n")
    parts = body.split("\n")
    return [p.rstrip("\r") + (ending or "\n") for p in parts[:-1]] + [parts[-1].rstrip("\r") + ending]

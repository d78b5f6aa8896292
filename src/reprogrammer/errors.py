"""
Error kinds raised by the Reprogrammer core.

Per-chunk and per-file failures are recorded by the orchestrator and never
abort a whole project run; only a failed connectivity probe is fatal.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reprogrammer.config.models import SyntaxIssue


class ReprogrammerError(Exception):
    """Base class for all Reprogrammer errors."""


class ConfigurationError(ReprogrammerError):
    """Raised when configuration is missing a required option or is invalid."""


class GenerationServiceError(ReprogrammerError):
    """Transport, authentication or quota failure of the generation service."""


class IncompleteTranslation(ReprogrammerError):
    """The continuation protocol could not produce a complete chunk."""

    def __init__(self, message: str, partial_code: str = ""):
        super().__init__(message)
        self.partial_code = partial_code


class RepairBudgetExhausted(ReprogrammerError):
    """Syntax errors remain after every repair attempt.

    Carries the best-effort code so the file can still be written and flagged.
    """

    def __init__(self, code: str, errors: list["SyntaxIssue"], reason: str = ""):
        self.code = code
        self.errors = errors
        self.reason = reason or f"{len(errors)} syntax error(s) left after repair"
        super().__init__(self.reason)


class CheckpointVersionMismatch(ReprogrammerError):
    """A checkpoint was written by an incompatible version and cannot be resumed."""

    def __init__(self, found: object, expected: int):
        self.found = found
        self.expected = expected
        super().__init__(
            f"Checkpoint version {found!r} does not match expected version {expected}"
        )


class RunCancelled(ReprogrammerError):
    """Cooperative cancellation was requested between two units of work."""

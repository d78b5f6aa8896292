"""
Structure-aware chunking of source text.

Two modes:

* ``split`` cuts a file into ordered chunks bounded by a character budget,
  never inside an open block.
* ``extract_skeleton`` separates a class-like chunk into its skeleton
  (lines outside member bodies) and the member bodies, so each can be
  translated as a smaller unit and stitched back with ``ClassLayout``.
"""

import logging
import re
from dataclasses import dataclass, field

from reprogrammer.config.models import Chunk, LanguageSettings

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"@@BODY_(\d+)@@")


def placeholder_token(index: int) -> str:
    return f"@@BODY_{index}@@"


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""


@dataclass
class ClassLayout:
    """A class-like chunk split into skeleton and member bodies."""

    skeleton: str
    bodies: list[str] = field(default_factory=list)
    close_symbol: str = "}"

    def reassemble(self, translated_skeleton: str, translated_bodies: list[str]) -> str:
        """
        Put translated bodies back in place of their placeholders.

        Bodies whose placeholder is missing from the translated skeleton are
        inserted, in original order, before the skeleton's last close
        symbol, or appended when there is none.

        Args:
            translated_skeleton: Skeleton returned by the service
            translated_bodies: Translated bodies, same order as ``bodies``

        Returns:
            The reassembled code
        """
        result = translated_skeleton
        missing: list[str] = []

        for index, body in enumerate(translated_bodies):
            pattern = re.compile(
                r"^[ \t]*" + re.escape(placeholder_token(index)) + r"[ \t]*(\r?\n)?", re.MULTILINE
            )
            match = pattern.search(result)
            if match is None:
                missing.append(body)
                continue
            ending = match.group(1) or ""
            replacement = body if (not ending or body.endswith(("\n", "\r\n"))) else body + ending
            result = result[: match.start()] + replacement + result[match.end():]

        if missing:
            logger.debug(f"{len(missing)} body placeholder(s) dropped by the service")
            block = "".join(b if b.endswith("\n") else b + "\n" for b in missing)
            position = result.rfind(self.close_symbol)
            if position == -1:
                if result and not result.endswith("\n"):
                    result += "\n"
                result += block
            else:
                line_start = result.rfind("\n", 0, position) + 1
                if not result[line_start:position].strip():
                    position = line_start
                elif not block.startswith("\n"):
                    block = "\n" + block
                result = result[:position] + block + result[position:]

        return result


class ChunkSplitter:
    """Splits source text along block boundaries."""

    def __init__(self, settings: LanguageSettings):
        self.settings = settings
        self.max_chunk_size = settings.max_chunk_size
        self.open_symbol = settings.block_open_symbol
        self.close_symbol = settings.block_close_symbol
        self._block_start = re.compile(settings.block_start_keyword)

    def _delta(self, line: str) -> int:
        return line.count(self.open_symbol) - line.count(self.close_symbol)

    def is_block_start(self, line: str) -> bool:
        stripped = line.strip()
        return bool(
            stripped
            and self._block_start.match(stripped)
            and stripped.endswith(self.settings.block_end_keyword)
        )

    def _is_structural(self, text: str) -> bool:
        for line in text.splitlines():
            if line.strip():
                return self.is_block_start(line)
        return False

    def split(self, text: str) -> list[Chunk]:
        """
        Split text into chunks of roughly ``max_chunk_size`` characters.

        A chunk is closed only once it exceeds the budget while the nesting
        depth is zero, so a single block larger than the budget stays whole.
        Concatenating the chunks gives back ``text`` exactly.
        """
        if not text:
            return []

        chunks: list[Chunk] = []
        current: list[str] = []
        length = 0
        depth = 0

        def emit() -> None:
            body = "".join(current)
            chunks.append(
                Chunk(index=len(chunks), text=body, is_structural_block=self._is_structural(body))
            )

        for line in text.splitlines(keepends=True):
            current.append(line)
            length += len(line)
            depth += self._delta(line)
            if length > self.max_chunk_size and depth == 0:
                emit()
                current, length = [], 0

        if current:
            emit()

        logger.debug(f"Split {len(text)} characters into {len(chunks)} chunk(s)")
        return chunks

    def needs_skeleton(self, chunk: Chunk) -> bool:
        """Large structural chunks are translated skeleton-first."""
        return chunk.is_structural_block and len(chunk.text) > self.settings.class_structure_threshold

    def extract_skeleton(self, text: str) -> ClassLayout:
        """
        Separate member bodies from a class-like chunk.

        A member body starts on a line that takes the depth from 1 to 2 or
        more and ends on the line that brings it back to 1. Each body is
        replaced in the skeleton by a ``@@BODY_<n>@@`` line carrying the
        body's indentation.
        """
        skeleton: list[str] = []
        bodies: list[str] = []
        body: list[str] = []
        depth = 0

        for line in text.splitlines(keepends=True):
            before = depth
            depth += self._delta(line)

            if body:
                body.append(line)
                if depth <= 1:
                    bodies.append("".join(body))
                    body = []
                continue

            if before == 1 and depth >= 2:
                indent = line[: len(line) - len(line.lstrip(" \t"))]
                skeleton.append(indent + placeholder_token(len(bodies)) + "\n")
                body = [line]
                continue

            skeleton.append(line)

        if body:
            # Unterminated member: keep it as a body so nothing is lost.
            bodies.append("".join(body))

        layout = ClassLayout(skeleton="".join(skeleton), bodies=bodies, close_symbol=self.close_symbol)
        self._fix_placeholder_endings(layout)
        return layout

    def _fix_placeholder_endings(self, layout: ClassLayout) -> None:
        """Give each placeholder line the line ending its body ends with."""
        lines = layout.skeleton.splitlines(keepends=True)
        for i, line in enumerate(lines):
            match = PLACEHOLDER_PATTERN.search(line)
            if not match:
                continue
            index = int(match.group(1))
            if index < len(layout.bodies):
                lines[i] = line.rstrip("\r\n") + _line_ending(layout.bodies[index])
        layout.skeleton = "".join(lines)


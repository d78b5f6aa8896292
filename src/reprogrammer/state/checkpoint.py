"""
Checkpoint bookkeeping for Reprogrammer.

Handles saving and restoring project progress so an interrupted run can be
resumed without redoing completed files.
"""

import logging
import time
from pathlib import Path
from typing import Any
from uuid import uuid4

import orjson
from pydantic import BaseModel, Field

from reprogrammer.config.models import FileOutcome
from reprogrammer.errors import CheckpointVersionMismatch

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1

COMPLETED_OUTCOMES = (FileOutcome.TRANSLATED_CLEAN, FileOutcome.TRANSLATED_FLAGGED)


def _generate_session_id() -> str:
    return f"session_{int(time.time())}_{str(uuid4())[:8]}"


class ProjectState(BaseModel):
    """Persisted progress of one project run."""

    version: int = CHECKPOINT_VERSION
    session_id: str = Field(default_factory=_generate_session_id)
    root_directory: str
    output_directory: str
    file_name_map: dict[str, str] = Field(
        default_factory=dict, description="Source path -> output path, relative"
    )
    files_processed_count: int = 0
    total_files: int = 0
    last_progress_percent: int = 0
    accumulated_meta_summary: str = ""
    file_outcomes: dict[str, FileOutcome] = Field(default_factory=dict)
    failed_paths: list[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    # =========================================================================
    # State Updates
    # =========================================================================

    def record_file(self, source_path: str, output_path: str | None, outcome: FileOutcome) -> None:
        """Record the outcome of one file and refresh the counters."""
        self.file_outcomes[source_path] = outcome
        if outcome in COMPLETED_OUTCOMES and output_path is not None:
            self.file_name_map[source_path] = output_path
            if source_path in self.failed_paths:
                self.failed_paths.remove(source_path)
        elif outcome == FileOutcome.FAILED and source_path not in self.failed_paths:
            self.failed_paths.append(source_path)

        self.files_processed_count = sum(
            1 for value in self.file_outcomes.values() if value in COMPLETED_OUTCOMES
        )
        self.last_progress_percent = self.progress_percent()
        self.updated_at = time.time()

    def progress_percent(self) -> int:
        if self.total_files <= 0:
            return 0
        return min(100, int(self.files_processed_count * 100 / self.total_files))

    def is_completed(self, source_path: str) -> bool:
        return self.file_outcomes.get(source_path) in COMPLETED_OUTCOMES

    def completed_paths(self) -> list[str]:
        return sorted(p for p in self.file_outcomes if self.is_completed(p))

    def append_meta_summary(self, text: str, max_chars: int) -> None:
        """Append to the running summary, keeping only its most recent tail."""
        text = text.strip()
        if not text:
            return
        combined = f"{self.accumulated_meta_summary}\n{text}".strip()
        if len(combined) > max_chars:
            combined = combined[-max_chars:]
            newline = combined.find("\n")
            if 0 <= newline < len(combined) - 1:
                combined = combined[newline + 1:]
        self.accumulated_meta_summary = combined


class CheckpointStore:
    """Reads and writes ProjectState snapshots in a state directory."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)

    def save(self, state: ProjectState) -> Path:
        """
        Save the state to disk.

        Writes ``<session_id>.json`` and a copy as ``latest.json``.

        Returns:
            Path to the session state file
        """
        self.state_dir.mkdir(parents=True, exist_ok=True)
        state.updated_at = time.time()
        payload = orjson.dumps(
            state.model_dump(mode="json"), option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS
        )

        state_file = self.state_dir / f"{state.session_id}.json"
        state_file.write_bytes(payload)
        (self.state_dir / "latest.json").write_bytes(payload)

        logger.debug(f"Checkpoint saved to {state_file}")
        return state_file

    def load(self, state_file: Path) -> ProjectState:
        """
        Load state from a file.

        Raises:
            CheckpointVersionMismatch: If the file was written by another version
        """
        with open(state_file, "rb") as f:
            data: Any = orjson.loads(f.read())

        found = data.get("version") if isinstance(data, dict) else None
        if found != CHECKPOINT_VERSION:
            raise CheckpointVersionMismatch(found, CHECKPOINT_VERSION)

        return ProjectState.model_validate(data)

    def load_latest(self) -> ProjectState:
        """
        Load the latest state from the directory.

        Raises:
            FileNotFoundError: If no state files exist
        """
        latest_file = self.state_dir / "latest.json"
        if latest_file.exists():
            return self.load(latest_file)

        state_files = sorted(self.state_dir.glob("session_*.json"), reverse=True)
        if not state_files:
            raise FileNotFoundError(f"No state files found in {self.state_dir}")
        return self.load(state_files[0])

    def list_sessions(self) -> list[dict[str, Any]]:
        """List the saved sessions, most recent first."""
        sessions = []
        for state_file in sorted(self.state_dir.glob("session_*.json"), reverse=True):
            try:
                data = orjson.loads(state_file.read_bytes())
            except (OSError, orjson.JSONDecodeError) as e:
                logger.warning(f"Skipping unreadable state file {state_file}: {e}")
                continue
            sessions.append(
                {
                    "session_id": data.get("session_id"),
                    "version": data.get("version"),
                    "files_processed": data.get("files_processed_count"),
                    "progress": data.get("last_progress_percent"),
                    "updated_at": data.get("updated_at"),
                    "file": state_file,
                }
            )
        return sessions

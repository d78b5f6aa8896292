"""
Background worker: runs one orchestrator on one thread.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable

from reprogrammer.config.models import ProjectResult
from reprogrammer.pipeline.events import EventChannel, EventKind
from reprogrammer.pipeline.orchestrator import PipelineOrchestrator
from reprogrammer.state.checkpoint import ProjectState

logger = logging.getLogger(__name__)


class BackgroundWorker:
    """Drives a PipelineOrchestrator on a dedicated thread."""

    def __init__(self, orchestrator: PipelineOrchestrator, name: str = "reprogrammer-worker"):
        self.orchestrator = orchestrator
        self.name = name
        self.result: ProjectResult | None = None
        self.error: BaseException | None = None
        self._thread: threading.Thread | None = None

    @property
    def events(self) -> EventChannel:
        return self.orchestrator.events

    def start_project(self, files: Iterable[tuple[str, str]]) -> "BackgroundWorker":
        return self._start(self.orchestrator.run_project, list(files))

    def start_resume(
        self,
        checkpoint: Path | ProjectState,
        files: Iterable[tuple[str, str]] | None = None,
    ) -> "BackgroundWorker":
        return self._start(self.orchestrator.resume, checkpoint, files)

    def _start(self, target: Callable[..., ProjectResult], *args: Any) -> "BackgroundWorker":
        if self.is_alive():
            raise RuntimeError("Worker is already running")
        self.result = None
        self.error = None
        self._thread = threading.Thread(target=self._run, args=(target, args), name=self.name, daemon=True)
        self._thread.start()
        return self

    def _run(self, target: Callable[..., ProjectResult], args: tuple) -> None:
        try:
            self.result = target(*args)
        except Exception as e:
            logger.exception("Worker stopped with an error")
            self.error = e
            self.events.emit(EventKind.ERROR, str(e))

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: float | None = None) -> ProjectResult | None:
        """Wait for the run; re-raise its error, if any."""
        if self._thread is not None:
            self._thread.join(timeout)
        if self.error is not None:
            raise self.error
        return self.result

    def cancel(self) -> None:
        self.orchestrator.control.cancel()

    def pause(self) -> None:
        self.orchestrator.control.pause()

    def resume(self) -> None:
        self.orchestrator.control.resume()

"""
Progress events and cooperative run control.

The worker thread never touches presentation state directly: it publishes
``ProgressEvent``s on an ``EventChannel`` and polls a ``RunControl`` between
files and chunks.
"""

import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from reprogrammer.config.models import FileOutcome


class EventKind(str, Enum):
    RUN_STARTED = "run_started"
    FILE_STARTED = "file_started"
    CHUNK_TRANSLATED = "chunk_translated"
    REPAIR_ROUND = "repair_round"
    FILE_FINISHED = "file_finished"
    REWRITE_FINISHED = "rewrite_finished"
    PAUSED = "paused"
    RESUMED = "resumed"
    CANCELLED = "cancelled"
    RUN_FINISHED = "run_finished"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification."""

    kind: EventKind
    message: str = ""
    path: str | None = None
    current: int = 0
    total: int = 0
    outcome: FileOutcome | None = None
    timestamp: float = field(default_factory=time.time)

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return min(100, int(self.current * 100 / self.total))


class EventChannel:
    """Thread-safe FIFO of progress events."""

    def __init__(self, maxsize: int = 0):
        self._queue: queue.Queue[ProgressEvent] = queue.Queue(maxsize=maxsize)

    def publish(self, event: ProgressEvent) -> None:
        self._queue.put(event)

    def emit(self, kind: EventKind, message: str = "", **kwargs) -> None:
        self.publish(ProgressEvent(kind=kind, message=message, **kwargs))

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        """Next event, or None when nothing arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[ProgressEvent]:
        """All events published so far, without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class RunControl:
    """Cooperative cancel and pause flags shared with the worker thread."""

    def __init__(self):
        self._cancel = threading.Event()
        self._paused = False
        self._condition = threading.Condition()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def paused(self) -> bool:
        with self._condition:
            return self._paused

    def cancel(self) -> None:
        self._cancel.set()
        with self._condition:
            self._condition.notify_all()

    def pause(self) -> None:
        with self._condition:
            self._paused = True

    def resume(self) -> None:
        with self._condition:
            self._paused = False
            self._condition.notify_all()

    def wait_if_paused(self, timeout: float | None = None) -> bool:
        """Block while paused (until resumed or cancelled). True if it blocked."""
        with self._condition:
            if not self._paused:
                return False
            self._condition.wait_for(lambda: not self._paused or self._cancel.is_set(), timeout)
            return True

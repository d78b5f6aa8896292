"""
Unit tests for progress events, run control and the background worker.
"""

import threading
from unittest.mock import MagicMock

import pytest

from reprogrammer.config.models import ProjectResult
from reprogrammer.errors import GenerationServiceError
from reprogrammer.pipeline import BackgroundWorker, EventChannel, EventKind, ProgressEvent, RunControl


def test_event_percent():
    assert ProgressEvent(EventKind.FILE_FINISHED, current=1, total=4).percent == 25
    assert ProgressEvent(EventKind.RUN_STARTED).percent == 0
    assert ProgressEvent(EventKind.FILE_FINISHED, current=9, total=4).percent == 100


def test_channel_is_fifo():
    channel = EventChannel()
    channel.emit(EventKind.RUN_STARTED, "start")
    channel.emit(EventKind.FILE_FINISHED, "a.java", path="a.java")

    assert channel.get(timeout=0.1).kind == EventKind.RUN_STARTED
    assert [e.path for e in channel.drain()] == ["a.java"]
    assert channel.get(timeout=0.01) is None


def test_cancel_releases_paused_waiter():
    control = RunControl()
    control.pause()
    released = threading.Event()

    def wait():
        control.wait_if_paused()
        released.set()

    thread = threading.Thread(target=wait)
    thread.start()
    assert not released.wait(0.05)

    control.cancel()
    thread.join(timeout=1)

    assert released.is_set()
    assert control.cancelled


def test_resume_clears_pause():
    control = RunControl()
    control.pause()
    assert control.paused

    control.resume()

    assert not control.paused
    assert control.wait_if_paused() is False


def make_orchestrator(run_project):
    orchestrator = MagicMock()
    orchestrator.events = EventChannel()
    orchestrator.control = RunControl()
    orchestrator.run_project.side_effect = run_project
    return orchestrator


def test_worker_returns_result():
    result = ProjectResult(clean=2)
    worker = BackgroundWorker(make_orchestrator(lambda files: result))

    worker.start_project([("a.java", "class A {}")])

    assert worker.join(timeout=5) is result
    assert not worker.is_alive()


def test_worker_reraises_and_publishes_errors():
    def fail(files):
        raise GenerationServiceError("Generation service is not reachable")

    worker = BackgroundWorker(make_orchestrator(fail))
    worker.start_project([])

    with pytest.raises(GenerationServiceError):
        worker.join(timeout=5)
    events = worker.events.drain()
    assert events[-1].kind == EventKind.ERROR
    assert "not reachable" in events[-1].message


def test_worker_forwards_control():
    orchestrator = make_orchestrator(lambda files: ProjectResult())
    worker = BackgroundWorker(orchestrator)

    worker.pause()
    assert orchestrator.control.paused
    worker.resume()
    worker.cancel()

    assert not orchestrator.control.paused
    assert orchestrator.control.cancelled

"""
Pipeline: per-file translation, project runs, resume and background execution.
"""

from reprogrammer.pipeline.events import EventChannel, EventKind, ProgressEvent, RunControl
from reprogrammer.pipeline.orchestrator import (
    PipelineOrchestrator,
    iter_source_files,
    merge_files,
    split_merged_output,
)
from reprogrammer.pipeline.worker import BackgroundWorker

__all__ = [
    "BackgroundWorker",
    "EventChannel",
    "EventKind",
    "PipelineOrchestrator",
    "ProgressEvent",
    "RunControl",
    "iter_source_files",
    "merge_files",
    "split_merged_output",
]

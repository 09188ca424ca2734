"""
Async job management for long-running sync and embedding operations.

Provides background job execution with progress tracking, cooperative
cancellation and lifecycle events.
"""

from .jobs import Job, JobKind, JobOptions, JobProgress, JobStatus, HistoryEntry
from .cancellation import CancellationRegistry, CancellationToken, CancelMode
from .events import EventBus, JobEvent, JobEventKind
from .batch import BatchProcessor, BatchResult
from .workers import JobHandler, entity_text, upsert_operation
from .orchestrator import JobOrchestrator

__all__ = [
    "Job",
    "JobKind",
    "JobOptions",
    "JobProgress",
    "JobStatus",
    "HistoryEntry",
    "CancellationRegistry",
    "CancellationToken",
    "CancelMode",
    "EventBus",
    "JobEvent",
    "JobEventKind",
    "BatchProcessor",
    "BatchResult",
    "JobHandler",
    "entity_text",
    "upsert_operation",
    "JobOrchestrator",
]

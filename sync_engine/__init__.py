"""
Background job orchestration for entity sync and embedding generation.

Runs long-lived sync and embedding jobs with progress tracking,
cooperative cancellation and partial-failure tolerance.
"""

from .engine import Engine
from .ops import JobKind, JobStatus, JobOrchestrator

__version__ = "0.3.0"

__all__ = ["Engine", "JobKind", "JobStatus", "JobOrchestrator", "__version__"]

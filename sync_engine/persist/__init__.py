"""
Persistence layer: SQLite-backed job records and history.
"""

from .sqlite_store import SQLiteStore
from .job_store import JobStore, PROGRESS_FIELDS

__all__ = ["SQLiteStore", "JobStore", "PROGRESS_FIELDS"]

"""
SQLite persistence for job records and the job history log.

Tables:
- jobs: one row per job, progress fields updated in place
- job_history: append-only log of notable job events

Update discipline: progress fields are written with column-level partial
updates, and status moves only through `transition()`, a compare-and-set
on the current status. Concurrent writers for the same job therefore never
overwrite each other's fields, and a terminal status is never reverted.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from ..ops.jobs import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    HistoryEntry,
    Job,
    JobKind,
    JobStatus,
    can_transition,
    coerce_details,
    utcnow,
)
from ..telemetry import get_logger
from .sqlite_store import SQLiteStore

logger = get_logger(__name__)

# Columns the orchestrator may update through update_progress()
PROGRESS_FIELDS = frozenset({
    "progress",
    "current_entity_type",
    "current_entity_progress",
    "current_entity_total",
    "total_count",
    "processed_count",
    "error_count",
    "last_error",
    "started_at",
    "completed_at",
})


class JobStore(SQLiteStore):
    """Durable owner of job records and their history."""

    SCHEMA = [
        """
        CREATE TABLE IF NOT EXISTS jobs (
            id TEXT PRIMARY KEY,
            kind TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            entity_types TEXT NOT NULL,
            options TEXT NOT NULL DEFAULT '{}',
            progress INTEGER NOT NULL DEFAULT 0,
            current_entity_type TEXT,
            current_entity_progress INTEGER NOT NULL DEFAULT 0,
            current_entity_total INTEGER NOT NULL DEFAULT 0,
            total_count INTEGER NOT NULL DEFAULT 0,
            processed_count INTEGER NOT NULL DEFAULT 0,
            error_count INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            created_at TEXT NOT NULL,
            started_at TEXT,
            updated_at TEXT,
            completed_at TEXT
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS job_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_id TEXT NOT NULL,
            entity_type TEXT NOT NULL,
            action TEXT NOT NULL,
            details TEXT NOT NULL DEFAULT '{}',
            timestamp TEXT NOT NULL,
            FOREIGN KEY (job_id) REFERENCES jobs(id) ON DELETE CASCADE
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status)",
        "CREATE INDEX IF NOT EXISTS idx_jobs_updated_at ON jobs(updated_at)",
        "CREATE INDEX IF NOT EXISTS idx_job_history_job_id ON job_history(job_id)",
    ]

    @staticmethod
    def _row_to_job(row) -> Job:
        data = dict(row)
        data["entity_types"] = json.loads(data["entity_types"] or "[]")
        data["options"] = json.loads(data["options"] or "{}")
        return Job.from_dict(data)

    def create(self, job: Job) -> Job:
        """
        Insert a new job record.

        Args:
            job: Job in pending state

        Returns:
            The stored job
        """
        job.updated_at = job.updated_at or job.created_at
        data = job.to_dict()
        data["entity_types"] = json.dumps(job.entity_types)
        data["options"] = json.dumps(job.options or {})

        columns = ", ".join(data.keys())
        placeholders = ", ".join("?" for _ in data)
        self._execute(
            f"INSERT INTO jobs ({columns}) VALUES ({placeholders})",
            list(data.values()),
        )
        return job

    def get(self, job_id: str) -> Optional[Job]:
        """
        Get a job by id.

        Returns:
            Job if found, None otherwise
        """
        row = self._fetchone("SELECT * FROM jobs WHERE id = ?", (job_id,))
        return self._row_to_job(row) if row else None

    def update_progress(self, job_id: str, **fields) -> bool:
        """
        Update progress columns of one job.

        Only the given columns are written. Status cannot be changed here;
        use transition().

        Args:
            job_id: Job id
            **fields: Column values from PROGRESS_FIELDS

        Returns:
            True if a row was updated
        """
        unknown = set(fields) - PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Not updatable through update_progress: {sorted(unknown)}")
        if not fields:
            return False

        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = list(fields.values()) + [utcnow(), job_id]
        cursor = self._execute(
            f"UPDATE jobs SET {assignments}, updated_at = ? WHERE id = ?",
            params,
        )
        return cursor.rowcount > 0

    def transition(
        self,
        job_id: str,
        target: JobStatus,
        only_from: Optional[Iterable[JobStatus]] = None,
        **fields,
    ) -> bool:
        """
        Move a job to a new status if the state machine allows it.

        The check and the write happen under the store lock with the
        observed status in the WHERE clause, so a racing writer cannot
        slip in between.

        Args:
            job_id: Job id
            target: Desired status
            only_from: Further restrict the allowed current statuses
            **fields: Progress columns written together with the status

        Returns:
            True if the transition was applied, False if the job is
            missing or the move is not allowed from its current status
        """
        target = JobStatus(target)
        unknown = set(fields) - PROGRESS_FIELDS
        if unknown:
            raise ValueError(f"Not updatable through transition: {sorted(unknown)}")

        with self._lock:
            row = self._conn.execute(
                "SELECT status FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if row is None:
                return False

            current = JobStatus(row["status"])
            allowed = only_from is None or current in {JobStatus(s) for s in only_from}
            if not allowed or not can_transition(current, target):
                logger.info(
                    "job_transition_rejected",
                    job_id=job_id,
                    current=current.value,
                    target=target.value,
                )
                return False

            assignments = "".join(f", {name} = ?" for name in fields)
            params = [target.value, *fields.values(), utcnow(), job_id, current.value]
            cursor = self._conn.execute(
                f"UPDATE jobs SET status = ?{assignments}, updated_at = ? "
                f"WHERE id = ? AND status = ?",
                params,
            )
            self._conn.commit()
            return cursor.rowcount > 0

    def list(
        self,
        statuses: Optional[Iterable[JobStatus]] = None,
        kind: Optional[JobKind] = None,
    ) -> list[Job]:
        """
        List jobs, most recently created first.

        Args:
            statuses: Filter by status
            kind: Filter by job kind

        Returns:
            List of Job objects
        """
        sql = "SELECT * FROM jobs"
        clauses = []
        params: list = []

        if statuses is not None:
            statuses = [JobStatus(s).value for s in statuses]
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if kind is not None:
            clauses.append("kind = ?")
            params.append(JobKind(kind).value)

        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC, rowid DESC"

        return [self._row_to_job(row) for row in self._fetchall(sql, params)]

    def list_active(self, kind: Optional[JobKind] = None) -> list[Job]:
        """List jobs in pending, running or paused state."""
        return self.list(statuses=ACTIVE_STATUSES, kind=kind)

    def append_history(
        self,
        job_id: str,
        entity_type: str,
        action: str,
        details: Optional[dict] = None,
    ) -> HistoryEntry:
        """
        Append one entry to the job's history log.

        Args:
            job_id: Job id
            entity_type: Entity type, or "system" for job-level events
            action: Event name (job_start, entity_error, ...)
            details: JSON-serializable details

        Returns:
            The stored HistoryEntry
        """
        entry = HistoryEntry(
            job_id=job_id,
            entity_type=entity_type,
            action=action,
            details=coerce_details(details),
        )
        cursor = self._execute(
            "INSERT INTO job_history (job_id, entity_type, action, details, timestamp) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                entry.job_id,
                entry.entity_type,
                entry.action,
                json.dumps(entry.details, default=str),
                entry.timestamp,
            ),
        )
        entry.id = cursor.lastrowid
        return entry

    def get_history(
        self,
        job_id: str,
        limit: int = 100,
        action: Optional[str] = None,
    ) -> list[HistoryEntry]:
        """
        Get history entries for a job, newest first.

        Args:
            job_id: Job id
            limit: Maximum entries
            action: Only entries with this action

        Returns:
            List of HistoryEntry objects
        """
        sql = "SELECT * FROM job_history WHERE job_id = ?"
        params: list = [job_id]
        if action:
            sql += " AND action = ?"
            params.append(action)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(int(limit))

        entries = []
        for row in self._fetchall(sql, params):
            data = dict(row)
            data["details"] = json.loads(data["details"] or "{}")
            entries.append(HistoryEntry(**data))
        return entries

    def count_started_since(self, since: str) -> int:
        """Count jobs whose started_at is at or after the given ISO time."""
        row = self._fetchone(
            "SELECT COUNT(*) AS n FROM jobs WHERE started_at IS NOT NULL AND started_at >= ?",
            (since,),
        )
        return row["n"] if row else 0

    def last_activity(self) -> Optional[str]:
        """Return the most recent updated_at across all jobs."""
        row = self._fetchone("SELECT MAX(updated_at) AS ts FROM jobs")
        return row["ts"] if row else None

    def cleanup(self, max_age_hours: float) -> int:
        """
        Remove finished jobs older than max_age_hours with their history.

        Args:
            max_age_hours: Max age in hours, measured from updated_at

        Returns:
            Number of jobs removed
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(hours=max_age_hours)).isoformat()
        terminal = [s.value for s in TERMINAL_STATUSES]

        with self._lock:
            rows = self._conn.execute(
                "SELECT id FROM jobs WHERE status IN (?, ?) AND updated_at < ?",
                (*terminal, cutoff),
            ).fetchall()
            ids = [row["id"] for row in rows]
            for job_id in ids:
                self._conn.execute("DELETE FROM job_history WHERE job_id = ?", (job_id,))
                self._conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            self._conn.commit()

        if ids:
            logger.info("jobs_cleaned_up", count=len(ids), max_age_hours=max_age_hours)
        return len(ids)

"""
Job data model: records, options, history entries and progress snapshots.

The status state machine lives here as a transition table so that the
store and the orchestrator agree on which moves are legal.
"""

import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..errors import ValidationError


class JobKind(str, Enum):
    SYNC = "sync"
    EMBEDDING = "embedding"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED)

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.PAUSED, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.PAUSED, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PAUSED: frozenset({JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

JOB_ID_PREFIX = {
    JobKind.SYNC: "sync",
    JobKind.EMBEDDING: "emb",
}

SYSTEM_ENTITY = "system"


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Check whether the state machine allows current -> target."""
    return target in ALLOWED_TRANSITIONS[JobStatus(current)]


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_job_id(kind: JobKind) -> str:
    """Generate a unique job id prefixed by its kind."""
    return f"{JOB_ID_PREFIX[JobKind(kind)]}-{uuid.uuid4().hex}"


class JobOptions(BaseModel):
    """
    Recognized job options.

    Accepts snake_case or camelCase keys; unknown keys are ignored.
    `concurrency`, `retry_attempts` and `retry_delay` are stored but
    not acted on: items run sequentially and are never retried.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    batch_size: Optional[int] = Field(None, ge=1, alias="batchSize")
    concurrency: int = Field(1, ge=1)
    retry_attempts: Optional[int] = Field(None, ge=0, alias="retryAttempts")
    retry_delay: Optional[float] = Field(None, ge=0.0, alias="retryDelay")
    updated_since: Optional[str] = Field(None, alias="updatedSince")

    @field_validator("updated_since")
    @classmethod
    def _check_iso_timestamp(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"updated_since must be an ISO timestamp: {value}") from e
        return value

    @classmethod
    def parse(cls, options: Optional[dict]) -> "JobOptions":
        """
        Validate a raw options mapping.

        Raises:
            ValidationError: If a recognized option has an invalid value
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        try:
            return cls.model_validate(options)
        except ValueError as e:
            raise ValidationError(f"Invalid job options: {e}") from e

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)


@dataclass
class Job:
    """A tracked unit of background work over one or more entity types."""

    id: str
    kind: JobKind
    entity_types: list[str]
    status: JobStatus = JobStatus.PENDING
    options: dict = field(default_factory=dict)
    progress: int = 0                       # 0 to 100
    current_entity_type: Optional[str] = None
    current_entity_progress: int = 0
    current_entity_total: int = 0
    total_count: int = 0                    # candidate items observed so far
    processed_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    created_at: str = field(default_factory=utcnow)
    started_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        data = asdict(self)
        data["kind"] = JobKind(self.kind).value
        data["status"] = JobStatus(self.status).value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        """Create from dict."""
        data = dict(data)
        data["kind"] = JobKind(data["kind"])
        data["status"] = JobStatus(data["status"])
        return cls(**data)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass
class HistoryEntry:
    """One append-only history log line for a job."""

    job_id: str
    entity_type: str
    action: str
    details: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=utcnow)
    id: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class JobProgress:
    """Point-in-time progress snapshot returned to callers."""

    job_id: str
    kind: str
    status: str
    progress: int
    entity_types: list[str]
    current_entity_type: Optional[str]
    current_entity_progress: int
    current_entity_total: int
    total_count: int
    processed_count: int
    error_count: int
    last_error: Optional[str]
    started_at: Optional[str]
    completed_at: Optional[str]
    estimated_completion: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_job(
        cls,
        job: Job,
        errors: Optional[list[str]] = None,
        estimated_completion: Optional[str] = None,
    ) -> "JobProgress":
        return cls(
            job_id=job.id,
            kind=JobKind(job.kind).value,
            status=JobStatus(job.status).value,
            progress=job.progress,
            entity_types=list(job.entity_types),
            current_entity_type=job.current_entity_type,
            current_entity_progress=job.current_entity_progress,
            current_entity_total=job.current_entity_total,
            total_count=job.total_count,
            processed_count=job.processed_count,
            error_count=job.error_count,
            last_error=job.last_error,
            started_at=job.started_at,
            completed_at=job.completed_at,
            estimated_completion=estimated_completion,
            errors=errors or [],
        )


def estimate_completion(
    processed: int,
    total: int,
    started_at: Optional[str],
    now: Optional[datetime] = None,
) -> Optional[str]:
    """
    Extrapolate a completion time from the processing rate so far.

    Args:
        processed: Items handled so far
        total: Items expected in total
        started_at: ISO start timestamp
        now: Current time (default: utc now)

    Returns:
        ISO timestamp, or None when no rate can be computed yet
    """
    if processed <= 0 or not started_at or total <= processed:
        return None

    now = now or datetime.now(timezone.utc)
    start = datetime.fromisoformat(started_at)
    elapsed = (now - start).total_seconds()
    if elapsed <= 0:
        return None

    rate = processed / elapsed
    remaining = (total - processed) / rate
    return datetime.fromtimestamp(now.timestamp() + remaining, tz=timezone.utc).isoformat()


def coerce_details(details: Any) -> dict:
    if details is None:
        return {}
    if isinstance(details, dict):
        return details
    return {"value": details}

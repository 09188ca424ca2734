"""
Job orchestration: lifecycle, execution loop and cancellation.

State machine:
    pending --begin--> running
    pending|running --pause--> paused
    running|paused|pending --stop--> failed       (terminal)
    running --all entity types done--> completed  (terminal)
    running --unhandled error--> failed           (terminal)

Paused jobs are never resumed; callers resubmit the remaining entity
types as a new job.
"""

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from ..config.settings import JobDefaults
from ..errors import ValidationError
from ..telemetry import get_logger
from .batch import BatchProcessor, BatchResult
from .cancellation import CancellationRegistry, CancellationToken, CancelMode
from .events import EventBus, JobEventKind
from .jobs import (
    SYSTEM_ENTITY,
    HistoryEntry,
    Job,
    JobKind,
    JobOptions,
    JobProgress,
    JobStatus,
    estimate_completion,
    new_job_id,
    utcnow,
)
from .workers import JobHandler

if TYPE_CHECKING:
    from ..persist.job_store import JobStore

logger = get_logger(__name__)

STOPPED_BY_USER = "Job stopped by user"
INTERRUPTED = "Job interrupted by shutdown"

IN_FLIGHT = (JobStatus.PENDING, JobStatus.RUNNING)


class JobOrchestrator:
    """
    Runs sync and embedding jobs as independent asyncio tasks.

    Within a job, entity types, batches and items are processed strictly
    in order. Distinct jobs run concurrently and never touch each
    other's records.
    """

    def __init__(
        self,
        store: "JobStore",
        handlers: Optional[dict[JobKind, JobHandler]] = None,
        registry: Optional[CancellationRegistry] = None,
        events: Optional[EventBus] = None,
        batch_processor: Optional[BatchProcessor] = None,
        defaults: Optional[JobDefaults] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Job record and history persistence
            handlers: Provider and item operation per job kind
            registry: Cancellation tokens (default: new registry)
            events: Lifecycle event bus (default: new bus)
            batch_processor: Item batching (default: BatchProcessor())
            defaults: Default job options
        """
        self.store = store
        self.handlers: dict[JobKind, JobHandler] = dict(handlers or {})
        self.registry = registry or CancellationRegistry()
        self.events = events or EventBus()
        self.batch_processor = batch_processor or BatchProcessor()
        self.defaults = defaults or JobDefaults()

        self._tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Submission and control
    # ------------------------------------------------------------------

    def submit(
        self,
        kind: JobKind | str,
        entity_types: list[str],
        options: Optional[dict] = None,
    ) -> str:
        """
        Create a pending job and schedule its execution.

        Returns without waiting for any processing. Must be called from
        a running event loop.

        Args:
            kind: "sync" or "embedding"
            entity_types: Entity types to process, in order
            options: Job options (batchSize, updatedSince, ...)

        Returns:
            Job ID

        Raises:
            ValidationError: If kind, entity types or options are invalid
        """
        try:
            kind = JobKind(kind)
        except ValueError as e:
            raise ValidationError(f"Unknown job kind: {kind}") from e

        handler = self.handlers.get(kind)
        if handler is None:
            raise ValidationError(f"No handler registered for {kind.value} jobs")

        if isinstance(entity_types, str) or not entity_types:
            raise ValidationError("entity_types must be a non-empty list")
        entity_types = [str(t).strip() for t in entity_types]
        if not all(entity_types):
            raise ValidationError("entity_types must not contain empty names")

        parsed = JobOptions.parse(options)
        if parsed.batch_size is None:
            parsed.batch_size = handler.default_batch_size
        if parsed.retry_attempts is None:
            parsed.retry_attempts = self.defaults.retry_attempts
        if parsed.retry_delay is None:
            parsed.retry_delay = self.defaults.retry_delay

        loop = asyncio.get_running_loop()

        job = Job(
            id=new_job_id(kind),
            kind=kind,
            entity_types=entity_types,
            options=parsed.to_dict(),
        )
        self.store.create(job)
        token = self.registry.register(job.id)

        task = loop.create_task(self._execute(job.id, token), name=f"job:{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))

        logger.info(
            "job_submitted",
            job_id=job.id,
            kind=kind.value,
            entity_types=entity_types,
            batch_size=parsed.batch_size,
        )
        return job.id

    def cancel(self, job_id: str, mode: CancelMode | str = CancelMode.STOP) -> bool:
        """
        Pause or stop a job.

        Signals and removes the job's cancellation token if one is
        registered, then persists the requested status. The running batch
        finishes before the signal is honored. Never raises for unknown
        or already finished jobs.

        Args:
            job_id: Job ID
            mode: "pause" or "stop"

        Returns:
            True if the status change was applied
        """
        mode = CancelMode(mode)
        token_found = self.registry.signal(job_id, mode)

        if mode is CancelMode.PAUSE:
            applied = self.store.transition(job_id, JobStatus.PAUSED)
            action, event = "job_paused", JobEventKind.PAUSED
            details = {"token_found": token_found, "applied": applied}
        else:
            applied = self.store.transition(
                job_id,
                JobStatus.FAILED,
                last_error=STOPPED_BY_USER,
                completed_at=utcnow(),
            )
            action, event = "job_stopped", JobEventKind.STOPPED
            details = {
                "reason": "User requested stop",
                "token_found": token_found,
                "applied": applied,
            }

        if self.store.get(job_id) is None:
            logger.info("cancel_unknown_job", job_id=job_id, mode=mode.value)
            return False

        self.store.append_history(job_id, SYSTEM_ENTITY, action, details)
        if applied:
            self.events.publish(event, job_id)
        logger.info("job_cancel_requested", job_id=job_id, mode=mode.value, applied=applied)
        return applied

    def pause(self, job_id: str) -> bool:
        return self.cancel(job_id, CancelMode.PAUSE)

    def stop(self, job_id: str) -> bool:
        return self.cancel(job_id, CancelMode.STOP)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_progress(self, job_id: str) -> Optional[JobProgress]:
        """
        Get a progress snapshot for a job.

        Returns:
            JobProgress if found, None otherwise
        """
        job = self.store.get(job_id)
        if job is None:
            return None

        error_entries = self.store.get_history(job_id, limit=5, action="entity_error")
        errors = [e.details.get("error", "Unknown error") for e in error_entries]

        eta = None
        if job.status is JobStatus.RUNNING:
            eta = estimate_completion(job.progress, 100, job.started_at)

        return JobProgress.from_job(job, errors=errors, estimated_completion=eta)

    def list_active(self, kind: Optional[JobKind] = None) -> list[JobProgress]:
        """Snapshots of all pending, running or paused jobs."""
        return [
            snapshot
            for snapshot in (self.get_progress(job.id) for job in self.store.list_active(kind))
            if snapshot is not None
        ]

    def get_history(self, job_id: str, limit: int = 100) -> list[HistoryEntry]:
        return self.store.get_history(job_id, limit=limit)

    def health(self) -> dict:
        """Summary of orchestrator state for health endpoints."""
        errors = []
        storage_ok = self.store.ping()
        if not storage_ok:
            errors.append("job store unreachable")
            return {
                "active_jobs": 0,
                "running_jobs": 0,
                "jobs_started_today": 0,
                "last_activity": None,
                "storage_ok": False,
                "errors": errors,
            }

        active = self.store.list_active()
        today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "active_jobs": len(active),
            "running_jobs": sum(1 for j in active if j.status is JobStatus.RUNNING),
            "jobs_started_today": self.store.count_started_since(today.isoformat()),
            "last_activity": self.store.last_activity(),
            "storage_ok": True,
            "errors": errors,
        }

    def cleanup(self, max_age_hours: Optional[float] = None) -> int:
        """Remove finished jobs older than the retention window."""
        if max_age_hours is None:
            max_age_hours = self.defaults.history_retention_hours
        return self.store.cleanup(max_age_hours)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[JobProgress]:
        """
        Wait for a job's background task to finish.

        Returns:
            Final snapshot, or None if the job is unknown
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return self.get_progress(job_id)

    async def shutdown(self) -> None:
        """Cancel all running job tasks and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.events.drain()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, job_id: str, token: CancellationToken) -> None:
        try:
            await self._run(job_id, token)
        except asyncio.CancelledError:
            # A paused job keeps its status; only in-flight work is interrupted
            if self.store.transition(
                job_id,
                JobStatus.FAILED,
                only_from=IN_FLIGHT,
                last_error=INTERRUPTED,
                completed_at=utcnow(),
            ):
                self.store.append_history(job_id, SYSTEM_ENTITY, "job_failed", {"error": INTERRUPTED})
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.exception("job_failed", job_id=job_id, error=message)
            try:
                applied = self.store.transition(
                    job_id, JobStatus.FAILED, last_error=message, completed_at=utcnow()
                )
                if applied:
                    self.store.append_history(job_id, SYSTEM_ENTITY, "job_failed", {"error": message})
            except Exception as store_error:
                logger.error("job_failure_not_persisted", job_id=job_id, error=str(store_error))
                applied = False
            if applied:
                self.events.publish(JobEventKind.FAILED, job_id, error=message)
        finally:
            self.registry.unregister(job_id)

    async def _run(self, job_id: str, token: CancellationToken) -> None:
        job = self.store.get(job_id)
        if job is None:
            raise LookupError(f"Job {job_id} disappeared before it started")

        if token.cancelled:
            self._halt(job_id, token)
            return

        if not self.store.transition(job_id, JobStatus.RUNNING, started_at=utcnow()):
            return

        handler = self.handlers[job.kind]
        options = JobOptions.parse(job.options)

        self.store.append_history(
            job_id,
            SYSTEM_ENTITY,
            "job_start",
            {"entity_types": job.entity_types, "options": job.options},
        )
        self.events.publish(JobEventKind.STARTED, job_id, entity_types=job.entity_types)
        logger.info("job_started", job_id=job_id, kind=job.kind.value)

        totals = BatchResult()
        entity_count = len(job.entity_types)

        for index, entity_type in enumerate(job.entity_types):
            if token.cancelled:
                self._halt(job_id, token)
                return

            self.store.update_progress(
                job_id,
                current_entity_type=entity_type,
                current_entity_progress=0,
                current_entity_total=0,
                progress=round(index / entity_count * 100),
            )

            try:
                result = await self._process_entity_type(
                    job_id, handler, entity_type, options, token, totals, index, entity_count
                )
            except Exception as e:
                message = str(e) or e.__class__.__name__
                totals.errors += 1
                totals.total += 1
                totals.last_error = message
                self.store.update_progress(
                    job_id,
                    total_count=totals.total,
                    error_count=totals.errors,
                    last_error=message,
                )
                self.store.append_history(
                    job_id, entity_type, "entity_error", {"error": message, "level": "entity"}
                )
                self.events.publish(JobEventKind.ERROR, job_id, entity_type=entity_type, error=message)
                logger.warning("entity_type_failed", job_id=job_id, entity_type=entity_type, error=message)
                continue

            totals.processed += result.processed
            totals.errors += result.errors
            totals.skipped += result.skipped
            fields = {
                "processed_count": totals.processed,
                "error_count": totals.errors,
            }
            if result.last_error:
                totals.last_error = result.last_error
                fields["last_error"] = result.last_error
            self.store.update_progress(job_id, **fields)

            if result.errors:
                self.store.append_history(
                    job_id,
                    entity_type,
                    "entity_error",
                    {"error": result.last_error, "errors": result.errors, "level": "item"},
                )

            # Partial counts are kept; the entity type is not reported done
            if result.cancelled:
                self._halt(job_id, token)
                return

            self.store.append_history(
                job_id,
                entity_type,
                "entity_completed",
                {
                    "processed": result.processed,
                    "errors": result.errors,
                    "skipped": result.skipped,
                },
            )
            self.events.publish(
                JobEventKind.ENTITY_COMPLETED,
                job_id,
                entity_type=entity_type,
                processed=result.processed,
                errors=result.errors,
            )

        if token.cancelled:
            self._halt(job_id, token)
            return

        if self.store.transition(job_id, JobStatus.COMPLETED, progress=100, completed_at=utcnow()):
            self.store.append_history(
                job_id,
                SYSTEM_ENTITY,
                "job_complete",
                {"total_processed": totals.processed, "total_errors": totals.errors},
            )
            self.events.publish(
                JobEventKind.COMPLETED, job_id, processed=totals.processed, errors=totals.errors
            )
            logger.info(
                "job_completed",
                job_id=job_id,
                processed=totals.processed,
                errors=totals.errors,
            )

    async def _process_entity_type(
        self,
        job_id: str,
        handler: JobHandler,
        entity_type: str,
        options: JobOptions,
        token: CancellationToken,
        totals: BatchResult,
        index: int,
        entity_count: int,
    ) -> BatchResult:
        operation = handler.operation_for(entity_type)

        page_filter = {}
        if options.updated_since:
            page_filter["updated_since"] = options.updated_since

        items = await handler.provider.fetch_page(entity_type, page_filter)

        # Observed totals are persisted before any item is counted
        totals.total += len(items)
        self.store.update_progress(
            job_id,
            total_count=totals.total,
            current_entity_total=len(items),
        )

        def on_progress(handled: int, total: int) -> None:
            fraction = handled / total if total else 1.0
            self.store.update_progress(
                job_id,
                current_entity_progress=handled,
                current_entity_total=total,
                progress=min(99, int((index + fraction) / entity_count * 100)),
            )

        return await self.batch_processor.run(
            items,
            options.batch_size or handler.default_batch_size,
            operation,
            token,
            on_progress,
        )

    def _halt(self, job_id: str, token: CancellationToken) -> None:
        """Persist the status matching a signaled token if cancel() has not."""
        target = JobStatus.PAUSED if token.mode is CancelMode.PAUSE else JobStatus.FAILED

        fields = {}
        if target is JobStatus.FAILED:
            fields = {"last_error": STOPPED_BY_USER, "completed_at": utcnow()}
        self.store.transition(job_id, target, only_from=IN_FLIGHT, **fields)

        logger.info("job_halted", job_id=job_id, mode=token.mode.value if token.mode else None)

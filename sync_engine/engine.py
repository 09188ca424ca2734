"""
Engine facade: wires stores, orchestrator and search from settings.

This is the interface offered to callers such as the HTTP control API
or a tool layer.
"""

from pathlib import Path
from typing import Callable, Optional, Sequence

from .ops import (
    CancelMode,
    EventBus,
    HistoryEntry,
    JobHandler,
    JobKind,
    JobOrchestrator,
    JobProgress,
    upsert_operation,
)
from .ops.events import Handler, JobEventKind
from .adapters.base import EntityProvider, Upserter
from .config.settings import Settings
from .errors import UnsupportedEntityType
from .persist.job_store import JobStore
from .search import SearchResult, SemanticSearchService, VectorIndex, VectorRecord, build_vectorizer
from .search.vectorizer import Vectorizer
from .telemetry import configure_logging, get_logger

logger = get_logger(__name__)


class Engine:
    """
    Entry point for job control and semantic search.

    Sync jobs read from `provider` and write through `upserter`.
    Embedding jobs read from `embedding_source`, which defaults to the
    upserter when it can serve records back (a local store), otherwise
    to the provider.
    """

    def __init__(
        self,
        provider: EntityProvider,
        upserter: Upserter,
        settings: Optional[Settings] = None,
        vectorizer: Optional[Vectorizer] = None,
        embedding_source: Optional[EntityProvider] = None,
        db_path: Optional[Path | str] = None,
    ):
        self.settings = settings or Settings()
        configure_logging(self.settings.server.log_level)

        db_path = db_path or self.settings.storage.db_path
        self.store = JobStore(db_path)
        self.index = VectorIndex(db_path, enabled=self.settings.search.vector_enabled)

        self.vectorizer = vectorizer or build_vectorizer(
            self.settings.search.vectorizer,
            dimensions=self.settings.search.dimensions,
            model_name=self.settings.search.model_name,
        )
        self.search_service = SemanticSearchService(self.index, self.vectorizer)

        self.provider = provider
        self.upserter = upserter

        if embedding_source is None:
            embedding_source = upserter if isinstance(upserter, EntityProvider) else provider

        jobs = self.settings.jobs
        self.events = EventBus()
        self.orchestrator = JobOrchestrator(
            self.store,
            handlers={
                JobKind.SYNC: JobHandler(
                    provider=provider,
                    operation_for=upsert_operation(upserter),
                    default_batch_size=jobs.sync_batch_size,
                ),
                JobKind.EMBEDDING: self.search_service.job_handler(
                    embedding_source, default_batch_size=jobs.embedding_batch_size
                ),
            },
            events=self.events,
            defaults=jobs,
        )

        logger.info(
            "engine_initialized",
            db_path=str(db_path),
            vectorizer=self.vectorizer.model_name,
            vector_enabled=self.index.enabled,
        )

    # Jobs

    def submit_job(self, kind: JobKind | str, entity_types: list[str], options: Optional[dict] = None) -> str:
        return self.orchestrator.submit(kind, entity_types, options)

    def pause_job(self, job_id: str) -> bool:
        return self.orchestrator.cancel(job_id, CancelMode.PAUSE)

    def stop_job(self, job_id: str) -> bool:
        return self.orchestrator.cancel(job_id, CancelMode.STOP)

    def get_job_progress(self, job_id: str) -> Optional[JobProgress]:
        return self.orchestrator.get_progress(job_id)

    def list_active_jobs(self, kind: Optional[JobKind | str] = None) -> list[JobProgress]:
        return self.orchestrator.list_active(JobKind(kind) if kind else None)

    def get_job_history(self, job_id: str, limit: int = 100) -> list[HistoryEntry]:
        return self.orchestrator.get_history(job_id, limit)

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> Optional[JobProgress]:
        return await self.orchestrator.wait(job_id, timeout)

    def subscribe(self, kind: JobEventKind | str, handler: Handler) -> Callable[[], None]:
        return self.events.subscribe(kind, handler)

    def cleanup(self, max_age_hours: Optional[float] = None) -> int:
        return self.orchestrator.cleanup(max_age_hours)

    def health(self) -> dict:
        status = self.orchestrator.health()
        status["vector_enabled"] = self.index.enabled
        status["vectorizer"] = self.vectorizer.model_name
        status["vectorizer_available"] = self.vectorizer.is_available()
        status["vector_count"] = self.index.count()
        return status

    async def sync_entity(self, entity_type: str, entity_id: str) -> Optional[bool]:
        """
        Sync one entity by id right away, bypassing the job queue.

        No job record or history entry is created.

        Args:
            entity_type: Entity type, e.g. "features"
            entity_id: Entity ID at the provider

        Returns:
            Result of the upsert, or None if the provider has no such entity

        Raises:
            UnsupportedEntityType: If the type cannot be fetched or written
        """
        if not self.upserter.supports(entity_type):
            raise UnsupportedEntityType(entity_type)

        record = await self.provider.fetch_one(entity_type, entity_id)
        if record is None:
            logger.info("entity_sync_not_found", entity_type=entity_type, entity_id=entity_id)
            return None

        synced = await self.upserter.apply(entity_type, record)
        logger.info("entity_synced", entity_type=entity_type, entity_id=entity_id, synced=synced)
        return synced

    # Vectors

    def find_similar(
        self,
        entity_type: str,
        entity_id: str,
        entity_types: Optional[Sequence[str]] = None,
        limit: int = 5,
        threshold: float = 0.6,
    ) -> Optional[list[SearchResult]]:
        """
        Find entities similar to a stored entity.

        Uses the entity's stored vector as the query; the entity itself
        is never part of the results.

        Returns:
            Matches best first, or None if the entity has no stored vector
        """
        source = self.index.get(entity_type, entity_id)
        if source is None:
            return None

        results = self.index.search(
            source.vector,
            list(entity_types or []),
            limit + 1,
            threshold,
            query_text=source.source_text,
        )
        return [
            r for r in results
            if not (r.entity_type == entity_type and r.entity_id == entity_id)
        ][:limit]

    def search(
        self,
        query: str | Sequence[float],
        entity_types: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[SearchResult]:
        search_cfg = self.settings.search
        return self.search_service.search(
            query,
            entity_types,
            limit if limit is not None else search_cfg.default_limit,
            threshold if threshold is not None else search_cfg.default_threshold,
        )

    def upsert_vector(
        self,
        entity_type: str,
        entity_id: str,
        vector: Optional[Sequence[float]],
        text: str,
        metadata: Optional[dict] = None,
    ) -> VectorRecord:
        """Store a vector; when vector is None the text is vectorized."""
        if vector is None:
            return self.search_service.embed_entity(entity_type, entity_id, text, metadata)
        return self.index.upsert(entity_type, entity_id, vector, text, metadata)

    def get_vector(self, entity_type: str, entity_id: str) -> Optional[VectorRecord]:
        return self.index.get(entity_type, entity_id)

    def delete_vector(self, entity_type: str, entity_id: str) -> bool:
        return self.index.delete(entity_type, entity_id)

    async def close(self) -> None:
        """Stop running jobs and close storage."""
        await self.orchestrator.shutdown()
        self.store.close()
        self.index.close()

"""Main FastAPI application: HTTP control surface for the engine."""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request

from .. import __version__
from ..adapters import LocalEntityStore, StaticEntityProvider
from ..config import load_settings
from ..engine import Engine
from ..errors import UnsupportedEntityType, ValidationError, VectorBackendUnavailable
from ..ops.jobs import JobKind, JobStatus
from ..telemetry import get_logger
from .schemas import (
    EntitySyncResponse,
    HealthResponse,
    HistoryEntryResponse,
    JobControlResponse,
    JobHistoryResponse,
    JobListResponse,
    JobProgressResponse,
    JobSubmitRequest,
    JobSubmitResponse,
    SearchRequest,
    SearchResponse,
    SearchResultResponse,
    SimilarRequest,
    SimilarResponse,
    VectorDeleteResponse,
    VectorResponse,
    VectorUpsertRequest,
)

logger = get_logger(__name__)


def _load_source_records(path: Optional[str]) -> dict[str, list[dict]]:
    if not path:
        return {}
    with open(Path(path), "r", encoding="utf-8") as f:
        return json.load(f)


def build_default_engine() -> Engine:
    """
    Engine for standalone serving.

    Sync jobs read records from the JSON file at `storage.source_path`
    and write them into an in-process local store, which embedding jobs
    then read.
    """
    settings = load_settings()
    provider = StaticEntityProvider(_load_source_records(settings.storage.source_path))
    return Engine(provider, LocalEntityStore(), settings=settings)


def create_app(engine: Optional[Engine] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        engine: Engine to serve (default: built from settings on startup)

    Returns:
        FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine or build_default_engine()
        logger.info("api_started")
        try:
            yield
        finally:
            await app.state.engine.close()
            logger.info("api_stopped")

    app = FastAPI(
        title="Entity Sync Engine API",
        description="Background sync and embedding jobs with semantic search",
        version=__version__,
        lifespan=lifespan,
    )
    _register_routes(app)
    return app


def get_engine(request: Request) -> Engine:
    """Dependency to get the engine."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _progress_or_404(engine: Engine, job_id: str) -> JobProgressResponse:
    progress = engine.get_job_progress(job_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return JobProgressResponse(**progress.to_dict())


def _register_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse)
    async def health(engine: Engine = Depends(get_engine)):
        """Health check endpoint."""
        components = engine.health()
        return HealthResponse(
            status="ok" if components["storage_ok"] else "degraded",
            version=__version__,
            components=components,
        )

    # ===== Jobs =====

    @app.post("/jobs", response_model=JobSubmitResponse, status_code=202)
    async def submit_job(request: JobSubmitRequest, engine: Engine = Depends(get_engine)):
        """
        Start a sync or embedding job.

        Refuses with 409 while another job of the same kind is pending
        or running, unless `force` is set.
        """
        try:
            kind = JobKind(request.kind)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown job kind: {request.kind}")

        if not request.force:
            busy = [
                job.job_id
                for job in engine.list_active_jobs(kind)
                if job.status in (JobStatus.PENDING.value, JobStatus.RUNNING.value)
            ]
            if busy:
                raise HTTPException(
                    status_code=409,
                    detail=f"A {kind.value} job is already running: {busy[0]}",
                )

        try:
            job_id = engine.submit_job(kind, request.entity_types, request.options)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=str(e))

        return JobSubmitResponse(job_id=job_id, kind=kind.value)

    @app.get("/jobs", response_model=JobListResponse)
    async def list_jobs(kind: Optional[str] = None, engine: Engine = Depends(get_engine)):
        """
        List active jobs.

        Query params:
            kind: Filter by job kind (sync, embedding)
        """
        if kind is not None and kind not in {k.value for k in JobKind}:
            raise HTTPException(status_code=422, detail=f"Unknown job kind: {kind}")

        return JobListResponse(
            jobs=[JobProgressResponse(**p.to_dict()) for p in engine.list_active_jobs(kind)]
        )

    @app.get("/jobs/{job_id}", response_model=JobProgressResponse)
    async def get_job(job_id: str, engine: Engine = Depends(get_engine)):
        """Get progress of a job."""
        return _progress_or_404(engine, job_id)

    @app.get("/jobs/{job_id}/history", response_model=JobHistoryResponse)
    async def get_job_history(job_id: str, limit: int = 100, engine: Engine = Depends(get_engine)):
        """Get a job's history, newest first."""
        _progress_or_404(engine, job_id)
        entries = engine.get_job_history(job_id, limit=limit)
        return JobHistoryResponse(
            job_id=job_id,
            entries=[HistoryEntryResponse(**e.to_dict()) for e in entries],
        )

    @app.post("/jobs/{job_id}/pause", response_model=JobControlResponse)
    async def pause_job(job_id: str, engine: Engine = Depends(get_engine)):
        """Pause a job. The running batch finishes first."""
        _progress_or_404(engine, job_id)
        applied = engine.pause_job(job_id)
        return JobControlResponse(
            job_id=job_id, applied=applied, status=engine.get_job_progress(job_id).status
        )

    @app.post("/jobs/{job_id}/stop", response_model=JobControlResponse)
    async def stop_job(job_id: str, engine: Engine = Depends(get_engine)):
        """Stop a job. Stopped jobs end as failed."""
        _progress_or_404(engine, job_id)
        applied = engine.stop_job(job_id)
        return JobControlResponse(
            job_id=job_id, applied=applied, status=engine.get_job_progress(job_id).status
        )

    # ===== Search and vectors =====

    @app.post("/search", response_model=SearchResponse)
    async def search(request: SearchRequest, engine: Engine = Depends(get_engine)):
        """Semantic search by query text or vector."""
        if request.vector is not None:
            query = request.vector
        elif request.query and request.query.strip():
            query = request.query
        else:
            raise HTTPException(status_code=422, detail="Either query or vector is required")

        # Text queries are vectorized off the event loop
        results = await asyncio.to_thread(
            engine.search, query, request.entity_types, request.limit, request.threshold
        )
        return SearchResponse(
            results=[SearchResultResponse(**r.to_dict()) for r in results],
            count=len(results),
        )

    @app.put("/vectors/{entity_type}/{entity_id}", response_model=VectorResponse)
    async def put_vector(
        entity_type: str,
        entity_id: str,
        request: VectorUpsertRequest,
        engine: Engine = Depends(get_engine),
    ):
        """Store a vector for an entity, generating it from text if omitted."""
        try:
            record = await asyncio.to_thread(
                engine.upsert_vector,
                entity_type,
                entity_id,
                request.vector,
                request.text,
                request.metadata,
            )
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except VectorBackendUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))
        return VectorResponse(**record.to_dict())

    @app.get("/vectors/{entity_type}/{entity_id}", response_model=VectorResponse)
    async def get_vector(entity_type: str, entity_id: str, engine: Engine = Depends(get_engine)):
        """Get the stored vector for an entity."""
        record = engine.get_vector(entity_type, entity_id)
        if record is None:
            raise HTTPException(
                status_code=404, detail=f"Vector not found: {entity_type}/{entity_id}"
            )
        return VectorResponse(**record.to_dict())

    @app.delete("/vectors/{entity_type}/{entity_id}", response_model=VectorDeleteResponse)
    async def delete_vector(entity_type: str, entity_id: str, engine: Engine = Depends(get_engine)):
        """Delete the stored vector for an entity."""
        return VectorDeleteResponse(deleted=engine.delete_vector(entity_type, entity_id))

    @app.post("/vectors/{entity_type}/{entity_id}/similar", response_model=SimilarResponse)
    async def find_similar(
        entity_type: str,
        entity_id: str,
        request: SimilarRequest,
        engine: Engine = Depends(get_engine),
    ):
        """Find entities similar to a stored entity, excluding the entity itself."""
        results = engine.find_similar(
            entity_type, entity_id, request.entity_types, request.limit, request.threshold
        )
        if results is None:
            raise HTTPException(
                status_code=404, detail=f"Vector not found: {entity_type}/{entity_id}"
            )
        return SimilarResponse(
            entity_type=entity_type,
            entity_id=entity_id,
            results=[SearchResultResponse(**r.to_dict()) for r in results],
            count=len(results),
        )

    # ===== Entities =====

    @app.post("/entities/{entity_type}/{entity_id}/sync", response_model=EntitySyncResponse)
    async def sync_entity(entity_type: str, entity_id: str, engine: Engine = Depends(get_engine)):
        """Sync one entity right away, bypassing the job queue."""
        try:
            synced = await engine.sync_entity(entity_type, entity_id)
        except (UnsupportedEntityType, ValueError) as e:
            raise HTTPException(status_code=422, detail=str(e))
        if synced is None:
            raise HTTPException(
                status_code=404, detail=f"Entity not found: {entity_type}/{entity_id}"
            )
        return EntitySyncResponse(entity_type=entity_type, entity_id=entity_id, synced=synced)


app = create_app()

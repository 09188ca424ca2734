"""
Pydantic schemas for FastAPI endpoints.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class JobSubmitRequest(BaseModel):
    """Request model for POST /jobs."""

    kind: str = Field(..., description="Job kind: sync or embedding")
    entity_types: List[str] = Field(..., description="Entity types to process, in order")
    options: Dict[str, Any] = Field(default_factory=dict, description="Job options (batchSize, updatedSince, ...)")
    force: bool = Field(default=False, description="Submit even if a job of the same kind is running")


class JobSubmitResponse(BaseModel):
    """Response model for POST /jobs."""

    job_id: str = Field(..., description="Job ID for tracking")
    kind: str = Field(..., description="Job kind")
    status: str = Field(default="pending", description="Initial job status")
    message: str = Field(default="Job queued", description="Status message")


class JobProgressResponse(BaseModel):
    """Progress snapshot for one job."""

    job_id: str = Field(..., description="Job ID")
    kind: str = Field(..., description="Job kind")
    status: str = Field(..., description="Job status: pending, running, paused, completed, failed")
    progress: int = Field(..., description="Progress from 0 to 100")
    entity_types: List[str] = Field(default_factory=list, description="Entity types in processing order")
    current_entity_type: Optional[str] = Field(default=None, description="Entity type being processed")
    current_entity_progress: int = Field(default=0, description="Items handled in the current entity type")
    current_entity_total: int = Field(default=0, description="Items in the current entity type")
    total_count: int = Field(default=0, description="Items observed so far")
    processed_count: int = Field(default=0, description="Items processed successfully")
    error_count: int = Field(default=0, description="Items or entity types that failed")
    last_error: Optional[str] = Field(default=None, description="Most recent error message")
    started_at: Optional[str] = Field(default=None, description="ISO timestamp when job started")
    completed_at: Optional[str] = Field(default=None, description="ISO timestamp when job finished")
    estimated_completion: Optional[str] = Field(default=None, description="Extrapolated completion time")
    errors: List[str] = Field(default_factory=list, description="Recent entity error messages")


class JobListResponse(BaseModel):
    """Response model for GET /jobs."""

    jobs: List[JobProgressResponse] = Field(..., description="Active jobs, newest first")


class HistoryEntryResponse(BaseModel):
    """One job history entry."""

    id: Optional[int] = Field(default=None, description="Entry ID")
    job_id: str = Field(..., description="Job ID")
    entity_type: str = Field(..., description="Entity type, or 'system' for job-level entries")
    action: str = Field(..., description="History action")
    details: Dict[str, Any] = Field(default_factory=dict, description="Action details")
    timestamp: str = Field(..., description="ISO timestamp")


class JobHistoryResponse(BaseModel):
    """Response model for GET /jobs/{job_id}/history."""

    job_id: str = Field(..., description="Job ID")
    entries: List[HistoryEntryResponse] = Field(..., description="History entries, newest first")


class JobControlResponse(BaseModel):
    """Response model for pause and stop."""

    job_id: str = Field(..., description="Job ID")
    applied: bool = Field(..., description="Whether the status change was applied")
    status: Optional[str] = Field(default=None, description="Job status after the request")


class SearchRequest(BaseModel):
    """Request model for POST /search."""

    query: Optional[str] = Field(default=None, description="Query text")
    vector: Optional[List[float]] = Field(default=None, description="Query vector, used instead of text")
    entity_types: List[str] = Field(default_factory=list, description="Entity types to search (empty = all)")
    limit: Optional[int] = Field(default=None, ge=1, description="Maximum results")
    threshold: Optional[float] = Field(default=None, description="Minimum similarity")


class SearchResultResponse(BaseModel):
    """One search match."""

    entity_type: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity ID")
    similarity: float = Field(..., description="Cosine similarity")
    text: str = Field(..., description="Source text")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Stored metadata")


class SearchResponse(BaseModel):
    """Response model for POST /search."""

    results: List[SearchResultResponse] = Field(..., description="Matches, best first")
    count: int = Field(..., description="Number of matches")


class VectorUpsertRequest(BaseModel):
    """Request model for PUT /vectors/{entity_type}/{entity_id}."""

    text: str = Field(..., description="Source text")
    vector: Optional[List[float]] = Field(default=None, description="Vector; generated from text when omitted")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Metadata stored with the vector")


class VectorResponse(BaseModel):
    """Stored vector record."""

    entity_type: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity ID")
    vector: List[float] = Field(..., description="Unit-normalized vector")
    dimensions: int = Field(..., description="Vector length")
    source_text: str = Field(..., description="Text the vector was generated from")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Stored metadata")
    model: Optional[str] = Field(default=None, description="Vectorizer model name")
    created_at: str = Field(..., description="ISO timestamp of first write")
    updated_at: Optional[str] = Field(default=None, description="ISO timestamp of last write")


class VectorDeleteResponse(BaseModel):
    """Response model for DELETE /vectors/{entity_type}/{entity_id}."""

    deleted: bool = Field(..., description="Whether a record was removed")


class SimilarRequest(BaseModel):
    """Request model for POST /vectors/{entity_type}/{entity_id}/similar."""

    entity_types: List[str] = Field(default_factory=list, description="Entity types to search within (empty = all)")
    limit: int = Field(default=5, ge=1, le=20, description="Maximum similar entities")
    threshold: float = Field(default=0.6, ge=0.0, le=1.0, description="Minimum similarity")


class SimilarResponse(BaseModel):
    """Entities similar to a stored entity, excluding the entity itself."""

    entity_type: str = Field(..., description="Source entity type")
    entity_id: str = Field(..., description="Source entity ID")
    results: List[SearchResultResponse] = Field(..., description="Matches, best first")
    count: int = Field(..., description="Number of matches")


class EntitySyncResponse(BaseModel):
    """Response model for POST /entities/{entity_type}/{entity_id}/sync."""

    entity_type: str = Field(..., description="Entity type")
    entity_id: str = Field(..., description="Entity ID")
    synced: bool = Field(..., description="False if the destination rejected the record")


class HealthResponse(BaseModel):
    """Response model for /health endpoint."""

    status: str = Field(..., description="Service status: ok or degraded")
    version: str = Field(..., description="Engine version")
    components: Dict[str, Any] = Field(default_factory=dict, description="Component state")

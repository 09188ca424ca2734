"""
Semantic search service.

Binds a vectorizer to the vector index: supplies the item operation for
embedding jobs and answers text or vector queries.
"""

import asyncio
from typing import TYPE_CHECKING, Optional, Sequence

from ..errors import ItemSkipped, VectorBackendUnavailable
from ..ops.batch import ItemOperation
from ..ops.cancellation import CancellationToken
from ..ops.workers import JobHandler, entity_text
from ..telemetry import get_logger
from .vector_index import SearchResult, VectorIndex, VectorRecord
from .vectorizer import Vectorizer

if TYPE_CHECKING:
    from ..adapters.base import EntityProvider

logger = get_logger(__name__)


class SemanticSearchService:
    """Embedding generation and similarity search over entities."""

    def __init__(self, index: VectorIndex, vectorizer: Vectorizer):
        self.index = index
        self.vectorizer = vectorizer

    def job_handler(self, provider: "EntityProvider", default_batch_size: int = 10) -> JobHandler:
        """Handler that runs embedding generation as an orchestrated job."""
        return JobHandler(
            provider=provider,
            operation_for=self.operation_for,
            default_batch_size=default_batch_size,
        )

    def operation_for(self, entity_type: str) -> ItemOperation:
        """
        Item operation embedding one entity record.

        Records without name or description text are skipped.
        """
        async def embed_record(record: dict, token: Optional[CancellationToken] = None) -> bool:
            text = entity_text(record)
            if not text:
                raise ItemSkipped(f"{entity_type} {record.get('id')} has no text to embed")

            # Vectorization may be CPU-bound
            vector = await asyncio.to_thread(self.vectorizer.embed, text)
            self.index.upsert(
                entity_type,
                str(record["id"]),
                vector,
                text,
                metadata={"name": record.get("name")},
                model=self.vectorizer.model_name,
            )
            return True

        return embed_record

    def embed_entity(
        self,
        entity_type: str,
        entity_id: str,
        text: str,
        metadata: Optional[dict] = None,
    ) -> VectorRecord:
        """Vectorize text and store it for an entity."""
        vector = self.vectorizer.embed(text)
        return self.index.upsert(
            entity_type, entity_id, vector, text, metadata, model=self.vectorizer.model_name
        )

    def search(
        self,
        query: str | Sequence[float],
        entity_types: Optional[Sequence[str]] = None,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> list[SearchResult]:
        """
        Find entities similar to a query text or vector.

        Text queries are vectorized first; if the vectorizer is
        unavailable, the index's text fallback is used instead.

        Args:
            query: Query text or query vector
            entity_types: Restrict to these entity types (empty = all)
            limit: Maximum results
            threshold: Minimum similarity

        Returns:
            List of SearchResult, best first
        """
        entity_types = list(entity_types or [])

        if not isinstance(query, str):
            return self.index.search(query, entity_types, limit, threshold)

        try:
            query_vector = self.vectorizer.embed(query)
        except VectorBackendUnavailable as e:
            logger.warning("query_vectorizer_unavailable", error=str(e))
            return self.index.text_search(query, entity_types, limit)

        return self.index.search(query_vector, entity_types, limit, threshold, query_text=query)

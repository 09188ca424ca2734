"""
Vector index - unit vectors keyed by (entity_type, entity_id).

Vectors are stored as float64 bytes in SQLite. Similarity search is a
brute-force cosine scan in numpy, with a case-insensitive substring
match over the source text when vector search is unavailable.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Optional, Sequence

import numpy as np

from ..errors import VectorBackendUnavailable
from ..ops.jobs import utcnow
from ..persist.sqlite_store import SQLiteStore
from ..telemetry import get_logger
from .vectorizer import normalize

logger = get_logger(__name__)

FALLBACK_SIMILARITY = 0.8     # Static score for text matches
SIMILARITY_EPSILON = 1e-6


@dataclass
class VectorRecord:
    """Stored vector for one entity."""

    entity_type: str
    entity_id: str
    vector: list[float]
    source_text: str
    metadata: Optional[dict] = None
    model: Optional[str] = None
    created_at: str = field(default_factory=utcnow)
    updated_at: Optional[str] = None

    @property
    def dimensions(self) -> int:
        return len(self.vector)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["dimensions"] = self.dimensions
        return data


@dataclass
class SearchResult:
    """One ranked match."""

    entity_type: str
    entity_id: str
    similarity: float
    text: str
    metadata: Optional[dict] = None

    def to_dict(self) -> dict:
        return asdict(self)


class VectorIndex(SQLiteStore):
    """
    Exclusive owner of vector records.

    Upserts are last-write-wins per key; a key keeps its original storage
    position, which breaks similarity ties in search.
    """

    SCHEMA = [
        """
        CREATE TABLE IF NOT EXISTS vectors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            vector BLOB NOT NULL,
            dimensions INTEGER NOT NULL,
            source_text TEXT NOT NULL,
            metadata TEXT,
            model TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(entity_type, entity_id)
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_vectors_entity_type ON vectors(entity_type)",
    ]

    def __init__(self, db_path: Path | str, enabled: bool = True):
        """
        Initialize vector index.

        Args:
            db_path: Path to SQLite database file
            enabled: Whether vector similarity is available; when False,
                search falls back to text matching
        """
        super().__init__(db_path)
        self.enabled = enabled

    @staticmethod
    def _row_to_record(row) -> VectorRecord:
        return VectorRecord(
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            vector=np.frombuffer(row["vector"], dtype=np.float64).tolist(),
            source_text=row["source_text"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else None,
            model=row["model"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def upsert(
        self,
        entity_type: str,
        entity_id: str,
        vector: Sequence[float],
        source_text: str,
        metadata: Optional[dict] = None,
        model: Optional[str] = None,
    ) -> VectorRecord:
        """
        Store a vector, replacing any existing record for the key.

        Non-zero vectors are normalized to unit length before storage.

        Args:
            entity_type: Entity category
            entity_id: Entity identifier
            vector: Raw vector
            source_text: Text the vector was generated from
            metadata: Optional JSON-serializable metadata
            model: Vectorizer model name

        Returns:
            The stored VectorRecord
        """
        arr = normalize(vector)
        if arr.ndim != 1 or arr.size == 0:
            raise ValueError("vector must be a non-empty 1-D sequence")
        if not np.all(np.isfinite(arr)):
            raise ValueError("vector contains non-finite values")

        now = utcnow()
        entity_id = str(entity_id)
        self._execute(
            """
            INSERT INTO vectors
                (entity_type, entity_id, vector, dimensions, source_text,
                 metadata, model, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(entity_type, entity_id) DO UPDATE SET
                vector = excluded.vector,
                dimensions = excluded.dimensions,
                source_text = excluded.source_text,
                metadata = excluded.metadata,
                model = excluded.model,
                updated_at = excluded.updated_at
            """,
            (
                entity_type,
                entity_id,
                arr.astype(np.float64).tobytes(),
                int(arr.size),
                source_text,
                json.dumps(metadata, default=str) if metadata is not None else None,
                model,
                now,
                now,
            ),
        )
        return self.get(entity_type, entity_id)

    def get(self, entity_type: str, entity_id: str) -> Optional[VectorRecord]:
        row = self._fetchone(
            "SELECT * FROM vectors WHERE entity_type = ? AND entity_id = ?",
            (entity_type, str(entity_id)),
        )
        return self._row_to_record(row) if row else None

    def delete(self, entity_type: str, entity_id: str) -> bool:
        """
        Delete a vector record.

        Returns:
            True if deleted, False if not found
        """
        cursor = self._execute(
            "DELETE FROM vectors WHERE entity_type = ? AND entity_id = ?",
            (entity_type, str(entity_id)),
        )
        return cursor.rowcount > 0

    def count(self, entity_type: Optional[str] = None) -> int:
        if entity_type is None:
            row = self._fetchone("SELECT COUNT(*) AS n FROM vectors")
        else:
            row = self._fetchone(
                "SELECT COUNT(*) AS n FROM vectors WHERE entity_type = ?", (entity_type,)
            )
        return row["n"]

    def _scan(self, type_filter: Optional[Sequence[str]]) -> list:
        sql = "SELECT * FROM vectors"
        params: list[Any] = []
        if type_filter:
            sql += f" WHERE entity_type IN ({', '.join('?' for _ in type_filter)})"
            params.extend(type_filter)
        sql += " ORDER BY id"
        return self._fetchall(sql, params)

    def search(
        self,
        query_vector: Sequence[float],
        type_filter: Optional[Sequence[str]] = None,
        limit: int = 10,
        threshold: float = 0.7,
        query_text: Optional[str] = None,
    ) -> list[SearchResult]:
        """
        Rank stored records by cosine similarity to a query vector.

        Keeps records with similarity >= threshold, sorted descending with
        ties in storage order, truncated to limit. If vector search is
        unavailable and query_text is given, falls back to text_search().

        Args:
            query_vector: Query embedding
            type_filter: Entity types to consider (empty = all)
            limit: Maximum results
            threshold: Minimum similarity
            query_text: Text for the fallback match

        Returns:
            List of SearchResult, best first
        """
        try:
            return self._vector_search(query_vector, type_filter, limit, threshold)
        except VectorBackendUnavailable as e:
            logger.warning("vector_search_unavailable", error=str(e), fallback=query_text is not None)
            if query_text is None:
                return []
            return self.text_search(query_text, type_filter, limit)

    def _vector_search(
        self,
        query_vector: Sequence[float],
        type_filter: Optional[Sequence[str]],
        limit: int,
        threshold: float,
    ) -> list[SearchResult]:
        if not self.enabled:
            raise VectorBackendUnavailable("vector search is disabled")
        if limit <= 0:
            return []

        query = normalize(query_vector)
        query_norm = np.linalg.norm(query)

        scored = []
        for row in self._scan(type_filter):
            stored = normalize(np.frombuffer(row["vector"], dtype=np.float64))
            if stored.size != query.size or query_norm == 0 or not np.any(stored):
                similarity = 0.0
            else:
                similarity = float(np.clip(np.dot(stored, query), -1.0, 1.0))

            if similarity >= threshold - SIMILARITY_EPSILON:
                scored.append(
                    SearchResult(
                        entity_type=row["entity_type"],
                        entity_id=row["entity_id"],
                        similarity=similarity,
                        text=row["source_text"],
                        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
                    )
                )

        # sorted() is stable, so equal scores keep scan order
        scored = sorted(scored, key=lambda r: -r.similarity)
        return scored[:limit]

    def text_search(
        self,
        query_text: str,
        type_filter: Optional[Sequence[str]] = None,
        limit: int = 10,
    ) -> list[SearchResult]:
        """
        Case-insensitive substring match over source text.

        Every match scores FALLBACK_SIMILARITY; results keep storage order.
        """
        needle = (query_text or "").strip().lower()
        if not needle or limit <= 0:
            return []

        results = []
        for row in self._scan(type_filter):
            if needle in row["source_text"].lower():
                results.append(
                    SearchResult(
                        entity_type=row["entity_type"],
                        entity_id=row["entity_id"],
                        similarity=FALLBACK_SIMILARITY,
                        text=row["source_text"],
                        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
                    )
                )
                if len(results) >= limit:
                    break
        return results

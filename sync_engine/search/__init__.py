"""
Vector storage, vectorizers and semantic search.
"""

from .vectorizer import Vectorizer, HashVectorizer, SentenceTransformerVectorizer, build_vectorizer, normalize
from .vector_index import VectorIndex, VectorRecord, SearchResult, FALLBACK_SIMILARITY
from .service import SemanticSearchService

__all__ = [
    "Vectorizer",
    "HashVectorizer",
    "SentenceTransformerVectorizer",
    "build_vectorizer",
    "normalize",
    "VectorIndex",
    "VectorRecord",
    "SearchResult",
    "FALLBACK_SIMILARITY",
    "SemanticSearchService",
]

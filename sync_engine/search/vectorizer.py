"""
Vectorizers: text -> fixed-length float vectors.

The orchestration and search code only depend on the `Vectorizer`
interface, so a production embedding model can replace the hash
vectorizer without touching either.
"""

import importlib.util
import math
from abc import ABC, abstractmethod
from functools import lru_cache

import numpy as np

from ..errors import VectorBackendUnavailable
from ..telemetry import get_logger

logger = get_logger(__name__)


class Vectorizer(ABC):
    """Abstract base class for text vectorizers."""

    model_name: str = "unknown"
    dimensions: int = 0

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """
        Map text to a vector of length `dimensions`.

        Identical input must produce identical output.

        Raises:
            VectorBackendUnavailable: If the backend cannot be used
        """
        pass

    def is_available(self) -> bool:
        """Check if the vectorizer is available and ready to use."""
        return True


def normalize(vector) -> np.ndarray:
    """Scale a vector to unit length; zero vectors are returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    if norm == 0 or not math.isfinite(norm):
        return arr
    return arr / norm


class HashVectorizer(Vectorizer):
    """
    Deterministic character-hash embedding.

    Not semantically meaningful; useful as a dependency-free default and
    for tests. Words contribute a sine of each character code at a bucket
    derived from the character and its position.
    """

    model_name = "simple-hash"

    def __init__(self, dimensions: int = 384):
        if dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        vector = np.zeros(self.dimensions, dtype=np.float64)
        words = text.lower().split()

        for i, word in enumerate(words):
            for j, char in enumerate(word):
                code = ord(char)
                vector[(code + i * j) % self.dimensions] += math.sin(code * 0.1) * 0.1

        return normalize(vector).tolist()


@lru_cache(maxsize=4)
def _load_model(model_name: str, device: str):
    from sentence_transformers import SentenceTransformer

    logger.info("loading_embedding_model", model=model_name, device=device)
    return SentenceTransformer(model_name, device=device)


class SentenceTransformerVectorizer(Vectorizer):
    """
    Embeddings from a sentence-transformers model.

    Requires the `embeddings` extra. The model is loaded on first use and
    cached per (model, device).
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", device: str = "cpu", dimensions: int = 384):
        self.model_name = model_name
        self.device = device
        self.dimensions = dimensions

    def is_available(self) -> bool:
        return importlib.util.find_spec("sentence_transformers") is not None

    def embed(self, text: str) -> list[float]:
        if not self.is_available():
            raise VectorBackendUnavailable(
                "sentence-transformers is not installed. Install with: pip install 'entity-sync-engine[embeddings]'"
            )

        model = _load_model(self.model_name, self.device)
        vector = model.encode(
            [text],
            convert_to_numpy=True,
            normalize_embeddings=True,
            show_progress_bar=False,
        )[0]
        return np.asarray(vector, dtype=np.float64).tolist()


def build_vectorizer(kind: str, dimensions: int = 384, model_name: str = "all-MiniLM-L6-v2") -> Vectorizer:
    """
    Create a vectorizer by name.

    Args:
        kind: "hash" or "sentence-transformers"
        dimensions: Output dimensions
        model_name: Model for sentence-transformers

    Returns:
        Vectorizer instance
    """
    if kind == "hash":
        return HashVectorizer(dimensions)
    if kind in ("sentence-transformers", "sentence_transformers"):
        return SentenceTransformerVectorizer(model_name=model_name, dimensions=dimensions)
    raise ValueError(f"Unknown vectorizer: {kind}")

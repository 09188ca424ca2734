"""
Shared fixtures for engine unit tests.
"""
import asyncio
from types import SimpleNamespace
from typing import Optional

import pytest

from sync_engine.adapters import EntityProvider, LocalEntityStore, StaticEntityProvider, Upserter
from sync_engine.config import JobDefaults
from sync_engine.ops import JobHandler, JobKind, JobOrchestrator, upsert_operation
from sync_engine.persist import JobStore
from sync_engine.search import HashVectorizer, SemanticSearchService, VectorIndex


@pytest.fixture
def job_store(tmp_path):
    """Create a temporary JobStore instance."""
    store = JobStore(tmp_path / "jobs.db")
    yield store
    store.close()


@pytest.fixture
def vector_index(tmp_path):
    """Create a temporary VectorIndex instance."""
    index = VectorIndex(tmp_path / "vectors.db")
    yield index
    index.close()


@pytest.fixture
def vectorizer():
    """Small deterministic vectorizer."""
    return HashVectorizer(dimensions=64)


@pytest.fixture
def sample_records():
    """Entity records as served by the external API."""
    return {
        "products": [
            {"id": "p1", "name": "Roadmap Tool", "description": "Plan releases", "updated_at": "2024-01-01T00:00:00Z"},
            {"id": "p2", "name": "Feedback Portal", "description": "Collect ideas", "updated_at": "2024-03-01T00:00:00Z"},
        ],
        "features": [
            {"id": f"f{i}", "name": f"Feature {i}", "description": "Something useful"}
            for i in range(1, 6)
        ],
        "ideas": [
            {"id": "i1", "name": "Dark mode", "description": "Theme support"},
        ],
    }


@pytest.fixture
def provider(sample_records):
    return StaticEntityProvider(sample_records)


@pytest.fixture
def local_store():
    return LocalEntityStore()


class RecordingUpserter(Upserter):
    """Upserter that records calls and fails on request."""

    def __init__(self, fail_ids=(), raise_ids=()):
        self.fail_ids = set(fail_ids)
        self.raise_ids = set(raise_ids)
        self.applied: list[tuple[str, str]] = []

    async def apply(self, entity_type: str, record: dict) -> bool:
        if record["id"] in self.raise_ids:
            raise RuntimeError(f"upsert exploded for {record['id']}")
        if record["id"] in self.fail_ids:
            return False
        self.applied.append((entity_type, record["id"]))
        return True


class GatedUpserter(Upserter):
    """
    Upserter that blocks after a number of items until released.

    Lets a test act on a job while it is mid-run.
    """

    def __init__(self, block_after: int):
        self.block_after = block_after
        self.applied: list[tuple[str, str]] = []
        self.reached = asyncio.Event()
        self.release = asyncio.Event()

    async def apply(self, entity_type: str, record: dict) -> bool:
        self.applied.append((entity_type, record["id"]))
        if len(self.applied) == self.block_after:
            self.reached.set()
            await self.release.wait()
        return True


class ExplodingProvider(EntityProvider):
    """Provider whose listing call fails for chosen entity types."""

    def __init__(self, records: dict, failing: set):
        self.inner = StaticEntityProvider(records)
        self.failing = failing

    async def fetch_page(self, entity_type: str, filter: Optional[dict] = None) -> list[dict]:
        if entity_type in self.failing:
            raise ConnectionError(f"API unavailable for {entity_type}")
        return await self.inner.fetch_page(entity_type, filter)


@pytest.fixture
def make_orchestrator(job_store):
    """Build an orchestrator with a sync handler over the given collaborators."""
    def _make(provider, upserter, batch_size: int = 50) -> JobOrchestrator:
        return JobOrchestrator(
            job_store,
            handlers={
                JobKind.SYNC: JobHandler(
                    provider=provider,
                    operation_for=upsert_operation(upserter),
                    default_batch_size=batch_size,
                ),
            },
            defaults=JobDefaults(),
        )
    return _make


@pytest.fixture
def search_service(vector_index, vectorizer):
    return SemanticSearchService(vector_index, vectorizer)


@pytest.fixture
def fakes():
    """Fake collaborators, for tests that configure their own."""
    return SimpleNamespace(
        RecordingUpserter=RecordingUpserter,
        GatedUpserter=GatedUpserter,
        ExplodingProvider=ExplodingProvider,
    )

"""
Unit tests for API endpoints.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from sync_engine import Engine
from sync_engine.adapters import LocalEntityStore, StaticEntityProvider
from sync_engine.api.main import create_app
from sync_engine.config import SearchCfg, Settings, StorageCfg
from sync_engine.ops.jobs import Job, JobKind, JobStatus
from sync_engine.search import HashVectorizer

TERMINAL = {"completed", "failed"}


class LoopRecordingVectorizer(HashVectorizer):
    """Hash vectorizer that notes whether it ran inside the event loop."""

    def __init__(self, dimensions: int = 64):
        super().__init__(dimensions)
        self.on_loop: list[bool] = []

    def embed(self, text):
        try:
            asyncio.get_running_loop()
            self.on_loop.append(True)
        except RuntimeError:
            self.on_loop.append(False)
        return super().embed(text)


class SlowProvider(StaticEntityProvider):
    """Provider that takes a while to list records, leaving time to act on a job."""

    async def fetch_page(self, entity_type, filter=None):
        await asyncio.sleep(0.5)
        return await super().fetch_page(entity_type, filter)


@pytest.fixture
def engine(provider, tmp_path):
    settings = Settings(
        storage=StorageCfg(db_path=str(tmp_path / "api.db")),
        search=SearchCfg(dimensions=64),
    )
    return Engine(provider, LocalEntityStore(), settings=settings)


@pytest.fixture
def client(engine):
    """Create test client serving a temporary engine."""
    with TestClient(create_app(engine)) as client:
        yield client


@pytest.fixture
def slow_client(sample_records, tmp_path):
    """Test client whose jobs stay in flight long enough to pause or stop."""
    settings = Settings(storage=StorageCfg(db_path=str(tmp_path / "slow.db")))
    engine = Engine(SlowProvider(sample_records), LocalEntityStore(), settings=settings)
    with TestClient(create_app(engine)) as client:
        yield client


def wait_until_finished(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/jobs/{job_id}").json()
        if data["status"] in TERMINAL:
            return data
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["components"]["storage_ok"] is True
    assert data["components"]["vectorizer"] == "simple-hash"


def test_submit_and_track_job(client):
    response = client.post(
        "/jobs",
        json={"kind": "sync", "entity_types": ["products", "features"], "options": {"batchSize": 2}},
    )
    assert response.status_code == 202
    job_id = response.json()["job_id"]
    assert job_id.startswith("sync-")

    data = wait_until_finished(client, job_id)
    assert data["status"] == "completed"
    assert data["processed_count"] == 7
    assert data["progress"] == 100

    history = client.get(f"/jobs/{job_id}/history").json()
    assert history["entries"][0]["action"] == "job_complete"
    assert history["entries"][-1]["action"] == "job_start"


def test_submit_validation_errors(client):
    response = client.post("/jobs", json={"kind": "sync", "entity_types": []})
    assert response.status_code == 422

    response = client.post("/jobs", json={"kind": "reindex", "entity_types": ["products"]})
    assert response.status_code == 422

    response = client.post(
        "/jobs", json={"kind": "sync", "entity_types": ["products"], "options": {"batchSize": 0}}
    )
    assert response.status_code == 422


def test_paused_job_does_not_block_submission(slow_client):
    first = slow_client.post("/jobs", json={"kind": "sync", "entity_types": ["products"]}).json()["job_id"]
    assert slow_client.post(f"/jobs/{first}/pause").json()["status"] == "paused"

    other_kind = slow_client.post("/jobs", json={"kind": "embedding", "entity_types": ["products"]})
    assert other_kind.status_code == 202

    same_kind = slow_client.post("/jobs", json={"kind": "sync", "entity_types": ["features"]})
    assert same_kind.status_code == 202


def test_running_job_of_same_kind_conflicts(client, engine):
    engine.store.create(
        Job(id="sync-busy", kind=JobKind.SYNC, entity_types=["products"], status=JobStatus.RUNNING)
    )

    response = client.post("/jobs", json={"kind": "sync", "entity_types": ["features"]})
    assert response.status_code == 409
    assert "sync-busy" in response.json()["detail"]

    forced = client.post("/jobs", json={"kind": "sync", "entity_types": ["ideas"], "force": True})
    assert forced.status_code == 202


def test_unknown_job_returns_404(client):
    assert client.get("/jobs/sync-missing").status_code == 404
    assert client.get("/jobs/sync-missing/history").status_code == 404
    assert client.post("/jobs/sync-missing/stop").status_code == 404
    assert client.post("/jobs/sync-missing/pause").status_code == 404


def test_stop_job(slow_client):
    job_id = slow_client.post("/jobs", json={"kind": "sync", "entity_types": ["products"]}).json()["job_id"]

    response = slow_client.post(f"/jobs/{job_id}/stop")
    assert response.status_code == 200
    body = response.json()
    assert body["applied"] is True
    assert body["status"] == "failed"

    again = slow_client.post(f"/jobs/{job_id}/stop").json()
    assert again["applied"] is False

    data = wait_until_finished(slow_client, job_id)
    assert data["processed_count"] == 0
    assert data["last_error"] == "Job stopped by user"


def test_list_jobs(slow_client):
    job_id = slow_client.post("/jobs", json={"kind": "sync", "entity_types": ["products"]}).json()["job_id"]
    slow_client.post(f"/jobs/{job_id}/pause")

    jobs = slow_client.get("/jobs").json()["jobs"]
    assert [j["job_id"] for j in jobs] == [job_id]
    assert jobs[0]["status"] == "paused"
    assert slow_client.get("/jobs", params={"kind": "embedding"}).json()["jobs"] == []
    assert slow_client.get("/jobs", params={"kind": "bogus"}).status_code == 422


def test_vector_crud(client):
    response = client.put("/vectors/ideas/i1", json={"text": "Dark mode", "metadata": {"name": "Dark mode"}})
    assert response.status_code == 200
    assert response.json()["dimensions"] == 64

    response = client.get("/vectors/ideas/i1")
    assert response.status_code == 200
    assert response.json()["source_text"] == "Dark mode"

    assert client.delete("/vectors/ideas/i1").json() == {"deleted": True}
    assert client.delete("/vectors/ideas/i1").json() == {"deleted": False}
    assert client.get("/vectors/ideas/i1").status_code == 404


def test_vector_put_rejects_empty_vector(client):
    response = client.put("/vectors/ideas/i1", json={"text": "x", "vector": []})
    assert response.status_code == 422


def test_search_by_text_and_vector(client):
    client.put("/vectors/ideas/i1", json={"text": "Dark mode support"})
    client.put("/vectors/ideas/i2", json={"text": "CSV export"})
    client.put("/vectors/products/p1", json={"text": "x", "vector": [0.0, 1.0]})

    response = client.post("/search", json={"query": "Dark mode support", "threshold": 0.99})
    data = response.json()
    assert data["count"] >= 1
    assert data["results"][0]["entity_id"] == "i1"

    response = client.post(
        "/search", json={"vector": [0.0, 2.0], "entity_types": ["products"], "threshold": 1.0}
    )
    assert [r["entity_id"] for r in response.json()["results"]] == ["p1"]


def test_search_requires_query(client):
    assert client.post("/search", json={}).status_code == 422
    assert client.post("/search", json={"query": "   "}).status_code == 422


def test_vectorization_runs_off_the_event_loop(provider, tmp_path):
    vectorizer = LoopRecordingVectorizer()
    settings = Settings(storage=StorageCfg(db_path=str(tmp_path / "loop.db")))
    engine = Engine(provider, LocalEntityStore(), settings=settings, vectorizer=vectorizer)

    with TestClient(create_app(engine)) as client:
        assert client.put("/vectors/ideas/i1", json={"text": "Dark mode"}).status_code == 200
        assert client.post("/search", json={"query": "Dark mode"}).status_code == 200

    assert vectorizer.on_loop == [False, False]


def test_find_similar_excludes_source(client):
    client.put("/vectors/features/f1", json={"text": "a", "vector": [1.0, 0.0]})
    client.put("/vectors/features/f2", json={"text": "b", "vector": [0.9, 0.1]})
    client.put("/vectors/ideas/i1", json={"text": "c", "vector": [0.8, 0.2]})
    client.put("/vectors/ideas/i2", json={"text": "d", "vector": [0.0, 1.0]})

    response = client.post("/vectors/features/f1/similar", json={"threshold": 0.9})
    assert response.status_code == 200
    data = response.json()
    assert [r["entity_id"] for r in data["results"]] == ["f2", "i1"]
    assert data["count"] == 2

    response = client.post(
        "/vectors/features/f1/similar", json={"entity_types": ["ideas"], "threshold": 0.9, "limit": 1}
    )
    assert [r["entity_id"] for r in response.json()["results"]] == ["i1"]


def test_find_similar_unknown_source(client):
    assert client.post("/vectors/features/missing/similar", json={}).status_code == 404
    assert client.post("/vectors/features/f1/similar", json={"limit": 0}).status_code == 422


def test_sync_single_entity(client, engine):
    response = client.post("/entities/features/f3/sync")
    assert response.status_code == 200
    assert response.json() == {"entity_type": "features", "entity_id": "f3", "synced": True}
    assert engine.upserter.get("features", "f3")["name"] == "Feature 3"
    assert engine.list_active_jobs() == []

    assert client.post("/entities/features/f99/sync").status_code == 404
    assert client.post("/entities/competitors/c1/sync").status_code == 422

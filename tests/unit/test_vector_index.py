"""
Unit tests for sync_engine/search/vector_index.py

Tests normalized storage, cosine ranking and the text fallback.
"""
import numpy as np
import pytest

from sync_engine.search import FALLBACK_SIMILARITY, VectorIndex


def test_upsert_normalizes_and_replaces(vector_index):
    """Two upserts of one key leave a single unit-length record."""
    vector_index.upsert("products", "p1", [3.0, 4.0], "first text")
    record = vector_index.upsert("products", "p1", [3.0, 4.0], "second text", metadata={"name": "P1"})

    assert vector_index.count() == 1
    assert record.source_text == "second text"
    assert record.metadata == {"name": "P1"}
    assert record.dimensions == 2
    assert np.linalg.norm(record.vector) == pytest.approx(1.0, abs=1e-6)
    assert record.vector == pytest.approx([0.6, 0.8])


def test_upsert_keeps_created_at(vector_index):
    first = vector_index.upsert("products", "p1", [1.0, 0.0], "a")
    second = vector_index.upsert("products", "p1", [0.0, 1.0], "b")

    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at


def test_zero_vector_stored_unchanged(vector_index):
    record = vector_index.upsert("products", "p0", [0.0, 0.0, 0.0], "empty")
    assert record.vector == [0.0, 0.0, 0.0]


def test_upsert_rejects_bad_vectors(vector_index):
    with pytest.raises(ValueError):
        vector_index.upsert("products", "p1", [], "empty")
    with pytest.raises(ValueError):
        vector_index.upsert("products", "p1", [1.0, float("nan")], "nan")


def test_get_and_delete(vector_index):
    vector_index.upsert("ideas", "i1", [1.0, 2.0], "idea")

    assert vector_index.get("ideas", "i1").entity_id == "i1"
    assert vector_index.delete("ideas", "i1") is True
    assert vector_index.delete("ideas", "i1") is False
    assert vector_index.get("ideas", "i1") is None


def test_identical_query_scores_one(vector_index):
    vector_index.upsert("features", "f1", [0.2, 0.9, 0.1], "target")
    vector_index.upsert("features", "f2", [0.9, 0.1, 0.3], "other")

    results = vector_index.search([0.2, 0.9, 0.1], threshold=1.0)

    assert results[0].entity_id == "f1"
    assert results[0].similarity == pytest.approx(1.0, abs=1e-6)
    assert len(results) == 1


def test_results_sorted_and_limited(vector_index):
    vector_index.upsert("features", "far", [0.0, 1.0], "far")
    vector_index.upsert("features", "near", [1.0, 0.1], "near")
    vector_index.upsert("features", "exact", [1.0, 0.0], "exact")

    results = vector_index.search([1.0, 0.0], threshold=0.0, limit=2)

    assert [r.entity_id for r in results] == ["exact", "near"]
    assert results[0].similarity >= results[1].similarity


def test_ties_keep_storage_order(vector_index):
    for entity_id in ["b", "a", "c"]:
        vector_index.upsert("ideas", entity_id, [1.0, 1.0], entity_id)

    results = vector_index.search([1.0, 1.0], threshold=0.5)
    assert [r.entity_id for r in results] == ["b", "a", "c"]


def test_type_filter(vector_index):
    vector_index.upsert("products", "p1", [1.0, 0.0], "product")
    vector_index.upsert("ideas", "i1", [1.0, 0.0], "idea")

    results = vector_index.search([1.0, 0.0], type_filter=["ideas"], threshold=0.5)
    assert [(r.entity_type, r.entity_id) for r in results] == [("ideas", "i1")]


def test_dimension_mismatch_scores_zero(vector_index):
    vector_index.upsert("products", "short", [1.0, 0.0], "short")
    vector_index.upsert("products", "long", [1.0, 0.0, 0.0], "long")

    results = vector_index.search([1.0, 0.0, 0.0], threshold=0.0)
    scores = {r.entity_id: r.similarity for r in results}

    assert scores["long"] == pytest.approx(1.0)
    assert scores["short"] == 0.0


def test_disabled_index_falls_back_to_text(tmp_path):
    index = VectorIndex(tmp_path / "vectors.db", enabled=False)
    index.upsert("products", "p1", [1.0, 0.0], "Roadmap Planner")
    index.upsert("products", "p2", [0.0, 1.0], "Feedback portal")

    results = index.search([1.0, 0.0], query_text="roadmap")
    assert [r.entity_id for r in results] == ["p1"]
    assert results[0].similarity == FALLBACK_SIMILARITY

    assert index.search([1.0, 0.0]) == []
    index.close()


def test_text_search_case_insensitive(vector_index):
    vector_index.upsert("ideas", "i1", [1.0], "Dark Mode support")
    vector_index.upsert("ideas", "i2", [1.0], "Light theme")
    vector_index.upsert("ideas", "i3", [1.0], "dark sidebar")

    results = vector_index.text_search("DARK", limit=10)
    assert [r.entity_id for r in results] == ["i1", "i3"]
    assert vector_index.text_search("   ") == []

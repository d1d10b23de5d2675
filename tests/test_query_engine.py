"""
Tests for the similarity query engine.
"""

import random

import pytest

from similar_notes.core.config import PluginSettings
from similar_notes.core.errors import StorageError
from similar_notes.core.query_engine import SimilarityQueryEngine
from similar_notes.vector.store import InMemoryVectorRecordStore
from similar_notes.vector.types import EmbeddingRecord, SimilarityResult


def put(store, path, vector, model_id="m"):
    store.put(EmbeddingRecord(path=path, vector=vector, model_id=model_id, content_hash="h"))


def make_engine(store=None, **settings_kwargs):
    settings_kwargs.setdefault("model_id", "m")
    notices = []
    engine = SimilarityQueryEngine(
        store if store is not None else InMemoryVectorRecordStore(),
        PluginSettings(**settings_kwargs),
        approximate=False,
        notify=notices.append,
    )
    return engine, notices


def test_ranks_against_query_note():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "B.md", [1.0, 0.0])
    put(store, "C.md", [0.0, 1.0])
    engine, _ = make_engine(store)

    results = engine.query("A.md", k=10)

    assert [(r.path, r.score) for r in results] == [("B.md", pytest.approx(1.0)), ("C.md", pytest.approx(0.0))]
    assert all(isinstance(r, SimilarityResult) for r in results)


def test_query_note_is_never_in_results():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "B.md", [0.5, 0.5])
    engine, _ = make_engine(store)

    assert "A.md" not in [r.path for r in engine.query("/A.md")]


def test_ties_break_by_path():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "D.md", [2.0, 0.0])
    put(store, "B.md", [3.0, 0.0])
    engine, _ = make_engine(store)

    assert [r.path for r in engine.query("A.md")] == ["B.md", "D.md"]


def test_empty_store():
    engine, _ = make_engine()

    assert engine.query("A.md") == []
    assert engine.query([1.0, 0.0]) == []


def test_unindexed_query_note():
    store = InMemoryVectorRecordStore()
    put(store, "B.md", [1.0, 0.0])
    engine, _ = make_engine(store)

    assert engine.query("A.md") == []


def test_k_limits_results():
    store = InMemoryVectorRecordStore()
    for i in range(10):
        put(store, f"n{i}.md", [1.0, float(i)])
    engine, _ = make_engine(store)

    assert len(engine.query("n0.md", k=3)) == 3
    # k below the minimum is clamped to one result
    assert len(engine.query("n0.md", k=0)) == 1


def test_default_k_comes_from_settings():
    store = InMemoryVectorRecordStore()
    for i in range(10):
        put(store, f"n{i}.md", [1.0, float(i)])
    engine, _ = make_engine(store, top_k=4)

    assert len(engine.query("n0.md")) == 4


def test_other_model_records_are_excluded():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "B.md", [1.0, 0.0], model_id="old-model")
    put(store, "C.md", [0.0, 1.0])
    engine, _ = make_engine(store)

    assert [r.path for r in engine.query("A.md")] == ["C.md"]


def test_query_note_from_other_model_gives_nothing():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0], model_id="old-model")
    put(store, "B.md", [1.0, 0.0])
    engine, _ = make_engine(store)

    assert engine.query("A.md") == []


def test_dimension_mismatch_is_excluded():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "B.md", [1.0, 0.0, 0.0])
    put(store, "C.md", [0.5, 0.5])
    engine, _ = make_engine(store)

    assert [r.path for r in engine.query("A.md")] == ["C.md"]


def test_excluded_paths_are_omitted():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "Private/B.md", [1.0, 0.0])
    put(store, "C.md", [0.0, 1.0])
    engine, _ = make_engine(store, exclusions=["Private"])

    assert [r.path for r in engine.query("A.md")] == ["C.md"]


def test_zero_vector_scores_zero():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "Empty.md", [0.0, 0.0])
    engine, _ = make_engine(store)

    results = engine.query("A.md")
    assert results == [SimilarityResult(path="Empty.md", score=0.0)]


def test_query_by_vector():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "B.md", [0.0, 1.0])
    engine, _ = make_engine(store)

    results = engine.query([0.0, 2.0], k=1)

    assert results[0].path == "B.md"
    assert results[0].score == pytest.approx(1.0)


def test_scan_failure_returns_partial_results():
    class BrokenStore(InMemoryVectorRecordStore):
        def list_all(self):
            def records():
                yield "A.md", self.get("A.md")
                yield "B.md", self.get("B.md")
                raise StorageError("disk read failed")
            return records()

    store = BrokenStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "B.md", [1.0, 0.0])
    put(store, "C.md", [0.0, 1.0])
    engine, notices = make_engine(store)

    results = engine.query("A.md")

    assert [r.path for r in results] == ["B.md"]
    assert any("incomplete" in n for n in notices)


def test_configure_switches_model():
    store = InMemoryVectorRecordStore()
    put(store, "A.md", [1.0, 0.0])
    put(store, "B.md", [1.0, 0.0])
    engine, _ = make_engine(store)

    engine.configure(PluginSettings(model_id="new-model"))

    assert engine.model_id == "new-model"
    assert engine.query("A.md") == []


def _random_store(count=60, dimension=16, seed=7):
    rng = random.Random(seed)
    store = InMemoryVectorRecordStore()
    for i in range(count):
        put(store, f"note-{i:03d}.md", [rng.uniform(-1, 1) for _ in range(dimension)])
    return store


def test_approximate_mode_matches_exact_on_small_index():
    pytest.importorskip("faiss")
    store = _random_store()
    settings = PluginSettings(model_id="m")
    exact = SimilarityQueryEngine(store, settings, approximate=False)
    approximate = SimilarityQueryEngine(store, settings, approximate=True, ann_min_records=1)

    expected = exact.query("note-000.md", k=5)
    results = approximate.query("note-000.md", k=5)

    assert [r.path for r in results] == [r.path for r in expected]
    for got, want in zip(results, expected):
        assert got.score == pytest.approx(want.score)


def test_approximate_index_is_cached_until_store_changes():
    pytest.importorskip("faiss")
    store = _random_store()
    engine = SimilarityQueryEngine(store, PluginSettings(model_id="m"), approximate=True, ann_min_records=1)

    engine.query("note-001.md", k=3)
    first_index = engine._ann_cache[3]
    engine.query("note-002.md", k=3)
    assert engine._ann_cache[3] is first_index

    put(store, "note-new.md", [1.0] * 16)
    engine.query("note-001.md", k=3)
    assert engine._ann_cache[3] is not first_index


def test_approximate_mode_below_threshold_uses_exact_scan():
    store = _random_store(count=10)
    engine = SimilarityQueryEngine(store, PluginSettings(model_id="m"), approximate=True, ann_min_records=1000)

    assert len(engine.query("note-000.md", k=3)) == 3
    assert engine._ann_cache is None


def test_approximate_mode_zero_query_matches_exact_scan():
    store = _random_store(count=10)
    settings = PluginSettings(model_id="m")
    exact = SimilarityQueryEngine(store, settings, approximate=False)
    approximate = SimilarityQueryEngine(store, settings, approximate=True, ann_min_records=1)

    results = approximate.query([0.0] * 16, k=3)

    assert results == exact.query([0.0] * 16, k=3)
    assert [(r.path, r.score) for r in results] == [
        ("note-000.md", 0.0), ("note-001.md", 0.0), ("note-002.md", 0.0),
    ]
    assert approximate._ann_cache is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

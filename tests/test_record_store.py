"""
Tests for the embedding record stores.
"""

import hashlib
import json
import unicodedata

import pytest

from similar_notes.core.errors import StorageError
from similar_notes.vector.store import FileVectorRecordStore, InMemoryVectorRecordStore, IVectorRecordStore
from similar_notes.vector.types import EmbeddingRecord


def make_record(path, vector=None, model_id="test-model", digest="abc"):
    return EmbeddingRecord(path=path, vector=vector or [0.1, 0.2, 0.3], model_id=model_id, content_hash=digest)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryVectorRecordStore()
    return FileVectorRecordStore(str(tmp_path / "embeddings"))


def test_store_interface(store):
    assert isinstance(store, IVectorRecordStore)


def test_put_and_get(store):
    store.put(make_record("folder/Note.md", [1.0, 2.0]))

    record = store.get("folder/Note.md")
    assert record is not None
    assert record.path == "folder/Note.md"
    assert record.vector == [1.0, 2.0]
    assert record.model_id == "test-model"
    assert record.content_hash == "abc"


def test_get_absent_returns_none(store):
    assert store.get("missing.md") is None


@pytest.mark.parametrize("path", ["", "/", "../outside.md", "a/../../b.md"])
def test_get_invalid_path_returns_none(store, path):
    store.put(make_record("a.md"))

    assert store.get(path) is None


def test_equivalent_paths_share_a_record(store):
    store.put(make_record("/folder//Note.md", [1.0]))
    store.put(make_record("./folder/Note.md", [2.0]))

    assert store.count() == 1
    assert store.get("folder/Note.md").vector == [2.0]


def test_put_overwrites(store):
    store.put(make_record("a.md", [1.0], digest="one"))
    store.put(make_record("a.md", [2.0], digest="two"))

    record = store.get("a.md")
    assert record.vector == [2.0]
    assert record.content_hash == "two"


def test_delete(store):
    store.put(make_record("a.md"))
    store.delete("a.md")
    assert store.get("a.md") is None

    # Deleting an absent record is a no-op
    store.delete("a.md")
    assert store.count() == 0


def test_list_all_and_count(store):
    for name in ["c.md", "a.md", "b/d.md"]:
        store.put(make_record(name))

    paths = sorted(path for path, _ in store.list_all())
    assert paths == ["a.md", "b/d.md", "c.md"]
    assert store.count() == 3
    assert len(store.list_all()) == 3


def test_list_all_is_restartable(store):
    store.put(make_record("a.md"))
    snapshot = store.list_all()

    assert [p for p, _ in snapshot] == ["a.md"]
    assert [p for p, _ in snapshot] == ["a.md"]


def test_clear(store):
    store.put(make_record("a.md"))
    store.put(make_record("b.md"))
    store.clear()

    assert store.count() == 0
    assert list(store.list_all()) == []


def test_version_bumps_on_mutation(store):
    start = store.version
    store.put(make_record("a.md"))
    after_put = store.version
    store.delete("a.md")

    assert after_put > start
    assert store.version > after_put


def test_memory_store_keeps_private_copy():
    store = InMemoryVectorRecordStore()
    record = make_record("a.md", [1.0, 2.0])
    store.put(record)
    record.vector.append(3.0)

    assert store.get("a.md").vector == [1.0, 2.0]


def test_memory_snapshot_ignores_later_writes():
    store = InMemoryVectorRecordStore()
    store.put(make_record("a.md"))
    snapshot = store.list_all()
    store.put(make_record("b.md"))

    assert [p for p, _ in snapshot] == ["a.md"]


def test_file_store_names_files_by_path_digest(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    path = unicodedata.normalize("NFC", "Ünïcode folder/what? a:note*.md")
    store.put(make_record(path))

    expected = hashlib.sha256(path.encode("utf-8")).hexdigest() + ".json"
    assert (tmp_path / expected).exists()
    assert store.get(path).path == path


def test_file_store_paths_with_slashes_do_not_collide(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    store.put(make_record("a/b.md", [1.0]))
    store.put(make_record("a_b.md", [2.0]))

    assert store.get("a/b.md").vector == [1.0]
    assert store.get("a_b.md").vector == [2.0]


def test_file_store_writes_json_document(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    store.put(make_record("a.md", [0.5, 0.25]))

    with open(tmp_path / FileVectorRecordStore.record_filename("a.md"), encoding="utf-8") as f:
        data = json.load(f)

    assert data["path"] == "a.md"
    assert data["vector"] == [0.5, 0.25]
    assert data["model_id"] == "test-model"
    assert data["content_hash"] == "abc"
    assert "updated_at" in data


def test_file_store_leaves_no_temp_files(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    store.put(make_record("a.md"))
    store.put(make_record("a.md", [9.0]))

    names = [p.name for p in tmp_path.iterdir()]
    assert names == [FileVectorRecordStore.record_filename("a.md")]


def test_file_store_ignores_stray_temp_files(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    store.put(make_record("a.md"))
    (tmp_path / ".partial.json.1234.tmp").write_text("{", encoding="utf-8")

    assert store.count() == 1
    assert [p for p, _ in store.list_all()] == ["a.md"]


def test_file_store_corrupt_record_is_absent(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    store.put(make_record("good.md"))
    (tmp_path / FileVectorRecordStore.record_filename("bad.md")).write_text("{not json", encoding="utf-8")

    assert store.get("bad.md") is None
    assert [p for p, _ in store.list_all()] == ["good.md"]


def test_file_store_non_numeric_vector_is_absent(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    target = tmp_path / FileVectorRecordStore.record_filename("a.md")
    target.write_text(json.dumps({"path": "a.md", "vector": ["x", 1], "model_id": "m", "content_hash": "h"}), encoding="utf-8")

    assert store.get("a.md") is None


def test_file_store_record_under_wrong_name_is_absent(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    target = tmp_path / FileVectorRecordStore.record_filename("a.md")
    target.write_text(json.dumps(make_record("b.md").to_dict()), encoding="utf-8")

    assert store.get("a.md") is None
    assert list(store.list_all()) == []


def test_file_store_reads_legacy_bare_vector(tmp_path):
    store = FileVectorRecordStore(str(tmp_path))
    target = tmp_path / FileVectorRecordStore.record_filename("old.md")
    target.write_text("[0.1, 0.2, 0.3]", encoding="utf-8")

    record = store.get("old.md")
    assert record is not None
    assert record.vector == [0.1, 0.2, 0.3]
    # No model recorded, so it can never be current
    assert record.model_id is None
    assert not record.is_current(record.content_hash, "text-embedding-ada-002")


def test_file_store_missing_directory_is_empty(tmp_path):
    store = FileVectorRecordStore(str(tmp_path / "does-not-exist"))

    assert store.count() == 0
    assert list(store.list_all()) == []
    assert store.get("a.md") is None


def test_file_store_creates_directory_on_put(tmp_path):
    store = FileVectorRecordStore(str(tmp_path / "nested" / "embeddings"))
    store.put(make_record("a.md"))

    assert store.get("a.md") is not None


def test_file_store_write_failure_raises_storage_error(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = FileVectorRecordStore(str(blocker))

    with pytest.raises(StorageError):
        store.put(make_record("a.md"))


def test_file_store_persists_across_instances(tmp_path):
    FileVectorRecordStore(str(tmp_path)).put(make_record("a.md", [4.0, 5.0]))

    reopened = FileVectorRecordStore(str(tmp_path))
    assert reopened.get("a.md").vector == [4.0, 5.0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

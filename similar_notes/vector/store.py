"""
Vector record stores: the durable source of truth for note embeddings.
"""

import dataclasses
import hashlib
import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from ..core.errors import StorageError
from ..core.notes import normalize_note_path
from .types import EmbeddingRecord
from util.logging import logger


class RecordSnapshot(ABC):
    """Finite, restartable iterable of (path, record) pairs taken at list time."""

    @abstractmethod
    def __iter__(self) -> Iterator[Tuple[str, EmbeddingRecord]]:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class IVectorRecordStore(ABC):
    """Abstract interface for embedding record storage."""

    @abstractmethod
    def get(self, path: str) -> Optional[EmbeddingRecord]:
        """Return the record for a note, or None when absent or unreadable."""
        pass

    @abstractmethod
    def put(self, record: EmbeddingRecord) -> None:
        """Insert or overwrite the record keyed by record.path."""
        pass

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a record; no-op when absent."""
        pass

    @abstractmethod
    def list_all(self) -> RecordSnapshot:
        """Snapshot of every record at call time."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every record. Only used by explicit rebuilds."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    @property
    @abstractmethod
    def version(self) -> int:
        """Counter bumped on every mutation."""
        pass


class _ListSnapshot(RecordSnapshot):
    def __init__(self, items: List[Tuple[str, EmbeddingRecord]]):
        self._items = items

    def __iter__(self) -> Iterator[Tuple[str, EmbeddingRecord]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)


class InMemoryVectorRecordStore(IVectorRecordStore):
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self):
        self._records: Dict[str, EmbeddingRecord] = {}
        self._lock = threading.Lock()
        self._version = 0

    def get(self, path: str) -> Optional[EmbeddingRecord]:
        try:
            key = normalize_note_path(path)
        except ValueError:
            return None
        with self._lock:
            return self._records.get(key)

    def put(self, record: EmbeddingRecord) -> None:
        key = normalize_note_path(record.path)
        # Store a private copy so callers cannot mutate a stored vector
        stored = dataclasses.replace(record, path=key, vector=list(record.vector))
        with self._lock:
            self._records[key] = stored
            self._version += 1

    def delete(self, path: str) -> None:
        key = normalize_note_path(path)
        with self._lock:
            if self._records.pop(key, None) is not None:
                self._version += 1

    def list_all(self) -> RecordSnapshot:
        with self._lock:
            return _ListSnapshot(list(self._records.items()))

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._version += 1

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    @property
    def version(self) -> int:
        return self._version


class _FileSnapshot(RecordSnapshot):
    """File names are fixed at list time; records are read lazily."""

    def __init__(self, store: "FileVectorRecordStore", filenames: List[str]):
        self._store = store
        self._filenames = filenames

    def __iter__(self) -> Iterator[Tuple[str, EmbeddingRecord]]:
        for filename in self._filenames:
            record = self._store._read_file(self._store.embeddings_dir / filename)
            if record is not None:
                yield record.path, record

    def __len__(self) -> int:
        return len(self._filenames)


class FileVectorRecordStore(IVectorRecordStore):
    """
    One JSON file per note beneath a dedicated embeddings directory.

    Files are named by the SHA-256 of the normalized note path, so arbitrary
    path characters never reach the filesystem and two paths never share a
    file. Writes go to a hidden temp file and are moved into place with
    os.replace, so readers see either the old or the new record.
    """

    SUFFIX = ".json"

    def __init__(self, embeddings_dir: str):
        self.embeddings_dir = Path(embeddings_dir)
        self._write_lock = threading.Lock()
        self._version = 0

    @classmethod
    def record_filename(cls, path: str) -> str:
        digest = hashlib.sha256(normalize_note_path(path).encode("utf-8")).hexdigest()
        return digest + cls.SUFFIX

    def _record_file(self, path: str) -> Path:
        return self.embeddings_dir / self.record_filename(path)

    def _read_file(self, file_path: Path, expected_path: Optional[str] = None) -> Optional[EmbeddingRecord]:
        try:
            with open(file_path, "rb") as f:
                raw = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {file_path}: {e}") from e

        try:
            data = json.loads(raw)
            if isinstance(data, list):
                # Bare vector with no metadata; only usable when the caller knows the path
                if expected_path is None:
                    raise ValueError("legacy record without path")
                return EmbeddingRecord.from_dict({"path": expected_path, "vector": data, "model_id": None})

            record = EmbeddingRecord.from_dict(data)
            record.path = normalize_note_path(record.path)
            if expected_path is not None and record.path != expected_path:
                raise ValueError(f"record path {record.path!r} does not match {expected_path!r}")
            if file_path.name != self.record_filename(record.path):
                raise ValueError(f"record path {record.path!r} does not match file name")
            return record
        except (ValueError, KeyError, TypeError) as e:
            logger.log_vector_operation("read", expected_path or file_path.name, {"error": str(e)}, status="corrupt")
            return None

    def get(self, path: str) -> Optional[EmbeddingRecord]:
        try:
            key = normalize_note_path(path)
        except ValueError:
            return None
        return self._read_file(self._record_file(key), expected_path=key)

    def put(self, record: EmbeddingRecord) -> None:
        key = normalize_note_path(record.path)
        payload = dataclasses.replace(record, path=key).to_dict()
        target = self._record_file(key)
        tmp_file = self.embeddings_dir / f".{target.name}.{uuid.uuid4().hex}.tmp"

        with self._write_lock:
            try:
                self.embeddings_dir.mkdir(parents=True, exist_ok=True)
                with open(tmp_file, "w", encoding="utf-8") as f:
                    json.dump(payload, f)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_file, target)
            except (OSError, TypeError, ValueError) as e:
                try:
                    tmp_file.unlink()
                except OSError:
                    pass
                raise StorageError(f"Failed to write record for {key}: {e}") from e
            self._version += 1

    def delete(self, path: str) -> None:
        key = normalize_note_path(path)
        with self._write_lock:
            try:
                self._record_file(key).unlink()
            except FileNotFoundError:
                return
            except OSError as e:
                raise StorageError(f"Failed to delete record for {key}: {e}") from e
            self._version += 1

    def _list_filenames(self) -> List[str]:
        try:
            return sorted(
                entry.name
                for entry in os.scandir(self.embeddings_dir)
                if entry.is_file() and entry.name.endswith(self.SUFFIX) and not entry.name.startswith(".")
            )
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StorageError(f"Failed to list {self.embeddings_dir}: {e}") from e

    def list_all(self) -> RecordSnapshot:
        return _FileSnapshot(self, self._list_filenames())

    def clear(self) -> None:
        with self._write_lock:
            for filename in self._list_filenames():
                try:
                    (self.embeddings_dir / filename).unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise StorageError(f"Failed to clear {self.embeddings_dir}: {e}") from e
            self._version += 1

    def count(self) -> int:
        return len(self._list_filenames())

    @property
    def version(self) -> int:
        return self._version

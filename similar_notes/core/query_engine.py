"""
Similarity query engine. Read-only over the record store.
"""

from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import ANN_ENABLED, ANN_MIN_RECORDS, PluginSettings
from .errors import StorageError
from .notes import is_excluded, normalize_note_path
from ..vector.similarity import clamp_k, rank, score_matrix
from ..vector.store import IVectorRecordStore
from ..vector.types import SimilarityResult
from util.logging import logger


class SimilarityQueryEngine:
    """
    Ranks stored notes by cosine similarity to a note or a vector.

    Exact linear scan by default. With approximate=True and at least
    ann_min_records eligible records, a FAISS HNSW graph proposes
    k * candidate_factor candidates which are then scored exactly, so any
    returned score is exact but a true neighbour can occasionally be missed.
    """

    def __init__(
        self,
        store: IVectorRecordStore,
        settings: PluginSettings,
        approximate: bool = None,
        ann_min_records: int = None,
        candidate_factor: int = 4,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.store = store
        self.settings = settings
        self.approximate = ANN_ENABLED if approximate is None else approximate
        self.ann_min_records = ANN_MIN_RECORDS if ann_min_records is None else ann_min_records
        self.candidate_factor = candidate_factor
        self._notify = notify or logger.warning
        self._ann_cache = None  # (store version, model id, dimension, index)

    @property
    def model_id(self) -> str:
        return self.settings.model_id

    def configure(self, settings: PluginSettings) -> None:
        self.settings = settings
        self._ann_cache = None

    def query(self, target: Union[str, Sequence[float]], k: int = None) -> List[SimilarityResult]:
        """
        Find the stored notes most similar to a note path or a raw vector.

        Args:
            target: Note path (uses its stored embedding) or query vector
            k: Maximum results, clamped to [1, 100]; defaults to settings.top_k

        Returns:
            Results ordered by score descending, ties by path ascending
        """
        k = clamp_k(self.settings.top_k if k is None else k)

        query_path = None
        if isinstance(target, str):
            query_path = normalize_note_path(target)
            record = self._lookup(query_path)
            if record is None:
                return []
            query_vector = record.vector
        else:
            query_vector = [float(v) for v in target]

        if not query_vector:
            return []

        paths, matrix = self._candidates(len(query_vector))
        # A zero query scores 0 against everything; only the exact scan ranks that
        if self.approximate and len(paths) >= self.ann_min_records and any(query_vector):
            results = self._approximate_rank(query_vector, paths, matrix, k, exclude=query_path)
        elif paths:
            scores = score_matrix(query_vector, matrix)
            results = rank(((p, s) for p, s in zip(paths, scores.tolist()) if p != query_path), k)
        else:
            results = []

        logger.log_query(query_path or "<vector>", k, len(results), len(paths), self.approximate)
        return results

    def _lookup(self, path: str):
        try:
            record = self.store.get(path)
        except StorageError as e:
            self._notify(f"Could not read embedding for {path}: {e}")
            return None

        if record is None:
            logger.debug(f"No embedding stored for {path}")
            return None
        if record.model_id != self.model_id:
            logger.debug(f"Embedding for {path} was built with {record.model_id}, not {self.model_id}")
            return None
        return record

    def _candidates(self, dimension: int) -> Tuple[List[str], np.ndarray]:
        """Collect eligible records; a failing scan yields what was read so far."""
        paths: List[str] = []
        vectors: List[List[float]] = []
        exclusions = self.settings.exclusions

        try:
            for path, record in self.store.list_all():
                if record.model_id != self.model_id or record.dimension != dimension:
                    continue
                if exclusions and is_excluded(path, exclusions):
                    continue
                paths.append(path)
                vectors.append(record.vector)
        except StorageError as e:
            self._notify(f"Similar notes may be incomplete: {e}")

        if not paths:
            return [], np.zeros((0, dimension))
        return paths, np.asarray(vectors, dtype=np.float64)

    def _approximate_rank(self, query_vector, paths, matrix, k, exclude=None) -> List[SimilarityResult]:
        from ..vector.faiss_index import FaissHnswIndex

        dimension = matrix.shape[1]
        version = self.store.version
        cache = self._ann_cache
        if cache is not None and cache[0] == version and cache[1] == self.model_id and cache[2] == dimension and cache[3].paths == paths:
            index = cache[3]
        else:
            index = FaissHnswIndex(dimension)
            index.build(paths, matrix)
            self._ann_cache = (version, self.model_id, dimension, index)

        proposed = index.search(query_vector, k * self.candidate_factor + 1)
        positions = {path: i for i, path in enumerate(paths)}
        rows = [positions[path] for path, _ in proposed if path != exclude]
        if not rows:
            return []

        scores = score_matrix(query_vector, matrix[rows])
        return rank(zip((paths[i] for i in rows), scores.tolist()), k)

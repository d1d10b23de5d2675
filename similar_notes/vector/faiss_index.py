"""
Approximate nearest-neighbour candidate index over stored note vectors.

FAISS HNSW graph on L2-normalized vectors with inner-product metric, so the
graph's scores are cosine similarities. The query engine only uses it to
propose candidates; final scores are recomputed exactly.
"""

from typing import List, Sequence, Tuple

import numpy as np


class FaissHnswIndex:
    """HNSW graph built once from a snapshot of records."""

    def __init__(self, dimension: int, m: int = 32, ef_construction: int = 80, ef_search: int = 64):
        """
        Initialize an empty HNSW index.

        Args:
            dimension: Dimension of the vectors
            m: Graph neighbours per node
            ef_construction: Build-time search depth
            ef_search: Query-time search depth; higher means better recall
        """
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.faiss = faiss
        self.dimension = dimension
        self.index = faiss.IndexHNSWFlat(dimension, m, faiss.METRIC_INNER_PRODUCT)
        self.index.hnsw.efConstruction = ef_construction
        self.index.hnsw.efSearch = ef_search
        self.paths: List[str] = []

    @staticmethod
    def _normalize(matrix: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        # Zero vectors stay zero and score 0 against everything
        norms[norms == 0] = 1.0
        return (matrix / norms).astype(np.float32)

    def build(self, paths: Sequence[str], vectors: np.ndarray) -> None:
        """Add all vectors in one batch; row i belongs to paths[i]."""
        if len(paths) != vectors.shape[0]:
            raise ValueError(f"{len(paths)} paths for {vectors.shape[0]} vectors")
        if vectors.shape[0] and vectors.shape[1] != self.dimension:
            raise ValueError(
                f"Vector dimension {vectors.shape[1]} does not match expected dimension {self.dimension}"
            )

        self.paths = list(paths)
        if self.paths:
            self.index.add(self._normalize(np.asarray(vectors, dtype=np.float64)))

    def search(self, query_vector: Sequence[float], top_k: int) -> List[Tuple[str, float]]:
        """Return up to top_k (path, approximate score) pairs."""
        if not self.index.ntotal:
            return []

        query = np.asarray(query_vector, dtype=np.float64).reshape(1, -1)
        if np.linalg.norm(query) == 0:
            return []

        scores, indices = self.index.search(self._normalize(query), min(top_k, self.index.ntotal))

        results = []
        for score, idx in zip(scores[0], indices[0]):
            if idx == -1:  # No more results
                continue
            results.append((self.paths[idx], float(score)))
        return results

    def __len__(self) -> int:
        return self.index.ntotal

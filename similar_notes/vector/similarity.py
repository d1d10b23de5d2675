"""
Exact cosine similarity and result ordering.
"""

from typing import Iterable, List, Sequence, Tuple

import numpy as np

from .types import SimilarityResult

MIN_K = 1
MAX_K = 100


def clamp_k(k: int) -> int:
    """Clamp a requested result count to [1, 100]."""
    return max(MIN_K, min(MAX_K, int(k)))


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Returns 0.0 when either vector has zero magnitude.
    Raises ValueError when dimensions differ.
    """
    if len(vec1) != len(vec2):
        raise ValueError(f"Vector dimensions don't match: {len(vec1)} vs {len(vec2)}")

    v1 = np.asarray(vec1, dtype=np.float64)
    v2 = np.asarray(vec2, dtype=np.float64)

    norm1 = np.linalg.norm(v1)
    norm2 = np.linalg.norm(v2)
    if norm1 == 0 or norm2 == 0:
        return 0.0

    score = float(np.dot(v1, v2) / (norm1 * norm2))
    # Rounding can push |score| slightly past 1
    return max(-1.0, min(1.0, score))


def score_matrix(query: Sequence[float], candidates: np.ndarray) -> np.ndarray:
    """Cosine similarity of one query against each row of a candidate matrix."""
    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    if candidates.size == 0:
        return np.zeros(0)
    if q_norm == 0:
        return np.zeros(candidates.shape[0])

    norms = np.linalg.norm(candidates, axis=1)
    dots = candidates @ q
    scores = np.zeros(candidates.shape[0])
    nonzero = norms > 0
    scores[nonzero] = dots[nonzero] / (norms[nonzero] * q_norm)
    return np.clip(scores, -1.0, 1.0)


def rank(scored: Iterable[Tuple[str, float]], k: int) -> List[SimilarityResult]:
    """Sort by score descending, then path ascending, and keep the top k."""
    ordered = sorted(scored, key=lambda item: (-item[1], item[0]))
    return [SimilarityResult(path=path, score=float(score)) for path, score in ordered[:clamp_k(k)]]

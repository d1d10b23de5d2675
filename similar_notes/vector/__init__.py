"""
Vector layer for similar notes: record types, record stores, embedding
providers and similarity scoring.
"""

from .types import EmbeddingRecord, SimilarityResult
from .store import IVectorRecordStore, InMemoryVectorRecordStore, FileVectorRecordStore
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    OpenAIEmbedding,
    OllamaEmbedding,
    SentenceTransformerEmbedding,
)
from .similarity import cosine_similarity, rank

__all__ = [
    'EmbeddingRecord',
    'SimilarityResult',
    'IVectorRecordStore',
    'InMemoryVectorRecordStore',
    'FileVectorRecordStore',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'OpenAIEmbedding',
    'OllamaEmbedding',
    'SentenceTransformerEmbedding',
    'cosine_similarity',
    'rank',
]

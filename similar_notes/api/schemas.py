"""
Request and response models for the similar-notes HTTP API.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, field_validator


class NotePathRequest(BaseModel):
    path: str

    @field_validator('path')
    @classmethod
    def path_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('path cannot be empty')
        return v


class NoteEventRequest(BaseModel):
    path: str
    new_path: Optional[str] = None

    @field_validator('path')
    @classmethod
    def path_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('path cannot be empty')
        return v


class ReindexRequest(BaseModel):
    rebuild: bool = False
    wait: bool = True


class HealthResponse(BaseModel):
    status: str
    version: str
    model_id: str
    provider: Optional[str]
    provider_ready: bool
    records: Optional[int]
    reindex_running: bool
    config_issues: List[str]


class EmbeddingResponse(BaseModel):
    path: str
    model_id: Optional[str]
    content_hash: str
    dimension: int
    updated_at: datetime
    vector: Optional[List[float]] = None


class ReindexResponse(BaseModel):
    started: bool
    report: Optional[Dict] = None


class SimilarNote(BaseModel):
    path: str
    score: float


class SimilarNotesResponse(BaseModel):
    path: str
    k: Optional[int]
    results: List[SimilarNote]


class EventResponse(BaseModel):
    kind: str
    path: str
    scheduled: bool


class NoticesResponse(BaseModel):
    notices: List[str]

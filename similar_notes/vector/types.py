"""
Record types for the note embedding index.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class EmbeddingRecord:
    """One stored embedding for one note."""

    path: str
    """Normalized vault-relative note path (unique key)"""

    vector: List[float]
    """The embedding of the note content"""

    model_id: Optional[str]
    """Model that produced the vector; None for legacy records"""

    content_hash: str
    """Digest of the note text at generation time"""

    updated_at: datetime = field(default_factory=utc_now)
    """When the record was written"""

    @property
    def dimension(self) -> int:
        return len(self.vector)

    def is_current(self, content_hash: str, model_id: str) -> bool:
        """True when the record was built from this content with this model."""
        return self.content_hash == content_hash and self.model_id == model_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "vector": list(self.vector),
            "model_id": self.model_id,
            "content_hash": self.content_hash,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddingRecord":
        """Build a record from its serialized form.

        Raises ValueError/KeyError/TypeError on malformed input; the store
        treats those as an absent record.
        """
        vector = data["vector"]
        if not isinstance(vector, list) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in vector
        ):
            raise ValueError("vector must be a list of numbers")

        updated_at = data.get("updated_at")
        if updated_at:
            updated_at = datetime.fromisoformat(updated_at)
        else:
            updated_at = utc_now()

        return cls(
            path=str(data["path"]),
            vector=[float(v) for v in vector],
            model_id=data.get("model_id"),
            content_hash=str(data.get("content_hash", "")),
            updated_at=updated_at,
        )


@dataclass
class SimilarityResult:
    """A ranked match returned by the query engine."""

    path: str
    """Path of the matching note"""

    score: float
    """Cosine similarity to the query (-1 to 1)"""

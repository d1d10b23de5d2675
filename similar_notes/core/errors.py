"""
Error taxonomy for the similar-notes index.

None of these should reach the host as a crash: callers either surface them
as notices or degrade to an empty/partial result.
"""

from typing import List, Optional


class SimilarNotesError(Exception):
    """Base class for all index errors."""


class ConfigError(SimilarNotesError):
    """Settings are missing or invalid; blocks reindexing."""

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__("; ".join(self.issues) or "invalid configuration")


class ProviderError(SimilarNotesError):
    """Embedding generation failed.

    `transient` tells the index manager whether a retry may succeed;
    `fatal` means no other note can succeed either, so the pass stops.
    """

    transient = False
    fatal = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ProviderError):
    """Credential rejected. Retrying any note is pointless."""

    fatal = True


class ProviderUnavailableError(ProviderError):
    """The model cannot be loaded or reached at all."""

    fatal = True


class RateLimitedError(ProviderError):
    transient = True

    def __init__(self, message: str, retry_after: Optional[float] = None, status_code: Optional[int] = 429):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class ProviderNetworkError(ProviderError):
    transient = True


class MalformedResponseError(ProviderError):
    """Provider answered with something that is not a usable vector."""


class InvalidRequestError(ProviderError):
    """Provider refused this particular input (e.g. too long)."""


class StorageError(SimilarNotesError):
    """Reading or writing a persisted record failed."""


class EmbeddingIndexError(SimilarNotesError):
    """A stored vector does not match the active model's dimension."""

    def __init__(self, path: str, expected: int, actual: int):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"Record {path} has dimension {actual}, expected {expected}")

"""
Embedding providers. Each one turns note text into a fixed-dimension vector.

Providers never retry and never cache: they raise a ProviderError subtype and
leave the decision to the index manager.
"""

from abc import ABC, abstractmethod
import hashlib
import math
from typing import Dict, List, Optional

import httpx
import ollama
import requests

from ..core.errors import (
    AuthenticationError,
    InvalidRequestError,
    MalformedResponseError,
    ProviderNetworkError,
    ProviderUnavailableError,
    RateLimitedError,
)

# Output dimension of the hosted models we know about
KNOWN_MODEL_DIMENSIONS: Dict[str, int] = {
    "text-embedding-ada-002": 1536,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-babbage-001": 2048,
}


def model_dimension(model_id: str) -> Optional[int]:
    """Dimension mandated by a model id, or None when unknown."""
    return KNOWN_MODEL_DIMENSIONS.get(model_id)


def validate_vector(vector, expected_dimension: Optional[int] = None) -> List[float]:
    """Coerce a provider payload into a list of floats or raise MalformedResponseError."""
    if not isinstance(vector, (list, tuple)) or not vector:
        raise MalformedResponseError("embedding is not a non-empty list")
    try:
        values = [float(v) for v in vector]
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"embedding contains non-numeric values: {e}") from e
    if not all(math.isfinite(v) for v in values):
        raise MalformedResponseError("embedding contains NaN or infinite values")
    if expected_dimension is not None and len(values) != expected_dimension:
        raise MalformedResponseError(
            f"embedding has dimension {len(values)}, expected {expected_dimension}"
        )
    return values


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    model_id: str

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> Optional[int]:
        """Get the dimension of the embedding vectors, if known yet."""
        pass

    def close(self) -> None:
        """Release network sessions or loaded models."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Same text always gives the same vector, with no model download. Texts
    share no semantic structure, so rankings are only meaningful for
    identical content.
    """

    def __init__(self, dimension: int = 384, model_id: Optional[str] = None):
        self.dimension = dimension
        self.model_id = model_id or f"hash-{dimension}"

    def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector using hash function."""
        vector = []
        counter = 0
        while len(vector) < self.dimension:
            digest = hashlib.sha256(f"{counter}:{text}".encode("utf-8")).digest()
            for i in range(0, len(digest), 4):
                value = int.from_bytes(digest[i:i + 4], "big")
                # Map to [-1, 1]
                vector.append((value / 2**32) * 2 - 1)
            counter += 1

        return vector[:self.dimension]

    def get_dimension(self) -> int:
        return self.dimension


class OpenAIEmbedding(IEmbeddingProvider):
    """Hosted embeddings over the OpenAI-compatible HTTP API."""

    def __init__(
        self,
        api_key: str,
        model_id: str = "text-embedding-ada-002",
        api_base: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        max_input_chars: int = 24000,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model_id = model_id
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.max_input_chars = max_input_chars
        self.session = session or requests.Session()
        self._dimension = model_dimension(model_id)

    def get_dimension(self) -> Optional[int]:
        return self._dimension

    def embed_text(self, text: str) -> List[float]:
        # The API rejects empty input; an empty note has no direction
        if not text or not text.strip():
            if self._dimension is None:
                raise InvalidRequestError(f"cannot embed empty text with unknown model {self.model_id}")
            return [0.0] * self._dimension

        try:
            response = self.session.post(
                f"{self.api_base}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"model": self.model_id, "input": text[:self.max_input_chars]},
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ProviderNetworkError(f"Embedding request failed: {e}") from e
        except requests.RequestException as e:
            raise ProviderNetworkError(f"Embedding request error: {e}") from e

        self._raise_for_status(response)

        try:
            payload = response.json()
            embedding = payload["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"Unexpected embeddings response: {e}", response.status_code) from e

        vector = validate_vector(embedding, self._dimension)
        if self._dimension is None:
            self._dimension = len(vector)
        return vector

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            return response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return response.text[:200]

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        message = self._error_message(response)
        if status in (401, 403):
            raise AuthenticationError(f"Credential rejected: {message}", status)
        if status == 429:
            raise RateLimitedError(
                f"Rate limited: {message}",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
                status_code=status,
            )
        if status >= 500:
            raise ProviderNetworkError(f"Provider error {status}: {message}", status)
        if status == 404:
            raise ProviderUnavailableError(f"Model {self.model_id} not available: {message}", status)
        raise InvalidRequestError(f"Request rejected ({status}): {message}", status)

    def close(self) -> None:
        self.session.close()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class OllamaEmbedding(IEmbeddingProvider):
    """Embeddings from a local Ollama server."""

    def __init__(self, model_id: str = "nomic-embed-text", host: Optional[str] = None, client=None):
        self.model_id = model_id
        self.host = host
        self._client = client
        self._dimension = None

    @property
    def client(self):
        if self._client is None:
            self._client = ollama.Client(host=self.host)
        return self._client

    def get_dimension(self) -> Optional[int]:
        return self._dimension

    def embed_text(self, text: str) -> List[float]:
        try:
            response = self.client.embed(model=self.model_id, input=text)
        except ollama.ResponseError as e:
            status = getattr(e, "status_code", None)
            if status in (401, 403):
                raise AuthenticationError(f"Ollama rejected the request: {e}", status) from e
            if status == 404:
                raise ProviderUnavailableError(f"Ollama model {self.model_id} not found: {e}", status) from e
            if status == 429:
                raise RateLimitedError(f"Ollama rate limited: {e}", status_code=status) from e
            if status is not None and status >= 500:
                raise ProviderNetworkError(f"Ollama server error: {e}", status) from e
            raise InvalidRequestError(f"Ollama request failed: {e}", status) from e
        except ollama.RequestError as e:
            raise InvalidRequestError(f"Ollama request invalid: {e}") from e
        except (httpx.TimeoutException, httpx.TransportError, ConnectionError, TimeoutError) as e:
            raise ProviderNetworkError(f"Ollama unreachable: {e}") from e

        try:
            embedding = response["embeddings"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponseError(f"Unexpected Ollama response: {e}") from e

        vector = validate_vector(embedding, self._dimension)
        if self._dimension is None:
            self._dimension = len(vector)
        return vector


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    The model is loaded on first use.
    """

    def __init__(self, model_id: str = "all-MiniLM-L6-v2"):
        self.model_id = model_id
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ProviderUnavailableError(
                    "sentence-transformers is required for local embeddings. "
                    f"Install the 'local' extra. Reason: {e}"
                ) from e
            try:
                self._model = SentenceTransformer(self.model_id)
            except (OSError, ValueError) as e:
                raise ProviderUnavailableError(f"Failed to load model '{self.model_id}': {e}") from e
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        model = self.model
        try:
            embedding = model.encode(text, convert_to_tensor=False)
        except (RuntimeError, ValueError) as e:
            raise MalformedResponseError(f"Local embedding failed: {e}") from e
        vector = validate_vector(embedding.tolist())
        self._dimension = len(vector)
        return vector

    def get_dimension(self) -> Optional[int]:
        if self._dimension is None and self._model is not None:
            self._dimension = self._model.get_sentence_embedding_dimension()
        return self._dimension

"""
Configuration for the similar-notes index.

Process-level knobs come from environment variables. The user-facing
settings document (credential, refresh policy, exclusions, topK, model) is a
JSON file validated by PluginSettings.
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import List

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

# Vault and storage locations
VAULT_PATH = os.getenv("VAULT_PATH", ".")
SETTINGS_PATH = os.getenv("SETTINGS_PATH", "./data/settings.json")
EMBEDDINGS_DIR = os.getenv("EMBEDDINGS_DIR", "./data/embeddings")
VECTOR_STORE = os.getenv("VECTOR_STORE", "file")  # file|memory

# Embedding provider
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "openai")  # openai|ollama|sentence-transformers|hash
OPENAI_API_BASE = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
OLLAMA_HOST = os.getenv("OLLAMA_HOST")  # None means the client default
HASH_EMBED_DIM = int(os.getenv("HASH_EMBED_DIM", "384"))
PROVIDER_TIMEOUT_SEC = float(os.getenv("PROVIDER_TIMEOUT_SEC", "30"))

# Reindex policy
REINDEX_CONCURRENCY = int(os.getenv("REINDEX_CONCURRENCY", "1"))
PROVIDER_MAX_RETRIES = int(os.getenv("PROVIDER_MAX_RETRIES", "3"))
PROVIDER_RETRY_BACKOFF_SEC = float(os.getenv("PROVIDER_RETRY_BACKOFF_SEC", "1.0"))

# Approximate search (default disabled; exact linear scan otherwise)
ANN_ENABLED = os.getenv("ANN_ENABLED", "false").lower() == "true"
ANN_MIN_RECORDS = int(os.getenv("ANN_MIN_RECORDS", "5000"))

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

VERSION = "0.1.0"

EMBED_PROVIDERS = ["openai", "ollama", "sentence-transformers", "hash"]
DEFAULT_MODEL_ID = "text-embedding-ada-002"


class RefreshPolicy(str, Enum):
    MANUAL = "manual"
    ALWAYS = "always"
    ON_NEW_NOTE = "onNewNote"


class PluginSettings(BaseModel):
    """User settings document.

    Reads the current camelCase keys and the older plugin keys
    (openaiApiKey, indexRefreshRate, ...); always writes the current ones.
    """

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True, protected_namespaces=())

    provider_credential: str = Field(
        default="",
        validation_alias=AliasChoices("providerCredential", "provider_credential", "openaiApiKey"),
        serialization_alias="providerCredential",
    )
    refresh_policy: RefreshPolicy = Field(
        default=RefreshPolicy.MANUAL,
        validation_alias=AliasChoices("refreshPolicy", "refresh_policy", "indexRefreshRate"),
        serialization_alias="refreshPolicy",
    )
    exclusions: List[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("exclusions", "excludedFilesAndFolders"),
        serialization_alias="exclusions",
    )
    top_k: int = Field(
        default=50,
        validation_alias=AliasChoices("topK", "top_k", "numberOfResults"),
        serialization_alias="topK",
    )
    model_id: str = Field(
        default=DEFAULT_MODEL_ID,
        validation_alias=AliasChoices("modelId", "model_id", "embeddingModel"),
        serialization_alias="modelId",
    )

    @field_validator('exclusions', mode='before')
    @classmethod
    def split_exclusions(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(',')
        return [str(entry).strip() for entry in v if entry is not None and str(entry).strip()]

    @field_validator('top_k')
    @classmethod
    def top_k_in_range(cls, v):
        if not 1 <= v <= 100:
            raise ValueError('topK must be between 1 and 100')
        return v

    @field_validator('model_id')
    @classmethod
    def model_id_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('modelId cannot be empty')
        return v.strip()

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def _validation_issues(error: ValidationError) -> List[str]:
    issues = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        issues.append(f"{location}: {err.get('msg')}" if location else err.get("msg"))
    return issues


def parse_settings(document: dict) -> PluginSettings:
    """Validate a settings document, raising ConfigError on bad values."""
    if not isinstance(document, dict):
        raise ConfigError(["settings document must be a JSON object"])
    try:
        return PluginSettings.model_validate(document)
    except ValidationError as e:
        raise ConfigError(_validation_issues(e)) from e


def load_settings(path: str = None) -> PluginSettings:
    """Load settings, taking defaults for missing keys or a missing file."""
    settings_file = Path(path or SETTINGS_PATH)
    if not settings_file.exists():
        return PluginSettings()

    try:
        with open(settings_file, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError([f"cannot read settings file {settings_file}: {e}"]) from e

    return parse_settings(document)


def save_settings(settings: PluginSettings, path: str = None) -> None:
    """Write settings atomically as a camelCase JSON document."""
    settings_file = Path(path or SETTINGS_PATH)
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    tmp_file = settings_file.with_suffix(".tmp")
    with open(tmp_file, "w", encoding="utf-8") as f:
        json.dump(settings.to_document(), f, indent=2)
    tmp_file.replace(settings_file)


def validate_settings(settings: PluginSettings, provider_name: str = None) -> List[str]:
    """Validate settings against the chosen provider and return any issues."""
    provider_name = provider_name or EMBED_PROVIDER
    issues = []

    if provider_name not in EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {provider_name}")

    if provider_name == "openai" and not settings.provider_credential.strip():
        issues.append("providerCredential is required for the openai provider")

    if not settings.model_id.strip():
        issues.append("modelId cannot be empty")

    if REINDEX_CONCURRENCY < 1:
        issues.append("REINDEX_CONCURRENCY must be >= 1")

    if PROVIDER_MAX_RETRIES < 0:
        issues.append("PROVIDER_MAX_RETRIES must be >= 0")

    return issues


def get_embedding_provider(settings: PluginSettings, provider_name: str = None):
    """Build the configured embedding provider. Raises ConfigError when settings are invalid."""
    provider_name = provider_name or EMBED_PROVIDER
    issues = validate_settings(settings, provider_name)
    if issues:
        raise ConfigError(issues)

    if provider_name == "openai":
        from ..vector.embeddings import OpenAIEmbedding
        return OpenAIEmbedding(
            api_key=settings.provider_credential,
            model_id=settings.model_id,
            api_base=OPENAI_API_BASE,
            timeout=PROVIDER_TIMEOUT_SEC,
        )
    elif provider_name == "ollama":
        from ..vector.embeddings import OllamaEmbedding
        return OllamaEmbedding(model_id=settings.model_id, host=OLLAMA_HOST)
    elif provider_name == "sentence-transformers":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(model_id=settings.model_id)
    else:
        from ..vector.embeddings import DeterministicHashEmbedding
        return DeterministicHashEmbedding(dimension=HASH_EMBED_DIM, model_id=settings.model_id)


def get_vector_store(embeddings_dir: str = None):
    """Get configured record store implementation."""
    if VECTOR_STORE == "memory":
        from ..vector.store import InMemoryVectorRecordStore
        return InMemoryVectorRecordStore()

    from ..vector.store import FileVectorRecordStore
    return FileVectorRecordStore(embeddings_dir or EMBEDDINGS_DIR)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"

"""
Session lifecycle and host-facing commands.

A host creates one session per open vault with initialize() and tears it down
with shutdown(). The session owns every piece of index state; there are no
module-level singletons.
"""

import asyncio
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from . import config as config_module
from .config import PluginSettings, RefreshPolicy, get_embedding_provider, load_settings, save_settings
from .errors import ConfigError, SimilarNotesError, StorageError
from .index_manager import IndexManager, NoteState, ReindexReport
from .notes import NoteSource, VaultNoteSource, normalize_note_path
from .query_engine import SimilarityQueryEngine
from ..vector.embeddings import IEmbeddingProvider
from ..vector.store import IVectorRecordStore
from ..vector.types import EmbeddingRecord, SimilarityResult
from util.logging import logger

MAX_NOTICES = 50


class SimilarNotesSession:
    """Everything one vault session needs: store, provider, manager, engine."""

    def __init__(
        self,
        settings: PluginSettings,
        note_source: NoteSource,
        store: IVectorRecordStore,
        provider: Optional[IEmbeddingProvider] = None,
        provider_name: Optional[str] = None,
        settings_path: Optional[str] = None,
        notify: Optional[Callable[[str], None]] = None,
        config_issues: Optional[List[str]] = None,
        concurrency: int = None,
        max_retries: int = None,
        retry_backoff: float = None,
        approximate: bool = None,
    ):
        self.settings = settings
        self.note_source = note_source
        self.store = store
        self.provider = provider
        self.provider_name = provider_name
        self.settings_path = settings_path
        self.config_issues: List[str] = list(config_issues or [])
        self.notices: Deque[str] = deque(maxlen=MAX_NOTICES)
        self.closed = False
        self._callback = notify
        self._reindex_task: Optional[asyncio.Task] = None
        self._event_tasks: set = set()

        self.index_manager = IndexManager(
            store,
            provider,
            note_source,
            settings,
            concurrency=concurrency,
            max_retries=max_retries,
            retry_backoff=retry_backoff,
            notify=self.notify,
        )
        self.query_engine = SimilarityQueryEngine(store, settings, approximate=approximate, notify=self.notify)

    def notify(self, message: str) -> None:
        """Record a user-visible notice and forward it to the host."""
        self.notices.append(message)
        if self._callback is not None:
            self._callback(message)
        else:
            logger.info(f"Notice: {message}")

    def _ensure_open(self) -> None:
        if self.closed:
            raise SimilarNotesError("session has been shut down")

    def _require_provider(self) -> IEmbeddingProvider:
        self._ensure_open()
        if self.provider is None:
            raise ConfigError(self.config_issues or ["no embedding provider configured"])
        return self.provider

    # Commands

    async def generate_embedding(self, path: str) -> Optional[EmbeddingRecord]:
        """Generate & store the embedding for one note, even if it looks current."""
        self._require_provider()
        record = await self.index_manager.reindex_note(path, force=True)
        if record is not None:
            self.notify(f"Embedding generated and stored for {record.path}")
        return record

    def load_embedding(self, path: str) -> Optional[EmbeddingRecord]:
        """Load the stored embedding for a note. None means nothing is stored."""
        self._ensure_open()
        try:
            return self.store.get(path)
        except StorageError as e:
            self.notify(f"Could not read embedding for {path}: {e}")
            return None

    def start_reindex(self, rebuild: bool = False) -> asyncio.Task:
        """Start a full reindex in the background, or return the one already running."""
        self._require_provider()
        if self._reindex_task is not None and not self._reindex_task.done():
            return self._reindex_task
        generation = self.index_manager.cancel_generation
        self._reindex_task = asyncio.create_task(
            self.index_manager.reindex_all(rebuild=rebuild, generation=generation)
        )
        return self._reindex_task

    async def reindex_all(self, rebuild: bool = False) -> ReindexReport:
        """Reindex all notes and wait for the report."""
        return await self.start_reindex(rebuild=rebuild)

    def cancel_reindex(self) -> bool:
        """Cancel a running or scheduled reindex. Returns True when there was one."""
        scheduled = self._reindex_task is not None and not self._reindex_task.done()
        running = scheduled or self.index_manager.is_running
        self.index_manager.cancel()
        return running

    async def find_similar(self, path: str, k: int = None) -> List[SimilarityResult]:
        """
        Rank other notes by similarity to one note.

        Embeds the note first when its record is missing or stale, unless a
        reindex is running, in which case whatever is stored is used.
        """
        self._ensure_open()
        key = normalize_note_path(path)
        if self.provider is not None and not self.index_manager.is_running:
            try:
                await self.index_manager.reindex_note(key)
            except StorageError as e:
                self.notify(f"Could not refresh embedding for {key}: {e}")
        return await asyncio.to_thread(self.query_engine.query, key, k)

    def get_state(self, path: str) -> NoteState:
        return self.index_manager.get_state(path)

    # Host events

    async def on_note_modified(self, path: str) -> Optional[EmbeddingRecord]:
        self._ensure_open()
        if self.provider is None or self.settings.refresh_policy != RefreshPolicy.ALWAYS:
            return None
        return await self.index_manager.reindex_note(path)

    async def on_note_created(self, path: str) -> Optional[EmbeddingRecord]:
        self._ensure_open()
        if self.provider is None or self.settings.refresh_policy == RefreshPolicy.MANUAL:
            return None
        return await self.index_manager.reindex_note(path)

    async def on_note_deleted(self, path: str) -> bool:
        self._ensure_open()
        return await self.index_manager.remove_note(path)

    async def on_note_renamed(self, old_path: str, new_path: str) -> Optional[EmbeddingRecord]:
        self._ensure_open()
        await self.index_manager.remove_note(old_path)
        if self.provider is None or self.settings.refresh_policy == RefreshPolicy.MANUAL:
            return None
        return await self.index_manager.reindex_note(new_path)

    def dispatch_event(self, kind: str, path: str, new_path: str = None) -> asyncio.Task:
        """Schedule an event handler without making the host wait for it."""
        handlers = {
            "modified": lambda: self.on_note_modified(path),
            "created": lambda: self.on_note_created(path),
            "deleted": lambda: self.on_note_deleted(path),
            "renamed": lambda: self.on_note_renamed(path, new_path),
        }
        if kind not in handlers:
            raise ValueError(f"unknown note event: {kind}")
        if kind == "renamed" and not new_path:
            raise ValueError("renamed events need new_path")

        task = asyncio.create_task(handlers[kind]())
        self._event_tasks.add(task)
        task.add_done_callback(self._event_done)
        return task

    def _event_done(self, task: asyncio.Task) -> None:
        self._event_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.notify(f"Note event failed: {error}")

    # Settings

    async def update_settings(self, settings: PluginSettings) -> PluginSettings:
        """
        Apply new settings.

        A model or credential change cancels any running reindex and rebuilds
        the provider; records from the previous model stop being queryable.
        """
        self._ensure_open()
        previous = self.settings
        provider_changed = (
            settings.model_id != previous.model_id
            or settings.provider_credential != previous.provider_credential
        )

        if provider_changed:
            if self.cancel_reindex():
                self.notify("Reindex cancelled because the embedding settings changed")
            await self._await_reindex()
            if self.provider is not None:
                self.provider.close()
            self.provider, self.config_issues = _build_provider(settings, self.provider_name)
            for issue in self.config_issues:
                self.notify(f"Configuration problem: {issue}")

        self.settings = settings
        self.index_manager.configure(settings, self.provider)
        self.query_engine.configure(settings)

        if settings.model_id != previous.model_id:
            self.notify(f"Embedding model changed to {settings.model_id}; reindex to rebuild similar notes")

        if self.settings_path:
            save_settings(settings, self.settings_path)
        return settings

    async def _await_reindex(self) -> None:
        task = self._reindex_task
        if task is None or task.done():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    def status(self) -> Dict:
        try:
            record_count = self.store.count()
        except StorageError:
            record_count = None
        return {
            "model_id": self.settings.model_id,
            "refresh_policy": self.settings.refresh_policy.value,
            "provider": self.provider_name,
            "provider_ready": self.provider is not None,
            "config_issues": list(self.config_issues),
            "records": record_count,
            "reindex_running": self.index_manager.is_running,
            "closed": self.closed,
        }


def _build_provider(settings: PluginSettings, provider_name: Optional[str]):
    try:
        return get_embedding_provider(settings, provider_name), []
    except ConfigError as e:
        logger.warning(f"Embedding provider unavailable: {e}")
        return None, e.issues


def initialize(
    settings: Optional[PluginSettings] = None,
    note_source: Optional[NoteSource] = None,
    store: Optional[IVectorRecordStore] = None,
    provider: Optional[IEmbeddingProvider] = None,
    provider_name: Optional[str] = None,
    settings_path: Optional[str] = None,
    notify: Optional[Callable[[str], None]] = None,
    **options,
) -> SimilarNotesSession:
    """
    Open a session for one vault.

    Invalid settings never raise here: the session comes up without a
    provider, reports the problems as notices, and refuses to reindex until
    the settings are fixed.
    """
    issues: List[str] = []
    if settings is None:
        try:
            settings = load_settings(settings_path)
        except ConfigError as e:
            issues.extend(e.issues)
            settings = PluginSettings()

    provider_name = provider_name or config_module.EMBED_PROVIDER
    if provider is None:
        provider, provider_issues = _build_provider(settings, provider_name)
        issues.extend(provider_issues)

    session = SimilarNotesSession(
        settings=settings,
        note_source=note_source or VaultNoteSource(config_module.VAULT_PATH),
        store=store if store is not None else config_module.get_vector_store(),
        provider=provider,
        provider_name=provider_name,
        settings_path=settings_path,
        notify=notify,
        config_issues=issues,
        **options,
    )
    for issue in issues:
        session.notify(f"Configuration problem: {issue}")

    logger.log_operation("session.initialize", "ready" if provider else "degraded", {
        "model_id": settings.model_id,
        "provider": provider_name,
        "refresh_policy": settings.refresh_policy.value,
    })
    return session


async def shutdown(session: SimilarNotesSession) -> None:
    """Cancel background work and release the provider. Safe to call twice."""
    if session.closed:
        return

    session.cancel_reindex()
    await session._await_reindex()

    for task in list(session._event_tasks):
        task.cancel()
    if session._event_tasks:
        await asyncio.gather(*session._event_tasks, return_exceptions=True)

    if session.provider is not None:
        session.provider.close()
    session.closed = True
    logger.log_operation("session.shutdown", "success", {"model_id": session.settings.model_id})

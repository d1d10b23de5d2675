"""
Index manager: decides which notes need (re)embedding and keeps the record
store in step with the vault.

The only component that writes to the store. Blocking work (reading notes,
provider calls, store writes) runs in worker threads so the event loop stays
responsive between notes.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .config import PROVIDER_MAX_RETRIES, PROVIDER_RETRY_BACKOFF_SEC, REINDEX_CONCURRENCY, PluginSettings
from .errors import EmbeddingIndexError, MalformedResponseError, ProviderError, StorageError
from .notes import NoteSource, content_hash, is_excluded, normalize_note_path
from ..vector.embeddings import IEmbeddingProvider, model_dimension
from ..vector.store import IVectorRecordStore
from ..vector.types import EmbeddingRecord, utc_now
from util.logging import logger

MAX_RETRY_DELAY_SEC = 60.0


class NoteState(str, Enum):
    UNSEEN = "unseen"
    PENDING = "pending"
    EMBEDDING = "embedding"
    STORED = "stored"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReindexReport:
    """Outcome of one reindex pass."""

    scope: str = "all"
    candidates: int = 0
    excluded: int = 0
    up_to_date: int = 0
    embedded: int = 0
    failed: int = 0
    skipped: int = 0
    removed: int = 0
    provider_calls: int = 0
    cancelled: bool = False
    aborted: bool = False
    abort_reason: Optional[str] = None
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


class IndexManager:
    """Owns the reindex policy for one vault session."""

    def __init__(
        self,
        store: IVectorRecordStore,
        provider: Optional[IEmbeddingProvider],
        note_source: NoteSource,
        settings: PluginSettings,
        concurrency: int = None,
        max_retries: int = None,
        retry_backoff: float = None,
        notify: Optional[Callable[[str], None]] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.store = store
        self.provider = provider
        self.note_source = note_source
        self.settings = settings
        self.concurrency = max(1, concurrency if concurrency is not None else REINDEX_CONCURRENCY)
        self.max_retries = max(0, max_retries if max_retries is not None else PROVIDER_MAX_RETRIES)
        self.retry_backoff = retry_backoff if retry_backoff is not None else PROVIDER_RETRY_BACKOFF_SEC
        self._notify = notify or logger.info
        self._sleep = sleep

        self.states: Dict[str, NoteState] = {}
        self.last_report: Optional[ReindexReport] = None
        self._lock = asyncio.Lock()
        self._cancel_generation = 0
        self._active_generation: Optional[int] = None
        self._current_task: Optional[asyncio.Task] = None

    @property
    def model_id(self) -> str:
        return self.settings.model_id

    @property
    def cancel_generation(self) -> int:
        """Bumped by every cancel(); a pass scheduled before the bump stops."""
        return self._cancel_generation

    @property
    def _cancel_requested(self) -> bool:
        return self._active_generation is not None and self._active_generation != self._cancel_generation

    @property
    def is_running(self) -> bool:
        return self._current_task is not None and not self._current_task.done()

    def is_excluded(self, path: str) -> bool:
        return is_excluded(path, self.settings.exclusions)

    def get_state(self, path: str) -> NoteState:
        return self.states.get(normalize_note_path(path), NoteState.UNSEEN)

    def configure(self, settings: PluginSettings, provider: IEmbeddingProvider) -> None:
        """Swap settings and provider between passes.

        Records built by another model become stale through the model_id check.
        """
        self.settings = settings
        self.provider = provider

    def cancel(self) -> None:
        """Stop the running pass and any pass already scheduled.

        Notes not yet processed keep their prior record.
        """
        self._cancel_generation += 1
        if self._current_task is not None and not self._current_task.done():
            self._current_task.cancel()

    def expected_dimension(self) -> Optional[int]:
        if self.provider is not None:
            reported = self.provider.get_dimension()
            if reported is not None:
                return reported
        return model_dimension(self.model_id)

    def _is_current(self, record: EmbeddingRecord, digest: str) -> bool:
        if not record.is_current(digest, self.model_id):
            return False
        expected = self.expected_dimension()
        if expected is not None and record.dimension != expected:
            logger.warning(str(EmbeddingIndexError(record.path, expected, record.dimension)))
            return False
        return True

    async def _run_exclusive(self, scope: str, coro_factory, generation: Optional[int] = None) -> ReindexReport:
        if generation is None:
            generation = self._cancel_generation
        async with self._lock:
            self._active_generation = generation
            self._current_task = asyncio.current_task()
            report = ReindexReport(scope=scope)
            start_time = time.monotonic()
            error = None
            try:
                if self._cancel_requested:
                    report.cancelled = True
                else:
                    await coro_factory(report)
            except asyncio.CancelledError:
                report.cancelled = True
                if not self._cancel_requested:
                    raise
                task = asyncio.current_task()
                if task is not None and hasattr(task, "uncancel"):
                    task.uncancel()
            except Exception as e:
                error = e
                raise
            finally:
                self._current_task = None
                self._active_generation = None
                self.last_report = report
                logger.log_reindex_pass(scope, report.to_dict(), start_time, time.monotonic(), error=error)
            return report

    async def reindex_all(self, rebuild: bool = False, generation: Optional[int] = None) -> ReindexReport:
        """
        Bring every stored embedding up to date with the vault.

        Args:
            rebuild: Clear the store first and re-embed everything
            generation: cancel_generation observed when the pass was scheduled

        Returns:
            ReindexReport with per-outcome counts
        """

        async def run(report: ReindexReport):
            if rebuild:
                await asyncio.to_thread(self.store.clear)
                self.states.clear()

            candidates = [normalize_note_path(p) for p in await asyncio.to_thread(self.note_source.list_notes)]
            report.candidates = len(candidates)
            included = [p for p in candidates if not self.is_excluded(p)]
            report.excluded = report.candidates - len(included)

            await self._process_all(included, report)

            if not report.cancelled:
                await self._prune(set(included), report)

            self._summarize(report)

        return await self._run_exclusive("all", run, generation)

    async def reindex_note(self, path: str, force: bool = False) -> Optional[EmbeddingRecord]:
        """
        Embed one note if its stored record is missing or stale.

        Excluded or vanished notes have their record removed.

        Args:
            path: Vault-relative note path
            force: Re-embed even when the stored record is current

        Returns:
            The current record, or None when the note was not embedded
        """
        key = normalize_note_path(path)
        result: List[Optional[EmbeddingRecord]] = [None]

        async def run(report: ReindexReport):
            report.candidates = 1
            if self.is_excluded(key) or not await asyncio.to_thread(self.note_source.exists, key):
                report.excluded = 1 if self.is_excluded(key) else 0
                if await self._delete_record(key):
                    report.removed = 1
                return
            result[0] = await self._process_note(key, report, force=force)
            if report.errors:
                self._notify(f"Embedding failed for {key}: {report.errors[key]}")

        await self._run_exclusive("note", run)
        return result[0]

    async def remove_note(self, path: str) -> bool:
        """Drop the record of a deleted note. Returns True when one existed."""
        key = normalize_note_path(path)
        async with self._lock:
            return await self._delete_record(key)

    async def _delete_record(self, key: str) -> bool:
        try:
            existed = await asyncio.to_thread(self.store.get, key) is not None
            await asyncio.to_thread(self.store.delete, key)
        except StorageError as e:
            logger.log_vector_operation("delete", key, {"error": str(e)}, status="failed")
            return False
        self.states.pop(key, None)
        if existed:
            logger.log_vector_operation("delete", key)
        return existed

    async def _process_all(self, paths: Iterable[str], report: ReindexReport) -> None:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(path: str):
            async with semaphore:
                await self._process_note(path, report)

        for path in paths:
            self.states[path] = NoteState.PENDING
        tasks = [asyncio.ensure_future(guarded(path)) for path in paths]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # No sibling may outlive the pass and write after the lock is released
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _process_note(self, path: str, report: ReindexReport, force: bool = False) -> Optional[EmbeddingRecord]:
        if self._cancel_requested or report.aborted:
            return None

        try:
            text = await asyncio.to_thread(self.note_source.read_note, path)
        except (OSError, UnicodeDecodeError) as e:
            self.states[path] = NoteState.FAILED
            report.failed += 1
            report.errors[path] = f"read failed: {e}"
            logger.log_vector_operation("read_note", path, {"error": str(e)}, status="failed")
            return None

        digest = content_hash(text)

        if not force:
            try:
                existing = await asyncio.to_thread(self.store.get, path)
            except StorageError as e:
                logger.log_vector_operation("get", path, {"error": str(e)}, status="failed")
                existing = None
            if existing is not None and self._is_current(existing, digest):
                self.states[path] = NoteState.STORED
                report.up_to_date += 1
                return existing

        vector = await self._generate(path, text, report)
        if vector is None:
            return None

        record = EmbeddingRecord(
            path=path,
            vector=vector,
            model_id=self.model_id,
            content_hash=digest,
            updated_at=utc_now(),
        )
        try:
            await asyncio.to_thread(self.store.put, record)
        except StorageError as e:
            self.states[path] = NoteState.FAILED
            report.failed += 1
            report.errors[path] = str(e)
            logger.log_vector_operation("put", path, {"error": str(e)}, status="failed")
            return None

        self.states[path] = NoteState.STORED
        report.embedded += 1
        logger.log_vector_operation("put", path, {"model_id": self.model_id, "dimension": len(vector)})
        return record

    async def _generate(self, path: str, text: str, report: ReindexReport) -> Optional[List[float]]:
        """Call the provider with bounded retry on transient errors."""
        attempt = 0
        while True:
            attempt += 1
            self.states[path] = NoteState.EMBEDDING
            report.provider_calls += 1
            try:
                vector = await asyncio.to_thread(self.provider.embed_text, text)
                expected = self.expected_dimension()
                if expected is not None and len(vector) != expected:
                    raise MalformedResponseError(f"embedding has dimension {len(vector)}, expected {expected}")
                return vector
            except ProviderError as e:
                will_retry = e.transient and attempt <= self.max_retries and not self._cancel_requested
                logger.log_provider_failure(path, e, attempt, will_retry)

                if will_retry:
                    self.states[path] = NoteState.FAILED
                    await self._sleep(self._retry_delay(e, attempt))
                    self.states[path] = NoteState.PENDING
                    continue

                report.errors[path] = f"{type(e).__name__}: {e}"
                if e.fatal:
                    self.states[path] = NoteState.FAILED
                    report.failed += 1
                    if not report.aborted:
                        report.aborted = True
                        report.abort_reason = str(e)
                        self._notify(f"Reindex stopped: {e}")
                elif e.transient:
                    self.states[path] = NoteState.FAILED
                    report.failed += 1
                else:
                    self.states[path] = NoteState.SKIPPED
                    report.skipped += 1
                return None
            except Exception as e:
                # Unmapped provider failure: skip this note, keep the pass going
                logger.log_provider_failure(path, e, attempt, False)
                self.states[path] = NoteState.SKIPPED
                report.skipped += 1
                report.errors[path] = f"{type(e).__name__}: {e}"
                return None

    def _retry_delay(self, error: ProviderError, attempt: int) -> float:
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return min(retry_after, MAX_RETRY_DELAY_SEC)
        return min(self.retry_backoff * (2 ** (attempt - 1)), MAX_RETRY_DELAY_SEC)

    async def _prune(self, keep: set, report: ReindexReport) -> None:
        """Delete records of notes that vanished or became excluded."""
        try:
            snapshot = await asyncio.to_thread(lambda: [path for path, _ in self.store.list_all()])
        except StorageError as e:
            logger.warning(f"Skipping prune, store listing failed: {e}")
            return

        for path in snapshot:
            if path in keep:
                continue
            try:
                await asyncio.to_thread(self.store.delete, path)
            except StorageError as e:
                logger.log_vector_operation("delete", path, {"error": str(e)}, status="failed")
                continue
            self.states.pop(path, None)
            report.removed += 1
            logger.log_vector_operation("delete", path, {"reason": "pruned"})

    def _summarize(self, report: ReindexReport) -> None:
        if report.aborted:
            return
        if report.failed or report.skipped:
            self._notify(
                f"Embeddings updated: {report.embedded} embedded, "
                f"{report.failed} failed, {report.skipped} skipped"
            )
        else:
            self._notify(f"Embeddings updated for all notes! ({report.embedded} embedded, {report.up_to_date} unchanged)")

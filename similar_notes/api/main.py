"""
HTTP surface for a similar-notes session.

One session per app, opened in the lifespan handler and shut down with it.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .schemas import (
    EmbeddingResponse,
    EventResponse,
    HealthResponse,
    NoteEventRequest,
    NotePathRequest,
    NoticesResponse,
    ReindexRequest,
    ReindexResponse,
    SimilarNote,
    SimilarNotesResponse,
)
from ..core.config import VERSION, debug_enabled, parse_settings
from ..core.errors import ConfigError
from ..core.index_manager import NoteState
from ..core.notes import normalize_note_path
from ..core.session import SimilarNotesSession, initialize, shutdown


def _embedding_response(record, include_vector: bool = False) -> EmbeddingResponse:
    return EmbeddingResponse(
        path=record.path,
        model_id=record.model_id,
        content_hash=record.content_hash,
        dimension=record.dimension,
        updated_at=record.updated_at,
        vector=list(record.vector) if include_vector else None,
    )


def _note_key(path: str) -> str:
    try:
        return normalize_note_path(path)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid note path: {e}")


def create_app(session_factory: Optional[Callable[[], SimilarNotesSession]] = None) -> FastAPI:
    """Build the API. session_factory defaults to initialize() driven by env config."""
    factory = session_factory or initialize

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.session = factory()
        try:
            yield
        finally:
            await shutdown(app.state.session)

    app = FastAPI(
        title="Similar Notes API",
        version=VERSION,
        description="Embedding index and similar-note search over a notes vault",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
        lifespan=lifespan,
    )

    def get_session(request: Request) -> SimilarNotesSession:
        return request.app.state.session

    @app.exception_handler(ConfigError)
    async def config_error_handler(request, exc: ConfigError):
        return JSONResponse(status_code=400, content={"detail": str(exc), "issues": exc.issues})

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(request: Request):
        """Report session readiness."""
        status = get_session(request).status()
        return HealthResponse(
            status="healthy" if status["provider_ready"] else "degraded",
            version=VERSION,
            model_id=status["model_id"],
            provider=status["provider"],
            provider_ready=status["provider_ready"],
            records=status["records"],
            reindex_running=status["reindex_running"],
            config_issues=status["config_issues"],
        )

    @app.post("/notes/embedding", response_model=EmbeddingResponse)
    async def generate_embedding_endpoint(req: NotePathRequest, request: Request):
        """Generate and store the embedding for one note."""
        session = get_session(request)
        key = _note_key(req.path)
        record = await session.generate_embedding(key)
        if record is None:
            if session.get_state(key) in (NoteState.FAILED, NoteState.SKIPPED):
                report = session.index_manager.last_report
                reason = report.errors.get(key) if report else None
                raise HTTPException(status_code=502, detail=reason or f"Embedding failed for {key}")
            raise HTTPException(status_code=404, detail=f"Note not found or excluded: {key}")
        return _embedding_response(record)

    @app.get("/notes/embedding", response_model=EmbeddingResponse)
    def load_embedding_endpoint(request: Request, path: str = Query(...), include_vector: bool = False):
        """Return the stored embedding for a note."""
        record = get_session(request).load_embedding(_note_key(path))
        if record is None:
            raise HTTPException(status_code=404, detail="No embedding stored")
        return _embedding_response(record, include_vector)

    @app.post("/reindex", response_model=ReindexResponse)
    async def reindex_endpoint(request: Request, req: Optional[ReindexRequest] = None):
        """Reindex every note; with wait=false the pass runs in the background."""
        req = req or ReindexRequest()
        session = get_session(request)
        if not req.wait:
            session.start_reindex(rebuild=req.rebuild)
            return ReindexResponse(started=True)
        report = await session.reindex_all(rebuild=req.rebuild)
        return ReindexResponse(started=True, report=report.to_dict())

    @app.delete("/reindex")
    async def cancel_reindex_endpoint(request: Request):
        return {"cancelled": get_session(request).cancel_reindex()}

    @app.get("/notes/similar", response_model=SimilarNotesResponse)
    async def similar_notes_endpoint(request: Request, path: str = Query(...), k: Optional[int] = None):
        """Rank other notes by similarity to the given one."""
        key = _note_key(path)
        results = await get_session(request).find_similar(key, k)
        return SimilarNotesResponse(
            path=key,
            k=k,
            results=[SimilarNote(path=r.path, score=r.score) for r in results],
        )

    @app.post("/events/{kind}", response_model=EventResponse)
    async def note_event_endpoint(kind: str, req: NoteEventRequest, request: Request):
        """Feed a vault change event to the session's refresh policy."""
        key = _note_key(req.path)
        new_key = _note_key(req.new_path) if req.new_path else None
        try:
            get_session(request).dispatch_event(kind, key, new_key)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return EventResponse(kind=kind, path=key, scheduled=True)

    @app.get("/settings")
    def get_settings_endpoint(request: Request):
        return get_session(request).settings.to_document()

    @app.put("/settings")
    async def put_settings_endpoint(request: Request, document: dict = Body(...)):
        """Replace the settings document. Missing keys take defaults."""
        settings = parse_settings(document)
        updated = await get_session(request).update_settings(settings)
        return updated.to_document()

    @app.get("/notices", response_model=NoticesResponse)
    def notices_endpoint(request: Request):
        return NoticesResponse(notices=list(get_session(request).notices))

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Handle all unhandled exceptions."""
        logging.error(f"Unhandled exception: {exc}")
        content = {"detail": "Internal server error"}
        if debug_enabled():
            content["debug"] = str(exc)
        return JSONResponse(status_code=500, content=content)

    return app


app = create_app()

from __future__ import annotations

"""
HTTP surface for the emotion jar backend.

Design intent:
- Keep API orchestration thin and typed.
- Delegate flow logic to the per-session state machine.
- Report the current phase so the browser only has to render it.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from emotion_jar.flow.machine import InvalidTransitionError, JarStateMachine
from emotion_jar.internal_core import audit
from emotion_jar.internal_core.context import AppContext, build_app_context
from emotion_jar.internal_core.contracts import AppState, AuditEvent, Note, TransformResult


class SessionViewResponse(BaseModel):
    session_id: str
    state: AppState
    accepted: bool = True
    draft_text: str = ""
    submit_enabled: bool = False
    current_note: Optional[Note] = None
    current_note_saved: bool = False
    note_count: int = Field(ge=0)
    gallery_enabled: bool = False
    random_enabled: bool = False
    gallery_notes: list[Note] = Field(default_factory=list)
    phase_running: bool = False
    debug: dict[str, Any] = Field(default_factory=dict)


class DraftUpdateRequest(BaseModel):
    text: str = Field(default="", max_length=5000)


class SessionAuditResponse(BaseModel):
    session_id: str
    events: list[AuditEvent] = Field(default_factory=list)


class NotesResponse(BaseModel):
    notes: list[Note] = Field(default_factory=list)
    count: int = Field(ge=0)


class NoteDeleteResponse(BaseModel):
    note_id: str
    deleted: bool
    count: int = Field(ge=0)


class TransformRequest(BaseModel):
    text: str = Field(min_length=1, max_length=5000)


class TransformResponse(BaseModel):
    result: TransformResult
    debug: dict[str, Any] = Field(default_factory=dict)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    existing = getattr(app.state, "jar_context", None)
    if isinstance(existing, AppContext):
        existing.close()


app = FastAPI(title="emotion jar backend service", lifespan=_lifespan)
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_app_context() -> AppContext:
    existing = getattr(app.state, "jar_context", None)
    if isinstance(existing, AppContext):
        return existing
    created = build_app_context()
    setattr(app.state, "jar_context", created)
    return created


def _get_machine(ctx: AppContext, session_id: str) -> JarStateMachine:
    ctx.sessions.cleanup_expired_sessions()
    try:
        return ctx.sessions.get_machine(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}") from exc


def _serialize_view(
    ctx: AppContext,
    session_id: str,
    machine: JarStateMachine,
    *,
    accepted: bool = True,
    debug: Optional[dict[str, Any]] = None,
) -> SessionViewResponse:
    state = machine.state
    return SessionViewResponse(
        session_id=session_id,
        state=state,
        accepted=accepted,
        draft_text=machine.draft,
        submit_enabled=machine.submit_enabled,
        current_note=machine.current_note if state == "RESULT" else None,
        current_note_saved=machine.current_note_saved if state == "RESULT" else False,
        note_count=len(ctx.store),
        gallery_enabled=machine.gallery_enabled,
        random_enabled=machine.random_enabled,
        gallery_notes=ctx.store.notes() if state == "GALLERY" else [],
        phase_running=ctx.sessions.phase_running(session_id),
        debug=dict(debug or {}),
    )


def _invalid_transition(exc: InvalidTransitionError) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


async def _guarded_phase(ctx: AppContext, session_id: str, phase: Awaitable[Any], name: str) -> None:
    try:
        await phase
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.exception("background phase failed session_id=%s phase=%s", session_id, name)
        audit.log_event(ctx.sessions, session_id, "ERROR", "PHASE_FAILED", f"{name}: {type(exc).__name__}")


async def _run_phase(ctx: AppContext, session_id: str, phase: Awaitable[Any], *, name: str, wait: bool) -> None:
    if wait:
        try:
            await phase
        except InvalidTransitionError as exc:
            raise _invalid_transition(exc) from exc
        return
    task = asyncio.create_task(_guarded_phase(ctx, session_id, phase, name))
    ctx.sessions.set_pending_task(session_id, task)


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionViewResponse)
async def create_session() -> SessionViewResponse:
    ctx = _get_app_context()
    session_id = ctx.create_session()
    machine = _get_machine(ctx, session_id)
    return _serialize_view(
        ctx,
        session_id,
        machine,
        debug={"backend": ctx.gateway.backend_name, "scheduler": ctx.scheduler.name()},
    )


@app.get("/sessions/{session_id}", response_model=SessionViewResponse)
async def session_view(session_id: str) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    return _serialize_view(ctx, session_id, machine)


@app.delete("/sessions/{session_id}")
async def session_destroy(session_id: str) -> dict[str, Any]:
    ctx = _get_app_context()
    if not ctx.sessions.destroy_session(session_id, reason="client_closed"):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"session_id": session_id, "destroyed": True}


@app.get("/sessions/{session_id}/audit", response_model=SessionAuditResponse)
async def session_audit(session_id: str) -> SessionAuditResponse:
    ctx = _get_app_context()
    _get_machine(ctx, session_id)
    session = ctx.sessions.get_session(session_id)
    return SessionAuditResponse(session_id=session_id, events=session["audit_events"])


@app.post("/sessions/{session_id}/compose", response_model=SessionViewResponse)
async def session_compose(session_id: str) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        machine.begin_entry()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    return _serialize_view(ctx, session_id, machine)


@app.put("/sessions/{session_id}/draft", response_model=SessionViewResponse)
async def session_draft(session_id: str, payload: DraftUpdateRequest) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        machine.update_draft(payload.text)
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    return _serialize_view(ctx, session_id, machine)


@app.post("/sessions/{session_id}/cancel", response_model=SessionViewResponse)
async def session_cancel(session_id: str) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        machine.cancel_entry()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    return _serialize_view(ctx, session_id, machine)


@app.post("/sessions/{session_id}/submit", response_model=SessionViewResponse)
async def session_submit(session_id: str, wait: bool = Query(default=False)) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        accepted = machine.accept_submit()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    if accepted:
        await _run_phase(ctx, session_id, machine.run_submit_steps(), name="submit", wait=wait)
    return _serialize_view(ctx, session_id, machine, accepted=accepted)


@app.post("/sessions/{session_id}/reveal", response_model=SessionViewResponse)
async def session_reveal(session_id: str, wait: bool = Query(default=False)) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        machine.accept_reveal()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    started = time.perf_counter()
    await _run_phase(ctx, session_id, machine.run_reveal(), name="reveal", wait=wait)
    debug: dict[str, Any] = {"backend": ctx.gateway.backend_name}
    if wait:
        debug["elapsed_ms"] = round((time.perf_counter() - started) * 1000.0, 2)
    return _serialize_view(ctx, session_id, machine, debug=debug)


@app.post("/sessions/{session_id}/random", response_model=SessionViewResponse)
async def session_random(session_id: str, wait: bool = Query(default=False)) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        accepted = machine.accept_random()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    if accepted:
        await _run_phase(ctx, session_id, machine.run_random(), name="random", wait=wait)
    return _serialize_view(ctx, session_id, machine, accepted=accepted)


@app.post("/sessions/{session_id}/save", response_model=SessionViewResponse)
async def session_save(session_id: str) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        saved = machine.save_and_close()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    return _serialize_view(ctx, session_id, machine, debug={"saved": saved})


@app.post("/sessions/{session_id}/gallery", response_model=SessionViewResponse)
async def session_gallery_open(session_id: str) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        accepted = machine.open_gallery()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    return _serialize_view(ctx, session_id, machine, accepted=accepted)


@app.post("/sessions/{session_id}/gallery/close", response_model=SessionViewResponse)
async def session_gallery_close(session_id: str) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        machine.close_gallery()
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    return _serialize_view(ctx, session_id, machine)


@app.post("/sessions/{session_id}/gallery/{note_id}", response_model=SessionViewResponse)
async def session_gallery_select(session_id: str, note_id: str) -> SessionViewResponse:
    ctx = _get_app_context()
    machine = _get_machine(ctx, session_id)
    try:
        machine.select_note(note_id)
    except InvalidTransitionError as exc:
        raise _invalid_transition(exc) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=f"Note not found: {note_id}") from exc
    return _serialize_view(ctx, session_id, machine)


@app.get("/notes", response_model=NotesResponse)
async def notes_list() -> NotesResponse:
    ctx = _get_app_context()
    notes = ctx.store.notes()
    return NotesResponse(notes=notes, count=len(notes))


@app.delete("/notes/{note_id}", response_model=NoteDeleteResponse)
async def notes_delete(note_id: str) -> NoteDeleteResponse:
    ctx = _get_app_context()
    normalized = str(note_id or "").strip()
    if not ctx.store.remove(normalized):
        raise HTTPException(status_code=404, detail=f"Note not found: {normalized}")
    logger.info("note deleted note_id=%s", normalized)
    return NoteDeleteResponse(note_id=normalized, deleted=True, count=len(ctx.store))


@app.post("/transform", response_model=TransformResponse)
async def transform(payload: TransformRequest) -> TransformResponse:
    ctx = _get_app_context()
    text = payload.text.strip()
    if not text:
        raise HTTPException(status_code=400, detail="text must not be blank.")
    started = time.perf_counter()
    result = await ctx.gateway.transform(text)
    return TransformResponse(
        result=result,
        debug={
            "backend": ctx.gateway.backend_name,
            "floor_sec": ctx.gateway.floor_sec,
            "elapsed_ms": round((time.perf_counter() - started) * 1000.0, 2),
        },
    )

from __future__ import annotations

"""
Per-session view-state machine for the jar flow.

Design intent:
- Exactly one AppState is active; every change goes through `_transition`.
- Timed phases are named steps awaited on the injected scheduler.
- Only the gateway call is fallible, and the gateway never raises, so
  RESULT always has a note to show.
"""

import logging
import random
import time
import uuid
from typing import Callable, Optional

from emotion_jar.internal_core.contracts import AppState, Note, TransformResult
from emotion_jar.internal_core.note_store import JsonNoteStore
from emotion_jar.transform.gateway import TransformationGateway

from .scheduler import AsyncioScheduler, FlowTiming, Scheduler, TimedStep

logger = logging.getLogger(__name__)

TransitionHook = Callable[[AppState, AppState, str], None]
TransformHook = Callable[[TransformResult], None]


class InvalidTransitionError(RuntimeError):
    def __init__(self, state: AppState, action: str):
        super().__init__(f"Action '{action}' is not allowed in state {state}")
        self.state = state
        self.action = action


def _new_note_id() -> str:
    return uuid.uuid4().hex


def _now_ms() -> int:
    return int(time.time() * 1000)


class JarStateMachine:
    def __init__(
        self,
        *,
        store: JsonNoteStore,
        gateway: TransformationGateway,
        scheduler: Optional[Scheduler] = None,
        timing: Optional[FlowTiming] = None,
        rng: Optional[random.Random] = None,
        on_transition: Optional[TransitionHook] = None,
        on_transform: Optional[TransformHook] = None,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._scheduler = scheduler or AsyncioScheduler()
        self._timing = timing or FlowTiming()
        self._rng = rng or random.Random()
        self._on_transition = on_transition
        self._on_transform = on_transform
        self._state: AppState = "HOME"
        self._draft = ""
        self._current_note: Optional[Note] = None

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def draft(self) -> str:
        return self._draft

    @property
    def current_note(self) -> Optional[Note]:
        return self._current_note

    @property
    def timing(self) -> FlowTiming:
        return self._timing

    @property
    def submit_enabled(self) -> bool:
        return bool(self._draft.strip())

    @property
    def gallery_enabled(self) -> bool:
        return not self._store.is_empty()

    @property
    def random_enabled(self) -> bool:
        return not self._store.is_empty()

    @property
    def current_note_saved(self) -> bool:
        return self._current_note is not None and self._store.contains(self._current_note.id)

    def _require(self, action: str, *allowed: AppState) -> None:
        if self._state not in allowed:
            raise InvalidTransitionError(self._state, action)

    def _transition(self, target: AppState, action: str) -> None:
        source = self._state
        self._state = target
        logger.debug("jar transition %s -> %s action=%s", source, target, action)
        if self._on_transition is not None:
            self._on_transition(source, target, action)

    async def _run_step(self, step: TimedStep) -> None:
        await self._scheduler.sleep(step.delay_sec)
        # Nothing may leave a timed phase early; a mismatch is a bug, not user input.
        if self._state != step.source:
            raise InvalidTransitionError(self._state, step.name)
        self._transition(step.target, step.name)

    def begin_entry(self) -> None:
        self._require("begin_entry", "HOME")
        self._transition("INPUT", "begin_entry")

    def update_draft(self, text: str) -> None:
        self._require("update_draft", "INPUT")
        self._draft = str(text or "")

    def cancel_entry(self) -> None:
        # The draft survives so reopening the composer shows it again.
        self._require("cancel_entry", "INPUT")
        self._transition("HOME", "cancel_entry")

    def accept_submit(self) -> bool:
        """Enter PROCESSING_CRUMPLE if the draft is non-blank; the timed steps follow via `run_submit_steps`."""

        self._require("submit", "INPUT")
        if not self.submit_enabled:
            return False
        self._transition("PROCESSING_CRUMPLE", "submit")
        return True

    async def run_submit_steps(self) -> None:
        await self._run_step(self._timing.crumple_step())
        await self._run_step(self._timing.throw_step())

    async def submit(self) -> bool:
        if not self.accept_submit():
            return False
        await self.run_submit_steps()
        return True

    def accept_reveal(self) -> None:
        self._require("reveal", "REVIEW_PROMPT")
        self._transition("TRANSFORMING", "reveal")

    async def run_reveal(self) -> Note:
        original_text = self._draft
        result = await self._gateway.transform(original_text)
        if self._on_transform is not None:
            self._on_transform(result)
        note = Note(
            id=_new_note_id(),
            original_text=original_text,
            transformed_text=result.transformed_text,
            quote=result.quote,
            created_at=_now_ms(),
        )
        self._current_note = note
        self._transition("RESULT", "transform_done")
        return note

    async def reveal(self) -> Note:
        self.accept_reveal()
        return await self.run_reveal()

    def save_and_close(self) -> bool:
        self._require("save_and_close", "RESULT")
        saved = False
        if self._current_note is not None:
            saved = self._store.append(self._current_note)
        self._draft = ""
        self._current_note = None
        self._transition("HOME", "save_and_close")
        return saved

    def open_gallery(self) -> bool:
        self._require("open_gallery", "HOME")
        if self._store.is_empty():
            return False
        self._transition("GALLERY", "open_gallery")
        return True

    def close_gallery(self) -> None:
        self._require("close_gallery", "GALLERY")
        self._transition("HOME", "close_gallery")

    def select_note(self, note_id: str) -> Note:
        self._require("select_note", "GALLERY")
        note = self._store.get(note_id)
        if note is None:
            raise LookupError(f"Unknown note_id: {note_id}")
        self._current_note = note
        self._transition("RESULT", "select_note")
        return note

    def accept_random(self) -> bool:
        self._require("open_random", "HOME", "GALLERY")
        if self._store.is_empty():
            return False
        self._transition("TRANSFORMING", "open_random")
        return True

    async def run_random(self) -> Optional[Note]:
        await self._scheduler.sleep(self._timing.floor_sec)
        if self._state != "TRANSFORMING":
            raise InvalidTransitionError(self._state, "random_done")
        if self._store.is_empty():
            # Every note was deleted during the delay.
            self._transition("HOME", "random_empty")
            return None
        note = self._store.pick_random(self._rng)
        self._current_note = note
        self._transition("RESULT", "random_done")
        return note

    async def open_random(self) -> Optional[Note]:
        if not self.accept_random():
            return None
        return await self.run_random()

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from threading import RLock
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from .contracts import AuditEvent

if TYPE_CHECKING:
    from emotion_jar.flow.machine import JarStateMachine

logger = logging.getLogger(__name__)


def _cancel_task(task: Optional[asyncio.Task]) -> None:
    if task is None or task.done():
        return
    try:
        task.get_loop().call_soon_threadsafe(task.cancel)
    except RuntimeError:
        # Loop already closed; the task can no longer run.
        pass


class InMemorySessionStore:
    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}

    def create_session(self, machine_factory: Callable[[str], "JarStateMachine"]) -> str:
        session_id = uuid.uuid4().hex
        now = time.time()
        machine = machine_factory(session_id)
        with self._lock:
            self._sessions[session_id] = {
                "session_id": session_id,
                "created_at": now,
                "updated_at": now,
                "expires_at": now + self._ttl_seconds,
                "machine": machine,
                "pending_task": None,
                "audit_events": [],
            }
        return session_id

    def _touch(self, session_id: str) -> None:
        now = time.time()
        session = self._sessions[session_id]
        session["updated_at"] = now
        session["expires_at"] = now + self._ttl_seconds

    def _require(self, session_id: str) -> Dict[str, Any]:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session_id: {session_id}")
        return session

    def get_machine(self, session_id: str) -> "JarStateMachine":
        with self._lock:
            session = self._require(session_id)
            self._touch(session_id)
            return session["machine"]

    def set_pending_task(self, session_id: str, task: Optional[asyncio.Task]) -> None:
        with self._lock:
            self._require(session_id)["pending_task"] = task
            self._touch(session_id)

    def phase_running(self, session_id: str) -> bool:
        with self._lock:
            task = self._require(session_id)["pending_task"]
        return task is not None and not task.done()

    def append_audit_event(self, session_id: str, event: AuditEvent) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                # Late events from a destroyed session are dropped.
                return
            session["audit_events"].append(event)

    def get_session(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            session = self._require(session_id)
            return {
                "session_id": session["session_id"],
                "created_at": session["created_at"],
                "updated_at": session["updated_at"],
                "expires_at": session["expires_at"],
                "machine": session["machine"],
                "audit_events": list(session["audit_events"]),
            }

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions.keys())

    def destroy_session(self, session_id: str, reason: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        _cancel_task(session.get("pending_task"))
        logger.info("session destroyed session_id=%s reason=%s", session_id, reason)
        return True

    def cleanup_expired_sessions(self) -> int:
        now = time.time()
        with self._lock:
            expired = [sid for sid, session in self._sessions.items() if session["expires_at"] <= now]
        for session_id in expired:
            self.destroy_session(session_id, reason="ttl_expired")
        return len(expired)

    def close(self) -> None:
        for session_id in self.session_ids():
            self.destroy_session(session_id, reason="shutdown")

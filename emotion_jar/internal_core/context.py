from __future__ import annotations

"""
Explicit application context: everything one running jar service shares.

Design intent:
- Replace ambient globals with one object that has a clear build and close.
- Let tests swap the scheduler, backend, store or RNG independently.
"""

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from emotion_jar.flow.machine import JarStateMachine
from emotion_jar.flow.scheduler import AsyncioScheduler, FlowTiming, InstantScheduler, Scheduler
from emotion_jar.transform.base import TransformBackend
from emotion_jar.transform.gateway import TransformationGateway, resolve_debug_log_path

from . import audit
from .config import JarConfig, _project_root, load_config
from .contracts import AppState, TransformResult
from .note_store import JsonNoteStore
from .session_store import InMemorySessionStore

logger = logging.getLogger(__name__)

_UNSET = object()


def build_backend(cfg: JarConfig) -> Optional[TransformBackend]:
    backend = cfg.JAR_LLM_BACKEND
    if backend == "gemini":
        from emotion_jar.transform.gemini_adapter import GeminiBackend

        return GeminiBackend(
            cfg.JAR_GEMINI_API_KEY,
            model=cfg.JAR_GEMINI_MODEL,
            temperature=cfg.JAR_LLM_TEMPERATURE,
            api_version=cfg.JAR_GEMINI_API_VERSION,
        )
    if backend == "llama_cpp":
        from emotion_jar.transform.llama_cpp_adapter import LlamaCppBackend

        return LlamaCppBackend(
            cfg.JAR_LLAMA_CPP_MODEL,
            chat_format=cfg.JAR_LLAMA_CPP_CHAT_FORMAT,
            n_ctx=cfg.JAR_LLAMA_CPP_N_CTX,
            n_gpu_layers=cfg.JAR_LLAMA_CPP_N_GPU_LAYERS,
            model_root=cfg.JAR_MODEL_ROOT,
            max_tokens=cfg.JAR_LLM_MAX_TOKENS,
            temperature=cfg.JAR_LLM_TEMPERATURE,
        )
    if backend not in {"none", ""}:
        logger.warning("unknown JAR_LLM_BACKEND=%s, every note will use the fallback pool", backend)
    return None


@dataclass
class AppContext:
    config: JarConfig
    store: JsonNoteStore
    gateway: TransformationGateway
    scheduler: Scheduler
    sessions: InMemorySessionStore
    timing: FlowTiming
    rng: random.Random

    def new_machine(self, session_id: str) -> JarStateMachine:
        def on_transition(source: AppState, target: AppState, action: str) -> None:
            audit.log_event(
                self.sessions,
                session_id,
                "STATE_CHANGED",
                action.upper(),
                f"{source} -> {target}",
            )
            if target == "TRANSFORMING" and action == "reveal":
                audit.log_event(
                    self.sessions, session_id, "TRANSFORM_STARTED", "TRANSFORM_START", f"backend={self.gateway.backend_name}"
                )
            if source == "RESULT" and action == "save_and_close":
                audit.log_event(self.sessions, session_id, "NOTE_SAVED", "SAVE_AND_CLOSE", f"notes={len(self.store)}")

        def on_transform(result: TransformResult) -> None:
            if result.source == "fallback":
                audit.log_event(
                    self.sessions, session_id, "TRANSFORM_FALLBACK", str(result.reason or "").upper(), "fallback pair used"
                )
            else:
                audit.log_event(
                    self.sessions, session_id, "TRANSFORM_DONE", "TRANSFORM_OK", f"backend={self.gateway.backend_name}"
                )

        return JarStateMachine(
            store=self.store,
            gateway=self.gateway,
            scheduler=self.scheduler,
            timing=self.timing,
            rng=self.rng,
            on_transition=on_transition,
            on_transform=on_transform,
        )

    def create_session(self) -> str:
        self.sessions.cleanup_expired_sessions()
        session_id = self.sessions.create_session(self.new_machine)
        audit.log_event(self.sessions, session_id, "SESSION_CREATED", "SESSION_CREATED", f"notes={len(self.store)}")
        return session_id

    def close(self) -> None:
        self.sessions.close()


def build_app_context(
    cfg: Optional[JarConfig] = None,
    *,
    scheduler: Optional[Scheduler] = None,
    backend: object = _UNSET,
    store: Optional[JsonNoteStore] = None,
    rng: Optional[random.Random] = None,
    repo_root: Optional[Path] = None,
) -> AppContext:
    """
    Build the shared context from configuration.

    `backend` may be passed explicitly (including `None` for fallback-only);
    otherwise it is created from `JAR_LLM_BACKEND`.
    """

    cfg = cfg or load_config()
    logging.getLogger("emotion_jar").setLevel(cfg.JAR_LOG_LEVEL.upper())
    rng = rng or random.Random()

    if scheduler is None:
        scheduler = InstantScheduler() if cfg.JAR_INSTANT_DELAYS else AsyncioScheduler()

    if store is None:
        store = JsonNoteStore(cfg.notes_path(repo_root or _project_root()), rng=rng)
        loaded = store.load()
        logger.info("note store ready path=%s notes=%s", store.path, loaded)

    resolved_backend = build_backend(cfg) if backend is _UNSET else backend
    gateway = TransformationGateway(
        resolved_backend,  # type: ignore[arg-type]
        floor_sec=cfg.JAR_TRANSFORM_FLOOR_SEC,
        timeout_sec=cfg.JAR_LLM_TIMEOUT_SEC,
        scheduler=scheduler,
        rng=rng,
        debug_log_path=resolve_debug_log_path(cfg.JAR_GATEWAY_DEBUG_LOG),
    )
    timing = FlowTiming(
        crumple_sec=cfg.JAR_CRUMPLE_DELAY_SEC,
        throw_sec=cfg.JAR_THROW_DELAY_SEC,
        floor_sec=cfg.JAR_TRANSFORM_FLOOR_SEC,
    )
    return AppContext(
        config=cfg,
        store=store,
        gateway=gateway,
        scheduler=scheduler,
        sessions=InMemorySessionStore(ttl_seconds=cfg.JAR_SESSION_TTL_SECONDS),
        timing=timing,
        rng=rng,
    )

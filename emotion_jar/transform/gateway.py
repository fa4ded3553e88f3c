from __future__ import annotations

"""
Transformation gateway: one note in, one affirmation + quote out.

Design intent:
- Never raise to the caller; every failure lands on the fallback pool.
- Hold the result until the floor timer has also elapsed.
- Validate the structured output fully so no half result is ever shown.
"""

import asyncio
import json
import logging
import random
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from emotion_jar.flow.scheduler import AsyncioScheduler, Scheduler, join_with_floor
from emotion_jar.internal_core.contracts import AffirmationPayload, FallbackReason, TransformResult

from .base import TransformBackend, TransformBackendError
from .fallback import pick_fallback

logger = logging.getLogger(__name__)

DEFAULT_DEBUG_LOG_PATH = "/tmp/emotion_jar_gateway_raw.log"


class TransformationGateway:
    def __init__(
        self,
        backend: Optional[TransformBackend],
        *,
        floor_sec: float = 2.6,
        timeout_sec: float = 30.0,
        scheduler: Optional[Scheduler] = None,
        rng: Optional[random.Random] = None,
        debug_log_path: Optional[str] = None,
    ) -> None:
        self._backend = backend
        self._floor_sec = float(floor_sec)
        self._timeout_sec = float(timeout_sec)
        self._scheduler = scheduler or AsyncioScheduler()
        self._rng = rng or random.Random()
        self._debug_log_path = debug_log_path

    @property
    def backend_name(self) -> str:
        return self._backend.name() if self._backend is not None else "none"

    @property
    def floor_sec(self) -> float:
        return self._floor_sec

    async def transform(self, original_text: str) -> TransformResult:
        return await join_with_floor(self.transform_once(original_text), self._floor_sec, self._scheduler)

    async def transform_once(self, original_text: str) -> TransformResult:
        """Single attempt without the floor; still never raises."""

        started = time.perf_counter()
        _append_debug_log(
            self._debug_log_path,
            stage="transform_start",
            raw=original_text,
            metadata={"backend": self.backend_name, "chars": len(original_text or "")},
        )
        try:
            result = await self._call_backend(original_text)
        except TransformBackendError as exc:
            result = self._fallback(exc.code, str(exc))
        except Exception as exc:
            # Anything else the SDK or transport throws is an upstream failure.
            logger.exception("transform backend=%s failed unexpectedly", self.backend_name)
            result = self._fallback("upstream_error", f"{type(exc).__name__}: {exc}")

        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        _append_debug_log(
            self._debug_log_path,
            stage="transform_end",
            raw="",
            metadata={
                "backend": self.backend_name,
                "source": result.source,
                "reason": result.reason,
                "elapsed_ms": elapsed_ms,
            },
        )
        return result

    async def _call_backend(self, original_text: str) -> TransformResult:
        if self._backend is None:
            raise TransformBackendError("backend_unavailable", "No transformation backend configured", "none")
        try:
            raw = await asyncio.wait_for(self._backend.rewrite(original_text), timeout=self._timeout_sec)
        except asyncio.TimeoutError as exc:
            raise TransformBackendError(
                "timeout", f"backend did not answer within {self._timeout_sec:.1f}s", self.backend_name
            ) from exc

        _append_debug_log(
            self._debug_log_path,
            stage="transform_raw_output",
            raw=raw,
            metadata={"backend": self.backend_name},
        )
        return _parse_transform_output(raw, backend_name=self.backend_name)

    def _fallback(self, reason: FallbackReason, detail: str) -> TransformResult:
        logger.warning("transform fallback backend=%s reason=%s detail=%s", self.backend_name, reason, detail)
        _append_debug_log(
            self._debug_log_path,
            stage="transform_fallback",
            raw=detail,
            metadata={"backend": self.backend_name, "reason": reason},
        )
        return pick_fallback(reason, self._rng)


def _parse_transform_output(raw: str, *, backend_name: str) -> TransformResult:
    if not str(raw or "").strip():
        raise TransformBackendError("empty_response", "No response text", backend_name)
    data = _parse_json_object(raw)
    if data is None:
        raise TransformBackendError("malformed_response", "Response is not a JSON object", backend_name)
    try:
        payload = AffirmationPayload.model_validate(data)
    except ValidationError as exc:
        raise TransformBackendError("missing_fields", f"Response schema mismatch: {exc}", backend_name) from exc

    transformed_text = payload.transformedText.strip()
    quote = payload.quote.strip()
    if not transformed_text or not quote:
        raise TransformBackendError("missing_fields", "transformedText or quote is blank", backend_name)
    return TransformResult(transformed_text=transformed_text, quote=quote, source="model")


def _parse_json_object(raw: str) -> dict[str, Any] | None:
    try:
        data = json.loads(raw)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data

    # Local models sometimes wrap the object in prose or code fences.
    extracted = _extract_first_json_object(raw)
    if not extracted:
        return None
    try:
        data = json.loads(extracted)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _extract_first_json_object(text: str) -> str:
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text[start:], start=start):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""


def resolve_debug_log_path(raw: str) -> str | None:
    value = str(raw or "").strip()
    if not value:
        return None
    if value.lower() in {"1", "true", "on", "yes"}:
        return DEFAULT_DEBUG_LOG_PATH
    return value


def _append_debug_log(path: str | None, *, stage: str, raw: str, metadata: dict[str, Any] | None = None) -> None:
    if not path:
        return
    try:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat()
        meta = json.dumps(metadata or {}, ensure_ascii=True)
        payload = (
            f"[{stamp}] stage={stage} meta={meta}\n"
            "-----BEGIN GATEWAY RAW-----\n"
            f"{raw}\n"
            "-----END GATEWAY RAW-----\n"
        )
        with target.open("a", encoding="utf-8") as f:
            f.write(payload)
    except OSError:
        # Debug logging must never break the transformation flow.
        return

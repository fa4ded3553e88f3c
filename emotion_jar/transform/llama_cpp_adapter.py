from __future__ import annotations

"""
Local rewriting backend on a GGUF chat model through llama-cpp-python.

Design intent:
- Offer an offline alternative to the hosted model with the same JSON contract.
- Load the model once, lazily, on a worker thread.
- Tolerate llama_cpp builds that reject `chat_format` or `response_format`.
"""

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

from emotion_jar.internal_core.config import _project_root

from .base import TransformBackend, TransformBackendError
from .prompts import build_local_prompt

logger = logging.getLogger(__name__)

DEFAULT_GGUF_NAME = "gemma-3-4b-it-Q4_K_M.gguf"


def resolve_local_gguf_path(explicit_path: str | None = None, model_root: str = "") -> str:
    """
    Explicit path (JAR_LLAMA_CPP_MODEL) wins; otherwise look for the default
    GGUF under `model_root` (JAR_MODEL_ROOT), then the project's models/ folder.
    """

    explicit = str(explicit_path or "").strip()
    if explicit:
        return explicit
    roots: list[Path] = []
    if model_root.strip():
        roots.append(Path(model_root.strip()).expanduser())
    roots.append(_project_root() / "models")
    for root in roots:
        candidate = root / DEFAULT_GGUF_NAME
        if candidate.is_file():
            return str(candidate.resolve())
    return ""


class LlamaCppBackend(TransformBackend):
    def __init__(
        self,
        model_path: str = "",
        *,
        chat_format: str = "gemma",
        n_ctx: int = 2048,
        n_gpu_layers: int = -1,
        model_root: str = "",
        max_tokens: int = 512,
        temperature: float = 0.8,
    ) -> None:
        self._model_path = resolve_local_gguf_path(model_path, model_root)
        self._chat_format = chat_format
        self._n_ctx = int(n_ctx)
        self._n_gpu_layers = int(n_gpu_layers)
        self._max_tokens = int(max_tokens)
        self._temperature = float(temperature)
        self._llm: Any = None
        self._response_format_supported: Optional[bool] = None
        self._load_lock = threading.Lock()

    def name(self) -> str:
        return "llama_cpp"

    def _load(self) -> Any:
        with self._load_lock:
            if self._llm is not None:
                return self._llm
            if not self._model_path:
                raise TransformBackendError(
                    "backend_unavailable",
                    "Local model path is missing. Set JAR_LLAMA_CPP_MODEL or place a GGUF under models/.",
                    self.name(),
                )
            if not os.path.exists(self._model_path):
                raise TransformBackendError(
                    "backend_unavailable", f"Local model file not found: {self._model_path}", self.name()
                )
            try:
                from llama_cpp import Llama  # type: ignore
            except ImportError as exc:
                raise TransformBackendError(
                    "backend_unavailable", f"llama_cpp import failed: {exc}", self.name()
                ) from exc

            llm_kwargs: dict[str, Any] = {
                "model_path": self._model_path,
                "n_ctx": self._n_ctx,
                "n_gpu_layers": self._n_gpu_layers,
                "verbose": False,
                "chat_format": self._chat_format,
            }
            try:
                self._llm = Llama(**llm_kwargs)
            except TypeError as exc:
                if "chat_format" not in str(exc):
                    raise
                llm_kwargs.pop("chat_format", None)
                self._llm = Llama(**llm_kwargs)
                logger.info("llama_cpp build ignores chat_format=%s", self._chat_format)
            return self._llm

    def _complete(self, original_text: str) -> str:
        llm = self._load()
        completion_kwargs: dict[str, Any] = {
            "messages": [{"role": "user", "content": build_local_prompt(original_text)}],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "stop": ["<end_of_turn>", "</s>"],
        }
        if self._response_format_supported is not False:
            completion_kwargs["response_format"] = {"type": "json_object"}
        try:
            resp = llm.create_chat_completion(**completion_kwargs)
            if "response_format" in completion_kwargs:
                self._response_format_supported = True
        except TypeError as exc:
            if "response_format" not in str(exc) or "response_format" not in completion_kwargs:
                raise
            completion_kwargs.pop("response_format", None)
            resp = llm.create_chat_completion(**completion_kwargs)
            self._response_format_supported = False

        raw = str(resp["choices"][0]["message"]["content"] or "").strip()
        if not raw:
            raise TransformBackendError("empty_response", "Local model returned no text", self.name())
        return raw

    async def rewrite(self, original_text: str) -> str:
        return await asyncio.to_thread(self._complete, original_text)

from __future__ import annotations

from abc import ABC, abstractmethod

from emotion_jar.internal_core.contracts import FallbackReason


class TransformBackendError(RuntimeError):
    def __init__(self, code: FallbackReason, message: str, backend_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.backend_name = backend_name


class TransformBackend(ABC):
    @abstractmethod
    async def rewrite(self, original_text: str) -> str:
        """Return the raw model text for one note (expected to be a JSON object)."""

    @abstractmethod
    def name(self) -> str: ...

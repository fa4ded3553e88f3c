from __future__ import annotations

"""Gemini rewriting backend on the Google Gen AI SDK (google-genai).

The client is created lazily on the first call so that a missing API key is a
per-request fallback trigger rather than a startup failure.
"""

import logging
from typing import Optional

from google import genai
from google.genai import errors, types

from emotion_jar.internal_core.contracts import AffirmationPayload

from .base import TransformBackend, TransformBackendError
from .prompts import SYSTEM_INSTRUCTION

logger = logging.getLogger(__name__)


class GeminiBackend(TransformBackend):
    def __init__(
        self,
        api_key: str,
        *,
        model: str = "gemini-2.5-flash",
        temperature: float = 0.8,
        max_output_tokens: Optional[int] = None,
        api_version: str = "",
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._model = model
        self._temperature = float(temperature)
        self._max_output_tokens = max_output_tokens
        self._api_version = (api_version or "").strip()
        self._client: Optional[genai.Client] = None

    def name(self) -> str:
        return "gemini"

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> genai.Client:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise TransformBackendError("missing_credential", "GEMINI_API_KEY not set in environment", self.name())
        http_options = None
        if self._api_version:
            http_options = types.HttpOptions(api_version=self._api_version)
        self._client = genai.Client(api_key=self._api_key, http_options=http_options)
        return self._client

    def _build_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION,
            temperature=self._temperature,
            max_output_tokens=self._max_output_tokens,
            response_mime_type="application/json",
            response_schema=AffirmationPayload,
        )

    async def rewrite(self, original_text: str) -> str:
        client = self._get_client()
        try:
            response = await client.aio.models.generate_content(
                model=self._model,
                contents=original_text,
                config=self._build_config(),
            )
        except errors.APIError as exc:
            raise TransformBackendError(
                "upstream_error",
                f"Gemini API error code={exc.code}: {exc.message}",
                self.name(),
            ) from exc

        text = (response.text or "").strip()
        if not text:
            raise TransformBackendError("empty_response", "No response text", self.name())
        return text

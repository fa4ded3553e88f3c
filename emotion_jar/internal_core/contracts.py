from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AppState = Literal[
    "HOME",
    "INPUT",
    "PROCESSING_CRUMPLE",
    "PROCESSING_THROW",
    "REVIEW_PROMPT",
    "TRANSFORMING",
    "RESULT",
    "GALLERY",
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Note(_CamelModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    id: str = Field(min_length=1)
    original_text: str
    transformed_text: str
    quote: Optional[str] = None
    created_at: int = Field(ge=0)

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


TransformSource = Literal["model", "fallback"]

FallbackReason = Literal[
    "missing_credential",
    "backend_unavailable",
    "timeout",
    "upstream_error",
    "empty_response",
    "malformed_response",
    "missing_fields",
]


class TransformResult(_CamelModel):
    transformed_text: str = Field(min_length=1)
    quote: str = Field(min_length=1)
    source: TransformSource = "model"
    reason: Optional[FallbackReason] = None


class AffirmationPayload(BaseModel):
    """Structured output requested from the rewriting model."""

    transformedText: str = Field(
        description="Grounded, sincere, gentle first-person affirmation.",
    )
    quote: str = Field(
        description="A unique, varied famous quote matching the specific emotion.",
    )


AuditEventType = Literal[
    "SESSION_CREATED",
    "STATE_CHANGED",
    "TRANSFORM_STARTED",
    "TRANSFORM_DONE",
    "TRANSFORM_FALLBACK",
    "NOTE_SAVED",
    "ERROR",
]


class AuditEvent(_CamelModel):
    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str

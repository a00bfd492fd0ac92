"""Pydantic models describing the outcome of one generation request."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.activity import GeneratedActivity
from app.models.document import ExcludedDocument


class GenerationStage(str, Enum):
    """States of a generation request, in pipeline order."""
    IDLE = "idle"
    PARSING_DOCUMENTS = "parsing_documents"
    BUILDING_CONTEXT = "building_context"
    AWAITING_MODEL = "awaiting_model"
    EXTRACTING_RESULT = "extracting_result"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Classification of a failed request."""
    DOCUMENT_PARSE = "document_parse_error"
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    MODEL_INVOCATION = "model_invocation_error"
    MODEL_TIMEOUT = "model_timeout"
    RATE_LIMITED = "rate_limited"
    NO_STRUCTURED_PAYLOAD = "no_structured_payload_found"
    MALFORMED_PAYLOAD = "malformed_payload"
    UNEXPECTED_PAYLOAD_SHAPE = "unexpected_payload_shape"


class GenerationFailure(BaseModel):
    kind: FailureKind
    message: str
    stage: GenerationStage
    retry_after: Optional[int] = None
    excerpt: Optional[str] = None


class GenerationOutcome(BaseModel):
    """Result of running the pipeline once.

    Exactly one of ``activities`` (non-empty) or ``failure`` is meaningful,
    depending on ``stage``.
    """

    stage: GenerationStage
    activities: List[GeneratedActivity] = Field(default_factory=list)
    failure: Optional[GenerationFailure] = None
    warnings: List[str] = Field(default_factory=list)
    excluded_documents: List[ExcludedDocument] = Field(default_factory=list)
    truncated_documents: List[str] = Field(default_factory=list)
    context_chars: int = 0

    @property
    def succeeded(self) -> bool:
        return self.stage == GenerationStage.SUCCEEDED

"""Pydantic models for uploaded support documents (RAG material)."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

MEDIA_TYPE_TEXT = "text/plain"
MEDIA_TYPE_MARKDOWN = "text/markdown"
MEDIA_TYPE_PDF = "application/pdf"
MEDIA_TYPE_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_MEDIA_TYPES = (
    MEDIA_TYPE_TEXT,
    MEDIA_TYPE_MARKDOWN,
    MEDIA_TYPE_PDF,
    MEDIA_TYPE_DOCX,
)


class DocumentStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class StoredDocument(BaseModel):
    """A support document uploaded by the teacher.

    ``content`` holds the raw file as base64 text (a ``data:`` URL is also
    accepted) so the record can be stored as JSON.
    """

    id: str
    name: str
    media_type: str
    content: str = ""
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DocumentSummary(BaseModel):
    """Document listing entry without the (possibly large) content."""

    id: str
    name: str
    media_type: str
    status: DocumentStatus
    error_message: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_document(cls, document: StoredDocument) -> "DocumentSummary":
        return cls(**document.model_dump(exclude={"content"}))


class ExcludedDocument(BaseModel):
    """A document left out of the context, with the reason."""

    id: str
    name: str
    reason: str


class ContextReport(BaseModel):
    """Outcome of building the retrieval context for one request."""

    context: str = ""
    budget: int = 0
    included: List[str] = Field(default_factory=list)
    truncated: List[str] = Field(default_factory=list)
    excluded: List[ExcludedDocument] = Field(default_factory=list)

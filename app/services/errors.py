"""Exception hierarchy for the activity generation pipeline.

Every failure the pipeline can surface carries a ``FailureKind`` so callers
can present one consolidated, classified message per request.
"""

from typing import Optional

from app.models.generation import FailureKind

# Maximum characters of raw model output kept for diagnostics
MAX_EXCERPT_CHARS = 500


def bounded_excerpt(text: Optional[str], limit: int = MAX_EXCERPT_CHARS) -> str:
    """Return at most ``limit`` characters of ``text``, marking the cut."""
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class GenerationError(Exception):
    """Base class for classified pipeline failures.

    Attributes:
        kind: Failure classification
        message: Human-readable detail
        excerpt: Bounded excerpt of the offending input, if any
    """

    kind: FailureKind = FailureKind.MODEL_INVOCATION

    def __init__(self, message: str, excerpt: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.excerpt = bounded_excerpt(excerpt) if excerpt is not None else None


class DocumentParseError(GenerationError):
    """A single document could not be turned into text."""

    kind = FailureKind.DOCUMENT_PARSE

    def __init__(self, message: str, document_name: str = ""):
        super().__init__(message)
        self.document_name = document_name


class UnsupportedMediaTypeError(DocumentParseError):
    kind = FailureKind.UNSUPPORTED_MEDIA_TYPE

    def __init__(self, media_type: str, document_name: str = ""):
        super().__init__(
            f"Tipo de arquivo não suportado: {media_type or 'desconhecido'}",
            document_name=document_name,
        )
        self.media_type = media_type


class ModelInvocationError(GenerationError):
    """The model backend could not be reached or returned an error."""

    kind = FailureKind.MODEL_INVOCATION

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ModelTimeoutError(ModelInvocationError):
    kind = FailureKind.MODEL_TIMEOUT


class RateLimitedError(GenerationError):
    """The backend asked us to wait ``retry_after`` seconds before retrying."""

    kind = FailureKind.RATE_LIMITED

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(
            message
            or (
                "Limite de requisições atingido. Por favor, aguarde "
                f"{retry_after} segundos e tente novamente."
            )
        )
        self.retry_after = retry_after


class ExtractionError(GenerationError):
    """Base class for failures recovering the payload from model output."""


class NoStructuredPayloadFoundError(ExtractionError):
    kind = FailureKind.NO_STRUCTURED_PAYLOAD


class MalformedPayloadError(ExtractionError):
    kind = FailureKind.MALFORMED_PAYLOAD


class UnexpectedPayloadShapeError(ExtractionError):
    kind = FailureKind.UNEXPECTED_PAYLOAD_SHAPE

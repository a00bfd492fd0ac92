"""
Plain-text extraction for uploaded support documents.

Routes on the declared media type:
- text/plain, text/markdown: decoded directly
- application/pdf: page text via pypdf, one paragraph break between pages
- DOCX: raw text via mammoth

Parsing is attempted once per document; there is no internal retry.
"""

import asyncio
import base64
import binascii
import io
import logging
from typing import Union
from urllib.parse import unquote_to_bytes

from app.models.document import (
    MEDIA_TYPE_DOCX,
    MEDIA_TYPE_MARKDOWN,
    MEDIA_TYPE_PDF,
    MEDIA_TYPE_TEXT,
    StoredDocument,
)
from app.services.errors import DocumentParseError, UnsupportedMediaTypeError

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n"


def decode_content(content: str) -> bytes:
    """
    Decode stored document content into raw bytes.

    Accepts plain base64 or a ``data:<type>;base64,<payload>`` URL.

    Raises:
        ValueError: If the payload is not valid base64
    """
    payload = content
    if content.startswith("data:"):
        header, _, payload = content.partition(",")
        if ";base64" not in header:
            # Non-base64 data URLs carry percent-encoded text
            return unquote_to_bytes(payload)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 content: {e}") from e


def _parse_text(data: bytes) -> str:
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    return data.decode("utf-8", errors="replace")


def _parse_pdf(data: bytes, name: str) -> str:
    try:
        from pypdf import PdfReader
    except ImportError as e:
        raise DocumentParseError(
            "A biblioteca de leitura de PDF (pypdf) não está disponível.",
            document_name=name,
        ) from e

    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [(page.extract_text() or "") for page in reader.pages]
    except Exception as e:
        raise DocumentParseError(
            f"Falha ao ler o arquivo PDF '{name}': {e}", document_name=name
        ) from e

    return PAGE_SEPARATOR.join(pages)


def _parse_docx(data: bytes, name: str) -> str:
    try:
        import mammoth
    except ImportError as e:
        raise DocumentParseError(
            "A biblioteca de leitura de DOCX (mammoth) não está disponível.",
            document_name=name,
        ) from e

    try:
        result = mammoth.extract_raw_text(io.BytesIO(data))
    except Exception as e:
        raise DocumentParseError(
            f"Falha ao ler o arquivo DOCX '{name}': {e}", document_name=name
        ) from e

    return result.value


def parse_bytes(data: bytes, media_type: str, name: str = "") -> str:
    """
    Extract plain text from raw document bytes.

    Args:
        data: Raw file bytes
        media_type: Declared MIME type
        name: Display name, used in error messages

    Returns:
        Extracted text (may be empty for image-only PDFs)

    Raises:
        UnsupportedMediaTypeError: For media types outside the supported set
        DocumentParseError: If the content cannot be read
    """
    normalized = (media_type or "").split(";")[0].strip().lower()

    if normalized in (MEDIA_TYPE_TEXT, MEDIA_TYPE_MARKDOWN):
        return _parse_text(data)
    if normalized == MEDIA_TYPE_PDF:
        return _parse_pdf(data, name)
    if normalized == MEDIA_TYPE_DOCX:
        return _parse_docx(data, name)

    raise UnsupportedMediaTypeError(media_type, document_name=name)


def parse_document_sync(document: StoredDocument) -> str:
    """Decode and parse a stored document in the calling thread."""
    try:
        data = decode_content(document.content)
    except ValueError as e:
        raise DocumentParseError(
            f"Conteúdo inválido para '{document.name}': {e}",
            document_name=document.name,
        ) from e
    return parse_bytes(data, document.media_type, document.name)


async def parse_document(document: StoredDocument) -> str:
    """
    Parse a stored document without blocking the event loop.

    PDF and DOCX parsing is CPU-bound, so it runs in a worker thread.
    """
    text = await asyncio.to_thread(parse_document_sync, document)
    logger.debug(f"Parsed document '{document.name}' ({len(text)} chars)")
    return text


def encode_content(data: Union[bytes, bytearray]) -> str:
    """Encode raw bytes for storage in ``StoredDocument.content``."""
    return base64.b64encode(bytes(data)).decode("ascii")

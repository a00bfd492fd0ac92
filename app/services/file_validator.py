"""
File validation service for support document uploads.

Provides security checks including:
- File size limits
- MIME type validation by content sniffing (python-magic)
- Filename sanitization
"""

import re
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

import magic
from fastapi import HTTPException, UploadFile

from app.models.document import (
    MEDIA_TYPE_DOCX,
    MEDIA_TYPE_MARKDOWN,
    MEDIA_TYPE_PDF,
    MEDIA_TYPE_TEXT,
)

DEFAULT_MAX_FILE_SIZE = 20 * 1024 * 1024  # 20MB

EXTENSION_MEDIA_TYPES: Dict[str, str] = {
    ".txt": MEDIA_TYPE_TEXT,
    ".md": MEDIA_TYPE_MARKDOWN,
    ".markdown": MEDIA_TYPE_MARKDOWN,
    ".pdf": MEDIA_TYPE_PDF,
    ".docx": MEDIA_TYPE_DOCX,
}

# What libmagic may report for each supported media type
SNIFFED_TYPES: Dict[str, Set[str]] = {
    MEDIA_TYPE_TEXT: {"text/plain"},
    MEDIA_TYPE_MARKDOWN: {"text/plain", "text/markdown", "text/x-markdown"},
    MEDIA_TYPE_PDF: {"application/pdf"},
    MEDIA_TYPE_DOCX: {MEDIA_TYPE_DOCX, "application/zip", "application/octet-stream"},
}


def resolve_media_type(filename: str, declared: Optional[str]) -> Optional[str]:
    """
    Media type for an upload, from its extension first and the declared type second.

    Returns:
        One of the supported media types, or None
    """
    extension = Path(filename).suffix.lower()
    if extension in EXTENSION_MEDIA_TYPES:
        return EXTENSION_MEDIA_TYPES[extension]
    normalized = (declared or "").split(";")[0].strip().lower()
    if normalized in SNIFFED_TYPES:
        return normalized
    return None


async def validate_document(
    file: UploadFile,
    max_size: int = DEFAULT_MAX_FILE_SIZE,
) -> Tuple[bytes, str, str]:
    """
    Validate an uploaded support document.

    Args:
        file: FastAPI UploadFile instance from multipart/form-data
        max_size: Maximum accepted size in bytes

    Returns:
        Tuple of (file_content, media_type, sanitized_filename)

    Raises:
        HTTPException: 400 for empty files, 413 for files too large,
            415 for unsupported or mismatching types
    """
    content = await file.read()

    if len(content) == 0:
        raise HTTPException(status_code=400, detail="Arquivo vazio.")

    if len(content) > max_size:
        raise HTTPException(
            status_code=413,
            detail=f"Arquivo muito grande. Tamanho máximo: {max_size // (1024 * 1024)}MB",
        )

    original_filename = file.filename or "documento.txt"
    media_type = resolve_media_type(original_filename, file.content_type)
    if media_type is None:
        raise HTTPException(
            status_code=415,
            detail=(
                f"Tipo de arquivo não suportado: {file.content_type or original_filename}. "
                "Envie arquivos .txt, .md, .pdf ou .docx."
            ),
        )

    sniffed = magic.from_buffer(content, mime=True)
    if sniffed not in SNIFFED_TYPES[media_type]:
        raise HTTPException(
            status_code=415,
            detail=f"O conteúdo do arquivo ({sniffed}) não corresponde ao tipo {media_type}.",
        )

    return content, media_type, sanitize_filename(original_filename)


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent path traversal attacks.

    Keeps the original extension when it is a supported one; anything else
    falls back to ``.txt``.
    """
    filename = Path(filename.replace("\\", "/")).name
    filename = filename.replace("..", "").replace("/", "").replace("\0", "")

    # Keep only safe characters: alphanumeric, dash, underscore, dot
    filename = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)

    stem, extension = Path(filename).stem, Path(filename).suffix.lower()
    if extension not in EXTENSION_MEDIA_TYPES:
        stem, extension = filename, ".txt"
    stem = stem.strip(".") or "documento"

    # Limit length (max 255 chars for most filesystems)
    return stem[: 255 - len(extension)] + extension

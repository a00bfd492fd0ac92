"""
Tests for file validation service.

Covers:
- File size limits
- Empty file detection
- Media type resolution and content sniffing
- Filename sanitization (path traversal, null bytes, unsupported extensions)
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException, UploadFile

from app.models.document import (
    MEDIA_TYPE_DOCX,
    MEDIA_TYPE_MARKDOWN,
    MEDIA_TYPE_PDF,
    MEDIA_TYPE_TEXT,
)
from app.services.file_validator import (
    resolve_media_type,
    sanitize_filename,
    validate_document,
)


@pytest.fixture
def mock_upload_file():
    """Create a mock UploadFile instance."""
    def _create_file(content: bytes, filename: str = "aula.txt", content_type: str = "text/plain"):
        file = MagicMock(spec=UploadFile)
        file.filename = filename
        file.content_type = content_type
        file.read = AsyncMock(return_value=content)
        return file
    return _create_file


def sniffed_as(mime: str):
    return patch("app.services.file_validator.magic.from_buffer", return_value=mime)


class TestResolveMediaType:
    @pytest.mark.parametrize("filename,expected", [
        ("aula.txt", MEDIA_TYPE_TEXT),
        ("roteiro.MD", MEDIA_TYPE_MARKDOWN),
        ("notas.markdown", MEDIA_TYPE_MARKDOWN),
        ("livro.pdf", MEDIA_TYPE_PDF),
        ("plano.docx", MEDIA_TYPE_DOCX),
    ])
    def test_by_extension(self, filename, expected):
        assert resolve_media_type(filename, "application/octet-stream") == expected

    def test_declared_type_when_no_extension(self):
        assert resolve_media_type("upload", "application/pdf; charset=binary") == MEDIA_TYPE_PDF

    def test_unsupported(self):
        assert resolve_media_type("foto.png", "image/png") is None
        assert resolve_media_type("planilha.xlsx", None) is None


class TestValidateDocument:
    @pytest.mark.asyncio
    async def test_valid_text(self, mock_upload_file):
        file = mock_upload_file("Conteúdo".encode("utf-8"))

        with sniffed_as("text/plain"):
            content, media_type, filename = await validate_document(file)

        assert content == "Conteúdo".encode("utf-8")
        assert media_type == MEDIA_TYPE_TEXT
        assert filename == "aula.txt"

    @pytest.mark.asyncio
    async def test_docx_sniffed_as_zip(self, mock_upload_file):
        file = mock_upload_file(b"PK\x03\x04...", "plano.docx", MEDIA_TYPE_DOCX)

        with sniffed_as("application/zip"):
            _, media_type, _ = await validate_document(file)

        assert media_type == MEDIA_TYPE_DOCX

    @pytest.mark.asyncio
    async def test_empty_file(self, mock_upload_file):
        with pytest.raises(HTTPException) as exc_info:
            await validate_document(mock_upload_file(b""))

        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_too_large(self, mock_upload_file):
        with pytest.raises(HTTPException) as exc_info:
            await validate_document(mock_upload_file(b"x" * 2048), max_size=1024)

        assert exc_info.value.status_code == 413

    @pytest.mark.asyncio
    async def test_exactly_at_limit(self, mock_upload_file):
        with sniffed_as("text/plain"):
            content, _, _ = await validate_document(mock_upload_file(b"x" * 1024), max_size=1024)

        assert len(content) == 1024

    @pytest.mark.asyncio
    async def test_unsupported_type(self, mock_upload_file):
        file = mock_upload_file(b"\x89PNG\r\n", "foto.png", "image/png")

        with pytest.raises(HTTPException) as exc_info:
            await validate_document(file)

        assert exc_info.value.status_code == 415
        assert ".docx" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_content_does_not_match_extension(self, mock_upload_file):
        file = mock_upload_file(b"MZ\x90\x00", "livro.pdf", "application/pdf")

        with sniffed_as("application/x-dosexec"):
            with pytest.raises(HTTPException) as exc_info:
                await validate_document(file)

        assert exc_info.value.status_code == 415

    @pytest.mark.asyncio
    async def test_missing_filename_defaults(self, mock_upload_file):
        file = mock_upload_file(b"texto", filename=None)

        with sniffed_as("text/plain"):
            _, media_type, filename = await validate_document(file)

        assert media_type == MEDIA_TYPE_TEXT
        assert filename == "documento.txt"


class TestSanitizeFilename:
    def test_plain_name_unchanged(self):
        assert sanitize_filename("plano_de_aula-1.pdf") == "plano_de_aula-1.pdf"

    def test_path_traversal(self):
        assert sanitize_filename("../../etc/passwd.txt") == "passwd.txt"
        assert sanitize_filename("..\\..\\windows\\aula.md") == "aula.md"

    def test_null_bytes_and_spaces(self):
        assert sanitize_filename("aula\0 final.txt") == "aula_final.txt"

    def test_accented_characters_replaced(self):
        assert sanitize_filename("Frações.docx") == "Fra__es.docx"

    def test_unsupported_extension_becomes_txt(self):
        assert sanitize_filename("script.sh") == "script.sh.txt"

    def test_empty_stem(self):
        assert sanitize_filename("....") == "documento.txt"

    def test_long_names_truncated(self):
        result = sanitize_filename("a" * 300 + ".pdf")

        assert len(result) == 255
        assert result.endswith(".pdf")

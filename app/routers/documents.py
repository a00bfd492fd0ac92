"""
Support document API endpoints.

Uploaded documents are stored as ``pending`` and parsed once. A document whose text can be
extracted becomes ``ready`` and can ground later generations; one that
cannot is kept as ``failed`` with the parse error so the teacher sees why.
"""

import logging
import uuid
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status

from app.config import get_settings
from app.db.storage import ActivityStore
from app.dependencies import get_store
from app.middleware.rate_limit import RATE_LIMITS, get_limiter
from app.models.document import DocumentStatus, DocumentSummary, StoredDocument
from app.services.document_parser import encode_content, parse_document
from app.services.errors import DocumentParseError
from app.services.file_validator import validate_document

router = APIRouter(prefix="/api/documents", tags=["documents"])
limiter = get_limiter()
logger = logging.getLogger(__name__)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DocumentSummary)
@limiter.limit(RATE_LIMITS["upload"])  # type: ignore[untyped-decorator]
async def upload_document(
    request: Request,
    file: UploadFile = File(..., description="Support document (.txt, .md, .pdf, .docx)"),
    store: ActivityStore = Depends(get_store),
) -> DocumentSummary:
    """
    Upload and parse a support document.

    Returns:
        201: Document stored (status ``ready`` or ``failed``)
        400: Empty file
        413: File too large
        415: Unsupported or mismatching file type
    """
    content, media_type, filename = await validate_document(
        file, max_size=get_settings().max_upload_bytes
    )

    document = StoredDocument(
        id=str(uuid.uuid4()),
        name=filename,
        media_type=media_type,
        content=encode_content(content),
    )
    await store.add_document(document)

    try:
        text = await parse_document(document)
        document = document.model_copy(update={"status": DocumentStatus.READY})
        logger.info(f"Document '{filename}' parsed on upload ({len(text)} chars)")
    except DocumentParseError as e:
        logger.warning(f"Document '{filename}' failed to parse on upload: {e.message}")
        document = document.model_copy(
            update={"status": DocumentStatus.FAILED, "error_message": e.message}
        )

    document = await store.update_document(document)
    return DocumentSummary.from_document(document)


@router.get("", response_model=List[DocumentSummary])
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def list_documents(
    request: Request,
    document_status: Optional[DocumentStatus] = Query(None, alias="status"),
    store: ActivityStore = Depends(get_store),
) -> List[DocumentSummary]:
    """List uploaded documents in upload order, optionally by status (``?status=ready``)."""
    documents = await store.list_documents(document_status)
    return [DocumentSummary.from_document(d) for d in documents]


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    store: ActivityStore = Depends(get_store),
) -> None:
    if not await store.delete_document(document_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found",
        )


@router.delete("")
async def clear_documents(store: ActivityStore = Depends(get_store)) -> Dict[str, int]:
    """Remove every uploaded document."""
    deleted = await store.clear_documents()
    logger.info(f"Cleared {deleted} documents")
    return {"deleted": deleted}

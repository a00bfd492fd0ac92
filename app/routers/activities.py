"""
Activity API endpoints.

Provides generation of BNCC-aligned lesson plans, the stored activity
catalog (filter, search, edit, delete) and PDF export.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.config import get_settings
from app.db.storage import ActivityStore
from app.dependencies import get_model_backend, get_store
from app.middleware.rate_limit import RATE_LIMITS, get_limiter
from app.models.activity import (
    Activity,
    ActivityFilters,
    ActivityRequest,
    ActivityUpdate,
    MAX_QUANTITY,
    MIN_QUANTITY,
)
from app.models.generation import FailureKind, GenerationFailure, GenerationOutcome
from app.services.activity_catalog import ALL, available_subjects, filter_activities
from app.services.activity_generator import ActivityGenerator
from app.services.model_backends import ModelBackend
from app.services.pdf_export import export_activities_to_pdf

router = APIRouter(prefix="/api/activities", tags=["activities"])
limiter = get_limiter()
logger = logging.getLogger(__name__)

FAILURE_STATUS_CODES: Dict[FailureKind, int] = {
    FailureKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureKind.MODEL_TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    FailureKind.MODEL_INVOCATION: status.HTTP_502_BAD_GATEWAY,
    FailureKind.NO_STRUCTURED_PAYLOAD: status.HTTP_502_BAD_GATEWAY,
    FailureKind.MALFORMED_PAYLOAD: status.HTTP_502_BAD_GATEWAY,
    FailureKind.UNEXPECTED_PAYLOAD_SHAPE: status.HTTP_502_BAD_GATEWAY,
    FailureKind.DOCUMENT_PARSE: 422,
    FailureKind.UNSUPPORTED_MEDIA_TYPE: 422,
}


def _serialize(activities: List[Activity]) -> List[Dict[str, Any]]:
    return [a.model_dump(mode="json", by_alias=True) for a in activities]


def failure_response(failure: GenerationFailure, backend_name: str) -> JSONResponse:
    """One consolidated error body per failed request."""
    headers = {
        "X-Generation-Stage": "failed",
        "X-Failure-Kind": failure.kind.value,
        "X-Model-Backend": backend_name,
    }
    if failure.retry_after is not None:
        headers["Retry-After"] = str(failure.retry_after)
    return JSONResponse(
        status_code=FAILURE_STATUS_CODES.get(failure.kind, status.HTTP_502_BAD_GATEWAY),
        content={
            "detail": failure.message,
            "kind": failure.kind.value,
            "stage": failure.stage.value,
            "retry_after": failure.retry_after,
        },
        headers=headers,
    )


def activity_filters(
    subject: Optional[str] = Query(None, description="Exact subject; 'all' for any"),
    pillar: Optional[str] = Query(None, description="Computational thinking pillar; 'all' for any"),
    level: Optional[str] = Query(None, description="Difficulty level; 'all' for any"),
    topic: Optional[str] = Query(None, description="Case-insensitive topic substring"),
    q: Optional[str] = Query(None, description="Case-insensitive search over title and description"),
) -> ActivityFilters:
    def any_to_none(value: Optional[str]) -> Optional[str]:
        return None if value in (None, "", ALL) else value

    try:
        return ActivityFilters(
            subject=any_to_none(subject),
            pillar=any_to_none(pillar),
            level=any_to_none(level),
            topic=topic or None,
            query=q or None,
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False)) from e


@router.post("/generate", status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_LIMITS["generate"])  # type: ignore[untyped-decorator]
async def generate(
    request: Request,
    subject: str = Form(..., description="Disciplina"),
    topic: str = Form(..., description="Tópico da aula"),
    grade: str = Form(..., description="Turma/ano"),
    pillar: str = Form(..., description="Pilar do pensamento computacional"),
    level: str = Form(..., description="Nível de dificuldade"),
    quantity: int = Form(1, description=f"Número de atividades ({MIN_QUANTITY}-{MAX_QUANTITY})"),
    document_ids: List[str] = Form(default=[], description="Documentos de apoio"),
    store: ActivityStore = Depends(get_store),
    backend: ModelBackend = Depends(get_model_backend),
) -> Response:
    """
    Generate activities for the submitted form and store them.

    Returns:
        201: Activities created, with warnings and the per-document context report
        404: A selected document does not exist
        422: Invalid form
        429: Model rate limit (Retry-After set)
        502: Model invocation failed or its response could not be used
        504: Model timed out
    """
    try:
        activity_request = ActivityRequest(
            subject=subject,
            topic=topic,
            grade=grade,
            pillar=pillar,
            level=level,
            quantity=quantity,
        )
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False, include_context=False)) from e

    documents = await store.get_documents(document_ids)
    if len(documents) != len(document_ids):
        found = {d.id for d in documents}
        missing = [i for i in document_ids if i not in found]
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Documents not found: {', '.join(missing)}",
        )

    settings = get_settings()
    generator = ActivityGenerator(
        backend,
        max_prompt_chars=settings.max_prompt_chars,
        timeout_seconds=settings.model_timeout_seconds,
    )
    outcome: GenerationOutcome = await generator.run(activity_request, documents)

    if outcome.failure is not None:
        return failure_response(outcome.failure, backend.name)

    activities = [
        Activity.from_generated(generated, activity_request, str(uuid.uuid4()))
        for generated in outcome.activities
    ]
    stored = await store.add_activities(activities)

    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content={
            "activities": _serialize(stored),
            "warnings": outcome.warnings,
            "excluded_documents": [d.model_dump() for d in outcome.excluded_documents],
            "truncated_documents": outcome.truncated_documents,
            "context_chars": outcome.context_chars,
        },
        headers={
            "X-Generation-Stage": outcome.stage.value,
            "X-Activity-Count": str(len(stored)),
            "X-Model-Backend": backend.name,
        },
    )


@router.get("")
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def list_activities(
    request: Request,
    filters: ActivityFilters = Depends(activity_filters),
    store: ActivityStore = Depends(get_store),
) -> Response:
    """Stored activities matching the filters, newest first."""
    activities = filter_activities(await store.list_activities(), filters)
    return JSONResponse(content=_serialize(activities))


@router.get("/subjects")
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def list_subjects(
    request: Request,
    store: ActivityStore = Depends(get_store),
) -> List[str]:
    return available_subjects(await store.list_activities())


@router.get("/export.pdf")
@limiter.limit(RATE_LIMITS["reads"])  # type: ignore[untyped-decorator]
async def export_pdf(
    request: Request,
    filters: ActivityFilters = Depends(activity_filters),
    store: ActivityStore = Depends(get_store),
) -> Response:
    """Export the filtered activities as a PDF lesson plan."""
    activities = filter_activities(await store.list_activities(), filters)
    if not activities:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Nenhuma atividade para exportar.",
        )

    content = export_activities_to_pdf(activities)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": 'attachment; filename="atividades-geradas.pdf"',
            "X-Activity-Count": str(len(activities)),
        },
    )


@router.get("/{activity_id}")
async def get_activity(activity_id: str, store: ActivityStore = Depends(get_store)) -> Response:
    activity = await store.get_activity(activity_id)
    if activity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Activity {activity_id} not found",
        )
    return JSONResponse(content=activity.model_dump(mode="json", by_alias=True))


@router.put("/{activity_id}")
async def update_activity(
    activity_id: str,
    update: ActivityUpdate,
    store: ActivityStore = Depends(get_store),
) -> Response:
    """Edit a stored activity; omitted fields keep their value."""
    activity = await store.update_activity(activity_id, update)
    if activity is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Activity {activity_id} not found",
        )
    logger.info(f"Activity {activity_id} updated")
    return JSONResponse(content=activity.model_dump(mode="json", by_alias=True))


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_activity(activity_id: str, store: ActivityStore = Depends(get_store)) -> None:
    if not await store.delete_activity(activity_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Activity {activity_id} not found",
        )

"""
Activity generation pipeline.

Runs one generation request through the stages

    IDLE -> PARSING_DOCUMENTS -> BUILDING_CONTEXT -> AWAITING_MODEL
         -> EXTRACTING_RESULT -> SUCCEEDED | FAILED

Any stage failure short-circuits to FAILED with a classified reason. A failed
request never returns a partial activity list.
"""

import asyncio
import logging
import time
from typing import List, Optional, Sequence, Tuple

from app.models.activity import ActivityRequest, GeneratedActivity
from app.models.document import ContextReport, DocumentStatus, StoredDocument
from app.models.generation import (
    GenerationFailure,
    GenerationOutcome,
    GenerationStage,
)
from app.services.context_builder import assemble_context, parse_documents
from app.services.errors import (
    GenerationError,
    ModelInvocationError,
    ModelTimeoutError,
    RateLimitedError,
    UnexpectedPayloadShapeError,
)
from app.services.model_backends import ModelBackend
from app.services.prompt_builder import PromptPayload, build_prompt, compute_context_budget
from app.services.response_extractor import extract_activities

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_PROMPT_CHARS = 195000


class ActivityGenerator:
    """
    Single-use runner for one generation request.

    Every request gets its own instance, so user-initiated retries never
    share state.

    Args:
        backend: Model backend used for the single invocation
        max_prompt_chars: Ceiling for the whole prompt, context included
        timeout_seconds: Caller-imposed timeout for the model call
    """

    def __init__(
        self,
        backend: ModelBackend,
        max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.backend = backend
        self.max_prompt_chars = max_prompt_chars
        self.timeout_seconds = timeout_seconds
        self.stage = GenerationStage.IDLE
        self.error: Optional[GenerationError] = None

    def _enter(self, stage: GenerationStage) -> None:
        logger.info(f"Generation stage: {self.stage.value} -> {stage.value}")
        self.stage = stage

    async def run(
        self,
        request: ActivityRequest,
        documents: Sequence[StoredDocument] = (),
    ) -> GenerationOutcome:
        """
        Execute the pipeline once.

        Args:
            request: The teacher's form (immutable)
            documents: Documents selected for grounding; only ``ready`` ones are used

        Returns:
            GenerationOutcome in stage SUCCEEDED (with activities) or FAILED
            (with a classified failure)
        """
        if self.stage != GenerationStage.IDLE:
            raise RuntimeError("ActivityGenerator instances run a single request")

        # Later changes to the caller's documents do not affect this run
        snapshot: Tuple[StoredDocument, ...] = tuple(doc.model_copy() for doc in documents)
        started = time.time()
        report = ContextReport()

        try:
            self._enter(GenerationStage.PARSING_DOCUMENTS)
            has_ready = any(doc.status == DocumentStatus.READY for doc in snapshot)
            budget = compute_context_budget(request, self.max_prompt_chars, has_ready)
            if budget > 0:
                parsed, excluded = await parse_documents(snapshot)
            else:
                parsed, excluded = [], []

            self._enter(GenerationStage.BUILDING_CONTEXT)
            report = assemble_context(parsed, budget, excluded)
            if report.truncated:
                logger.warning(
                    f"Context truncated to {len(report.context)}/{budget} chars "
                    f"for documents: {', '.join(report.truncated)}"
                )
            payload = build_prompt(request, report.context)

            self._enter(GenerationStage.AWAITING_MODEL)
            raw_text = await self._invoke(payload)

            self._enter(GenerationStage.EXTRACTING_RESULT)
            activities = extract_activities(
                raw_text, structured=self.backend.supports_structured_output
            )
            activities, warnings = self._review(activities, request)

        except GenerationError as e:
            return self._fail(e, report)

        self._enter(GenerationStage.SUCCEEDED)
        logger.info(
            f"Generated {len(activities)} activities in {time.time() - started:.2f}s "
            f"(backend={self.backend.name}, context={len(report.context)} chars)"
        )
        return GenerationOutcome(
            stage=GenerationStage.SUCCEEDED,
            activities=activities,
            warnings=warnings,
            excluded_documents=report.excluded,
            truncated_documents=report.truncated,
            context_chars=len(report.context),
        )

    def _fail(self, error: GenerationError, report: ContextReport) -> GenerationOutcome:
        failed_at = self.stage
        self.error = error
        self._enter(GenerationStage.FAILED)
        logger.error(f"Generation failed at {failed_at.value}: {error.kind.value}: {error.message}")
        return GenerationOutcome(
            stage=GenerationStage.FAILED,
            failure=GenerationFailure(
                kind=error.kind,
                message=error.message,
                stage=failed_at,
                retry_after=error.retry_after if isinstance(error, RateLimitedError) else None,
                excerpt=error.excerpt,
            ),
            excluded_documents=report.excluded,
            truncated_documents=report.truncated,
            context_chars=len(report.context),
        )

    async def _invoke(self, payload: PromptPayload) -> str:
        try:
            return await asyncio.wait_for(
                self.backend.generate(payload), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            raise ModelTimeoutError(
                f"A IA não respondeu em {self.timeout_seconds:.0f} segundos."
            ) from e
        except GenerationError:
            raise
        except Exception as e:
            # Backends outside this module may leak provider errors
            raise ModelInvocationError(f"Erro ao chamar a IA: {e}") from e

    @staticmethod
    def _review(
        activities: List[GeneratedActivity],
        request: ActivityRequest,
    ) -> Tuple[List[GeneratedActivity], List[str]]:
        """Enforce the count bound and collect advisory warnings."""
        if not activities:
            raise UnexpectedPayloadShapeError("A IA não retornou nenhuma atividade.")

        warnings: List[str] = []
        if len(activities) > request.quantity:
            logger.warning(
                f"Model returned {len(activities)} activities, keeping the first {request.quantity}"
            )
            warnings.append(
                f"A IA retornou {len(activities)} atividades; apenas as primeiras "
                f"{request.quantity} foram mantidas."
            )
            activities = activities[:request.quantity]
        elif len(activities) < request.quantity:
            warnings.append(
                f"A IA retornou {len(activities)} de {request.quantity} atividades solicitadas."
            )

        for index, activity in enumerate(activities, start=1):
            missing = activity.missing_sections()
            if missing:
                warnings.append(
                    f"Atividade {index} ('{activity.title}') sem as seções: {', '.join(missing)}."
                )

        return activities, warnings


async def generate_activities(
    request: ActivityRequest,
    documents: Sequence[StoredDocument],
    backend: ModelBackend,
    max_prompt_chars: int = DEFAULT_MAX_PROMPT_CHARS,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
) -> List[GeneratedActivity]:
    """
    Generate activities or raise the classified failure.

    Raises:
        GenerationError: Subclass matching the failure kind
    """
    generator = ActivityGenerator(backend, max_prompt_chars, timeout_seconds)
    outcome = await generator.run(request, documents)
    if generator.error is not None:
        raise generator.error
    return outcome.activities

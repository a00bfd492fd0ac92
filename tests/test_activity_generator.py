"""Tests for the generation pipeline state machine."""

import asyncio
import json

import pytest
from conftest import FakeBackend, make_activity_payload, make_batch as batch

from app.models.activity import ActivityLevel, ActivityRequest, ComputationalThinkingPillar
from app.models.document import DocumentStatus, StoredDocument
from app.models.generation import FailureKind, GenerationStage
from app.services.activity_generator import ActivityGenerator, generate_activities
from app.services.context_builder import TRUNCATION_MARKER
from app.services.document_parser import encode_content
from app.services.errors import (
    ModelInvocationError,
    NoStructuredPayloadFoundError,
    RateLimitedError,
    UnexpectedPayloadShapeError,
)
from app.services.prompt_builder import CONTEXT_START


def make_request(quantity: int = 2) -> ActivityRequest:
    return ActivityRequest(
        subject="Matemática",
        topic="Frações",
        grade="6º Ano",
        pillar=ComputationalThinkingPillar.ALGORITMOS,
        level=ActivityLevel.MEDIO,
        quantity=quantity,
    )


def make_doc(doc_id: str, text: str, media_type: str = "text/plain",
             status: DocumentStatus = DocumentStatus.READY) -> StoredDocument:
    return StoredDocument(
        id=doc_id,
        name=f"{doc_id}.txt",
        media_type=media_type,
        content=encode_content(text.encode("utf-8")),
        status=status,
    )


class TestSuccess:
    @pytest.mark.asyncio
    async def test_two_activities_without_documents(self):
        backend = FakeBackend("Aqui estão:\n" + batch("A", "B"))
        generator = ActivityGenerator(backend)

        outcome = await generator.run(make_request(2), [])

        assert outcome.stage == GenerationStage.SUCCEEDED
        assert outcome.succeeded
        assert [a.title for a in outcome.activities] == ["A", "B"]
        assert outcome.failure is None
        assert outcome.warnings == []
        assert generator.stage == GenerationStage.SUCCEEDED
        assert CONTEXT_START not in backend.payloads[0].user_prompt
        assert len(backend.payloads) == 1

    @pytest.mark.asyncio
    async def test_context_included_when_documents_ready(self):
        backend = FakeBackend(batch("A"))

        outcome = await ActivityGenerator(backend).run(
            make_request(1), [make_doc("aula", "Conteúdo sobre frações equivalentes")]
        )

        assert outcome.succeeded
        prompt = backend.payloads[0].user_prompt
        assert CONTEXT_START in prompt
        assert "Conteúdo sobre frações equivalentes" in prompt
        assert outcome.context_chars > 0

    @pytest.mark.asyncio
    async def test_structured_backend_parses_directly(self):
        backend = FakeBackend(batch("A"), structured=True)

        outcome = await ActivityGenerator(backend).run(make_request(1))

        assert outcome.activities[0].title == "A"

    @pytest.mark.asyncio
    async def test_prompt_respects_ceiling_with_large_document(self):
        backend = FakeBackend(batch("A"))
        big = make_doc("grande", "palavra " * 20_000)

        outcome = await ActivityGenerator(backend, max_prompt_chars=30_000).run(make_request(1), [big])

        assert outcome.succeeded
        assert outcome.truncated_documents == ["grande.txt"]
        assert len(backend.payloads[0].full_prompt) <= 30_000
        assert TRUNCATION_MARKER in backend.payloads[0].user_prompt


class TestReview:
    @pytest.mark.asyncio
    async def test_extra_activities_trimmed_with_warning(self):
        outcome = await ActivityGenerator(FakeBackend(batch("A", "B", "C"))).run(make_request(2))

        assert [a.title for a in outcome.activities] == ["A", "B"]
        assert any("apenas as primeiras 2" in w for w in outcome.warnings)

    @pytest.mark.asyncio
    async def test_fewer_activities_warn(self):
        outcome = await ActivityGenerator(FakeBackend(batch("A"))).run(make_request(3))

        assert outcome.succeeded
        assert outcome.warnings == ["A IA retornou 1 de 3 atividades solicitadas."]

    @pytest.mark.asyncio
    async def test_missing_sections_warn(self):
        entry = make_activity_payload("Sem seções")
        entry["descricao"] = "Apenas um parágrafo."
        response = json.dumps({"atividades": [entry]})

        outcome = await ActivityGenerator(FakeBackend(response)).run(make_request(1))

        assert outcome.succeeded
        assert len(outcome.warnings) == 1
        assert "Contextualização" in outcome.warnings[0]

    @pytest.mark.asyncio
    async def test_empty_list_fails(self):
        outcome = await ActivityGenerator(FakeBackend('{"atividades": []}')).run(make_request(1))

        assert outcome.failure.kind == FailureKind.UNEXPECTED_PAYLOAD_SHAPE
        assert outcome.activities == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after_unchanged(self):
        generator = ActivityGenerator(FakeBackend(error=RateLimitedError(12)))

        outcome = await generator.run(make_request())

        assert outcome.stage == GenerationStage.FAILED
        assert outcome.failure.kind == FailureKind.RATE_LIMITED
        assert outcome.failure.retry_after == 12
        assert outcome.failure.stage == GenerationStage.AWAITING_MODEL
        assert outcome.activities == []
        assert isinstance(generator.error, RateLimitedError)

    @pytest.mark.asyncio
    async def test_timeout(self):
        generator = ActivityGenerator(FakeBackend(batch("A"), delay=1.0), timeout_seconds=0.01)

        outcome = await generator.run(make_request(1))

        assert outcome.failure.kind == FailureKind.MODEL_TIMEOUT
        assert outcome.failure.stage == GenerationStage.AWAITING_MODEL

    @pytest.mark.asyncio
    async def test_invocation_error(self):
        outcome = await ActivityGenerator(
            FakeBackend(error=ModelInvocationError("boom", status_code=500))
        ).run(make_request(1))

        assert outcome.failure.kind == FailureKind.MODEL_INVOCATION
        assert outcome.failure.retry_after is None

    @pytest.mark.asyncio
    async def test_unparseable_response(self):
        outcome = await ActivityGenerator(FakeBackend("Desculpe, não posso.")).run(make_request(1))

        assert outcome.failure.kind == FailureKind.NO_STRUCTURED_PAYLOAD
        assert outcome.failure.excerpt == "Desculpe, não posso."
        assert outcome.failure.stage == GenerationStage.EXTRACTING_RESULT

    @pytest.mark.asyncio
    async def test_deeply_nested_response_is_malformed(self):
        backend = FakeBackend("Resposta: " + "[" * 100000 + "]" * 100000)

        outcome = await ActivityGenerator(backend).run(make_request(1))

        assert outcome.stage == GenerationStage.FAILED
        assert outcome.failure.kind == FailureKind.MALFORMED_PAYLOAD
        assert outcome.failure.stage == GenerationStage.EXTRACTING_RESULT
        assert outcome.activities == []

    @pytest.mark.asyncio
    async def test_document_failure_is_not_fatal(self):
        backend = FakeBackend(batch("A"))
        docs = [
            make_doc("ok", "Texto válido"),
            make_doc("img", "xx", media_type="image/png"),
            make_doc("pendente", "Texto", status=DocumentStatus.PENDING),
        ]

        outcome = await ActivityGenerator(backend).run(make_request(1), docs)

        assert outcome.succeeded
        assert sorted(e.id for e in outcome.excluded_documents) == ["img", "pendente"]
        assert "Texto válido" in backend.payloads[0].user_prompt

    @pytest.mark.asyncio
    async def test_generator_is_single_use(self):
        generator = ActivityGenerator(FakeBackend(batch("A")))
        await generator.run(make_request(1))

        with pytest.raises(RuntimeError):
            await generator.run(make_request(1))


    @pytest.mark.asyncio
    async def test_unclassified_backend_error_still_fails_cleanly(self):
        generator = ActivityGenerator(FakeBackend(error=ValueError("unexpected response body")))

        outcome = await generator.run(make_request(1))

        assert outcome.stage == GenerationStage.FAILED
        assert generator.stage == GenerationStage.FAILED
        assert outcome.failure.kind == FailureKind.MODEL_INVOCATION
        assert outcome.failure.stage == GenerationStage.AWAITING_MODEL
        assert "unexpected response body" in outcome.failure.message
        assert isinstance(generator.error, ModelInvocationError)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_while_awaiting_model_propagates(self):
        entered = asyncio.Event()
        release = asyncio.Event()

        class BlockingBackend(FakeBackend):
            async def generate(self, payload):
                entered.set()
                await release.wait()
                return await super().generate(payload)

        generator = ActivityGenerator(BlockingBackend(batch("A")))
        task = asyncio.create_task(generator.run(make_request(1)))
        await entered.wait()
        assert generator.stage == GenerationStage.AWAITING_MODEL

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert generator.error is None
        assert generator.stage == GenerationStage.AWAITING_MODEL


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_documents_snapshotted_at_start(self):
        doc = make_doc("aula", "Versão original")
        documents = [doc]

        class MutatingBackend(FakeBackend):
            async def generate(self, payload):
                documents.clear()
                return await super().generate(payload)

        backend = MutatingBackend(batch("A"))
        outcome = await ActivityGenerator(backend).run(make_request(1), documents)

        assert outcome.succeeded
        assert "Versão original" in backend.payloads[0].user_prompt


class TestGenerateActivities:
    @pytest.mark.asyncio
    async def test_returns_activities(self):
        activities = await generate_activities(make_request(1), [], FakeBackend(batch("A")))

        assert [a.title for a in activities] == ["A"]

    @pytest.mark.asyncio
    async def test_raises_classified_error(self):
        with pytest.raises(NoStructuredPayloadFoundError):
            await generate_activities(make_request(1), [], FakeBackend("nada aqui"))

    @pytest.mark.asyncio
    async def test_raises_shape_error(self):
        with pytest.raises(UnexpectedPayloadShapeError):
            await generate_activities(make_request(1), [], FakeBackend('{"x": 1}'))

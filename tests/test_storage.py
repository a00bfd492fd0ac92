"""Tests for activity and document storage backends."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from conftest import make_activity_payload

from app.config import Settings
from app.db.storage import (
    ACTIVITIES_TABLE,
    DOCUMENTS_TABLE,
    InMemoryStore,
    SupabaseStore,
    create_activity_store,
)
from app.models.activity import (
    Activity,
    ActivityLevel,
    ActivityUpdate,
    ComputationalThinkingPillar,
    GeneratedActivity,
)
from app.models.document import DocumentStatus, StoredDocument

BASE_TIME = datetime(2024, 3, 1, tzinfo=timezone.utc)


def make_activity(activity_id: str, minutes: int = 0, title: str = "Atividade") -> Activity:
    generated = GeneratedActivity.model_validate(make_activity_payload(title))
    return Activity(
        id=activity_id,
        subject="Matemática",
        topic="Frações",
        grade="6º Ano",
        level=ActivityLevel.MEDIO,
        pillar=ComputationalThinkingPillar.ALGORITMOS,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **generated.model_dump(),
    )


def make_document(doc_id: str, minutes: int = 0, status=DocumentStatus.READY) -> StoredDocument:
    return StoredDocument(
        id=doc_id,
        name=f"{doc_id}.txt",
        media_type="text/plain",
        content="dGV4dG8=",
        status=status,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_activities_newest_first(self):
        store = InMemoryStore()
        await store.add_activities([make_activity("old", 0), make_activity("new", 10)])

        assert [a.id for a in await store.list_activities()] == ["new", "old"]

    @pytest.mark.asyncio
    async def test_get_and_delete_activity(self):
        store = InMemoryStore()
        await store.add_activities([make_activity("a")])

        assert (await store.get_activity("a")).id == "a"
        assert await store.delete_activity("a") is True
        assert await store.get_activity("a") is None
        assert await store.delete_activity("a") is False

    @pytest.mark.asyncio
    async def test_update_only_set_fields(self):
        store = InMemoryStore()
        await store.add_activities([make_activity("a", title="Antigo")])

        updated = await store.update_activity(
            "a", ActivityUpdate.model_validate({"titulo": "Novo", "duracaoEstimada": 90})
        )

        assert updated.title == "Novo"
        assert updated.estimated_duration == 90
        assert updated.subject == "Matemática"
        assert (await store.get_activity("a")).title == "Novo"

    @pytest.mark.asyncio
    async def test_update_missing_activity(self):
        assert await InMemoryStore().update_activity("nope", ActivityUpdate(title="x")) is None

    @pytest.mark.asyncio
    async def test_documents_in_upload_order_and_by_status(self):
        store = InMemoryStore()
        await store.add_document(make_document("b", 5))
        await store.add_document(make_document("a", 0))
        await store.add_document(make_document("f", 9, status=DocumentStatus.FAILED))

        assert [d.id for d in await store.list_documents()] == ["a", "b", "f"]
        assert [d.id for d in await store.list_documents(DocumentStatus.READY)] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_get_documents_keeps_requested_order(self):
        store = InMemoryStore()
        for doc_id in ("a", "b", "c"):
            await store.add_document(make_document(doc_id))

        found = await store.get_documents(["c", "missing", "a"])

        assert [d.id for d in found] == ["c", "a"]

    @pytest.mark.asyncio
    async def test_update_delete_and_clear_documents(self):
        store = InMemoryStore()
        doc = await store.add_document(make_document("a", status=DocumentStatus.PENDING))
        await store.add_document(make_document("b"))

        await store.update_document(doc.model_copy(update={"status": DocumentStatus.READY}))
        assert (await store.get_document("a")).status == DocumentStatus.READY

        assert await store.delete_document("a") is True
        assert await store.clear_documents() == 1
        assert await store.list_documents() == []

    @pytest.mark.asyncio
    async def test_ping(self):
        assert await InMemoryStore().ping() is True


def supabase_client_returning(data) -> MagicMock:
    """A Supabase client whose every query chain executes to ``data``."""
    client = MagicMock()
    response = MagicMock()
    response.data = data
    query = MagicMock()
    for method in ("select", "eq", "neq", "in_", "order", "limit", "insert", "upsert", "update", "delete"):
        getattr(query, method).return_value = query
    query.execute.return_value = response
    client.table.return_value = query
    return client


class TestSupabaseStore:
    @pytest.mark.asyncio
    async def test_list_activities_ordered_by_creation(self):
        row = make_activity("a").model_dump(mode="json", by_alias=True)
        client = supabase_client_returning([row])

        activities = await SupabaseStore(client).list_activities()

        assert [a.id for a in activities] == ["a"]
        assert activities[0].title == "Atividade"
        client.table.assert_called_with(ACTIVITIES_TABLE)
        client.table.return_value.order.assert_called_with("created_at", desc=True)

    @pytest.mark.asyncio
    async def test_add_activities_writes_wire_keys(self):
        activity = make_activity("a")
        row = activity.model_dump(mode="json", by_alias=True)
        client = supabase_client_returning([row])

        stored = await SupabaseStore(client).add_activities([activity])

        assert stored[0].id == "a"
        written = client.table.return_value.upsert.call_args[0][0]
        assert written[0]["titulo"] == "Atividade"
        assert written[0]["competenciaBNCC"].startswith("EF06MA07")

    @pytest.mark.asyncio
    async def test_add_activities_without_data_fails(self):
        client = supabase_client_returning([])

        with pytest.raises(RuntimeError, match="no data"):
            await SupabaseStore(client).add_activities([make_activity("a")])

    @pytest.mark.asyncio
    async def test_get_missing_activity(self):
        assert await SupabaseStore(supabase_client_returning([])).get_activity("x") is None

    @pytest.mark.asyncio
    async def test_get_documents_preserves_order(self):
        rows = [make_document("a").model_dump(mode="json"), make_document("b").model_dump(mode="json")]
        client = supabase_client_returning(rows)

        found = await SupabaseStore(client).get_documents(["b", "a"])

        assert [d.id for d in found] == ["b", "a"]
        client.table.assert_called_with(DOCUMENTS_TABLE)
        client.table.return_value.in_.assert_called_with("id", ["b", "a"])

    @pytest.mark.asyncio
    async def test_list_documents_filters_status(self):
        client = supabase_client_returning([make_document("a").model_dump(mode="json")])

        await SupabaseStore(client).list_documents(DocumentStatus.READY)

        client.table.return_value.eq.assert_called_with("status", "ready")

    @pytest.mark.asyncio
    async def test_transient_error_retried(self):
        client = supabase_client_returning([])
        client.table.return_value.execute.side_effect = [
            ConnectionError("connection reset"),
            MagicMock(data=[]),
        ]

        with patch("app.utils.retry.asyncio.sleep", new_callable=AsyncMock):
            activities = await SupabaseStore(client).list_activities()

        assert activities == []
        assert client.table.return_value.execute.call_count == 2

    @pytest.mark.asyncio
    async def test_ping_failure(self):
        client = supabase_client_returning([])
        client.table.return_value.execute.side_effect = RuntimeError("down")

        assert await SupabaseStore(client).ping() is False


class TestCreateActivityStore:
    def test_memory_default(self):
        assert isinstance(create_activity_store(Settings()), InMemoryStore)

    def test_supabase(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "supabase")
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_KEY", "anon-key")

        with patch("app.db.supabase_client.get_supabase_client") as mock_get:
            mock_get.return_value = MagicMock()
            store = create_activity_store(Settings())

        assert isinstance(store, SupabaseStore)
        assert store.client is mock_get.return_value

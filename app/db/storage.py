"""Persistence for generated activities and uploaded support documents.

Two backends share one interface:

- InMemoryStore: process-local dictionaries, the default for local use and tests
- SupabaseStore: ``activities`` and ``documents`` tables in Supabase

The backend is chosen once at startup from ``STORAGE_BACKEND`` and kept on
``app.state.store``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence

from supabase import Client

from app.config import Settings
from app.models.activity import Activity, ActivityUpdate
from app.models.document import DocumentStatus, StoredDocument
from app.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

ACTIVITIES_TABLE = "activities"
DOCUMENTS_TABLE = "documents"


class ActivityStore(ABC):
    """Storage interface used by the routers and the CLI."""

    name: str = "store"

    # Activities

    @abstractmethod
    async def list_activities(self) -> List[Activity]:
        """All stored activities, newest first."""

    @abstractmethod
    async def get_activity(self, activity_id: str) -> Optional[Activity]:
        ...

    @abstractmethod
    async def add_activities(self, activities: Sequence[Activity]) -> List[Activity]:
        ...

    @abstractmethod
    async def update_activity(self, activity_id: str, update: ActivityUpdate) -> Optional[Activity]:
        """Apply the set fields of ``update``; None when the activity does not exist."""

    @abstractmethod
    async def delete_activity(self, activity_id: str) -> bool:
        ...

    # Documents

    @abstractmethod
    async def add_document(self, document: StoredDocument) -> StoredDocument:
        ...

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[StoredDocument]:
        ...

    @abstractmethod
    async def list_documents(self, status: Optional[DocumentStatus] = None) -> List[StoredDocument]:
        """Documents in upload order, optionally limited to one status."""

    @abstractmethod
    async def update_document(self, document: StoredDocument) -> StoredDocument:
        ...

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool:
        ...

    @abstractmethod
    async def clear_documents(self) -> int:
        """Delete every document and return how many were removed."""

    async def get_documents(self, document_ids: Sequence[str]) -> List[StoredDocument]:
        """Documents with the given ids, in the requested order; unknown ids are skipped."""
        found = []
        for document_id in document_ids:
            document = await self.get_document(document_id)
            if document is not None:
                found.append(document)
        return found

    async def ping(self) -> bool:
        return True


def apply_update(activity: Activity, update: ActivityUpdate) -> Activity:
    changes = update.model_dump(exclude_unset=True, exclude_none=True)
    return activity.model_copy(update=changes)


class InMemoryStore(ActivityStore):
    """Process-local store; contents are lost on restart."""

    name = "memory"

    def __init__(self):
        self._activities: Dict[str, Activity] = {}
        self._documents: Dict[str, StoredDocument] = {}
        self._lock = asyncio.Lock()

    async def list_activities(self) -> List[Activity]:
        return sorted(self._activities.values(), key=lambda a: a.created_at, reverse=True)

    async def get_activity(self, activity_id: str) -> Optional[Activity]:
        return self._activities.get(activity_id)

    async def add_activities(self, activities: Sequence[Activity]) -> List[Activity]:
        async with self._lock:
            for activity in activities:
                self._activities[activity.id] = activity
        return list(activities)

    async def update_activity(self, activity_id: str, update: ActivityUpdate) -> Optional[Activity]:
        async with self._lock:
            current = self._activities.get(activity_id)
            if current is None:
                return None
            updated = apply_update(current, update)
            self._activities[activity_id] = updated
            return updated

    async def delete_activity(self, activity_id: str) -> bool:
        async with self._lock:
            return self._activities.pop(activity_id, None) is not None

    async def add_document(self, document: StoredDocument) -> StoredDocument:
        async with self._lock:
            self._documents[document.id] = document
        return document

    async def get_document(self, document_id: str) -> Optional[StoredDocument]:
        return self._documents.get(document_id)

    async def list_documents(self, status: Optional[DocumentStatus] = None) -> List[StoredDocument]:
        documents = sorted(self._documents.values(), key=lambda d: d.created_at)
        if status is not None:
            documents = [d for d in documents if d.status == status]
        return documents

    async def update_document(self, document: StoredDocument) -> StoredDocument:
        async with self._lock:
            self._documents[document.id] = document
        return document

    async def delete_document(self, document_id: str) -> bool:
        async with self._lock:
            return self._documents.pop(document_id, None) is not None

    async def clear_documents(self) -> int:
        async with self._lock:
            count = len(self._documents)
            self._documents.clear()
        return count


class SupabaseStore(ActivityStore):
    """
    Supabase-backed store.

    Activity rows keep the Portuguese payload keys (``titulo``, ``descricao`` ...)
    so records written here match the JSON the API returns.
    """

    name = "supabase"

    def __init__(self, client: Client):
        self.client = client

    @staticmethod
    def _activity_row(activity: Activity) -> dict:
        return activity.model_dump(mode="json", by_alias=True)

    @retry_with_backoff()
    async def list_activities(self) -> List[Activity]:
        response = await asyncio.to_thread(
            lambda: self.client.table(ACTIVITIES_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .execute()
        )
        return [Activity.model_validate(row) for row in response.data or []]

    @retry_with_backoff()
    async def get_activity(self, activity_id: str) -> Optional[Activity]:
        response = await asyncio.to_thread(
            lambda: self.client.table(ACTIVITIES_TABLE)
            .select("*")
            .eq("id", activity_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return Activity.model_validate(response.data[0])

    @retry_with_backoff()
    async def add_activities(self, activities: Sequence[Activity]) -> List[Activity]:
        if not activities:
            return []
        rows = [self._activity_row(a) for a in activities]
        try:
            response = await asyncio.to_thread(
                lambda: self.client.table(ACTIVITIES_TABLE).upsert(rows).execute()
            )
        except Exception as e:
            raise RuntimeError(f"Failed to insert activities: {str(e)}") from e
        if not response.data:
            raise RuntimeError("Insert returned no data")
        return [Activity.model_validate(row) for row in response.data]

    async def update_activity(self, activity_id: str, update: ActivityUpdate) -> Optional[Activity]:
        current = await self.get_activity(activity_id)
        if current is None:
            return None
        updated = apply_update(current, update)
        await self._upsert_activity(updated)
        return updated

    @retry_with_backoff()
    async def _upsert_activity(self, activity: Activity) -> None:
        row = self._activity_row(activity)
        await asyncio.to_thread(
            lambda: self.client.table(ACTIVITIES_TABLE).upsert(row).execute()
        )

    @retry_with_backoff()
    async def delete_activity(self, activity_id: str) -> bool:
        response = await asyncio.to_thread(
            lambda: self.client.table(ACTIVITIES_TABLE).delete().eq("id", activity_id).execute()
        )
        return bool(response.data)

    @retry_with_backoff()
    async def add_document(self, document: StoredDocument) -> StoredDocument:
        row = document.model_dump(mode="json")
        try:
            await asyncio.to_thread(
                lambda: self.client.table(DOCUMENTS_TABLE).insert(row).execute()
            )
        except Exception as e:
            raise RuntimeError(f"Failed to insert document: {str(e)}") from e
        return document

    @retry_with_backoff()
    async def get_document(self, document_id: str) -> Optional[StoredDocument]:
        response = await asyncio.to_thread(
            lambda: self.client.table(DOCUMENTS_TABLE)
            .select("*")
            .eq("id", document_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return StoredDocument.model_validate(response.data[0])

    @retry_with_backoff()
    async def get_documents(self, document_ids: Sequence[str]) -> List[StoredDocument]:
        if not document_ids:
            return []
        ids = list(document_ids)
        response = await asyncio.to_thread(
            lambda: self.client.table(DOCUMENTS_TABLE).select("*").in_("id", ids).execute()
        )
        by_id = {row["id"]: StoredDocument.model_validate(row) for row in response.data or []}
        return [by_id[i] for i in ids if i in by_id]

    @retry_with_backoff()
    async def list_documents(self, status: Optional[DocumentStatus] = None) -> List[StoredDocument]:
        def query():
            q = self.client.table(DOCUMENTS_TABLE).select("*")
            if status is not None:
                q = q.eq("status", status.value)
            return q.order("created_at").execute()

        response = await asyncio.to_thread(query)
        return [StoredDocument.model_validate(row) for row in response.data or []]

    @retry_with_backoff()
    async def update_document(self, document: StoredDocument) -> StoredDocument:
        row = document.model_dump(mode="json", exclude={"id"})
        await asyncio.to_thread(
            lambda: self.client.table(DOCUMENTS_TABLE).update(row).eq("id", document.id).execute()
        )
        return document

    @retry_with_backoff()
    async def delete_document(self, document_id: str) -> bool:
        response = await asyncio.to_thread(
            lambda: self.client.table(DOCUMENTS_TABLE).delete().eq("id", document_id).execute()
        )
        return bool(response.data)

    @retry_with_backoff()
    async def clear_documents(self) -> int:
        # PostgREST refuses an unfiltered delete
        response = await asyncio.to_thread(
            lambda: self.client.table(DOCUMENTS_TABLE).delete().neq("id", "").execute()
        )
        return len(response.data or [])

    async def ping(self) -> bool:
        try:
            await asyncio.to_thread(
                lambda: self.client.table(ACTIVITIES_TABLE).select("id").limit(1).execute()
            )
            return True
        except Exception as e:
            logger.warning(f"Supabase health check failed: {e}")
            return False


def create_activity_store(settings: Settings) -> ActivityStore:
    """Build the store selected by ``STORAGE_BACKEND``."""
    if settings.storage_backend == "supabase":
        from app.db.supabase_client import get_supabase_client

        return SupabaseStore(get_supabase_client(settings))
    return InMemoryStore()

"""Supabase-backed job registry."""

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from supabase import AsyncClient, acreate_client

from solr_reindex.config import Settings
from solr_reindex.core.exceptions import JobNotFoundError
from solr_reindex.core.logging import get_logger
from solr_reindex.reindex.models import JobState, JobStatus
from solr_reindex.reindex.registry import JobRegistry

logger = get_logger(__name__)


class SupabaseJobRegistry(JobRegistry):
    """Registry stored in a Supabase (PostgreSQL) table.

    Compare-and-set is a conditional update filtered on ``id``, ``revision``
    and ``status``; PostgreSQL row locking makes it atomic, and an empty
    result means another writer won.

    Expected table columns mirror ``JobState`` (``spec`` as ``jsonb``).
    """

    def __init__(self, async_client: AsyncClient, table: str = "reindex_job"):
        self.client: AsyncClient = async_client
        self.table = table

    @classmethod
    async def connect(cls, settings: Settings) -> "SupabaseJobRegistry":
        if not settings.supabase_url or not settings.supabase_key:
            raise ValueError("Supabase URL and key must be set")
        client = await acreate_client(settings.supabase_url, settings.supabase_key)
        return cls(client, settings.supabase_table)

    @staticmethod
    def _to_row(state: JobState) -> dict[str, Any]:
        row = state.model_dump(mode="json")
        row["id"] = str(state.id)
        return row

    async def get(self, job_id: UUID) -> JobState:
        response = await (
            self.client.table(self.table).select("*").eq("id", str(job_id)).limit(1).execute()
        )
        if not response.data:
            raise JobNotFoundError(f"Job {job_id} not found")
        return JobState.model_validate(response.data[0])

    async def list_jobs(self, statuses: Iterable[JobStatus] | None = None) -> list[JobState]:
        query = self.client.table(self.table).select("*")
        if statuses is not None:
            query = query.in_("status", [s.value for s in statuses])
        response = await query.order("created_at").execute()
        return [JobState.model_validate(row) for row in response.data]

    async def _insert(self, state: JobState) -> None:
        await self.client.table(self.table).insert(self._to_row(state)).execute()

    async def _swap(self, job_id: UUID, expected: JobState, new: JobState) -> bool:
        row = self._to_row(new)
        del row["id"]
        response = await (
            self.client.table(self.table)
            .update(row)
            .eq("id", str(job_id))
            .eq("revision", expected.revision)
            .eq("status", expected.status.value)
            .execute()
        )
        if response.data:
            return True

        # Distinguish a lost race from a missing row.
        await self.get(job_id)
        logger.debug(f"Compare-and-set lost for job {job_id} at revision {expected.revision}")
        return False

from __future__ import annotations

import asyncio
from typing import Any

from supabase import Client, create_client

from contact_finder.config import settings
from contact_finder.models.search import DuplicateGroup, ExtractedContact, SearchJob, SearchResult
from contact_finder.services.env_safety import sanitize_tls_environment
from contact_finder.services.logger import log_db_operation
from contact_finder.services.repository import job_row


def get_client() -> Client:
    sanitize_tls_environment()
    return create_client(settings.supabase_url, settings.supabase_anon_key)


_client: Client | None = None


def client() -> Client:
    global _client
    if _client is None:
        _client = get_client()
    return _client


async def _execute(query: Any) -> Any:
    """Run blocking Supabase query execution in a worker thread."""
    return await asyncio.to_thread(query.execute)


class SupabaseSearchRepository:
    """Search persistence on Supabase tables.

    Tables: ``search_jobs``, ``search_job_status``, ``search_results``,
    ``extracted_contacts`` and ``duplicate_groups``. Writes are upserts on
    their natural keys, so repeating one is harmless.
    """

    def __init__(self, supabase_client: Client | None = None):
        self._client = supabase_client

    def _db(self) -> Client:
        return self._client or client()

    async def _upsert(self, table: str, rows: list[dict[str, Any]] | dict[str, Any], on_conflict: str) -> None:
        if not rows:
            return
        try:
            await _execute(self._db().table(table).upsert(rows, on_conflict=on_conflict))
        except Exception as exc:
            log_db_operation("upsert", table, "failed", error=str(exc))
            raise
        count = len(rows) if isinstance(rows, list) else 1
        log_db_operation("upsert", table, "success", details=f"{count} row(s)")

    async def save_job(self, job: SearchJob) -> None:
        await self._upsert("search_jobs", job_row(job), "id")

    async def update_job_status(
        self,
        search_id: str,
        stage: str,
        progress: dict[str, Any],
        *,
        error: str | None = None,
    ) -> None:
        row: dict[str, Any] = {"search_id": search_id, "stage": stage, "progress": progress}
        if error:
            row["error"] = error
        await self._upsert("search_job_status", row, "search_id,stage")

        update: dict[str, Any] = {"status": stage, "progress": progress}
        try:
            await _execute(self._db().table("search_jobs").update(update).eq("id", search_id))
        except Exception as exc:
            log_db_operation("update", "search_jobs", "failed", error=str(exc))
            raise

    async def save_results(self, search_id: str, results: list[SearchResult]) -> None:
        rows = []
        for result in results:
            row = result.to_dict()
            row.pop("contacts", None)
            row["id"] = row.pop("result_id")
            row["search_id"] = search_id
            rows.append(row)
        await self._upsert("search_results", rows, "id")

    async def save_contacts(self, search_id: str, contacts: list[ExtractedContact]) -> None:
        rows = []
        for contact in contacts:
            row = contact.to_dict()
            row["id"] = row.pop("contact_id")
            row["search_id"] = search_id
            rows.append(row)
        await self._upsert("extracted_contacts", rows, "id")

    async def save_duplicate_groups(self, search_id: str, groups: list[DuplicateGroup]) -> None:
        rows = []
        for group in groups:
            row = group.to_dict()
            row["id"] = row.pop("group_id")
            row["search_id"] = search_id
            rows.append(row)
        await self._upsert("duplicate_groups", rows, "id")

    async def get_job(self, search_id: str) -> dict[str, Any] | None:
        result = await _execute(self._db().table("search_jobs").select("*").eq("id", search_id))
        return result.data[0] if result.data else None

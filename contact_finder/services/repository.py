from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Protocol

from contact_finder.config import settings
from contact_finder.models.search import DuplicateGroup, ExtractedContact, SearchJob, SearchResult


class SearchRepository(Protocol):
    async def save_job(self, job: SearchJob) -> None: ...
    async def update_job_status(
        self,
        search_id: str,
        stage: str,
        progress: dict[str, Any],
        *,
        error: str | None = None,
    ) -> None: ...
    async def save_results(self, search_id: str, results: list[SearchResult]) -> None: ...
    async def save_contacts(self, search_id: str, contacts: list[ExtractedContact]) -> None: ...
    async def save_duplicate_groups(self, search_id: str, groups: list[DuplicateGroup]) -> None: ...
    async def get_job(self, search_id: str) -> dict[str, Any] | None: ...


def job_row(job: SearchJob) -> dict[str, Any]:
    return {
        "id": job.search_id,
        "user_id": job.user_id,
        "query": job.configuration.query,
        "configuration": job.configuration.model_dump(mode="json", by_alias=True),
        "status": job.stage.value,
        "progress": job.progress.to_dict(),
        "created_at": job.created_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }


class InMemorySearchRepository:
    """Dict-backed repository. Status writes are keyed by (search_id, stage) and idempotent."""

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.status_updates: dict[tuple[str, str], dict[str, Any]] = {}
        self.results: dict[str, dict[str, dict[str, Any]]] = {}
        self.contacts: dict[str, dict[str, dict[str, Any]]] = {}
        self.duplicate_groups: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def save_job(self, job: SearchJob) -> None:
        async with self._lock:
            self.jobs[job.search_id] = job_row(job)

    async def update_job_status(
        self,
        search_id: str,
        stage: str,
        progress: dict[str, Any],
        *,
        error: str | None = None,
    ) -> None:
        async with self._lock:
            row = {
                "search_id": search_id,
                "stage": stage,
                "progress": dict(progress),
                "error": error,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
            self.status_updates[(search_id, stage)] = row
            job = self.jobs.get(search_id)
            if job is not None:
                job["status"] = stage
                job["progress"] = dict(progress)
                if error:
                    job["error"] = error

    async def save_results(self, search_id: str, results: list[SearchResult]) -> None:
        async with self._lock:
            bucket = self.results.setdefault(search_id, {})
            for result in results:
                bucket[result.result_id] = result.to_dict()

    async def save_contacts(self, search_id: str, contacts: list[ExtractedContact]) -> None:
        async with self._lock:
            bucket = self.contacts.setdefault(search_id, {})
            for contact in contacts:
                bucket[contact.contact_id] = contact.to_dict()

    async def save_duplicate_groups(self, search_id: str, groups: list[DuplicateGroup]) -> None:
        async with self._lock:
            bucket = self.duplicate_groups.setdefault(search_id, {})
            for group in groups:
                bucket[group.group_id] = group.to_dict()

    async def get_job(self, search_id: str) -> dict[str, Any] | None:
        job = self.jobs.get(search_id)
        return dict(job) if job is not None else None

    def stage_history(self, search_id: str) -> list[str]:
        return [stage for (sid, stage) in self.status_updates if sid == search_id]


_repository: SearchRepository | None = None


def get_repository() -> SearchRepository:
    global _repository
    if _repository is None:
        backend = settings.persistence_backend.lower().strip()
        if backend == "memory":
            _repository = InMemorySearchRepository()
        elif backend == "supabase":
            from contact_finder.services.supabase import SupabaseSearchRepository

            _repository = SupabaseSearchRepository()
        else:
            raise ValueError(f"Unsupported PERSISTENCE_BACKEND: {settings.persistence_backend}")
    return _repository

from __future__ import annotations

import pytest

from contact_finder.models.schemas import SearchConfiguration
from contact_finder.models.search import ExtractedContact, SearchJob, SearchResult, SearchStage
from contact_finder.services import repository
from contact_finder.services.repository import InMemorySearchRepository, get_repository, job_row


def _job() -> SearchJob:
    return SearchJob(search_id="s1", user_id="u1", configuration=SearchConfiguration(query="tech reporters"))


def test_job_row_carries_configuration_and_status():
    row = job_row(_job())
    assert row["id"] == "s1"
    assert row["query"] == "tech reporters"
    assert row["status"] == "initializing"
    assert row["configuration"]["options"]["max_results"] == 50


@pytest.mark.asyncio
async def test_status_updates_are_keyed_by_stage():
    repo = InMemorySearchRepository()
    job = _job()
    await repo.save_job(job)

    await repo.update_job_status("s1", "query_generation", {"percentage": 10})
    await repo.update_job_status("s1", "query_generation", {"percentage": 20})
    await repo.update_job_status("s1", "web_search", {"percentage": 25}, error="slow provider")

    assert repo.stage_history("s1") == ["query_generation", "web_search"]
    assert repo.status_updates[("s1", "query_generation")]["progress"] == {"percentage": 20}
    stored = await repo.get_job("s1")
    assert stored["status"] == "web_search"
    assert stored["error"] == "slow provider"
    assert await repo.get_job("missing") is None


@pytest.mark.asyncio
async def test_saving_outputs_twice_is_idempotent():
    repo = InMemorySearchRepository()
    contact = ExtractedContact(name="Jane Smith", contact_id="c1")
    result = SearchResult(
        result_id="r1",
        url="https://techdaily.com/a",
        title="A",
        domain="techdaily.com",
        contacts=(contact,),
    )

    for _ in range(2):
        await repo.save_results("s1", [result])
        await repo.save_contacts("s1", [contact])

    assert list(repo.results["s1"]) == ["r1"]
    assert list(repo.contacts["s1"]) == ["c1"]


def test_get_repository_rejects_unknown_backend(monkeypatch):
    monkeypatch.setattr(repository, "_repository", None)
    monkeypatch.setattr(repository.settings, "persistence_backend", "mongo")
    with pytest.raises(ValueError, match="PERSISTENCE_BACKEND"):
        get_repository()


def test_get_repository_memory_backend_is_singleton(monkeypatch):
    monkeypatch.setattr(repository, "_repository", None)
    monkeypatch.setattr(repository.settings, "persistence_backend", "memory")
    first = get_repository()
    assert isinstance(first, InMemorySearchRepository)
    assert get_repository() is first


def test_job_row_reflects_terminal_stage():
    job = _job()
    job.transition_to(SearchStage.CANCELLED)
    row = job_row(job)
    assert row["status"] == "cancelled"
    assert row["completed_at"] is not None

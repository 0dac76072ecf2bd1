from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from contact_finder.models.schemas import SearchConfiguration
from contact_finder.models.search import ExtractedContact, SearchJob
from contact_finder.services.supabase import SupabaseSearchRepository


def _client(data=None) -> MagicMock:
    client = MagicMock()
    client.table.return_value.upsert.return_value.execute.return_value = SimpleNamespace(data=[])
    client.table.return_value.update.return_value.eq.return_value.execute.return_value = SimpleNamespace(data=[])
    client.table.return_value.select.return_value.eq.return_value.execute.return_value = SimpleNamespace(
        data=data or []
    )
    return client


@pytest.mark.asyncio
async def test_save_job_upserts_on_id():
    client = _client()
    repo = SupabaseSearchRepository(client)
    job = SearchJob(search_id="s1", user_id="u1", configuration=SearchConfiguration(query="tech reporters"))

    await repo.save_job(job)

    client.table.assert_called_with("search_jobs")
    row = client.table.return_value.upsert.call_args.args[0]
    assert row["id"] == "s1"
    assert client.table.return_value.upsert.call_args.kwargs["on_conflict"] == "id"


@pytest.mark.asyncio
async def test_update_job_status_writes_stage_row_and_job():
    client = _client()
    repo = SupabaseSearchRepository(client)

    await repo.update_job_status("s1", "web_search", {"percentage": 30}, error="slow")

    tables = [c.args[0] for c in client.table.call_args_list]
    assert tables == ["search_job_status", "search_jobs"]
    row = client.table.return_value.upsert.call_args.args[0]
    assert row == {"search_id": "s1", "stage": "web_search", "progress": {"percentage": 30}, "error": "slow"}
    assert client.table.return_value.upsert.call_args.kwargs["on_conflict"] == "search_id,stage"


@pytest.mark.asyncio
async def test_save_contacts_renames_ids_and_skips_empty_batches():
    client = _client()
    repo = SupabaseSearchRepository(client)

    await repo.save_contacts("s1", [])
    client.table.assert_not_called()

    await repo.save_contacts("s1", [ExtractedContact(name="Jane Smith", contact_id="c1")])
    rows = client.table.return_value.upsert.call_args.args[0]
    assert rows[0]["id"] == "c1"
    assert rows[0]["search_id"] == "s1"
    assert "contact_id" not in rows[0]


@pytest.mark.asyncio
async def test_upsert_failures_propagate():
    client = _client()
    client.table.return_value.upsert.return_value.execute.side_effect = RuntimeError("database connection refused")
    repo = SupabaseSearchRepository(client)

    with pytest.raises(RuntimeError, match="connection refused"):
        await repo.save_contacts("s1", [ExtractedContact(name="Jane Smith")])


@pytest.mark.asyncio
async def test_get_job_returns_first_row_or_none():
    assert await SupabaseSearchRepository(_client(data=[{"id": "s1"}])).get_job("s1") == {"id": "s1"}
    assert await SupabaseSearchRepository(_client()).get_job("missing") is None

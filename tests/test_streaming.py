from __future__ import annotations

import json

from contact_finder.models.events import EventType
from contact_finder.models.search import ExtractedContact, SearchProgress, SearchResult, SearchStage
from contact_finder.services import streaming
from contact_finder.services.errors import JobErrorRecord


def test_format_produces_sse_frame():
    event = streaming.stage_started("s1", "web_search", queries=3)
    frame = event.format()

    assert frame.startswith("event: stage_started\ndata: ")
    assert frame.endswith("\n\n")
    payload = json.loads(frame.split("data: ", 1)[1])
    assert payload == {"search_id": "s1", "stage": "web_search", "queries": 3}


def test_progress_event_snapshots_percentage_and_stage():
    snapshot = SearchProgress(percentage=37.456, stage=SearchStage.WEB_SEARCH, message="Searched 2/4")
    event = streaming.progress("s1", snapshot)
    assert event.event == EventType.PROGRESS
    assert event.data == {"percentage": 37.46, "stage": "web_search", "message": "Searched 2/4"}


def test_search_result_event_counts_contacts():
    result = SearchResult(
        result_id="r1",
        url="https://techdaily.com/a",
        title="A",
        domain="techdaily.com",
        contacts=(ExtractedContact(name="Jane Smith"), ExtractedContact(name="Mark Lee")),
    )
    assert streaming.search_result("s1", result).data["contacts"] == 2


def test_failure_and_error_events_serialize_records():
    record = JobErrorRecord(stage="web_search", message="timeout", category="network", retryable=True)
    failed = streaming.search_failed("s1", "All 2 search queries failed", [record])
    assert failed.to_dict()["data"]["errors"][0]["category"] == "network"
    assert streaming.error("s1", record).data["stage"] == "web_search"

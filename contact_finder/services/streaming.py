from __future__ import annotations

from typing import Any

from contact_finder.models.events import EventType, SearchEvent
from contact_finder.models.search import SearchProgress, SearchResult
from contact_finder.services.errors import JobErrorRecord


def search_queued(search_id: str, query: str, user_id: str) -> SearchEvent:
    return SearchEvent(
        event=EventType.SEARCH_QUEUED,
        search_id=search_id,
        data={"query": query, "user_id": user_id},
    )


def stage_started(search_id: str, stage: str, **kwargs: Any) -> SearchEvent:
    return SearchEvent(event=EventType.STAGE_STARTED, search_id=search_id, data={"stage": stage, **kwargs})


def stage_completed(search_id: str, stage: str, duration_ms: int, **kwargs: Any) -> SearchEvent:
    return SearchEvent(
        event=EventType.STAGE_COMPLETED,
        search_id=search_id,
        data={"stage": stage, "duration_ms": duration_ms, **kwargs},
    )


def progress(search_id: str, snapshot: SearchProgress) -> SearchEvent:
    return SearchEvent(
        event=EventType.PROGRESS,
        search_id=search_id,
        data={
            "percentage": round(snapshot.percentage, 2),
            "stage": snapshot.stage.value,
            "message": snapshot.message,
        },
    )


def search_result(search_id: str, result: SearchResult) -> SearchEvent:
    """Emit one source with its contacts, without the contact bodies."""
    return SearchEvent(
        event=EventType.SEARCH_RESULT,
        search_id=search_id,
        data={
            "result_id": result.result_id,
            "url": result.url,
            "title": result.title,
            "domain": result.domain,
            "contacts": len(result.contacts),
            "relevance_score": result.relevance_score,
        },
    )


def search_complete(search_id: str, summary: dict[str, Any]) -> SearchEvent:
    return SearchEvent(event=EventType.SEARCH_COMPLETE, search_id=search_id, data=summary)


def search_failed(search_id: str, message: str, errors: list[JobErrorRecord]) -> SearchEvent:
    return SearchEvent(
        event=EventType.SEARCH_FAILED,
        search_id=search_id,
        data={"message": message, "errors": [e.to_dict() for e in errors]},
    )


def search_cancelled(search_id: str, reason: str | None, results_kept: int) -> SearchEvent:
    return SearchEvent(
        event=EventType.SEARCH_CANCELLED,
        search_id=search_id,
        data={"reason": reason, "results_kept": results_kept},
    )


def error(search_id: str, record: JobErrorRecord) -> SearchEvent:
    return SearchEvent(event=EventType.ERROR, search_id=search_id, data=record.to_dict())

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    SEARCH_QUEUED = "search_queued"
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    PROGRESS = "progress"
    SEARCH_RESULT = "search_result"
    SEARCH_COMPLETE = "search_complete"
    SEARCH_FAILED = "search_failed"
    SEARCH_CANCELLED = "search_cancelled"
    ERROR = "error"


@dataclass
class SearchEvent:
    event: EventType
    search_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def format(self) -> str:
        payload = {"search_id": self.search_id, **self.data}
        return f"event: {self.event.value}\ndata: {json.dumps(payload, default=str)}\n\n"

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.value,
            "search_id": self.search_id,
            "timestamp": self.timestamp,
            "data": self.data,
        }

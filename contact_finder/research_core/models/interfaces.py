from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Protocol


RenderMode = Literal["default", "http_only"]


@dataclass(slots=True)
class SourceHit:
    """One result returned by a web search provider."""

    url: str
    title: str
    snippet: str
    score: float = 0.0
    provider: str = ""
    published_date: str | None = None


@dataclass(slots=True)
class ProviderSearchOptions:
    max_results: int = 10
    include_domains: list[str] = field(default_factory=list)
    exclude_domains: list[str] = field(default_factory=list)
    time_range: str | None = None
    safe_search: bool = True


@dataclass(slots=True)
class FetchRequest:
    url: str
    render_mode: RenderMode = "default"
    timeout_profile: str = "standard"


@dataclass(slots=True)
class RawContent:
    """Fetched page body plus fetch provenance."""

    url: str
    final_url: str
    status_code: int
    html: str
    provider: str
    timing_ms: int = 0
    attempts: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class EnhancedQuery:
    text: str
    enhancement_type: str
    confidence: float = 0.7
    reasoning: str | None = None


SearchFn = Callable[[str, ProviderSearchOptions], Awaitable[list[SourceHit]]]
FetchContentFn = Callable[[str], Awaitable[RawContent]]


class AIProvider(Protocol):
    """Text-completion collaborator used for query enhancement and extraction."""

    async def complete(self, *, system: str, prompt: str, caller: str) -> str:
        ...

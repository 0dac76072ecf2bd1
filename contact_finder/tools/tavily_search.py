from __future__ import annotations

from typing import Any

from tavily import AsyncTavilyClient

from contact_finder.config import settings
from contact_finder.research_core.models.interfaces import ProviderSearchOptions, SourceHit


def _search_kwargs(query: str, options: ProviderSearchOptions) -> dict[str, Any]:
    optional = {
        "time_range": options.time_range,
        "include_domains": options.include_domains,
        "exclude_domains": options.exclude_domains,
    }
    return {
        "query": query,
        "search_depth": "advanced",
        "topic": "general",
        "max_results": options.max_results,
        **{key: value for key, value in optional.items() if value},
    }


def _to_hit(item: dict[str, Any]) -> SourceHit:
    return SourceHit(
        url=item.get("url", ""),
        title=item.get("title", ""),
        snippet=item.get("content", ""),
        score=float(item.get("score") or 0.0),
        provider="tavily",
        published_date=item.get("published_date"),
    )


async def search(query: str, options: ProviderSearchOptions) -> list[SourceHit]:
    """Run one Tavily query; the client's own errors propagate to the retry layer."""
    if not settings.tavily_api_key:
        raise RuntimeError("TAVILY_API_KEY is not configured")
    response = await AsyncTavilyClient(api_key=settings.tavily_api_key).search(**_search_kwargs(query, options))
    return [_to_hit(item) for item in response.get("results", [])]

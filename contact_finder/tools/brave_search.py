from __future__ import annotations

from typing import Any

import httpx

from contact_finder.config import settings
from contact_finder.research_core.models.interfaces import ProviderSearchOptions, SourceHit

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_MAX_COUNT = 20

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}


def _with_site_filters(query: str, options: ProviderSearchOptions) -> str:
    parts = [query]
    if options.include_domains:
        parts.append("(" + " OR ".join(f"site:{d}" for d in options.include_domains) + ")")
    parts.extend(f"-site:{d}" for d in options.exclude_domains)
    return " ".join(parts)


def _request_params(query: str, options: ProviderSearchOptions) -> dict[str, Any]:
    params: dict[str, Any] = {
        "q": _with_site_filters(query, options),
        "count": min(options.max_results, BRAVE_MAX_COUNT),
        "safesearch": "moderate" if options.safe_search else "off",
    }
    freshness = FRESHNESS_MAP.get(options.time_range or "")
    if freshness:
        params["freshness"] = freshness
    return params


def _to_hit(rank: int, total: int, item: dict[str, Any]) -> SourceHit:
    description = (item.get("description") or "").strip()
    extra = " ".join(item.get("extra_snippets") or []).strip()
    # no relevance score in the web results payload, so rank stands in for it
    return SourceHit(
        url=item.get("url", ""),
        title=item.get("title", ""),
        snippet=description or extra,
        score=max(0.0, 1.0 - rank / total),
        provider="brave",
        published_date=item.get("page_age") or item.get("age"),
    )


async def search(query: str, options: ProviderSearchOptions) -> list[SourceHit]:
    """Brave web search mapped to ``SourceHit``; raises on HTTP errors."""
    if not settings.brave_api_key:
        raise RuntimeError("BRAVE_API_KEY is not configured")

    headers = {"Accept": "application/json", "X-Subscription-Token": settings.brave_api_key}
    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(BRAVE_SEARCH_URL, params=_request_params(query, options), headers=headers)
        response.raise_for_status()
        payload = response.json()

    items = (payload.get("web") or {}).get("results") or []
    total = max(len(items), 1)
    return [_to_hit(rank, total, item) for rank, item in enumerate(items)]

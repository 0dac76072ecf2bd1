from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from contact_finder.research_core.models.interfaces import ProviderSearchOptions, SourceHit
from contact_finder.tools import brave_search, search_provider, tavily_search
from contact_finder.tools.search_provider import filter_hits


def _hit(url: str, score: float = 0.5) -> SourceHit:
    return SourceHit(url=url, title="t", snippet="s", score=score, provider="brave")


def test_filter_hits_applies_domain_rules_and_dedupes():
    hits = [
        _hit("https://www.reuters.com/a"),
        _hit("https://www.reuters.com/a"),
        _hit("https://spam.example/b"),
        _hit("not-a-url"),
        _hit("https://blog.reuters.com/c"),
        _hit("https://bbc.com/d"),
    ]
    options = ProviderSearchOptions(
        max_results=5,
        include_domains=["reuters.com", "spam.example"],
        exclude_domains=["spam.example"],
    )
    kept = filter_hits(hits, options)
    assert [h.url for h in kept] == ["https://www.reuters.com/a", "https://blog.reuters.com/c"]


def test_filter_hits_caps_at_max_results():
    hits = [_hit(f"https://example.com/{i}") for i in range(10)]
    assert len(filter_hits(hits, ProviderSearchOptions(max_results=3))) == 3


@pytest.mark.asyncio
async def test_search_uses_tavily_when_configured():
    with patch("contact_finder.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "tavily"
        with patch.object(tavily_search, "search", AsyncMock(return_value=[_hit("https://apnews.com/x")])):
            response = await search_provider.search_with_provenance("q", ProviderSearchOptions())

    assert response.provider == "tavily"
    assert [h.url for h in response.hits] == ["https://apnews.com/x"]


@pytest.mark.asyncio
async def test_brave_failure_falls_back_to_tavily():
    with patch("contact_finder.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_to_tavily = True
        with patch.object(brave_search, "search", AsyncMock(side_effect=RuntimeError("brave down"))):
            with patch.object(tavily_search, "search", AsyncMock(return_value=[_hit("https://npr.org/x")])):
                response = await search_provider.search_with_provenance("q", ProviderSearchOptions())

    assert response.provider == "tavily"
    assert response.fallback_from == "brave"
    assert response.fallback_reason == "brave down"


@pytest.mark.asyncio
async def test_brave_failure_propagates_without_fallback():
    with patch("contact_finder.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "brave"
        mock_settings.search_fallback_to_tavily = False
        with patch.object(brave_search, "search", AsyncMock(side_effect=RuntimeError("brave down"))):
            with pytest.raises(RuntimeError):
                await search_provider.search("q", ProviderSearchOptions())


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    with patch("contact_finder.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "unknown-provider"
        with pytest.raises(ValueError):
            await search_provider.search("query", ProviderSearchOptions())


@pytest.mark.asyncio
async def test_brave_search_maps_results_and_filters(monkeypatch):
    seen: dict[str, httpx.Request] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["request"] = request
        return httpx.Response(
            200,
            json={
                "web": {
                    "results": [
                        {"url": "https://reuters.com/a", "title": "A", "description": "first", "age": "2 days ago"},
                        {"url": "https://bbc.com/b", "title": "B", "extra_snippets": ["second", "part"]},
                    ]
                }
            },
        )

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        brave_search.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    monkeypatch.setattr(brave_search.settings, "brave_api_key", "test-key")

    options = ProviderSearchOptions(max_results=30, exclude_domains=["spam.example"], time_range="week")
    hits = await brave_search.search("tech reporters", options)

    params = seen["request"].url.params
    assert params["q"] == "tech reporters -site:spam.example"
    assert params["count"] == "20"
    assert params["freshness"] == "pw"
    assert seen["request"].headers["X-Subscription-Token"] == "test-key"
    assert [h.url for h in hits] == ["https://reuters.com/a", "https://bbc.com/b"]
    assert hits[0].score == 1.0
    assert hits[0].published_date == "2 days ago"
    assert hits[1].snippet == "second part"


@pytest.mark.asyncio
async def test_brave_search_requires_api_key(monkeypatch):
    monkeypatch.setattr(brave_search.settings, "brave_api_key", "")
    with pytest.raises(RuntimeError, match="BRAVE_API_KEY"):
        await brave_search.search("q", ProviderSearchOptions())


@pytest.mark.asyncio
async def test_tavily_search_passes_domain_and_time_filters(monkeypatch):
    client = MagicMock()
    client.search = AsyncMock(
        return_value={"results": [{"url": "https://ft.com/x", "title": "X", "content": "body", "score": 0.8}]}
    )
    monkeypatch.setattr(tavily_search, "AsyncTavilyClient", MagicMock(return_value=client))
    monkeypatch.setattr(tavily_search.settings, "tavily_api_key", "tvly-key")

    options = ProviderSearchOptions(max_results=4, include_domains=["ft.com"], time_range="month")
    hits = await tavily_search.search("finance editors", options)

    kwargs = client.search.await_args.kwargs
    assert kwargs["include_domains"] == ["ft.com"]
    assert kwargs["time_range"] == "month"
    assert kwargs["max_results"] == 4
    assert hits == [
        SourceHit(url="https://ft.com/x", title="X", snippet="body", score=0.8, provider="tavily")
    ]

from __future__ import annotations

from dataclasses import dataclass

from contact_finder.config import settings
from contact_finder.research_core.models.interfaces import ProviderSearchOptions, SourceHit
from contact_finder.services.env_safety import sanitize_tls_environment
from contact_finder.services.logger import logger
from contact_finder.tools import brave_search, tavily_search
from contact_finder.tools.web_utils import domain_matches, extract_domain, is_valid_url


@dataclass
class SearchResponse:
    hits: list[SourceHit]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


def filter_hits(hits: list[SourceHit], options: ProviderSearchOptions) -> list[SourceHit]:
    """Drop invalid URLs, excluded domains, repeats, and anything outside include_domains."""
    seen: set[str] = set()
    kept: list[SourceHit] = []
    for hit in hits:
        if not is_valid_url(hit.url) or hit.url in seen:
            continue
        domain = extract_domain(hit.url)
        if options.exclude_domains and domain_matches(domain, options.exclude_domains):
            continue
        if options.include_domains and not domain_matches(domain, options.include_domains):
            continue
        seen.add(hit.url)
        kept.append(hit)
    return kept[: options.max_results]


async def search_with_provenance(query: str, options: ProviderSearchOptions) -> SearchResponse:
    sanitize_tls_environment()
    provider = settings.search_provider.lower().strip()
    use_fallback = settings.search_fallback_to_tavily

    if provider == "tavily":
        hits = await tavily_search.search(query, options)
        return SearchResponse(hits=filter_hits(hits, options), provider="tavily")

    if provider == "brave":
        try:
            hits = await brave_search.search(query, options)
            if hits or not use_fallback:
                return SearchResponse(hits=filter_hits(hits, options), provider="brave")
            reason = "brave returned zero results"
        except Exception as e:
            if not use_fallback:
                raise
            reason = str(e)

        logger.info(f"Falling back to tavily for '{query}': {reason}")
        fallback_hits = await tavily_search.search(query, options)
        return SearchResponse(
            hits=filter_hits(fallback_hits, options),
            provider="tavily",
            fallback_from="brave",
            fallback_reason=reason,
        )

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")


async def search(query: str, options: ProviderSearchOptions) -> list[SourceHit]:
    """Default web search collaborator for the orchestrator."""
    response = await search_with_provenance(query, options)
    return response.hits

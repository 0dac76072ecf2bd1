from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from contact_finder.config import settings
from contact_finder.research_core.models.interfaces import FetchRequest, RawContent
from contact_finder.services.env_safety import sanitize_tls_environment
from contact_finder.tools.web_utils import extract_domain, is_valid_url

USER_AGENT = "ContactFinderBot/1.0 (+https://example.local/bot)"

PROFILE_TIMEOUTS_MS = {"fast": 10000, "standard": 20000, "slow": 35000}

# Social and paywalled hosts render slowly behind consent walls.
SLOW_DOMAINS_MS = {
    "x.com": 25000,
    "twitter.com": 25000,
    "linkedin.com": 25000,
    "medium.com": 22000,
}
MIN_TIMEOUT_MS = 1000


@dataclass(frozen=True, slots=True)
class DomainPolicy:
    domain: str
    timeout_ms: int

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0


FetchResult = tuple[str, str, int]
Fetcher = Callable[[FetchRequest, DomainPolicy], Awaitable[FetchResult]]


def resolve_domain_policy(url: str, *, timeout_profile: str = "standard", max_timeout_ms: int | None = None) -> DomainPolicy:
    domain = extract_domain(url)
    timeout_ms = SLOW_DOMAINS_MS.get(domain) or PROFILE_TIMEOUTS_MS.get(timeout_profile, PROFILE_TIMEOUTS_MS["standard"])
    if max_timeout_ms is not None:
        timeout_ms = min(timeout_ms, max_timeout_ms)
    return DomainPolicy(domain=domain, timeout_ms=max(timeout_ms, MIN_TIMEOUT_MS))


def _parse_firecrawl(payload: Any, fallback_url: str) -> tuple[str, str]:
    body = payload.get("data", payload) if isinstance(payload, dict) else None
    if not isinstance(body, dict):
        return "", fallback_url
    meta = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
    html = str(body.get("html") or body.get("content") or "")
    return html, str(meta.get("sourceURL") or meta.get("url") or fallback_url)


def _reader_target(base: str, url: str) -> str:
    return base.format(url=url) if "{url}" in base else f"{base.rstrip('/')}/{url}"


class ScrapeService:
    """Content fetch adapter.

    Without an injected ``fetcher`` the configured providers are tried in order
    (firecrawl, then the jina reader, then a plain GET) and the first success
    wins. The last provider error is re-raised so the orchestrator can classify
    it.
    """

    def __init__(
        self,
        *,
        fetcher: Fetcher | None = None,
        provider: str | None = None,
        firecrawl_base_url: str | None = None,
        firecrawl_api_key: str | None = None,
        jina_reader_base_url: str | None = None,
        max_chars: int | None = None,
    ):
        def pick(value: str | None, default: str) -> str:
            return (default if value is None else value).strip()

        self._fetcher = fetcher
        self.provider = pick(provider, settings.scrape_provider).lower() or "auto"
        self.firecrawl_base_url = pick(firecrawl_base_url, settings.firecrawl_base_url)
        self.firecrawl_api_key = pick(firecrawl_api_key, settings.firecrawl_api_key)
        self.jina_reader_base_url = pick(jina_reader_base_url, settings.jina_reader_base_url)
        self.max_chars = max_chars or settings.scrape_max_chars

    async def fetch_content(self, url: str, *, timeout_profile: str = "standard") -> RawContent:
        if not is_valid_url(url):
            raise ValueError(f"Invalid URL (400): {url}")
        sanitize_tls_environment()
        request = FetchRequest(url=url, timeout_profile=timeout_profile)
        policy = resolve_domain_policy(url, timeout_profile=timeout_profile)
        started = time.monotonic()

        if self._fetcher is None:
            provider, (html, final_url, status_code) = await self._fetch_chain(request, policy)
        else:
            provider = "custom"
            html, final_url, status_code = await self._fetcher(request, policy)

        return RawContent(
            url=url,
            final_url=final_url,
            status_code=int(status_code),
            html=html[: self.max_chars],
            provider=provider,
            timing_ms=int((time.monotonic() - started) * 1000),
            metadata={"domain": policy.domain, "truncated": len(html) > self.max_chars},
        )

    def _provider_chain(self) -> list[tuple[str, Fetcher]]:
        chain: list[tuple[str, Fetcher]] = []
        if self.provider in {"auto", "firecrawl"} and self.firecrawl_base_url:
            chain.append(("firecrawl", self._fetch_with_firecrawl))
        if self.provider in {"auto", "jina", "jina_reader"} and self.jina_reader_base_url:
            chain.append(("jina_reader", self._fetch_with_jina_reader))
        chain.append(("httpx", self._fetch_with_httpx))
        return chain

    async def _fetch_chain(self, request: FetchRequest, policy: DomainPolicy) -> tuple[str, FetchResult]:
        errors: list[Exception] = []
        for name, fetch in self._provider_chain():
            try:
                return name, await fetch(request, policy)
            except Exception as exc:
                errors.append(exc)
        raise errors[-1]

    def _client(self, policy: DomainPolicy) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=policy.timeout_seconds, follow_redirects=True)

    async def _fetch_with_httpx(self, request: FetchRequest, policy: DomainPolicy) -> FetchResult:
        async with self._client(policy) as client:
            response = await client.get(request.url, headers={"User-Agent": USER_AGENT})
            response.raise_for_status()
        return response.text, str(response.url), response.status_code

    async def _fetch_with_firecrawl(self, request: FetchRequest, policy: DomainPolicy) -> FetchResult:
        headers = {"Content-Type": "application/json"}
        if self.firecrawl_api_key:
            headers["Authorization"] = f"Bearer {self.firecrawl_api_key}"
        async with self._client(policy) as client:
            response = await client.post(
                f"{self.firecrawl_base_url.rstrip('/')}/v1/scrape",
                json={"url": request.url, "formats": ["html"]},
                headers=headers,
            )
            response.raise_for_status()
        html, final_url = _parse_firecrawl(response.json(), request.url)
        if not html:
            raise RuntimeError("Firecrawl response missing html content")
        return html, final_url, response.status_code

    async def _fetch_with_jina_reader(self, request: FetchRequest, policy: DomainPolicy) -> FetchResult:
        async with self._client(policy) as client:
            response = await client.get(
                _reader_target(self.jina_reader_base_url, request.url),
                headers={"X-Return-Format": "html"},
            )
            response.raise_for_status()
        if not response.text:
            raise RuntimeError("Jina reader returned empty body")
        return response.text, request.url, response.status_code

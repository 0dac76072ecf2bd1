from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, fields, is_dataclass, replace
from typing import Any

from contact_finder.config import settings
from contact_finder.services.retry import RetryOptions


@dataclass(frozen=True, slots=True)
class ConcurrencyLimits:
    max_concurrent_searches: int = 50
    max_concurrent_queries: int = 10
    max_concurrent_extractions: int = 20


@dataclass(frozen=True, slots=True)
class StageTimeouts:
    query_generation_ms: int = 30000
    web_search_ms: int = 60000
    content_scraping_ms: int = 45000
    contact_extraction_ms: int = 60000
    total_search_ms: int = 300000


@dataclass(frozen=True, slots=True)
class RetrySettings:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def to_options(self, abort_signal: asyncio.Event | None = None) -> RetryOptions:
        return RetryOptions(
            max_attempts=self.max_attempts,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
            abort_signal=abort_signal,
        )


@dataclass(frozen=True, slots=True)
class CacheSettings:
    enabled: bool = True
    ttl_ms: int = 3600000
    max_size: int = 1000


@dataclass(frozen=True, slots=True)
class ScoreThresholds:
    min_relevance_score: float = 0.3
    min_confidence_score: float = 0.5
    min_quality_score: float = 0.3
    max_results_per_source: int = 50


@dataclass(frozen=True, slots=True)
class SearchOrchestrationConfig:
    concurrency: ConcurrencyLimits = field(default_factory=ConcurrencyLimits)
    timeouts: StageTimeouts = field(default_factory=StageTimeouts)
    retry: RetrySettings = field(default_factory=RetrySettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    thresholds: ScoreThresholds = field(default_factory=ScoreThresholds)

    @classmethod
    def from_settings(cls) -> "SearchOrchestrationConfig":
        return cls(
            concurrency=ConcurrencyLimits(
                max_concurrent_searches=settings.max_concurrent_searches,
                max_concurrent_queries=settings.max_concurrent_queries,
                max_concurrent_extractions=settings.max_concurrent_extractions,
            ),
            timeouts=StageTimeouts(
                query_generation_ms=settings.query_generation_timeout_ms,
                web_search_ms=settings.web_search_timeout_ms,
                content_scraping_ms=settings.content_scraping_timeout_ms,
                contact_extraction_ms=settings.contact_extraction_timeout_ms,
                total_search_ms=settings.total_search_timeout_ms,
            ),
            retry=RetrySettings(
                max_attempts=settings.retry_max_attempts,
                base_delay_ms=settings.retry_base_delay_ms,
                max_delay_ms=settings.retry_max_delay_ms,
                backoff_multiplier=settings.retry_backoff_multiplier,
            ),
            cache=CacheSettings(
                enabled=settings.search_cache_enabled,
                ttl_ms=settings.search_cache_ttl_ms,
                max_size=settings.search_cache_max_size,
            ),
            thresholds=ScoreThresholds(
                min_relevance_score=settings.min_relevance_score,
                min_confidence_score=settings.min_confidence_score,
                min_quality_score=settings.min_quality_score,
                max_results_per_source=settings.max_results_per_source,
            ),
        )

    def merged(self, **overrides: Any) -> "SearchOrchestrationConfig":
        """Return a copy with section overrides applied.

        Each override is either a replacement section struct or a dict of field
        values for that section. ``None`` values are ignored at both levels.
        """
        sections = {f.name for f in fields(self)}
        unknown = set(overrides) - sections
        if unknown:
            raise ValueError(f"Unknown orchestration section(s): {', '.join(sorted(unknown))}")

        updates: dict[str, Any] = {}
        for name, value in overrides.items():
            if value is None:
                continue
            if is_dataclass(value):
                updates[name] = value
            else:
                current = getattr(self, name)
                updates[name] = replace(current, **{k: v for k, v in dict(value).items() if v is not None})
        return replace(self, **updates)

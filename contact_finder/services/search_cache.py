from __future__ import annotations

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Callable

from contact_finder.config import settings
from contact_finder.models.schemas import SearchConfiguration
from contact_finder.models.search import AggregatedSearchResult
from contact_finder.services.logger import logger

CACHE_VERSION = 1


def _normalized_config(config: SearchConfiguration) -> dict[str, Any]:
    criteria = config.criteria.model_dump(by_alias=True, mode="json")
    for key, value in list(criteria.items()):
        if isinstance(value, list):
            criteria[key] = sorted(str(v).strip().lower() for v in value)
    options = config.options.model_dump(mode="json")
    # execution knobs do not change what a search returns
    for key in ("enable_caching", "priority", "processing_timeout_ms"):
        options.pop(key, None)
    return {
        "v": CACHE_VERSION,
        "query": config.query.strip().lower(),
        "criteria": criteria,
        "options": options,
    }


def cache_key(config: SearchConfiguration) -> str:
    material = json.dumps(_normalized_config(config), sort_keys=True, ensure_ascii=True)
    return sha256(material.encode("utf-8")).hexdigest()


@dataclass(slots=True)
class _Entry:
    value: AggregatedSearchResult
    stored_at_ms: float


class SearchCache:
    """Process-local TTL cache of finished searches keyed by configuration hash."""

    def __init__(
        self,
        *,
        ttl_ms: int | None = None,
        max_size: int | None = None,
        enabled: bool | None = None,
        clock: Callable[[], float] | None = None,
    ):
        self.ttl_ms = settings.search_cache_ttl_ms if ttl_ms is None else ttl_ms
        self.max_size = settings.search_cache_max_size if max_size is None else max_size
        self.enabled = settings.search_cache_enabled if enabled is None else enabled
        self._clock = clock or (lambda: time.time() * 1000)
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def _expired(self, entry: _Entry) -> bool:
        return self.ttl_ms <= 0 or self._clock() - entry.stored_at_ms > self.ttl_ms

    def get(self, config: SearchConfiguration) -> AggregatedSearchResult | None:
        if not self.enabled or not config.options.enable_caching:
            return None
        key = cache_key(config)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._expired(entry):
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, config: SearchConfiguration, value: AggregatedSearchResult) -> None:
        if not self.enabled or not config.options.enable_caching or self.max_size <= 0:
            return
        key = cache_key(config)
        self._entries.pop(key, None)
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Search cache evicted {evicted[:12]}")
        self._entries[key] = _Entry(value=value, stored_at_ms=self._clock())

    def prune(self) -> int:
        stale = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = self.misses = self.evictions = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }

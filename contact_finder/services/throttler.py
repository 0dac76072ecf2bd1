"""Per-domain request throttling with exponential backoff and circuit breaking.

The throttler owns the only cross-job mutable state in the pipeline: a map of
domain -> ``ThrottleState``. It is constructed explicitly and passed to the
components that fetch, never reached through a hidden global.
"""
from __future__ import annotations

import asyncio
import math
import re
import time
from dataclasses import dataclass, field, fields, replace
from typing import Any, Awaitable, Callable, Literal, TypeVar
from urllib.parse import urlparse

import httpx

from contact_finder.services.errors import ErrorCategory, OperationAborted, SearchPipelineError
from contact_finder.services.logger import log_throttle, logger

T = TypeVar("T")

ThrottleErrorType = Literal["network", "server", "blocked"]

BLOCK_AFTER_CONSECUTIVE_ERRORS = 5
BLOCK_DURATION_MS = 5 * 60 * 1000
STALE_STATE_MS = 60 * 60 * 1000

SECOND_MS = 1000
MINUTE_MS = 60 * 1000
HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True, slots=True)
class ThrottleConfig:
    requests_per_second: float = 1
    requests_per_minute: float = 30
    requests_per_hour: float = 1000
    respect_crawl_delay: bool = True
    min_delay_ms: int = 1000
    max_delay_ms: int = 60000
    backoff_multiplier: float = 2.0


def merge_throttle_config(base: ThrottleConfig | None = None, **overrides: Any) -> ThrottleConfig:
    """Return a new config with every non-None override applied on top of ``base``."""
    known = {f.name for f in fields(ThrottleConfig)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown throttle option(s): {', '.join(sorted(unknown))}")
    return replace(base or ThrottleConfig(), **{k: v for k, v in overrides.items() if v is not None})


RECOMMENDED_DOMAIN_CONFIGS: dict[str, dict[str, Any]] = {
    "twitter.com": {"requests_per_second": 0.5, "requests_per_minute": 15, "min_delay_ms": 2000},
    "linkedin.com": {"requests_per_second": 0.3, "requests_per_minute": 10, "min_delay_ms": 3000},
    "facebook.com": {"requests_per_second": 0.2, "requests_per_minute": 5, "min_delay_ms": 5000},
    "reuters.com": {"requests_per_second": 2, "requests_per_minute": 60, "min_delay_ms": 500},
    "bbc.com": {"requests_per_second": 1, "requests_per_minute": 30, "min_delay_ms": 1000},
}


@dataclass(slots=True)
class RequestCounts:
    second: int = 0
    minute: int = 0
    hour: int = 0


@dataclass(slots=True)
class ThrottleState:
    domain: str
    last_request_ms: float = 0.0
    next_allowed_request_ms: float = 0.0
    consecutive_errors: int = 0
    is_blocked: bool = False
    block_until_ms: float | None = None
    request_count: RequestCounts = field(default_factory=RequestCounts)


@dataclass(frozen=True, slots=True)
class ThrottleResult:
    allowed: bool
    delay_ms: int
    reason: str | None = None
    retry_after: int | None = None


class DomainBlockedError(SearchPipelineError):
    """A domain is inside its circuit-breaker window; the request was not sent."""

    def __init__(self, domain: str, retry_after: int):
        super().__init__(
            f"Domain {domain} temporarily blocked due to errors; retry after {retry_after}s",
            category=ErrorCategory.RATE_LIMIT,
            retry_after_ms=retry_after * 1000,
            details={"domain": domain},
        )
        self.domain = domain


def extract_domain(url: str) -> str:
    host = (urlparse(url).hostname or "").lower().strip()
    if host.startswith("www."):
        host = host[4:]
    return host or url.lower().strip()


def classify_throttle_error(error: BaseException) -> ThrottleErrorType:
    """Bucket a fetch failure for throttle bookkeeping.

    Structured status codes decide first; message text is only consulted when
    the error carries none.
    """
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
    else:
        status = getattr(error, "status_code", None)
    if isinstance(status, int):
        if status >= 500:
            return "server"
        if status in (429, 403):
            return "blocked"
        return "network"

    message = str(error).lower()
    if re.search(r"\b(429|403)\b", message) or "forbidden" in message:
        return "blocked"
    if re.search(r"\b5\d\d\b", message):
        return "server"
    return "network"


def _wall_clock_ms() -> float:
    return time.time() * 1000


class RequestThrottler:
    """Domain-keyed rate limiter shared by all search jobs in a process."""

    def __init__(
        self,
        config: ThrottleConfig | None = None,
        *,
        clock: Callable[[], float] | None = None,
    ):
        self.default_config = config or ThrottleConfig()
        self._clock = clock or _wall_clock_ms
        self._states: dict[str, ThrottleState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _now(self) -> float:
        return self._clock()

    def _state_for(self, domain: str) -> ThrottleState:
        state = self._states.get(domain)
        if state is None:
            state = ThrottleState(domain=domain)
            self._states[domain] = state
        return state

    def _lock_for(self, domain: str) -> asyncio.Lock:
        lock = self._locks.get(domain)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[domain] = lock
        return lock

    @staticmethod
    def _prune_counters(state: ThrottleState, now: float) -> None:
        elapsed = now - state.last_request_ms
        if elapsed > SECOND_MS:
            state.request_count.second = 0
        if elapsed > MINUTE_MS:
            state.request_count.minute = 0
        if elapsed > HOUR_MS:
            state.request_count.hour = 0

    def check_request(
        self,
        url: str,
        config: ThrottleConfig | None = None,
        crawl_delay_ms: int | None = None,
    ) -> ThrottleResult:
        cfg = config or self.default_config
        domain = extract_domain(url)
        state = self._state_for(domain)
        now = self._now()

        if state.is_blocked and state.block_until_ms is not None and now < state.block_until_ms:
            return ThrottleResult(
                allowed=False,
                delay_ms=0,
                reason="Domain temporarily blocked due to errors",
                retry_after=math.ceil((state.block_until_ms - now) / 1000),
            )
        if state.is_blocked:
            state.is_blocked = False
            state.block_until_ms = None
            state.consecutive_errors = 0
            log_throttle(domain, "unblocked")

        self._prune_counters(state, now)

        counts = state.request_count
        if counts.second >= cfg.requests_per_second:
            return ThrottleResult(False, SECOND_MS, "Requests per second limit exceeded")
        if counts.minute >= cfg.requests_per_minute:
            return ThrottleResult(False, MINUTE_MS, "Requests per minute limit exceeded")
        if counts.hour >= cfg.requests_per_hour:
            return ThrottleResult(False, HOUR_MS, "Requests per hour limit exceeded")

        required_delay = float(cfg.min_delay_ms)
        if cfg.respect_crawl_delay and crawl_delay_ms:
            required_delay = max(required_delay, float(crawl_delay_ms))
        if state.consecutive_errors > 0:
            required_delay = min(
                required_delay * (cfg.backoff_multiplier ** state.consecutive_errors),
                float(cfg.max_delay_ms),
            )

        elapsed = now - state.last_request_ms
        if elapsed < required_delay:
            return ThrottleResult(
                allowed=False,
                delay_ms=int(math.ceil(required_delay - elapsed)),
                reason="Rate limit delay required",
            )
        return ThrottleResult(allowed=True, delay_ms=int(required_delay))

    def record_request(self, url: str, config: ThrottleConfig | None = None) -> None:
        cfg = config or self.default_config
        state = self._state_for(extract_domain(url))
        now = self._now()
        state.last_request_ms = now
        state.next_allowed_request_ms = now + cfg.min_delay_ms
        state.request_count.second += 1
        state.request_count.minute += 1
        state.request_count.hour += 1
        state.consecutive_errors = 0

    def record_error(
        self,
        url: str,
        error_type: ThrottleErrorType = "network",
        config: ThrottleConfig | None = None,
    ) -> None:
        cfg = config or self.default_config
        domain = extract_domain(url)
        state = self._state_for(domain)
        now = self._now()
        state.consecutive_errors += 1
        backoff = min(
            cfg.min_delay_ms * (cfg.backoff_multiplier ** (state.consecutive_errors - 1)),
            cfg.max_delay_ms,
        )
        state.next_allowed_request_ms = now + backoff

        if state.consecutive_errors >= BLOCK_AFTER_CONSECUTIVE_ERRORS:
            state.is_blocked = True
            state.block_until_ms = now + BLOCK_DURATION_MS
            log_throttle(
                domain,
                "blocked",
                error_type=error_type,
                consecutive_errors=state.consecutive_errors,
            )
        else:
            log_throttle(
                domain,
                "error",
                error_type=error_type,
                consecutive_errors=state.consecutive_errors,
                backoff_ms=int(backoff),
            )

    async def wait_for_request(
        self,
        url: str,
        config: ThrottleConfig | None = None,
        crawl_delay_ms: int | None = None,
        abort_signal: asyncio.Event | None = None,
        *,
        fail_when_blocked: bool = False,
    ) -> ThrottleResult:
        """Suspend until the domain budget allows a request, or the abort signal fires.

        With ``fail_when_blocked`` a circuit-breaker block raises
        ``DomainBlockedError`` instead of sleeping out the block window.
        """
        result = self.check_request(url, config, crawl_delay_ms)
        if result.allowed:
            return result
        if fail_when_blocked and result.retry_after:
            raise DomainBlockedError(extract_domain(url), result.retry_after)

        wait_ms = result.retry_after * 1000 if result.retry_after else result.delay_ms
        if wait_ms > 0:
            log_throttle(extract_domain(url), "wait", wait_ms=wait_ms, reason=result.reason)
            if abort_signal is None:
                await asyncio.sleep(wait_ms / 1000.0)
            else:
                try:
                    await asyncio.wait_for(abort_signal.wait(), timeout=wait_ms / 1000.0)
                except asyncio.TimeoutError:
                    pass
        return result

    async def execute_throttled_request(
        self,
        url: str,
        request_fn: Callable[[], Awaitable[T]],
        config: ThrottleConfig | None = None,
        crawl_delay_ms: int | None = None,
        abort_signal: asyncio.Event | None = None,
        *,
        fail_when_blocked: bool = True,
    ) -> T:
        """Wait for budget, run ``request_fn``, and record the outcome.

        The per-domain lock spans wait, request and bookkeeping so interleaved
        callers for one domain observe each other's recorded requests. A blocked
        domain raises ``DomainBlockedError`` unless ``fail_when_blocked`` is off,
        so the lock is never held for a whole block window.
        """
        async with self._lock_for(extract_domain(url)):
            await self.wait_for_request(
                url, config, crawl_delay_ms, abort_signal, fail_when_blocked=fail_when_blocked
            )
            if abort_signal is not None and abort_signal.is_set():
                raise OperationAborted(f"Throttled request aborted: {url}")
            try:
                result = await request_fn()
            except Exception as exc:
                self.record_error(url, classify_throttle_error(exc), config)
                raise
            self.record_request(url, config)
            return result

    def cleanup(self) -> int:
        """Drop unblocked domain states idle for more than an hour."""
        now = self._now()
        stale = [
            domain
            for domain, state in self._states.items()
            if now - state.last_request_ms > STALE_STATE_MS and not state.is_blocked
        ]
        for domain in stale:
            self._states.pop(domain, None)
            lock = self._locks.get(domain)
            if lock is not None and not lock.locked():
                self._locks.pop(domain, None)
        if stale:
            logger.debug(f"Throttler cleanup removed {len(stale)} idle domain states")
        return len(stale)

    def get_domain_stats(self, url: str) -> ThrottleState | None:
        return self._states.get(extract_domain(url))

    def get_all_stats(self) -> dict[str, ThrottleState]:
        return dict(self._states)

    def reset_domain(self, url: str) -> None:
        self._states.pop(extract_domain(url), None)

    def reset_all(self) -> None:
        self._states.clear()


async def throttle_multiple_requests(
    throttler: RequestThrottler,
    requests: list[tuple[str, Callable[[], Awaitable[T]]]],
    *,
    config: ThrottleConfig | None = None,
    concurrency: int = 3,
) -> list[T | BaseException]:
    """Run (url, request_fn) pairs through the throttler in fixed-size batches."""
    size = max(int(concurrency), 1)
    results: list[T | BaseException] = []
    for start in range(0, len(requests), size):
        batch = requests[start : start + size]
        results.extend(
            await asyncio.gather(
                *(throttler.execute_throttled_request(url, fn, config) for url, fn in batch),
                return_exceptions=True,
            )
        )
    return results


def get_recommended_config(url: str, base: ThrottleConfig | None = None) -> ThrottleConfig:
    domain = extract_domain(url)
    for known, overrides in RECOMMENDED_DOMAIN_CONFIGS.items():
        if domain == known or domain.endswith("." + known):
            return merge_throttle_config(base, **overrides)
    return base or ThrottleConfig()


def is_domain_throttled(throttler: RequestThrottler, url: str) -> bool:
    state = throttler.get_domain_stats(url)
    if state is None:
        return False
    if state.is_blocked:
        return True
    return state.next_allowed_request_ms > throttler._now()


def get_next_available_time(throttler: RequestThrottler, url: str) -> float:
    """Epoch milliseconds at which the next request to ``url`` may go out."""
    state = throttler.get_domain_stats(url)
    now = throttler._now()
    if state is None:
        return now
    if state.is_blocked and state.block_until_ms is not None:
        return state.block_until_ms
    return max(state.next_allowed_request_ms, now)

"""Exponential-backoff executor shared by every network-touching stage."""
from __future__ import annotations

import asyncio
import random
import re
import time
from dataclasses import dataclass, fields, replace
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx

from contact_finder.services.errors import OperationAborted, SearchPipelineError, classify_error
from contact_finder.services.logger import logger

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
RetryCondition = Callable[[BaseException], bool]
OnRetry = Callable[[BaseException, int], Any]


@dataclass(frozen=True, slots=True)
class RetryOptions:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retry_condition: RetryCondition | None = None
    on_retry: OnRetry | None = None
    abort_signal: asyncio.Event | None = None


RETRY_PRESETS: dict[str, RetryOptions] = {
    "ai_service": RetryOptions(max_attempts=3, base_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2, jitter=True),
    "network": RetryOptions(max_attempts=3, base_delay_ms=2000, max_delay_ms=15000, backoff_multiplier=2, jitter=True),
    "database": RetryOptions(max_attempts=2, base_delay_ms=5000, max_delay_ms=20000, backoff_multiplier=1.5, jitter=False),
    "external_api": RetryOptions(max_attempts=2, base_delay_ms=3000, max_delay_ms=12000, backoff_multiplier=2, jitter=True),
    "default": RetryOptions(max_attempts=2, base_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=2, jitter=True),
}


def merge_retry_options(base: RetryOptions, **overrides: Any) -> RetryOptions:
    """Return ``base`` with every non-None override applied."""
    known = {f.name for f in fields(RetryOptions)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown retry option(s): {', '.join(sorted(unknown))}")
    return replace(base, **{k: v for k, v in overrides.items() if v is not None})


@dataclass(slots=True)
class RetryResult(Generic[T]):
    success: bool
    attempts: int
    total_time_ms: int
    result: T | None = None
    error: BaseException | None = None
    classified_error: SearchPipelineError | None = None


_NON_RETRYABLE_STATUS = re.compile(r"\b(400|401|403|404)\b")
_RETRYABLE_STATUS = re.compile(r"\b(429|500|502|503|504)\b")
_RETRYABLE_TOKENS = (
    "network",
    "connection",
    "econnrefused",
    "econnreset",
    "timeout",
    "timed out",
    "fetch",
    "rate limit",
    "overloaded",
    "temporarily unavailable",
    "service unavailable",
)


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate.

    Typed pipeline errors answer for themselves. Transport failures and 5xx/429
    responses retry; other 4xx responses do not. Anything unrecognised retries.
    """
    if isinstance(error, OperationAborted):
        return False
    if isinstance(error, SearchPipelineError):
        return error.retryable
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    if isinstance(error, (httpx.TransportError, asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    message = str(error).lower()
    if _RETRYABLE_STATUS.search(message) or any(token in message for token in _RETRYABLE_TOKENS):
        return True
    if _NON_RETRYABLE_STATUS.search(message):
        return False
    return True


class RetryMechanism:
    """Runs async operations with exponential backoff and cooperative abort."""

    def __init__(
        self,
        default_options: RetryOptions | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ):
        self.default_options = default_options or RetryOptions()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def calculate_delay(self, attempt: int, options: RetryOptions | None = None) -> int:
        opts = options or self.default_options
        delay = opts.base_delay_ms * (opts.backoff_multiplier ** max(attempt - 1, 0))
        delay = min(delay, opts.max_delay_ms)
        if opts.jitter:
            delay += delay * 0.25 * (self._rng.random() * 2 - 1)
        return max(0, int(delay))

    async def _wait(self, delay_ms: int, abort_signal: asyncio.Event | None) -> None:
        seconds = delay_ms / 1000.0
        if self._sleep is not None:
            await self._sleep(seconds)
            return
        if abort_signal is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(abort_signal.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def execute(
        self,
        operation: Operation[T],
        options: RetryOptions | None = None,
    ) -> RetryResult[T]:
        opts = options or self.default_options
        condition = opts.retry_condition or is_retryable_error
        max_attempts = max(int(opts.max_attempts), 1)
        started = time.monotonic()
        attempts = 0
        last_error: BaseException | None = None

        for attempt in range(1, max_attempts + 1):
            if opts.abort_signal is not None and opts.abort_signal.is_set():
                last_error = OperationAborted("Operation aborted")
                break

            attempts = attempt
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    attempts=attempts,
                    total_time_ms=int((time.monotonic() - started) * 1000),
                    result=result,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                if not condition(exc) or attempt >= max_attempts:
                    break

                if opts.on_retry is not None:
                    maybe_awaitable = opts.on_retry(exc, attempt)
                    if asyncio.iscoroutine(maybe_awaitable):
                        await maybe_awaitable

                delay_ms = self.calculate_delay(attempt, opts)
                hinted = classify_error(exc).retry_after_ms
                if hinted:
                    delay_ms = min(max(delay_ms, hinted), opts.max_delay_ms)
                logger.debug(
                    f"Retrying after attempt {attempt}/{max_attempts} in {delay_ms}ms: {exc}"
                )
                await self._wait(delay_ms, opts.abort_signal)

        return RetryResult(
            success=False,
            attempts=attempts,
            total_time_ms=int((time.monotonic() - started) * 1000),
            error=last_error,
            classified_error=classify_error(last_error) if last_error is not None else None,
        )

    async def execute_with_config(
        self,
        operation: Operation[T],
        preset: str = "default",
        **overrides: Any,
    ) -> RetryResult[T]:
        base = RETRY_PRESETS.get(preset)
        if base is None:
            raise KeyError(f"Unknown retry preset: {preset}")
        return await self.execute(operation, merge_retry_options(base, **overrides))

    async def execute_or_raise(
        self,
        operation: Operation[T],
        options: RetryOptions | None = None,
    ) -> T:
        outcome = await self.execute(operation, options)
        if outcome.success:
            return outcome.result  # type: ignore[return-value]
        if outcome.classified_error is not None:
            raise outcome.classified_error from outcome.error
        raise SearchPipelineError("Operation failed without an error")

    async def execute_batch(
        self,
        operations: list[Operation[T]],
        options: RetryOptions | None = None,
        *,
        concurrency: int = 3,
    ) -> list[RetryResult[T]]:
        """Run operations in fixed-size concurrent batches, keeping input order."""
        size = max(int(concurrency), 1)
        outcomes: list[RetryResult[T]] = []
        for start in range(0, len(operations), size):
            batch = operations[start : start + size]
            outcomes.extend(
                await asyncio.gather(*(self.execute(op, options) for op in batch))
            )
        return outcomes


def create_retryable(
    fn: Callable[..., Awaitable[T]],
    preset: str = "default",
    *,
    mechanism: RetryMechanism | None = None,
    **overrides: Any,
) -> Callable[..., Awaitable[T]]:
    """Wrap ``fn`` so each call runs under the named retry preset and raises on failure."""
    runner = mechanism or RetryMechanism()
    options = merge_retry_options(RETRY_PRESETS[preset], **overrides)

    async def wrapped(*args: Any, **kwargs: Any) -> T:
        return await runner.execute_or_raise(lambda: fn(*args, **kwargs), options)

    wrapped.__name__ = getattr(fn, "__name__", "retryable")
    wrapped.__doc__ = getattr(fn, "__doc__", None)
    return wrapped

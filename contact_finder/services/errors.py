"""Error taxonomy for the contact discovery pipeline.

Every failure that crosses a stage boundary is normalized into a
``SearchPipelineError`` carrying its category, retryability and recovery
strategy. Callers inspect those fields instead of matching message text.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx


class ErrorCategory(str, Enum):
    DATABASE_CONNECTION = "database_connection"
    DATABASE_TIMEOUT = "database_timeout"
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    APPLICATION = "application"


class ErrorSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryStrategy(str, Enum):
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    USER_ACTION_REQUIRED = "user_action_required"


# category -> (retryable, recovery strategy, severity)
CATEGORY_POLICY: dict[ErrorCategory, tuple[bool, RecoveryStrategy, ErrorSeverity]] = {
    ErrorCategory.DATABASE_CONNECTION: (True, RecoveryStrategy.RETRY_WITH_BACKOFF, ErrorSeverity.HIGH),
    ErrorCategory.DATABASE_TIMEOUT: (True, RecoveryStrategy.RETRY_WITH_BACKOFF, ErrorSeverity.MEDIUM),
    ErrorCategory.NETWORK: (True, RecoveryStrategy.RETRY_WITH_BACKOFF, ErrorSeverity.MEDIUM),
    ErrorCategory.RATE_LIMIT: (True, RecoveryStrategy.RETRY_WITH_BACKOFF, ErrorSeverity.LOW),
    ErrorCategory.AUTHENTICATION: (False, RecoveryStrategy.USER_ACTION_REQUIRED, ErrorSeverity.HIGH),
    ErrorCategory.AUTHORIZATION: (False, RecoveryStrategy.USER_ACTION_REQUIRED, ErrorSeverity.HIGH),
    ErrorCategory.VALIDATION: (False, RecoveryStrategy.USER_ACTION_REQUIRED, ErrorSeverity.LOW),
    ErrorCategory.APPLICATION: (False, RecoveryStrategy.USER_ACTION_REQUIRED, ErrorSeverity.MEDIUM),
}

USER_MESSAGES: dict[ErrorCategory, tuple[str, list[str]]] = {
    ErrorCategory.DATABASE_CONNECTION: (
        "The database is temporarily unreachable.",
        ["Wait a moment and retry", "Check database connectivity"],
    ),
    ErrorCategory.DATABASE_TIMEOUT: (
        "The database took too long to respond.",
        ["Retry the operation", "Narrow the search criteria"],
    ),
    ErrorCategory.NETWORK: (
        "A network request failed.",
        ["Check your connection", "Retry in a few seconds"],
    ),
    ErrorCategory.AUTHENTICATION: (
        "Authentication failed for an external service.",
        ["Verify the configured API keys"],
    ),
    ErrorCategory.AUTHORIZATION: (
        "Access to the requested resource was denied.",
        ["Check account permissions", "Try a different source"],
    ),
    ErrorCategory.RATE_LIMIT: (
        "Too many requests were sent to an external service.",
        ["Wait before retrying", "Reduce concurrency"],
    ),
    ErrorCategory.VALIDATION: (
        "The request was rejected as invalid.",
        ["Review the search configuration"],
    ),
    ErrorCategory.APPLICATION: (
        "An unexpected error occurred.",
        ["Retry the search", "Contact support if the problem persists"],
    ),
}


class SearchPipelineError(Exception):
    """Typed pipeline failure with fixed retry semantics per category."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.APPLICATION,
        status_code: int | None = None,
        retry_after_ms: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        retryable, recovery, severity = CATEGORY_POLICY[category]
        self.message = message
        self.category = category
        self.retryable = retryable
        self.recovery_strategy = recovery
        self.severity = severity
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
            "recovery_strategy": self.recovery_strategy.value,
            "severity": self.severity.value,
            "status_code": self.status_code,
            "retry_after_ms": self.retry_after_ms,
            "details": self.details,
        }


@dataclass(slots=True)
class ErrorAnalysis:
    category: ErrorCategory
    severity: ErrorSeverity
    is_retryable: bool
    recovery_strategy: RecoveryStrategy
    user_message: str
    technical_message: str
    suggested_actions: list[str]
    retry_after_ms: int | None = None


@dataclass(slots=True)
class JobErrorRecord:
    stage: str
    message: str
    category: str = ErrorCategory.APPLICATION.value
    retryable: bool = False
    source: str | None = None
    occurred_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "message": self.message,
            "category": self.category,
            "retryable": self.retryable,
            "source": self.source,
            "occurred_at": self.occurred_at,
        }


def _retry_after_ms(response: httpx.Response) -> int | None:
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return int(float(raw) * 1000)
    except ValueError:
        return None


def _category_for_status(status: int) -> ErrorCategory:
    if status == 401:
        return ErrorCategory.AUTHENTICATION
    if status == 403:
        return ErrorCategory.AUTHORIZATION
    if status == 429:
        return ErrorCategory.RATE_LIMIT
    if status >= 500:
        return ErrorCategory.NETWORK
    return ErrorCategory.VALIDATION


def _category_for_message(message: str) -> ErrorCategory:
    lowered = message.lower()
    is_database = "database" in lowered or "postgres" in lowered
    if "connection" in lowered or "econnrefused" in lowered or "econnreset" in lowered:
        return ErrorCategory.DATABASE_CONNECTION if is_database else ErrorCategory.NETWORK
    if "timeout" in lowered or "timed out" in lowered:
        return ErrorCategory.DATABASE_TIMEOUT if is_database else ErrorCategory.NETWORK
    if "rate limit" in lowered or "429" in lowered or "too many requests" in lowered:
        return ErrorCategory.RATE_LIMIT
    if "unauthorized" in lowered or "401" in lowered or "api key" in lowered:
        return ErrorCategory.AUTHENTICATION
    if "forbidden" in lowered or "403" in lowered or "access denied" in lowered:
        return ErrorCategory.AUTHORIZATION
    if any(token in lowered for token in ("validation", "invalid", "400", "404", "not found")):
        return ErrorCategory.VALIDATION
    if any(token in lowered for token in ("network", "fetch failed", "dns", "socket")):
        return ErrorCategory.NETWORK
    if any(
        token in lowered
        for token in ("overloaded", "service unavailable", "temporarily unavailable", "502", "503", "504")
    ):
        return ErrorCategory.NETWORK
    return ErrorCategory.APPLICATION


def classify_error(exc: BaseException) -> SearchPipelineError:
    """Normalize any exception into a ``SearchPipelineError``."""
    if isinstance(exc, SearchPipelineError):
        return exc

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return SearchPipelineError(
            f"HTTP {status} from {exc.request.url}",
            category=_category_for_status(status),
            status_code=status,
            retry_after_ms=_retry_after_ms(exc.response) if status == 429 else None,
        )

    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return SearchPipelineError(
            str(exc) or "Operation timed out",
            category=ErrorCategory.NETWORK,
            details={"timeout": True},
        )

    if isinstance(exc, (httpx.TransportError, ConnectionError)):
        return SearchPipelineError(str(exc) or "Connection failed", category=ErrorCategory.NETWORK)

    message = str(exc) or type(exc).__name__
    return SearchPipelineError(message, category=_category_for_message(message))


def analyze_error(exc: BaseException) -> ErrorAnalysis:
    classified = classify_error(exc)
    user_message, actions = USER_MESSAGES[classified.category]
    return ErrorAnalysis(
        category=classified.category,
        severity=classified.severity,
        is_retryable=classified.retryable,
        recovery_strategy=classified.recovery_strategy,
        user_message=user_message,
        technical_message=classified.message,
        suggested_actions=list(actions),
        retry_after_ms=classified.retry_after_ms,
    )


class OperationAborted(Exception):
    """Raised when cooperative cancellation stops an operation before it runs."""

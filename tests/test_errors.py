from __future__ import annotations

import httpx
import pytest

from contact_finder.services.errors import (
    ErrorCategory,
    JobErrorRecord,
    RecoveryStrategy,
    SearchPipelineError,
    analyze_error,
    classify_error,
)


def _status_error(status: int, headers: dict[str, str] | None = None) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.com/page")
    response = httpx.Response(status, request=request, headers=headers or {})
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "category", "retryable"),
    [
        (401, ErrorCategory.AUTHENTICATION, False),
        (403, ErrorCategory.AUTHORIZATION, False),
        (404, ErrorCategory.VALIDATION, False),
        (429, ErrorCategory.RATE_LIMIT, True),
        (503, ErrorCategory.NETWORK, True),
    ],
)
def test_classify_http_status(status, category, retryable):
    classified = classify_error(_status_error(status))
    assert classified.category == category
    assert classified.retryable is retryable
    assert classified.status_code == status


def test_rate_limit_carries_retry_after_in_ms():
    classified = classify_error(_status_error(429, {"retry-after": "3"}))
    assert classified.retry_after_ms == 3000


def test_message_classification_distinguishes_database_failures():
    assert classify_error(RuntimeError("database connection refused")).category == ErrorCategory.DATABASE_CONNECTION
    assert classify_error(RuntimeError("postgres query timed out")).category == ErrorCategory.DATABASE_TIMEOUT
    assert classify_error(RuntimeError("socket hang up")).category == ErrorCategory.NETWORK
    assert classify_error(RuntimeError("Invalid URL (400): nope")).category == ErrorCategory.VALIDATION
    assert classify_error(RuntimeError("something odd")).category == ErrorCategory.APPLICATION


def test_timeouts_are_network_and_retryable():
    classified = classify_error(httpx.ReadTimeout("read timed out"))
    assert classified.category == ErrorCategory.NETWORK
    assert classified.retryable is True
    assert classified.details == {"timeout": True}


def test_classify_returns_pipeline_errors_unchanged():
    original = SearchPipelineError("bad key", category=ErrorCategory.AUTHENTICATION)
    assert classify_error(original) is original
    assert original.recovery_strategy == RecoveryStrategy.USER_ACTION_REQUIRED


def test_analyze_error_adds_user_guidance():
    analysis = analyze_error(RuntimeError("Too many requests"))
    assert analysis.category == ErrorCategory.RATE_LIMIT
    assert analysis.is_retryable is True
    assert analysis.recovery_strategy == RecoveryStrategy.RETRY_WITH_BACKOFF
    assert analysis.suggested_actions
    assert analysis.technical_message == "Too many requests"


def test_job_error_record_serializes():
    record = JobErrorRecord(stage="web_search", message="boom", source="journalists")
    payload = record.to_dict()
    assert payload["stage"] == "web_search"
    assert payload["category"] == "application"
    assert payload["source"] == "journalists"
    assert payload["occurred_at"]

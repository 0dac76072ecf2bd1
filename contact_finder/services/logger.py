"""Centralized logging service using loguru.

Structured helpers emit ``TAG: {payload}`` lines; failures use a ``TAG_FAILED``
prefix at error level so they can be grepped out of the daily log files.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from contact_finder.config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"

NOISY_LOGGERS = ("httpx", "httpcore", "hpack", "openai._base_client", "asyncio")


def configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=settings.app_log_level.upper(), colorize=True)

    if settings.log_to_file:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "contact_finder_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level="DEBUG",
            rotation="00:00",  # New file at midnight
            retention="7 days",
            compression="zip",
        )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(settings.noisy_log_level.upper())


configure_logging()


def _emit(tag: str, payload: dict[str, Any], *, failed: bool = False, level: str = "INFO") -> None:
    data = {"timestamp": datetime.now(timezone.utc).isoformat(), **payload}
    if failed:
        logger.opt(depth=2).error(f"{tag}_FAILED: {data}")
    else:
        logger.opt(depth=2).log(level, f"{tag}: {data}")


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    status: str = "success",
    error: Optional[str] = None,
) -> None:
    """Log one completion request to the AI provider."""
    _emit(
        "LLM_CALL",
        {
            "model": model,
            "caller": caller,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "duration_ms": duration_ms,
            "status": status,
            "error": error,
        },
        failed=bool(error),
    )


def log_search_stage(
    search_id: str,
    stage: str,
    status: str,
    data: Optional[dict] = None,
) -> None:
    """Log a search pipeline stage transition."""
    _emit(
        "SEARCH_STAGE",
        {"search_id": search_id, "stage": stage, "status": status, "data": data},
        failed=status == "failed",
    )


def log_db_operation(
    operation: str,
    table: str,
    status: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    _emit(
        "DB_OPERATION",
        {"operation": operation, "table": table, "status": status, "details": details, "error": error},
        failed=bool(error),
        level="DEBUG",
    )


def log_throttle(domain: str, action: str, **kwargs) -> None:
    _emit(
        "THROTTLE",
        {"domain": domain, "action": action, **kwargs},
        level="WARNING" if action == "blocked" else "DEBUG",
    )


def log_event(event_type: str, message: str, **kwargs) -> None:
    """Log a generic event."""
    _emit("EVENT", {"event_type": event_type, "message": message, **kwargs})

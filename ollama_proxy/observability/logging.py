from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

import structlog


_CONFIGURED = False

_SENSITIVE_KEYS = ("password", "token", "secret", "authorization", "cookie")
_REDACTED = "[REDACTED]"
_TRUNCATED_SUFFIX = "... (truncated)"

# Token counters look like secrets to a substring match but are plain numbers.
_SAFE_KEYS = frozenset({"input_tokens", "output_tokens", "total_tokens", "max_tokens"})


def _is_sensitive(key: Any) -> bool:
    if not isinstance(key, str) or key in _SAFE_KEYS:
        return False
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_KEYS)


def filter_sensitive(data: Any) -> Any:
    """Return a copy of ``data`` with sensitive mapping values masked, recursively."""

    if isinstance(data, dict):
        return {k: (_REDACTED if _is_sensitive(k) else filter_sensitive(v)) for k, v in data.items()}
    if isinstance(data, list):
        return [filter_sensitive(item) for item in data]
    return data


def redact_sensitive(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    return filter_sensitive(event_dict)


def truncate(text: str | bytes | None, max_length: int = 1000) -> str | None:
    if text is None:
        return None
    if isinstance(text, bytes):
        if len(text) <= max_length:
            return text.decode("utf-8", errors="replace")
        return text[:max_length].decode("utf-8", errors="ignore") + _TRUNCATED_SUFFIX
    if len(text) <= max_length:
        return text
    return text[:max_length] + _TRUNCATED_SUFFIX


def _rotating_file_handler(path: Path, backup_count: int, formatter: logging.Formatter) -> logging.Handler:
    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=backup_count, encoding="utf-8", utc=True)
    handler.setFormatter(formatter)
    return handler


def configure_logging(level: int = logging.INFO, log_dir: Path | None = None) -> None:
    """Configure structlog + stdlib logging for JSON output.

    With ``log_dir`` set, also writes daily-rotated JSON files there: one for
    every record and one for errors only. Safe to call multiple times (no-op
    after first call).
    """

    global _CONFIGURED
    if _CONFIGURED:
        return

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        redact_sensitive,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            # Let ProcessorFormatter render JSON for stdlib log records too.
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [handler]

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating_file_handler(log_dir / "ollama-proxy.log", 14, formatter))
        error_handler = _rotating_file_handler(log_dir / "ollama-proxy-error.log", 30, formatter)
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(level)

    # Keep uvicorn's own loggers consistent with our handlers.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = handlers
        logger.propagate = False
        logger.setLevel(level)

    _CONFIGURED = True

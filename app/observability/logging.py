from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog
from opentelemetry.trace import Span, format_span_id, format_trace_id


_CONFIGURED: tuple[str, Path | None] | None = None
_HANDLERS: list[logging.Handler] = []


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Configure structlog + stdlib logging for JSON output on stdout.

    When ``log_file`` is given every line is mirrored to it in append mode. Failing to
    open the file raises: the service must not start without its log sink.

    Safe to call multiple times (no-op while the configuration is unchanged).
    """

    global _CONFIGURED, _HANDLERS
    if _CONFIGURED == (level, log_file):
        return

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    pre_chain: list[Any] = [
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.EventRenamer("message"),
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            # Let ProcessorFormatter render JSON for stdlib log records too.
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=pre_chain,
    )
    for handler in handlers:
        handler.setFormatter(formatter)

    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    # Release the file handle of a previous configuration.
    for old in _HANDLERS:
        old.close()
    _HANDLERS = handlers

    root = logging.getLogger()
    root.handlers = list(handlers)
    root.setLevel(numeric_level)

    # Keep uvicorn's own loggers consistent with our handlers.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = list(handlers)
        logger.propagate = False
        logger.setLevel(numeric_level)

    _CONFIGURED = (level, log_file)


def get_logger(name: str = "app") -> Any:
    return structlog.get_logger(name)


def bind_request_logger(base_logger: Any, span: Span) -> Any:
    """Derive a logger carrying the span's trace/span ids.

    Returns ``base_logger`` untouched when the span context is invalid (tracing
    disabled, or a no-op tracer).
    """

    span_context = span.get_span_context()
    if not span_context.is_valid:
        return base_logger
    return base_logger.bind(
        trace_id=format_trace_id(span_context.trace_id),
        span_id=format_span_id(span_context.span_id),
    )

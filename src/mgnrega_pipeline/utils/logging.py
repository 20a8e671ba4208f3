"""
utils/logging.py — structlog configuration for the pipeline and the daemon.

Sets up structured logging with JSON or human-readable console output
controlled by settings.log_format, routed through the standard library so
an optional log file can receive the same events as plain leveled lines:

    [2024-05-01T21:30:00.123456Z] [INFO] ingestion_summary raw_rows=61234

Call configure_logging() once at process startup (done by the CLI).

Usage:
    from mgnrega_pipeline.utils.logging import configure_logging, get_logger

    configure_logging(log_file=settings.log_path)
    log = get_logger("mgnrega_pipeline.scheduler")
    log.info("next_run_scheduled", at="2024-05-02T03:00:00+05:30")

    # Bind run-wide context for all subsequent log calls:
    log = log.bind(mode="incremental")
    log.info("page_ingested", inserted=120)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from mgnrega_shared.config import settings

# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def render_log_line(_: Any, __: str, event_dict: dict[str, Any]) -> str:
    """Render an event as ``[timestamp] [LEVEL] event key=value ...``."""
    timestamp = event_dict.pop("timestamp", "")
    level = str(event_dict.pop("level", "info")).upper()
    event = event_dict.pop("event", "")
    event_dict.pop("logger", None)
    exc = event_dict.pop("exception", None)

    parts = [f"[{timestamp}] [{level}] {event}"]
    parts.extend(f"{k}={v}" for k, v in event_dict.items())
    line = " ".join(parts)
    if exc:
        line = f"{line}\n{exc}"
    return line


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def configure_logging(
    log_level: str | None = None,
    log_format: str | None = None,
    log_file: str | Path | None = None,
) -> None:
    """
    Configure structlog for the pipeline process.

    Should be called once at startup. Idempotent: handlers installed by a
    previous call are replaced.

    Args:
        log_level:  Override settings.log_level ("DEBUG", "INFO", …).
        log_format: Override settings.log_format ("json" | "console").
        log_file:   Also append leveled text lines to this file.
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)
    fmt = log_format or settings.log_format

    # Shared processors used by structlog loggers and foreign stdlib records
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if fmt == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    handlers: list[logging.Handler] = [console]

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    render_log_line,
                ],
            )
        )
        handlers.append(file_handler)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def get_logger(name: str, **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Return a bound structlog logger with optional initial context values.

    Args:
        name:           Logger name (conventionally the module __name__).
        **initial_values: Key-value pairs merged into every log record.

    Returns:
        structlog.stdlib.BoundLogger
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger  # type: ignore[return-value]

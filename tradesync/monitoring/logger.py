"""
structlog configuration for the broker synchronization service.

Events are UPPER_SNAKE names with keyword context, rendered as JSON lines in
production and as colourised console output for ``log_format: text``.
Secrets are masked before rendering.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, List, Optional

import structlog

from tradesync.monitoring.redaction import structlog_redaction_processor

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def _processors(log_format: str) -> List[Any]:
    chain: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog_redaction_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer = structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()
    chain.append(renderer)
    return chain


def setup_logging(log_level: str = "INFO", log_format: str = "json", log_file: Optional[str] = None) -> None:
    """
    Route structlog through stdlib logging.

    Args:
        log_level: DEBUG/INFO/WARNING/ERROR/CRITICAL
        log_format: "json" or "text"
        log_file: Optional rotating log file; stdout only when None
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    structlog.configure(
        processors=_processors(log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.root.addHandler(handler)

    get_logger(__name__).info("LOGGING_INITIALIZED", log_level=log_level, log_format=log_format, log_file=log_file)


def log_context(**context: Any):
    """Context manager binding ``context`` (user id, account id) to every event logged inside it."""
    return structlog.contextvars.bound_contextvars(**context)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

"""structlog configuration shared by every module."""

from __future__ import annotations

import logging
import sys

import structlog

from sentinel.config import settings

_configured = False


def setup_logging(level: str | None = None, *, json: bool | None = None) -> None:
    """Configure stdlib logging and structlog once per process."""
    global _configured
    if _configured:
        return

    level_name = (level or settings.sentinel_log_level).upper()
    use_json = settings.sentinel_log_json if json is None else json

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name, logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

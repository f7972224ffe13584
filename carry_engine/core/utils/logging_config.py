"""Structured logging setup for the engine process.

structlog with bound context variables and ISO timestamps. The level and the
renderer (console or JSON lines) come from settings unless overridden, so a
replay run can be made quiet without touching the environment.
"""

import logging

import structlog

from carry_engine.core.config import settings

_configured = False


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structlog processors once per process.

    Args:
        level: Level name; defaults to ``settings.log_level``.
        json_logs: Render JSON lines; defaults to ``settings.log_json``.
    """
    global _configured
    if _configured:
        return

    level_name = (level or settings.log_level).upper()
    use_json = settings.log_json if json_logs is None else json_logs
    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str, **context) -> structlog.BoundLogger:
    """Configured logger bound to *name* plus any extra *context*."""
    configure_logging()
    return structlog.get_logger(logger_name=name, **context)

import logging

import structlog

from src.config.settings import get_settings


def setup_logging(level: str | None = None) -> None:
    """Configure structlog for the worker process."""
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    renderer: structlog.typing.Processor
    if settings.debug:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )

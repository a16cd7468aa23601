"""Structured logging on top of the standard ``logging`` module.

structlog renders every record, including those of uvicorn and other
libraries that log through stdlib handlers:

- JSON lines in production or with ``LOG_FORMAT=json``
- coloured console output otherwise

Request-scoped values (``request_id``, the invalidation tick number) live in
structlog's context variables and are merged into every record emitted while
they are bound.

Usage:
    from omeka_proxy.core.logging import configure_logging, get_logger

    configure_logging(settings)

    logger = get_logger(__name__)
    logger.info("mirror_page_fetched", page=3, total=300)
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from omeka_proxy.config import Settings

SERVICE_NAME = "omeka-proxy"

# Canonical query strings and upstream URLs can run to kilobytes
MAX_VALUE_LENGTH = 512

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


# =============================================================================
# Request context
# =============================================================================


def bind_request_id(request_id: str) -> None:
    """Attach ``request_id`` to every record of the current context."""
    structlog.contextvars.bind_contextvars(request_id=request_id)


def get_request_id() -> str | None:
    """Request id bound in the current context, if any."""
    return structlog.contextvars.get_contextvars().get("request_id")


def clear_request_context() -> None:
    """Drop every value bound in the current context."""
    structlog.contextvars.clear_contextvars()


def log_context(**kwargs: Any) -> structlog.contextvars.bound_contextvars:
    """Bind values to all records emitted inside a ``with`` block.

    Example:
        with log_context(invalidation_tick=3):
            logger.info("item_evicted", item_id=42)  # carries invalidation_tick
    """
    return structlog.contextvars.bound_contextvars(**kwargs)


# =============================================================================
# Processors
# =============================================================================


def add_service(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def drop_none_values(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Remove keys logged with a None value (e.g. an absent query string)."""
    return {key: value for key, value in event_dict.items() if value is not None}


def shorten_long_values(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Truncate string values longer than ``MAX_VALUE_LENGTH``."""
    for key, value in event_dict.items():
        if key != "event" and isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            event_dict[key] = f"{value[:MAX_VALUE_LENGTH]}…(+{len(value) - MAX_VALUE_LENGTH})"
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        add_service,
        drop_none_values,
        shorten_long_values,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _renderer(settings: Settings) -> Processor:
    if settings.use_json_logs:
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


# =============================================================================
# Setup
# =============================================================================


def configure_logging(settings: Settings | None = None) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        settings: Application settings. If None, uses default settings.
    """
    if settings is None:
        from omeka_proxy.config import get_settings

        settings = get_settings()

    level = getattr(logging, settings.log_level.value, logging.INFO)
    shared = _shared_processors()

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(settings),
            ],
            foreign_pre_chain=shared,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Mirror paging issues hundreds of requests; our own events cover them
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.
    """
    return structlog.get_logger(name)

"""
Structured logging configuration using structlog.
Outputs JSON in production, pretty-printed in development.

Correlation ids are not read from a global store: the request context is
passed explicitly and bound onto the logger with `bind_context`.
"""

import logging
import sys
import structlog
from hotel_booking.core.config import get_settings


def _add_service(logger, method_name, event_dict):
    event_dict.setdefault("service", get_settings().APP_NAME)
    return event_dict


def _shared_processors(production: bool) -> list:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if production:
        processors.append(structlog.processors.format_exc_info)
    return processors


def setup_logging() -> None:
    settings = get_settings()
    production = settings.ENVIRONMENT == "production"

    if production:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *_shared_processors(production),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ]
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Quiet libraries whose request-level logs duplicate ours
    for name in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(logger, ctx, **fields):
    """Return a logger carrying the request's correlation id plus extra fields."""
    return logger.bind(correlation_id=ctx.correlation_id, **fields)

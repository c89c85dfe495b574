"""Structured logging setup shared by the API and the Celery worker."""

import uuid

import structlog

from product_refresh.config import get_settings

CORRELATION_HEADER = "X-Correlation-ID"


def configure_logging() -> None:
    """Configure structlog with JSON output (console output in debug)."""
    settings = get_settings()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(settings.log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def resolve_correlation_id(candidate: str | None) -> str:
    """Return ``candidate`` if it is a valid UUID, otherwise a fresh one."""
    if candidate:
        try:
            return str(uuid.UUID(candidate))
        except ValueError:
            pass
    return generate_correlation_id()


def bind_correlation_id(correlation_id: str) -> None:
    """Tag every subsequent log line in this context with the correlation id."""
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_log_context() -> None:
    structlog.contextvars.clear_contextvars()

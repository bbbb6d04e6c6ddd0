import logging
from contextvars import ContextVar

import structlog

# Context variable to store the session being worked on across call boundaries
session_id_ctx: ContextVar[str | None] = ContextVar("session_id", default=None)


def configure_logging(level: str = "info", log_format: str = "json") -> None:
    """Configure structlog for JSON (default) or console output."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping()[level.upper()]
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a logger instance, optionally with a specific name."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    return logger


def bind_session_context(session_id: str) -> None:
    """Bind session_id to the structlog context for correlation."""
    session_id_ctx.set(session_id)
    structlog.contextvars.bind_contextvars(session_id=session_id)


def clear_session_context() -> None:
    """Clear the session context after an engine call."""
    session_id_ctx.set(None)
    structlog.contextvars.unbind_contextvars("session_id")

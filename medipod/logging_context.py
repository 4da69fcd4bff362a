"""User correlation context for tracing a conversation across modules.

Every inbound message sets the sender identity for the current asyncio
task, and loggers obtained through ``get_user_logger`` attach it to each
record so a single user's journey can be followed through the state
machine, orchestrator and collaborators.

Usage:
    from medipod.logging_context import get_user_logger, set_user_id

    set_user_id("+254712345678")
    logger = get_user_logger(__name__)
    logger.info("Booking committed")  # record.user_id == "+254712345678"
"""

import logging
from contextvars import ContextVar

_user_id: ContextVar[str] = ContextVar("user_id", default="NO_USER")


def set_user_id(user_id: str) -> None:
    """Set the correlation identity for the current async context."""
    _user_id.set(user_id)


def get_user_id() -> str:
    """Retrieve the current correlation identity."""
    return _user_id.get()


class UserIdFilter(logging.Filter):
    """Injects user_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = _user_id.get()  # type: ignore[attr-defined]
        return True


def get_user_logger(name: str) -> logging.Logger:
    """Return a logger with the UserIdFilter attached.

    The filter adds ``user_id`` to each record so formatters can
    include ``%(user_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, UserIdFilter) for f in logger.filters):
        logger.addFilter(UserIdFilter())
    return logger


def install_user_id_filter(logger: logging.Logger) -> None:
    """Attach the UserIdFilter to every handler on ``logger``.

    Handler-level filters see records from all loggers, including
    libraries that never call ``get_user_logger``.
    """
    for handler in logger.handlers:
        if not any(isinstance(f, UserIdFilter) for f in handler.filters):
            handler.addFilter(UserIdFilter())

"""Scoped metadata for log records.

Fields pushed here (notification type, notification id, attempt number) are
copied onto every record emitted inside the scope by ``ContextualFilter``.
Backed by ``contextvars`` so concurrent sends in separate threads or tasks do
not see each other's fields.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

_log_context: ContextVar[Dict[str, Any]] = ContextVar("mailnotify_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the fields active in the current scope."""
    return dict(_log_context.get())


def push_log_context(**fields: Any) -> Token:
    """Merge ``fields`` into the active context.

    Returns:
        Token to hand to ``pop_log_context`` to restore the previous fields
    """
    merged = {**_log_context.get(), **fields}
    return _log_context.set(merged)


def pop_log_context(token: Token) -> None:
    """Restore the context captured by ``push_log_context``."""
    _log_context.reset(token)


def clear_log_context() -> None:
    """Drop every field. Mostly used by tests."""
    _log_context.set({})


class log_context:
    """Context manager pushing fields for the duration of a block.

    Example:
        >>> with log_context(notification_type="welcome", notification_id="welcome:1a2b3c4d"):
        ...     logger.info("Sending")  # record carries both fields
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
            self.token = None
        return False

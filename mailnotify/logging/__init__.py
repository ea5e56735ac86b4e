"""Structured logging helpers for the notification pipeline."""

import logging
from typing import Optional, Union


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that stamps a component name on every record.

    Fields passed through ``extra`` at the call site win over the adapter's
    defaults, so a call may override ``component`` for a single record.
    """

    def process(self, msg, kwargs):
        call_extra = kwargs.get("extra") or {}
        kwargs["extra"] = {**self.extra, **call_extra}
        return msg, kwargs


def get_logger(
    name: str, component: Optional[str] = None
) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Return a module logger, optionally bound to a component.

    Args:
        name: Logger name (typically __name__)
        component: Component label added to every record (e.g. "transport")

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="orchestrator")
        >>> logger.info("Rendering body", extra={"event": "notification.render.started"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger


__all__ = ["ComponentLoggerAdapter", "get_logger"]

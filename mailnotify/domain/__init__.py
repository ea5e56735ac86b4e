"""Domain models shared by the resolver, renderer, orchestrator and transport."""

from .models import (
    DEFAULT_PRIORITY,
    Attachment,
    MailAddress,
    NotificationSpecification,
    Recipient,
    RecipientGroup,
    RecipientRole,
    RenderedMessage,
    normalize_address,
)

__all__ = [
    "DEFAULT_PRIORITY",
    "Attachment",
    "MailAddress",
    "NotificationSpecification",
    "Recipient",
    "RecipientGroup",
    "RecipientRole",
    "RenderedMessage",
    "normalize_address",
]

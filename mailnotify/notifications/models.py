"""Data models and exceptions for the notification pipeline.

This module defines result types, SMTP status codes and the exception
taxonomy raised by the renderer, resolver and transport. The orchestrator is
the only component that catches these and turns them into a result.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence

from mailnotify.exceptions import NotificationError


class NotificationTemplateError(NotificationError):
    """Raised when a notification body cannot be turned into HTML."""

    pass


class TemplateParseError(NotificationTemplateError):
    """Template body has syntax errors the engine cannot recover from."""

    pass


class TemplateRenderError(NotificationTemplateError):
    """Template parsed but failed while binding the data model."""

    pass


class SpecificationNotFoundError(NotificationError):
    """No specification is registered for a notification type."""

    def __init__(self, notification_type: str) -> None:
        super().__init__(f"Email specification not found for notification type '{notification_type}'")
        self.notification_type = notification_type


class EmailError(NotificationError):
    """Base exception for SMTP transport errors."""

    pass


class EmailConfigurationError(EmailError):
    """Transport is misconfigured (e.g. trust material cannot be loaded).

    Never retried: the next attempt would fail the same way.
    """

    pass


class EmailAttachmentError(EmailError):
    """An attachment could not be turned into a MIME part."""

    def __init__(self, message: str, filename: str) -> None:
        super().__init__(message)
        self.filename = filename


class ServerCertificateValidationError(EmailError):
    """The relay presented a certificate chain that could not be validated.

    Treated as a connection failure, so it is retried like one.
    """

    pass


class SendCancelledError(EmailError):
    """The caller cancelled the send; no further attempts are made."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class EmailSendError(EmailError):
    """SMTP delivery failed with a fatal status or after all retry attempts."""

    def __init__(
        self,
        message: str,
        recipients: Sequence[str] = (),
        attempts: int = 0,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.recipients = list(recipients)
        self.attempts = attempts
        self.status_code = status_code


class SMTPStatus(IntEnum):
    """SMTP reply codes the transport treats as transient.

    GENERAL_FAILURE stands for failures with no SMTP reply at all: refused or
    dropped connections, timeouts and rejected TLS handshakes.
    """

    GENERAL_FAILURE = -1
    SERVICE_NOT_AVAILABLE = 421
    MAILBOX_BUSY = 450
    MAILBOX_UNAVAILABLE = 550
    TRANSACTION_FAILED = 554


TRANSIENT_STATUSES = frozenset(SMTPStatus)


def is_transient_status(status_code: Optional[int]) -> bool:
    """Check whether a failed attempt should be retried.

    Args:
        status_code: SMTP reply code, SMTPStatus.GENERAL_FAILURE, or None
            for failures that are not SMTP-level at all

    Returns:
        True for the transient statuses listed in SMTPStatus
    """
    return status_code is not None and status_code in TRANSIENT_STATUSES


@dataclass
class NotificationResult:
    """Outcome of one send call.

    Attributes:
        notification_type: Notification type that was requested
        status: Outcome status (sent, no_recipients, failed)
        attempts: Number of SMTP attempts made
        recipient_count: Number of To/Cc/Bcc recipients after expansion
        error: Optional error message if delivery failed
    """

    notification_type: str
    status: str  # "sent", "no_recipients", "failed"
    attempts: int = 0
    recipient_count: int = 0
    error: Optional[str] = None

    def is_success(self) -> bool:
        """Check if the message was accepted by the SMTP server.

        Returns:
            True if status is "sent", False otherwise
        """
        return self.status == "sent"

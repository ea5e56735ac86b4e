"""Notification service for sending templated notifications.

This module provides the NotificationService class that orchestrates the
notification pipeline: specification lookup, template rendering, recipient
fan-out and delivery through the SMTP transport.
"""

import logging
import threading
import uuid
from typing import Any, Iterable, Optional

from mailnotify.domain.models import Attachment, NotificationSpecification, RenderedMessage
from mailnotify.logging import get_logger
from mailnotify.logging.context import log_context

from .models import NotificationResult, SpecificationNotFoundError
from .resolver import SpecificationResolver
from .smtp_client import SMTPTransport
from .templates import TemplateRenderer

logger = get_logger(__name__, component="notification")


class NotificationService:
    """Service for sending email notifications by notification type.

    Coordinates the entire notification flow:
    1. Resolve the specification for the notification type
    2. Render the HTML body against the caller's data model
    3. Build the message and expand recipient groups into To/Cc/Bcc
    4. Deliver via the SMTP transport (which owns retry/backoff)

    This is the single place where pipeline errors are caught; callers get
    a bool (``send``) or a NotificationResult (``deliver``), never an exception.
    """

    def __init__(
        self,
        resolver: SpecificationResolver,
        transport: SMTPTransport,
        template_renderer: Optional[TemplateRenderer] = None,
        logger_instance: Optional[logging.Logger] = None,
    ):
        """Initialize notification service.

        Args:
            resolver: Source of notification specifications
            transport: SMTP transport used for delivery
            template_renderer: Template renderer instance (creates default if None)
            logger_instance: Logger instance (uses module logger if None)
        """
        self.resolver = resolver
        self.transport = transport
        self.template_renderer = template_renderer or TemplateRenderer()
        self.logger = logger_instance or logger

    def send(
        self,
        notification_type: str,
        data: Any,
        attachments: Optional[Iterable[Attachment]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """Send a notification.

        Returns:
            True if the SMTP server accepted the message, False otherwise
        """
        return self.deliver(notification_type, data, attachments, cancel_event).is_success()

    def deliver(
        self,
        notification_type: str,
        data: Any,
        attachments: Optional[Iterable[Attachment]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> NotificationResult:
        """Send a notification and report the detailed outcome.

        Args:
            notification_type: Key of the specification to use
            data: Model exposed to the body template (pydantic model, dataclass or mapping)
            attachments: Attachments for this send only
            cancel_event: Set by the caller to abort delivery

        Returns:
            NotificationResult with status sent, no_recipients or failed
        """
        notification_id = uuid.uuid4().hex[:12]

        with log_context(notification_type=notification_type, notification_id=notification_id):
            recipient_count = 0

            try:
                specification = self._resolve(notification_type)
                message = self.build_message(specification, data, attachments)
                recipient_count = message.recipient_count

                if not message.has_recipients():
                    self.logger.warning(
                        f"No recipients resolved for notification type {notification_type}; nothing sent",
                        extra={"event": "notification.no_recipients"},
                    )
                    return NotificationResult(
                        notification_type=notification_type,
                        status="no_recipients",
                    )

                attempts = self.transport.send(message, cancel_event=cancel_event)

            except Exception as e:
                attempts = getattr(e, "attempts", 0)
                error_msg = f"Failed to send notification {notification_type}: {e}"
                self.logger.error(
                    error_msg,
                    exc_info=True,
                    extra={
                        "event": "notification.send.failure",
                        "recipient_count": recipient_count,
                        "attempts": attempts,
                        "error_type": type(e).__name__,
                    },
                )
                return NotificationResult(
                    notification_type=notification_type,
                    status="failed",
                    attempts=attempts,
                    recipient_count=recipient_count,
                    error=error_msg,
                )

            self.logger.info(
                f"Notification {notification_type} sent to {recipient_count} recipient(s) "
                f"(attempts: {attempts})",
                extra={
                    "event": "notification.send.success",
                    "recipient_count": recipient_count,
                    "attempts": attempts,
                },
            )
            return NotificationResult(
                notification_type=notification_type,
                status="sent",
                attempts=attempts,
                recipient_count=recipient_count,
            )

    def build_message(
        self,
        specification: NotificationSpecification,
        data: Any,
        attachments: Optional[Iterable[Attachment]] = None,
    ) -> RenderedMessage:
        """Render a specification into a message ready for the transport.

        Raises:
            TemplateParseError: If the body template has syntax errors
            TemplateRenderError: If binding the data model fails
        """
        if not specification.is_active:
            self.logger.warning(
                f"Specification for {specification.notification_type} is inactive; sending anyway",
                extra={"event": "notification.specification.inactive"},
            )

        template_key = self.template_renderer.compute_template_key(specification.html_body)
        html_body = self.template_renderer.render(template_key, specification.html_body, data)
        if not html_body.strip():
            self.logger.warning(
                f"Template for {specification.notification_type} rendered an empty body",
                extra={"event": "template.render.empty", "template_key": template_key[:12]},
            )

        message = RenderedMessage(
            subject=specification.subject,
            html_body=html_body,
            text_body=specification.text_body,
            sender=specification.sender,
            reply_to=specification.reply_to,
            priority=specification.priority,
            attachments=list(attachments or ()),
        )

        for recipient in specification.iter_recipients():
            message.add_recipient(recipient)

        return message

    def _resolve(self, notification_type: str) -> NotificationSpecification:
        specification = self.resolver.get_by_notification_type(notification_type)
        if specification is None:
            raise SpecificationNotFoundError(notification_type)
        return specification

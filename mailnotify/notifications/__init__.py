"""Notification pipeline for templated email delivery.

This module provides the complete notification pipeline:
- NotificationService: Resolves, renders and delivers notifications by type
- NotificationResult: Result data structure for notification outcomes
- TemplateRenderer: Jinja2-based body rendering with a parsed-template cache
- SMTPTransport: SMTP delivery with TLS, chain validation and retry/backoff
- Specification resolvers: In-memory and YAML-backed lookup by notification type
"""

from .models import (
    EmailAttachmentError,
    EmailConfigurationError,
    EmailError,
    EmailSendError,
    NotificationError,
    NotificationResult,
    NotificationTemplateError,
    SendCancelledError,
    ServerCertificateValidationError,
    SMTPStatus,
    SpecificationNotFoundError,
    TemplateParseError,
    TemplateRenderError,
    is_transient_status,
)
from .resolver import InMemorySpecificationResolver, SpecificationResolver, load_specifications
from .service import NotificationService
from .smtp_client import SMTPTransport, build_mime_message, classify_failure
from .templates import TemplateRenderer
from .tls import ServerCertificateValidator, load_trust_roots

__all__ = [
    # Main service
    "NotificationService",
    # Models and results
    "NotificationResult",
    "SMTPStatus",
    "is_transient_status",
    # Exceptions
    "NotificationError",
    "NotificationTemplateError",
    "TemplateParseError",
    "TemplateRenderError",
    "SpecificationNotFoundError",
    "EmailError",
    "EmailConfigurationError",
    "EmailAttachmentError",
    "EmailSendError",
    "SendCancelledError",
    "ServerCertificateValidationError",
    # Components
    "TemplateRenderer",
    "SMTPTransport",
    "ServerCertificateValidator",
    "SpecificationResolver",
    "InMemorySpecificationResolver",
    # Utilities
    "build_mime_message",
    "classify_failure",
    "load_specifications",
    "load_trust_roots",
]

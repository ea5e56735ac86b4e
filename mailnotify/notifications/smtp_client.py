"""SMTP transport for rendered notifications.

This module wraps Python's smtplib with:
- MIME construction from a RenderedMessage (HTML plus optional text
  alternative, attachments, Reply-To and priority headers)
- implicit TLS on port 465, STARTTLS otherwise
- optional per-session server chain validation against intermediates
  fetched from the secret store
- bounded retry with exponential backoff for transient SMTP failures
"""

import re
import smtplib
import ssl
import threading
import time
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Callable, List, Optional, Sequence

from cryptography import x509

from mailnotify.certificates.exceptions import CertificateError
from mailnotify.certificates.provider import CertificateProvider
from mailnotify.config.models import SMTPSettings
from mailnotify.domain.models import Attachment, RenderedMessage
from mailnotify.logging import get_logger

from .models import (
    EmailAttachmentError,
    EmailConfigurationError,
    EmailSendError,
    SendCancelledError,
    ServerCertificateValidationError,
    SMTPStatus,
    is_transient_status,
)
from .tls import ServerCertificateValidator

logger = get_logger(__name__, component="transport")

# priority -> (X-Priority, Importance)
PRIORITY_HEADERS = {
    1: ("1 (Highest)", "high"),
    2: ("2 (High)", "high"),
    3: ("3 (Normal)", "normal"),
    4: ("4 (Low)", "low"),
    5: ("5 (Lowest)", "low"),
}

_CONTENT_TYPE = re.compile(r"^([A-Za-z0-9!#$&^_.+-]+)/([A-Za-z0-9!#$&^_.+-]+)$")


def classify_failure(error: BaseException) -> Optional[int]:
    """Map a failed attempt to an SMTP status code.

    Args:
        error: Exception raised while talking to the relay

    Returns:
        The server's reply code, SMTPStatus.GENERAL_FAILURE for failures
        without a reply (network errors, disconnects, timeouts, rejected
        handshakes), or None for errors that are not SMTP failures at all
    """
    if isinstance(error, smtplib.SMTPRecipientsRefused):
        codes = [code for code, _ in error.recipients.values()]
        return codes[0] if codes else None
    if isinstance(error, smtplib.SMTPResponseException):
        return error.smtp_code
    if isinstance(error, smtplib.SMTPServerDisconnected):
        return SMTPStatus.GENERAL_FAILURE
    if isinstance(error, smtplib.SMTPException):
        return None
    if isinstance(error, (OSError, ServerCertificateValidationError)):
        return SMTPStatus.GENERAL_FAILURE
    return None


def _split_content_type(content_type: str):
    match = _CONTENT_TYPE.match((content_type or "").strip())
    if not match:
        raise ValueError(f"invalid MIME type '{content_type}'")
    maintype, subtype = match.group(1).lower(), match.group(2).lower()
    if maintype == "multipart":
        raise ValueError(f"MIME type '{content_type}' cannot be used for an attachment")
    return maintype, subtype


def _add_attachment(mime: EmailMessage, attachment: Attachment) -> None:
    try:
        maintype, subtype = _split_content_type(attachment.content_type)
        if not isinstance(attachment.content, (bytes, bytearray)):
            raise TypeError(f"content must be bytes, got {type(attachment.content).__name__}")

        cid = None
        if attachment.content_id:
            cid = f"<{attachment.content_id.strip('<>')}>"

        mime.add_attachment(
            bytes(attachment.content),
            maintype=maintype,
            subtype=subtype,
            filename=attachment.filename,
            disposition="inline" if attachment.is_inline else "attachment",
            cid=cid,
        )
    except (TypeError, ValueError, LookupError) as e:
        raise EmailAttachmentError(
            f"Failed to attach '{attachment.filename}': {e}",
            filename=attachment.filename,
        ) from e


def build_mime_message(message: RenderedMessage) -> EmailMessage:
    """Build the MIME message for a rendered notification.

    Bodies are UTF-8 with quoted-printable transfer encoding. Bcc recipients
    are not written to the headers; they only appear in the SMTP envelope.

    Raises:
        EmailAttachmentError: If any attachment cannot be encoded (the whole
            message is abandoned)
    """
    mime = EmailMessage()
    mime["Subject"] = message.subject
    mime["From"] = message.sender.formatted()
    if message.to:
        mime["To"] = ", ".join(address.formatted() for address in message.to)
    if message.cc:
        mime["Cc"] = ", ".join(address.formatted() for address in message.cc)
    if message.reply_to is not None:
        mime["Reply-To"] = message.reply_to.formatted()

    x_priority, importance = PRIORITY_HEADERS[message.priority]
    mime["X-Priority"] = x_priority
    mime["Importance"] = importance
    mime["Date"] = formatdate(localtime=True)
    mime["Message-ID"] = make_msgid()

    if message.text_body is not None:
        mime.set_content(message.text_body, subtype="plain", charset="utf-8", cte="quoted-printable")
        mime.add_alternative(message.html_body, subtype="html", charset="utf-8", cte="quoted-printable")
    else:
        mime.set_content(message.html_body, subtype="html", charset="utf-8", cte="quoted-printable")

    for attachment in message.attachments:
        _add_attachment(mime, attachment)

    return mime


class SMTPTransport:
    """Delivers rendered messages over SMTP with retry and backoff.

    One SMTP session is opened per attempt and always closed afterwards.
    Designed to be easily mockable: the smtplib classes and the sleep
    function are injectable.
    """

    def __init__(
        self,
        settings: SMTPSettings,
        certificate_provider: Optional[CertificateProvider] = None,
        smtp_factory: Optional[Callable] = None,
        smtp_ssl_factory: Optional[Callable] = None,
        sleep: Optional[Callable[[float], None]] = None,
        trust_roots: Optional[Sequence[x509.Certificate]] = None,
    ):
        """Initialize the transport.

        Args:
            settings: Relay, trust and retry settings
            certificate_provider: Source of intermediate bundles (required when
                custom server certificate validation is enabled)
            smtp_factory: Factory for SMTP instances (for mocking)
            smtp_ssl_factory: Factory for SMTP_SSL instances (for mocking)
            sleep: Backoff sleep function used when no cancel event is given
            trust_roots: Trusted roots for custom validation (system trust store when None)
        """
        self.settings = settings
        self.certificate_provider = certificate_provider
        self.smtp_factory = smtp_factory or smtplib.SMTP
        self.smtp_ssl_factory = smtp_ssl_factory or smtplib.SMTP_SSL
        self._sleep = sleep or time.sleep
        self.trust_roots = trust_roots

    def send(self, message: RenderedMessage, cancel_event: Optional[threading.Event] = None) -> int:
        """Deliver a message, retrying transient failures.

        Args:
            message: Rendered message (not modified)
            cancel_event: Set by the caller to abort; checked before every
                attempt and while waiting between attempts

        Returns:
            Number of attempts it took

        Raises:
            EmailAttachmentError: If an attachment cannot be encoded
            EmailConfigurationError: If server certificate validation cannot be set up
            SendCancelledError: If cancel_event is set
            EmailSendError: On a fatal SMTP failure or when attempts are exhausted
        """
        recipients = [address.address for address in message.all_recipients()]
        if not recipients:
            raise EmailSendError("Message has no recipients", recipients=recipients)

        mime = build_mime_message(message)
        self._raise_if_cancelled(cancel_event, 0)
        validator = self._create_validator()

        max_attempts = self.settings.max_retry_attempts
        delay = self.settings.retry_delay_seconds
        attempt = 0

        while True:
            attempt += 1
            self._raise_if_cancelled(cancel_event, attempt - 1)

            try:
                refused = self._deliver_once(mime, message.sender.address, recipients, validator)
            except Exception as e:
                status = classify_failure(e)
                if is_transient_status(status) and attempt < max_attempts:
                    logger.warning(
                        f"Transient SMTP error on attempt {attempt} of {max_attempts}. "
                        f"Retrying in {delay * 1000:.0f}ms: {e}",
                        extra={
                            "event": "transport.send.retry",
                            "attempt": attempt,
                            "status_code": status,
                            "error_type": type(e).__name__,
                            "retry_remaining": True,
                        },
                    )
                    self._wait(delay, cancel_event, attempt)
                    delay = self._next_delay(delay)
                    continue

                reason = "Non-transient SMTP error" if not is_transient_status(status) else "SMTP error"
                logger.error(
                    f"{reason} on attempt {attempt} of {max_attempts} sending to "
                    f"{', '.join(recipients)}: {e}",
                    extra={
                        "event": "transport.send.failure",
                        "attempt": attempt,
                        "status_code": status,
                        "error_type": type(e).__name__,
                        "retry_remaining": False,
                    },
                )
                raise EmailSendError(
                    f"Failed to send email to {', '.join(recipients)} after {attempt} attempt(s): {e}",
                    recipients=recipients,
                    attempts=attempt,
                    status_code=status,
                ) from e

            if refused:
                logger.warning(
                    f"Relay refused some recipients: {', '.join(sorted(refused))}",
                    extra={"event": "transport.send.partial_refusal", "refused": sorted(refused)},
                )

            logger.info(
                f"Email sent successfully to {', '.join(recipients)} (attempts: {attempt})",
                extra={"event": "transport.send.success", "attempt": attempt},
            )
            return attempt

    def _deliver_once(
        self,
        mime: EmailMessage,
        sender: str,
        recipients: List[str],
        validator: Optional[ServerCertificateValidator],
    ) -> dict:
        host = self.settings.host
        port = self.settings.port
        timeout = self.settings.timeout_seconds
        smtp = None

        try:
            context = validator.create_ssl_context() if validator else ssl.create_default_context()

            if self.settings.implicit_tls:
                logger.debug(f"Connecting to {host}:{port} with implicit TLS")
                smtp = self.smtp_ssl_factory(host, port, timeout=timeout, context=context)
                encrypted = True
            else:
                logger.debug(f"Connecting to {host}:{port}")
                smtp = self.smtp_factory(host, port, timeout=timeout)
                encrypted = False
                if self.settings.use_tls:
                    logger.debug("Upgrading connection with STARTTLS")
                    smtp.starttls(context=context)
                    encrypted = True

            if validator is not None and encrypted:
                validator.validate_socket(smtp.sock, host)

            if self.settings.username and self.settings.password:
                logger.debug(f"Authenticating as {self.settings.username}")
                smtp.login(self.settings.username, self.settings.password)

            return smtp.send_message(mime, from_addr=sender, to_addrs=recipients) or {}
        finally:
            if smtp is not None:
                try:
                    smtp.quit()
                except Exception as e:
                    logger.warning(f"Error closing SMTP connection: {e}")

    def _create_validator(self) -> Optional[ServerCertificateValidator]:
        if not self.settings.use_custom_server_certificate_validation:
            return None

        secret_id = self.settings.server_intermediate_certificate_secret_id
        if self.certificate_provider is None:
            raise EmailConfigurationError(
                "Custom server certificate validation is enabled but no certificate provider is configured"
            )

        if not self.settings.use_tls and not self.settings.implicit_tls:
            logger.warning(
                "Custom server certificate validation is enabled but TLS is off; "
                "the server certificate will not be checked",
                extra={"event": "transport.tls.disabled"},
            )

        try:
            bundle = self.certificate_provider.fetch_intermediate_certificates(secret_id)
            validator = ServerCertificateValidator(
                bundle,
                trust_roots=self.trust_roots,
                trust_roots_file=self.settings.trust_roots_file,
            )
            # Load roots now so a bad trust store fails as configuration, not as a retryable attempt
            roots = validator.trust_roots
        except (CertificateError, OSError, ValueError) as e:
            logger.error(
                f"Failed to configure server certificate validation using secret {secret_id}: {e}",
                extra={"event": "transport.tls.configuration_failure", "secret_id": secret_id},
            )
            raise EmailConfigurationError(
                f"Failed to configure server certificate validation using secret '{secret_id}': {e}"
            ) from e

        logger.debug(
            f"Server certificate validation configured with {len(bundle)} intermediate(s) "
            f"and {len(roots)} trusted root(s)"
        )
        return validator

    def _next_delay(self, delay: float) -> float:
        next_delay = delay * 2
        cap = self.settings.max_retry_delay_seconds
        if cap is not None:
            next_delay = min(next_delay, cap)
        return next_delay

    def _wait(self, delay: float, cancel_event: Optional[threading.Event], attempts: int) -> None:
        if cancel_event is None:
            self._sleep(delay)
            return
        if cancel_event.wait(delay):
            raise SendCancelledError(
                f"Send cancelled while waiting to retry after {attempts} attempt(s)",
                attempts=attempts,
            )

    @staticmethod
    def _raise_if_cancelled(cancel_event: Optional[threading.Event], attempts: int) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise SendCancelledError(
                f"Send cancelled after {attempts} attempt(s)",
                attempts=attempts,
            )

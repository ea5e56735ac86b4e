"""Unit tests for the SMTP transport.

Tests the SMTPTransport for:
- Connection handling (SMTP and SMTP_SSL)
- TLS/STARTTLS negotiation and authentication
- Retry/backoff on transient failures, no retry on fatal ones
- Cancellation before connecting and during backoff
- Custom server certificate validation
- MIME message construction (headers, alternatives, attachments)
"""

import smtplib
import ssl
import threading
from unittest.mock import MagicMock, Mock, call

import pytest

from mailnotify.certificates import CertificateProvider, InMemorySecretStore
from mailnotify.config.models import SMTPSettings
from mailnotify.domain.models import Attachment, MailAddress, RenderedMessage
from mailnotify.notifications.models import (
    EmailAttachmentError,
    EmailConfigurationError,
    EmailSendError,
    SendCancelledError,
    ServerCertificateValidationError,
    SMTPStatus,
)
from mailnotify.notifications.smtp_client import (
    SMTPTransport,
    build_mime_message,
    classify_failure,
)
from tests.helpers import make_chain, to_pem

SECRET_ID = "smtp/intermediates"


@pytest.fixture
def settings():
    """SMTP settings with authentication and STARTTLS."""
    return SMTPSettings(
        host="smtp.example.com",
        port=587,
        use_tls=True,
        username="user@example.com",
        password="secret123",
        max_retry_attempts=3,
        retry_delay_ms=1000,
    )


@pytest.fixture
def message():
    """Rendered message with To, Cc and Bcc recipients."""
    return RenderedMessage(
        subject="Monthly report",
        html_body="<p>Report attached</p>",
        text_body="Report attached",
        sender=MailAddress(address="sender@example.com", display_name="Reports"),
        reply_to=MailAddress(address="support@example.com"),
        priority=1,
        to=[MailAddress(address="to@example.com", display_name="Finance")],
        cc=[MailAddress(address="cc@example.com")],
        bcc=[MailAddress(address="bcc@example.com")],
    )


@pytest.fixture
def mock_smtp():
    """SMTP connection mock that accepts every message."""
    smtp = MagicMock()
    smtp.send_message.return_value = {}
    return smtp


def make_transport(settings, mock_smtp, **kwargs):
    factory = Mock(return_value=mock_smtp)
    sleep = Mock()
    transport = SMTPTransport(
        settings,
        smtp_factory=factory,
        smtp_ssl_factory=factory,
        sleep=sleep,
        **kwargs,
    )
    return transport, factory, sleep


def test_send_with_starttls(settings, message, mock_smtp):
    """Test sending over STARTTLS (port 587)."""
    transport, factory, sleep = make_transport(settings, mock_smtp)

    attempts = transport.send(message)

    assert attempts == 1
    factory.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
    mock_smtp.starttls.assert_called_once()
    mock_smtp.login.assert_called_once_with("user@example.com", "secret123")
    mock_smtp.send_message.assert_called_once()
    _, kwargs = mock_smtp.send_message.call_args
    assert kwargs["from_addr"] == "sender@example.com"
    assert kwargs["to_addrs"] == ["to@example.com", "cc@example.com", "bcc@example.com"]
    mock_smtp.quit.assert_called_once()
    sleep.assert_not_called()


def test_send_with_implicit_tls(settings, message, mock_smtp):
    """Test sending with implicit TLS (port 465)."""
    ssl_settings = settings.model_copy(update={"port": 465})
    plain_factory = Mock()
    ssl_factory = Mock(return_value=mock_smtp)

    transport = SMTPTransport(ssl_settings, smtp_factory=plain_factory, smtp_ssl_factory=ssl_factory)
    transport.send(message)

    plain_factory.assert_not_called()
    ssl_factory.assert_called_once()
    args, kwargs = ssl_factory.call_args
    assert args == ("smtp.example.com", 465)
    assert isinstance(kwargs["context"], ssl.SSLContext)
    mock_smtp.starttls.assert_not_called()
    mock_smtp.quit.assert_called_once()


def test_send_without_tls_or_auth(message, mock_smtp):
    """Test a plain relay without TLS or credentials."""
    plain = SMTPSettings(host="relay.example.com", port=25, use_tls=False)
    transport, factory, _ = make_transport(plain, mock_smtp)

    transport.send(message)

    factory.assert_called_once_with("relay.example.com", 25, timeout=30.0)
    mock_smtp.starttls.assert_not_called()
    mock_smtp.login.assert_not_called()
    mock_smtp.send_message.assert_called_once()


def test_transient_failure_retries_with_doubling_delay(settings, message, mock_smtp):
    """Test 3 attempts with delays 1s, 2s and then EmailSendError."""
    mock_smtp.send_message.side_effect = smtplib.SMTPResponseException(421, b"Service not available")
    transport, factory, sleep = make_transport(settings, mock_smtp)

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    error = exc_info.value
    assert error.attempts == 3
    assert error.status_code == 421
    assert error.recipients == ["to@example.com", "cc@example.com", "bcc@example.com"]
    assert "to@example.com" in str(error)
    assert sleep.call_args_list == [call(1.0), call(2.0)]
    assert factory.call_count == 3
    # Connection closed after every attempt
    assert mock_smtp.quit.call_count == 3


def test_transient_failure_then_success(settings, message, mock_smtp):
    """Test that delivery succeeds on a later attempt."""
    mock_smtp.send_message.side_effect = [smtplib.SMTPServerDisconnected("Connection lost"), {}]
    transport, _, sleep = make_transport(settings, mock_smtp)

    attempts = transport.send(message)

    assert attempts == 2
    sleep.assert_called_once_with(1.0)


def test_fatal_status_is_not_retried(settings, message, mock_smtp):
    """Test that a non-transient status makes exactly one attempt."""
    mock_smtp.send_message.side_effect = smtplib.SMTPSenderRefused(
        553, b"Sender address rejected", "sender@example.com"
    )
    transport, factory, sleep = make_transport(settings, mock_smtp)

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    assert exc_info.value.attempts == 1
    assert exc_info.value.status_code == 553
    factory.assert_called_once()
    sleep.assert_not_called()


def test_authentication_failure_is_fatal(settings, message, mock_smtp):
    """Test that a rejected login is not retried."""
    mock_smtp.login.side_effect = smtplib.SMTPAuthenticationError(535, b"Authentication failed")
    transport, _, sleep = make_transport(settings, mock_smtp)

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    assert exc_info.value.attempts == 1
    mock_smtp.send_message.assert_not_called()
    sleep.assert_not_called()


def test_connection_refused_is_retried_as_general_failure(settings, message):
    """Test that network errors count as transient general failures."""
    factory = Mock(side_effect=ConnectionRefusedError("Connection refused"))
    sleep = Mock()
    transport = SMTPTransport(settings, smtp_factory=factory, sleep=sleep)

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == SMTPStatus.GENERAL_FAILURE
    assert factory.call_count == 3


def test_recipients_refused_uses_first_status(settings, message, mock_smtp):
    """Test that a refused recipient is classified by its reply code."""
    mock_smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused(
        {"to@example.com": (550, b"Mailbox unavailable")}
    )
    transport, _, sleep = make_transport(settings, mock_smtp)

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    assert exc_info.value.status_code == 550
    assert exc_info.value.attempts == 3
    assert sleep.call_count == 2


def test_backoff_delay_is_capped(message, mock_smtp):
    """Test that max_retry_delay_ms bounds each wait."""
    capped = SMTPSettings(
        host="smtp.example.com",
        max_retry_attempts=4,
        retry_delay_ms=1000,
        max_retry_delay_ms=1500,
    )
    mock_smtp.send_message.side_effect = smtplib.SMTPResponseException(450, b"Mailbox busy")
    transport, _, sleep = make_transport(capped, mock_smtp)

    with pytest.raises(EmailSendError):
        transport.send(message)

    assert sleep.call_args_list == [call(1.0), call(1.5), call(1.5)]


def test_single_attempt_configuration(message, mock_smtp):
    """Test that max_retry_attempts=1 never waits."""
    single = SMTPSettings(host="smtp.example.com", max_retry_attempts=1)
    mock_smtp.send_message.side_effect = smtplib.SMTPResponseException(421, b"Try later")
    transport, _, sleep = make_transport(single, mock_smtp)

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    assert exc_info.value.attempts == 1
    sleep.assert_not_called()


def test_unsupported_command_is_fatal(settings, message, mock_smtp):
    """Test that SMTP errors without a reply code are not retried."""
    mock_smtp.starttls.side_effect = smtplib.SMTPNotSupportedError("STARTTLS extension not supported")
    transport, factory, _ = make_transport(settings, mock_smtp)

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    assert exc_info.value.attempts == 1
    assert exc_info.value.status_code is None
    factory.assert_called_once()


def test_quit_failure_does_not_mask_result(settings, message, mock_smtp):
    """Test that an error while closing the connection is only logged."""
    mock_smtp.quit.side_effect = smtplib.SMTPServerDisconnected("already closed")
    transport, _, _ = make_transport(settings, mock_smtp)

    assert transport.send(message) == 1


def test_message_without_recipients_is_rejected(settings, mock_smtp):
    """Test that the transport refuses an empty envelope."""
    empty = RenderedMessage(
        subject="Subject",
        html_body="<p>Body</p>",
        sender=MailAddress(address="sender@example.com"),
    )
    transport, factory, _ = make_transport(settings, mock_smtp)

    with pytest.raises(EmailSendError):
        transport.send(empty)

    factory.assert_not_called()


def test_cancelled_before_first_attempt(settings, message, mock_smtp):
    """Test that a set cancel event prevents any connection."""
    transport, factory, _ = make_transport(settings, mock_smtp)
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(SendCancelledError) as exc_info:
        transport.send(message, cancel_event=cancel_event)

    assert exc_info.value.attempts == 0
    factory.assert_not_called()


def test_cancelled_during_backoff(settings, message, mock_smtp):
    """Test that cancellation interrupts the wait between attempts."""
    cancel_event = threading.Event()

    def fail_and_cancel(*args, **kwargs):
        cancel_event.set()
        raise smtplib.SMTPServerDisconnected("Connection lost")

    mock_smtp.send_message.side_effect = fail_and_cancel
    transport, factory, sleep = make_transport(settings, mock_smtp)

    with pytest.raises(SendCancelledError) as exc_info:
        transport.send(message, cancel_event=cancel_event)

    assert exc_info.value.attempts == 1
    factory.assert_called_once()
    sleep.assert_not_called()


def test_cancel_event_used_for_waiting(message, mock_smtp):
    """Test that an unset cancel event replaces sleep for backoff."""
    fast = SMTPSettings(host="smtp.example.com", retry_delay_ms=0)
    mock_smtp.send_message.side_effect = [smtplib.SMTPResponseException(421, b"Busy"), {}]
    transport, _, sleep = make_transport(fast, mock_smtp)

    attempts = transport.send(message, cancel_event=threading.Event())

    assert attempts == 2
    sleep.assert_not_called()


def test_bad_attachment_aborts_send(settings, message, mock_smtp):
    """Test that an unencodable attachment fails before connecting."""
    message.attachments.append(
        Attachment(filename="report.bin", content=b"data", content_type="not a mime type")
    )
    transport, factory, _ = make_transport(settings, mock_smtp)

    with pytest.raises(EmailAttachmentError) as exc_info:
        transport.send(message)

    assert exc_info.value.filename == "report.bin"
    assert "report.bin" in str(exc_info.value)
    factory.assert_not_called()


@pytest.fixture
def chain():
    return make_chain("smtp.example.com")


@pytest.fixture
def validating_settings(settings):
    return settings.model_copy(update={
        "use_custom_server_certificate_validation": True,
        "server_intermediate_certificate_secret_id": SECRET_ID,
    })


def test_custom_validation_accepts_valid_chain(validating_settings, message, mock_smtp, chain):
    """Test delivery when the server chain builds through fetched intermediates."""
    provider = CertificateProvider(InMemorySecretStore({SECRET_ID: to_pem(chain.intermediate)}))
    mock_smtp.sock.getpeercert.return_value = chain.leaf_der
    transport, _, _ = make_transport(
        validating_settings, mock_smtp, certificate_provider=provider, trust_roots=[chain.root]
    )

    assert transport.send(message) == 1

    context = mock_smtp.starttls.call_args.kwargs["context"]
    assert context.verify_mode == ssl.CERT_NONE
    mock_smtp.sock.getpeercert.assert_called_once_with(binary_form=True)
    mock_smtp.send_message.assert_called_once()


def test_custom_validation_rejects_untrusted_chain(validating_settings, message, mock_smtp, chain):
    """Test that an unverifiable chain is a retried connection failure."""
    other = make_chain("smtp.example.com")
    provider = CertificateProvider(InMemorySecretStore({SECRET_ID: to_pem(chain.intermediate)}))
    mock_smtp.sock.getpeercert.return_value = other.leaf_der
    transport, factory, sleep = make_transport(
        validating_settings, mock_smtp, certificate_provider=provider, trust_roots=[chain.root]
    )

    with pytest.raises(EmailSendError) as exc_info:
        transport.send(message)

    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == SMTPStatus.GENERAL_FAILURE
    assert isinstance(exc_info.value.__cause__, ServerCertificateValidationError)
    mock_smtp.send_message.assert_not_called()
    assert factory.call_count == 3


def test_custom_validation_fetches_bundle_once_per_send(validating_settings, message, mock_smtp, chain):
    """Test that retries reuse the bundle fetched before the first attempt."""
    store = Mock()
    store.get_secret_string.return_value = to_pem(chain.intermediate)
    provider = CertificateProvider(store, cache_enabled=False)
    mock_smtp.sock.getpeercert.return_value = chain.leaf_der
    mock_smtp.send_message.side_effect = [smtplib.SMTPResponseException(421, b"Busy"), {}]
    transport, _, _ = make_transport(
        validating_settings, mock_smtp, certificate_provider=provider, trust_roots=[chain.root]
    )

    assert transport.send(message) == 2
    store.get_secret_string.assert_called_once_with(SECRET_ID)


def test_certificate_provider_failure_is_configuration_error(validating_settings, message, mock_smtp):
    """Test that a missing secret is not retried."""
    provider = CertificateProvider(InMemorySecretStore({}))
    transport, factory, sleep = make_transport(
        validating_settings, mock_smtp, certificate_provider=provider
    )

    with pytest.raises(EmailConfigurationError) as exc_info:
        transport.send(message)

    assert SECRET_ID in str(exc_info.value)
    factory.assert_not_called()
    sleep.assert_not_called()


def test_cancelled_send_skips_certificate_fetch(validating_settings, message, mock_smtp):
    """Test that a cancelled send never reaches the secret store."""
    provider = Mock()
    transport, factory, _ = make_transport(
        validating_settings, mock_smtp, certificate_provider=provider
    )
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(SendCancelledError) as exc_info:
        transport.send(message, cancel_event=cancel_event)

    assert exc_info.value.attempts == 0
    provider.fetch_intermediate_certificates.assert_not_called()
    factory.assert_not_called()


def test_custom_validation_without_provider_is_configuration_error(validating_settings, message, mock_smtp):
    """Test that enabling validation requires a certificate provider."""
    transport, factory, _ = make_transport(validating_settings, mock_smtp)

    with pytest.raises(EmailConfigurationError):
        transport.send(message)

    factory.assert_not_called()


@pytest.mark.parametrize(
    "error,expected",
    [
        (smtplib.SMTPResponseException(421, b"Busy"), 421),
        (smtplib.SMTPDataError(554, b"Transaction failed"), 554),
        (smtplib.SMTPRecipientsRefused({"a@example.com": (450, b"Busy")}), 450),
        (smtplib.SMTPServerDisconnected("gone"), SMTPStatus.GENERAL_FAILURE),
        (TimeoutError("timed out"), SMTPStatus.GENERAL_FAILURE),
        (ssl.SSLError("handshake failure"), SMTPStatus.GENERAL_FAILURE),
        (ServerCertificateValidationError("bad chain"), SMTPStatus.GENERAL_FAILURE),
        (smtplib.SMTPNotSupportedError("AUTH not supported"), None),
        (ValueError("unexpected"), None),
    ],
)
def test_classify_failure(error, expected):
    """Test mapping of exceptions to SMTP status codes."""
    assert classify_failure(error) == expected


def test_build_mime_message_headers(message):
    """Test address, priority and reply-to headers."""
    mime = build_mime_message(message)

    assert mime["Subject"] == "Monthly report"
    assert mime["From"] == "Reports <sender@example.com>"
    assert mime["To"] == "Finance <to@example.com>"
    assert mime["Cc"] == "cc@example.com"
    assert mime["Reply-To"] == "support@example.com"
    assert mime["X-Priority"] == "1 (Highest)"
    assert mime["Importance"] == "high"
    assert mime["Bcc"] is None
    assert "bcc@example.com" not in mime.as_string()


def test_build_mime_message_alternatives(message):
    """Test text and HTML parts with quoted-printable UTF-8 encoding."""
    mime = build_mime_message(message)

    assert mime.get_content_type() == "multipart/alternative"
    parts = list(mime.iter_parts())
    assert [part.get_content_type() for part in parts] == ["text/plain", "text/html"]
    for part in parts:
        assert part["Content-Transfer-Encoding"] == "quoted-printable"
        assert part.get_content_charset() == "utf-8"
    assert "Report attached" in parts[1].get_content()


def test_build_mime_message_html_only(message):
    """Test a single HTML part when there is no text body."""
    message.text_body = None

    mime = build_mime_message(message)

    assert mime.get_content_type() == "text/html"
    assert "<p>Report attached</p>" in mime.get_content()


def test_build_mime_message_default_priority_headers(message):
    """Test normal priority mapping."""
    message.priority = 3

    mime = build_mime_message(message)

    assert mime["X-Priority"] == "3 (Normal)"
    assert mime["Importance"] == "normal"


def test_build_mime_message_attachments(message):
    """Test regular and inline attachments."""
    message.attachments.extend([
        Attachment(filename="report.csv", content=b"a,b\n1,2\n", content_type="text/csv"),
        Attachment(
            filename="logo.png",
            content=b"\x89PNG\r\n",
            content_type="image/png",
            is_inline=True,
            content_id="logo@example.com",
        ),
    ])

    mime = build_mime_message(message)

    assert mime.get_content_type() == "multipart/mixed"
    parts = {part.get_filename(): part for part in mime.walk() if part.get_filename()}

    report = parts["report.csv"]
    assert report.get_content_type() == "text/csv"
    assert report.get_content_disposition() == "attachment"
    assert report.get_payload(decode=True) == b"a,b\n1,2\n"

    logo = parts["logo.png"]
    assert logo.get_content_type() == "image/png"
    assert logo.get_content_disposition() == "inline"
    assert logo["Content-ID"] == "<logo@example.com>"
    assert logo.get_payload(decode=True) == b"\x89PNG\r\n"


def test_build_mime_message_rejects_multipart_attachment(message):
    """Test that container MIME types cannot be attached."""
    message.attachments.append(
        Attachment(filename="nested.eml", content=b"x", content_type="multipart/mixed")
    )

    with pytest.raises(EmailAttachmentError) as exc_info:
        build_mime_message(message)

    assert exc_info.value.filename == "nested.eml"

"""Custom exceptions for certificate retrieval and parsing."""

from mailnotify.exceptions import NotificationError


class CertificateError(NotificationError):
    """Base exception for trust-material errors.

    Always carries the secret identifier involved so an operator can find
    the misconfigured secret from the log line alone.
    """

    def __init__(self, message: str, secret_id: str) -> None:
        super().__init__(message)
        self.secret_id = secret_id


class CertificateRetrievalError(CertificateError):
    """The secret store call failed or returned no string payload."""

    pass


class CertificateParseError(CertificateError):
    """The secret payload is not one or more PEM-encoded X.509 certificates."""

    pass

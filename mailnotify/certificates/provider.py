"""Intermediate certificate retrieval for custom server-chain validation.

The relay's intermediates are kept in a secret store as a PEM bundle. This
module fetches the bundle by secret identifier, parses it into X.509
certificates and caches the result per identifier for the lifetime of the
provider.
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Dict, Iterator, Tuple

from cryptography import x509

from mailnotify.logging import get_logger

from .exceptions import CertificateParseError, CertificateRetrievalError
from .secret_store import SecretStore

logger = get_logger(__name__, component="certificates")

_PEM_CERTIFICATE = re.compile(
    r"-----BEGIN CERTIFICATE-----(.*?)-----END CERTIFICATE-----",
    re.DOTALL,
)


@dataclass(frozen=True)
class CertificateBundle:
    """Ordered intermediate certificates loaded from one secret."""

    secret_id: str
    certificates: Tuple[x509.Certificate, ...]

    def __len__(self) -> int:
        return len(self.certificates)

    def __iter__(self) -> Iterator[x509.Certificate]:
        return iter(self.certificates)

    def subjects(self) -> Tuple[str, ...]:
        """RFC 4514 subject names, for logging."""
        return tuple(cert.subject.rfc4514_string() for cert in self.certificates)


def parse_pem_bundle(pem_text: str, secret_id: str) -> Tuple[x509.Certificate, ...]:
    """Parse every ``CERTIFICATE`` block of a PEM bundle.

    Each block has its delimiters stripped, its remaining lines concatenated
    and base64-decoded, and the resulting DER loaded as an X.509 certificate.

    Args:
        pem_text: PEM text holding one or more certificates
        secret_id: Secret the text came from (used in error messages)

    Returns:
        Certificates in bundle order

    Raises:
        CertificateParseError: If there are no blocks, a block is not valid
            base64, or the decoded bytes are not a certificate
    """
    blocks = _PEM_CERTIFICATE.findall(pem_text)
    if not blocks:
        raise CertificateParseError(
            f"Secret '{secret_id}' does not contain any PEM-encoded certificates",
            secret_id,
        )

    certificates = []
    for index, body in enumerate(blocks, 1):
        encoded = "".join(body.split())
        try:
            der = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CertificateParseError(
                f"Certificate {index} in secret '{secret_id}' is not valid base64: {e}",
                secret_id,
            ) from e

        try:
            certificates.append(x509.load_der_x509_certificate(der))
        except ValueError as e:
            raise CertificateParseError(
                f"Certificate {index} in secret '{secret_id}' could not be loaded: {e}",
                secret_id,
            ) from e

    return tuple(certificates)


class CertificateProvider:
    """Fetches and caches intermediate certificate bundles.

    No retries happen here; callers decide what a failed fetch means.
    """

    def __init__(self, secret_store: SecretStore, cache_enabled: bool = True):
        """Initialize the provider.

        Args:
            secret_store: Store holding the PEM bundles
            cache_enabled: Keep parsed bundles per secret id for the provider lifetime
        """
        self.secret_store = secret_store
        self.cache_enabled = cache_enabled
        self._cache: Dict[str, CertificateBundle] = {}

    def fetch_intermediate_certificates(self, secret_id: str) -> CertificateBundle:
        """Return the intermediate certificates stored under ``secret_id``.

        Raises:
            CertificateRetrievalError: If the store call fails or returns no string
            CertificateParseError: If the payload cannot be parsed
        """
        if self.cache_enabled:
            cached = self._cache.get(secret_id)
            if cached is not None:
                logger.debug(f"Using cached intermediate certificates for secret {secret_id}")
                return cached

        bundle = self._load(secret_id)

        if self.cache_enabled:
            # setdefault keeps the first bundle inserted if two threads race here
            bundle = self._cache.setdefault(secret_id, bundle)

        return bundle

    def clear_cache(self) -> None:
        self._cache.clear()

    def _load(self, secret_id: str) -> CertificateBundle:
        if not secret_id:
            raise CertificateRetrievalError("Secret identifier is empty", secret_id or "")

        logger.debug(
            f"Retrieving intermediate certificates from secret {secret_id}",
            extra={"event": "certificates.fetch.started", "secret_id": secret_id},
        )

        try:
            pem_text = self.secret_store.get_secret_string(secret_id)
        except Exception as e:
            logger.error(
                f"Failed to retrieve certificate secret {secret_id}: {e}",
                extra={"event": "certificates.fetch.failure", "secret_id": secret_id},
            )
            raise CertificateRetrievalError(
                f"Failed to retrieve certificate secret '{secret_id}': {e}",
                secret_id,
            ) from e

        if not isinstance(pem_text, str) or not pem_text.strip():
            raise CertificateRetrievalError(
                f"Secret '{secret_id}' does not contain a string value",
                secret_id,
            )

        try:
            certificates = parse_pem_bundle(pem_text, secret_id)
        except CertificateParseError as e:
            logger.error(
                str(e),
                extra={"event": "certificates.parse.failure", "secret_id": secret_id},
            )
            raise

        bundle = CertificateBundle(secret_id=secret_id, certificates=certificates)
        logger.info(
            f"Loaded {len(bundle)} intermediate certificate(s) from secret {secret_id}",
            extra={
                "event": "certificates.fetch.success",
                "secret_id": secret_id,
                "certificate_count": len(bundle),
            },
        )
        return bundle

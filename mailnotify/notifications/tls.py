"""Per-session TLS configuration and server certificate chain validation.

When custom validation is enabled the handshake itself does not verify the
relay's certificate. Instead a ``ServerCertificateValidator`` built for the
current send receives the leaf certificate after the handshake and builds a
chain through the intermediates fetched from the secret store to a trusted
root. The validator and its SSL context belong to one send call; nothing is
registered process-wide.
"""

import ipaddress
import os
import re
import ssl
from typing import Dict, List, Optional, Sequence, Tuple

import certifi
from cryptography import x509
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

from mailnotify.certificates.provider import CertificateBundle
from mailnotify.logging import get_logger

from .models import ServerCertificateValidationError

logger = get_logger(__name__, component="transport")


_PEM_CERTIFICATE = re.compile(
    rb"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----",
    re.DOTALL,
)


def _read_pem_certificates(path: str) -> List[x509.Certificate]:
    """Load each CERTIFICATE block of a PEM file, skipping blocks that do not parse."""
    with open(path, "rb") as f:
        data = f.read()

    certificates = []
    for index, block in enumerate(_PEM_CERTIFICATE.findall(data), 1):
        try:
            certificates.append(x509.load_pem_x509_certificate(block))
        except ValueError as e:
            logger.warning(
                f"Skipping certificate {index} in {path}: {e}",
                extra={"event": "transport.tls.root_skipped", "path": path},
            )
    return certificates


def load_system_trust_roots() -> Tuple[x509.Certificate, ...]:
    """Load the roots OpenSSL trusts by default.

    Reads the default CA file and every file in the default CA directory
    (both honour ``SSL_CERT_FILE`` and ``SSL_CERT_DIR``). Duplicates are
    dropped, keeping the first occurrence.
    """
    paths = ssl.get_default_verify_paths()
    sources = []
    if paths.cafile:
        sources.append(paths.cafile)
    if paths.capath:
        for name in sorted(os.listdir(paths.capath)):
            candidate = os.path.join(paths.capath, name)
            if os.path.isfile(candidate):
                sources.append(candidate)

    roots: Dict[x509.Certificate, None] = {}
    for source in sources:
        try:
            certificates = _read_pem_certificates(source)
        except OSError as e:
            logger.warning(
                f"Could not read trust store file {source}: {e}",
                extra={"event": "transport.tls.root_unreadable", "path": source},
            )
            continue
        roots.update(dict.fromkeys(certificates))
    return tuple(roots)


def load_trust_roots(path: Optional[str] = None) -> Tuple[x509.Certificate, ...]:
    """Load trusted root certificates.

    Args:
        path: PEM file of roots; the system trust store when None, falling
            back to the certifi bundle if the system store is empty

    Returns:
        Root certificates in load order

    Raises:
        OSError: If path cannot be read
        ValueError: If path holds no usable certificates
    """
    if path:
        roots = tuple(_read_pem_certificates(path))
        if not roots:
            raise ValueError(f"No certificates found in trust roots file {path}")
        return roots

    roots = load_system_trust_roots()
    if roots:
        return roots

    logger.info(
        "System trust store is empty; using the certifi bundle",
        extra={"event": "transport.tls.certifi_fallback"},
    )
    return tuple(_read_pem_certificates(certifi.where()))


def _server_subject(server_hostname: str):
    try:
        return x509.IPAddress(ipaddress.ip_address(server_hostname))
    except ValueError:
        return x509.DNSName(server_hostname)


class ServerCertificateValidator:
    """Validates a relay's certificate against fetched intermediates.

    Holds the pre-fetched ``CertificateBundle`` for the duration of one
    transport session and accepts the server iff a chain can be built from
    the presented leaf, through the bundle, to one of the trust roots.
    """

    def __init__(
        self,
        bundle: CertificateBundle,
        trust_roots: Optional[Sequence[x509.Certificate]] = None,
        trust_roots_file: Optional[str] = None,
    ):
        """Initialize the validator.

        Args:
            bundle: Intermediate certificates offered to the chain builder
            trust_roots: Explicit trusted roots (loaded from trust_roots_file when None)
            trust_roots_file: PEM file of roots (system trust store when None)
        """
        self.bundle = bundle
        self._trust_roots = tuple(trust_roots) if trust_roots is not None else None
        self.trust_roots_file = trust_roots_file

    @property
    def trust_roots(self) -> Tuple[x509.Certificate, ...]:
        if self._trust_roots is None:
            self._trust_roots = load_trust_roots(self.trust_roots_file)
        return self._trust_roots

    def create_ssl_context(self) -> ssl.SSLContext:
        """SSL context for a session whose chain is checked by ``validate``.

        Built-in verification is switched off because it cannot see the
        fetched intermediates; ``validate`` must run before any mail data is
        sent.
        """
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def validate(self, leaf_der: Optional[bytes], server_hostname: str) -> List[x509.Certificate]:
        """Build and verify the chain for a presented leaf certificate.

        Args:
            leaf_der: DER bytes of the server's leaf certificate
            server_hostname: Host the client connected to

        Returns:
            The verified chain, leaf first

        Raises:
            ServerCertificateValidationError: If no chain to a trusted root exists
        """
        if not leaf_der:
            raise ServerCertificateValidationError(
                f"Server {server_hostname} did not present a certificate"
            )

        try:
            leaf = x509.load_der_x509_certificate(leaf_der)
        except ValueError as e:
            raise ServerCertificateValidationError(
                f"Server {server_hostname} presented an unreadable certificate: {e}"
            ) from e

        verifier = (
            PolicyBuilder()
            .store(Store(list(self.trust_roots)))
            .build_server_verifier(_server_subject(server_hostname))
        )

        try:
            chain = verifier.verify(leaf, list(self.bundle.certificates))
        except VerificationError as e:
            logger.warning(
                f"Server certificate chain validation failed for {server_hostname}: {e}",
                extra={
                    "event": "transport.tls.chain_invalid",
                    "server": server_hostname,
                    "leaf_subject": leaf.subject.rfc4514_string(),
                    "chain_status": str(e),
                    "secret_id": self.bundle.secret_id,
                    "intermediate_count": len(self.bundle),
                },
            )
            raise ServerCertificateValidationError(
                f"Server certificate chain validation failed for {server_hostname}: {e}"
            ) from e

        logger.debug(
            f"Server certificate chain validated for {server_hostname} ({len(chain)} certificates)",
            extra={"event": "transport.tls.chain_valid", "server": server_hostname},
        )
        return chain

    def validate_socket(self, sock, server_hostname: str) -> List[x509.Certificate]:
        """Validate the certificate presented on an established TLS socket."""
        leaf_der = sock.getpeercert(binary_form=True) if sock is not None else None
        return self.validate(leaf_der, server_hostname)

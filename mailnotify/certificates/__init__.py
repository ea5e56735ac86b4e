"""Intermediate certificate retrieval for relay chain validation.

- CertificateProvider: fetch + parse + cache PEM bundles by secret id
- SecretsManagerStore / InMemorySecretStore: secret store clients
- CertificateBundle: parsed intermediates for one secret
"""

from .exceptions import CertificateError, CertificateParseError, CertificateRetrievalError
from .provider import CertificateBundle, CertificateProvider, parse_pem_bundle
from .secret_store import InMemorySecretStore, SecretsManagerStore, SecretStore

__all__ = [
    "CertificateProvider",
    "CertificateBundle",
    "parse_pem_bundle",
    "SecretStore",
    "SecretsManagerStore",
    "InMemorySecretStore",
    "CertificateError",
    "CertificateRetrievalError",
    "CertificateParseError",
]

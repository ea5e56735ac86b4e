"""Test helper utilities for Mail Notify tests."""

from .certificates import (
    DEFAULT_HOSTNAME,
    CertificateChain,
    make_ca,
    make_chain,
    make_intermediates,
    make_leaf,
    to_pem,
)
from .specifications import make_specification

__all__ = [
    "DEFAULT_HOSTNAME",
    "CertificateChain",
    "make_ca",
    "make_chain",
    "make_intermediates",
    "make_leaf",
    "make_specification",
    "to_pem",
]

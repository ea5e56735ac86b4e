"""Hashing utilities for template cache keys and content fingerprints.

Template bodies are keyed by the SHA-256 digest of their exact text, so two
notification types sharing one body share one parsed template, and any edit
to a body produces a new key.
"""

import hashlib


def hash_string(value: str) -> str:
    """Compute SHA256 hash of a string value.

    Args:
        value: String to hash (encoded as UTF-8)

    Returns:
        Hexadecimal string representation of SHA256 hash (64 characters)
    """
    return hash_bytes(value.encode("utf-8"))


def hash_bytes(value: bytes) -> str:
    """Compute SHA256 hash of raw bytes.

    Args:
        value: Bytes to hash

    Returns:
        Hexadecimal string representation of SHA256 hash (64 characters)
    """
    hash_obj = hashlib.sha256(value)
    return hash_obj.hexdigest()


def compute_template_key(template_body: str) -> str:
    """Compute the cache key for a template body.

    The body is hashed verbatim (no whitespace normalization): a template whose
    whitespace changes renders differently and must not reuse the old entry.

    Args:
        template_body: Raw template text

    Returns:
        SHA256 hex digest of the body

    Example:
        >>> compute_template_key("<div>{{ Content }}</div>") == compute_template_key("<div>{{ Content }}</div>")
        True
    """
    return hash_string(template_body)

"""Utility functions for hashing and notification identifiers."""

from .hashing import compute_template_key, hash_bytes, hash_string

__all__ = [
    "compute_template_key",
    "hash_bytes",
    "hash_string",
]

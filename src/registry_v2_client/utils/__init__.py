"""Utility functions for Registry API v2 client."""

from .digest import calculate_digest, new_hasher, split_digest, validate_digest, verify_digest

__all__ = [
    "calculate_digest",
    "new_hasher",
    "split_digest",
    "validate_digest",
    "verify_digest",
]

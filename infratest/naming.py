"""Unique identifiers for resources created by concurrent test runs."""

import secrets
import string

BASE62 = string.digits + string.ascii_uppercase + string.ascii_lowercase


def unique_id(length: int = 6) -> str:
    """Return a random base62 identifier."""
    if length < 1:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(BASE62) for _ in range(length))


def unique_name(prefix: str, length: int = 6) -> str:
    """Return ``<prefix>-<id>`` with a lowercase id, safe for most cloud resource names."""
    suffix = unique_id(length).lower()
    return f"{prefix}-{suffix}" if prefix else suffix

"""Parsing of ``s3://bucket/key`` and ``gs://bucket/key`` URIs."""

from __future__ import annotations

from urllib.parse import urlparse

from cloudstore.core.errors import UsageError

SCHEMES = ("s3", "gs")


def parse_uri(uri: str) -> tuple[str, str, str]:
    """Split a storage URI into scheme, bucket and key.

    Args:
        uri: URI such as ``s3://bucket/path/to/key`` (the key may be empty).

    Returns:
        Tuple of (scheme, bucket, key).

    Raises:
        UsageError: If the URI has no supported scheme or no bucket.
    """
    parsed = urlparse(uri)
    if parsed.scheme not in SCHEMES:
        raise UsageError(f"Unsupported URI '{uri}': expected s3://bucket/key or gs://bucket/key")
    if not parsed.netloc:
        raise UsageError(f"URI '{uri}' does not name a bucket")
    return parsed.scheme, parsed.netloc, parsed.path.lstrip("/")


def format_uri(scheme: str, bucket: str, key: str) -> str:
    """Build a storage URI from its parts."""
    return f"{scheme}://{bucket}/{key}"


def is_directory_key(key: str) -> bool:
    """Check if a key denotes a directory (empty or ending in '/')."""
    return key == "" or key.endswith("/")


def strip_trailing_separator(key: str) -> str:
    """Remove a single trailing '/' from a key."""
    return key[:-1] if key.endswith("/") else key

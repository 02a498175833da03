"""Storage backends.

This module provides:
- ObjectBackend: Abstract backend interface
- S3Backend, GCSBackend, MemoryBackend: Implementations
- create_backend: Factory building a backend from ClientConfig
"""

from __future__ import annotations

from cloudstore.backends.base import ObjectBackend
from cloudstore.backends.gcs import GCSBackend
from cloudstore.backends.memory import MemoryBackend
from cloudstore.backends.s3 import S3Backend
from cloudstore.core.config import ClientConfig
from cloudstore.core.errors import UsageError


def create_backend(config: ClientConfig) -> ObjectBackend:
    """Factory function to create a backend from configuration.

    Args:
        config: Client configuration; ``backend`` selects "s3" or "gs".

    Returns:
        Configured ObjectBackend instance.

    Raises:
        UsageError: If the backend type is unknown.
    """
    kwargs = {
        "endpoint_url": config.endpoint_url,
        "access_key": config.access_key,
        "secret_key": config.secret_key,
        "region": config.region,
    }
    if config.backend == "s3":
        return S3Backend(**kwargs)
    if config.backend == "gs":
        return GCSBackend(**kwargs)
    raise UsageError(f"Unknown backend type: {config.backend}")


__all__ = [
    "GCSBackend",
    "MemoryBackend",
    "ObjectBackend",
    "S3Backend",
    "create_backend",
]

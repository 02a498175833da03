"""Configuration classes for cloudstore.

This module defines:
- ClientConfig: Client-wide settings (backend, credentials, pools, retries, chunking)
- TransferOptions: Per-operation options, unset fields fall back to ClientConfig
- RetryPolicy: Explicit retry settings handed to every command
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cloudstore.core.chunking import DEFAULT_CHUNK_SIZE
from cloudstore.core.errors import UsageError

if TYPE_CHECKING:
    from cloudstore.progress import ProgressListenerFactory

# Default retry configuration
DEFAULT_MAX_RETRIES = 50
DEFAULT_METADATA_MAX_RETRIES = 15
DEFAULT_INITIAL_BACKOFF = 0.5  # seconds
DEFAULT_MAX_BACKOFF = 30.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

DEFAULT_INTERNAL_WORKERS = 4

BACKENDS = ("s3", "gs")

_INT_FIELDS = frozenset(
    {"chunk_size", "max_retries", "metadata_max_retries", "api_workers", "internal_workers"}
)


def default_api_workers() -> int:
    """Default size of the network pool: a small multiple of the core count."""
    return max(os.cpu_count() or 4, 2) * 2


def default_key_dir() -> Path:
    """Default directory holding ``<name>.pem`` key pairs."""
    return Path.home() / ".cloudstore" / "keys"


def exponential_backoff(
    initial: float = DEFAULT_INITIAL_BACKOFF,
    maximum: float = DEFAULT_MAX_BACKOFF,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> Callable[[int], float]:
    """Build a backoff hook: delay before retry number ``attempt + 1``.

    Args:
        initial: Delay after the first failure, in seconds.
        maximum: Upper bound for any delay.
        multiplier: Growth factor per attempt.

    Returns:
        Function mapping a zero-based attempt number to a delay in seconds.
    """

    def backoff(attempt: int) -> float:
        return min(initial * (multiplier**attempt), maximum)

    return backoff


def no_backoff(attempt: int) -> float:
    """Backoff hook that retries immediately."""
    return 0.0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings for one command.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        retry_client_errors: Also retry terminal (4xx-style) backend errors.
        backoff: Delay hook, called with the zero-based number of the failed attempt.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    retry_client_errors: bool = False
    backoff: Callable[[int], float] = field(default=exponential_backoff())

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise UsageError(f"max_retries must not be negative, got {self.max_retries}")

    def with_max_retries(self, max_retries: int) -> RetryPolicy:
        """Return a copy with a different attempt limit."""
        return replace(self, max_retries=max_retries)


@dataclass
class ClientConfig:
    """Configuration for a cloudstore client.

    Attributes:
        backend: "s3" or "gs".
        endpoint_url: Custom endpoint URL (MinIO, OVH, GCS interoperability, ...).
        region: Region name.
        access_key: Access key id (None lets boto3 resolve credentials).
        secret_key: Secret access key.
        chunk_size: Chunk size for multipart transfers.
        max_retries: Retry limit for object-level commands.
        metadata_max_retries: Retry limit for listing/existence/pending-upload commands.
        retry_client_errors: Retry terminal (4xx-style) backend errors too.
        api_workers: Size of the network pool.
        internal_workers: Size of the orchestration pool.
        initial_backoff: First retry delay in seconds.
        max_backoff: Maximum retry delay in seconds.
        key_dir: Directory holding encryption keys.
    """

    backend: str = "s3"
    endpoint_url: str | None = None
    region: str | None = None
    access_key: str | None = None
    secret_key: str | None = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_retries: int = DEFAULT_MAX_RETRIES
    metadata_max_retries: int = DEFAULT_METADATA_MAX_RETRIES
    retry_client_errors: bool = False
    api_workers: int = field(default_factory=default_api_workers)
    internal_workers: int = DEFAULT_INTERNAL_WORKERS
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF
    key_dir: Path = field(default_factory=default_key_dir)

    def __post_init__(self) -> None:
        """Normalize and validate settings."""
        self.backend = self.backend.lower()
        if self.backend not in BACKENDS:
            raise UsageError(
                f"Unknown backend '{self.backend}', expected one of {', '.join(BACKENDS)}"
            )
        if self.endpoint_url:
            self.endpoint_url = self.endpoint_url.rstrip("/")
        self.key_dir = Path(self.key_dir).expanduser()
        if self.chunk_size <= 0:
            raise UsageError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.api_workers < 1 or self.internal_workers < 1:
            raise UsageError("Worker pool sizes must be at least 1")
        if self.max_retries < 0 or self.metadata_max_retries < 0:
            raise UsageError("Retry limits must not be negative")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ClientConfig:
        """Create from a config-file or environment mapping.

        Unknown keys are ignored; numeric and boolean strings are converted.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        try:
            for name, value in data.items():
                if name not in known or value is None or value == "":
                    continue
                if name in _INT_FIELDS:
                    value = int(value)
                elif name in ("initial_backoff", "max_backoff"):
                    value = float(value)
                elif name == "retry_client_errors":
                    value = _to_bool(value)
                elif name == "key_dir":
                    value = Path(str(value))
                kwargs[name] = value
            return cls(**kwargs)
        except (TypeError, ValueError) as e:
            raise UsageError(f"Invalid configuration: {e}") from e

    def retry_policy(self) -> RetryPolicy:
        """Default policy for object-level commands."""
        return RetryPolicy(
            max_retries=self.max_retries,
            retry_client_errors=self.retry_client_errors,
            backoff=exponential_backoff(self.initial_backoff, self.max_backoff),
        )

    def metadata_retry_policy(self) -> RetryPolicy:
        """Default policy for listing, existence and pending-upload commands."""
        return self.retry_policy().with_max_retries(self.metadata_max_retries)


@dataclass(frozen=True)
class TransferOptions:
    """Options governing one operation.

    Fields left as None take the client's defaults.

    Attributes:
        recursive: Include the whole subtree (directory operations).
        overwrite: Allow replacing existing local files on download.
        dry_run: Report actions without issuing mutating calls.
        canned_acl: Backend canned ACL applied on write.
        encryption_key_name: Encrypt uploads under this key name.
        chunk_size: Override the client chunk size.
        max_retries: Override the client retry limit.
        retry_client_errors: Override retrying of terminal backend errors.
        progress: Progress listener factory.
    """

    recursive: bool = False
    overwrite: bool = False
    dry_run: bool = False
    canned_acl: str | None = None
    encryption_key_name: str | None = None
    chunk_size: int | None = None
    max_retries: int | None = None
    retry_client_errors: bool | None = None
    progress: ProgressListenerFactory | None = None

    def resolve_retry_policy(self, base: RetryPolicy) -> RetryPolicy:
        """Apply per-operation retry overrides on top of ``base``."""
        policy = base
        if self.max_retries is not None:
            policy = replace(policy, max_retries=self.max_retries)
        if self.retry_client_errors is not None:
            policy = replace(policy, retry_client_errors=self.retry_client_errors)
        return policy

    def resolve_chunk_size(self, default: int) -> int:
        """Effective chunk size for this operation."""
        size = self.chunk_size if self.chunk_size is not None else default
        if size <= 0:
            raise UsageError(f"chunk_size must be positive, got {size}")
        return size


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")

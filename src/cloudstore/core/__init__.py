"""Core module - Shared types, errors, configuration, chunking and crypto."""

from cloudstore.core.chunking import (
    DEFAULT_CHUNK_SIZE,
    MAX_PARTS,
    MIN_CHUNK_SIZE,
    Chunk,
    chunk_count,
    compute_chunks,
    read_chunk,
)
from cloudstore.core.config import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_METADATA_MAX_RETRIES,
    ClientConfig,
    RetryPolicy,
    TransferOptions,
    exponential_backoff,
    no_backoff,
)
from cloudstore.core.errors import (
    BackendError,
    CloudStoreError,
    DecryptionError,
    DestinationExistsError,
    EntryOutcome,
    KeyNotFoundError,
    NotFoundError,
    PartialTreeFailure,
    TerminalBackendError,
    TransientBackendError,
    UsageError,
    is_retryable,
)
from cloudstore.core.types import (
    ListPage,
    ObjectDescriptor,
    ObjectKind,
    PendingUpload,
    StoredObject,
)
from cloudstore.core.uri import format_uri, parse_uri

__all__ = [
    # Chunking
    "DEFAULT_CHUNK_SIZE",
    "MAX_PARTS",
    "MIN_CHUNK_SIZE",
    "Chunk",
    "chunk_count",
    "compute_chunks",
    "read_chunk",
    # Config
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_METADATA_MAX_RETRIES",
    "ClientConfig",
    "RetryPolicy",
    "TransferOptions",
    "exponential_backoff",
    "no_backoff",
    # Errors
    "BackendError",
    "CloudStoreError",
    "DecryptionError",
    "DestinationExistsError",
    "EntryOutcome",
    "KeyNotFoundError",
    "NotFoundError",
    "PartialTreeFailure",
    "TerminalBackendError",
    "TransientBackendError",
    "UsageError",
    "is_retryable",
    # Types
    "ListPage",
    "ObjectDescriptor",
    "ObjectKind",
    "PendingUpload",
    "StoredObject",
    # URIs
    "format_uri",
    "parse_uri",
]

"""cloudstore - Chunked, encrypted, retrying transfers for S3 and GCS."""

from cloudstore.backends import GCSBackend, MemoryBackend, ObjectBackend, S3Backend, create_backend
from cloudstore.client import CloudStoreClient, create_client
from cloudstore.core import (
    BackendError,
    ClientConfig,
    CloudStoreError,
    DecryptionError,
    DestinationExistsError,
    EntryOutcome,
    KeyNotFoundError,
    NotFoundError,
    ObjectDescriptor,
    PartialTreeFailure,
    PendingUpload,
    RetryPolicy,
    StoredObject,
    TerminalBackendError,
    TransferOptions,
    TransientBackendError,
    UsageError,
)
from cloudstore.encryption import EncryptionEngine, EncryptionEnvelope
from cloudstore.executor import CommandExecutor
from cloudstore.keys import DirectoryKeyProvider, InMemoryKeyProvider, KeyProvider
from cloudstore.progress import LoggingProgressListenerFactory, ProgressListenerFactory

__version__ = "0.1.0"

__all__ = [
    # Client
    "CloudStoreClient",
    "create_client",
    "ClientConfig",
    "TransferOptions",
    "RetryPolicy",
    # Backends
    "GCSBackend",
    "MemoryBackend",
    "ObjectBackend",
    "S3Backend",
    "create_backend",
    # Encryption
    "DirectoryKeyProvider",
    "EncryptionEngine",
    "EncryptionEnvelope",
    "InMemoryKeyProvider",
    "KeyProvider",
    # Execution and progress
    "CommandExecutor",
    "LoggingProgressListenerFactory",
    "ProgressListenerFactory",
    # Types
    "ObjectDescriptor",
    "PendingUpload",
    "StoredObject",
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
]

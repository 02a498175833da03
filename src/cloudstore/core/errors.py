"""Error taxonomy for cloudstore.

This module provides:
- CloudStoreError: Base class for every library error
- BackendError and its transient/terminal/not-found subclasses
- Encryption errors (KeyNotFoundError, DecryptionError)
- Orchestration errors (DestinationExistsError, PartialTreeFailure, UsageError)
- is_retryable: Retry classification used by the command executor
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class CloudStoreError(Exception):
    """Base exception for cloudstore errors."""


class UsageError(CloudStoreError):
    """Invalid or incomplete caller configuration, raised before any network call."""


class BackendError(CloudStoreError):
    """Error reported by (or while talking to) a storage backend.

    Attributes:
        code: Provider error code (e.g. "NoSuchKey", "SlowDown").
        status_code: HTTP status code if known.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class TransientBackendError(BackendError):
    """Network or service failure that may succeed when retried."""


class TerminalBackendError(BackendError):
    """Service-reported error that retrying will not fix (e.g. access denied)."""


class NotFoundError(TerminalBackendError):
    """Bucket, object or multipart upload does not exist."""


class KeyNotFoundError(CloudStoreError):
    """Encryption key name does not resolve through the key provider."""

    def __init__(self, key_name: str, detail: str = "") -> None:
        self.key_name = key_name
        message = f"Encryption key not found: {key_name}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DecryptionError(CloudStoreError):
    """Key unwrapping or payload decryption failed (wrong key, corrupt or tampered data)."""


class DestinationExistsError(CloudStoreError):
    """Rename destination already exists; rename never overwrites."""

    def __init__(self, uri: str) -> None:
        self.uri = uri
        super().__init__(f"Cannot overwrite existing destination object '{uri}'")


@dataclass
class EntryOutcome:
    """Outcome of one entry of a directory-level operation.

    Attributes:
        task: The TransferTask that was executed.
        result: Result value if the entry succeeded.
        error: Exception if the entry failed.
    """

    task: Any
    result: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """Check whether this entry succeeded."""
        return self.error is None


class PartialTreeFailure(CloudStoreError):
    """One or more entries of a directory-level operation failed.

    Sibling entries were allowed to finish; ``outcomes`` lists every entry so
    callers can tell which ones succeeded.
    """

    def __init__(self, description: str, outcomes: list[EntryOutcome]) -> None:
        self.description = description
        self.outcomes = outcomes
        failed = self.failed
        first = failed[0].error if failed else None
        super().__init__(
            f"{len(failed)} of {len(outcomes)} entries failed while {description}"
            + (f": {first}" if first is not None else "")
        )

    @property
    def failed(self) -> list[EntryOutcome]:
        """Entries that failed."""
        return [o for o in self.outcomes if not o.ok]

    @property
    def succeeded(self) -> list[EntryOutcome]:
        """Entries that succeeded."""
        return [o for o in self.outcomes if o.ok]


def is_retryable(error: BaseException, retry_client_errors: bool = False) -> bool:
    """Decide whether a failed command may be attempted again.

    Args:
        error: The exception raised by the command.
        retry_client_errors: Also retry terminal (4xx-style) backend errors.

    Returns:
        True if the command should be rescheduled.
    """
    if isinstance(error, TransientBackendError):
        return True
    if isinstance(error, NotFoundError):
        return False
    if isinstance(error, TerminalBackendError):
        return retry_client_errors
    return False

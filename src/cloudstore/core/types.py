"""Value types shared across cloudstore.

This module defines the remote-entity model used by backends, the transfer
engine and the directory orchestrator. All types are immutable.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType


class ObjectKind(str, Enum):
    """Kind of a listing entry."""

    OBJECT = "object"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class StoredObject:
    """Identity of a remote object.

    Attributes:
        bucket: Bucket name.
        key: Object key.
        version: Backend version id, if the backend reported one.
    """

    bucket: str
    key: str
    version: str | None = None

    def uri(self, scheme: str = "s3") -> str:
        """Format as a ``scheme://bucket/key`` URI."""
        return f"{scheme}://{self.bucket}/{self.key}"


@dataclass(frozen=True)
class ObjectDescriptor:
    """Metadata snapshot of a remote object or listing directory entry.

    Attributes:
        ref: Identity of the object.
        size: Payload size in bytes. For encrypted objects the client reports
            the plaintext length recorded in the envelope.
        etag: Backend content fingerprint.
        last_modified: Last modification timestamp.
        metadata: User metadata (read-only view).
        kind: OBJECT, or DIRECTORY for common-prefix listing entries.
    """

    ref: StoredObject
    size: int = 0
    etag: str | None = None
    last_modified: datetime | None = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    kind: ObjectKind = ObjectKind.OBJECT

    def __post_init__(self) -> None:
        """Freeze the metadata mapping."""
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @property
    def bucket(self) -> str:
        """Bucket of the described object."""
        return self.ref.bucket

    @property
    def key(self) -> str:
        """Key of the described object."""
        return self.ref.key

    @property
    def is_directory(self) -> bool:
        """Check if this entry is a common-prefix ("directory") entry."""
        return self.kind == ObjectKind.DIRECTORY

    @classmethod
    def directory(cls, bucket: str, prefix: str) -> ObjectDescriptor:
        """Create a directory entry for a common prefix."""
        return cls(ref=StoredObject(bucket, prefix), kind=ObjectKind.DIRECTORY)


@dataclass(frozen=True)
class ListPage:
    """One page of a backend listing.

    Attributes:
        objects: Object entries on this page.
        prefixes: Common prefixes on this page (delimited listings only).
        next_token: Continuation token, None on the last page.
    """

    objects: tuple[ObjectDescriptor, ...] = ()
    prefixes: tuple[str, ...] = ()
    next_token: str | None = None

    @property
    def is_truncated(self) -> bool:
        """Check whether more pages follow."""
        return self.next_token is not None


@dataclass(frozen=True)
class PendingUpload:
    """An initiated, not yet completed multipart upload.

    Attributes:
        bucket: Bucket name.
        key: Object key being uploaded.
        upload_id: Backend multipart session id.
        initiated: When the session was created.
    """

    bucket: str
    key: str
    upload_id: str
    initiated: datetime | None = None

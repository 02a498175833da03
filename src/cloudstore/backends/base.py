"""Object storage backend interface.

This module provides:
- ObjectBackend: Abstract capability set used by the transfer engine and
  orchestrators (metadata, single and multipart writes, ranged reads, copy,
  delete, paginated listing, pending multipart uploads)
- S3_CANNED_ACLS: Canned ACL names shared by S3-style backends
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping

from cloudstore.core.chunking import MIN_CHUNK_SIZE
from cloudstore.core.errors import UsageError
from cloudstore.core.types import ListPage, ObjectDescriptor, PendingUpload

S3_CANNED_ACLS = (
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
    "aws-exec-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
)


class ObjectBackend(ABC):
    """Abstract interface to an object store.

    Every method either returns its documented value or raises a
    ``BackendError`` subclass: ``TransientBackendError`` for failures worth
    retrying, ``NotFoundError`` for missing buckets/objects/uploads and
    ``TerminalBackendError`` for everything else.
    """

    scheme: str = "s3"
    min_part_size: int = MIN_CHUNK_SIZE
    canned_acls: tuple[str, ...] = S3_CANNED_ACLS
    default_canned_acl: str = "bucket-owner-full-control"
    supports_metadata_update: bool = False
    supports_pending_uploads: bool = True

    def resolve_canned_acl(self, canned_acl: str | None) -> str:
        """Return ``canned_acl`` or the default, validated for this backend.

        Raises:
            UsageError: If the ACL is not one of ``canned_acls``.
        """
        acl = canned_acl or self.default_canned_acl
        if acl not in self.canned_acls:
            raise UsageError(
                f"Unknown canned ACL '{acl}', choose one of: {', '.join(self.canned_acls)}"
            )
        return acl

    def uri(self, bucket: str, key: str) -> str:
        """Format a URI for display."""
        return f"{self.scheme}://{bucket}/{key}"

    # Metadata

    @abstractmethod
    def head_object(self, bucket: str, key: str) -> ObjectDescriptor:
        """Fetch metadata of an object.

        Raises:
            NotFoundError: If the object does not exist.
        """

    @abstractmethod
    def update_metadata(
        self, bucket: str, key: str, metadata: Mapping[str, str]
    ) -> ObjectDescriptor:
        """Replace the user metadata of an object without rewriting its payload.

        Only available when ``supports_metadata_update`` is set.
        """

    # Writes

    @abstractmethod
    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Mapping[str, str] | None = None,
        canned_acl: str | None = None,
    ) -> ObjectDescriptor:
        """Store ``data`` as a single-request object."""

    @abstractmethod
    def initiate_multipart(
        self,
        bucket: str,
        key: str,
        metadata: Mapping[str, str] | None = None,
        canned_acl: str | None = None,
    ) -> str:
        """Open a multipart session and return its upload id."""

    @abstractmethod
    def upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> str:
        """Upload one part (1-based ``part_number``) and return its ETag."""

    @abstractmethod
    def complete_multipart(
        self, bucket: str, key: str, upload_id: str, parts: list[tuple[int, str]]
    ) -> ObjectDescriptor:
        """Compose the object from ``(part_number, etag)`` pairs in order.

        Raises:
            NotFoundError: If the session does not exist (including when it
                was already completed).
        """

    @abstractmethod
    def abort_multipart(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart session. Aborting an unknown session is not an error."""

    @abstractmethod
    def copy_object(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        canned_acl: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> ObjectDescriptor:
        """Server-side copy. ``metadata`` replaces the source metadata when given."""

    @abstractmethod
    def delete_object(self, bucket: str, key: str) -> None:
        """Delete an object."""

    # Reads

    @abstractmethod
    def get_object(
        self,
        bucket: str,
        key: str,
        byte_range: tuple[int, int] | None = None,
        if_match: str | None = None,
    ) -> bytes:
        """Read an object or the inclusive ``byte_range`` of it.

        Args:
            bucket: Bucket name.
            key: Object key.
            byte_range: Inclusive ``(start, end)`` offsets.
            if_match: Fail unless the object's ETag still matches.
        """

    @abstractmethod
    def list_objects(
        self,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ListPage:
        """Return one page of a listing."""

    @abstractmethod
    def list_multipart_uploads(self, bucket: str, prefix: str = "") -> list[PendingUpload]:
        """List multipart sessions not yet completed or aborted."""

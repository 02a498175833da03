"""In-process backend for development and testing.

This module provides:
- MemoryBackend: Thread-safe ObjectBackend holding buckets in memory, with
  S3-style ETags and multipart validation, a configurable listing page size
  and minimum part size, and failure injection
"""

from __future__ import annotations

import hashlib
import itertools
import threading
import uuid
from bisect import bisect_right
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from cloudstore.backends.base import ObjectBackend
from cloudstore.core.chunking import MIN_CHUNK_SIZE
from cloudstore.core.errors import BackendError, NotFoundError, TerminalBackendError
from cloudstore.core.types import ListPage, ObjectDescriptor, PendingUpload, StoredObject

DEFAULT_PAGE_SIZE = 1000


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _md5(data: bytes) -> str:
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


@dataclass
class _Entry:
    data: bytes
    etag: str
    metadata: dict[str, str]
    acl: str
    version: str
    last_modified: datetime = field(default_factory=_now)


@dataclass
class _Session:
    bucket: str
    key: str
    metadata: dict[str, str]
    acl: str
    initiated: datetime = field(default_factory=_now)
    parts: dict[int, tuple[str, bytes]] = field(default_factory=dict)


@dataclass
class _FailureRule:
    operation: str
    error: BackendError | Callable[[], Exception]
    remaining: int | None
    key: str | None

    def matches(self, operation: str, key: str) -> bool:
        return self.operation == operation and (self.key is None or self.key == key)

    def build(self) -> Exception:
        if isinstance(self.error, BaseException):
            return self.error
        return self.error()


class MemoryBackend(ObjectBackend):
    """Object store kept in dictionaries.

    Every call is recorded in ``calls`` as ``(operation, key)`` so tests can
    assert which requests an operation issued.

    Usage:
        backend = MemoryBackend(page_size=1)
        backend.create_bucket("bucket")
        backend.inject_failure("upload_part", TransientBackendError("boom"), count=2)
    """

    scheme = "s3"
    supports_metadata_update = True

    def __init__(
        self,
        page_size: int = DEFAULT_PAGE_SIZE,
        min_part_size: int = MIN_CHUNK_SIZE,
        scheme: str = "s3",
    ) -> None:
        self.page_size = page_size
        self.min_part_size = min_part_size
        self.scheme = scheme
        self.calls: list[tuple[str, str]] = []
        self._buckets: dict[str, dict[str, _Entry]] = {}
        self._sessions: dict[str, _Session] = {}
        self._failures: list[_FailureRule] = []
        self._versions = itertools.count(1)
        self._lock = threading.RLock()

    # Test helpers

    def create_bucket(self, bucket: str) -> None:
        """Create an empty bucket (no-op if it exists)."""
        with self._lock:
            self._buckets.setdefault(bucket, {})

    def inject_failure(
        self,
        operation: str,
        error: BackendError | Callable[[], Exception],
        count: int | None = 1,
        key: str | None = None,
    ) -> None:
        """Make the next ``count`` calls of ``operation`` fail.

        Args:
            operation: Method name, e.g. "upload_part" or "get_object".
            error: Exception instance, or factory building a fresh one per call.
            count: Number of failing calls, None for every call.
            key: Only fail calls for this key.
        """
        with self._lock:
            self._failures.append(_FailureRule(operation, error, count, key))

    def clear_failures(self) -> None:
        """Remove all injected failures."""
        with self._lock:
            self._failures.clear()

    def count_calls(self, operation: str) -> int:
        """Number of recorded calls of ``operation``."""
        with self._lock:
            return sum(1 for op, _ in self.calls if op == operation)

    def object_acl(self, bucket: str, key: str) -> str:
        """Canned ACL the object was written with."""
        with self._lock:
            return self._entry(bucket, key).acl

    def keys(self, bucket: str) -> list[str]:
        """All keys of ``bucket`` in order."""
        with self._lock:
            return sorted(self._bucket(bucket))

    def _record(self, operation: str, key: str) -> None:
        with self._lock:
            self.calls.append((operation, key))
            for rule in self._failures:
                if rule.matches(operation, key):
                    if rule.remaining is not None:
                        rule.remaining -= 1
                        if rule.remaining <= 0:
                            self._failures.remove(rule)
                    raise rule.build()

    def _bucket(self, bucket: str) -> dict[str, _Entry]:
        if bucket not in self._buckets:
            raise NotFoundError(f"Bucket not found: {bucket}", code="NoSuchBucket", status_code=404)
        return self._buckets[bucket]

    def _entry(self, bucket: str, key: str) -> _Entry:
        entry = self._bucket(bucket).get(key)
        if entry is None:
            raise NotFoundError(
                f"Object not found: {self.uri(bucket, key)}", code="NoSuchKey", status_code=404
            )
        return entry

    def _describe(self, bucket: str, key: str, entry: _Entry) -> ObjectDescriptor:
        return ObjectDescriptor(
            ref=StoredObject(bucket, key, entry.version),
            size=len(entry.data),
            etag=entry.etag,
            last_modified=entry.last_modified,
            metadata=entry.metadata,
        )

    def _store(
        self, bucket: str, key: str, data: bytes, etag: str, metadata: Mapping[str, str], acl: str
    ) -> ObjectDescriptor:
        entry = _Entry(
            data=data,
            etag=etag,
            metadata=dict(metadata),
            acl=acl,
            version=str(next(self._versions)),
        )
        self._bucket(bucket)[key] = entry
        return self._describe(bucket, key, entry)

    # Metadata

    def head_object(self, bucket: str, key: str) -> ObjectDescriptor:
        self._record("head_object", key)
        with self._lock:
            return self._describe(bucket, key, self._entry(bucket, key))

    def update_metadata(
        self, bucket: str, key: str, metadata: Mapping[str, str]
    ) -> ObjectDescriptor:
        self._record("update_metadata", key)
        with self._lock:
            entry = self._entry(bucket, key)
            entry.metadata = dict(metadata)
            entry.last_modified = _now()
            return self._describe(bucket, key, entry)

    # Writes

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Mapping[str, str] | None = None,
        canned_acl: str | None = None,
    ) -> ObjectDescriptor:
        acl = self.resolve_canned_acl(canned_acl)
        self._record("put_object", key)
        with self._lock:
            return self._store(bucket, key, bytes(data), f'"{_md5(data)}"', metadata or {}, acl)

    def initiate_multipart(
        self,
        bucket: str,
        key: str,
        metadata: Mapping[str, str] | None = None,
        canned_acl: str | None = None,
    ) -> str:
        acl = self.resolve_canned_acl(canned_acl)
        self._record("initiate_multipart", key)
        with self._lock:
            self._bucket(bucket)
            upload_id = uuid.uuid4().hex
            self._sessions[upload_id] = _Session(bucket, key, dict(metadata or {}), acl)
            return upload_id

    def _session(self, bucket: str, key: str, upload_id: str) -> _Session:
        session = self._sessions.get(upload_id)
        if session is None or session.bucket != bucket or session.key != key:
            raise NotFoundError(
                f"Multipart upload not found: {upload_id}", code="NoSuchUpload", status_code=404
            )
        return session

    def upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> str:
        self._record("upload_part", key)
        with self._lock:
            session = self._session(bucket, key, upload_id)
            etag = f'"{_md5(data)}"'
            session.parts[part_number] = (etag, bytes(data))
            return etag

    def complete_multipart(
        self, bucket: str, key: str, upload_id: str, parts: list[tuple[int, str]]
    ) -> ObjectDescriptor:
        self._record("complete_multipart", key)
        with self._lock:
            session = self._session(bucket, key, upload_id)
            numbers = [n for n, _ in parts]
            if not parts or numbers != sorted(set(numbers)):
                raise TerminalBackendError(
                    "Parts must be listed in ascending order",
                    code="InvalidPartOrder",
                    status_code=400,
                )

            payload = []
            for position, (number, etag) in enumerate(parts):
                stored = session.parts.get(number)
                if stored is None or stored[0] != etag:
                    raise TerminalBackendError(
                        f"Part {number} is missing or its ETag does not match",
                        code="InvalidPart",
                        status_code=400,
                    )
                if position < len(parts) - 1 and len(stored[1]) < self.min_part_size:
                    raise TerminalBackendError(
                        f"Part {number} is smaller than {self.min_part_size} bytes",
                        code="EntityTooSmall",
                        status_code=400,
                    )
                payload.append(stored[1])

            digests = b"".join(bytes.fromhex(etag.strip('"')) for _, etag in parts)
            etag = f'"{_md5(digests)}-{len(parts)}"'
            del self._sessions[upload_id]
            return self._store(bucket, key, b"".join(payload), etag, session.metadata, session.acl)

    def abort_multipart(self, bucket: str, key: str, upload_id: str) -> None:
        self._record("abort_multipart", key)
        with self._lock:
            self._sessions.pop(upload_id, None)

    def copy_object(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        canned_acl: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> ObjectDescriptor:
        acl = self.resolve_canned_acl(canned_acl)
        self._record("copy_object", dst_key)
        with self._lock:
            source = self._entry(src_bucket, src_key)
            new_metadata = source.metadata if metadata is None else metadata
            return self._store(
                dst_bucket, dst_key, source.data, f'"{_md5(source.data)}"', new_metadata, acl
            )

    def delete_object(self, bucket: str, key: str) -> None:
        self._record("delete_object", key)
        with self._lock:
            self._bucket(bucket).pop(key, None)

    # Reads

    def get_object(
        self,
        bucket: str,
        key: str,
        byte_range: tuple[int, int] | None = None,
        if_match: str | None = None,
    ) -> bytes:
        self._record("get_object", key)
        with self._lock:
            entry = self._entry(bucket, key)
            if if_match is not None and if_match != entry.etag:
                raise TerminalBackendError(
                    f"ETag of {self.uri(bucket, key)} changed",
                    code="PreconditionFailed",
                    status_code=412,
                )
            if byte_range is None:
                return entry.data
            start, end = byte_range
            if start >= len(entry.data) or start > end:
                raise TerminalBackendError(
                    f"Invalid range {start}-{end}", code="InvalidRange", status_code=416
                )
            return entry.data[start : end + 1]

    def list_objects(
        self,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ListPage:
        self._record("list_objects", prefix)
        with self._lock:
            contents = self._bucket(bucket)
            names: dict[str, str | None] = {}
            for key in sorted(k for k in contents if k.startswith(prefix)):
                rest = key[len(prefix) :]
                if delimiter and delimiter in rest:
                    common = prefix + rest[: rest.index(delimiter) + len(delimiter)]
                    names[common] = None
                else:
                    names[key] = key

            ordered = sorted(names)
            start = bisect_right(ordered, continuation_token) if continuation_token else 0
            limit = min(max_keys or self.page_size, self.page_size)
            window = ordered[start : start + limit]

            objects = tuple(
                self._describe(bucket, name, contents[name])
                for name in window
                if names[name] is not None
            )
            prefixes = tuple(name for name in window if names[name] is None)
            truncated = start + limit < len(ordered)
            return ListPage(
                objects=objects,
                prefixes=prefixes,
                next_token=window[-1] if truncated and window else None,
            )

    def list_multipart_uploads(self, bucket: str, prefix: str = "") -> list[PendingUpload]:
        self._record("list_multipart_uploads", prefix)
        with self._lock:
            self._bucket(bucket)
            return [
                PendingUpload(s.bucket, s.key, upload_id, s.initiated)
                for upload_id, s in sorted(self._sessions.items(), key=lambda i: i[1].initiated)
                if s.bucket == bucket and s.key.startswith(prefix)
            ]

"""Chunked, optionally encrypted uploads.

This module provides:
- ChunkedUploader: Uploads a local file as one object, in parallel parts
- MultipartSession: State of one multipart upload
- UploadState: Lifecycle of a multipart upload

Small files take a single-request fast path. Larger files are split into
fixed-size chunks, each uploaded as an independent retried command; the
session is completed once every part succeeded, and aborted otherwise.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from dataclasses import replace
from enum import Enum, auto
from functools import partial
from pathlib import Path

from cloudstore.backends.base import ObjectBackend
from cloudstore.core.chunking import MAX_PARTS, Chunk, compute_chunks, read_chunk
from cloudstore.core.config import RetryPolicy, TransferOptions
from cloudstore.core.errors import CloudStoreError, NotFoundError, UsageError
from cloudstore.core.types import ObjectDescriptor
from cloudstore.encryption import EncryptionEngine
from cloudstore.executor import CommandExecutor
from cloudstore.futures import all_settled, catching, immediate, transform
from cloudstore.progress import ProgressTracker

logger = logging.getLogger(__name__)


class UploadState(Enum):
    """State of a multipart upload."""

    INITIATED = auto()
    PARTS_IN_FLIGHT = auto()
    ASSEMBLING = auto()
    COMPLETED = auto()
    ABORTED = auto()


class PartSkippedError(CloudStoreError):
    """A queued part was not sent because a sibling part already failed."""


class MultipartSession:
    """One multipart upload: its id, part fingerprints and state.

    Attributes:
        bucket: Destination bucket.
        key: Destination key.
        upload_id: Backend session id, set once initiated.
        state: Current UploadState.
    """

    def __init__(self, backend: ObjectBackend, bucket: str, key: str, total_parts: int) -> None:
        self.backend = backend
        self.bucket = bucket
        self.key = key
        self.total_parts = total_parts
        self.upload_id: str | None = None
        self.state = UploadState.INITIATED
        self.failed = threading.Event()
        self._etags: dict[int, str] = {}
        self._lock = threading.Lock()

    @property
    def uri(self) -> str:
        """Destination URI."""
        return self.backend.uri(self.bucket, self.key)

    @property
    def active_upload_id(self) -> str:
        """Backend session id.

        Raises:
            UsageError: If the session was never initiated.
        """
        if self.upload_id is None:
            raise UsageError(f"Multipart upload of {self.uri} was not initiated")
        return self.upload_id

    def record_part(self, part_number: int, etag: str) -> None:
        """Store the fingerprint of an uploaded part."""
        with self._lock:
            self._etags[part_number] = etag

    def parts(self) -> list[tuple[int, str]]:
        """Uploaded parts ordered by part number."""
        with self._lock:
            return sorted(self._etags.items())

    def complete(self, attempt: int) -> ObjectDescriptor:
        """Compose the object from the uploaded parts.

        A retried completion that finds the session gone checks whether the
        previous attempt already completed it instead of failing.
        """
        upload_id = self.active_upload_id
        try:
            return self.backend.complete_multipart(
                self.bucket, self.key, upload_id, self.parts()
            )
        except NotFoundError:
            if attempt == 0:
                raise
            logger.info(f"Multipart upload {self.upload_id} was already completed for {self.uri}")
            return self.backend.head_object(self.bucket, self.key)

    def abort(self) -> None:
        """Abort the backend session. Safe to call more than once."""
        with self._lock:
            if self.state == UploadState.COMPLETED or self.upload_id is None:
                return
            self.state = UploadState.ABORTED
        self.backend.abort_multipart(self.bucket, self.key, self.upload_id)
        logger.info(f"Aborted multipart upload {self.upload_id} for {self.uri}")


class ChunkedUploader:
    """Uploads local files through the command executor."""

    def __init__(
        self,
        backend: ObjectBackend,
        executor: CommandExecutor,
        encryption: EncryptionEngine,
        chunk_size: int,
        policy: RetryPolicy,
    ) -> None:
        """Initialize the uploader.

        Args:
            backend: Destination backend.
            executor: Executor running every backend call.
            encryption: Engine used when an encryption key name is given.
            chunk_size: Default chunk size.
            policy: Default retry policy for object-level commands.
        """
        self._backend = backend
        self._executor = executor
        self._encryption = encryption
        self._chunk_size = chunk_size
        self._policy = policy

    def upload(
        self,
        path: Path,
        bucket: str,
        key: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Upload ``path`` to ``bucket/key``.

        Validation and key resolution happen before any network call and
        raise directly.

        Args:
            path: Local file.
            bucket: Destination bucket.
            key: Destination key.
            options: Transfer options.

        Returns:
            Future of the ObjectDescriptor of the stored object (None in
            dry-run mode).

        Raises:
            UsageError: If the file is unreadable or the chunking is invalid.
            KeyNotFoundError: If the encryption key name does not resolve.
        """
        options = options or TransferOptions()
        path = Path(path)
        uri = self._backend.uri(bucket, key)
        if not path.is_file():
            raise UsageError(f"Not a file: {path}")

        length = path.stat().st_size
        chunk_size = options.resolve_chunk_size(self._chunk_size)
        chunks = compute_chunks(length, chunk_size)
        acl = self._backend.resolve_canned_acl(options.canned_acl)
        policy = options.resolve_retry_policy(self._policy)

        object_key = None
        metadata: dict[str, str] = {}
        if options.encryption_key_name:
            object_key, envelope = self._encryption.new_envelope(
                options.encryption_key_name, chunk_size, length
            )
            metadata = envelope.to_metadata()

        if len(chunks) > 1:
            if chunk_size < self._backend.min_part_size:
                raise UsageError(
                    f"Chunk size {chunk_size} is below the backend minimum part size "
                    f"{self._backend.min_part_size}"
                )
            if len(chunks) > MAX_PARTS:
                raise UsageError(
                    f"{path} needs {len(chunks)} parts with chunk size {chunk_size}, "
                    f"more than the maximum of {MAX_PARTS}"
                )

        if options.dry_run:
            logger.info(f"<DRYRUN> uploading '{path}' to '{uri}'")
            return immediate(None)

        logger.info(f"Uploading {path} to {uri} ({length} bytes, {max(len(chunks), 1)} chunks)")
        tracker = ProgressTracker.create(options.progress, f"upload {uri}", length)

        if len(chunks) <= 1:
            future = self._put_single(path, bucket, key, object_key, metadata, acl, policy, tracker)
        else:
            future = self._put_multipart(
                path, bucket, key, chunks, object_key, metadata, acl, policy, tracker
            )

        def finished(descriptor: ObjectDescriptor) -> ObjectDescriptor:
            logger.info(f"Uploaded {path} to {uri}")
            if object_key is not None:
                return replace(descriptor, size=length)
            return descriptor

        return transform(future, finished, self._executor.internal)

    def _encode(self, data: bytes, object_key: bytes | None, index: int) -> bytes:
        if object_key is None:
            return data
        return self._encryption.encrypt_chunk(data, object_key, index)

    def _put_single(
        self,
        path: Path,
        bucket: str,
        key: str,
        object_key: bytes | None,
        metadata: dict[str, str],
        acl: str,
        policy: RetryPolicy,
        tracker: ProgressTracker,
    ) -> Future:
        def work() -> ObjectDescriptor:
            plaintext = path.read_bytes()
            # An empty payload has no chunks, so nothing to encrypt.
            payload = self._encode(plaintext, object_key, 0) if plaintext else plaintext
            descriptor = self._backend.put_object(bucket, key, payload, metadata, acl)
            tracker.add(len(plaintext))
            return descriptor

        return self._executor.execute(work, f"upload {self._backend.uri(bucket, key)}", policy)

    def _put_multipart(
        self,
        path: Path,
        bucket: str,
        key: str,
        chunks: list[Chunk],
        object_key: bytes | None,
        metadata: dict[str, str],
        acl: str,
        policy: RetryPolicy,
        tracker: ProgressTracker,
    ) -> Future:
        session = MultipartSession(self._backend, bucket, key, len(chunks))
        internal = self._executor.internal

        initiated = self._executor.execute(
            lambda: self._backend.initiate_multipart(bucket, key, metadata, acl),
            f"initiate multipart upload {session.uri}",
            policy,
        )

        def mark_failed(future: Future) -> None:
            if future.exception() is not None:
                session.failed.set()

        def start_parts(upload_id: str) -> Future:
            session.upload_id = upload_id
            session.state = UploadState.PARTS_IN_FLIGHT
            logger.debug(f"Multipart upload {upload_id} started for {session.uri}")
            futures = []
            for chunk in chunks:
                future = self._executor.execute(
                    partial(self._upload_part, session, path, chunk, object_key, tracker),
                    f"upload part {chunk.part_number}/{len(chunks)} of {session.uri}",
                    policy,
                )
                future.add_done_callback(mark_failed)
                futures.append(future)
            return transform(all_settled(futures), assemble, internal)

        def assemble(futures: list[Future]) -> Future:
            errors = [f.exception() for f in futures if f.exception() is not None]
            if errors:
                primary = next(
                    (e for e in errors if not isinstance(e, PartSkippedError)), errors[0]
                )
                return self._abort(session, primary, policy)

            session.state = UploadState.ASSEMBLING
            completed = self._executor.execute(
                session.complete,
                f"complete multipart upload {session.uri}",
                policy,
                pass_attempt=True,
            )

            def mark_completed(descriptor: ObjectDescriptor) -> ObjectDescriptor:
                session.state = UploadState.COMPLETED
                return descriptor

            return catching(
                transform(completed, mark_completed, internal),
                lambda error: self._abort(session, error, policy),
                internal,
            )

        return transform(initiated, start_parts, internal)

    def _upload_part(
        self,
        session: MultipartSession,
        path: Path,
        chunk: Chunk,
        object_key: bytes | None,
        tracker: ProgressTracker,
    ) -> str:
        if session.failed.is_set():
            raise PartSkippedError(f"Skipped part {chunk.part_number} of {session.uri}")
        upload_id = session.active_upload_id
        data = self._encode(read_chunk(path, chunk), object_key, chunk.index)
        etag = self._backend.upload_part(
            session.bucket, session.key, upload_id, chunk.part_number, data
        )
        session.record_part(chunk.part_number, etag)
        tracker.add(chunk.length)
        logger.debug(f"Uploaded part {chunk.part_number}/{session.total_parts} of {session.uri}")
        return etag

    def _abort(
        self, session: MultipartSession, error: BaseException, policy: RetryPolicy
    ) -> Future:
        """Abort the session, then fail with ``error``."""
        logger.warning(f"Upload of {session.uri} failed, aborting: {error}")
        aborted = self._executor.execute(
            session.abort, f"abort multipart upload {session.uri}", policy
        )

        def reraise(futures: list[Future]) -> None:
            abort_error = futures[0].exception()
            if abort_error is not None:
                logger.warning(f"Could not abort multipart upload of {session.uri}: {abort_error}")
                error.add_note(
                    f"Aborting multipart upload {session.upload_id} also failed: {abort_error}"
                )
            raise error

        return transform(all_settled([aborted]), reraise, self._executor.internal)

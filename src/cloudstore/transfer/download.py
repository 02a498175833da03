"""Chunked, optionally decrypting downloads.

This module provides:
- ChunkedDownloader: Downloads one object with parallel ranged GETs

Chunks are written at their own offsets into a pre-sized ``.tmp`` file,
which is renamed onto the target once every chunk has arrived, so no
partial file is ever left at the target path.
"""

from __future__ import annotations

import contextlib
import logging
import os
from concurrent.futures import Future
from dataclasses import dataclass, replace
from functools import partial
from pathlib import Path

from cloudstore.backends.base import ObjectBackend
from cloudstore.core.chunking import Chunk, compute_chunks
from cloudstore.core.crypto import CHUNK_OVERHEAD
from cloudstore.core.config import RetryPolicy, TransferOptions
from cloudstore.core.errors import DecryptionError, TransientBackendError, UsageError
from cloudstore.core.types import ObjectDescriptor
from cloudstore.encryption import EncryptionEngine, EncryptionEnvelope
from cloudstore.executor import CommandExecutor
from cloudstore.futures import all_settled, immediate, transform
from cloudstore.progress import ProgressTracker

logger = logging.getLogger(__name__)

TMP_SUFFIX = ".tmp"


@dataclass(frozen=True)
class _Plan:
    """What to fetch for one download."""

    descriptor: ObjectDescriptor
    chunks: list[Chunk]
    envelope: EncryptionEnvelope | None
    object_key: bytes | None
    plaintext_length: int

    def stored_range(self, chunk: Chunk) -> tuple[int, int]:
        """Inclusive byte range of ``chunk`` in the stored object."""
        if self.envelope is None:
            return chunk.start, chunk.end
        start = chunk.index * self.envelope.cipher_chunk_size
        return start, start + chunk.length + CHUNK_OVERHEAD - 1


def tmp_path_for(path: Path) -> Path:
    """Temporary path used while downloading to ``path``."""
    return path.with_name(path.name + TMP_SUFFIX)


class ChunkedDownloader:
    """Downloads objects through the command executor."""

    def __init__(
        self,
        backend: ObjectBackend,
        executor: CommandExecutor,
        encryption: EncryptionEngine,
        chunk_size: int,
        policy: RetryPolicy,
    ) -> None:
        """Initialize the downloader.

        Args:
            backend: Source backend.
            executor: Executor running every backend call.
            encryption: Engine used for objects carrying an envelope.
            chunk_size: Ranged GET size for unencrypted objects.
            policy: Default retry policy for object-level commands.
        """
        self._backend = backend
        self._executor = executor
        self._encryption = encryption
        self._chunk_size = chunk_size
        self._policy = policy

    def download(
        self,
        bucket: str,
        key: str,
        path: Path,
        options: TransferOptions | None = None,
    ) -> Future:
        """Download ``bucket/key`` to ``path``.

        Args:
            bucket: Source bucket.
            key: Source key.
            path: Local target file. An existing directory receives the
                object under its base name.
            options: Transfer options.

        Returns:
            Future of the ObjectDescriptor of the downloaded object, with the
            plaintext size (None in dry-run mode).

        Raises:
            UsageError: If the target exists and overwrite is not set.
        """
        options = options or TransferOptions()
        path = Path(path)
        if path.is_dir():
            path = path / key.rsplit("/", 1)[-1]
        if path.exists() and not options.overwrite:
            raise UsageError(f"File '{path}' already exists; use overwrite to replace it")

        uri = self._backend.uri(bucket, key)
        policy = options.resolve_retry_policy(self._policy)
        chunk_size = options.resolve_chunk_size(self._chunk_size)

        if options.dry_run:
            logger.info(f"<DRYRUN> downloading '{uri}' to '{path}'")
            return immediate(None)

        internal = self._executor.internal
        head = self._executor.execute(
            lambda: self._backend.head_object(bucket, key), f"head {uri}", policy
        )

        def plan(descriptor: ObjectDescriptor) -> Future:
            envelope = EncryptionEnvelope.from_metadata(descriptor.metadata)
            if envelope is None:
                chunks = compute_chunks(descriptor.size, chunk_size)
                return immediate(_Plan(descriptor, chunks, None, None, descriptor.size))

            expected = envelope.encrypted_length()
            if descriptor.size != expected:
                raise DecryptionError(
                    f"{uri} holds {descriptor.size} bytes, expected {expected} for its envelope"
                )
            chunks = compute_chunks(envelope.plaintext_length, envelope.chunk_size)

            def with_key(object_key: bytes) -> _Plan:
                return _Plan(descriptor, chunks, envelope, object_key, envelope.plaintext_length)

            if not chunks:
                return immediate(_Plan(descriptor, chunks, envelope, None, 0))
            if not envelope.is_legacy:
                return immediate(with_key(self._encryption.unwrap(envelope)))

            # Legacy keys are identified by trial decryption of the first chunk.
            first = _Plan(descriptor, chunks, envelope, None, envelope.plaintext_length)
            fetched = self._executor.execute(
                lambda: self._backend.get_object(
                    bucket, key, first.stored_range(chunks[0]), descriptor.etag
                ),
                f"get first chunk of {uri}",
                policy,
            )
            return transform(
                fetched,
                lambda data: with_key(self._encryption.unwrap(envelope, data)),
                internal,
            )

        planned = transform(head, plan, internal)
        return transform(
            planned, partial(self._fetch_all, bucket, key, path, policy, options), internal
        )

    def _fetch_all(
        self,
        bucket: str,
        key: str,
        path: Path,
        policy: RetryPolicy,
        options: TransferOptions,
        plan: _Plan,
    ) -> Future:
        uri = self._backend.uri(bucket, key)
        tmp_path = tmp_path_for(path)
        logger.info(
            f"Downloading {uri} to {path} "
            f"({plan.plaintext_length} bytes, {len(plan.chunks)} chunks)"
        )

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "wb") as f:
            f.truncate(plan.plaintext_length)

        tracker = ProgressTracker.create(options.progress, f"download {uri}", plan.plaintext_length)
        futures = [
            self._executor.execute(
                partial(self._fetch_chunk, bucket, key, tmp_path, plan, chunk, tracker),
                f"get chunk {chunk.index + 1}/{len(plan.chunks)} of {uri}",
                policy,
            )
            for chunk in plan.chunks
        ]

        def finish(settled: list[Future]) -> ObjectDescriptor:
            errors = [f.exception() for f in settled if f.exception() is not None]
            if errors:
                with contextlib.suppress(OSError):
                    tmp_path.unlink()
                raise errors[0]
            if options.overwrite and path.exists():
                logger.debug(f"Replacing existing file {path}")
            os.replace(tmp_path, path)
            logger.info(f"Downloaded {uri} to {path}")
            return replace(plan.descriptor, size=plan.plaintext_length)

        return transform(all_settled(futures), finish, self._executor.internal)

    def _fetch_chunk(
        self,
        bucket: str,
        key: str,
        tmp_path: Path,
        plan: _Plan,
        chunk: Chunk,
        tracker: ProgressTracker,
    ) -> int:
        start, end = plan.stored_range(chunk)
        data = self._backend.get_object(bucket, key, (start, end), plan.descriptor.etag)
        if len(data) != end - start + 1:
            raise TransientBackendError(
                f"Short read of {self._backend.uri(bucket, key)} at {start}: "
                f"expected {end - start + 1} bytes, got {len(data)}"
            )
        if plan.object_key is not None:
            data = self._encryption.decrypt_chunk(data, plan.object_key, chunk.index)

        with open(tmp_path, "r+b") as f:
            f.seek(chunk.start)
            f.write(data)
        tracker.add(len(data))
        logger.debug(f"Wrote chunk {chunk.index + 1}/{len(plan.chunks)} to {tmp_path}")
        return len(data)

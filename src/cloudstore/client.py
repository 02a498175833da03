"""Client facade over the transfer engine and orchestrators.

This module provides:
- CloudStoreClient: Every operation of the library, each returning a Future
- create_client: Factory building a client from ClientConfig

Usage:
    with create_client(ClientConfig(backend="s3")) as client:
        client.upload(Path("data.bin"), "bucket", "data.bin").result()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from datetime import datetime
from pathlib import Path

from cloudstore.backends import ObjectBackend, create_backend
from cloudstore.core.config import ClientConfig, TransferOptions
from cloudstore.core.errors import UsageError
from cloudstore.core.types import ObjectDescriptor, PendingUpload, StoredObject
from cloudstore.directory import DirectoryOrchestrator, TransferTask
from cloudstore.encryption import (
    EncryptionEngine,
    EncryptionEnvelope,
    strip_envelope,
    with_plaintext_size,
)
from cloudstore.executor import CommandExecutor
from cloudstore.futures import immediate, transform
from cloudstore.keys import DirectoryKeyProvider, KeyProvider
from cloudstore.rename import RenameOrchestrator
from cloudstore.transfer import ChunkedDownloader, ChunkedUploader

logger = logging.getLogger(__name__)


class CloudStoreClient:
    """Object storage client with chunked, encrypted, retried transfers.

    Every operation returns a ``concurrent.futures.Future``. Invalid
    options are rejected with UsageError before any network call.
    """

    def __init__(
        self,
        backend: ObjectBackend,
        config: ClientConfig | None = None,
        key_provider: KeyProvider | None = None,
        executor: CommandExecutor | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            backend: Storage backend.
            config: Client configuration.
            key_provider: Encryption key source, defaults to the key directory.
            executor: Command executor, created from ``config`` by default.
        """
        self.config = config or ClientConfig()
        self.backend = backend
        self.key_provider = key_provider or DirectoryKeyProvider(self.config.key_dir)
        self.executor = executor or CommandExecutor(
            api_workers=self.config.api_workers,
            internal_workers=self.config.internal_workers,
            default_policy=self.config.retry_policy(),
        )
        self.encryption = EncryptionEngine(self.key_provider)

        policy = self.config.retry_policy()
        self._metadata_policy = self.config.metadata_retry_policy()
        self._uploader = ChunkedUploader(
            backend, self.executor, self.encryption, self.config.chunk_size, policy
        )
        self._downloader = ChunkedDownloader(
            backend, self.executor, self.encryption, self.config.chunk_size, policy
        )
        self._directory = DirectoryOrchestrator(
            backend, self.executor, self._uploader, self._downloader, policy, self._metadata_policy
        )
        self._renamer = RenameOrchestrator(self._directory)

        self._closed = False
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._outstanding: set[Future] = set()

    @property
    def scheme(self) -> str:
        """URI scheme of the backend ("s3" or "gs")."""
        return self.backend.scheme

    def _run(self, start: Callable[[], Future]) -> Future:
        """Start an operation and track it until it completes."""
        with self._lock:
            if self._closed:
                raise UsageError("Client is shut down")
        future = start()
        with self._lock:
            self._outstanding.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._outstanding.discard(future)
            if not self._outstanding:
                self._idle.notify_all()

    # Transfers

    def upload(
        self, path: Path, bucket: str, key: str, options: TransferOptions | None = None
    ) -> Future:
        """Upload a local file; Future of its ObjectDescriptor."""
        return self._run(lambda: self._uploader.upload(Path(path), bucket, key, options))

    def upload_directory(
        self, local_dir: Path, bucket: str, prefix: str, options: TransferOptions | None = None
    ) -> Future:
        """Upload a local directory tree; Future of the list of ObjectDescriptors."""
        return self._run(
            lambda: self._directory.upload_directory(Path(local_dir), bucket, prefix, options)
        )

    def download(
        self, bucket: str, key: str, path: Path, options: TransferOptions | None = None
    ) -> Future:
        """Download an object to a local file; Future of its ObjectDescriptor."""
        return self._run(lambda: self._downloader.download(bucket, key, Path(path), options))

    def download_directory(
        self, bucket: str, prefix: str, local_dir: Path, options: TransferOptions | None = None
    ) -> Future:
        """Download every object under a prefix; Future of the list of ObjectDescriptors."""
        return self._run(
            lambda: self._directory.download_directory(bucket, prefix, Path(local_dir), options)
        )

    # Object and tree operations

    def exists(self, bucket: str, key: str, options: TransferOptions | None = None) -> Future:
        """Future of the ObjectDescriptor of an object, or None if it does not exist."""
        return self._run(lambda: self._directory.exists(bucket, key, options))

    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        recursive: bool = False,
        include_dirs: bool = True,
        options: TransferOptions | None = None,
    ) -> Future:
        """Future of the merged listing of ``prefix``."""
        return self._run(
            lambda: self._directory.list_objects(bucket, prefix, recursive, include_dirs, options)
        )

    def copy(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Server-side copy of one object."""
        return self._run(
            lambda: self._directory.copy(src_bucket, src_key, dst_bucket, dst_key, options)
        )

    def copy_directory(
        self,
        src_bucket: str,
        src_prefix: str,
        dst_bucket: str,
        dst_prefix: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Server-side copy of every object under a prefix."""
        return self._run(
            lambda: self._directory.copy_directory(
                src_bucket, src_prefix, dst_bucket, dst_prefix, options
            )
        )

    def delete(self, bucket: str, key: str, options: TransferOptions | None = None) -> Future:
        """Delete one object."""
        return self._run(lambda: self._directory.delete(bucket, key, options))

    def delete_directory(
        self, bucket: str, prefix: str, options: TransferOptions | None = None
    ) -> Future:
        """Delete every object under a prefix."""
        return self._run(lambda: self._directory.delete_directory(bucket, prefix, options))

    def rename(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Rename one object (copy, then delete the source)."""
        return self._run(
            lambda: self._renamer.rename(src_bucket, src_key, dst_bucket, dst_key, options)
        )

    def rename_directory(
        self,
        src_bucket: str,
        src_prefix: str,
        dst_bucket: str,
        dst_prefix: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Rename a directory tree (copy the tree, then delete the source tree)."""
        return self._run(
            lambda: self._renamer.rename_directory(
                src_bucket, src_prefix, dst_bucket, dst_prefix, options
            )
        )

    # Pending multipart uploads

    def _require_pending_uploads(self) -> None:
        if not self.backend.supports_pending_uploads:
            raise UsageError(
                f"Pending uploads are not supported for {self.scheme}:// storage"
            )

    def list_pending_uploads(
        self, bucket: str, prefix: str = "", options: TransferOptions | None = None
    ) -> Future:
        """Future of the list of PendingUploads under ``prefix``."""
        self._require_pending_uploads()
        options = options or TransferOptions()

        def start() -> Future:
            return self.executor.execute(
                lambda: self.backend.list_multipart_uploads(bucket, prefix),
                f"list pending uploads {self.backend.uri(bucket, prefix)}",
                options.resolve_retry_policy(self._metadata_policy),
            )

        return self._run(start)

    def abort_pending_uploads(
        self,
        bucket: str,
        prefix: str = "",
        upload_id: str | None = None,
        older_than: datetime | None = None,
        options: TransferOptions | None = None,
    ) -> Future:
        """Abort pending uploads under ``prefix``.

        Args:
            bucket: Bucket name.
            prefix: Key prefix.
            upload_id: Only abort this session.
            older_than: Only abort sessions initiated before this time.
            options: Transfer options (dry_run, retries).

        Returns:
            Future of the list of aborted PendingUploads.
        """
        self._require_pending_uploads()
        options = options or TransferOptions()
        policy = options.resolve_retry_policy(self._metadata_policy)

        def selected(upload: PendingUpload) -> bool:
            if upload_id is not None and upload.upload_id != upload_id:
                return False
            if older_than is not None and upload.initiated is not None:
                return upload.initiated < older_than
            return True

        def abort_one(task: TransferTask) -> Future:
            if task.upload_id is None:
                raise UsageError(f"Abort of {task.ref.key} has no upload id")
            pending = PendingUpload(task.ref.bucket, task.ref.key, task.upload_id)
            uri = self.backend.uri(task.ref.bucket, task.ref.key)
            if options.dry_run:
                logger.info(f"<DRYRUN> aborting upload {task.upload_id} of '{uri}'")
                return immediate(None)

            def work() -> PendingUpload:
                self.backend.abort_multipart(pending.bucket, pending.key, pending.upload_id)
                logger.info(f"Aborted upload {pending.upload_id} of {uri}")
                return pending

            return self.executor.execute(work, f"abort upload {task.upload_id} of {uri}", policy)

        def fan_out(uploads: list[PendingUpload]) -> Future:
            tasks = [
                TransferTask(
                    action="abort",
                    ref=StoredObject(u.bucket, u.key),
                    options=options,
                    upload_id=u.upload_id,
                )
                for u in uploads
                if selected(u)
            ]
            return self._directory.run_tasks(
                tasks, abort_one, f"aborting uploads under {self.backend.uri(bucket, prefix)}"
            )

        def start() -> Future:
            listed = self.executor.execute(
                lambda: self.backend.list_multipart_uploads(bucket, prefix),
                f"list pending uploads {self.backend.uri(bucket, prefix)}",
                policy,
            )
            return transform(listed, fan_out, self.executor.internal)

        return self._run(start)

    # Encryption keys

    def add_encryption_key(
        self, bucket: str, key: str, key_name: str, options: TransferOptions | None = None
    ) -> Future:
        """Also wrap an encrypted object's key under ``key_name``.

        Only the metadata envelope is rewritten, never the payload.
        """
        return self._run(
            lambda: self._change_envelope(
                bucket,
                key,
                lambda envelope, first: self.encryption.add_key(envelope, key_name, first),
                f"add key '{key_name}' to",
                options,
            )
        )

    def remove_encryption_key(
        self, bucket: str, key: str, key_name: str, options: TransferOptions | None = None
    ) -> Future:
        """Stop wrapping an encrypted object's key under ``key_name``."""
        return self._run(
            lambda: self._change_envelope(
                bucket,
                key,
                lambda envelope, first: self.encryption.remove_key(envelope, key_name),
                f"remove key '{key_name}' from",
                options,
            )
        )

    def _change_envelope(
        self,
        bucket: str,
        key: str,
        change: Callable[[EncryptionEnvelope, bytes | None], EncryptionEnvelope],
        action: str,
        options: TransferOptions | None,
    ) -> Future:
        options = options or TransferOptions()
        policy = options.resolve_retry_policy(self.config.retry_policy())
        acl = self.backend.resolve_canned_acl(options.canned_acl)
        uri = self.backend.uri(bucket, key)
        internal = self.executor.internal

        head = self.executor.execute(
            lambda: self.backend.head_object(bucket, key), f"head {uri}", policy
        )

        def load(descriptor: ObjectDescriptor) -> Future:
            envelope = EncryptionEnvelope.from_metadata(descriptor.metadata)
            if envelope is None:
                raise UsageError(f"{uri} is not encrypted")
            if not envelope.is_legacy or envelope.plaintext_length == 0:
                return immediate((descriptor, envelope, None))

            end = min(envelope.cipher_chunk_size, descriptor.size) - 1
            fetched = self.executor.execute(
                lambda: self.backend.get_object(bucket, key, (0, end), descriptor.etag),
                f"get first chunk of {uri}",
                policy,
            )
            return transform(fetched, lambda first: (descriptor, envelope, first), internal)

        def rewrite(loaded: tuple) -> Future:
            descriptor, envelope, first = loaded
            updated = change(envelope, first)
            metadata = {**strip_envelope(descriptor.metadata), **updated.to_metadata()}

            if options.dry_run:
                logger.info(f"<DRYRUN> {action} '{uri}'")
                return immediate(None)

            def work() -> ObjectDescriptor:
                if self.backend.supports_metadata_update:
                    return self.backend.update_metadata(bucket, key, metadata)
                # Self-copy with replaced metadata; the payload is not re-uploaded.
                return self.backend.copy_object(bucket, key, bucket, key, acl, metadata)

            def done(result: ObjectDescriptor) -> ObjectDescriptor:
                logger.info(f"Envelope updated: {action} {uri}")
                return with_plaintext_size(result)

            return transform(
                self.executor.execute(work, f"{action} {uri}", policy), done, internal
            )

        return transform(transform(head, load, internal), rewrite, internal)

    # Lifecycle

    def shutdown(self, wait: bool = True) -> None:
        """Reject new operations, wait for running ones, then stop the executor."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if wait:
                while self._outstanding:
                    self._idle.wait()
        self.executor.shutdown(wait=wait)
        logger.debug("Client shut down")

    def __enter__(self) -> CloudStoreClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.shutdown()


def create_client(
    config: ClientConfig | None = None,
    key_provider: KeyProvider | None = None,
    backend: ObjectBackend | None = None,
) -> CloudStoreClient:
    """Factory function to create a client from configuration.

    Args:
        config: Client configuration (defaults apply when omitted).
        key_provider: Encryption key source, defaults to ``config.key_dir``.
        backend: Backend override, otherwise built from ``config``.

    Returns:
        Configured CloudStoreClient.
    """
    config = config or ClientConfig()
    return CloudStoreClient(
        backend or create_backend(config), config=config, key_provider=key_provider
    )

"""Directory-level operations composed from single-object operations.

This module provides:
- TransferTask: One matched entry of a directory operation
- DirectoryOrchestrator: Listing, single-object copy/delete/exists and the
  tree operations (upload, download, copy, delete) fanned out over a listing

Tree operations let every entry finish, then fail with PartialTreeFailure
if any entry failed. Concurrency is bounded by the executor's network pool.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path

from cloudstore.backends.base import ObjectBackend
from cloudstore.core.config import RetryPolicy, TransferOptions
from cloudstore.core.errors import EntryOutcome, NotFoundError, PartialTreeFailure, UsageError
from cloudstore.core.types import ObjectDescriptor, StoredObject
from cloudstore.core.uri import is_directory_key
from cloudstore.encryption import with_plaintext_size
from cloudstore.executor import CommandExecutor
from cloudstore.futures import all_settled, immediate, immediate_failure, outcome, transform
from cloudstore.transfer import ChunkedDownloader, ChunkedUploader

logger = logging.getLogger(__name__)

DELIMITER = "/"


@dataclass(frozen=True)
class TransferTask:
    """Unit of work of a directory operation.

    Attributes:
        action: Operation name ("upload", "download", "copy", "delete").
        ref: Remote object the action applies to (destination for uploads).
        options: Options governing the action.
        local_path: Local file for uploads and downloads.
        destination: Destination object for copies.
        upload_id: Multipart session for pending-upload aborts.
    """

    action: str
    ref: StoredObject
    options: TransferOptions
    local_path: Path | None = None
    destination: StoredObject | None = None
    upload_id: str | None = None


def as_directory(prefix: str) -> str:
    """Normalize a non-empty prefix to end with the delimiter."""
    if prefix and not prefix.endswith(DELIMITER):
        return prefix + DELIMITER
    return prefix


def basename(key: str) -> str:
    """Last path segment of a key."""
    return key.rstrip(DELIMITER).rsplit(DELIMITER, 1)[-1]


class DirectoryOrchestrator:
    """Runs single-object and tree operations against one backend."""

    def __init__(
        self,
        backend: ObjectBackend,
        executor: CommandExecutor,
        uploader: ChunkedUploader,
        downloader: ChunkedDownloader,
        policy: RetryPolicy,
        metadata_policy: RetryPolicy,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            backend: Storage backend.
            executor: Executor running every backend call.
            uploader: Engine for file uploads.
            downloader: Engine for file downloads.
            policy: Retry policy for object-level commands.
            metadata_policy: Retry policy for listing and existence checks.
        """
        self._backend = backend
        self._executor = executor
        self._uploader = uploader
        self._downloader = downloader
        self._policy = policy
        self._metadata_policy = metadata_policy

    @property
    def backend(self) -> ObjectBackend:
        """Storage backend."""
        return self._backend

    @property
    def executor(self) -> CommandExecutor:
        """Executor running every backend call."""
        return self._executor

    def _metadata_policy_for(self, options: TransferOptions) -> RetryPolicy:
        return options.resolve_retry_policy(self._metadata_policy)

    # Listing and metadata

    def list_objects(
        self,
        bucket: str,
        prefix: str,
        recursive: bool = False,
        include_dirs: bool = True,
        options: TransferOptions | None = None,
    ) -> Future:
        """List entries under ``prefix``, merging every page.

        The whole continuation-token loop runs inside one command, so a
        failure on any page retries the listing from the start.

        Args:
            bucket: Bucket name.
            prefix: Key prefix.
            recursive: List the whole subtree instead of one level.
            include_dirs: Include common-prefix directory entries
                (non-recursive listings only).
            options: Retry overrides.

        Returns:
            Future of the ObjectDescriptor list, ordered by key.
        """
        options = options or TransferOptions()
        delimiter = None if recursive else DELIMITER
        uri = self._backend.uri(bucket, prefix)

        def work() -> list[ObjectDescriptor]:
            entries: list[ObjectDescriptor] = []
            token = None
            pages = 0
            while True:
                page = self._backend.list_objects(
                    bucket, prefix, delimiter=delimiter, continuation_token=token
                )
                pages += 1
                entries.extend(page.objects)
                if include_dirs:
                    entries.extend(ObjectDescriptor.directory(bucket, p) for p in page.prefixes)
                if not page.is_truncated:
                    break
                token = page.next_token
            logger.debug(f"Listed {len(entries)} entries under {uri} in {pages} pages")
            return sorted(entries, key=lambda d: d.key)

        return self._executor.execute(work, f"list {uri}", self._metadata_policy_for(options))

    def exists(self, bucket: str, key: str, options: TransferOptions | None = None) -> Future:
        """Future of the ObjectDescriptor of ``bucket/key``, or None if absent."""
        options = options or TransferOptions()

        def work() -> ObjectDescriptor | None:
            try:
                return with_plaintext_size(self._backend.head_object(bucket, key))
            except NotFoundError:
                return None

        return self._executor.execute(
            work, f"exists {self._backend.uri(bucket, key)}", self._metadata_policy_for(options)
        )

    def has_objects(
        self, bucket: str, prefix: str, options: TransferOptions | None = None
    ) -> Future:
        """Future of True if at least one object exists under ``prefix``."""
        options = options or TransferOptions()

        def work() -> bool:
            page = self._backend.list_objects(bucket, prefix, max_keys=1)
            return bool(page.objects)

        return self._executor.execute(
            work, f"check {self._backend.uri(bucket, prefix)}", self._metadata_policy_for(options)
        )

    # Single-object operations

    def copy(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Server-side copy of one object.

        A destination key ending in "/" receives the source's base name.

        Returns:
            Future of the destination ObjectDescriptor (None in dry-run mode).
        """
        options = options or TransferOptions()
        if is_directory_key(dst_key):
            dst_key = dst_key + basename(src_key)
        acl = self._backend.resolve_canned_acl(options.canned_acl)
        src_uri = self._backend.uri(src_bucket, src_key)
        dst_uri = self._backend.uri(dst_bucket, dst_key)

        if options.dry_run:
            logger.info(f"<DRYRUN> copying '{src_uri}' to '{dst_uri}'")
            return immediate(None)

        def work() -> ObjectDescriptor:
            descriptor = self._backend.copy_object(src_bucket, src_key, dst_bucket, dst_key, acl)
            logger.info(f"Copied {src_uri} to {dst_uri}")
            return with_plaintext_size(descriptor)

        return self._executor.execute(
            work, f"copy {src_uri} to {dst_uri}", options.resolve_retry_policy(self._policy)
        )

    def delete(self, bucket: str, key: str, options: TransferOptions | None = None) -> Future:
        """Delete one object.

        Returns:
            Future of the deleted object's ObjectDescriptor (None in dry-run
            mode); fails with NotFoundError if the object does not exist.
        """
        options = options or TransferOptions()
        uri = self._backend.uri(bucket, key)
        if options.dry_run:
            logger.info(f"<DRYRUN> deleting '{uri}'")
            return immediate(None)

        def work() -> ObjectDescriptor:
            descriptor = self._backend.head_object(bucket, key)
            self._backend.delete_object(bucket, key)
            logger.info(f"Deleted {uri}")
            return descriptor

        return self._executor.execute(
            work, f"delete {uri}", options.resolve_retry_policy(self._policy)
        )

    # Fan-out

    def run_tasks(
        self,
        tasks: list[TransferTask],
        operation: Callable[[TransferTask], Future],
        description: str,
    ) -> Future:
        """Apply ``operation`` to every task and aggregate the outcomes.

        Every task runs to completion even when siblings fail.

        Returns:
            Future of the non-None results in task order; fails with
            PartialTreeFailure if any task failed.
        """
        futures = []
        for task in tasks:
            try:
                futures.append(operation(task))
            except Exception as e:
                futures.append(immediate_failure(e))

        def aggregate(settled: list[Future]) -> list:
            outcomes = []
            for task, future in zip(tasks, settled):
                result, error = outcome(future)
                outcomes.append(EntryOutcome(task=task, result=result, error=error))
            failures = [o for o in outcomes if not o.ok]
            if failures:
                logger.error(
                    f"{len(failures)} of {len(outcomes)} entries failed while {description}"
                )
                raise PartialTreeFailure(description, outcomes)
            return [o.result for o in outcomes if o.result is not None]

        return transform(all_settled(futures), aggregate, self._executor.internal)

    def for_each_match(
        self,
        bucket: str,
        prefix: str,
        recursive: bool,
        operation: Callable[[TransferTask], Future],
        options: TransferOptions | None = None,
        action: str = "process",
        make_task: Callable[[ObjectDescriptor], TransferTask] | None = None,
    ) -> Future:
        """List ``prefix`` and apply ``operation`` to every matched object.

        Directory entries and keys ending in "/" (directory markers) are
        skipped.

        Args:
            bucket: Bucket name.
            prefix: Key prefix.
            recursive: Match the whole subtree instead of one level.
            operation: Single-object operation returning a Future.
            options: Options attached to every task.
            action: Operation name for tasks and messages.
            make_task: Builds the task of a matched entry.

        Returns:
            Future of the list of non-None results.
        """
        options = options or TransferOptions()
        uri = self._backend.uri(bucket, prefix)
        description = f"{action} {uri}"

        def build(descriptor: ObjectDescriptor) -> TransferTask:
            if make_task is not None:
                return make_task(descriptor)
            return TransferTask(action=action, ref=descriptor.ref, options=options)

        def fan_out(entries: list[ObjectDescriptor]) -> Future:
            matched = [
                d for d in entries if not d.is_directory and not d.key.endswith(DELIMITER)
            ]
            logger.info(f"{action.capitalize()}: {len(matched)} objects under {uri}")
            return self.run_tasks([build(d) for d in matched], operation, description)

        listed = self.list_objects(bucket, prefix, recursive, include_dirs=False, options=options)
        return transform(listed, fan_out, self._executor.internal)

    # Tree operations

    def copy_directory(
        self,
        src_bucket: str,
        src_prefix: str,
        dst_bucket: str,
        dst_prefix: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Copy every object under ``src_prefix`` to the same relative key under ``dst_prefix``."""
        options = options or TransferOptions()
        src_prefix = as_directory(src_prefix)
        dst_prefix = as_directory(dst_prefix)
        self._backend.resolve_canned_acl(options.canned_acl)

        def make_task(descriptor: ObjectDescriptor) -> TransferTask:
            relative = descriptor.key[len(src_prefix) :]
            return TransferTask(
                action="copy",
                ref=descriptor.ref,
                options=options,
                destination=StoredObject(dst_bucket, dst_prefix + relative),
            )

        def copy_one(task: TransferTask) -> Future:
            if task.destination is None:
                raise UsageError(f"Copy of {task.ref.key} has no destination")
            return self.copy(
                task.ref.bucket,
                task.ref.key,
                task.destination.bucket,
                task.destination.key,
                task.options,
            )

        return self.for_each_match(
            src_bucket, src_prefix, options.recursive, copy_one, options, "copy", make_task
        )

    def delete_directory(
        self, bucket: str, prefix: str, options: TransferOptions | None = None
    ) -> Future:
        """Delete every object under ``prefix``."""
        options = options or TransferOptions()

        def delete_one(task: TransferTask) -> Future:
            return self.delete(task.ref.bucket, task.ref.key, task.options)

        return self.for_each_match(
            bucket, as_directory(prefix), options.recursive, delete_one, options, "delete"
        )

    def download_directory(
        self,
        bucket: str,
        prefix: str,
        local_dir: Path,
        options: TransferOptions | None = None,
    ) -> Future:
        """Download every object under ``prefix`` into ``local_dir``.

        All local targets are checked before any download starts; if one
        exists and overwrite is not set, nothing is downloaded.
        """
        options = options or TransferOptions()
        prefix = as_directory(prefix)
        local_dir = Path(local_dir)
        uri = self._backend.uri(bucket, prefix)

        def fan_out(entries: list[ObjectDescriptor]) -> Future:
            tasks = [
                TransferTask(
                    action="download",
                    ref=d.ref,
                    options=options,
                    local_path=local_dir.joinpath(*d.key[len(prefix) :].split(DELIMITER)),
                )
                for d in entries
                if not d.key.endswith(DELIMITER)
            ]
            root = local_dir.resolve()
            escaping = [
                t.ref.key
                for t in tasks
                if t.local_path and not t.local_path.resolve().is_relative_to(root)
            ]
            if escaping:
                raise UsageError(
                    f"Refusing to download outside {local_dir}: {', '.join(escaping)}"
                )
            if not options.overwrite:
                existing = [
                    str(t.local_path) for t in tasks if t.local_path and t.local_path.exists()
                ]
                if existing:
                    raise UsageError(
                        f"Refusing to overwrite existing files: {', '.join(existing)}"
                    )
            logger.info(f"Download: {len(tasks)} objects under {uri} to {local_dir}")
            return self.run_tasks(tasks, download_one, f"download {uri}")

        def download_one(task: TransferTask) -> Future:
            if task.local_path is None:
                raise UsageError(f"Download of {task.ref.key} has no local path")
            return self._downloader.download(
                task.ref.bucket, task.ref.key, task.local_path, task.options
            )

        listed = self.list_objects(
            bucket, prefix, options.recursive, include_dirs=False, options=options
        )
        return transform(listed, fan_out, self._executor.internal)

    def upload_directory(
        self,
        local_dir: Path,
        bucket: str,
        prefix: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Upload every file below ``local_dir`` to ``prefix`` + relative path.

        Raises:
            UsageError: If ``local_dir`` is not a directory.
        """
        options = options or TransferOptions()
        local_dir = Path(local_dir)
        if not local_dir.is_dir():
            raise UsageError(f"Not a directory: {local_dir}")
        prefix = as_directory(prefix)

        tasks = [
            TransferTask(
                action="upload",
                ref=StoredObject(bucket, prefix + path.relative_to(local_dir).as_posix()),
                options=options,
                local_path=path,
            )
            for path in sorted(local_dir.rglob("*"))
            if path.is_file()
        ]
        uri = self._backend.uri(bucket, prefix)
        logger.info(f"Upload: {len(tasks)} files from {local_dir} to {uri}")

        def upload_one(task: TransferTask) -> Future:
            if task.local_path is None:
                raise UsageError(f"Upload to {task.ref.key} has no local path")
            return self._uploader.upload(
                task.local_path, task.ref.bucket, task.ref.key, task.options
            )

        return self.run_tasks(tasks, upload_one, f"upload {local_dir}")

"""Rename as copy-then-delete.

Steps run strictly in order, each starting only after the previous one
succeeded:

1. Strip one trailing "/" from the destination and check that nothing
   exists there (rename never overwrites).
2. Copy the source to the destination.
3. Delete the source.

The result is the list of copied destination objects. If deleting the
source fails after a complete copy, both trees remain and the error says so.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future

from cloudstore.core.config import TransferOptions
from cloudstore.core.errors import DestinationExistsError
from cloudstore.core.types import ObjectDescriptor
from cloudstore.core.uri import is_directory_key, strip_trailing_separator
from cloudstore.directory import DirectoryOrchestrator, as_directory, basename
from cloudstore.futures import catching, transform

logger = logging.getLogger(__name__)


class RenameOrchestrator:
    """Renames objects and directory trees."""

    def __init__(self, directory: DirectoryOrchestrator) -> None:
        self._directory = directory
        self._backend = directory.backend
        self._internal = directory.executor.internal

    def _check_destination(
        self, bucket: str, key: str, options: TransferOptions, tree: bool
    ) -> Future:
        """Fail with DestinationExistsError if ``key`` exists.

        For trees, any object below ``key`` also counts as existing.
        """
        exact = strip_trailing_separator(key)
        uri = self._backend.uri(bucket, exact)

        def check_exact(descriptor: ObjectDescriptor | None) -> Future | None:
            if descriptor is not None:
                raise DestinationExistsError(uri)
            if not tree:
                return None
            return transform(
                self._directory.has_objects(bucket, as_directory(exact), options),
                check_tree,
                self._internal,
            )

        def check_tree(found: bool) -> None:
            if found:
                raise DestinationExistsError(self._backend.uri(bucket, as_directory(exact)))

        exists = self._directory.exists(bucket, exact, options)
        return transform(exists, check_exact, self._internal)

    def rename(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Rename one object.

        A destination ending in "/" receives the source's base name.

        Returns:
            Future of the destination ObjectDescriptor (None in dry-run mode).
        """
        options = options or TransferOptions()
        if is_directory_key(dst_key):
            dst_key = dst_key + basename(src_key)
        src_uri = self._backend.uri(src_bucket, src_key)
        dst_uri = self._backend.uri(dst_bucket, dst_key)

        def copy(_: object) -> Future:
            return self._directory.copy(src_bucket, src_key, dst_bucket, dst_key, options)

        def delete(copied: ObjectDescriptor | None) -> Future:
            deleted = self._directory.delete(src_bucket, src_key, options)
            return transform(deleted, lambda _: copied, self._internal)

        logger.debug(f"Renaming {src_uri} to {dst_uri}")
        checked = self._check_destination(dst_bucket, dst_key, options, tree=False)
        copied = transform(checked, copy, self._internal)
        return transform(copied, delete, self._internal)

    def rename_directory(
        self,
        src_bucket: str,
        src_prefix: str,
        dst_bucket: str,
        dst_prefix: str,
        options: TransferOptions | None = None,
    ) -> Future:
        """Rename a directory tree.

        Returns:
            Future of the list of destination ObjectDescriptors; fails with
            DestinationExistsError before anything is copied if the
            destination exists.
        """
        options = options or TransferOptions()
        src_uri = self._backend.uri(src_bucket, as_directory(src_prefix))
        dst_uri = self._backend.uri(dst_bucket, as_directory(dst_prefix))

        def copy_tree(_: object) -> Future:
            logger.info(f"Renaming {src_uri} to {dst_uri}: copying")
            return self._directory.copy_directory(
                src_bucket, src_prefix, dst_bucket, dst_prefix, options
            )

        def delete_tree(copied: list) -> Future:
            logger.info(f"Renaming {src_uri} to {dst_uri}: deleting source")
            deleted = self._directory.delete_directory(src_bucket, src_prefix, options)

            def report(error: BaseException) -> None:
                error.add_note(
                    f"{dst_uri} was fully copied but {src_uri} was only partially deleted"
                )
                raise error

            return transform(
                catching(deleted, report, self._internal), lambda _: copied, self._internal
            )

        checked = self._check_destination(dst_bucket, dst_prefix, options, tree=True)
        copied = transform(checked, copy_tree, self._internal)
        return transform(copied, delete_tree, self._internal)

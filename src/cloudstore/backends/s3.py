"""S3-compatible backend (AWS, OVH, MinIO, ...) built on boto3.

This module provides:
- S3Backend: ObjectBackend over a boto3 ``s3`` client
- translate_error: Maps botocore exceptions onto the cloudstore error taxonomy
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError, IncompleteReadError
from botocore.exceptions import ConnectionError as BotoConnectionError

from cloudstore.backends.base import ObjectBackend
from cloudstore.core.errors import (
    BackendError,
    NotFoundError,
    TerminalBackendError,
    TransientBackendError,
    UsageError,
)
from cloudstore.core.types import ListPage, ObjectDescriptor, PendingUpload, StoredObject

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NoSuchBucket", "NoSuchUpload", "NotFound"})
TRANSIENT_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "RequestTimeout",
        "RequestTimeTooSkewed",
        "InternalError",
        "ServiceUnavailable",
        "503",
        "500",
    }
)


def translate_error(error: Exception, context: str) -> BackendError:
    """Classify a botocore exception.

    Args:
        error: Exception raised by boto3/botocore.
        context: Operation description for the error message.

    Returns:
        NotFoundError, TransientBackendError or TerminalBackendError.
    """
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = str(details.get("Code", "")) or None
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{context}: {details.get('Message') or code or error}"
        if code in NOT_FOUND_CODES or status == 404:
            return NotFoundError(message, code=code, status_code=status)
        if code in TRANSIENT_CODES or (status is not None and status >= 500):
            return TransientBackendError(message, code=code, status_code=status)
        return TerminalBackendError(message, code=code, status_code=status)

    if isinstance(error, (BotoConnectionError, HTTPClientError, IncompleteReadError)):
        return TransientBackendError(f"{context}: {error}")
    return TerminalBackendError(f"{context}: {error}")


@contextmanager
def _translated(context: str) -> Iterator[None]:
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise translate_error(e, context) from e


class S3Backend(ObjectBackend):
    """Backend for S3-compatible services.

    boto3's own retries are disabled; retrying is the command executor's job.
    """

    scheme = "s3"

    def __init__(
        self,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        client: Any = None,
    ) -> None:
        """Initialize the backend.

        Args:
            endpoint_url: Custom endpoint URL (for OVH, MinIO, etc.).
            access_key: Access key ID (None lets boto3 resolve credentials).
            secret_key: Secret access key.
            region: Region name.
            client: Prebuilt boto3 client, overrides all other arguments.
        """
        self._client: Any = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(retries={"max_attempts": 1, "mode": "standard"}),
        )

    @property
    def client(self) -> Any:
        """Underlying boto3 client."""
        return self._client

    def _descriptor(self, bucket: str, key: str, response: Mapping[str, Any]) -> ObjectDescriptor:
        version = response.get("VersionId")
        if version == "null":
            version = None
        return ObjectDescriptor(
            ref=StoredObject(bucket, key, version),
            size=response.get("ContentLength", response.get("Size", 0)),
            etag=response.get("ETag"),
            last_modified=response.get("LastModified"),
            metadata=response.get("Metadata", {}),
        )

    def _extra_args(
        self, metadata: Mapping[str, str] | None, canned_acl: str | None
    ) -> dict[str, Any]:
        args: dict[str, Any] = {"ACL": self.resolve_canned_acl(canned_acl)}
        if metadata:
            args["Metadata"] = dict(metadata)
        return args

    # Metadata

    def head_object(self, bucket: str, key: str) -> ObjectDescriptor:
        with _translated(f"head {self.uri(bucket, key)}"):
            response = self._client.head_object(Bucket=bucket, Key=key)
        return self._descriptor(bucket, key, response)

    def update_metadata(
        self, bucket: str, key: str, metadata: Mapping[str, str]
    ) -> ObjectDescriptor:
        raise UsageError(f"{type(self).__name__} cannot update metadata in place")

    # Writes

    def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        metadata: Mapping[str, str] | None = None,
        canned_acl: str | None = None,
    ) -> ObjectDescriptor:
        extra = self._extra_args(metadata, canned_acl)
        with _translated(f"put {self.uri(bucket, key)}"):
            response = self._client.put_object(Bucket=bucket, Key=key, Body=data, **extra)
        return self._descriptor(
            bucket,
            key,
            {**response, "ContentLength": len(data), "Metadata": metadata or {}},
        )

    def initiate_multipart(
        self,
        bucket: str,
        key: str,
        metadata: Mapping[str, str] | None = None,
        canned_acl: str | None = None,
    ) -> str:
        extra = self._extra_args(metadata, canned_acl)
        with _translated(f"initiate multipart upload {self.uri(bucket, key)}"):
            response = self._client.create_multipart_upload(Bucket=bucket, Key=key, **extra)
        upload_id: str = response["UploadId"]
        return upload_id

    def upload_part(
        self, bucket: str, key: str, upload_id: str, part_number: int, data: bytes
    ) -> str:
        with _translated(f"upload part {part_number} of {self.uri(bucket, key)}"):
            response = self._client.upload_part(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=data,
            )
        etag: str = response["ETag"]
        return etag

    def complete_multipart(
        self, bucket: str, key: str, upload_id: str, parts: list[tuple[int, str]]
    ) -> ObjectDescriptor:
        with _translated(f"complete multipart upload {self.uri(bucket, key)}"):
            self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [{"PartNumber": n, "ETag": etag} for n, etag in parts]
                },
            )
        return self.head_object(bucket, key)

    def abort_multipart(self, bucket: str, key: str, upload_id: str) -> None:
        try:
            with _translated(f"abort multipart upload {self.uri(bucket, key)}"):
                self._client.abort_multipart_upload(Bucket=bucket, Key=key, UploadId=upload_id)
        except NotFoundError:
            logger.debug(f"Multipart upload {upload_id} already gone")

    def copy_object(
        self,
        src_bucket: str,
        src_key: str,
        dst_bucket: str,
        dst_key: str,
        canned_acl: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> ObjectDescriptor:
        extra: dict[str, Any] = {"ACL": self.resolve_canned_acl(canned_acl)}
        if metadata is not None:
            extra["Metadata"] = dict(metadata)
            extra["MetadataDirective"] = "REPLACE"
        context = f"copy {self.uri(src_bucket, src_key)} to {self.uri(dst_bucket, dst_key)}"
        with _translated(context):
            self._client.copy_object(
                Bucket=dst_bucket,
                Key=dst_key,
                CopySource={"Bucket": src_bucket, "Key": src_key},
                **extra,
            )
        return self.head_object(dst_bucket, dst_key)

    def delete_object(self, bucket: str, key: str) -> None:
        with _translated(f"delete {self.uri(bucket, key)}"):
            self._client.delete_object(Bucket=bucket, Key=key)

    # Reads

    def get_object(
        self,
        bucket: str,
        key: str,
        byte_range: tuple[int, int] | None = None,
        if_match: str | None = None,
    ) -> bytes:
        args: dict[str, Any] = {}
        if byte_range is not None:
            args["Range"] = f"bytes={byte_range[0]}-{byte_range[1]}"
        if if_match is not None:
            args["IfMatch"] = if_match
        with _translated(f"get {self.uri(bucket, key)}"):
            response = self._client.get_object(Bucket=bucket, Key=key, **args)
            body: bytes = response["Body"].read()
        return body

    def list_objects(
        self,
        bucket: str,
        prefix: str,
        delimiter: str | None = None,
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ListPage:
        args: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if delimiter:
            args["Delimiter"] = delimiter
        if continuation_token:
            args["ContinuationToken"] = continuation_token
        if max_keys:
            args["MaxKeys"] = max_keys
        with _translated(f"list {self.uri(bucket, prefix)}"):
            response = self._client.list_objects_v2(**args)

        objects = tuple(
            self._descriptor(bucket, item["Key"], item) for item in response.get("Contents", [])
        )
        prefixes = tuple(p["Prefix"] for p in response.get("CommonPrefixes", []))
        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return ListPage(objects=objects, prefixes=prefixes, next_token=next_token)

    def list_multipart_uploads(self, bucket: str, prefix: str = "") -> list[PendingUpload]:
        uploads = []
        args: dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        while True:
            with _translated(f"list pending uploads {self.uri(bucket, prefix)}"):
                response = self._client.list_multipart_uploads(**args)
            for item in response.get("Uploads", []):
                uploads.append(
                    PendingUpload(
                        bucket=bucket,
                        key=item["Key"],
                        upload_id=item["UploadId"],
                        initiated=item.get("Initiated"),
                    )
                )
            if not response.get("IsTruncated"):
                return uploads
            args["KeyMarker"] = response.get("NextKeyMarker")
            args["UploadIdMarker"] = response.get("NextUploadIdMarker")

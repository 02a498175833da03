"""Google Cloud Storage backend over the XML interoperability API.

GCS speaks the S3 protocol at ``https://storage.googleapis.com`` with HMAC
credentials, so this backend reuses S3Backend and changes what differs:
the URI scheme, the canned ACL set and pending-upload management.
"""

from __future__ import annotations

from typing import Any

from cloudstore.backends.s3 import S3Backend
from cloudstore.core.errors import UsageError
from cloudstore.core.types import PendingUpload

GCS_ENDPOINT = "https://storage.googleapis.com"

GCS_CANNED_ACLS = (
    "project-private",
    "private",
    "public-read",
    "public-read-write",
    "authenticated-read",
    "bucket-owner-read",
    "bucket-owner-full-control",
)


class GCSBackend(S3Backend):
    """Backend for Google Cloud Storage."""

    scheme = "gs"
    canned_acls = GCS_CANNED_ACLS
    default_canned_acl = "project-private"
    supports_pending_uploads = False

    def __init__(
        self,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        client: Any = None,
    ) -> None:
        super().__init__(
            endpoint_url=endpoint_url or GCS_ENDPOINT,
            access_key=access_key,
            secret_key=secret_key,
            region=region or "auto",
            client=client,
        )

    def list_multipart_uploads(self, bucket: str, prefix: str = "") -> list[PendingUpload]:
        raise UsageError("Listing pending uploads is not supported for GCS")

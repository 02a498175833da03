"""Tests for the S3 and GCS backends against a mocked S3 API."""

from __future__ import annotations

from collections.abc import Generator

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, IncompleteReadError

from cloudstore.backends import GCSBackend, S3Backend, create_backend
from cloudstore.backends.gcs import GCS_ENDPOINT
from cloudstore.backends.s3 import translate_error
from cloudstore.core.config import ClientConfig
from cloudstore.core.errors import (
    NotFoundError,
    TerminalBackendError,
    TransientBackendError,
    UsageError,
)

moto = pytest.importorskip("moto")
boto3 = pytest.importorskip("boto3")

MiB = 1024 * 1024


def _client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} happened"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "Operation",
    )


@pytest.fixture
def s3(monkeypatch: pytest.MonkeyPatch) -> Generator[S3Backend, None, None]:
    """S3Backend over moto with one bucket."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with moto.mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket="bucket")
        yield S3Backend(client=client)


class TestTranslateError:
    """Tests for botocore error classification."""

    @pytest.mark.parametrize(
        ("code", "status", "expected"),
        [
            ("NoSuchKey", 404, NotFoundError),
            ("404", 404, NotFoundError),
            ("SlowDown", 503, TransientBackendError),
            ("InternalError", 500, TransientBackendError),
            ("AccessDenied", 403, TerminalBackendError),
            ("PreconditionFailed", 412, TerminalBackendError),
        ],
    )
    def test_client_errors(self, code: str, status: int, expected: type) -> None:
        """Provider codes map to the error taxonomy."""
        error = translate_error(_client_error(code, status), "get s3://b/k")
        assert type(error) is expected
        assert error.code == code
        assert error.status_code == status
        assert str(error).startswith("get s3://b/k:")

    def test_connection_error_is_transient(self) -> None:
        """Network failures are retryable."""
        error = translate_error(EndpointConnectionError(endpoint_url="http://x"), "put")
        assert isinstance(error, TransientBackendError)

    def test_truncated_body_is_transient(self) -> None:
        """A body cut short by a dropped connection is retryable."""
        error = translate_error(
            IncompleteReadError(actual_bytes=10, expected_bytes=20), "get s3://b/k"
        )
        assert isinstance(error, TransientBackendError)
        assert str(error).startswith("get s3://b/k:")

    def test_get_object_truncated_body(self) -> None:
        """get_object reports a truncated streaming body as transient."""

        class TruncatedBody:
            def read(self) -> bytes:
                raise IncompleteReadError(actual_bytes=3, expected_bytes=8)

        class StubClient:
            def get_object(self, **kwargs: object) -> dict:
                return {"Body": TruncatedBody()}

        with pytest.raises(TransientBackendError, match="get s3://bucket/k"):
            S3Backend(client=StubClient()).get_object("bucket", "k", (0, 7))


class TestS3Backend:
    """Tests for S3Backend against moto."""

    def test_put_head_get(self, s3: S3Backend) -> None:
        """Objects round-trip with metadata and ranged reads."""
        s3.put_object("bucket", "a/b.txt", b"hello world", {"owner": "me"})

        head = s3.head_object("bucket", "a/b.txt")
        assert head.size == 11
        assert head.metadata == {"owner": "me"}
        assert s3.get_object("bucket", "a/b.txt", (0, 4)) == b"hello"

    def test_missing_object(self, s3: S3Backend) -> None:
        """A missing key is NotFoundError."""
        with pytest.raises(NotFoundError):
            s3.head_object("bucket", "missing")

    def test_multipart_roundtrip(self, s3: S3Backend) -> None:
        """Parts are uploaded and assembled."""
        first, second = b"a" * (5 * MiB), b"b" * 10
        upload_id = s3.initiate_multipart("bucket", "big", {"m": "v"})
        parts = [
            (1, s3.upload_part("bucket", "big", upload_id, 1, first)),
            (2, s3.upload_part("bucket", "big", upload_id, 2, second)),
        ]

        descriptor = s3.complete_multipart("bucket", "big", upload_id, parts)
        assert descriptor.size == len(first) + len(second)
        assert s3.get_object("bucket", "big", (5 * MiB, 5 * MiB + 9)) == second

    def test_pending_uploads(self, s3: S3Backend) -> None:
        """Initiated uploads are listed until aborted; abort is idempotent."""
        upload_id = s3.initiate_multipart("bucket", "tmp/x")

        pending = s3.list_multipart_uploads("bucket", "tmp/")
        assert [(p.key, p.upload_id) for p in pending] == [("tmp/x", upload_id)]

        s3.abort_multipart("bucket", "tmp/x", upload_id)
        s3.abort_multipart("bucket", "tmp/x", upload_id)
        assert s3.list_multipart_uploads("bucket", "tmp/") == []

    def test_copy_replaces_metadata(self, s3: S3Backend) -> None:
        """A copy with metadata replaces it, also onto itself."""
        s3.put_object("bucket", "k", b"data", {"a": "1"})

        copied = s3.copy_object("bucket", "k", "bucket", "k", metadata={"b": "2"})
        assert copied.metadata == {"b": "2"}
        assert s3.get_object("bucket", "k") == b"data"

    def test_list_with_delimiter(self, s3: S3Backend) -> None:
        """Listing folds subdirectories into prefixes."""
        for key in ("a/1.txt", "a/2.txt", "a/sub/3.txt"):
            s3.put_object("bucket", key, b"x")

        page = s3.list_objects("bucket", "a/", delimiter="/")
        assert [o.key for o in page.objects] == ["a/1.txt", "a/2.txt"]
        assert page.prefixes == ("a/sub/",)

    def test_list_pagination(self, s3: S3Backend) -> None:
        """max_keys truncates and the token continues."""
        for key in ("p/1", "p/2", "p/3"):
            s3.put_object("bucket", key, b"x")

        page = s3.list_objects("bucket", "p/", max_keys=2)
        assert page.is_truncated
        rest = s3.list_objects("bucket", "p/", continuation_token=page.next_token)
        assert [o.key for o in page.objects + rest.objects] == ["p/1", "p/2", "p/3"]

    def test_delete(self, s3: S3Backend) -> None:
        """Deleted objects are gone."""
        s3.put_object("bucket", "k", b"x")
        s3.delete_object("bucket", "k")
        with pytest.raises(NotFoundError):
            s3.head_object("bucket", "k")

    def test_no_in_place_metadata_update(self, s3: S3Backend) -> None:
        """S3 rewrites metadata through copies only."""
        assert not s3.supports_metadata_update
        with pytest.raises(UsageError):
            s3.update_metadata("bucket", "k", {})


class TestGCSBackend:
    """Tests for GCSBackend configuration."""

    def test_defaults(self) -> None:
        """GCS uses the interoperability endpoint and its own ACL names."""
        backend = GCSBackend(access_key="id", secret_key="secret")
        assert backend.scheme == "gs"
        assert backend.client.meta.endpoint_url == GCS_ENDPOINT
        assert backend.resolve_canned_acl(None) == "project-private"
        with pytest.raises(UsageError):
            backend.resolve_canned_acl("aws-exec-read")

    def test_no_pending_uploads(self) -> None:
        """Pending-upload management is unavailable on GCS."""
        backend = GCSBackend(access_key="id", secret_key="secret")
        assert not backend.supports_pending_uploads
        with pytest.raises(UsageError):
            backend.list_multipart_uploads("bucket")


class TestCreateBackend:
    """Tests for create_backend()."""

    def test_selects_backend(self) -> None:
        """The configured scheme selects the backend class."""
        s3 = create_backend(ClientConfig(backend="s3", region="us-east-1"))
        gcs = create_backend(ClientConfig(backend="gs", access_key="id", secret_key="secret"))
        assert type(s3) is S3Backend
        assert type(gcs) is GCSBackend

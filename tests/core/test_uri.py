"""Tests for storage URI parsing."""

from __future__ import annotations

import pytest

from cloudstore.core.errors import UsageError
from cloudstore.core.uri import format_uri, is_directory_key, parse_uri, strip_trailing_separator


class TestParseUri:
    """Tests for parse_uri()."""

    @pytest.mark.parametrize(
        ("uri", "expected"),
        [
            ("s3://bucket/path/to/key", ("s3", "bucket", "path/to/key")),
            ("gs://bucket/dir/", ("gs", "bucket", "dir/")),
            ("s3://bucket", ("s3", "bucket", "")),
            ("s3://bucket/", ("s3", "bucket", "")),
        ],
    )
    def test_valid(self, uri: str, expected: tuple[str, str, str]) -> None:
        """Scheme, bucket and key are split."""
        assert parse_uri(uri) == expected

    @pytest.mark.parametrize("uri", ["http://bucket/key", "bucket/key", "/local/path"])
    def test_unsupported_scheme(self, uri: str) -> None:
        """Only s3:// and gs:// are accepted."""
        with pytest.raises(UsageError, match="Unsupported URI"):
            parse_uri(uri)

    def test_missing_bucket(self) -> None:
        """A URI without a bucket is rejected."""
        with pytest.raises(UsageError, match="bucket"):
            parse_uri("s3:///key")


class TestKeyHelpers:
    """Tests for key helpers."""

    def test_format_uri(self) -> None:
        """format_uri() joins the parts."""
        assert format_uri("gs", "b", "a/b.txt") == "gs://b/a/b.txt"

    def test_is_directory_key(self) -> None:
        """Empty keys and keys ending in '/' are directories."""
        assert is_directory_key("")
        assert is_directory_key("a/")
        assert not is_directory_key("a/b")

    def test_strip_trailing_separator(self) -> None:
        """Only one trailing '/' is removed."""
        assert strip_trailing_separator("dst/") == "dst"
        assert strip_trailing_separator("dst//") == "dst/"
        assert strip_trailing_separator("dst") == "dst"

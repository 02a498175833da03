"""Tests for fixed-size chunking."""

from __future__ import annotations

from pathlib import Path

import pytest

from cloudstore.core.chunking import Chunk, chunk_count, compute_chunks, read_chunk
from cloudstore.core.errors import UsageError

MiB = 1024 * 1024


class TestComputeChunks:
    """Tests for compute_chunks()."""

    def test_exact_multiple(self) -> None:
        """A length divisible by the chunk size gives equal chunks."""
        chunks = compute_chunks(30, 10)
        assert [(c.start, c.end) for c in chunks] == [(0, 9), (10, 19), (20, 29)]

    def test_last_chunk_shorter(self) -> None:
        """25 MiB in 10 MiB chunks gives 10, 10 and 5 MiB."""
        chunks = compute_chunks(25 * MiB, 10 * MiB)
        assert [c.length for c in chunks] == [10 * MiB, 10 * MiB, 5 * MiB]

    def test_chunks_cover_range_contiguously(self) -> None:
        """Chunks partition [0, length) without gaps or overlaps."""
        chunks = compute_chunks(1001, 64)
        assert chunks[0].start == 0
        assert chunks[-1].end == 1000
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start == previous.end + 1
        assert sum(c.length for c in chunks) == 1001

    def test_indexes_and_part_numbers(self) -> None:
        """Indexes are zero-based and part numbers one-based."""
        chunks = compute_chunks(25, 10)
        assert [c.index for c in chunks] == [0, 1, 2]
        assert [c.part_number for c in chunks] == [1, 2, 3]

    def test_empty_file_has_no_chunks(self) -> None:
        """A zero-length file produces no chunks."""
        assert compute_chunks(0, 10) == []
        assert chunk_count(0, 10) == 0

    def test_file_smaller_than_chunk(self) -> None:
        """A short file is one chunk."""
        assert compute_chunks(3, 10) == [Chunk(index=0, start=0, end=2)]

    @pytest.mark.parametrize("chunk_size", [0, -1])
    def test_invalid_chunk_size(self, chunk_size: int) -> None:
        """A non-positive chunk size is a usage error."""
        with pytest.raises(UsageError, match="Chunk size"):
            compute_chunks(10, chunk_size)

    def test_negative_length(self) -> None:
        """A negative length is a usage error."""
        with pytest.raises(UsageError):
            compute_chunks(-1, 10)


class TestReadChunk:
    """Tests for read_chunk()."""

    def test_reads_exact_range(self, tmp_path: Path) -> None:
        """read_chunk() returns the bytes of the chunk's range."""
        path = tmp_path / "data.bin"
        path.write_bytes(b"0123456789abcdef")

        assert read_chunk(path, Chunk(index=1, start=10, end=15)) == b"abcdef"

    def test_short_file_raises(self, tmp_path: Path) -> None:
        """A file shorter than the chunk raises OSError."""
        path = tmp_path / "data.bin"
        path.write_bytes(b"0123")

        with pytest.raises(OSError, match="Short read"):
            read_chunk(path, Chunk(index=0, start=0, end=9))

"""Fixed-size chunking for multipart transfers.

This module provides:
- Chunk size limits consistent with S3/GCS multipart constraints
- compute_chunks: Partition [0, file_length) into contiguous byte ranges
- read_chunk: Read one chunk's byte range from a local file
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path

from cloudstore.core.errors import UsageError

# Chunk size configuration (in bytes)
MIN_CHUNK_SIZE = 5 * 1024 * 1024      # 5 MiB, S3 minimum for non-final parts
DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024  # 5 MiB
MAX_PARTS = 10_000


@dataclass(frozen=True)
class Chunk:
    """A contiguous byte range ``[start, end]`` of a file.

    Attributes:
        index: Zero-based sequence number.
        start: Offset of the first byte.
        end: Offset of the last byte (inclusive).
    """

    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        """Return the size of this chunk in bytes."""
        return self.end - self.start + 1

    @property
    def part_number(self) -> int:
        """Return the 1-based multipart part number for this chunk."""
        return self.index + 1


def chunk_count(file_length: int, chunk_size: int) -> int:
    """Number of chunks needed for ``file_length`` bytes."""
    _validate(file_length, chunk_size)
    return math.ceil(file_length / chunk_size)


def compute_chunks(file_length: int, chunk_size: int) -> list[Chunk]:
    """Split ``[0, file_length)`` into chunks of ``chunk_size`` bytes.

    Every chunk except the last is exactly ``chunk_size`` long; the last one
    may be shorter. A zero-length file produces no chunks.

    Args:
        file_length: Total number of bytes.
        chunk_size: Size of each chunk.

    Returns:
        Chunks in offset order.

    Raises:
        UsageError: If chunk_size is not positive or file_length is negative.
    """
    count = chunk_count(file_length, chunk_size)
    chunks = []
    for index in range(count):
        start = index * chunk_size
        end = min(start + chunk_size, file_length) - 1
        chunks.append(Chunk(index=index, start=start, end=end))
    return chunks


def read_chunk(path: Path, chunk: Chunk) -> bytes:
    """Read exactly the bytes of ``chunk`` from ``path``.

    The file is opened per call so a retried chunk never reuses stream state.

    Raises:
        OSError: If the file cannot be read or is shorter than expected.
    """
    with open(path, "rb") as f:
        f.seek(chunk.start)
        data = f.read(chunk.length)
    if len(data) != chunk.length:
        raise OSError(
            f"Short read from {path}: expected {chunk.length} bytes at "
            f"offset {chunk.start}, got {len(data)}"
        )
    return data


def _validate(file_length: int, chunk_size: int) -> None:
    if chunk_size <= 0:
        raise UsageError(f"Chunk size must be positive, got {chunk_size}")
    if file_length < 0:
        raise UsageError(f"File length must not be negative, got {file_length}")

"""Chunk planning for size-limited transports."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from tracklift.const import CHUNK_SIZE


@dataclass(frozen=True)
class ChunkRange:
    """A contiguous byte range ``[start, end)`` of a file."""

    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        """Number of bytes in the range."""
        return self.end - self.start


def count_chunks(file_size: int, chunk_size: int = CHUNK_SIZE) -> int:
    """Return how many chunks ``plan_chunks`` produces for a file size."""
    if file_size < 0:
        raise ValueError(f"file_size must be non-negative, got {file_size}")
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be a positive integer, got {chunk_size}")
    return max(1, -(-file_size // chunk_size))


def plan_chunks(file_size: int, chunk_size: int = CHUNK_SIZE) -> list[ChunkRange]:
    """Split a file of ``file_size`` bytes into ordered chunk ranges.

    An empty file still yields a single zero-length chunk so that it goes
    through the full init/chunk/finalize protocol.

    Args:
        file_size: Total size of the file in bytes.
        chunk_size: Maximum size of one chunk in bytes.

    Returns:
        Ranges with contiguous indices ``0..n-1`` covering the whole file.

    Raises:
        ValueError: If ``file_size`` is negative or ``chunk_size`` is not
            positive.
    """
    total = count_chunks(file_size, chunk_size)
    return [
        ChunkRange(
            index=index,
            start=index * chunk_size,
            end=min((index + 1) * chunk_size, file_size),
        )
        for index in range(total)
    ]


def read_chunk(path: str | Path, chunk: ChunkRange) -> bytes:
    """Read exactly the bytes of ``chunk`` from a local file.

    Raises:
        OSError: If the file cannot be read or is shorter than expected.
    """
    with open(path, "rb") as f:
        f.seek(chunk.start)
        data = f.read(chunk.length)
    if len(data) != chunk.length:
        raise OSError(
            f"Short read from {path}: expected {chunk.length} bytes "
            f"at offset {chunk.start}, got {len(data)}"
        )
    return data

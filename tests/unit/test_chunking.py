from pathlib import Path

import pytest

from tracklift.chunking import ChunkRange, count_chunks, plan_chunks, read_chunk
from tracklift.const import BYTES_PER_MIB, CHUNK_SIZE


@pytest.mark.parametrize(
    "file_size, chunk_size",
    [
        (1, 1),
        (1, 10),
        (10, 3),
        (10, 5),
        (1024, 1000),
        (CHUNK_SIZE * 4 + 7, CHUNK_SIZE),
    ],
)
def test_plan_covers_file_contiguously(file_size: int, chunk_size: int) -> None:
    chunks = plan_chunks(file_size, chunk_size)

    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert chunks[0].start == 0
    assert chunks[-1].end == file_size
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start == previous.end
    assert sum(c.length for c in chunks) == file_size
    assert all(0 < c.length <= chunk_size for c in chunks)
    assert len(chunks) == count_chunks(file_size, chunk_size)


def test_sixty_mib_file_splits_into_25_25_10() -> None:
    chunks = plan_chunks(60 * BYTES_PER_MIB)

    assert [c.length for c in chunks] == [
        25 * BYTES_PER_MIB,
        25 * BYTES_PER_MIB,
        10 * BYTES_PER_MIB,
    ]


def test_exact_multiple_ends_with_full_chunk() -> None:
    chunks = plan_chunks(50 * BYTES_PER_MIB)

    assert [c.length for c in chunks] == [CHUNK_SIZE, CHUNK_SIZE]


def test_empty_file_yields_one_empty_chunk() -> None:
    assert plan_chunks(0) == [ChunkRange(index=0, start=0, end=0)]


@pytest.mark.parametrize("file_size, chunk_size", [(-1, 10), (10, 0), (10, -5)])
def test_invalid_inputs_raise(file_size: int, chunk_size: int) -> None:
    with pytest.raises(ValueError):
        plan_chunks(file_size, chunk_size)


def test_read_chunk_returns_exact_range(tmp_path: Path) -> None:
    path = tmp_path / "a.mp3"
    path.write_bytes(b"0123456789")

    chunks = plan_chunks(10, 4)

    assert [read_chunk(path, c) for c in chunks] == [b"0123", b"4567", b"89"]


def test_read_chunk_of_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "empty.mp3"
    path.write_bytes(b"")

    assert read_chunk(path, plan_chunks(0)[0]) == b""


def test_read_chunk_detects_truncated_file(tmp_path: Path) -> None:
    path = tmp_path / "a.mp3"
    path.write_bytes(b"0123456789")
    chunks = plan_chunks(10, 4)
    path.write_bytes(b"01234")

    with pytest.raises(OSError, match="Short read"):
        read_chunk(path, chunks[2])

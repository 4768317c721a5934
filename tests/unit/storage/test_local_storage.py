import time
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from tracklift.exceptions import InvalidRequest, ObjectNotFound
from tracklift.storage.local_storage import LocalObjectStorage, normalize_object_path


@pytest.fixture
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "objects", "http://files.local/", "secret")


@pytest.mark.asyncio
async def test_write_stream_commits_on_close(storage: LocalObjectStorage) -> None:
    stream = storage.open_write_stream("tracks/song.mp3", "audio/mpeg")
    await stream.write(b"abc")
    await stream.write(b"def")

    assert not await storage.exists("tracks/song.mp3")
    assert await stream.close() == 6
    assert (storage.root / "tracks" / "song.mp3").read_bytes() == b"abcdef"


@pytest.mark.asyncio
async def test_aborted_stream_leaves_nothing(storage: LocalObjectStorage) -> None:
    stream = storage.open_write_stream("tracks/song.mp3", "audio/mpeg")
    await stream.write(b"partial")
    await stream.abort()

    assert not await storage.exists("tracks/song.mp3")
    assert list((storage.root / "tracks").iterdir()) == []


@pytest.mark.asyncio
async def test_stream_context_aborts_on_error(storage: LocalObjectStorage) -> None:
    with pytest.raises(RuntimeError):
        async with storage.open_write_stream("song.mp3", "audio/mpeg") as stream:
            await stream.write(b"partial")
            raise RuntimeError("source died")

    assert await storage.list("") == []


@pytest.mark.asyncio
async def test_list_skips_staged_parts(storage: LocalObjectStorage) -> None:
    async with storage.open_write_stream("tracks/a.mp3", "audio/mpeg") as stream:
        await stream.write(b"a")
    pending = storage.open_write_stream("tracks/b.mp3", "audio/mpeg")
    await pending.write(b"bb")

    items = await storage.list("tracks")

    assert [(i.name, i.size) for i in items] == [("tracks/a.mp3", 1)]
    await pending.abort()


@pytest.mark.asyncio
async def test_delete_missing_object_raises(storage: LocalObjectStorage) -> None:
    with pytest.raises(ObjectNotFound):
        await storage.delete("tracks/nothing.mp3")


@pytest.mark.parametrize("path", ["", "/", "../escape.mp3", "a/../../b.mp3"])
def test_normalize_rejects_unsafe_paths(path: str) -> None:
    with pytest.raises(InvalidRequest):
        normalize_object_path(path)


def test_normalize_strips_slashes() -> None:
    assert normalize_object_path("/tracks//song.mp3/") == "tracks/song.mp3"


def _split_signed(url: str) -> tuple[str, str, str]:
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    object_path = unquote(parts.path).split("/direct-upload/", 1)[1]
    return object_path, query["expires"][0], query["signature"][0]


def test_signed_url_verifies(storage: LocalObjectStorage) -> None:
    url = storage.sign_write_url("tracks/my song.mp3", ttl=60)

    assert url.startswith("http://files.local/api/files/direct-upload/")
    object_path, expires, signature = _split_signed(url)
    assert object_path == "tracks/my song.mp3"
    assert storage.verify_write_signature(object_path, expires, signature)


def test_signature_rejects_tampering(storage: LocalObjectStorage) -> None:
    object_path, expires, signature = _split_signed(
        storage.sign_write_url("tracks/song.mp3", ttl=60)
    )

    assert not storage.verify_write_signature("tracks/other.mp3", expires, signature)
    assert not storage.verify_write_signature(
        object_path, str(int(expires) + 1), signature
    )
    assert not storage.verify_write_signature(object_path, "soon", signature)
    assert not storage.verify_write_signature(object_path, expires, "")


def test_signature_expires(storage: LocalObjectStorage) -> None:
    object_path, expires, signature = _split_signed(
        storage.sign_write_url("tracks/song.mp3", ttl=60)
    )

    assert not storage.verify_write_signature(
        object_path, expires, signature, now=time.time() + 120
    )


def test_signature_depends_on_key(tmp_path: Path) -> None:
    first = LocalObjectStorage(tmp_path / "a", "http://x", "key-one")
    second = LocalObjectStorage(tmp_path / "b", "http://x", "key-two")
    object_path, expires, signature = _split_signed(
        first.sign_write_url("song.mp3", ttl=60)
    )

    assert not second.verify_write_signature(object_path, expires, signature)

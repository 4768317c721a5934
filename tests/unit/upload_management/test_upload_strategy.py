from pathlib import Path

import aiohttp
import pytest
from aiohttp.test_utils import TestServer, unused_port

from tracklift.config_manager.settings import ClientConfig
from tracklift.exceptions import (
    IncompleteUpload,
    SessionNotFound,
    TransportError,
    UploadError,
    ValidationError,
)
from tracklift.models import FileDescriptor, UploadMode
from tracklift.upload_management.upload_strategy import (
    ChunkedUploadStrategy,
    DirectUploadStrategy,
    get_upload_strategy,
)


def test_strategy_follows_upload_mode(
    client_config: ClientConfig,
) -> None:
    session = object()
    direct = client_config.model_copy(update={"upload_mode": UploadMode.DIRECT})

    chunked = get_upload_strategy(client_config, session)

    assert isinstance(chunked, ChunkedUploadStrategy)
    assert isinstance(get_upload_strategy(direct, session), DirectUploadStrategy)
    assert get_upload_strategy(client_config, session) is not get_upload_strategy(
        client_config, session
    )


@pytest.mark.asyncio
async def test_chunked_strategy_uploads_file(
    live_server: TestServer,
    client_config: ClientConfig,
    http_session: aiohttp.ClientSession,
    make_mp3,
    server_config,
) -> None:
    path = make_mp3("song.mp3", size=2500)
    file = FileDescriptor.from_path(path)
    strategy = ChunkedUploadStrategy(client_config, http_session)

    chunks = strategy.plan(file)
    await strategy.start(file, len(chunks))
    for chunk in chunks:
        await strategy.upload_chunk(file, chunk, len(chunks))
    result = await strategy.finish(file)

    assert strategy.upload_id is not None
    assert [c.length for c in chunks] == [1024, 1024, 452]
    assert result.path == "tracks/song.mp3"
    assert result.size == 2500
    stored = Path(server_config.storage_root) / "tracks" / "song.mp3"
    assert stored.read_bytes() == path.read_bytes()


@pytest.mark.asyncio
async def test_server_errors_map_to_exception_classes(
    live_server: TestServer,
    client_config: ClientConfig,
    http_session: aiohttp.ClientSession,
    make_mp3,
) -> None:
    file = FileDescriptor.from_path(make_mp3("song.mp3", size=2048))
    strategy = ChunkedUploadStrategy(client_config, http_session)
    chunks = strategy.plan(file)
    await strategy.start(file, len(chunks))
    await strategy.upload_chunk(file, chunks[0], len(chunks))

    with pytest.raises(IncompleteUpload):
        await strategy.finish(file)

    strategy._upload_id = "expired-session"
    with pytest.raises(SessionNotFound):
        await strategy.upload_chunk(file, chunks[1], len(chunks))

    wav = FileDescriptor(
        name="song.wav",
        size=1,
        content_type="audio/wav",
        last_modified=file.last_modified,
        path=file.path,
    )
    with pytest.raises(ValidationError):
        await ChunkedUploadStrategy(client_config, http_session).start(wav, 1)


@pytest.mark.asyncio
async def test_unreachable_server_is_transport_error(
    client_config: ClientConfig, http_session: aiohttp.ClientSession, make_mp3
) -> None:
    config = client_config.model_copy(
        update={"api_url": f"http://127.0.0.1:{unused_port()}"}
    )
    file = FileDescriptor.from_path(make_mp3())

    with pytest.raises(TransportError):
        await ChunkedUploadStrategy(config, http_session).start(file, 1)


@pytest.mark.asyncio
async def test_chunk_before_start_is_rejected(
    client_config: ClientConfig, http_session: aiohttp.ClientSession, make_mp3
) -> None:
    strategy = ChunkedUploadStrategy(client_config, http_session)
    file = FileDescriptor.from_path(make_mp3())

    with pytest.raises(UploadError):
        await strategy.upload_chunk(file, strategy.plan(file)[0], 1)


@pytest.mark.asyncio
async def test_direct_strategy_puts_whole_file(
    live_server: TestServer,
    client_config: ClientConfig,
    http_session: aiohttp.ClientSession,
    make_mp3,
    server_config,
) -> None:
    config = client_config.model_copy(update={"upload_mode": UploadMode.DIRECT})
    path = make_mp3("direct.mp3", size=5000)
    file = FileDescriptor.from_path(path)
    strategy = get_upload_strategy(config, http_session)

    chunks = strategy.plan(file)
    await strategy.start(file, len(chunks))
    await strategy.upload_chunk(file, chunks[0], len(chunks))
    result = await strategy.finish(file)

    assert len(chunks) == 1
    assert result.path == "tracks/direct.mp3"
    assert result.size == 5000
    stored = Path(server_config.storage_root) / "tracks" / "direct.mp3"
    assert stored.read_bytes() == path.read_bytes()

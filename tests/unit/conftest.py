"""Shared fixtures for tracklift unit tests."""

from pathlib import Path

import aiohttp
import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer, unused_port

from tracklift.config_manager.settings import ClientConfig, ServerConfig
from tracklift.server.app import create_app

SIGNING_KEY = "test-signing-key"


def pattern_bytes(size: int) -> bytes:
    """Deterministic, non-repeating-per-chunk test payload."""
    return bytes(i % 251 for i in range(size))


@pytest.fixture
def make_mp3(tmp_path: Path):
    """Factory writing a local audio file of a given size."""

    def _make(name: str = "track.mp3", size: int = 4096) -> Path:
        music_dir = tmp_path / "music"
        music_dir.mkdir(exist_ok=True)
        path = music_dir / name
        path.write_bytes(pattern_bytes(size))
        return path

    return _make


@pytest.fixture
def server_config(tmp_path: Path) -> ServerConfig:
    port = unused_port()
    return ServerConfig(
        host="127.0.0.1",
        port=port,
        temp_dir=str(tmp_path / "server" / "temp"),
        storage_root=str(tmp_path / "server" / "objects"),
        public_url=f"http://127.0.0.1:{port}",
        signing_key=SIGNING_KEY,
    )


@pytest_asyncio.fixture
async def live_server(server_config: ServerConfig):
    """The real upload application served on ``server_config.port``."""
    server = TestServer(
        create_app(server_config), host="127.0.0.1", port=server_config.port
    )
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def client_config(server_config: ServerConfig, tmp_path: Path) -> ClientConfig:
    return ClientConfig(
        api_url=server_config.public_url,
        chunk_size=1024,
        queue_db_path=str(tmp_path / "client" / "queue.db"),
        request_timeout=10,
        completed_retention_seconds=None,
    )


@pytest_asyncio.fixture
async def http_session():
    async with aiohttp.ClientSession() as session:
        yield session

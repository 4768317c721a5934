from pathlib import Path

import pytest
from pydantic import ValidationError

from tracklift.config_manager.config import ConfigLoadError, ConfigManager
from tracklift.config_manager.helpers import parse_bytes
from tracklift.config_manager.settings import ClientConfig, ServerConfig
from tracklift.const import CHUNK_SIZE, MAX_CONCURRENT_UPLOADS
from tracklift.models import UploadMode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "TRACKLIFT_API_URL",
        "TRACKLIFT_CHUNK_SIZE",
        "TRACKLIFT_MAX_CONCURRENT_UPLOADS",
        "TRACKLIFT_UPLOAD_MODE",
        "TRACKLIFT_COMPLETED_RETENTION",
        "TRACKLIFT_PORT",
        "TRACKLIFT_MAX_CHUNK_BYTES",
        "TRACKLIFT_ALLOWED_EXTENSIONS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "tracklift.yaml"
    path.write_text(
        "client:\n"
        "  api_url: http://uploads.internal:9000\n"
        "  chunk_size: 5m\n"
        "  upload_mode: direct\n"
        "server:\n"
        "  port: 9000\n"
        "  max_chunk_bytes: 8mb\n"
        "  allowed_extensions: [MP3, wav]\n",
        encoding="utf-8",
    )
    return path


def test_defaults_without_file_or_env() -> None:
    config = ConfigManager().resolve_client_config()

    assert config.chunk_size == CHUNK_SIZE
    assert config.max_concurrent_uploads == MAX_CONCURRENT_UPLOADS
    assert config.upload_mode == UploadMode.CHUNKED
    assert config.allowed_extensions == (".mp3",)
    assert config.completed_retention_seconds == 5.0


def test_file_sections_are_applied(config_file: Path) -> None:
    manager = ConfigManager(config_file)

    client = manager.resolve_client_config()
    server = manager.resolve_server_config()

    assert client.api_url == "http://uploads.internal:9000"
    assert client.chunk_size == 5 * 1024 * 1024
    assert client.upload_mode == UploadMode.DIRECT
    assert server.port == 9000
    assert server.max_chunk_bytes == 8 * 1024 * 1024
    assert server.allowed_extensions == (".mp3", ".wav")


def test_env_overrides_file(config_file: Path, monkeypatch) -> None:
    monkeypatch.setenv("TRACKLIFT_CHUNK_SIZE", "10m")
    monkeypatch.setenv("TRACKLIFT_MAX_CONCURRENT_UPLOADS", "5")
    monkeypatch.setenv("TRACKLIFT_COMPLETED_RETENTION", "never")

    config = ConfigManager(config_file).resolve_client_config()

    assert config.chunk_size == 10 * 1024 * 1024
    assert config.max_concurrent_uploads == 5
    assert config.completed_retention_seconds is None
    assert config.api_url == "http://uploads.internal:9000"


def test_cli_overrides_env(monkeypatch) -> None:
    monkeypatch.setenv("TRACKLIFT_MAX_CONCURRENT_UPLOADS", "5")

    config = ConfigManager().resolve_client_config(
        {"max_concurrent_uploads": 2, "api_url": None}
    )

    assert config.max_concurrent_uploads == 2
    assert config.api_url == ClientConfig().api_url


def test_invalid_env_value_is_ignored(monkeypatch, caplog) -> None:
    monkeypatch.setenv("TRACKLIFT_PORT", "eighty")

    config = ConfigManager().resolve_server_config()

    assert config.port == ServerConfig().port
    assert "TRACKLIFT_PORT" in caplog.text


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        ConfigManager(tmp_path / "missing.yaml").resolve_client_config()


def test_malformed_file_raises(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("client: [unclosed\n", encoding="utf-8")

    with pytest.raises(ConfigLoadError, match="Invalid YAML"):
        ConfigManager(path).resolve_client_config()


def test_invalid_values_fail_validation() -> None:
    with pytest.raises(ValidationError):
        ConfigManager().resolve_client_config({"max_concurrent_uploads": 0})
    with pytest.raises(ValidationError):
        ClientConfig(chunk_size="lots")


def test_signing_key_defaults_to_random_secret() -> None:
    assert ServerConfig().signing_key != ServerConfig().signing_key


@pytest.mark.parametrize(
    "value, expected",
    [
        (1024, 1024),
        ("2048", 2048),
        ("1k", 1024),
        ("25m", 25 * 1024 * 1024),
        ("25MB", 25 * 1024 * 1024),
        ("1g", 1024**3),
        (" 3 kb ", 3 * 1024),
    ],
)
def test_parse_bytes(value, expected: int) -> None:
    assert parse_bytes(value) == expected


@pytest.mark.parametrize("value", ["", "m", "1.5m", "12xb", "-5"])
def test_parse_bytes_rejects_invalid(value: str) -> None:
    with pytest.raises(ValueError):
        parse_bytes(value)

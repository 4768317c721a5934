"""Resolve client and server configuration from file, environment and CLI."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel

from tracklift.config_manager.helpers import parse_bytes
from tracklift.config_manager.settings import ClientConfig, ServerConfig
from tracklift.const import CONFIG_ENCODING

logger = logging.getLogger(__name__)

ConfigT = TypeVar("ConfigT", bound=BaseModel)


def _parse_extensions(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


def _parse_optional_float(value: str) -> float | None:
    if value.strip().lower() in {"", "none", "never"}:
        return None
    return float(value)


_CLIENT_ENV_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
    "api_url": ("TRACKLIFT_API_URL", str),
    "chunk_size": ("TRACKLIFT_CHUNK_SIZE", parse_bytes),
    "max_concurrent_uploads": ("TRACKLIFT_MAX_CONCURRENT_UPLOADS", int),
    "upload_mode": ("TRACKLIFT_UPLOAD_MODE", str),
    "queue_db_path": ("TRACKLIFT_QUEUE_DB_PATH", str),
    "request_timeout": ("TRACKLIFT_REQUEST_TIMEOUT", float),
    "completed_retention_seconds": (
        "TRACKLIFT_COMPLETED_RETENTION",
        _parse_optional_float,
    ),
    "allowed_extensions": ("TRACKLIFT_ALLOWED_EXTENSIONS", _parse_extensions),
}

_SERVER_ENV_MAP: dict[str, tuple[str, Callable[[str], Any]]] = {
    "host": ("TRACKLIFT_HOST", str),
    "port": ("TRACKLIFT_PORT", int),
    "temp_dir": ("TRACKLIFT_TEMP_DIR", str),
    "storage_root": ("TRACKLIFT_STORAGE_ROOT", str),
    "target_prefix": ("TRACKLIFT_TARGET_PREFIX", str),
    "public_url": ("TRACKLIFT_PUBLIC_URL", str),
    "signing_key": ("TRACKLIFT_SIGNING_KEY", str),
    "signed_url_ttl": ("TRACKLIFT_SIGNED_URL_TTL", int),
    "session_ttl": ("TRACKLIFT_SESSION_TTL", float),
    "sweep_interval": ("TRACKLIFT_SWEEP_INTERVAL", float),
    "max_chunk_bytes": ("TRACKLIFT_MAX_CHUNK_BYTES", parse_bytes),
    "allowed_extensions": ("TRACKLIFT_ALLOWED_EXTENSIONS", _parse_extensions),
}


class ConfigLoadError(Exception):
    """Raised when a configuration file cannot be read or parsed."""


class ConfigManager:
    """Build effective configuration from a YAML file, env, and CLI overrides."""

    def __init__(self, config_path: str | Path | None = None) -> None:
        """Initialise ConfigManager.

        Args:
            config_path: Optional YAML file with ``client`` and ``server``
                sections.
        """
        self.config_path = Path(config_path).expanduser() if config_path else None

    def _read_file_section(self, section: str) -> dict[str, Any]:
        """Return one section of the YAML config file, or an empty dict."""
        if self.config_path is None:
            return {}
        try:
            with open(self.config_path, encoding=CONFIG_ENCODING) as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise ConfigLoadError(f"Config file not found: {self.config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigLoadError(f"Config file must be a mapping: {self.config_path}")
        section_data = data.get(section) or {}
        if not isinstance(section_data, dict):
            raise ConfigLoadError(f"Section {section!r} must be a mapping")
        return section_data

    @staticmethod
    def _read_env_overrides(
        env_map: dict[str, tuple[str, Callable[[str], Any]]],
    ) -> dict[str, Any]:
        """Read configuration overrides from environment variables.

        Values that fail to parse are ignored with a warning.
        """
        overrides: dict[str, Any] = {}
        for field_name, (env_var_name, parser) in env_map.items():
            env_value = os.getenv(env_var_name)
            if env_value is None:
                continue
            try:
                overrides[field_name] = parser(env_value)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", env_var_name, env_value)
        return overrides

    def _resolve(
        self,
        model: type[ConfigT],
        section: str,
        env_map: dict[str, tuple[str, Callable[[str], Any]]],
        cli_config: dict[str, Any] | None,
    ) -> ConfigT:
        merged: dict[str, Any] = dict(self._read_file_section(section))
        merged.update(self._read_env_overrides(env_map))
        if cli_config:
            merged.update({k: v for k, v in cli_config.items() if v is not None})
        return model.model_validate(merged)

    def resolve_client_config(
        self, cli_config: dict[str, Any] | None = None
    ) -> ClientConfig:
        """Resolve the effective client configuration for this run."""
        return self._resolve(ClientConfig, "client", _CLIENT_ENV_MAP, cli_config)

    def resolve_server_config(
        self, cli_config: dict[str, Any] | None = None
    ) -> ServerConfig:
        """Resolve the effective server configuration for this run."""
        return self._resolve(ServerConfig, "server", _SERVER_ENV_MAP, cli_config)

"""aiohttp application factory for the upload server."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from aiohttp import web

from tracklift.config_manager.settings import ServerConfig
from tracklift.const import PUBLIC_OBJECTS_PREFIX, REQUEST_OVERHEAD_BYTES
from tracklift.storage.local_storage import LocalObjectStorage
from tracklift.storage.object_storage import ObjectStorage

from .routes import SERVICE_KEY, error_middleware, setup_routes
from .session_store import SessionStore
from .upload_service import ChunkedUploadService

logger = logging.getLogger(__name__)

CONFIG_KEY: web.AppKey[ServerConfig] = web.AppKey("server_config", ServerConfig)


async def _sweep_loop(store: SessionStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            removed = store.sweep()
        except OSError:
            logger.error("Session sweep failed", exc_info=True)
            continue
        if removed:
            logger.info("Session sweep removed %d entries", removed)


async def _sweeper_ctx(app: web.Application) -> AsyncIterator[None]:
    config = app[CONFIG_KEY]
    store = app[SERVICE_KEY].store
    # Catch directories left behind by a previous process straight away.
    store.sweep()
    task = asyncio.create_task(_sweep_loop(store, config.sweep_interval))
    yield
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


def create_app(
    config: ServerConfig | None = None, storage: ObjectStorage | None = None
) -> web.Application:
    """Build the upload server application.

    Args:
        config: Server configuration, defaults to ``ServerConfig()``.
        storage: Object storage collaborator, defaults to local storage under
            ``config.storage_root``.

    Returns:
        The configured aiohttp application.
    """
    config = config or ServerConfig()
    if storage is None:
        storage = LocalObjectStorage(
            config.storage_root, config.public_url, config.signing_key
        )
    store = SessionStore(config.temp_dir, session_ttl=config.session_ttl)
    service = ChunkedUploadService(
        store,
        storage,
        target_prefix=config.target_prefix,
        content_type=config.content_type,
        allowed_extensions=config.allowed_extensions,
        signed_url_ttl=config.signed_url_ttl,
        max_chunk_bytes=config.max_chunk_bytes,
    )

    app = web.Application(
        client_max_size=config.max_chunk_bytes + REQUEST_OVERHEAD_BYTES,
        middlewares=[error_middleware],
    )
    app[CONFIG_KEY] = config
    app[SERVICE_KEY] = service
    setup_routes(app)
    if isinstance(storage, LocalObjectStorage):
        app.router.add_static(PUBLIC_OBJECTS_PREFIX, storage.root)
    app.cleanup_ctx.append(_sweeper_ctx)

    logger.info(
        "Upload server configured: temp=%s target_prefix=%s max_chunk=%d",
        store.temp_dir,
        service.target_prefix,
        config.max_chunk_bytes,
    )
    return app


def run_server(config: ServerConfig) -> None:
    """Serve the upload API until interrupted."""
    app = create_app(config)
    logger.info("Listening on %s:%d", config.host, config.port)
    web.run_app(app, host=config.host, port=config.port, print=None)

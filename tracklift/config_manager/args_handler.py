"""Handlers for tracklift CLI commands."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

import aiohttp
from tqdm import tqdm

from tracklift.config_manager.config import ConfigLoadError, ConfigManager
from tracklift.config_manager.helpers import parse_bytes
from tracklift.config_manager.settings import ClientConfig, ServerConfig
from tracklift.event_emitter import Emitter
from tracklift.exceptions import FileRejectedError
from tracklift.models import UploadItem, UploadMode, UploadStatus
from tracklift.server.app import run_server
from tracklift.state_management.queue_store_sqlite import SqliteQueueStore
from tracklift.upload_management.upload_manager import UploadManager


def add_client_config_args(parser: argparse.ArgumentParser) -> None:
    """Register client configuration flags on an argparse parser.

    Args:
        parser: The argparse parser (or subparser) to attach configuration
            arguments to.
    """
    parser.add_argument(
        "--api-url",
        "--api_url",
        dest="api_url",
        help="Base URL of the upload server.",
    )
    parser.add_argument(
        "--mode",
        dest="upload_mode",
        choices=[mode.value for mode in UploadMode],
        help="Upload through the server in chunks or directly to storage.",
    )
    parser.add_argument(
        "--chunk-size",
        "--chunk_size",
        dest="chunk_size",
        type=parse_bytes,
        help="Maximum chunk size, e.g. 25m.",
    )
    parser.add_argument(
        "--max-concurrent",
        "--max_concurrent",
        dest="max_concurrent_uploads",
        type=int,
        help="Number of files uploaded at once.",
    )
    parser.add_argument(
        "--queue-db",
        "--queue_db",
        dest="queue_db_path",
        help="SQLite file holding the persisted queue.",
    )


def add_server_config_args(parser: argparse.ArgumentParser) -> None:
    """Register server configuration flags on an argparse parser."""
    parser.add_argument("--host", help="Interface to bind.")
    parser.add_argument("--port", type=int, help="Port to bind.")
    parser.add_argument(
        "--storage-root",
        "--storage_root",
        dest="storage_root",
        help="Directory of the local object storage.",
    )
    parser.add_argument(
        "--temp-dir",
        "--temp_dir",
        dest="temp_dir",
        help="Directory for upload session temp areas.",
    )
    parser.add_argument(
        "--public-url",
        "--public_url",
        dest="public_url",
        help="Externally reachable base URL used in signed upload URLs.",
    )


def _extract_config_updates(
    args: argparse.Namespace, model: type[ClientConfig] | type[ServerConfig]
) -> dict[str, Any]:
    """Return the config fields set on the command line."""
    allowed = set(model.model_fields.keys())
    return {k: v for k, v in vars(args).items() if k in allowed and v is not None}


def _client_config(args: argparse.Namespace) -> ClientConfig:
    manager = ConfigManager(args.config)
    return manager.resolve_client_config(_extract_config_updates(args, ClientConfig))


def _format_item(item: UploadItem) -> str:
    line = (
        f"{item.id[:8]}  {item.status.value:<9}  {item.progress:5.1f}%  "
        f"{item.file.name}"
    )
    if item.error:
        line += f"  ({item.error})"
    return line


class _ProgressDisplay:
    """One tqdm bar per queue item, fed by manager notifications."""

    def __init__(self) -> None:
        self._bars: dict[str, tqdm] = {}
        self.final: dict[str, UploadItem] = {}

    def __call__(self, event: str, payload: Any) -> None:
        items = payload if event == Emitter.QUEUE_UPDATED else [payload]
        for item in items:
            self._update(item)

    def _update(self, item: UploadItem) -> None:
        bar = self._bars.get(item.id)
        if bar is None:
            bar = tqdm(
                total=100,
                desc=item.file.name,
                position=len(self._bars),
                unit="%",
                bar_format="{desc}: {percentage:3.0f}%|{bar}| {postfix}",
            )
            self._bars[item.id] = bar
        bar.n = item.progress
        bar.set_postfix_str(item.error or item.status_text, refresh=False)
        bar.refresh()
        if item.status.is_terminal:
            self.final[item.id] = item

    def close(self) -> None:
        for bar in self._bars.values():
            bar.close()


async def _run_queue(
    config: ClientConfig,
    files: list[str],
    requeue_failed: bool = False,
) -> int:
    store = SqliteQueueStore(config.queue_db_path)
    await store.init_async_store()
    display = _ProgressDisplay()
    exit_code = 0
    try:
        async with aiohttp.ClientSession() as session:
            manager = UploadManager(config, session, store)
            unsubscribe = manager.add_listener(display)
            try:
                await manager.start(requeue_failed=requeue_failed)
                if files:
                    try:
                        await manager.add_files(files)
                    except FileRejectedError as exc:
                        for name, reason in exc.rejections.items():
                            print(f"Skipped {name}: {reason}", file=sys.stderr)
                        exit_code = 1
                await manager.wait_until_idle()
            except asyncio.CancelledError:
                await manager.cancel_all_active()
                raise
            finally:
                await manager.shutdown(wait=False)
                unsubscribe()
    finally:
        display.close()
        await store.close()

    if any(item.status == UploadStatus.ERROR for item in display.final.values()):
        exit_code = 1
    return exit_code


def handle_upload(args: argparse.Namespace) -> None:
    """Handle the ``upload`` CLI command.

    Restores the persisted queue, adds the given files and shows progress
    until every item is finished. Exits non-zero if any upload failed.
    """
    try:
        config = _client_config(args)
    except ConfigLoadError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(_run_queue(config, args.files)))


def handle_retry(args: argparse.Namespace) -> None:
    """Handle the ``retry`` CLI command: re-queue failed uploads and drain."""
    try:
        config = _client_config(args)
    except ConfigLoadError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(_run_queue(config, [], requeue_failed=True)))


async def _list_queue(config: ClientConfig) -> list[UploadItem]:
    store = SqliteQueueStore(config.queue_db_path)
    try:
        await store.init_async_store()
        return await store.list_items()
    finally:
        await store.close()


def handle_queue(args: argparse.Namespace) -> None:
    """Handle the ``queue`` CLI command: print the persisted queue."""
    try:
        config = _client_config(args)
    except ConfigLoadError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    items = asyncio.run(_list_queue(config))
    if not items:
        print("Upload queue is empty.")
        return
    for item in items:
        print(_format_item(item))


def handle_serve(args: argparse.Namespace) -> None:
    """Handle the ``serve`` CLI command: run the upload server."""
    try:
        config = ConfigManager(args.config).resolve_server_config(
            _extract_config_updates(args, ServerConfig)
        )
    except ConfigLoadError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    run_server(config)

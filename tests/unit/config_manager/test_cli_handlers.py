"""Tests for tracklift CLI handlers."""

import argparse
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest

from tracklift.config_manager import args_handler
from tracklift.config_manager.settings import ClientConfig
from tracklift.models import FileDescriptor, UploadItem, UploadStatus
from tracklift.state_management.queue_store_sqlite import SqliteQueueStore


def _ns(**kwargs: Any) -> argparse.Namespace:
    """Build a simple argparse.Namespace for handler tests."""
    defaults = {
        "config": None,
        "api_url": None,
        "upload_mode": None,
        "chunk_size": None,
        "max_concurrent_uploads": None,
        "queue_db_path": None,
    }
    defaults.update(kwargs)
    return argparse.Namespace(**defaults)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("TRACKLIFT_API_URL", "TRACKLIFT_QUEUE_DB_PATH"):
        monkeypatch.delenv(name, raising=False)


def _item(item_id: str, name: str, status: UploadStatus, **kwargs) -> UploadItem:
    return UploadItem(
        id=item_id,
        file=FileDescriptor(
            name=name,
            size=10,
            content_type="audio/mpeg",
            last_modified=datetime(2024, 1, 1),
            path=f"/music/{name}",
        ),
        status=status,
        added_at=datetime(2024, 1, 1, 12, len(item_id)),
        **kwargs,
    )


async def _populate(db_path: Path, items: list[UploadItem]) -> None:
    store = SqliteQueueStore(db_path)
    await store.init_async_store()
    try:
        for item in items:
            await store.upsert_item(item)
    finally:
        await store.close()


def test_extract_config_updates_keeps_only_set_model_fields() -> None:
    args = _ns(api_url="http://uploads:9000", files=["a.mp3"], log_level="INFO")

    updates = args_handler._extract_config_updates(args, ClientConfig)

    assert updates == {"api_url": "http://uploads:9000"}


def test_handle_queue_prints_empty_message(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    args = _ns(queue_db_path=str(tmp_path / "queue.db"))

    args_handler.handle_queue(args)

    assert capsys.readouterr().out.strip() == "Upload queue is empty."


def test_handle_queue_lists_persisted_items(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    db_path = tmp_path / "queue.db"
    asyncio.run(
        _populate(
            db_path,
            [
                _item("aaaaaaaaaa", "first.mp3", UploadStatus.PENDING),
                _item(
                    "bbbbbbbbbbbb",
                    "second.mp3",
                    UploadStatus.ERROR,
                    progress=45.0,
                    error="connection reset",
                ),
            ],
        )
    )

    args_handler.handle_queue(_ns(queue_db_path=str(db_path)))

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("aaaaaaaa  pending")
    assert lines[0].endswith("first.mp3")
    assert "error" in lines[1]
    assert "45.0%" in lines[1]
    assert lines[1].endswith("second.mp3  (connection reset)")


def test_handle_upload_exits_2_on_missing_config_file(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    args = _ns(config=str(tmp_path / "missing.yaml"), files=["a.mp3"])

    with pytest.raises(SystemExit) as excinfo:
        args_handler.handle_upload(args)

    assert excinfo.value.code == 2
    assert "Config file not found" in capsys.readouterr().err


def test_handle_upload_runs_queue_with_cli_overrides(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    captured: dict[str, Any] = {}

    async def fake_run_queue(
        config: ClientConfig, files: list[str], requeue_failed: bool = False
    ) -> int:
        captured["config"] = config
        captured["files"] = files
        captured["requeue_failed"] = requeue_failed
        return 1

    monkeypatch.setattr(args_handler, "_run_queue", fake_run_queue)
    args = _ns(
        files=["a.mp3", "b.mp3"],
        api_url="http://uploads:9000",
        chunk_size=2048,
        queue_db_path=str(tmp_path / "queue.db"),
    )

    with pytest.raises(SystemExit) as excinfo:
        args_handler.handle_upload(args)

    assert excinfo.value.code == 1
    assert captured["files"] == ["a.mp3", "b.mp3"]
    assert captured["requeue_failed"] is False
    assert captured["config"].api_url == "http://uploads:9000"
    assert captured["config"].chunk_size == 2048


def test_handle_retry_requeues_failed_items(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    captured: dict[str, Any] = {}

    async def fake_run_queue(
        config: ClientConfig, files: list[str], requeue_failed: bool = False
    ) -> int:
        captured["files"] = files
        captured["requeue_failed"] = requeue_failed
        return 0

    monkeypatch.setattr(args_handler, "_run_queue", fake_run_queue)

    with pytest.raises(SystemExit) as excinfo:
        args_handler.handle_retry(_ns(queue_db_path=str(tmp_path / "queue.db")))

    assert excinfo.value.code == 0
    assert captured == {"files": [], "requeue_failed": True}


def test_progress_display_records_terminal_items() -> None:
    display = args_handler._ProgressDisplay()
    uploading = _item("one", "one.mp3", UploadStatus.UPLOADING, progress=30.0)
    done = _item("two", "two.mp3", UploadStatus.COMPLETED, progress=100.0)

    try:
        display("QUEUE_UPDATED", [uploading, done])
        display("UPLOAD_PROGRESS", uploading)
    finally:
        display.close()

    assert set(display.final) == {"two"}

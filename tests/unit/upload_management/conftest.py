"""Fakes for driving the upload queue without a network."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from tracklift.chunking import ChunkRange, plan_chunks
from tracklift.exceptions import TransportError
from tracklift.models import FileDescriptor, FinalizedObject


class FakeStrategy:
    """In-memory transport recording every call it receives."""

    def __init__(
        self,
        gate: asyncio.Event,
        chunk_size: int = 4,
        fail_on_chunk: int | None = None,
    ) -> None:
        self.gate = gate
        self.chunk_size = chunk_size
        self.fail_on_chunk = fail_on_chunk
        self.calls: list[tuple] = []

    def plan(self, file: FileDescriptor) -> list[ChunkRange]:
        return plan_chunks(file.size, self.chunk_size)

    async def start(self, file: FileDescriptor, total_chunks: int) -> None:
        self.calls.append(("start", file.name, total_chunks))
        await self.gate.wait()

    async def upload_chunk(
        self, file: FileDescriptor, chunk: ChunkRange, total_chunks: int
    ) -> None:
        self.calls.append(("chunk", file.name, chunk.index))
        if chunk.index == self.fail_on_chunk:
            raise TransportError("connection reset")

    async def finish(self, file: FileDescriptor) -> FinalizedObject:
        self.calls.append(("finish", file.name))
        return FinalizedObject(
            path=f"tracks/{file.name}", name=file.name, size=file.size
        )


class StrategyFactory:
    """Stands in for ``get_upload_strategy``."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.gate.set()
        self.fail_once_on_chunk: int | None = None
        self.created: list[FakeStrategy] = []

    def __call__(self, config, session) -> FakeStrategy:
        strategy = FakeStrategy(self.gate, fail_on_chunk=self.fail_once_on_chunk)
        self.fail_once_on_chunk = None
        self.created.append(strategy)
        return strategy

    @property
    def started_files(self) -> list[str]:
        return [
            call[1]
            for strategy in self.created
            for call in strategy.calls
            if call[0] == "start"
        ]


@pytest.fixture
def strategy_factory():
    factory = StrategyFactory()
    with patch(
        "tracklift.upload_management.upload_manager.get_upload_strategy", factory
    ):
        yield factory

"""Tests for debounced file watching."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from hybrid_code_search.core.exceptions import IndexingError
from hybrid_code_search.core.file_discovery import FileDiscovery
from hybrid_code_search.core.models import (
    ChangeType,
    FileChangeBatch,
    IndexOperationResult,
    IndexState,
)
from hybrid_code_search.core.watcher import ChangeDebouncer, CodeFileHandler, FileWatcher


class RecordingLoop:
    """Stands in for the event loop; records thread-safe callbacks."""

    def __init__(self):
        self.calls = []

    def call_soon_threadsafe(self, callback, *args):
        self.calls.append(args)


class TestFileChangeBatch:
    def test_latest_change_wins(self, tmp_path):
        batch = FileChangeBatch()
        path = tmp_path / "a.py"
        batch.add(path, ChangeType.ADDED)
        batch.add(path, ChangeType.DELETED)
        assert batch.deleted == {path}
        assert not batch.added
        assert len(batch) == 1


class TestChangeDebouncer:
    """Bursts collapse into one callback."""

    async def test_burst_is_coalesced(self, tmp_path):
        batches = []

        async def callback(batch):
            batches.append(batch)

        debouncer = ChangeDebouncer(20, callback)
        debouncer.notify(tmp_path / "a.py", ChangeType.CHANGED)
        debouncer.notify(tmp_path / "b.py", ChangeType.ADDED)
        debouncer.notify(tmp_path / "a.py", ChangeType.CHANGED)

        await asyncio.sleep(0.2)

        assert len(batches) == 1
        assert batches[0].paths == [tmp_path / "a.py", tmp_path / "b.py"]
        await debouncer.close()

    async def test_event_during_slow_callback_is_next_batch(self, tmp_path):
        completed = []

        async def slow_callback(batch):
            await asyncio.sleep(0.3)
            completed.append([path.name for path in batch.paths])

        debouncer = ChangeDebouncer(50, slow_callback)
        debouncer.notify(tmp_path / "a.py", ChangeType.CHANGED)
        await asyncio.sleep(0.15)
        debouncer.notify(tmp_path / "b.py", ChangeType.CHANGED)

        await asyncio.sleep(0.9)

        assert completed == [["a.py"], ["b.py"]]
        await debouncer.close()

    async def test_close_waits_for_delivery(self, tmp_path):
        completed = []

        async def slow_callback(batch):
            await asyncio.sleep(0.1)
            completed.append(len(batch))

        debouncer = ChangeDebouncer(10, slow_callback)
        debouncer.notify(tmp_path / "a.py", ChangeType.CHANGED)
        await asyncio.sleep(0.05)

        await debouncer.close()

        assert completed == [1]

    async def test_flush_delivers_immediately(self, tmp_path):
        callback = AsyncMock()
        debouncer = ChangeDebouncer(60_000, callback)
        debouncer.notify(tmp_path.as_uri() + "/c.py", ChangeType.DELETED)

        await debouncer.flush()

        batch = callback.await_args.args[0]
        assert batch.deleted == {tmp_path / "c.py"}
        await debouncer.flush()
        callback.assert_awaited_once()
        await debouncer.close()

    async def test_callback_errors_are_logged(self, tmp_path):
        callback = AsyncMock(side_effect=IndexingError("disk full"))
        debouncer = ChangeDebouncer(10, callback)
        debouncer.notify(tmp_path / "a.py", ChangeType.CHANGED)

        await debouncer.flush()

        callback.assert_awaited_once()
        assert len(debouncer.pending) == 0
        await debouncer.close()


class TestCodeFileHandler:
    """Event filtering and change mapping."""

    @pytest.fixture
    def handler(self, workspace):
        discovery = FileDiscovery(workspace)
        debouncer = ChangeDebouncer(500, AsyncMock())
        return CodeFileHandler(discovery, debouncer, loop=RecordingLoop())

    def test_maps_events(self, handler, workspace):
        nav = str(workspace / "src" / "nav.py")
        handler.on_created(FileCreatedEvent(nav))
        handler.on_modified(FileModifiedEvent(nav))
        handler.on_deleted(FileDeletedEvent(nav))

        assert [change for _, change in handler.loop.calls] == [
            ChangeType.ADDED,
            ChangeType.CHANGED,
            ChangeType.DELETED,
        ]

    def test_move_is_delete_plus_add(self, handler, workspace):
        handler.on_moved(
            FileMovedEvent(str(workspace / "src" / "old.py"), str(workspace / "src" / "new.py"))
        )
        assert handler.loop.calls == [
            (workspace / "src" / "old.py", ChangeType.DELETED),
            (workspace / "src" / "new.py", ChangeType.ADDED),
        ]

    def test_ignores_irrelevant_paths(self, handler, workspace):
        handler.on_created(FileCreatedEvent(str(workspace / "image.png")))
        handler.on_created(FileCreatedEvent(str(workspace / "node_modules" / "x.js")))
        handler.on_created(DirCreatedEvent(str(workspace / "src" / "pkg")))
        assert handler.loop.calls == []


class TestFileWatcher:
    """Batches reach refresh_paths."""

    async def test_handle_batch_refreshes_paths(self, workspace):
        index = AsyncMock()
        index.refresh_paths.return_value = IndexOperationResult(
            workspace=str(workspace), state=IndexState.READY, files_processed=1
        )
        watcher = FileWatcher(workspace, index, FileDiscovery(workspace), debounce_ms=10)
        batch = FileChangeBatch()
        batch.add(workspace / "src" / "nav.py", ChangeType.CHANGED)

        await watcher._handle_batch(batch)

        index.refresh_paths.assert_awaited_once_with(
            workspace, [workspace / "src" / "nav.py"]
        )

    async def test_start_and_stop(self, workspace):
        watcher = FileWatcher(workspace, AsyncMock(), FileDiscovery(workspace))
        async with watcher:
            assert watcher.is_running
        assert not watcher.is_running
        assert watcher.observer is None

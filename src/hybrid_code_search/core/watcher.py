"""File system watcher for incremental indexing."""

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .exceptions import HybridSearchError
from .file_discovery import FileDiscovery, uri_to_path
from .index_service import IndexService
from .models import ChangeType, FileChangeBatch

BatchCallback = Callable[[FileChangeBatch], Awaitable[None]]


class ChangeDebouncer:
    """Coalesces bursts of change events into one :class:`FileChangeBatch`.

    Every event restarts the quiet-period timer; the callback runs once the
    workspace has been quiet for ``debounce_ms``. A new event only resets the
    timer, never a delivery already in progress: batches are delivered one
    at a time and events arriving meanwhile form the next batch. Must be used
    from the event loop thread.
    """

    def __init__(self, debounce_ms: int, callback: BatchCallback) -> None:
        self.delay = debounce_ms / 1000
        self.callback = callback
        self.pending = FileChangeBatch()
        self._timer: asyncio.TimerHandle | None = None
        self._deliveries: set[asyncio.Task] = set()
        self._delivery_lock = asyncio.Lock()

    def notify(self, path: str | Path, change: ChangeType) -> None:
        """Record a change and restart the debounce timer."""
        resolved = uri_to_path(path) if isinstance(path, str) else path
        self.pending.add(resolved, change)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(
            self.delay, self._start_delivery
        )

    def _start_delivery(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def flush(self) -> None:
        """Deliver pending changes immediately."""
        async with self._delivery_lock:
            if not self.pending:
                return
            batch, self.pending = self.pending, FileChangeBatch()
            logger.debug(f"Flushing {len(batch)} file changes")
            try:
                await self.callback(batch)
            except HybridSearchError as e:
                logger.error(f"Error processing file changes: {e}")

    async def close(self) -> None:
        """Stop the timer and let in-flight deliveries finish."""
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        if self._deliveries:
            await asyncio.gather(*self._deliveries)


class CodeFileHandler(FileSystemEventHandler):
    """Forwards watchdog events for indexable files to a debouncer."""

    def __init__(
        self,
        discovery: FileDiscovery,
        debouncer: ChangeDebouncer,
        loop: asyncio.AbstractEventLoop,
    ):
        """Initialize file handler.

        Args:
            discovery: Decides which paths are worth indexing
            debouncer: Receives the changes on the event loop thread
            loop: Event loop the debouncer lives on
        """
        super().__init__()
        self.discovery = discovery
        self.debouncer = debouncer
        self.loop = loop

    def _schedule_change(self, src_path: str, change: ChangeType) -> None:
        path = Path(src_path)
        if self.discovery.is_candidate(path):
            # watchdog calls us from its own thread
            self.loop.call_soon_threadsafe(self.debouncer.notify, path, change)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._schedule_change(event.src_path, ChangeType.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._schedule_change(event.src_path, ChangeType.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._schedule_change(event.src_path, ChangeType.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._schedule_change(event.src_path, ChangeType.DELETED)
            self._schedule_change(event.dest_path, ChangeType.ADDED)


class FileWatcher:
    """Watches a workspace and feeds debounced batches to ``refresh_paths``."""

    def __init__(
        self,
        workspace: Path,
        index: IndexService,
        discovery: FileDiscovery,
        debounce_ms: int = 500,
    ):
        self.workspace = workspace
        self.index = index
        self.discovery = discovery
        self.debouncer = ChangeDebouncer(debounce_ms, self._handle_batch)
        self.observer: Observer | None = None
        self.is_running = False

    async def start(self) -> None:
        if self.is_running:
            logger.warning("File watcher is already running")
            return

        logger.info(f"Starting file watcher for {self.workspace}")
        handler = CodeFileHandler(
            self.discovery, self.debouncer, asyncio.get_running_loop()
        )
        self.observer = Observer()
        self.observer.schedule(handler, str(self.workspace), recursive=True)
        self.observer.start()
        self.is_running = True

    async def stop(self) -> None:
        if not self.is_running:
            return

        logger.info("Stopping file watcher")
        if self.observer:
            self.observer.stop()
            await asyncio.to_thread(self.observer.join)
            self.observer = None
        await self.debouncer.flush()
        await self.debouncer.close()
        self.is_running = False

    async def _handle_batch(self, batch: FileChangeBatch) -> None:
        result = await self.index.refresh_paths(self.workspace, list(batch.paths))
        logger.info(
            f"Refreshed {len(batch)} changed paths: {result.files_processed} indexed, "
            f"{len(batch.deleted)} deleted, state={result.state.value}"
        )

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

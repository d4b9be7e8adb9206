"""Cooperative cancellation for long-running indexing operations."""

import asyncio
import threading

from .exceptions import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation flag checked at batch and file boundaries.

    Work completed before cancellation is kept; callers observe the
    cancellation through :meth:`check` raising ``OperationCancelledError``,
    by polling :attr:`is_cancelled`, or by awaiting :meth:`wait`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: list[tuple[asyncio.AbstractEventLoop, asyncio.Event]] = []
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation."""
        self.reason = reason
        with self._lock:
            self._event.set()
            waiters = list(self._waiters)
        for loop, event in waiters:
            if not loop.is_closed():
                loop.call_soon_threadsafe(event.set)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise if cancellation was requested.

        Raises:
            OperationCancelledError: If :meth:`cancel` has been called
        """
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "Operation cancelled")

    async def wait(self) -> None:
        """Block until :meth:`cancel` is called."""
        event = asyncio.Event()
        waiter = (asyncio.get_running_loop(), event)
        with self._lock:
            if self._event.is_set():
                return
            self._waiters.append(waiter)
        try:
            await event.wait()
        finally:
            with self._lock:
                self._waiters.remove(waiter)


async def wait_unless_cancelled(
    event: asyncio.Event, cancellation: CancellationToken | None
) -> bool:
    """Wait for ``event`` to be set, giving up early on cancellation.

    Returns:
        True once ``event`` is set, False if ``cancellation`` fired first
    """
    if cancellation is None:
        await event.wait()
        return True
    if cancellation.is_cancelled:
        return False
    if event.is_set():
        return True

    resumed = asyncio.ensure_future(event.wait())
    cancelled = asyncio.ensure_future(cancellation.wait())
    try:
        await asyncio.wait({resumed, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        resumed.cancel()
        cancelled.cancel()
    return not cancellation.is_cancelled

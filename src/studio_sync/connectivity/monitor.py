"""
Connectivity monitor.

Tracks reachable/unreachable transitions reported by the host and keeps
a short-lived "recently recovered" flag after each recovery. Listeners
subscribed to the monitor are notified on every offline -> online edge.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

OnlineListener = Callable[[], Awaitable[Any] | Any]

DEFAULT_RECOVERY_WINDOW = 4.0


class ConnectivityMonitor:
    """
    In-memory view of network reachability.

    - set_online(): is_online becomes True, recently_recovered becomes
      True for recovery_window seconds (timer restarts on every flap)
    - set_offline(): both flags drop to False and the timer is cancelled

    Must be driven from within a running event loop.

    Example:
        >>> monitor = ConnectivityMonitor(initially_online=False)
        >>> monitor.subscribe(engine.process_sync_queue)
        >>> monitor.set_online()
    """

    def __init__(
        self,
        *,
        initially_online: bool = True,
        recovery_window: float = DEFAULT_RECOVERY_WINDOW,
    ) -> None:
        """
        Initialize the monitor.

        Args:
            initially_online: Reachability at startup
            recovery_window: Seconds recently_recovered stays True
        """
        self._is_online = initially_online
        self._recently_recovered = False
        self._recovery_window = recovery_window
        self._reset_handle: asyncio.TimerHandle | None = None
        self._listeners: list[OnlineListener] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_online(self) -> bool:
        """Current connectivity state."""
        return self._is_online

    @property
    def recently_recovered(self) -> bool:
        """True for a short window after connectivity comes back."""
        return self._recently_recovered

    def subscribe(self, listener: OnlineListener) -> None:
        """Register a callback for offline -> online transitions."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: OnlineListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def set_online(self) -> None:
        """Handle a host "online" event."""
        if self._is_online:
            return

        self._is_online = True
        self._recently_recovered = True
        self._cancel_reset()
        loop = asyncio.get_running_loop()
        self._reset_handle = loop.call_later(self._recovery_window, self._clear_recovered)
        logger.info("Connectivity restored")

        for listener in list(self._listeners):
            self._notify(listener)

    def set_offline(self) -> None:
        """Handle a host "offline" event."""
        self._recently_recovered = False
        self._cancel_reset()
        if not self._is_online:
            return

        self._is_online = False
        logger.warning("Connectivity lost")

    def close(self) -> None:
        """Cancel any pending recovery timer."""
        self._cancel_reset()

    async def wait_listeners(self) -> None:
        """Wait for asynchronous listeners started by transitions."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _notify(self, listener: OnlineListener) -> None:
        try:
            result = listener()
        except Exception:
            logger.exception("Online listener %r failed", listener)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Online listener failed: %s", task.exception())

    def _cancel_reset(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None

    def _clear_recovered(self) -> None:
        self._reset_handle = None
        self._recently_recovered = False

"""
Connectivity probe.

Python hosts get no browser online/offline events, so the probe checks
reachability of the generation service on an interval and feeds the
result into a ConnectivityMonitor.
"""

import asyncio
import logging

import httpx

from studio_sync.connectivity.monitor import ConnectivityMonitor

logger = logging.getLogger(__name__)


class ConnectivityProbe:
    """Periodic HTTP reachability check driving a ConnectivityMonitor."""

    DEFAULT_INTERVAL = 30.0
    DEFAULT_TIMEOUT = 5.0

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        url: str,
        *,
        interval: float = DEFAULT_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._monitor = monitor
        self._url = url
        self._interval = interval
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """
        Probe the target once and update the monitor.

        Any HTTP response counts as reachable; only transport failures
        (DNS, refused connection, timeout) count as offline.
        """
        try:
            await self._client.head(self._url)
        except httpx.TransportError as e:
            logger.debug("Connectivity probe to %s failed: %s", self._url, e)
            self._monitor.set_offline()
            return False

        self._monitor.set_online()
        return True

    def start(self) -> None:
        """Start the background probe loop."""
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Started connectivity probe for %s", self._url)

    async def stop(self) -> None:
        """Stop the probe loop and release the HTTP client."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._owns_client:
            await self._client.aclose()
        logger.info("Stopped connectivity probe")

    async def _loop(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval)

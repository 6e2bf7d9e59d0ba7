"""Connectivity monitor with edge-triggered "came online" events."""

import asyncio
import logging
from typing import Callable

import httpx

logger = logging.getLogger(__name__)

OnlineListener = Callable[[], None]


class ConnectivityMonitor:
    """Tracks online/offline state.

    The platform (or the built-in HTTP probe) reports connectivity through
    ``update``. Listeners fire once per offline -> online transition, never
    while the device simply stays online.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        probe_url: str = "",
        probe_interval_seconds: float = 15.0,
        probe_timeout_seconds: float = 5.0,
        assume_online: bool = True,
    ):
        """Initialize the monitor.

        Args:
            client: HTTP client for the reachability probe.
            probe_url: URL probed by ``check``; empty disables probing.
            probe_interval_seconds: Period of the background probe loop.
            probe_timeout_seconds: Timeout of a single probe.
            assume_online: Initial state before the first report.
        """
        self._client = client
        self.probe_url = probe_url
        self._interval = probe_interval_seconds
        self._probe_timeout = probe_timeout_seconds
        self._online = assume_online
        self._listeners: list[OnlineListener] = []
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: OnlineListener) -> Callable[[], None]:
        """Register a callback for offline -> online transitions.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def update(self, connected: bool, reachable: bool | None = None) -> bool:
        """Feed a platform connectivity report.

        Args:
            connected: Whether a network interface is connected.
            reachable: Whether the internet is reachable; None means unknown
                and does not count as offline.

        Returns:
            The new online state.
        """
        was_online = self._online
        self._online = bool(connected) and reachable is not False

        if was_online != self._online:
            logger.info(f"Connectivity changed: {'online' if self._online else 'offline'}")

        if not was_online and self._online:
            for listener in list(self._listeners):
                try:
                    listener()
                except Exception as e:
                    logger.error(f"Online listener failed: {e}", exc_info=True)

        return self._online

    async def check(self) -> bool:
        """Re-check connectivity.

        Probes ``probe_url`` when configured; otherwise returns the last
        reported state.
        """
        if not self.probe_url or self._client is None:
            return self._online

        try:
            await self._client.get(self.probe_url, timeout=self._probe_timeout)
            reachable = True
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            reachable = False

        return self.update(connected=True, reachable=reachable)

    async def start(self) -> None:
        """Start periodic probing as a background task."""
        if self._running or not self.probe_url:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Connectivity probe started ({self.probe_url} every {self._interval}s)")

    async def stop(self) -> None:
        """Stop periodic probing."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.check()
            except Exception as e:
                logger.error(f"Connectivity probe error: {e}", exc_info=True)
            await asyncio.sleep(self._interval)

"""
Network reachability monitor.

Reports whether the sync server's host can be resolved and notifies
subscribers when that changes. State can also be pushed in from the
host platform with set_online().
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections.abc import Callable

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks network reachability and raises change notifications.

    Example:
        >>> monitor = ConnectivityMonitor(host="sync.example.com")
        >>> unsubscribe = monitor.subscribe(lambda online: print("online" if online else "offline"))
        >>> await monitor.start()
    """

    def __init__(
        self,
        host: str = "localhost",
        timeout: float = 5.0,
        poll_interval: float = 10.0,
        initially_online: bool = True,
    ) -> None:
        self.host = host
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._online = initially_online
        self._listeners: list[ConnectivityListener] = []
        self._poll_task: asyncio.Task[None] | None = None

    def is_online(self) -> bool:
        """Current reachability."""
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Update reachability, notifying listeners only on change."""
        if online == self._online:
            return
        self._online = online
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener failed")

    async def check(self) -> bool:
        """Probe reachability by resolving the host, then update state."""
        try:
            await asyncio.wait_for(
                asyncio.to_thread(socket.gethostbyname, self.host), timeout=self.timeout
            )
            online = True
        except (OSError, TimeoutError):
            online = False
        self.set_online(online)
        return online

    async def start(self) -> None:
        """Start periodic probing."""
        if self._poll_task is not None:
            return

        async def poll_loop() -> None:
            while True:
                try:
                    await self.check()
                    await asyncio.sleep(self.poll_interval)
                except asyncio.CancelledError:
                    break

        self._poll_task = asyncio.create_task(poll_loop())

    async def stop(self) -> None:
        """Stop periodic probing."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

"""
Automatic sync triggers.

Two triggers push pending records without user action:
- A periodic timer (disabled by default)
- Connectivity returning to online

Both go through SyncOrchestrator.sync_pending, so they share its
re-entrancy guard with manual sync.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from ..connectivity import ConnectivityMonitor
from .orchestrator import SyncOrchestrator
from .report import SyncReport

logger = logging.getLogger(__name__)


class AutoSyncScheduler:
    """Runs sync_pending on a timer and whenever connectivity comes back."""

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        connectivity: ConnectivityMonitor | None = None,
        interval: float = 30.0,
        enabled: bool = True,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.orchestrator = orchestrator
        self.connectivity = connectivity or orchestrator.connectivity
        self.interval = interval
        self.enabled = enabled
        self.trigger_count = 0

        self._timer_task: asyncio.Task[None] | None = None
        self._trigger_tasks: set[asyncio.Task[SyncReport | None]] = set()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def running(self) -> bool:
        return self._timer_task is not None

    async def start(self) -> None:
        """Start the timer and listen for connectivity changes."""
        if self._unsubscribe is None:
            self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_changed)

        if not self.enabled or self._timer_task is not None:
            return

        async def timer_loop() -> None:
            while True:
                try:
                    await asyncio.sleep(self.interval)
                    await self.trigger("timer")
                except asyncio.CancelledError:
                    break
                except Exception:
                    logger.exception("Automatic sync failed")

        self._timer_task = asyncio.create_task(timer_loop())
        logger.info(f"Automatic sync started (every {self.interval:g}s)")

    async def stop(self) -> None:
        """Stop the timer, stop listening and wait for triggered syncs."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._trigger_tasks:
            await asyncio.gather(*self._trigger_tasks, return_exceptions=True)

    async def trigger(self, reason: str) -> SyncReport | None:
        """Run sync_pending if online and idle. Returns None when nothing ran."""
        if not self.connectivity.is_online():
            logger.debug(f"Sync trigger ({reason}) ignored: offline")
            return None
        if self.orchestrator.busy:
            logger.debug(f"Sync trigger ({reason}) ignored: sync already running")
            return None

        self.trigger_count += 1
        logger.debug(f"Sync triggered by {reason}")
        return await self.orchestrator.sync_pending()

    def _on_connectivity_changed(self, online: bool) -> None:
        if not online:
            return
        task = asyncio.get_running_loop().create_task(self._trigger_safely("connectivity"))
        self._trigger_tasks.add(task)
        task.add_done_callback(self._trigger_tasks.discard)

    async def _trigger_safely(self, reason: str) -> SyncReport | None:
        try:
            return await self.trigger(reason)
        except Exception:
            logger.exception(f"Sync triggered by {reason} failed")
            return None

"""
Observable projection of sync state for the presentation layer.

All mutations go through dispatch(): each one is a closure placed on an
asyncio queue and applied by a single consumer task, so observers never
see a half-applied change. dispatch() may be called from other threads;
the closure is then handed to the owning loop with call_soon_threadsafe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from ..models import PersonDisplay, StatusDisplay, SyncStatus, describe_connection

logger = logging.getLogger(__name__)

# A mutation returns the names of the properties it changed
Mutation = Callable[[], Iterable[str]]
ProjectionListener = Callable[[str], None]


class SyncProjection:
    """Pending/synced lists, busy flag and last result, as seen by observers.

    Properties announced to listeners: "pending", "synced", "has_pending",
    "busy", "last_report", "pagination_info", "connection".
    """

    def __init__(self) -> None:
        self.pending: list[PersonDisplay] = []
        self.synced: list[PersonDisplay] = []
        self.busy = False
        self.last_report: Any = None
        self.pagination_info = ""
        self.connection: StatusDisplay = describe_connection(True)

        self._listeners: list[ProjectionListener] = []
        self._queue: asyncio.Queue[Mutation] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._consumer: asyncio.Task[None] | None = None

    @property
    def has_pending(self) -> bool:
        return bool(self.pending)

    def subscribe(self, listener: ProjectionListener) -> Callable[[], None]:
        """Register a property-changed listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def find(self, local_id: int) -> PersonDisplay | None:
        for display in self.pending + self.synced:
            if display.local_id == local_id:
                return display
        return None

    # =========================================================================
    # Apply loop
    # =========================================================================

    def _ensure_consumer(self, loop: asyncio.AbstractEventLoop) -> asyncio.Queue[Mutation]:
        queue = self._queue
        if queue is None:
            queue = self._queue = asyncio.Queue()
        if self._consumer is None or self._consumer.done():
            self._loop = loop
            self._consumer = loop.create_task(self._consume(queue))
        return queue

    async def _consume(self, queue: asyncio.Queue[Mutation]) -> None:
        while True:
            mutation = await queue.get()
            try:
                changed = list(mutation())
                for name in changed:
                    self._notify(name)
            except Exception:
                logger.exception("Projection update failed")
            finally:
                queue.task_done()

    def _notify(self, name: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(name)
            except Exception:
                logger.exception(f"Projection listener failed for {name}")

    def dispatch(self, mutation: Mutation) -> None:
        """Queue a mutation for the apply loop."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            self._ensure_consumer(running).put_nowait(mutation)
        elif self._loop is not None and self._queue is not None:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, mutation)
        else:
            raise RuntimeError("SyncProjection has no event loop yet; dispatch from async code first")

    async def flush(self) -> None:
        """Wait until every dispatched mutation has been applied."""
        if self._queue is not None and self._consumer is not None:
            await self._queue.join()

    async def close(self) -> None:
        """Apply outstanding mutations and stop the consumer."""
        await self.flush()
        if self._consumer is not None:
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
            self._consumer = None

    # =========================================================================
    # Mutations
    # =========================================================================

    def show_records(self, records: list[PersonDisplay]) -> None:
        """Replace both lists, splitting records by status."""

        def apply() -> Iterable[str]:
            self.synced = [r for r in records if r.status == SyncStatus.SYNCED]
            self.pending = [r for r in records if r.status != SyncStatus.SYNCED]
            return ("pending", "synced", "has_pending")

        self.dispatch(apply)

    def add_pending(self, record: PersonDisplay) -> None:
        def apply() -> Iterable[str]:
            self.pending.append(record)
            return ("pending", "has_pending")

        self.dispatch(apply)

    def add_synced(self, record: PersonDisplay) -> None:
        def apply() -> Iterable[str]:
            self.synced.append(record)
            return ("synced",)

        self.dispatch(apply)

    def set_status(
        self,
        local_id: int,
        status: SyncStatus,
        last_sync_attempt: datetime | None = None,
        last_error: str | None = None,
    ) -> None:
        """Update a pending record's status in place, keeping its position."""

        def apply() -> Iterable[str]:
            for record in self.pending:
                if record.local_id == local_id:
                    record.status = status
                    if last_sync_attempt is not None:
                        record.last_sync_attempt = last_sync_attempt
                    record.last_error = last_error
                    return ("pending",)
            return ()

        self.dispatch(apply)

    def move_to_synced(self, local_id: int, server_id: int, sync_time: datetime) -> None:
        """Move a record from the pending list to the synced list."""

        def apply() -> Iterable[str]:
            for index, record in enumerate(self.pending):
                if record.local_id == local_id:
                    del self.pending[index]
                    record.status = SyncStatus.SYNCED
                    record.server_id = server_id
                    record.last_sync_attempt = sync_time
                    record.last_error = None
                    self.synced.append(record)
                    return ("pending", "synced", "has_pending")
            return ()

        self.dispatch(apply)

    def upsert(self, record: PersonDisplay) -> None:
        """Put a record in the list matching its status, replacing any older copy.

        A pending record keeps its position when it was already pending.
        """

        def apply() -> Iterable[str]:
            target = self.synced if record.status == SyncStatus.SYNCED else self.pending
            for records in (self.pending, self.synced):
                for index, existing in enumerate(records):
                    if existing.local_id == record.local_id:
                        if records is target:
                            records[index] = record
                            return ("pending", "synced", "has_pending")
                        del records[index]
                        break
            target.append(record)
            return ("pending", "synced", "has_pending")

        self.dispatch(apply)

    def remove(self, local_id: int) -> None:
        def apply() -> Iterable[str]:
            self.pending = [r for r in self.pending if r.local_id != local_id]
            self.synced = [r for r in self.synced if r.local_id != local_id]
            return ("pending", "synced", "has_pending")

        self.dispatch(apply)

    def clear(self) -> None:
        def apply() -> Iterable[str]:
            self.pending = []
            self.synced = []
            return ("pending", "synced", "has_pending")

        self.dispatch(apply)

    def set_busy(self, busy: bool) -> None:
        def apply() -> Iterable[str]:
            if self.busy == busy:
                return ()
            self.busy = busy
            return ("busy",)

        self.dispatch(apply)

    def set_report(self, report: Any) -> None:
        def apply() -> Iterable[str]:
            self.last_report = report
            return ("last_report",)

        self.dispatch(apply)

    def set_pagination_info(self, info: str) -> None:
        def apply() -> Iterable[str]:
            self.pagination_info = info
            return ("pagination_info",)

        self.dispatch(apply)

    def set_connection(self, online: bool) -> None:
        def apply() -> Iterable[str]:
            self.connection = describe_connection(online)
            return ("connection",)

        self.dispatch(apply)

"""
Sync orchestrator: offline-first reconciliation of local records.

Orchestrates synchronization between the local record store and the
remote authority:
- Save: new records go straight to the server when online, else locally
- Push pending: unsynced records one by one, with a re-check before each call
- Push changes: unsynced records in batches with bounded concurrency
- Full resync: replace local data with the server snapshot
- Failure classification into transient / rejected / storage / unexpected

Only one sync operation runs at a time. A second call while one is in
flight returns a skipped report instead of queueing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime

from ..config import SyncConfig
from ..connectivity import ConnectivityMonitor
from ..exceptions import (
    RecordNotFoundError,
    StorageIOError,
    SyncError,
    TransportError,
    TransportErrorCategory,
    ValidationError,
)
from ..logging_utils import RecordLoggerAdapter
from ..models import (
    Person,
    PersonDisplay,
    SyncStatus,
    utc_now,
    validate_person_input,
)
from ..store.base import FailedAttempt, Page, RecordStore
from ..store.sqlite import SQLiteRecordStore, SQLiteStoreConfig
from ..transport.base import RemoteAck, SyncClient
from ..transport.grpc_client import GrpcSyncClient
from ..transport.rest_client import RestSyncClient
from .projection import SyncProjection
from .report import (
    SAVE_FALLBACK_MESSAGES,
    FailureKind,
    ResyncReport,
    SyncFailure,
    SyncReport,
    classify_exception,
    rejected_reason,
)

logger = logging.getLogger(__name__)

BUSY_REASON = "Another sync operation is in progress"
OFFLINE_REASON = "You're offline. Changes will be synced when internet connection is restored."
SAVED_LOCALLY_MESSAGE = (
    "Data has been saved locally and will be synced when connection is restored."
)


@dataclass
class SaveOutcome:
    """Result of saving a new person from the user-entry path."""

    person: Person
    status: SyncStatus
    message: str


class SyncOrchestrator:
    """Drives reconciliation of unconfirmed records against the remote authority.

    Handles:
    - The record lifecycle (LocallySaved → SyncInProgress → Synced / SyncFailed)
    - A re-entrancy guard shared by every sync operation
    - At most one in-flight attempt per record
    - Keeping the observable projection consistent with the store
    """

    def __init__(
        self,
        store: RecordStore,
        client: SyncClient,
        connectivity: ConnectivityMonitor | None = None,
        projection: SyncProjection | None = None,
        config: SyncConfig | None = None,
        close_collaborators: bool = False,
    ):
        """Initialize the orchestrator.

        Args:
            store: Local record store
            client: Remote sync client (gRPC or REST)
            connectivity: Reachability monitor (assumed online if omitted)
            projection: Observable state for the presentation layer
            config: Sync configuration
            close_collaborators: Close store and client in close()
        """
        self.store = store
        self.client = client
        self.config = config or SyncConfig()
        self.connectivity = connectivity or ConnectivityMonitor(
            host=self.config.connectivity_host, timeout=self.config.connectivity_timeout
        )
        self.projection = projection or SyncProjection()
        self._close_collaborators = close_collaborators

        self._busy = False
        self._in_flight: set[int] = set()
        self._editing: set[int] = set()
        self._shutdown = asyncio.Event()
        self._current_page = 1
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_changed)

    @property
    def busy(self) -> bool:
        """True while a sync operation is running."""
        return self._busy

    @property
    def in_flight(self) -> frozenset[int]:
        """Local ids with a remote attempt underway."""
        return frozenset(self._in_flight)

    @property
    def can_sync_pending(self) -> bool:
        """Whether the sync-now command should be enabled."""
        return not self._busy and self.projection.has_pending

    @property
    def current_page(self) -> int:
        """Page number last loaded with load_page."""
        return self._current_page

    def _on_connectivity_changed(self, online: bool) -> None:
        self.projection.set_connection(online)

    def _acquire(self) -> bool:
        # No await between the check and the set, so this is atomic on the loop
        if self._busy:
            return False
        self._busy = True
        self.projection.set_busy(True)
        return True

    def _release(self) -> None:
        self._busy = False
        self.projection.set_busy(False)

    def _is_claimed(self, local_id: int) -> bool:
        return local_id in self._in_flight or local_id in self._editing

    # =========================================================================
    # Loading and user-entry path
    # =========================================================================

    async def load(self) -> list[PersonDisplay]:
        """Rebuild the pending/synced projection from the store."""
        people = await self.store.query_all()
        records = [PersonDisplay.from_person(p, p.local_id in self._in_flight) for p in people]
        self.projection.show_records(records)
        self.projection.set_connection(self.connectivity.is_online())
        await self.projection.flush()
        return records

    async def save_person(
        self,
        name: str,
        last_name: str,
        age: int | None,
        weight: float | None,
    ) -> SaveOutcome:
        """Create a person, sending it to the server right away when online.

        Raises:
            ValidationError: If any field is missing or out of range (nothing is written)
        """
        errors = validate_person_input(name, last_name, age, weight)
        if errors or age is None or weight is None:
            raise ValidationError(errors or ["Age and weight are required"])

        person = Person(
            name=name.strip(),
            last_name=last_name.strip(),
            age=int(age),
            weight=float(weight),
        )

        if not self.connectivity.is_online():
            return await self._save_locally(person, SAVED_LOCALLY_MESSAGE)

        try:
            ack = await self.client.save(person)
            server_id = self._confirmed_server_id(ack, person) if ack.accepted else None
        except TransportError as e:
            logger.warning(f"Online save failed ({e.category.value}), saving locally: {e}")
            return await self._save_locally(person, SAVE_FALLBACK_MESSAGES[e.category])

        attempt_time = utc_now()
        if server_id is not None:
            person.is_synced = True
            person.server_id = server_id
            person.last_sync_attempt = attempt_time
            await self.store.insert(person)
            self.projection.add_synced(PersonDisplay.from_person(person))
            await self.projection.flush()
            logger.info(f"Person {person.local_id} saved with server ID {server_id}")
            return SaveOutcome(
                person,
                SyncStatus.SYNCED,
                f"Person saved successfully with ID: {server_id}",
            )

        # Rejected at creation: keep it, but only retry after correction
        person.last_sync_attempt = attempt_time
        person.last_error = rejected_reason(ack.message)
        person.needs_correction = True
        return await self._save_locally(
            person, f"{person.last_error}. Data was saved locally and needs correction."
        )

    async def _save_locally(self, person: Person, message: str) -> SaveOutcome:
        await self.store.insert(person)
        display = PersonDisplay.from_person(person)
        self.projection.add_pending(display)
        await self.projection.flush()
        logger.info(f"Person {person.local_id} saved locally ({display.status.value})")
        return SaveOutcome(person, display.status, message)

    async def update_person(
        self,
        local_id: int,
        *,
        name: str | None = None,
        last_name: str | None = None,
        age: int | None = None,
        weight: float | None = None,
    ) -> Person:
        """Edit a record; it becomes pending again and is eligible for retry.

        This is the correction path for records the server rejected.

        Raises:
            RecordNotFoundError: If the record does not exist
            ValidationError: If the resulting values are invalid
            SyncError: If the record is being synced right now
        """
        if local_id in self._in_flight:
            raise SyncError(f"Person {local_id} is being synced", "update_person")

        # Sync passes skip the record until the edit is stored
        self._editing.add(local_id)
        try:
            person = await self._apply_edit(local_id, name, last_name, age, weight)
        finally:
            self._editing.discard(local_id)

        self.projection.upsert(PersonDisplay.from_person(person))
        await self.projection.flush()
        return person

    async def _apply_edit(
        self,
        local_id: int,
        name: str | None,
        last_name: str | None,
        age: int | None,
        weight: float | None,
    ) -> Person:
        person = await self.store.get_by_id(local_id)
        if person is None:
            raise RecordNotFoundError(local_id)

        person.name = person.name if name is None else name.strip()
        person.last_name = person.last_name if last_name is None else last_name.strip()
        person.age = person.age if age is None else int(age)
        person.weight = person.weight if weight is None else float(weight)

        errors = validate_person_input(person.name, person.last_name, person.age, person.weight)
        if errors:
            raise ValidationError(errors)

        person.is_synced = False
        person.needs_correction = False
        person.last_error = None
        await self.store.update(person)

        return person

    # =========================================================================
    # Push: pending records, one by one
    # =========================================================================

    async def sync_pending(self) -> SyncReport:
        """Push every unsynced record to the server, one at a time.

        Records flagged as needing correction and records already in flight
        are left out. Only a failure to list unsynced records aborts the
        pass; every per-record failure is isolated and reported.
        """
        operation = "sync_pending"
        if not self._acquire():
            logger.debug(f"{operation} skipped: {BUSY_REASON}")
            return SyncReport.skipped_run(operation, BUSY_REASON)

        try:
            if not self.connectivity.is_online():
                report = SyncReport.skipped_run(operation, OFFLINE_REASON)
                self.projection.set_report(report)
                return report

            report = SyncReport(operation=operation)
            candidates = await self.store.query_unsynced()
            processed: set[int] = set()

            for person in candidates:
                local_id = person.local_id
                if local_id is None or local_id in processed or self._is_claimed(local_id):
                    continue
                if person.needs_correction:
                    continue
                processed.add(local_id)
                await self._sync_one(person, report)

            report.finish()
            self.projection.set_report(report)
            logger.info(
                f"{operation} finished: {report.succeeded} synced, {report.failed} failed "
                f"in {report.duration_ms}ms"
            )
            return report
        finally:
            self._release()
            await self.projection.flush()

    async def _sync_one(self, person: Person, report: SyncReport) -> None:
        """Attempt one record; never raises for per-record failures."""
        local_id = person.local_id
        if local_id is None:
            raise SyncError("Cannot sync a person that was never stored")
        log = RecordLoggerAdapter(
            logger, {"local_id": local_id, "server_id": person.server_id}
        )

        self._in_flight.add(local_id)
        self.projection.set_status(local_id, SyncStatus.SYNC_IN_PROGRESS)
        log.debug(f"Syncing person ID {local_id}")

        try:
            current = await self.store.get_by_id(local_id)
            if current is None:
                log.debug("Skipping person: no longer in the store")
                self.projection.remove(local_id)
                return
            if current.is_synced and current.server_id is not None:
                log.debug("Skipping person: already synced")
                self.projection.move_to_synced(
                    local_id, current.server_id, current.last_sync_attempt or utc_now()
                )
                return

            ack = await self._push(current)
            attempt_time = self._attempt_time(current)

            if ack.accepted:
                server_id = self._confirmed_server_id(ack, current)
                # Durable first, then the projection
                await self.store.mark_synced(local_id, server_id, attempt_time)
                self.projection.move_to_synced(local_id, server_id, attempt_time)
                report.record_success()
                log.bind(server_id=server_id).info(
                    f"Successfully synced person {local_id} (server ID {server_id})"
                )
            else:
                failure = SyncFailure(
                    local_id=local_id,
                    display_name=current.full_name,
                    kind=FailureKind.REJECTED,
                    reason=rejected_reason(ack.message),
                )
                await self._record_failure(failure, attempt_time)
                report.record_failure(failure)
                log.warning(
                    f"Server rejected person {local_id}: {ack.message}",
                    extra={"kind": FailureKind.REJECTED.value},
                )

        except Exception as e:
            kind, reason = classify_exception(e)
            failure = SyncFailure(
                local_id=local_id,
                display_name=person.full_name,
                kind=kind,
                reason=reason,
                detail=str(e),
            )
            if kind is FailureKind.UNEXPECTED:
                log.exception(f"Error syncing person {local_id}", extra={"kind": kind.value})
            else:
                log.warning(
                    f"Error syncing person {local_id}: {reason} ({e})",
                    extra={"kind": kind.value},
                )
            await self._record_failure(failure, self._attempt_time(person))
            report.record_failure(failure)

        finally:
            self._in_flight.discard(local_id)

    async def _push(self, person: Person) -> RemoteAck:
        """Create the record remotely, or update it if the server already has it."""
        if person.server_id is None:
            return await self.client.save(person)
        return await self.client.update(person)

    @staticmethod
    def _confirmed_server_id(ack: RemoteAck, person: Person) -> int:
        """Server id for an accepted push.

        An acceptance that carries no id for a record the server has never
        seen is treated as a server fault, so the record stays retryable.
        """
        server_id = ack.assigned_id if ack.assigned_id is not None else person.server_id
        if server_id is None:
            raise TransportError(
                TransportErrorCategory.INTERNAL,
                "save",
                "Server accepted the record without assigning an id",
            )
        return server_id

    @staticmethod
    def _attempt_time(person: Person) -> datetime:
        now = utc_now()
        if person.last_sync_attempt is not None and person.last_sync_attempt > now:
            return person.last_sync_attempt
        return now

    async def _record_failure(self, failure: SyncFailure, attempt_time: datetime) -> None:
        """Persist a failed attempt, then show it. A store error here is only logged."""
        try:
            await self.store.bulk_mark_failed(
                {
                    failure.local_id: FailedAttempt(
                        reason=failure.reason,
                        needs_correction=failure.kind is FailureKind.REJECTED,
                    )
                },
                attempt_time,
            )
        except StorageIOError as e:
            logger.error(f"Could not record failed attempt for person {failure.local_id}: {e}")
        self.projection.set_status(
            failure.local_id, SyncStatus.SYNC_FAILED, attempt_time, failure.reason
        )

    async def mark_synced(
        self,
        local_id: int,
        server_id: int,
        sync_time: datetime | None = None,
    ) -> bool:
        """Apply a server acknowledgment. Idempotent.

        Returns:
            True if the record changed, False if it was already synced or missing
        """
        sync_time = sync_time or utc_now()
        changed = await self.store.mark_synced(local_id, server_id, sync_time)
        if changed:
            self.projection.move_to_synced(local_id, server_id, sync_time)
            await self.projection.flush()
        return changed

    # =========================================================================
    # Push: changes in batches
    # =========================================================================

    async def sync_changes(
        self,
        batch_size: int | None = None,
        max_concurrency: int | None = None,
    ) -> SyncReport:
        """Push every unsynced record in fixed-size batches.

        Up to max_concurrency batches run at once; records inside a batch
        go one after the other. Each batch's outcomes are written with one
        bulk call for successes and one for failures.

        Args:
            batch_size: Records per batch (default: config, per transport)
            max_concurrency: Concurrent batches (default: config)
        """
        batch_size = batch_size or self.config.effective_batch_size
        max_concurrency = max_concurrency or self.config.max_concurrency
        if batch_size <= 0 or max_concurrency <= 0:
            raise ValueError("batch_size and max_concurrency must be positive")

        operation = "sync_changes"
        if not self._acquire():
            logger.debug(f"{operation} skipped: {BUSY_REASON}")
            return SyncReport.skipped_run(operation, BUSY_REASON)

        try:
            if not self.connectivity.is_online():
                report = SyncReport.skipped_run(operation, OFFLINE_REASON)
                self.projection.set_report(report)
                return report

            report = SyncReport(operation=operation)
            unsynced = {
                p.local_id: p
                for p in await self.store.query_unsynced()
                if p.local_id is not None
                and not self._is_claimed(p.local_id)
                and not p.needs_correction
            }
            logger.info(f"Found {len(unsynced)} unsynced records")

            if unsynced:
                queued = list(unsynced.items())
                batches = [
                    dict(queued[start : start + batch_size])
                    for start in range(0, len(queued), batch_size)
                ]
                logger.info(
                    f"Processing {len(batches)} batches of up to {batch_size} records, "
                    f"{max_concurrency} at a time"
                )
                semaphore = asyncio.Semaphore(max_concurrency)

                async def run_batch(number: int, batch: dict[int, Person]) -> None:
                    async with semaphore:
                        batch_report = await self._sync_batch(number, len(batches), batch)
                    report.merge(batch_report)

                # Claimed for the whole pass; update_person refuses them until their batch is done
                self._in_flight.update(unsynced)
                try:
                    await asyncio.gather(
                        *(
                            run_batch(number, batch)
                            for number, batch in enumerate(batches, start=1)
                        )
                    )
                finally:
                    self._in_flight.difference_update(unsynced)

            report.finish()
            self.projection.set_report(report)
            logger.info(
                f"{operation} finished: {report.succeeded}/{report.attempted} synced "
                f"in {report.duration_ms}ms"
            )
            return report
        finally:
            self._release()
            await self.projection.flush()

    async def _sync_batch(
        self, number: int, total: int, batch: dict[int, Person]
    ) -> SyncReport:
        """Push one batch sequentially and flush its outcomes in bulk.

        Each record is re-read before its push, so the server gets the
        stored values. Records deleted or already synced since the pass
        started are skipped and not counted.
        """
        batch_report = SyncReport(operation=f"batch {number}/{total}")
        accepted: dict[int, int] = {}
        assigned: dict[int, int] = {}
        failures: list[SyncFailure] = []

        try:
            for local_id, queued in batch.items():
                self.projection.set_status(local_id, SyncStatus.SYNC_IN_PROGRESS)
                try:
                    person = await self.store.get_by_id(local_id)
                    if person is None:
                        logger.debug(f"Skipping person {local_id}: no longer in the store")
                        self.projection.remove(local_id)
                        continue
                    if person.is_synced and person.server_id is not None:
                        logger.debug(f"Skipping person {local_id}: already synced")
                        self.projection.move_to_synced(
                            local_id, person.server_id, person.last_sync_attempt or utc_now()
                        )
                        continue

                    ack = await self._push(person)
                    if not ack.accepted:
                        failures.append(
                            SyncFailure(
                                local_id=local_id,
                                display_name=person.full_name,
                                kind=FailureKind.REJECTED,
                                reason=rejected_reason(ack.message),
                            )
                        )
                        logger.debug(f"Failed to update person {local_id}: {ack.message}")
                        continue
                    server_id = self._confirmed_server_id(ack, person)
                    accepted[local_id] = server_id
                    if server_id != person.server_id:
                        assigned[local_id] = server_id
                except Exception as e:
                    kind, reason = classify_exception(e)
                    failures.append(
                        SyncFailure(
                            local_id=local_id,
                            display_name=queued.full_name,
                            kind=kind,
                            reason=reason,
                            detail=str(e),
                        )
                    )
                    logger.debug(f"Error updating person {local_id}: {e}")

            sync_time = utc_now()
            if accepted:
                try:
                    await self.store.bulk_mark_synced(list(accepted), sync_time, assigned)
                except StorageIOError as e:
                    logger.error(f"Batch {number}: could not mark {len(accepted)} records synced: {e}")
                    for local_id in accepted:
                        failures.append(
                            SyncFailure(
                                local_id=local_id,
                                display_name=batch[local_id].full_name,
                                kind=FailureKind.STORAGE,
                                reason="Local storage error",
                                detail=str(e),
                            )
                        )
                    accepted = {}

            for local_id, server_id in accepted.items():
                self.projection.move_to_synced(local_id, server_id, sync_time)
                batch_report.record_success()

            if failures:
                try:
                    await self.store.bulk_mark_failed(
                        {
                            f.local_id: FailedAttempt(
                                reason=f.reason,
                                needs_correction=f.kind is FailureKind.REJECTED,
                            )
                            for f in failures
                        },
                        sync_time,
                    )
                except StorageIOError as e:
                    logger.error(f"Batch {number}: could not record failed attempts: {e}")
                for failure in failures:
                    self.projection.set_status(
                        failure.local_id, SyncStatus.SYNC_FAILED, sync_time, failure.reason
                    )
                    batch_report.record_failure(failure)
        finally:
            self._in_flight.difference_update(batch)

        logger.debug(
            f"Batch {number}/{total} completed: {batch_report.succeeded}/{len(batch)} successful"
        )
        return batch_report

    # =========================================================================
    # Pull: full resync
    # =========================================================================

    async def full_resync(self) -> ResyncReport:
        """Replace local data with the server's complete record set.

        The fetch completes in memory before anything local is touched; a
        failed fetch leaves the store exactly as it was. An empty server
        snapshot also leaves local data alone.

        Raises:
            TransportError: If the fetch fails
            StorageIOError: If the replacement fails (rolled back by the store)
        """
        if not self._acquire():
            logger.debug(f"full_resync skipped: {BUSY_REASON}")
            return ResyncReport(skipped=True)

        try:
            total_start = time.monotonic()
            logger.info("Starting to fetch data from server")
            remote = await self.client.fetch_all()
            fetch_ms = int((time.monotonic() - total_start) * 1000)
            logger.info(f"Received {len(remote)} records from server in {fetch_ms}ms")

            if self._shutdown.is_set():
                logger.warning("full_resync cancelled before replacing local data")
                return ResyncReport(cancelled=True, fetch_duration_ms=fetch_ms)

            if not remote:
                report = ResyncReport(fetch_duration_ms=fetch_ms)
                self.projection.set_report(report)
                return report

            save_start = time.monotonic()
            await self.store.replace_all([r.to_person() for r in remote])
            save_ms = int((time.monotonic() - save_start) * 1000)

            report = ResyncReport(
                total_records=len(remote),
                replaced=True,
                fetch_duration_ms=fetch_ms,
                save_duration_ms=save_ms,
                total_duration_ms=int((time.monotonic() - total_start) * 1000),
            )
            logger.info(report.render())

            await self.load()
            await self.load_page(1)
            self.projection.set_report(report)
            return report
        finally:
            self._release()
            await self.projection.flush()

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def load_page(self, page: int) -> Page:
        """Load one page of all records (page size from config)."""
        page = max(page, 1)
        items, total = await self.store.query_paginated(page, self.config.page_size)
        result = Page(items=items, total_count=total, page=page, page_size=self.config.page_size)
        self._current_page = page
        self.projection.set_pagination_info(result.info)
        await self.projection.flush()
        return result

    async def load_next_page(self) -> Page:
        """Load the page after the current one."""
        return await self.load_page(self._current_page + 1)

    async def load_previous_page(self) -> Page:
        """Load the page before the current one (clamped to the first page)."""
        return await self.load_page(self._current_page - 1)

    async def clear_all(self) -> int:
        """Purge every local record.

        Raises:
            SyncError: If a sync operation is in progress
        """
        if not self._acquire():
            raise SyncError("Cannot clear data while a sync operation is in progress", "clear_all")
        try:
            removed = await self.store.clear_all()
            self.projection.clear()
            self.projection.set_pagination_info("")
            return removed
        finally:
            self._release()
            await self.projection.flush()

    async def randomize_records(self) -> list[Person]:
        """Give every record random age/weight values and mark it unsynced.

        Development helper for exercising sync_changes.

        Raises:
            SyncError: If a sync operation is in progress
        """
        if not self._acquire():
            raise SyncError(
                "Cannot randomize data while a sync operation is in progress", "randomize"
            )
        try:
            people = await self.store.randomize_all()
        finally:
            self._release()
        await self.load()
        await self.load_page(self._current_page)
        logger.info(f"Randomized {len(people)} records")
        return people

    async def ping(self) -> bool:
        """Check whether the server answers."""
        try:
            await self.client.ping()
            return True
        except TransportError as e:
            logger.debug(f"Ping failed: {e}")
            return False

    async def close(self) -> None:
        """Signal shutdown and release resources."""
        self._shutdown.set()
        self._unsubscribe()
        await self.projection.close()
        if self._close_collaborators:
            await self.client.close()
            await self.store.close()


async def create_orchestrator(config: SyncConfig | None = None) -> SyncOrchestrator:
    """Create and initialize an orchestrator from configuration.

    Args:
        config: Sync configuration (defaults to environment)

    Returns:
        Initialized SyncOrchestrator with its projection loaded
    """
    if config is None:
        config = SyncConfig.from_env()

    store = await SQLiteRecordStore.create(SQLiteStoreConfig(db_path=config.db_path))
    client: SyncClient
    if config.transport == "rest":
        client = RestSyncClient(config.rest_base_url, timeout=config.request_timeout)
    else:
        client = GrpcSyncClient(config.grpc_target, timeout=config.request_timeout)

    connectivity = ConnectivityMonitor(
        host=config.connectivity_host,
        timeout=config.connectivity_timeout,
        poll_interval=config.connectivity_poll_interval,
    )
    orchestrator = SyncOrchestrator(
        store=store,
        client=client,
        connectivity=connectivity,
        config=config,
        close_collaborators=True,
    )
    await orchestrator.load()
    return orchestrator

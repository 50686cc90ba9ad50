"""
Tests for the observable sync projection.
"""

import asyncio
import threading
from datetime import UTC, datetime

import pytest

from person_sync.models import PersonDisplay, SyncStatus
from person_sync.sync.projection import SyncProjection


def _display(local_id: int, status: SyncStatus = SyncStatus.LOCALLY_SAVED, server_id=None):
    return PersonDisplay(
        local_id=local_id,
        name=f"P{local_id}",
        last_name="Lima",
        age=30,
        weight=60.5,
        status=status,
        server_id=server_id,
    )


@pytest.fixture
async def projection():
    projection = SyncProjection()
    yield projection
    await projection.close()


class TestMutations:
    @pytest.mark.asyncio
    async def test_show_records_splits_by_status(self, projection):
        projection.show_records([_display(1), _display(2, SyncStatus.SYNCED, 101)])
        await projection.flush()

        assert [r.local_id for r in projection.pending] == [1]
        assert [r.local_id for r in projection.synced] == [2]
        assert projection.has_pending is True

    @pytest.mark.asyncio
    async def test_set_status_keeps_position(self, projection):
        projection.show_records([_display(1), _display(2), _display(3)])
        projection.set_status(2, SyncStatus.SYNC_FAILED, last_error="Request timeout")
        await projection.flush()

        assert [r.local_id for r in projection.pending] == [1, 2, 3]
        assert projection.pending[1].status == SyncStatus.SYNC_FAILED
        assert projection.pending[1].last_error == "Request timeout"

    @pytest.mark.asyncio
    async def test_move_to_synced(self, projection):
        sync_time = datetime.now(UTC)
        projection.show_records([_display(1), _display(2)])
        projection.move_to_synced(1, 101, sync_time)
        await projection.flush()

        assert [r.local_id for r in projection.pending] == [2]
        synced = projection.synced[0]
        assert synced.status == SyncStatus.SYNCED
        assert synced.server_id == 101
        assert synced.display_status == "✅ Synced (Server ID: 101)"

    @pytest.mark.asyncio
    async def test_move_unknown_record_is_noop(self, projection):
        projection.show_records([_display(1)])
        projection.move_to_synced(99, 101, datetime.now(UTC))
        await projection.flush()
        assert len(projection.pending) == 1
        assert projection.synced == []

    @pytest.mark.asyncio
    async def test_upsert_moves_between_lists(self, projection):
        projection.show_records([_display(1, SyncStatus.SYNCED, 101)])
        projection.upsert(_display(1, SyncStatus.PENDING_SYNC, 101))
        await projection.flush()

        assert projection.synced == []
        assert projection.pending[0].status == SyncStatus.PENDING_SYNC

    @pytest.mark.asyncio
    async def test_remove_and_clear(self, projection):
        projection.show_records([_display(1), _display(2, SyncStatus.SYNCED, 5)])
        projection.remove(1)
        await projection.flush()
        assert projection.pending == []

        projection.clear()
        await projection.flush()
        assert projection.synced == []
        assert projection.has_pending is False


class TestNotifications:
    @pytest.mark.asyncio
    async def test_listeners_receive_property_names(self, projection):
        changes: list[str] = []
        projection.subscribe(changes.append)

        projection.set_busy(True)
        projection.set_busy(True)
        projection.set_pagination_info("Page 1 of 1 (Total: 0)")
        await projection.flush()

        assert changes == ["busy", "pagination_info"]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, projection):
        changes: list[str] = []

        def broken(name: str) -> None:
            raise RuntimeError("listener bug")

        projection.subscribe(broken)
        projection.subscribe(changes.append)
        projection.set_connection(False)
        await projection.flush()

        assert changes == ["connection"]
        assert projection.connection.text == "📴 Offline"

    @pytest.mark.asyncio
    async def test_unsubscribe(self, projection):
        changes: list[str] = []
        unsubscribe = projection.subscribe(changes.append)
        unsubscribe()
        projection.set_busy(True)
        await projection.flush()
        assert changes == []

    @pytest.mark.asyncio
    async def test_dispatch_from_another_thread(self, projection):
        """Mutations from worker threads are applied on the owning loop."""
        projection.set_busy(False)
        await projection.flush()
        applied_on: list[int] = []

        def mutation():
            applied_on.append(threading.get_ident())
            return ("busy",)

        worker = threading.Thread(target=projection.dispatch, args=(mutation,))
        worker.start()
        worker.join()
        # Let the call_soon_threadsafe callback enqueue the mutation
        await asyncio.sleep(0.01)
        await projection.flush()

        assert applied_on == [threading.get_ident()]

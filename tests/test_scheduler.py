"""
Tests for automatic sync triggers.
"""

import asyncio

import pytest

from person_sync.sync.scheduler import AutoSyncScheduler


async def _save_offline(orchestrator, connectivity, count: int = 1) -> None:
    connectivity.set_online(False)
    for i in range(count):
        await orchestrator.save_person(f"P{i}", "Lima", 30, 60.5)


class TestAutoSyncScheduler:
    @pytest.mark.asyncio
    async def test_reconnect_triggers_sync(self, orchestrator, connectivity, client, store):
        """Coming back online pushes pending records without user action."""
        scheduler = AutoSyncScheduler(orchestrator, enabled=False)
        await scheduler.start()
        await _save_offline(orchestrator, connectivity)

        connectivity.set_online(True)
        await scheduler.stop()

        assert scheduler.trigger_count == 1
        assert client.call_count == 1
        assert await store.query_unsynced() == []

    @pytest.mark.asyncio
    async def test_going_offline_does_not_trigger(self, orchestrator, connectivity, client):
        scheduler = AutoSyncScheduler(orchestrator, enabled=False)
        await scheduler.start()

        connectivity.set_online(False)
        await scheduler.stop()

        assert scheduler.trigger_count == 0

    @pytest.mark.asyncio
    async def test_timer_syncs_periodically(self, orchestrator, connectivity, client, store):
        await _save_offline(orchestrator, connectivity, count=2)
        connectivity.set_online(True)
        scheduler = AutoSyncScheduler(orchestrator, interval=0.01)

        await scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert scheduler.running is False
        assert scheduler.trigger_count >= 1
        assert await store.query_unsynced() == []
        # Later ticks find nothing left to push
        assert client.call_count == 2

    @pytest.mark.asyncio
    async def test_timer_skips_while_offline(self, orchestrator, connectivity, client):
        await _save_offline(orchestrator, connectivity)
        scheduler = AutoSyncScheduler(orchestrator, interval=0.01)

        await scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.trigger_count == 0
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_trigger_ignored_while_busy(self, orchestrator, connectivity, client):
        await _save_offline(orchestrator, connectivity)
        connectivity.set_online(True)
        client.delay = 0.1
        scheduler = AutoSyncScheduler(orchestrator, enabled=False)

        manual = asyncio.create_task(orchestrator.sync_pending())
        await asyncio.sleep(0.02)
        result = await scheduler.trigger("timer")
        await manual

        assert result is None
        assert client.call_count == 1

    @pytest.mark.asyncio
    async def test_invalid_interval(self, orchestrator):
        with pytest.raises(ValueError):
            AutoSyncScheduler(orchestrator, interval=0)

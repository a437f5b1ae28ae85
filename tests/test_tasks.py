"""
Tests for the watcher loop and the price refresh job
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from zlink.core.enums import Chain, TransferOutcome
from zlink.services.price_oracle import PriceFetchError
from zlink.tasks.chain_watchers import run_watcher_round, start_watchers, stop_watchers
from zlink.tasks.price_refresh import refresh_prices, schedule_price_refresh
from zlink.watchers.base import TransientProviderError

from tests.conftest import make_event


class ScriptedWatcher:
    chain = Chain.BASE
    poll_interval = 0.01

    def __init__(self, rounds):
        self.rounds = list(rounds)
        self.acknowledged = 0
        self.closed = False

    async def poll(self):
        if not self.rounds:
            return []
        item = self.rounds.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def acknowledge(self):
        self.acknowledged += 1

    async def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_round_feeds_events_and_acknowledges():
    events = [make_event(tx_ref="0x01"), make_event(tx_ref="0x02")]
    watcher = ScriptedWatcher([events])
    orchestrator = MagicMock()
    orchestrator.handle_transfer = AsyncMock(side_effect=[TransferOutcome.ISSUED, TransferOutcome.DUPLICATE])

    issued = await run_watcher_round(watcher, orchestrator)

    assert issued == 1
    assert orchestrator.handle_transfer.await_count == 2
    assert watcher.acknowledged == 1


@pytest.mark.asyncio
async def test_failed_event_leaves_cursor_in_place():
    watcher = ScriptedWatcher([[make_event()]])
    orchestrator = MagicMock()
    orchestrator.handle_transfer = AsyncMock(side_effect=RuntimeError("database is down"))

    with pytest.raises(RuntimeError):
        await run_watcher_round(watcher, orchestrator)

    assert watcher.acknowledged == 0


@pytest.mark.asyncio
async def test_watcher_task_survives_provider_errors():
    watcher = ScriptedWatcher([TransientProviderError("429"), [make_event()]])
    orchestrator = MagicMock()
    orchestrator.handle_transfer = AsyncMock(return_value=TransferOutcome.ISSUED)

    tasks = start_watchers([watcher], orchestrator)
    for _ in range(100):
        if orchestrator.handle_transfer.await_count:
            break
        await asyncio.sleep(0.01)
    await stop_watchers(tasks)

    assert tasks[0].get_name() == "watcher:base"
    assert orchestrator.handle_transfer.await_count >= 1
    assert watcher.closed is True


@pytest.mark.asyncio
async def test_refresh_prices_keeps_cache_on_failure():
    oracle = MagicMock()
    oracle.refresh = AsyncMock(side_effect=PriceFetchError("HTTP 500"))

    await refresh_prices(oracle)

    oracle.refresh.assert_awaited_once()


def test_schedule_price_refresh_registers_job():
    scheduler = AsyncIOScheduler()
    oracle = MagicMock()

    schedule_price_refresh(scheduler, oracle)

    jobs = scheduler.get_jobs()
    assert [job.id for job in jobs] == ["refresh_prices"]
    assert jobs[0].max_instances == 1
    assert jobs[0].args == (oracle,)

# coding: utf-8
"""
Background tasks running the chain watchers

One asyncio task per watcher. A failing or stalled watcher only delays
itself: provider errors are logged and the loop resumes at the next poll.
"""

import asyncio
from datetime import datetime, UTC
from typing import List

from loguru import logger

from zlink.core.enums import TransferOutcome
from zlink.services.orchestrator import ReconciliationOrchestrator
from zlink.watchers.base import ChainWatcher, ProviderError, TransientProviderError


async def run_watcher_round(watcher: ChainWatcher, orchestrator: ReconciliationOrchestrator) -> int:
    """
    Poll once and feed every event to the orchestrator

    The watcher cursor only advances when every event was handled.

    Returns:
        Number of claim tokens issued in this round
    """
    scan_start = datetime.now(UTC)
    events = await watcher.poll()

    issued = 0
    for event in events:
        outcome = await orchestrator.handle_transfer(event)
        if outcome == TransferOutcome.ISSUED:
            issued += 1

    watcher.acknowledge()

    duration = (datetime.now(UTC) - scan_start).total_seconds()
    if events:
        logger.info(
            f"🔍 {watcher.chain.display_name} scan: {len(events)} transfers, "
            f"{issued} claim tokens issued | {duration:.1f}s"
        )
    else:
        logger.debug(f"🔍 {watcher.chain.display_name} scan: no new transfers | {duration:.1f}s")
    return issued


async def watch_chain(watcher: ChainWatcher, orchestrator: ReconciliationOrchestrator) -> None:
    """Poll forever; never lets an exception escape"""
    logger.info(f"🚀 {watcher.chain.display_name} watcher started (every {watcher.poll_interval:.0f}s)")

    while True:
        try:
            await run_watcher_round(watcher, orchestrator)
        except TransientProviderError as e:
            logger.warning(f"{watcher.chain.display_name} provider unavailable after retries: {e}")
        except ProviderError as e:
            logger.warning(f"{watcher.chain.display_name} provider error: {e}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"❌ Error in {watcher.chain.display_name} watcher: {e}")

        await asyncio.sleep(watcher.poll_interval)


async def start_watcher(watcher: ChainWatcher, orchestrator: ReconciliationOrchestrator) -> None:
    """
    Task entry point: runs the watcher until cancelled, then releases its HTTP session
    """
    try:
        await watch_chain(watcher, orchestrator)
    except asyncio.CancelledError:
        logger.info(f"⛔ {watcher.chain.display_name} watcher stopped")
    finally:
        await watcher.close()


def start_watchers(
    watchers: List[ChainWatcher], orchestrator: ReconciliationOrchestrator
) -> List[asyncio.Task]:
    """Spawn one background task per watcher"""
    return [
        asyncio.create_task(start_watcher(w, orchestrator), name=f"watcher:{w.chain.value}")
        for w in watchers
    ]


async def stop_watchers(tasks: List[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

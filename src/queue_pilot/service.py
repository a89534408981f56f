# src/queue_pilot/service.py

from __future__ import annotations

"""
Service runtime.

Everything runs on one event loop: a few periodic loops (lease, target sync,
activity/silence, interval/daily schedule, weekly stats, quota poll) plus the optional
control server and console. Loops log and survive their own failures; to stop
the service, set the stop event (or cancel the coroutine).
"""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from .control.console import run_console_loop
from .control.server import ControlServer
from .core.state import AppState
from .quota.client import run_quota_poller

logger = logging.getLogger(__name__)


async def run_periodic(name: str, interval_seconds: float, fn: Callable[[], Awaitable[object]]) -> None:
    """Call fn every interval_seconds until cancelled."""
    sleep_s = max(0.05, float(interval_seconds))
    while True:
        try:
            await fn()
        except Exception:
            logger.exception("%s loop iteration failed", name)
        await asyncio.sleep(sleep_s)


async def renew_lease(state: AppState) -> None:
    # A disabled instance lets its lease go stale so another one can take over.
    if state.shared.enabled:
        state.coordinator.tick()


async def sync_targets(state: AppState) -> None:
    """Periodic full resync; the pool itself stays quiet in standby or while disabled."""
    await state.pool.refresh(force=True)


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.scheduler.close()
    except Exception:
        logger.exception("Scheduler close failed.")

    try:
        await state.pool.stop()
    except Exception:
        logger.exception("Connection pool stop failed.")

    try:
        state.coordinator.release()
    except Exception:
        logger.exception("Lease release failed.")

    if state.quota_client is not None:
        try:
            await state.quota_client.aclose()
        except Exception:
            logger.debug("Quota client close failed.", exc_info=True)

    # TaskStore uses short-lived sqlite connections per call; nothing to close.
    state.store.close()


async def run_service(state: AppState, *, stop: asyncio.Event | None = None) -> None:
    s = state.settings
    stop = stop or asyncio.Event()

    if state.shared.enabled:
        state.collector.start_session()

    loops = [
        asyncio.create_task(
            run_periodic("lease", s.heartbeat_interval_s, lambda: renew_lease(state)),
            name="queue-pilot-lease",
        ),
        asyncio.create_task(
            run_periodic("targets", s.refresh_interval_s, lambda: sync_targets(state)),
            name="queue-pilot-targets",
        ),
        asyncio.create_task(
            run_periodic("activity", s.silence_check_interval_s, state.monitor.tick),
            name="queue-pilot-activity",
        ),
        asyncio.create_task(
            run_periodic("schedule", s.schedule_check_interval_s, state.scheduler.check_schedule),
            name="queue-pilot-schedule",
        ),
        asyncio.create_task(
            run_periodic("stats", s.stats_interval_s, state.collector.collect),
            name="queue-pilot-stats",
        ),
    ]

    if s.quota_enabled and state.quota_client is not None and state.quota_client.configured:
        loops.append(
            asyncio.create_task(
                run_quota_poller(state.quota_client, state.gate, s.quota_poll_interval_s),
                name="queue-pilot-quota",
            )
        )
    elif s.quota_enabled:
        logger.warning("Quota polling enabled but port/CSRF token are not configured; skipping.")

    server: ControlServer | None = None
    if s.control_server_enabled:
        server = ControlServer(state, host=s.control_host, port=s.control_port)
        await server.start()

    console: asyncio.Task[None] | None = None
    if s.console_enabled:
        console = asyncio.create_task(run_console_loop(state), name="queue-pilot-console")
        console.add_done_callback(lambda _t: stop.set())
    else:
        logger.info("Console disabled. Press Ctrl+C to stop.")

    try:
        await stop.wait()
    finally:
        for task in loops:
            task.cancel()
        for task in loops:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if server is not None:
            await server.stop()

        if console is not None and not console.done():
            # input() in the worker thread cannot be interrupted; the thread ends with the process.
            console.cancel()

        await shutdown(state)
        logger.info("Service stopped.")

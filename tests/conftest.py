# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio

from queue_pilot.cdp.pool import ConnectionPool
from queue_pilot.coordination.lease import InstanceCoordinator, MemoryLeaseStore
from queue_pilot.core.notify import LogNotifier
from queue_pilot.core.state import AppState, SharedState
from queue_pilot.scheduler.activity import ActivityMonitor
from queue_pilot.scheduler.quota import QuotaGate
from queue_pilot.scheduler.scheduler import QueueScheduler
from queue_pilot.scheduler.stats import StatsCollector
from queue_pilot.tasks.task_store import TaskStore, schedule_defaults_from_settings

from .fakes import (
    PAYLOAD_SCRIPT,
    FakeClock,
    FakeTargets,
    FakeTransport,
    MemoryTaskSource,
    RecordingNotifier,
)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with the scheduler, pool and bootstrap.

    Built from SimpleNamespace; importing config would read the environment.
    """
    return SimpleNamespace(
        app_name="queue-pilot-test",
        log_level="INFO",
        data_dir=tmp_path,
        enabled=True,
        # CDP
        cdp_host="127.0.0.1",
        cdp_port=9004,
        settings_surface_title="Multi Purpose Agent Settings",
        payload_path=tmp_path / "payload.js",
        workspace_name="",
        ide="antigravity",
        discovery_timeout_s=0.5,
        eval_timeout_s=2.0,
        inject_timeout_s=15.0,
        send_timeout_s=15.0,
        refresh_interval_s=5.0,
        poll_interval_ms=1000,
        banned_commands=("rm -rf /",),
        # Schedule seeds
        mode="queue",
        schedule_value="30",
        schedule_prompt="Status report please",
        completion_policy="consume",
        silence_timeout_s=30.0,
        min_dwell_s=10.0,
        verification_enabled=False,
        verification_text="Verify the previous task.",
        quota_resume_enabled=True,
        auto_continue_enabled=False,
        continue_prompt="Continue",
        # Scheduler timing
        activation_grace_s=5.0,
        start_cooldown_s=2.0,
        resync_throttle_s=2.0,
        silence_check_interval_s=5.0,
        schedule_check_interval_s=60.0,
        stats_interval_s=30.0,
        # Quota
        quota_enabled=False,
        quota_poll_interval_s=60.0,
        quota_port=0,
        quota_csrf_token="",
        quota_timeout_s=5.0,
        # Coordination
        instance_id="test-instance",
        lock_path=tmp_path / "instance_lock.json",
        heartbeat_interval_s=5.0,
        stale_after_s=15.0,
        # Control surface
        console_enabled=False,
        control_server_enabled=False,
        control_host="127.0.0.1",
        control_port=0,
        store_path=tmp_path / "queue.sqlite3",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def shared() -> SharedState:
    return SharedState()


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def tasks() -> MemoryTaskSource:
    return MemoryTaskSource(prompts=["Task A", "Task B"])


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture()
async def scheduler(settings, shared, transport, tasks, notifier, clock):
    """
    QueueScheduler wired with deterministic fakes.

    Created inside the test's event loop so the send worker lives on it.
    """
    sched = QueueScheduler(settings, shared, transport, tasks, notifier, clock=clock)
    yield sched
    await sched.close()


@pytest.fixture()
def fake_targets() -> FakeTargets:
    return FakeTargets()


@pytest.fixture()
def lease_store() -> MemoryLeaseStore:
    return MemoryLeaseStore()


@pytest_asyncio.fixture()
async def state(settings, clock, fake_targets, lease_store) -> AppState:
    """
    AppState wired like bootstrap does, but over in-memory targets.

    NOTE: We keep the real SQLite TaskStore here because its behaviour is part
    of what the control surfaces expose.
    """
    shared = SharedState()
    notifier = LogNotifier()
    store = TaskStore(settings.store_path, schedule_defaults=schedule_defaults_from_settings(settings))
    pool = ConnectionPool(
        settings,
        shared,
        discover=fake_targets.discover,
        link_factory=fake_targets.link,
        payload_loader=lambda: PAYLOAD_SCRIPT,
        clock=clock,
    )
    scheduler = QueueScheduler(settings, shared, pool, store, notifier, clock=clock)
    monitor = ActivityMonitor(pool, scheduler)
    app = AppState(
        settings=settings,
        shared=shared,
        store=store,
        pool=pool,
        scheduler=scheduler,
        monitor=monitor,
        collector=StatsCollector(pool, store, shared, notifier, monitor=monitor, clock=clock),
        gate=QuotaGate(shared, scheduler, notifier),
        coordinator=InstanceCoordinator(lease_store, shared, settings.instance_id, clock=clock),
        notifier=notifier,
    )
    yield app
    await scheduler.close()
    await pool.stop()

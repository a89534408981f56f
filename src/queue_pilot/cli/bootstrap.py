# src/queue_pilot/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (pool/store/scheduler/lease/quota).
"""

from __future__ import annotations

import logging

from ..cdp.pool import ConnectionPool
from ..config import get_settings
from ..coordination.lease import FileLeaseStore, InstanceCoordinator
from ..core.notify import LogNotifier
from ..core.state import AppState, SharedState
from ..quota.client import QuotaClient
from ..scheduler.activity import ActivityMonitor
from ..scheduler.quota import QuotaGate
from ..scheduler.scheduler import QueueScheduler
from ..scheduler.stats import StatsCollector
from ..tasks.task_store import TaskStore, schedule_defaults_from_settings

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_path.parent.mkdir(parents=True, exist_ok=True)
    settings.lock_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    shared = SharedState(enabled=settings.enabled)
    notifier = LogNotifier()
    store = TaskStore(settings.store_path, schedule_defaults=schedule_defaults_from_settings(settings))
    pool = ConnectionPool(settings, shared)
    scheduler = QueueScheduler(settings, shared, pool, store, notifier)
    monitor = ActivityMonitor(pool, scheduler)

    quota_client: QuotaClient | None = None
    if settings.quota_enabled:
        quota_client = QuotaClient(
            settings.quota_port,
            settings.quota_csrf_token,
            timeout=settings.quota_timeout_s,
        )

    state = AppState(
        settings=settings,
        shared=shared,
        store=store,
        pool=pool,
        scheduler=scheduler,
        monitor=monitor,
        collector=StatsCollector(pool, store, shared, notifier, monitor=monitor),
        gate=QuotaGate(shared, scheduler, notifier),
        coordinator=InstanceCoordinator(
            FileLeaseStore(settings.lock_path),
            shared,
            settings.instance_id,
            stale_after_s=settings.stale_after_s,
        ),
        notifier=notifier,
        quota_client=quota_client,
    )
    logger.info("State ready (instance=%s, cdp=%s:%s)", settings.instance_id, settings.cdp_host, settings.cdp_port)
    return state

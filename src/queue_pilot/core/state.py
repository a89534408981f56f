# src/queue_pilot/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..cdp.pool import ConnectionPool
    from ..coordination.lease import InstanceCoordinator
    from ..quota.client import QuotaClient
    from ..scheduler.activity import ActivityMonitor
    from ..scheduler.quota import QuotaGate
    from ..scheduler.scheduler import QueueScheduler
    from ..scheduler.stats import StatsCollector
    from ..tasks.task_store import TaskStore
    from .notify import LogNotifier


@dataclass
class SharedState:
    """
    Runtime flags shared by pool, scheduler, monitor, gate and coordinator.

    One instance per process, passed explicitly to every component that needs it.
    Each flag has a single writer:
    - enabled: control surface (enable/disable)
    - standby: InstanceCoordinator
    - quota_exhausted: QuotaGate.set_exhausted
    - target_conversation: QueueScheduler.set_target_conversation
    """

    enabled: bool = True
    standby: bool = False
    quota_exhausted: bool = False
    target_conversation: str = ""


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any
    shared: SharedState

    store: TaskStore
    pool: ConnectionPool
    scheduler: QueueScheduler
    monitor: ActivityMonitor
    collector: StatsCollector
    gate: QuotaGate
    coordinator: InstanceCoordinator
    notifier: LogNotifier

    quota_client: QuotaClient | None = None

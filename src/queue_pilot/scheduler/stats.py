# src/queue_pilot/scheduler/stats.py

from __future__ import annotations

"""
Weekly usage totals.

Each collection reads and zeroes the remote click counters and adds them to
totals persisted in the store, so they survive reloads of the chat window and
restarts of the service. A week starts on local Sunday 00:00; the first
collection of a new week announces the previous week's numbers and starts over.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..core.clock import SystemClock
from ..core.errors import QueuePilotError
from ..core.ports import Clock, Notifier, StatsSource, ValueStore
from ..core.state import SharedState

if TYPE_CHECKING:
    from .activity import ActivityMonitor

logger = logging.getLogger(__name__)

WEEKLY_STATS_KEY = "weekly_stats"
SECONDS_PER_CLICK = 5


def week_start(ts: float) -> float:
    """Local Sunday 00:00 of the week containing ts."""
    day = datetime.fromtimestamp(ts).replace(hour=0, minute=0, second=0, microsecond=0)
    return (day - timedelta(days=(day.weekday() + 1) % 7)).timestamp()


def time_saved_minutes(clicks: int) -> int:
    # Rounds half up.
    return int(max(0, clicks) * SECONDS_PER_CLICK / 60 + 0.5)


def format_time_saved(clicks: int, *, long: bool = False) -> str:
    """12 clicks -> '1m', 1080 -> '1.5h'; long=True spells the unit out."""
    minutes = time_saved_minutes(clicks)
    if minutes >= 60:
        return f"{minutes / 60:.1f} hours" if long else f"{minutes / 60:.1f}h"
    return f"{minutes} minutes" if long else f"{minutes}m"


@dataclass(slots=True)
class WeeklyStats:
    week_start: float
    clicks_this_week: int = 0
    blocked_this_week: int = 0
    sessions_this_week: int = 0

    @classmethod
    def from_stored(cls, raw: Any, current_week: float) -> WeeklyStats:
        if not isinstance(raw, dict):
            return cls(week_start=current_week)
        try:
            return cls(
                week_start=float(raw.get("week_start", current_week)),
                clicks_this_week=int(raw.get("clicks_this_week", 0)),
                blocked_this_week=int(raw.get("blocked_this_week", 0)),
                sessions_this_week=int(raw.get("sessions_this_week", 0)),
            )
        except (TypeError, ValueError):
            logger.warning("Stored weekly stats unreadable; starting over")
            return cls(week_start=current_week)


class StatsCollector:
    """Drains remote counters into WeeklyStats and reports actions taken while the user was away."""

    def __init__(
        self,
        source: StatsSource,
        store: ValueStore,
        shared: SharedState,
        notifier: Notifier,
        *,
        monitor: ActivityMonitor | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._shared = shared
        self._notifier = notifier
        self._monitor = monitor
        self._clock = clock or SystemClock()

    def load(self) -> WeeklyStats:
        """Current week's totals; rolls over (and announces last week) when the week changed."""
        current = week_start(self._clock.time())
        stats = WeeklyStats.from_stored(self._store.get_value(WEEKLY_STATS_KEY), current)
        if stats.week_start == current:
            return stats

        logger.info("New week, resetting usage totals")
        if stats.clicks_this_week > 0:
            self._notifier.info(self._weekly_summary(stats))
        stats = WeeklyStats(week_start=current)
        self._save(stats)
        return stats

    def totals(self) -> dict[str, Any]:
        stats = self.load()
        out: dict[str, Any] = asdict(stats)
        out["time_saved_minutes"] = time_saved_minutes(stats.clicks_this_week)
        out["time_saved"] = format_time_saved(stats.clicks_this_week)
        return out

    def start_session(self) -> int:
        stats = self.load()
        stats.sessions_this_week += 1
        self._save(stats)
        logger.info("Session count this week: %d", stats.sessions_this_week)
        return stats.sessions_this_week

    async def collect(self) -> bool:
        """One collection pass. Returns True if anything was added to the totals."""
        if not self._shared.enabled or self._shared.standby:
            return False

        try:
            drained = await self._source.reset_stats()
        except QueuePilotError as e:
            logger.info("Stats collection failed: %s", e)
            return False

        if self._monitor is not None:
            self._monitor.counters_reset(drained.clicks)

        added = False
        if drained.clicks > 0 or drained.blocked > 0:
            stats = self.load()
            stats.clicks_this_week += drained.clicks
            stats.blocked_this_week += drained.blocked
            self._save(stats)
            logger.info(
                "Stats collected: +%d clicks, +%d blocked (week: %d clicks, %d blocked)",
                drained.clicks,
                drained.blocked,
                stats.clicks_this_week,
                stats.blocked_this_week,
            )
            added = True

        await self.check_away_actions()
        return added

    async def check_away_actions(self) -> int:
        if not self._shared.enabled:
            return 0
        try:
            count = await self._source.get_away_actions()
        except QueuePilotError as e:
            logger.info("Away actions check failed: %s", e)
            return 0
        if count > 0:
            self._notifier.info(f"Handled {count} action{'s' if count > 1 else ''} while you were away.")
        return count

    def _save(self, stats: WeeklyStats) -> None:
        self._store.set_value(WEEKLY_STATS_KEY, asdict(stats))

    @staticmethod
    def _weekly_summary(stats: WeeklyStats) -> str:
        parts = [
            f"Last week saved you {format_time_saved(stats.clicks_this_week, long=True)} "
            f"by auto-clicking {stats.clicks_this_week} buttons."
        ]
        if stats.sessions_this_week > 0:
            parts.append(f"Recovered {stats.sessions_this_week} stuck sessions.")
        if stats.blocked_this_week > 0:
            parts.append(f"Blocked {stats.blocked_this_week} dangerous commands.")
        return " ".join(parts)

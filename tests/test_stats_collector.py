# tests/test_stats_collector.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import pytest

from queue_pilot.core.results import ClickStats
from queue_pilot.scheduler.activity import ActivityMonitor
from queue_pilot.scheduler.models import StartSource
from queue_pilot.scheduler.stats import (
    WEEKLY_STATS_KEY,
    StatsCollector,
    format_time_saved,
    time_saved_minutes,
    week_start,
)
from queue_pilot.tasks.task_store import TaskStore

from .fakes import FakeTransport

WEEK = 7 * 24 * 3600


def test_time_saved_formatting() -> None:
    assert time_saved_minutes(6) == 1
    assert format_time_saved(0) == "0m"
    assert format_time_saved(12) == "1m"
    assert format_time_saved(1080) == "1.5h"
    assert format_time_saved(1080, long=True) == "1.5 hours"
    assert format_time_saved(24, long=True) == "2 minutes"


def test_week_starts_on_local_sunday_midnight() -> None:
    ts = 1_700_000_000.0
    start = week_start(ts)
    day = datetime.fromtimestamp(start)

    assert day.weekday() == 6
    assert (day.hour, day.minute, day.second) == (0, 0, 0)
    assert 0 <= ts - start < WEEK + 3600
    assert week_start(start) == start


@pytest.mark.asyncio
async def test_collect_drains_counters_into_weekly_totals(state, fake_targets) -> None:
    remote = fake_targets.add("a", clicks=4, blocked=1)
    await state.pool.refresh(force=True)

    assert await state.collector.collect()
    assert (remote.clicks, remote.blocked) == (0, 0)

    totals = state.collector.totals()
    assert totals["clicks_this_week"] == 4
    assert totals["blocked_this_week"] == 1
    assert state.store.get_value(WEEKLY_STATS_KEY)["clicks_this_week"] == 4

    # Nothing new: totals unchanged.
    assert not await state.collector.collect()
    remote.clicks = 2
    assert await state.collector.collect()
    assert state.collector.totals()["clicks_this_week"] == 6


@pytest.mark.asyncio
async def test_collect_is_skipped_while_disabled_or_in_standby(state, fake_targets) -> None:
    remote = fake_targets.add("a", clicks=4)
    await state.pool.refresh(force=True)

    state.shared.enabled = False
    assert not await state.collector.collect()
    state.shared.enabled = True
    state.shared.standby = True
    assert not await state.collector.collect()

    assert remote.clicks == 4
    assert state.collector.totals()["clicks_this_week"] == 0


@pytest.mark.asyncio
async def test_new_week_announces_last_week_and_starts_over(state, fake_targets, clock) -> None:
    fake_targets.add("a", clicks=4, blocked=2)
    await state.pool.refresh(force=True)
    await state.collector.collect()
    assert state.collector.start_session() == 1
    first_week = state.collector.totals()["week_start"]

    clock.advance(WEEK)
    totals = state.collector.totals()

    assert totals["week_start"] > first_week
    assert (totals["clicks_this_week"], totals["blocked_this_week"], totals["sessions_this_week"]) == (0, 0, 0)
    summary = state.notifier.recent[-1].message
    assert "auto-clicking 4 buttons" in summary
    assert "Recovered 1 stuck sessions." in summary
    assert "Blocked 2 dangerous commands." in summary


def test_quiet_week_rolls_over_without_a_summary(state, clock) -> None:
    state.collector.start_session()
    clock.advance(WEEK)

    assert state.collector.totals()["sessions_this_week"] == 0
    assert not [n for n in state.notifier.recent if "Last week" in n.message]


@pytest.mark.asyncio
async def test_away_actions_are_reported(state, fake_targets) -> None:
    remote = fake_targets.add("a", away_actions=3)
    await state.pool.refresh(force=True)

    await state.collector.collect()
    assert state.notifier.recent[-1].message == "Handled 3 actions while you were away."

    remote.away_actions = 1
    assert await state.collector.check_away_actions() == 1
    assert state.notifier.recent[-1].message == "Handled 1 action while you were away."

    remote.away_actions = 0
    before = len(state.notifier.recent)
    assert await state.collector.check_away_actions() == 0
    assert len(state.notifier.recent) == before


def test_unreadable_stored_totals_start_over(state) -> None:
    state.store.set_value(WEEKLY_STATS_KEY, {"week_start": "soon", "clicks_this_week": 3})
    assert state.collector.totals()["clicks_this_week"] == 0


@dataclass
class DrainingSource:
    """Resets the same counters the ActivityMonitor reads."""

    transport: FakeTransport
    away: int = 0

    async def reset_stats(self) -> ClickStats:
        clicks, self.transport.clicks = self.transport.clicks, 0
        return ClickStats(clicks=clicks)

    async def get_away_actions(self) -> int:
        return self.away


@pytest.mark.asyncio
async def test_collect_hands_unseen_clicks_to_the_activity_monitor(
    scheduler, transport, shared, notifier, clock, tmp_path: Path
) -> None:
    monitor = ActivityMonitor(transport, scheduler)
    collector = StatsCollector(
        DrainingSource(transport), TaskStore(tmp_path / "s.sqlite3"), shared, notifier, monitor=monitor, clock=clock
    )
    await scheduler.start(StartSource.TEST)
    transport.clicks = 3
    await monitor.tick()

    # Two clicks land, then collection zeroes the counters before the monitor looks again.
    clock.advance(10)
    transport.clicks = 5
    assert await collector.collect()
    assert scheduler.last_activity_at == clock.now
    assert monitor.baseline == 0
    assert transport.clicks == 0

    clock.advance(5)
    transport.clicks = 1
    assert await monitor.tick()
    assert scheduler.last_activity_at == clock.now

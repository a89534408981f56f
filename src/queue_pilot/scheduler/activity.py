# src/queue_pilot/scheduler/activity.py

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..core.errors import QueuePilotError
from ..core.ports import PromptTransport

if TYPE_CHECKING:
    from .scheduler import QueueScheduler

logger = logging.getLogger(__name__)


class ActivityMonitor:
    """
    Turns aggregate click counters into "last activity" timestamps.

    Absolute counts mean nothing across restarts or between items; only the
    delta within the scheduler's current epoch counts as activity.
    """

    def __init__(self, transport: PromptTransport, scheduler: QueueScheduler) -> None:
        self._transport = transport
        self._scheduler = scheduler
        self._baseline: int | None = None
        self._epoch: tuple[int, int] | None = None

    @property
    def baseline(self) -> int | None:
        return self._baseline

    async def tick(self) -> bool:
        """One poll. Returns True if new activity was recorded."""
        active = False
        if self._scheduler.is_running:
            try:
                stats = await self._transport.get_stats()
            except QueuePilotError as e:
                logger.info("Stats read failed: %s", e)
            else:
                active = self._observe(stats.clicks)

        await self._scheduler.check_silence()
        return active

    def _observe(self, clicks: int) -> bool:
        epoch = self._scheduler.epoch
        if epoch != self._epoch or self._baseline is None:
            self._epoch = epoch
            self._baseline = clicks
            return False

        if clicks < self._baseline:
            # Remote counters were reset (reload or resetStats); everything counted
            # since then is new.
            logger.debug("Click count dropped %d -> %d, re-baselining", self._baseline, clicks)
            new = clicks
        else:
            new = clicks - self._baseline

        self._baseline = clicks
        if new > 0:
            logger.info("Activity detected (%d new click(s))", new)
            self._scheduler.record_activity()
            return True
        return False

    def counters_reset(self, clicks_before_reset: int) -> None:
        """
        The remote counters were read and zeroed elsewhere (stats collection or a manual reset).

        Clicks above our baseline at that moment are activity we would otherwise miss.
        """
        if self._baseline is None:
            return
        if clicks_before_reset > self._baseline and self._scheduler.is_running:
            logger.info("Activity detected (%d click(s) before a counter reset)", clicks_before_reset - self._baseline)
            self._scheduler.record_activity()
        self._baseline = 0

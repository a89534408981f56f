# src/queue_pilot/scheduler/quota.py

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from ..core.ports import Notifier
from ..core.state import SharedState

if TYPE_CHECKING:
    from .scheduler import QueueScheduler

logger = logging.getLogger(__name__)


class QuotaReaction(StrEnum):
    NONE = "none"
    REDISPATCHED = "redispatched"
    CONTINUED = "continued"


class QuotaGate:
    """Sole writer of SharedState.quota_exhausted; reacts to edges only."""

    def __init__(self, shared: SharedState, scheduler: QueueScheduler, notifier: Notifier) -> None:
        self._shared = shared
        self._scheduler = scheduler
        self._notifier = notifier

    @property
    def exhausted(self) -> bool:
        return self._shared.quota_exhausted

    async def set_exhausted(self, exhausted: bool) -> QuotaReaction:
        was = self._shared.quota_exhausted
        self._shared.quota_exhausted = bool(exhausted)

        if exhausted and not was:
            logger.info("Quota exhausted, queue progression held")
            return QuotaReaction.NONE
        if was and not exhausted:
            logger.info("Quota available again")
            return await self._on_available()
        return QuotaReaction.NONE

    async def _on_available(self) -> QuotaReaction:
        cfg = self._scheduler.config()

        if self._scheduler.is_running:
            if cfg.quota_resume_enabled:
                self._notifier.info("Quota reset! Resuming queue...")
                await self._scheduler.redispatch_current()
                return QuotaReaction.REDISPATCHED
            logger.info("Quota reset, but queue resume is disabled")

        if cfg.auto_continue_enabled:
            self._notifier.info(f"Quota reset! Sending {cfg.continue_prompt!r}...")
            await self._scheduler.send_prompt(cfg.continue_prompt)
            return QuotaReaction.CONTINUED

        logger.info("Quota reset, but auto-continue is disabled")
        return QuotaReaction.NONE

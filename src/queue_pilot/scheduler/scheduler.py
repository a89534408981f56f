# src/queue_pilot/scheduler/scheduler.py

from __future__ import annotations

"""
Prompt queue state machine.

IDLE -> RUNNING <-> PAUSED -> COMPLETED (or back to item 0 in loop policy).

Completion of a task is never signalled by the remote side; it is inferred by
check_silence() from click activity reported by the ActivityMonitor. Every send
goes through one worker task, one request at a time, so two prompts never race
onto the same input. Each request carries the run generation it was created in;
stop()/reset() bump the generation and anything older is dropped unapplied.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..core.clock import SystemClock
from ..core.errors import DeliveryUnconfirmed, QueuePilotError
from ..core.ports import Clock, Notifier, PromptTransport, TaskSource
from ..core.state import SharedState
from .models import (
    NOTHING_TO_DO,
    CompletionPolicy,
    ControlResult,
    DispatchOutcome,
    ExecutionMode,
    HistoryEntry,
    ItemKind,
    QueueItem,
    ScheduleConfig,
    SchedulerState,
    StartSource,
)
from .queue import build_runtime_queue, format_time_ago

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
HISTORY_TEXT_LIMIT = 100
EMPTY_QUEUE_WARNING_GAP_S = 5.0


@dataclass(slots=True)
class _SendRequest:
    text: str
    generation: int
    target: str
    # Serial of the queue item this send belongs to; None for free-form sends.
    item_serial: int | None
    done: asyncio.Future[DispatchOutcome] = field(repr=False)


def _parse_minutes(value: str) -> int:
    try:
        minutes = int(str(value).strip())
    except ValueError:
        return 30
    return minutes if minutes > 0 else 30


def _parse_hhmm(value: str) -> tuple[int, int] | None:
    try:
        hh, mm = (int(p) for p in str(value).strip().split(":", 1))
    except ValueError:
        return None
    if not (0 <= hh < 24 and 0 <= mm < 60):
        return None
    return hh, mm


class QueueScheduler:
    def __init__(
        self,
        settings: Any,
        shared: SharedState,
        transport: PromptTransport,
        tasks: TaskSource,
        notifier: Notifier,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings
        self._shared = shared
        self._transport = transport
        self._tasks = tasks
        self._notifier = notifier
        self._clock = clock or SystemClock()

        self.state = SchedulerState.IDLE
        self.queue: tuple[QueueItem, ...] = ()
        self.index = 0
        self.run_generation = 0
        self.last_activity_at = 0.0
        self.task_started_at = 0.0
        self.item_dispatched = False
        self.last_error: DeliveryUnconfirmed | None = None

        # Bumped whenever the current item changes (or is re-sent); lets the
        # activity monitor tell "new item" apart from "same item".
        self._item_serial = 0

        now = self._clock.monotonic()
        self._activated_at = now
        self._last_start_at: float | None = None
        self._last_empty_warning_at: float | None = None
        self._last_trigger_at = now
        self._schedule_enabled = False
        # Set while start() awaits its resync, before the queue exists.
        self._starting = False

        self._history: deque[HistoryEntry] = deque(maxlen=HISTORY_LIMIT)

        self._sends: asyncio.Queue[_SendRequest] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    # ---- read-only views ----

    @property
    def is_running(self) -> bool:
        return self.state in (SchedulerState.RUNNING, SchedulerState.PAUSED)

    @property
    def current_item(self) -> QueueItem | None:
        if not self.is_running or self.index >= len(self.queue):
            return None
        return self.queue[self.index]

    @property
    def epoch(self) -> tuple[int, int]:
        """Changes whenever activity counted so far stops being about the current item."""
        return self.run_generation, self._item_serial

    def config(self) -> ScheduleConfig:
        return ScheduleConfig.from_mapping(self._tasks.get_schedule())

    def status(self) -> dict[str, Any]:
        cfg = self.config()
        item = self.current_item
        return {
            "enabled": self._shared.enabled,
            "schedule_enabled": cfg.enabled,
            "mode": cfg.mode.value,
            "completion_policy": cfg.completion_policy.value,
            "state": self.state.value,
            "is_running_queue": self.is_running,
            "queue_length": len(self.queue),
            "queue_index": self.index,
            "is_quota_exhausted": self._shared.quota_exhausted,
            "is_paused": self.state == SchedulerState.PAUSED,
            "current_prompt": item.text if item else "",
            "current_label": item.label if item else "",
            "item_dispatched": self.item_dispatched,
            "target_conversation": self._shared.target_conversation,
            "standby": self._shared.standby,
            "run_generation": self.run_generation,
            "last_error": str(self.last_error) if self.last_error else "",
        }

    def history(self) -> list[dict[str, Any]]:
        now = self._clock.time()
        return [
            {
                "text": h.truncated_text,
                "full_text": h.text,
                "timestamp": h.timestamp,
                "time_ago": format_time_ago(max(0.0, now - h.timestamp)),
                "status": h.status,
                "conversation": h.conversation_target or "current",
            }
            for h in self._history
        ]

    @property
    def history_entries(self) -> tuple[HistoryEntry, ...]:
        return tuple(self._history)

    def set_target_conversation(self, name: str | None) -> None:
        self._shared.target_conversation = (name or "").strip()
        logger.info("Target conversation set to %r", self._shared.target_conversation or "current")

    # ---- queue control ----

    async def start(self, source: StartSource | str) -> ControlResult:
        try:
            source = StartSource(source)
        except ValueError:
            logger.warning("Blocked queue start from invalid source %r", source)
            return ControlResult.rejected(f"invalid start source: {source!r}")

        now = self._clock.monotonic()
        if self._last_start_at is not None and now - self._last_start_at < self._settings.start_cooldown_s:
            logger.info("Ignoring rapid queue start (source=%s)", source)
            return ControlResult.rejected("start cooldown active")
        self._last_start_at = now

        if (
            now - self._activated_at < self._settings.activation_grace_s
            and source not in (StartSource.MANUAL, StartSource.TEST)
        ):
            logger.info("Blocked queue start during activation grace (source=%s)", source)
            return ControlResult.rejected("activation grace period")

        if self.is_running or self._starting:
            logger.info("Queue already running, ignoring start (source=%s)", source)
            return ControlResult.rejected("already running")

        cfg = self.config()
        if cfg.mode != ExecutionMode.QUEUE:
            self._notifier.warning("Set mode to 'queue' before starting the queue.")
            return ControlResult.rejected(f"mode is {cfg.mode.value}, not queue")

        tasks = self._tasks.list_prompts()
        if not tasks:
            if source == StartSource.MANUAL:
                self._warn_empty_queue(now)
            else:
                logger.info("Queue is empty, nothing to run (source=%s)", source)
            return ControlResult.rejected("queue is empty")

        logger.info("Queue start proceeding (source=%s)", source)
        generation = self.run_generation
        self._starting = True
        try:
            await self._resync("start", force=True)
        finally:
            self._starting = False
        if generation != self.run_generation:
            logger.info("Queue start superseded by a stop or reset")
            return ControlResult.rejected("stopped during start")

        self.queue = build_runtime_queue(tasks, cfg.verification_enabled, cfg.verification_text)
        self.index = 0
        self.state = SchedulerState.RUNNING
        self.last_error = None
        self._reset_item()
        logger.info("Starting queue with %d item(s)", len(self.queue))

        outcome = await self.dispatch()
        if outcome != DispatchOutcome.DELIVERED:
            return ControlResult.rejected(f"first item {outcome.value}")
        return ControlResult.ok(f"started with {len(self.queue)} item(s)")

    def _warn_empty_queue(self, now: float) -> None:
        last = self._last_empty_warning_at
        if last is not None and now - last < EMPTY_QUEUE_WARNING_GAP_S:
            logger.debug("Empty queue warning suppressed")
            return
        self._last_empty_warning_at = now
        self._notifier.warning("Prompt queue is empty. Add prompts first.")

    async def advance(self) -> ControlResult:
        """Finish the current item and move on (consuming it in consume policy)."""
        if not self.is_running:
            return ControlResult.rejected(NOTHING_TO_DO)

        item = self.current_item
        cfg = self.config()
        if cfg.completion_policy == CompletionPolicy.CONSUME and item is not None and item.kind == ItemKind.TASK:
            self._consume(item)

        return await self._move_next(cfg)

    async def skip(self) -> ControlResult:
        """Advance without waiting for a confirmed dispatch; nothing is consumed."""
        if not self.is_running:
            return ControlResult.rejected(NOTHING_TO_DO)
        logger.info("Skipping %s", self.current_item.label if self.current_item else "item")
        self.state = SchedulerState.RUNNING
        return await self._move_next(self.config())

    async def _move_next(self, cfg: ScheduleConfig) -> ControlResult:
        self.index += 1
        self._reset_item()

        if self.index >= len(self.queue):
            if cfg.completion_policy == CompletionPolicy.LOOP and self.queue:
                self.queue = build_runtime_queue(
                    self._tasks.list_prompts(),
                    cfg.verification_enabled,
                    cfg.verification_text,
                )
                self.index = 0
                if not self.queue:
                    self._complete()
                    return ControlResult.ok("queue completed")
                logger.info("Queue completed, looping (%d item(s))", len(self.queue))
            else:
                self._complete()
                return ControlResult.ok("queue completed")

        await self.dispatch()
        return ControlResult.ok(f"moved to item {self.index + 1}/{len(self.queue)}")

    def _complete(self) -> None:
        self.index = len(self.queue)
        self.state = SchedulerState.COMPLETED
        self.item_dispatched = False
        logger.info("Queue completed")
        self._notifier.info("Prompt queue completed!")

    def _consume(self, item: QueueItem) -> None:
        try:
            removed = self._tasks.consume_first()
        except Exception:
            logger.exception("Failed to consume finished task %s", item.label)
            return
        if removed is not None:
            logger.info("Consumed %s, %d remaining", item.label, len(self._tasks.list_prompts()))

    async def check_silence(self) -> bool:
        """Advance if the current item looks finished. Returns True if it advanced."""
        if self.state != SchedulerState.RUNNING:
            return False
        if self._shared.quota_exhausted:
            return False

        cfg = self.config()
        if cfg.mode != ExecutionMode.QUEUE:
            return False
        if not self.item_dispatched:
            return False

        now = self._clock.monotonic()
        if now - self.task_started_at < cfg.min_dwell_s:
            return False

        silence = now - self.last_activity_at
        if silence <= cfg.silence_timeout_s:
            return False

        logger.info("Silence detected (%.0fs), advancing queue", silence)
        await self.advance()
        return True

    def record_activity(self) -> None:
        self.last_activity_at = self._clock.monotonic()

    def pause(self) -> ControlResult:
        if self.state != SchedulerState.RUNNING:
            return ControlResult.rejected(NOTHING_TO_DO)
        self.state = SchedulerState.PAUSED
        logger.info("Queue paused")
        self._notifier.info("Queue paused.")
        return ControlResult.ok("paused")

    async def resume(self) -> ControlResult:
        if self.state != SchedulerState.PAUSED:
            return ControlResult.rejected(NOTHING_TO_DO)
        self.state = SchedulerState.RUNNING
        logger.info("Queue resumed")
        self._notifier.info("Queue resumed.")
        await self.check_silence()
        return ControlResult.ok("resumed")

    def stop(self, reason: str = "stopped by user") -> ControlResult:
        if not self.is_running and not self._starting:
            if self.state == SchedulerState.COMPLETED:
                self.state = SchedulerState.IDLE
                self.queue = ()
                self.index = 0
            return ControlResult.rejected(NOTHING_TO_DO)

        self._halt()
        logger.info("Queue stopped (%s)", reason)
        self._notifier.info("Queue stopped.")
        return ControlResult.ok(reason)

    def _halt(self) -> None:
        self.run_generation += 1
        self.state = SchedulerState.IDLE
        self.queue = ()
        self.index = 0
        self.last_activity_at = 0.0
        self.task_started_at = 0.0
        self.item_dispatched = False
        self._item_serial += 1

    def reset(self) -> ControlResult:
        """Stop whatever runs and clear the stored task list."""
        self._halt()
        try:
            self._tasks.clear_prompts()
        except Exception:
            logger.exception("Failed to clear stored prompts")
            return ControlResult.rejected("queue stopped but prompts could not be cleared")
        logger.info("Queue reset, prompts cleared")
        self._notifier.info("Queue reset.")
        return ControlResult.ok("reset")

    async def redispatch_current(self) -> ControlResult:
        """Re-send the current item without advancing."""
        if self.current_item is None:
            return ControlResult.rejected(NOTHING_TO_DO)
        logger.info("Re-dispatching %s", self.current_item.label)
        self._reset_item()
        outcome = await self.dispatch()
        return ControlResult(outcome == DispatchOutcome.DELIVERED, outcome.value)

    def _reset_item(self) -> None:
        now = self._clock.monotonic()
        self.last_activity_at = now
        self.task_started_at = now
        self.item_dispatched = False
        self._item_serial += 1

    # ---- sending ----

    async def dispatch(self, item: QueueItem | None = None) -> DispatchOutcome:
        """Send the current (or given) item through the send worker and wait for it."""
        item = item or self.current_item
        if item is None:
            return DispatchOutcome.STALE
        logger.info("Executing %s: %.50r", item.label, item.text)
        return await self._enqueue(item.text, item_serial=self._item_serial)

    async def send_prompt(self, text: str) -> DispatchOutcome:
        """Free-form prompt (operator, continuation, interval/daily trigger)."""
        if not text:
            return DispatchOutcome.FAILED
        return await self._enqueue(text, item_serial=None)

    async def _enqueue(self, text: str, *, item_serial: int | None) -> DispatchOutcome:
        self._ensure_worker()
        req = _SendRequest(
            text=text,
            generation=self.run_generation,
            target=self._shared.target_conversation,
            item_serial=item_serial,
            done=asyncio.get_running_loop().create_future(),
        )
        await self._sends.put(req)
        return await req.done

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._send_worker(), name="queue-pilot-send-worker")

    async def _send_worker(self) -> None:
        while True:
            req = await self._sends.get()
            try:
                outcome = await self._process(req)
            except asyncio.CancelledError:
                if not req.done.done():
                    req.done.set_result(DispatchOutcome.STALE)
                raise
            except Exception as e:
                logger.exception("Send worker failed on a request")
                if self._is_stale(req):
                    outcome = DispatchOutcome.STALE
                else:
                    self._delivery_failed(f"send crashed: {e.__class__.__name__}: {e}")
                    outcome = DispatchOutcome.FAILED
            finally:
                self._sends.task_done()
            if not req.done.done():
                req.done.set_result(outcome)

    def _is_stale(self, req: _SendRequest) -> bool:
        return req.generation != self.run_generation

    async def _process(self, req: _SendRequest) -> DispatchOutcome:
        if self._is_stale(req):
            logger.info("Prompt cancelled (queue stopped)")
            return DispatchOutcome.STALE

        await self._resync("send", force=False)
        if self._is_stale(req):
            return DispatchOutcome.STALE

        result = await self._transport.send_prompt(req.text, req.target)
        if self._is_stale(req):
            logger.info("Discarding result of a send from a stopped run")
            return DispatchOutcome.STALE

        if not result.delivered:
            logger.info("Prompt not delivered (%s), forcing resync and retrying once", result.reason or result.status)
            await self._resync("send-retry", force=True)
            if self._is_stale(req):
                return DispatchOutcome.STALE
            result = await self._transport.send_prompt(req.text, req.target)
            if self._is_stale(req):
                logger.info("Discarding result of a send from a stopped run")
                return DispatchOutcome.STALE

        if not result.delivered:
            self._delivery_failed(result.reason or str(result.status))
            return DispatchOutcome.FAILED

        self._delivered(req)
        return DispatchOutcome.DELIVERED

    def _delivered(self, req: _SendRequest) -> None:
        self._history.append(
            HistoryEntry(
                text=req.text,
                truncated_text=req.text[:HISTORY_TEXT_LIMIT],
                timestamp=self._clock.time(),
                status="sent",
                conversation_target=req.target,
            )
        )
        if req.item_serial is not None and req.item_serial == self._item_serial and self.is_running:
            self.item_dispatched = True
            self.last_activity_at = self._clock.monotonic()
        logger.info("Prompt delivered: %.50r", req.text)

    def _delivery_failed(self, reason: str) -> None:
        self.last_error = DeliveryUnconfirmed(f"no active chat input found: {reason}")
        message = f"Prompt not delivered ({self.last_error})"
        if self.is_running:
            self._halt()
            message += ". Queue stopped."
        self._notifier.error(message)

    async def _resync(self, reason: str, *, force: bool) -> None:
        try:
            count = await self._transport.refresh(force=force)
        except QueuePilotError as e:
            logger.warning("Resync (%s) failed: %s", reason, e)
            return
        logger.debug("Resync (%s, force=%s): %d connection(s)", reason, force, count)

    # ---- interval / daily ----

    async def check_schedule(self) -> bool:
        """Fire the configured prompt in interval/daily mode. Returns True if it fired."""
        cfg = self.config()
        now = self._clock.monotonic()

        if cfg.enabled and not self._schedule_enabled:
            self._last_trigger_at = now
            logger.info("Schedule enabled, timer reset")
        self._schedule_enabled = cfg.enabled

        if not cfg.enabled or not self._shared.enabled:
            return False

        if cfg.mode == ExecutionMode.INTERVAL:
            minutes = _parse_minutes(cfg.value)
            if now - self._last_trigger_at <= minutes * 60:
                return False
            logger.info("Interval triggered (%dm)", minutes)
        elif cfg.mode == ExecutionMode.DAILY:
            hhmm = _parse_hhmm(cfg.value)
            if hhmm is None:
                logger.debug("Daily schedule value %r is not HH:MM", cfg.value)
                return False
            local = datetime.fromtimestamp(self._clock.time())
            if (local.hour, local.minute) != hhmm or now - self._last_trigger_at <= 60:
                return False
            logger.info("Daily triggered (%s)", cfg.value)
        else:
            return False

        self._last_trigger_at = now
        await self.send_prompt(cfg.prompt)
        return True

    # ---- lifecycle ----

    async def close(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

        while not self._sends.empty():
            req = self._sends.get_nowait()
            if not req.done.done():
                req.done.set_result(DispatchOutcome.STALE)

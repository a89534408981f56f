# src/queue_pilot/scheduler/models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ItemKind(StrEnum):
    TASK = "task"
    VERIFICATION = "verification"


class SchedulerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class ExecutionMode(StrEnum):
    INTERVAL = "interval"
    DAILY = "daily"
    QUEUE = "queue"

    @classmethod
    def parse(cls, raw: str | None) -> ExecutionMode:
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.QUEUE


class CompletionPolicy(StrEnum):
    # consume: drop each finished task from the stored list, stop at the end.
    CONSUME = "consume"
    # loop: keep the list, start over from the first task.
    LOOP = "loop"

    @classmethod
    def parse(cls, raw: str | None) -> CompletionPolicy:
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.CONSUME


class StartSource(StrEnum):
    MANUAL = "manual"
    CONTROL = "control"
    RESUME = "resume"
    TEST = "test"


@dataclass(slots=True, frozen=True)
class QueueItem:
    kind: ItemKind
    text: str
    source_index: int

    @property
    def label(self) -> str:
        if self.kind == ItemKind.VERIFICATION:
            return "Verification prompt"
        return f"Task {self.source_index + 1}"


@dataclass(slots=True, frozen=True)
class HistoryEntry:
    text: str
    truncated_text: str
    timestamp: float  # wall clock, seconds
    status: str
    conversation_target: str


@dataclass(slots=True, frozen=True)
class ControlResult:
    accepted: bool
    reason: str = ""

    @classmethod
    def ok(cls, reason: str = "") -> ControlResult:
        return cls(True, reason)

    @classmethod
    def rejected(cls, reason: str) -> ControlResult:
        return cls(False, reason)

    def as_dict(self) -> dict[str, object]:
        return {"accepted": self.accepted, "reason": self.reason}


NOTHING_TO_DO = "nothing to do"


class DispatchOutcome(StrEnum):
    DELIVERED = "delivered"
    FAILED = "failed"
    # Superseded by stop()/reset(): nothing was applied.
    STALE = "stale"


def _as_bool(value: object, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _as_float(value: object, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


@dataclass(slots=True, frozen=True)
class ScheduleConfig:
    """Typed view of the stored schedule config. Read fresh on every decision."""

    enabled: bool = False
    mode: ExecutionMode = ExecutionMode.QUEUE
    value: str = "30"
    prompt: str = "Status report please"
    completion_policy: CompletionPolicy = CompletionPolicy.CONSUME
    silence_timeout_s: float = 30.0
    min_dwell_s: float = 10.0
    verification_enabled: bool = False
    verification_text: str = ""
    quota_resume_enabled: bool = True
    auto_continue_enabled: bool = False
    continue_prompt: str = "Continue"

    @classmethod
    def from_mapping(cls, raw: dict[str, object]) -> ScheduleConfig:
        d = cls()
        return cls(
            enabled=_as_bool(raw.get("enabled"), d.enabled),
            mode=ExecutionMode.parse(str(raw.get("mode") or d.mode)),
            value=str(raw.get("value") or d.value),
            prompt=str(raw.get("prompt") or d.prompt),
            completion_policy=CompletionPolicy.parse(str(raw.get("completion_policy") or d.completion_policy)),
            silence_timeout_s=_as_float(raw.get("silence_timeout_s"), d.silence_timeout_s),
            min_dwell_s=_as_float(raw.get("min_dwell_s"), d.min_dwell_s),
            verification_enabled=_as_bool(raw.get("verification_enabled"), d.verification_enabled),
            verification_text=str(raw.get("verification_text") or d.verification_text),
            quota_resume_enabled=_as_bool(raw.get("quota_resume_enabled"), d.quota_resume_enabled),
            auto_continue_enabled=_as_bool(raw.get("auto_continue_enabled"), d.auto_continue_enabled),
            continue_prompt=str(raw.get("continue_prompt") or d.continue_prompt),
        )

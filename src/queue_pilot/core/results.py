# src/queue_pilot/core/results.py

from __future__ import annotations

"""
Small result types that cross the ConnectionPool boundary.

The remote payload answers with loosely shaped JSON; the pool translates it into
these types so nothing deeper (scheduler, monitor) ever parses remote JSON.
"""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class SendStatus(StrEnum):
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"
    PROTOCOL_ERROR = "protocol_error"


@dataclass(slots=True, frozen=True)
class SendResult:
    status: SendStatus
    count: int = 0
    reason: str = ""

    @classmethod
    def confirmed(cls, count: int = 1) -> SendResult:
        return cls(SendStatus.CONFIRMED, count=max(1, int(count)))

    @classmethod
    def unconfirmed(cls, reason: str = "") -> SendResult:
        return cls(SendStatus.UNCONFIRMED, count=0, reason=reason)

    @classmethod
    def protocol_error(cls, reason: str) -> SendResult:
        return cls(SendStatus.PROTOCOL_ERROR, count=0, reason=reason)

    @property
    def delivered(self) -> bool:
        return self.status == SendStatus.CONFIRMED and self.count > 0


@dataclass(slots=True)
class ClickStats:
    clicks: int = 0
    blocked: int = 0
    file_edits: int = 0
    terminal_commands: int = 0

    def add(self, raw: dict[str, Any]) -> None:
        """Sum one connection's counters in; unknown or non-numeric fields count as 0."""
        self.clicks += _as_int(raw.get("clicks"))
        self.blocked += _as_int(raw.get("blocked"))
        self.file_edits += _as_int(raw.get("fileEdits"))
        self.terminal_commands += _as_int(raw.get("terminalCommands"))

    def as_dict(self) -> dict[str, int]:
        return {
            "clicks": self.clicks,
            "blocked": self.blocked,
            "file_edits": self.file_edits,
            "terminal_commands": self.terminal_commands,
        }


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0

# src/queue_pilot/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scheduler, monitor, gate and coordinator depend on Protocols instead of
concrete implementations. This keeps the CDP pool, the SQLite store and the
lock file swappable and makes testing easier.
"""

from typing import Any, Protocol

from .results import ClickStats, SendResult


class Clock(Protocol):
    def monotonic(self) -> float: ...
    def time(self) -> float: ...


class PromptTransport(Protocol):
    """
    What the scheduler may call on the connection pool.

    The scheduler never holds a connection; it only goes through this surface.
    """

    async def refresh(self, *, force: bool = False) -> int: ...
    async def send_prompt(self, text: str, target_conversation: str = "") -> SendResult: ...
    async def get_stats(self) -> ClickStats: ...
    async def get_conversations(self) -> list[str]: ...


class TaskSource(Protocol):
    """Externally persisted task list + schedule config (SQLite in production)."""

    def list_prompts(self) -> list[str]: ...
    def consume_first(self) -> str | None: ...
    def clear_prompts(self) -> None: ...
    def get_schedule(self) -> dict[str, Any]: ...


class StatsSource(Protocol):
    """Counters the stats collector drains from the connection pool."""

    async def reset_stats(self) -> ClickStats: ...
    async def get_away_actions(self) -> int: ...


class ValueStore(Protocol):
    def get_value(self, key: str, default: Any = None) -> Any: ...
    def set_value(self, key: str, value: Any) -> None: ...


class Notifier(Protocol):
    """Operator-facing messages (console, control server responses, status line)."""

    def info(self, message: str) -> None: ...
    def warning(self, message: str) -> None: ...
    def error(self, message: str) -> None: ...


class LeaseStore(Protocol):
    def read(self) -> Any | None: ...  # LockRecord (kept as Any to avoid import coupling)
    def write(self, record: Any) -> None: ...
    def clear(self) -> None: ...

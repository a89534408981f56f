# src/queue_pilot/scheduler/queue.py

from __future__ import annotations

from collections.abc import Sequence

from .models import ItemKind, QueueItem


def build_runtime_queue(
    tasks: Sequence[str],
    verification_enabled: bool,
    verification_text: str,
) -> tuple[QueueItem, ...]:
    """One TASK item per task, each followed by a VERIFICATION item when enabled."""
    items: list[QueueItem] = []
    for i, text in enumerate(tasks):
        items.append(QueueItem(ItemKind.TASK, text, i))
        if verification_enabled:
            items.append(QueueItem(ItemKind.VERIFICATION, verification_text, i))
    return tuple(items)


def format_time_ago(seconds: float) -> str:
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{int(seconds // 60)}m ago"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h ago"
    return f"{int(seconds // 86400)}d ago"

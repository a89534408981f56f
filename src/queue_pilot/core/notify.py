# src/queue_pilot/core/notify.py

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

Emitter = Callable[[str], None]


@dataclass(slots=True, frozen=True)
class Notice:
    level: str
    message: str


class LogNotifier:
    """
    Operator-facing notifications.

    Everything goes to the log; an optional emitter (the console) gets a copy so
    errors like an undeliverable prompt are visible without tailing the log file.
    The last few notices are kept for the status surface.
    """

    def __init__(self, emit: Emitter | None = None, keep: int = 20) -> None:
        self._emit = emit
        self.recent: deque[Notice] = deque(maxlen=keep)

    def set_emitter(self, emit: Emitter | None) -> None:
        self._emit = emit

    def _push(self, level: str, message: str) -> None:
        self.recent.append(Notice(level=level, message=message))
        if self._emit is None:
            return
        try:
            self._emit(f"[{level.upper()}] {message}")
        except Exception:
            logger.debug("Notifier emit failed.", exc_info=True)

    def info(self, message: str) -> None:
        logger.info("%s", message)
        self._push("info", message)

    def warning(self, message: str) -> None:
        logger.warning("%s", message)
        self._push("warning", message)

    def error(self, message: str) -> None:
        logger.error("%s", message)
        self._push("error", message)

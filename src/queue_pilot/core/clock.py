# src/queue_pilot/core/clock.py

from __future__ import annotations

import time


class SystemClock:
    """
    Default clock.

    monotonic() is used for every duration comparison inside the process.
    time() is wall clock: display timestamps and the cross-process lease record only.
    """

    def monotonic(self) -> float:
        return time.monotonic()

    def time(self) -> float:
        return time.time()

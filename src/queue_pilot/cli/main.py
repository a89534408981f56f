# src/queue_pilot/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then runs the service on one event loop:
- periodic loops (lease/targets, activity, schedule, quota),
- optional local control server,
- console REPL (optional).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..logging_setup import parse_level, setup_logging
from ..service import run_service

logger = logging.getLogger(__name__)


async def _run(state) -> None:
    # Use an Event so the service can wait without a busy loop.
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        # Some platforms (Windows) do not support loop signal handlers.
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signum, _handle_signal, signum)

    await run_service(state, stop=stop)


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(log_dir=settings.data_dir, console_level=parse_level(settings.log_level))
    logger.info("Starting %s (log file: %s)", settings.app_name, log_file)

    state = create_initial_state(settings=settings)

    try:
        asyncio.run(_run(state))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()

# tests/test_logging_setup.py

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from queue_pilot.logging_setup import _ConsoleFilter, parse_level, setup_logging


def _record(name: str, level: int) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, "msg", None, None)


def test_console_filter() -> None:
    f = _ConsoleFilter()
    assert f.filter(_record("queue_pilot.scheduler.scheduler", logging.INFO))
    assert not f.filter(_record("queue_pilot.cdp.link", logging.INFO))
    assert f.filter(_record("queue_pilot.cdp.link", logging.WARNING))
    assert not f.filter(_record("websockets.client", logging.WARNING))
    assert f.filter(_record("aiohttp.server", logging.ERROR))


def test_parse_level() -> None:
    assert parse_level("debug") == logging.DEBUG
    assert parse_level(" Warning ") == logging.WARNING
    assert parse_level("chatty") == logging.INFO
    assert parse_level(None, logging.ERROR) == logging.ERROR


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)
    logging.captureWarnings(False)


def test_setup_logging_writes_file(tmp_path: Path, restore_root_logging) -> None:
    log_file = setup_logging(log_dir=tmp_path / "logs")

    logging.getLogger("queue_pilot.test").debug("hello file")
    for h in logging.getLogger().handlers:
        h.flush()

    assert log_file == tmp_path / "logs" / "queue_pilot.log"
    assert "hello file" in log_file.read_text(encoding="utf-8")
    assert logging.getLogger("httpx").level == logging.WARNING

# src/queue_pilot/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

SCHEDULE_KEYS = frozenset(
    {
        "enabled",
        "mode",
        "value",
        "prompt",
        "completion_policy",
        "silence_timeout_s",
        "min_dwell_s",
        "verification_enabled",
        "verification_text",
        "quota_resume_enabled",
        "auto_continue_enabled",
        "continue_prompt",
    }
)


def schedule_defaults_from_settings(settings: Any) -> dict[str, Any]:
    """Seed values for the schedule config on first run."""
    return {
        "enabled": False,
        "mode": settings.mode,
        "value": settings.schedule_value,
        "prompt": settings.schedule_prompt,
        "completion_policy": settings.completion_policy,
        "silence_timeout_s": settings.silence_timeout_s,
        "min_dwell_s": settings.min_dwell_s,
        "verification_enabled": settings.verification_enabled,
        "verification_text": settings.verification_text,
        "quota_resume_enabled": settings.quota_resume_enabled,
        "auto_continue_enabled": settings.auto_continue_enabled,
        "continue_prompt": settings.continue_prompt,
    }


class TaskStore:
    """
    SQLite store for the externally owned configuration.

    Holds the ordered prompt list, the schedule key/value config and a small
    key/value table the service writes for itself (weekly stats). The
    scheduler reads the prompts and schedule on every decision, so edits made
    while a queue is running are picked up at the next advance or loop-around.

    The schema is migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Each method opens its own SQLite connection.
    """

    def __init__(
        self,
        db_path: str | Path = "queue.sqlite3",
        *,
        schedule_defaults: Mapping[str, Any] | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        if schedule_defaults:
            self._seed_schedule(schedule_defaults)
        try:
            total = len(self.list_prompts())
        except Exception:
            total = -1
        logger.info("TaskStore ready db=%s prompts=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS prompts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    position INTEGER NOT NULL,
                    text TEXT NOT NULL,
                    created_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS schedule (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

            cur.execute("PRAGMA table_info(prompts)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE prompts ADD COLUMN {name} {decl}")
                logger.info("TaskStore migration: added column %s", name)

            add_col("position", "INTEGER NOT NULL DEFAULT 0")
            add_col("created_at", "REAL NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_prompts_position ON prompts(position, id)")
            conn.commit()
        finally:
            conn.close()

    def _seed_schedule(self, defaults: Mapping[str, Any]) -> None:
        conn = self._get_conn()
        try:
            conn.executemany(
                "INSERT OR IGNORE INTO schedule (key, value) VALUES (?, ?)",
                [(k, json.dumps(v)) for k, v in defaults.items() if k in SCHEDULE_KEYS],
            )
            conn.commit()
        finally:
            conn.close()

    # ---- prompts ----

    def list_prompts(self) -> list[str]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT text FROM prompts ORDER BY position ASC, id ASC").fetchall()
        finally:
            conn.close()
        return [str(r["text"]) for r in rows]

    def set_prompts(self, prompts: Iterable[str]) -> int:
        """Replace the whole list. Blank entries are dropped. Returns the new length."""
        cleaned = [p.strip() for p in prompts if p and p.strip()]
        now = time.time()
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM prompts")
            conn.executemany(
                "INSERT INTO prompts (position, text, created_at) VALUES (?, ?, ?)",
                [(i, text, now) for i, text in enumerate(cleaned)],
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Prompt list replaced (%d prompt(s))", len(cleaned))
        return len(cleaned)

    def add_prompt(self, text: str) -> int:
        """Append one prompt. Returns the new length."""
        text = (text or "").strip()
        if not text:
            raise ValueError("prompt text is empty")
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT COALESCE(MAX(position), -1) AS p, COUNT(*) AS n FROM prompts").fetchone()
            conn.execute(
                "INSERT INTO prompts (position, text, created_at) VALUES (?, ?, ?)",
                (int(row["p"]) + 1, text, time.time()),
            )
            conn.commit()
            return int(row["n"]) + 1
        finally:
            conn.close()

    def consume_first(self) -> str | None:
        """Remove and return the first prompt, or None when the list is empty."""
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT id, text FROM prompts ORDER BY position ASC, id ASC LIMIT 1").fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM prompts WHERE id = ?", (int(row["id"]),))
            conn.commit()
            return str(row["text"])
        finally:
            conn.close()

    def clear_prompts(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM prompts")
            conn.commit()
        finally:
            conn.close()
        logger.info("Prompt list cleared")

    # ---- schedule config ----

    def get_schedule(self) -> dict[str, Any]:
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT key, value FROM schedule").fetchall()
        finally:
            conn.close()

        out: dict[str, Any] = {}
        for r in rows:
            try:
                out[str(r["key"])] = json.loads(r["value"])
            except ValueError:
                logger.warning("Bad schedule value for %s; ignored", r["key"])
        return out

    def update_schedule(self, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Upsert known keys. Unknown keys raise KeyError. Returns the full config."""
        unknown = set(changes) - SCHEDULE_KEYS
        if unknown:
            raise KeyError(f"unknown schedule key(s): {', '.join(sorted(unknown))}")

        conn = self._get_conn()
        try:
            conn.executemany(
                "INSERT INTO schedule (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                [(k, json.dumps(v)) for k, v in changes.items()],
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Schedule updated: %s", ", ".join(sorted(changes)))
        return self.get_schedule()

    # ---- runtime key/value ----

    def get_value(self, key: str, default: Any = None) -> Any:
        """JSON value stored under key by the service itself (weekly stats and such)."""
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError:
            logger.warning("Bad stored value for %s; using default", key)
            return default

    def set_value(self, key: str, value: Any) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(value)),
            )
            conn.commit()
        finally:
            conn.close()

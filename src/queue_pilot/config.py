# src/queue_pilot/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time.
- Values here only seed the schedule config on first run; the task store owns it afterwards.
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "QPILOT"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_choice(name: str, default: str, choices: set[str]) -> str:
    raw = _env(name, default).strip().lower()
    return raw if raw in choices else default


def _default_instance_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


DEFAULT_VERIFICATION_TEXT = (
    "Make sure that the previous task was implemented fully as per requirements, "
    "implement all gaps, fix all bugs and test everything."
)


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    data_dir: Path

    # ---- Master switch ----
    enabled: bool

    # ---- CDP ----
    cdp_host: str
    cdp_port: int
    settings_surface_title: str
    payload_path: Path
    workspace_name: str
    ide: str
    discovery_timeout_s: float
    eval_timeout_s: float
    inject_timeout_s: float
    send_timeout_s: float
    refresh_interval_s: float
    poll_interval_ms: int
    banned_commands: tuple[str, ...]

    # ---- Scheduler (seed values for the schedule config) ----
    mode: str
    schedule_value: str
    schedule_prompt: str
    completion_policy: str
    silence_timeout_s: float
    min_dwell_s: float
    verification_enabled: bool
    verification_text: str
    quota_resume_enabled: bool
    auto_continue_enabled: bool
    continue_prompt: str

    # ---- Scheduler timing ----
    activation_grace_s: float
    start_cooldown_s: float
    resync_throttle_s: float
    silence_check_interval_s: float
    schedule_check_interval_s: float
    stats_interval_s: float

    # ---- Quota ----
    quota_enabled: bool
    quota_poll_interval_s: float
    quota_port: int
    quota_csrf_token: str
    quota_timeout_s: float

    # ---- Instance coordination ----
    instance_id: str
    lock_path: Path
    heartbeat_interval_s: float
    stale_after_s: float

    # ---- Control surface ----
    console_enabled: bool
    control_server_enabled: bool
    control_host: str
    control_port: int

    # ---- Local data ----
    store_path: Path

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "queue-pilot") or "queue-pilot"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/queue_pilot"))

        banned_raw = _env(_k("BANNED_COMMANDS"), "")
        banned = tuple(p.strip() for p in banned_raw.split(",") if p.strip())

        heartbeat = max(0.5, _env_float(_k("HEARTBEAT_INTERVAL_SECONDS"), 5.0))
        # Three missed heartbeats by default.
        stale_after = _env_float(_k("STALE_AFTER_SECONDS"), heartbeat * 3)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            enabled=_env_bool(_k("ENABLED"), True),
            cdp_host=_env(_k("CDP_HOST"), "127.0.0.1"),
            cdp_port=_env_int(_k("CDP_PORT"), 9004),
            settings_surface_title=_env(_k("SETTINGS_SURFACE_TITLE"), "Multi Purpose Agent Settings"),
            payload_path=_env_path(_k("PAYLOAD_PATH"), data_dir / "full_cdp_script.js"),
            workspace_name=_env(_k("WORKSPACE_NAME"), "").strip(),
            ide=_env(_k("IDE"), "antigravity"),
            discovery_timeout_s=_env_float(_k("DISCOVERY_TIMEOUT_SECONDS"), 0.5),
            eval_timeout_s=_env_float(_k("EVAL_TIMEOUT_SECONDS"), 2.0),
            inject_timeout_s=_env_float(_k("INJECT_TIMEOUT_SECONDS"), 15.0),
            send_timeout_s=_env_float(_k("SEND_TIMEOUT_SECONDS"), 15.0),
            refresh_interval_s=_env_float(_k("REFRESH_INTERVAL_SECONDS"), 5.0),
            poll_interval_ms=_env_int(_k("POLL_INTERVAL_MS"), 1000),
            banned_commands=banned,
            mode=_env_choice(_k("MODE"), "queue", {"interval", "daily", "queue"}),
            schedule_value=_env(_k("SCHEDULE_VALUE"), "30"),
            schedule_prompt=_env(_k("SCHEDULE_PROMPT"), "Status report please"),
            completion_policy=_env_choice(_k("COMPLETION_POLICY"), "consume", {"consume", "loop"}),
            silence_timeout_s=_env_float(_k("SILENCE_TIMEOUT_SECONDS"), 30.0),
            min_dwell_s=_env_float(_k("MIN_DWELL_SECONDS"), 10.0),
            verification_enabled=_env_bool(_k("VERIFICATION_ENABLED"), False),
            verification_text=_env(_k("VERIFICATION_TEXT"), DEFAULT_VERIFICATION_TEXT),
            quota_resume_enabled=_env_bool(_k("QUOTA_RESUME_ENABLED"), True),
            auto_continue_enabled=_env_bool(_k("AUTO_CONTINUE_ENABLED"), False),
            continue_prompt=_env(_k("CONTINUE_PROMPT"), "Continue"),
            activation_grace_s=_env_float(_k("ACTIVATION_GRACE_SECONDS"), 5.0),
            start_cooldown_s=_env_float(_k("START_COOLDOWN_SECONDS"), 2.0),
            resync_throttle_s=_env_float(_k("RESYNC_THROTTLE_SECONDS"), 2.0),
            silence_check_interval_s=_env_float(_k("SILENCE_CHECK_INTERVAL_SECONDS"), 5.0),
            schedule_check_interval_s=_env_float(_k("SCHEDULE_CHECK_INTERVAL_SECONDS"), 60.0),
            stats_interval_s=_env_float(_k("STATS_INTERVAL_SECONDS"), 30.0),
            quota_enabled=_env_bool(_k("QUOTA_ENABLED"), False),
            quota_poll_interval_s=_env_float(_k("QUOTA_POLL_INTERVAL_SECONDS"), 60.0),
            quota_port=_env_int(_k("QUOTA_PORT"), 0),
            quota_csrf_token=_env(_k("QUOTA_CSRF_TOKEN"), ""),
            quota_timeout_s=_env_float(_k("QUOTA_TIMEOUT_SECONDS"), 5.0),
            instance_id=_env(_k("INSTANCE_ID"), "") or _default_instance_id(),
            lock_path=_env_path(_k("LOCK_PATH"), data_dir / "instance_lock.json"),
            heartbeat_interval_s=heartbeat,
            stale_after_s=stale_after,
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            control_server_enabled=_env_bool(_k("CONTROL_SERVER_ENABLED"), False),
            control_host=_env(_k("CONTROL_HOST"), "127.0.0.1"),
            control_port=_env_int(_k("CONTROL_PORT"), 54321),
            store_path=_env_path(_k("STORE_PATH"), data_dir / "queue.sqlite3"),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS

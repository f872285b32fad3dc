# src/taskdeck/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time: the service URL and API key are only
  checked when the remote adapters are built.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "TASKDECK"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_local_dotenv() -> None:
    """Load .env from the working directory (real env vars win)."""
    load_dotenv(override=False)


_load_local_dotenv()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


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


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Hosted service ----
    service_url: str
    api_key: Optional[str]
    site_url: str
    http_timeout_seconds: float

    # ---- Routing ----
    login_path: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    session_path: Path

    # ---- Session refresh ----
    refresh_margin_seconds: float
    auto_refresh_interval_seconds: float

    # ---- Realtime ----
    realtime_max_retries: int
    realtime_retry_base_seconds: float
    realtime_retry_max_seconds: float
    realtime_heartbeat_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _first_env(_k("APP_NAME"), default="taskdeck") or "taskdeck"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        # Accept the hosted service's conventional names as a fallback.
        service_url = (
            _first_env(_k("SERVICE_URL"), "SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL", default="") or ""
        ).strip().rstrip("/")
        api_key = _first_env(_k("API_KEY"), "SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY", default=None)
        site_url = _env(_k("SITE_URL"), "http://localhost:3000").strip().rstrip("/")
        http_timeout_seconds = _env_float(_k("HTTP_TIMEOUT_SECONDS"), 15.0)

        login_path = _env(_k("LOGIN_PATH"), "/login")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskdeck"))
        session_path = _env_path(_k("SESSION_PATH"), data_dir / "session.json")

        refresh_margin_seconds = _env_float(_k("REFRESH_MARGIN_SECONDS"), 90.0)
        auto_refresh_interval_seconds = _env_float(_k("AUTO_REFRESH_INTERVAL_SECONDS"), 30.0)

        realtime_max_retries = _env_int(_k("REALTIME_MAX_RETRIES"), 5)
        realtime_retry_base_seconds = _env_float(_k("REALTIME_RETRY_BASE_SECONDS"), 1.0)
        realtime_retry_max_seconds = _env_float(_k("REALTIME_RETRY_MAX_SECONDS"), 30.0)
        realtime_heartbeat_seconds = _env_float(_k("REALTIME_HEARTBEAT_SECONDS"), 25.0)

        return Settings(
            app_name=app_name,
            log_level=log_level,
            service_url=service_url,
            api_key=api_key,
            site_url=site_url,
            http_timeout_seconds=http_timeout_seconds,
            login_path=login_path,
            data_dir=data_dir,
            session_path=session_path,
            refresh_margin_seconds=refresh_margin_seconds,
            auto_refresh_interval_seconds=auto_refresh_interval_seconds,
            realtime_max_retries=realtime_max_retries,
            realtime_retry_base_seconds=realtime_retry_base_seconds,
            realtime_retry_max_seconds=realtime_retry_max_seconds,
            realtime_heartbeat_seconds=realtime_heartbeat_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS

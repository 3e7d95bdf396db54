"""Settings loaded from environment variables (+ .env).

One frozen Settings object per process. Nothing here needs secrets at
import time; an API token is optional.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

ENV_PREFIX = "TASKFLOW"

PREFERENCE_BACKENDS = ("file", "redis", "memory")


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


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
    # ---- API ----
    api_base_url: str
    api_token: str | None
    api_timeout: float

    # ---- Preferences ----
    preference_backend: str
    preference_path: Path
    preference_namespace: str
    redis_url: str

    # ---- Alerts ----
    alert_sound: Path

    # ---- Logging ----
    log_level: str
    log_dir: Path | None
    debug_http: bool

    @staticmethod
    def from_env() -> Settings:
        data_dir = _env_path(_k("DATA_DIR"), Path("~/.local/share/taskflow").expanduser())

        backend = _env(_k("PREFERENCE_BACKEND"), "file").strip().lower()
        if backend not in PREFERENCE_BACKENDS:
            backend = "file"

        log_dir_raw = _env(_k("LOG_DIR"), "").strip()

        return Settings(
            api_base_url=_env(_k("API_URL"), "http://localhost:8000/api"),
            api_token=_env(_k("API_TOKEN"), "").strip() or None,
            api_timeout=_env_float(_k("API_TIMEOUT"), 30.0),
            preference_backend=backend,
            preference_path=_env_path(
                _k("PREFERENCE_PATH"), data_dir / "preferences.json"
            ),
            preference_namespace=_env(_k("PREFERENCE_NAMESPACE"), "taskflow"),
            redis_url=_env(_k("REDIS_URL"), "redis://localhost:6379/0"),
            alert_sound=_env_path(_k("ALERT_SOUND"), Path("sounds/notify.wav")),
            log_level=_env(_k("LOG_LEVEL"), "INFO").upper(),
            log_dir=Path(log_dir_raw).expanduser() if log_dir_raw else None,
            debug_http=_env_bool(_k("DEBUG_HTTP"), False),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv(find_dotenv(usecwd=True), override=False)
    return Settings.from_env()

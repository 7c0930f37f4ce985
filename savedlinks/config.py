from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return default if v is None else v


def _default_data_dir() -> str:
    return str(Path.home() / ".savedlinks")


@dataclass
class Settings:
    # Local state
    data_dir: str = field(default_factory=_default_data_dir)
    db_filename: str = "savedlinks.sqlite"
    app_name: str = "SavedLinks"

    # Remote store: none | sqlite | supabase
    remote_backend: str = "none"
    remote_sqlite_path: str = ""
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_access_token: str = ""
    user_id: str = ""  # empty => signed out
    http_timeout_s: float = 20.0
    upload_batch_size: int = 200

    # Sync cadence
    sync_interval_hours: int = 24

    # Logging / UX
    log_level: str = "INFO"
    log_file: str = ""
    no_color: bool = False

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir).expanduser() / self.db_filename

    @staticmethod
    def from_env() -> "Settings":
        s = Settings()
        s.data_dir = _env_str("SAVEDLINKS_DATA_DIR", s.data_dir)
        s.db_filename = _env_str("SAVEDLINKS_DB_FILENAME", s.db_filename)
        s.app_name = _env_str("SAVEDLINKS_APP_NAME", s.app_name)

        s.remote_backend = _env_str("SAVEDLINKS_REMOTE_BACKEND", s.remote_backend)
        s.remote_sqlite_path = _env_str("SAVEDLINKS_REMOTE_SQLITE_PATH", s.remote_sqlite_path)
        s.supabase_url = _env_str("SAVEDLINKS_SUPABASE_URL", s.supabase_url)
        s.supabase_anon_key = _env_str("SAVEDLINKS_SUPABASE_ANON_KEY", s.supabase_anon_key)
        s.supabase_access_token = _env_str("SAVEDLINKS_SUPABASE_ACCESS_TOKEN", s.supabase_access_token)
        s.user_id = _env_str("SAVEDLINKS_USER_ID", s.user_id)
        s.http_timeout_s = _env_float("SAVEDLINKS_HTTP_TIMEOUT_S", s.http_timeout_s)
        s.upload_batch_size = _env_int("SAVEDLINKS_UPLOAD_BATCH_SIZE", s.upload_batch_size)

        s.sync_interval_hours = _env_int("SAVEDLINKS_SYNC_INTERVAL_HOURS", s.sync_interval_hours)

        s.log_level = _env_str("SAVEDLINKS_LOG_LEVEL", s.log_level)
        s.log_file = _env_str("SAVEDLINKS_LOG_FILE", s.log_file)
        s.no_color = _env_bool("SAVEDLINKS_NO_COLOR", s.no_color)
        return s

    @staticmethod
    def from_file(path: Path) -> "Settings":
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        s = Settings.from_env()
        known = {f.name for f in fields(Settings)}
        for k, v in data.items():
            if k in known:
                setattr(s, k, v)
        return s


def load_settings(config_path: Optional[str]) -> Settings:
    if config_path:
        return Settings.from_file(Path(config_path))
    return Settings.from_env()

"""Application configuration — loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH", str(_PROJECT_ROOT / "data" / "field_report.db"))
    )

    # Remote store (settings.json overrides .env)
    SUPABASE_URL: str = _runtime.get(
        "supabase_url",
        os.getenv("SUPABASE_URL", ""),
    )
    SUPABASE_ANON_KEY: str = _runtime.get(
        "supabase_anon_key",
        os.getenv("SUPABASE_ANON_KEY", ""),
    )
    REMOTE_TIMEOUT: float = float(_runtime.get(
        "remote_timeout",
        os.getenv("REMOTE_TIMEOUT", "30"),
    ))

    # AI refinement webhook
    REFINE_WEBHOOK_URL: str = _runtime.get(
        "refine_webhook_url",
        os.getenv("REFINE_WEBHOOK_URL", ""),
    )
    REFINE_TIMEOUT: float = float(_runtime.get(
        "refine_timeout",
        os.getenv("REFINE_TIMEOUT", "30"),
    ))

    # Edit locks
    LOCK_TIMEOUT_MINUTES: int = int(_runtime.get(
        "lock_timeout_minutes",
        os.getenv("LOCK_TIMEOUT_MINUTES", "30"),
    ))
    HEARTBEAT_INTERVAL_SECONDS: float = float(_runtime.get(
        "heartbeat_interval_seconds",
        os.getenv("HEARTBEAT_INTERVAL_SECONDS", "120"),
    ))

    # Sync queue
    MAX_SYNC_RETRIES: int = int(_runtime.get(
        "max_sync_retries",
        os.getenv("MAX_SYNC_RETRIES", "3"),
    ))
    ENTRY_BACKUP_DEBOUNCE_MS: int = int(_runtime.get(
        "entry_backup_debounce_ms",
        os.getenv("ENTRY_BACKUP_DEBOUNCE_MS", "2000"),
    ))
    # Shipped disabled: cloud sync runs from explicit user actions only
    AUTO_SYNC_ENABLED: bool = _runtime.get(
        "auto_sync_enabled",
        _env_bool("AUTO_SYNC_ENABLED"),
    )

    # Report editing
    AUTOSAVE_DEBOUNCE_MS: int = int(_runtime.get(
        "autosave_debounce_ms",
        os.getenv("AUTOSAVE_DEBOUNCE_MS", "500"),
    ))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def update_remote_settings(cls, url: str, anon_key: str,
                               timeout: float):
        """Update remote store settings at runtime and persist to disk."""
        cls.SUPABASE_URL = url
        cls.SUPABASE_ANON_KEY = anon_key
        cls.REMOTE_TIMEOUT = timeout

        settings = _load_settings()
        settings["supabase_url"] = url
        settings["supabase_anon_key"] = anon_key
        settings["remote_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_refine_settings(cls, webhook_url: str, timeout: float):
        """Update the refinement webhook and persist."""
        cls.REFINE_WEBHOOK_URL = webhook_url
        cls.REFINE_TIMEOUT = timeout

        settings = _load_settings()
        settings["refine_webhook_url"] = webhook_url
        settings["refine_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_sync_settings(cls, auto_sync: bool, max_retries: int,
                             entry_debounce_ms: int):
        """Update sync queue behaviour and persist."""
        cls.AUTO_SYNC_ENABLED = auto_sync
        cls.MAX_SYNC_RETRIES = max_retries
        cls.ENTRY_BACKUP_DEBOUNCE_MS = entry_debounce_ms

        settings = _load_settings()
        settings["auto_sync_enabled"] = auto_sync
        settings["max_sync_retries"] = max_retries
        settings["entry_backup_debounce_ms"] = entry_debounce_ms
        _save_settings(settings)

    @classmethod
    def update_lock_settings(cls, timeout_minutes: int,
                             heartbeat_seconds: float):
        """Update edit-lock staleness window and heartbeat, then persist."""
        cls.LOCK_TIMEOUT_MINUTES = timeout_minutes
        cls.HEARTBEAT_INTERVAL_SECONDS = heartbeat_seconds

        settings = _load_settings()
        settings["lock_timeout_minutes"] = timeout_minutes
        settings["heartbeat_interval_seconds"] = heartbeat_seconds
        _save_settings(settings)

    @classmethod
    def is_remote_configured(cls) -> bool:
        """True when a remote store URL and key are both set."""
        return bool(cls.SUPABASE_URL and cls.SUPABASE_ANON_KEY)

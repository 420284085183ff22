"""Tests for Config class — settings persistence and retrieval."""

import json
import pytest

from field_report.config import Config, _load_settings, _save_settings


@pytest.fixture
def settings_file(tmp_path):
    """Temporary settings file for isolation."""
    return tmp_path / "settings.json"


@pytest.fixture(autouse=True)
def isolate_config(settings_file, monkeypatch):
    """Redirect settings I/O to temp file so tests don't touch real config."""
    import field_report.config as config_mod
    monkeypatch.setattr(config_mod, "_SETTINGS_FILE", settings_file)

    # Snapshot all mutable Config attributes before each test
    saved = {
        "SUPABASE_URL": Config.SUPABASE_URL,
        "SUPABASE_ANON_KEY": Config.SUPABASE_ANON_KEY,
        "REMOTE_TIMEOUT": Config.REMOTE_TIMEOUT,
        "REFINE_WEBHOOK_URL": Config.REFINE_WEBHOOK_URL,
        "REFINE_TIMEOUT": Config.REFINE_TIMEOUT,
        "LOCK_TIMEOUT_MINUTES": Config.LOCK_TIMEOUT_MINUTES,
        "HEARTBEAT_INTERVAL_SECONDS": Config.HEARTBEAT_INTERVAL_SECONDS,
        "MAX_SYNC_RETRIES": Config.MAX_SYNC_RETRIES,
        "ENTRY_BACKUP_DEBOUNCE_MS": Config.ENTRY_BACKUP_DEBOUNCE_MS,
        "AUTO_SYNC_ENABLED": Config.AUTO_SYNC_ENABLED,
    }
    yield
    # Restore all Config attributes after each test
    for attr, val in saved.items():
        setattr(Config, attr, val)


class TestConfigDefaults:
    """Verify default configuration values."""

    def test_lock_timeout_is_positive_int(self):
        assert isinstance(Config.LOCK_TIMEOUT_MINUTES, int)
        assert Config.LOCK_TIMEOUT_MINUTES > 0

    def test_heartbeat_shorter_than_lock_timeout(self):
        assert Config.HEARTBEAT_INTERVAL_SECONDS < Config.LOCK_TIMEOUT_MINUTES * 60

    def test_max_retries_positive(self):
        assert Config.MAX_SYNC_RETRIES >= 1

    def test_debounce_values_are_ints(self):
        assert isinstance(Config.ENTRY_BACKUP_DEBOUNCE_MS, int)
        assert isinstance(Config.AUTOSAVE_DEBOUNCE_MS, int)

    def test_auto_sync_is_bool(self):
        assert isinstance(Config.AUTO_SYNC_ENABLED, bool)

    def test_database_path_under_project(self):
        assert Config.DATABASE_PATH.name.endswith(".db")


class TestSettingsFile:
    def test_load_missing_file_is_empty(self):
        assert _load_settings() == {}

    def test_load_corrupt_file_is_empty(self, settings_file):
        settings_file.write_text("{not json", encoding="utf-8")
        assert _load_settings() == {}

    def test_save_then_load(self, settings_file):
        _save_settings({"a": 1})
        assert json.loads(settings_file.read_text(encoding="utf-8")) == {"a": 1}
        assert _load_settings() == {"a": 1}

    def test_save_creates_parent_dir(self, tmp_path, monkeypatch):
        import field_report.config as config_mod
        nested = tmp_path / "deep" / "settings.json"
        monkeypatch.setattr(config_mod, "_SETTINGS_FILE", nested)
        _save_settings({"x": "y"})
        assert nested.exists()


class TestRemoteSettings:
    def test_update_remote_settings(self, settings_file):
        Config.update_remote_settings("https://db.example.com", "anon", 12.0)
        assert Config.SUPABASE_URL == "https://db.example.com"
        assert Config.SUPABASE_ANON_KEY == "anon"
        assert Config.REMOTE_TIMEOUT == 12.0
        data = json.loads(settings_file.read_text(encoding="utf-8"))
        assert data["supabase_url"] == "https://db.example.com"
        assert data["remote_timeout"] == 12.0

    def test_is_remote_configured(self):
        Config.SUPABASE_URL = ""
        Config.SUPABASE_ANON_KEY = "key"
        assert Config.is_remote_configured() is False
        Config.SUPABASE_URL = "https://db.example.com"
        assert Config.is_remote_configured() is True

    def test_update_preserves_other_keys(self, settings_file):
        _save_settings({"unrelated": True})
        Config.update_remote_settings("https://x", "k", 5.0)
        data = json.loads(settings_file.read_text(encoding="utf-8"))
        assert data["unrelated"] is True


class TestRefineSettings:
    def test_update_refine_settings(self, settings_file):
        Config.update_refine_settings("https://hooks.example.com/refine", 45.0)
        assert Config.REFINE_WEBHOOK_URL == "https://hooks.example.com/refine"
        assert Config.REFINE_TIMEOUT == 45.0
        data = json.loads(settings_file.read_text(encoding="utf-8"))
        assert data["refine_timeout"] == 45.0


class TestSyncSettings:
    def test_update_sync_settings(self, settings_file):
        Config.update_sync_settings(True, 5, 1500)
        assert Config.AUTO_SYNC_ENABLED is True
        assert Config.MAX_SYNC_RETRIES == 5
        assert Config.ENTRY_BACKUP_DEBOUNCE_MS == 1500
        data = json.loads(settings_file.read_text(encoding="utf-8"))
        assert data["auto_sync_enabled"] is True
        assert data["max_sync_retries"] == 5


class TestLockSettings:
    def test_update_lock_settings(self, settings_file):
        Config.update_lock_settings(15, 60.0)
        assert Config.LOCK_TIMEOUT_MINUTES == 15
        assert Config.HEARTBEAT_INTERVAL_SECONDS == 60.0
        data = json.loads(settings_file.read_text(encoding="utf-8"))
        assert data["lock_timeout_minutes"] == 15
        assert data["heartbeat_interval_seconds"] == 60.0

import pytest

from utils.config import ConfigManager, LeetCodeConfig
from utils.database import TrackerDatabaseManager, to_iso


@pytest.fixture
def write_config(tmp_path):
    def _write(text: str) -> ConfigManager:
        path = tmp_path / "config.toml"
        path.write_text(text, encoding="utf-8")
        return ConfigManager(str(path))

    return _write


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigManager(str(tmp_path / "missing.toml"))


def test_defaults(write_config, monkeypatch):
    for name in ("APP_ENV", "LEETCODE_SESSION", "LEETCODE_CSRF_TOKEN", "LEETCODE_CSRFTOKEN"):
        monkeypatch.delenv(name, raising=False)
    config = write_config("")

    assert config.environment == "development"
    assert not config.is_production
    assert config.get_leetcode_config() == LeetCodeConfig()
    sync = config.get_sync_config()
    assert (sync.recent_limit, sync.submission_delay, sync.user_delay, sync.stale_after_hours) == (20, 2.0, 5.0, 23)
    scheduler = config.get_scheduler_config()
    assert (scheduler.sync_time, scheduler.cleanup_time, scheduler.error_retention_days) == ("02:00", "03:00", 30)


def test_database_path_relative_to_config(write_config, tmp_path):
    config = write_config('[database]\npath = "data/x.db"\n')

    assert config.database_path == str(tmp_path / "data" / "x.db")


def test_environment_variables_override(write_config, monkeypatch):
    monkeypatch.setenv("APP_ENV", "Production")
    monkeypatch.setenv("LEETCODE_SESSION", " env-session ")
    monkeypatch.delenv("LEETCODE_CSRF_TOKEN", raising=False)
    monkeypatch.setenv("LEETCODE_CSRFTOKEN", "env-csrf")
    config = write_config('[app]\nenvironment = "development"\n')

    assert config.is_production
    leetcode = config.get_leetcode_config()
    assert leetcode.session == "env-session"
    assert leetcode.csrf_token == "env-csrf"


def test_invalid_proxy_rejected(write_config):
    config = write_config('[crawler]\nproxy = "ftp://host:21"\n')

    with pytest.raises(ValueError):
        config.get_crawler_config("leetcode")


def test_per_crawler_proxy_wins(write_config):
    config = write_config(
        '[crawler]\nproxy = "http://global:1"\n[crawler.leetcode]\nhttps_proxy = "http://lc:2"\n'
    )

    assert config.get_crawler_config("leetcode").resolve_proxy("https") == "http://lc:2"


def test_schema_enforces_one_row_per_submission_and_account(tmp_path):
    db = TrackerDatabaseManager(str(tmp_path / "t.db"))
    try:
        insert = (
            "INSERT INTO solutions (submission_id, auth_user_id, normalized_username, problem_name, "
            "timestamp, submitted_at, created_at, updated_at) VALUES (?, ?, 'a', 'p', 1, 't', 't', 't') "
            "ON CONFLICT (submission_id, auth_user_id) DO NOTHING"
        )
        assert db.execute(insert, ("1", "acct-1"), commit=True) == 1
        assert db.execute(insert, ("1", "acct-1"), commit=True) == 0
        assert db.execute(insert, ("1", "acct-2"), commit=True) == 1
    finally:
        db.close()


def test_reconnects_after_close(tmp_path):
    db = TrackerDatabaseManager(str(tmp_path / "t.db"))
    db.close()

    db.ensure_connection()

    assert db.is_connected()
    db.close()


def test_iso_timestamps_sort_chronologically():
    from datetime import datetime, timezone

    earlier = to_iso(datetime(2024, 1, 2, 3, 4, 5, 678, tzinfo=timezone.utc))
    later = to_iso(datetime(2024, 1, 2, 3, 4, 6, tzinfo=timezone.utc))

    assert earlier == "2024-01-02T03:04:05+00:00"
    assert earlier < later


def test_log_level_from_logging_section(write_config):
    assert write_config("").log_level == "INFO"
    assert write_config('[logging]\nlevel = "DEBUG"\n').log_level == "DEBUG"

"""
Tests for settings loading (config.ini + environment).
"""

import os
from pathlib import Path

import pytest

from exceptions import ConfigurationError
from settings import Settings, load_settings

ENV_VARS = ("SUPABASE_URL", "SUPABASE_KEY", "ORDER_API_URL", "ORDER_API_KEY", "SCANNER_DEVICE_ID",
            "PARCEL_SCANNER_CONFIG")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Relative config.ini lookups stay inside tmp_path
    monkeypatch.chdir(tmp_path)


def write_config(tmp_path, text):
    path = tmp_path / "config.ini"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_config(tmp_path):
    settings = load_settings(str(tmp_path / "missing.ini"), env_file=str(tmp_path / "none.env"))

    assert settings.batch_size == 5
    assert settings.max_retries == 3
    assert settings.sync_interval_seconds == 30.0
    assert settings.stale_after_seconds == 24 * 3600
    assert settings.block_unshippable is True
    assert settings.supabase_url is None


def test_values_from_config(tmp_path):
    path = write_config(tmp_path, """
[Supabase]
Url = https://abc.supabase.co
Key = anon-key
CodesTable = scans

[Scanner]
DeviceId = DOCK-9
BlockUnshippable = false
RawScanMaxLength = 200

[Sync]
BatchSize = 10
StaleHours = 2

[Storage]
LocalDbPath = ~/scanner/state.db
""")

    settings = load_settings(str(path), env_file=str(tmp_path / "none.env"))

    assert settings.supabase_url == "https://abc.supabase.co"
    assert settings.codes_table == "scans"
    assert settings.device_id == "DOCK-9"
    assert settings.block_unshippable is False
    assert settings.raw_scan_max_length == 200
    assert settings.batch_size == 10
    assert settings.stale_after_seconds == 7200
    assert settings.local_db_path == Path.home() / "scanner" / "state.db"


def test_environment_overrides_config(tmp_path, monkeypatch):
    path = write_config(tmp_path, "[Supabase]\nUrl = https://from-config\n")
    monkeypatch.setenv("SUPABASE_URL", "https://from-env")
    monkeypatch.setenv("SCANNER_DEVICE_ID", "ENV-DOCK")

    settings = load_settings(str(path), env_file=str(tmp_path / "none.env"))

    assert settings.supabase_url == "https://from-env"
    assert settings.device_id == "ENV-DOCK"


def test_dotenv_file_loaded(tmp_path):
    env_file = tmp_path / "station.env"
    env_file.write_text("SUPABASE_KEY=dotenv-key\n", encoding="utf-8")

    try:
        settings = load_settings(str(tmp_path / "missing.ini"), env_file=str(env_file))
        assert settings.supabase_key == "dotenv-key"
    finally:
        # load_dotenv writes straight into os.environ
        os.environ.pop("SUPABASE_KEY", None)


def test_invalid_batch_size_rejected(tmp_path):
    path = write_config(tmp_path, "[Sync]\nBatchSize = 0\n")

    with pytest.raises(ConfigurationError, match="BatchSize"):
        load_settings(str(path), env_file=str(tmp_path / "none.env"))


def test_unparseable_config_rejected(tmp_path):
    path = write_config(tmp_path, "this is not an ini file\n")

    with pytest.raises(ConfigurationError):
        load_settings(str(path), env_file=str(tmp_path / "none.env"))


def test_require_supabase():
    with pytest.raises(ConfigurationError, match="SUPABASE_KEY"):
        Settings(supabase_url="https://abc.supabase.co").require_supabase()

    Settings(supabase_url="https://abc.supabase.co", supabase_key="k").require_supabase()

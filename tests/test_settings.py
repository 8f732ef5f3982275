import logging
import sqlite3

from cryptography.fernet import Fernet

from assetflow.core.settings import PipelineConfig, SettingsStore
from assetflow.utils.logging_config import LoggerCategory, LoggingManager


def test_config_round_trip(settings):
    settings.set_config("api_url", "https://files.example/api")

    assert settings.get_config("api_url") == "https://files.example/api"
    assert settings.get_config("unknown", "fallback") == "fallback"


def test_typed_readers_fall_back_on_garbage(settings):
    settings.set_config("upload_batch_size", "lots")
    settings.set_config("flag", "yes")

    assert settings.get_int("upload_batch_size", 10) == 10
    assert settings.get_bool("flag", False) is True
    assert settings.get_bool("missing", True) is True


def test_pipeline_config_defaults(settings):
    config = PipelineConfig.from_settings(settings)

    assert config == PipelineConfig()
    assert config.upload_batch_size == 10
    assert config.compression_threshold_bytes == 300 * 1024
    assert config.max_concurrent_loads == 2


def test_pipeline_config_reads_overrides(settings, tmp_path):
    settings.set_config("max_concurrent_loads", 4)
    settings.set_config("upload_batch_size", 0)
    settings.set_config("compression_target_bytes", 123456)
    settings.set_config("cache_dir", str(tmp_path))

    config = PipelineConfig.from_settings(settings)

    assert config.max_concurrent_loads == 4
    assert config.upload_batch_size == 10
    assert config.compression_target_bytes == 123456
    assert config.cache_dir == tmp_path


def test_api_token_is_stored_encrypted(tmp_path):
    db = tmp_path / "settings.db"
    key = Fernet.generate_key()
    store = SettingsStore(db, encryption_key=key).connect()
    store.set_api_token("t0ps3cret")
    store.close()

    conn = sqlite3.connect(db)
    raw = conn.execute("SELECT value, is_encrypted FROM config WHERE key = 'api_token'").fetchone()
    conn.close()
    assert raw[0] != "t0ps3cret"
    assert raw[1] == 1

    reopened = SettingsStore(db, encryption_key=key).connect()
    assert reopened.get_api_token() == "t0ps3cret"
    assert "api_token" not in reopened.get_all_config()
    reopened.close()

    wrong_key = SettingsStore(db, encryption_key=Fernet.generate_key()).connect()
    assert wrong_key.get_api_token() is None
    wrong_key.close()


def test_log_levels_persist(settings, tmp_path):
    manager = LoggingManager(log_dir=tmp_path, settings=settings)
    manager.set_category_level(LoggerCategory.UPLOAD, logging.DEBUG)

    reloaded = LoggingManager(log_dir=tmp_path, settings=settings)

    assert reloaded.get_category_level(LoggerCategory.UPLOAD) == logging.DEBUG
    assert logging.getLogger("assetflow.core.upload_manager").level == logging.DEBUG
    assert reloaded.get_category_level(LoggerCategory.CACHE) == logging.WARNING

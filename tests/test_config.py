import os
import sys
from unittest.mock import patch

import pytest

from image_describer.config import ConfigError, Settings, get_settings, reset_settings


def _settings(**env) -> Settings:
    base = {"ASTICA_KEY": "", "DB_CONNECTION_STRING": "", "BLOB_BACKEND": "gridfs", "PERSIST_COMMAND": ""}
    base.update(env)
    with patch.dict(os.environ, base, clear=False):
        return Settings()


def test_defaults():
    settings = _settings(ASTICA_KEY="k", DB_CONNECTION_STRING="mongodb://localhost:27017")

    settings.validate()
    assert settings.batch_wave_size == 20
    assert settings.vision_max_connections == 100
    assert settings.vision_model_version == "2.1_full"
    assert settings.vision_prompt_length == 95
    assert settings.persist_command[:3] == [sys.executable, "-m", "image_describer.persist"]
    assert settings.persist_command[-1] == str(settings.db_path)


def test_missing_key_and_connection_string():
    with pytest.raises(ConfigError, match="ASTICA_KEY.*DB_CONNECTION_STRING"):
        _settings().validate()


def test_local_backend_needs_no_connection_string():
    _settings(ASTICA_KEY="k", BLOB_BACKEND="local").validate()


def test_unknown_backend():
    with pytest.raises(ConfigError, match="BLOB_BACKEND"):
        _settings(ASTICA_KEY="k", BLOB_BACKEND="s3").validate()


def test_bad_wave_size():
    with pytest.raises(ConfigError):
        _settings(ASTICA_KEY="k", BLOB_BACKEND="local", BATCH_WAVE_SIZE="0").validate()


def test_bad_max_connections():
    with pytest.raises(ConfigError, match="VISION_MAX_CONNECTIONS"):
        _settings(ASTICA_KEY="k", BLOB_BACKEND="local", VISION_MAX_CONNECTIONS="0").validate()


def test_custom_persist_command():
    settings = _settings(PERSIST_COMMAND="./db_upload.sh --quiet")
    assert settings.persist_command == ["./db_upload.sh", "--quiet"]


def test_get_settings_is_cached():
    reset_settings()
    try:
        assert get_settings() is get_settings()
    finally:
        reset_settings()

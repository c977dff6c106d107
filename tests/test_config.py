from __future__ import annotations

import json

import pytest

from stylemix.config import DEFAULT_SETTINGS, StyleMixConfig


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(DEFAULT_SETTINGS) + [
        "STYLEMIX_SECRET_KEY",
        "LOG_LEVEL",
        "STYLEMIX_HOST",
        "STYLEMIX_PORT",
        "STYLEMIX_SESSION_IDLE_TIMEOUT",
        "STYLEMIX_MAX_SESSIONS",
    ]:
        monkeypatch.delenv(key, raising=False)


def test_load_creates_default_settings_file(tmp_path):
    config = StyleMixConfig.load(app_root=tmp_path)

    assert config.settings_file.exists()
    assert json.loads(config.settings_file.read_text(encoding="utf-8"))["GEMINI_IMAGE_MODEL"] == "gemini-2.5-flash-image"
    assert config.gemini_api_key is None
    assert config.image_model == "gemini-2.5-flash-image"
    assert config.analysis_model == "gemini-2.5-pro"
    assert config.imagen_model == "imagen-4.0-generate-001"
    assert config.thinking_budget == 8192
    assert config.api_timeout == 90.0


def test_environment_fills_blank_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    config = StyleMixConfig.load(app_root=tmp_path)
    assert config.gemini_api_key == "env-key"
    assert config.log_level == "DEBUG"


def test_settings_file_wins_over_environment(tmp_path, monkeypatch):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "settings.json").write_text(
        json.dumps({"GEMINI_API_KEY": "file-key", "GEMINI_API_TIMEOUT": 30}), encoding="utf-8"
    )
    monkeypatch.setenv("GEMINI_API_KEY", "env-key")
    config = StyleMixConfig.load(app_root=tmp_path)
    assert config.gemini_api_key == "file-key"
    assert config.api_timeout == 30.0


def test_invalid_values_fall_back_to_defaults(tmp_path, monkeypatch):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "settings.json").write_text("{}", encoding="utf-8")
    monkeypatch.setenv("GEMINI_API_TIMEOUT", "soon")
    monkeypatch.setenv("STYLEMIX_PORT", "-1")
    monkeypatch.setenv("GEMINI_SAFETY_LEVEL", "block_everything")
    config = StyleMixConfig.load(app_root=tmp_path)
    assert config.api_timeout == 90.0
    assert config.port == 6055
    assert config.safety_level == "BLOCK_ONLY_HIGH"


def test_broken_settings_file_is_ignored(tmp_path):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "settings.json").write_text("{not json", encoding="utf-8")
    config = StyleMixConfig.load(app_root=tmp_path)
    assert config.image_model == "gemini-2.5-flash-image"


def test_session_limits(tmp_path, monkeypatch):
    monkeypatch.setenv("STYLEMIX_SESSION_IDLE_TIMEOUT", "120")
    monkeypatch.setenv("STYLEMIX_MAX_SESSIONS", "0")
    config = StyleMixConfig.load(app_root=tmp_path)
    assert config.session_idle_timeout == 120.0
    assert config.max_sessions == 500

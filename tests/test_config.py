"""
tests/test_config.py — YAML Configuration Loader
=================================================
"""

from __future__ import annotations

from pathlib import Path

import pytest

from auditorium.config import load_config
from auditorium.constants import MAX_CHAT_MESSAGE_LENGTH

EXAMPLE = Path(__file__).resolve().parent.parent / "config.yaml.example"


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_example_file_loads(self):
        cfg = load_config(EXAMPLE)
        assert cfg.app_name == "Auditorium"
        assert cfg.realtime_backend == "memory"
        assert cfg.reconnect_max_attempts == 10
        assert cfg.max_floating_reactions == 20

    def test_minimal_file_uses_defaults(self, tmp_path):
        cfg = load_config(_write(tmp_path, "app_name: Test\napi_port: 9000\n"))
        assert cfg.api_port == 9000
        assert cfg.realtime_backend == "memory"
        assert cfg.presence_timeout_seconds == 60.0
        assert cfg.max_chat_message_length == MAX_CHAT_MESSAGE_LENGTH

    def test_sections_override(self, tmp_path):
        cfg = load_config(_write(tmp_path, (
            "app_name: Test\n"
            "api_port: 9000\n"
            "realtime:\n"
            "  backend: postgres\n"
            "  reconnect_max_attempts: 3\n"
            "reactions:\n"
            "  max_floating: 5\n"
        )))
        assert cfg.realtime_backend == "postgres"
        assert cfg.reconnect_max_attempts == 3
        assert cfg.max_floating_reactions == 5

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path, "app_name: FromEnv\napi_port: 1\n")
        monkeypatch.setenv("AUDITORIUM_CONFIG", str(path))
        assert load_config().app_name == "FromEnv"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_required_key(self, tmp_path):
        with pytest.raises(KeyError):
            load_config(_write(tmp_path, "app_name: Test\n"))

    def test_unknown_backend(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown realtime backend"):
            load_config(_write(tmp_path, "app_name: T\napi_port: 1\nrealtime:\n  backend: redis\n"))

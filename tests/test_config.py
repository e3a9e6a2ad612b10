"""
Tests for Configuration
=======================

Tests for config.py - defaults, config file, and environment precedence.
"""

import json
import os

import pytest

from loopwarden.config import (
    DEFAULT_KNOWLEDGE_DIR,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_STORAGE_PATH,
    EscalationConfig,
    OverseerConfig,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("LOOPWARDEN_"):
            monkeypatch.delenv(name)


def write_config(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self, temp_dir):
        config = OverseerConfig.load(temp_dir / "missing.json", use_dotenv=False)
        assert config.storage_path == DEFAULT_STORAGE_PATH
        assert config.knowledge_dir == DEFAULT_KNOWLEDGE_DIR
        assert config.provider == "claude"
        assert config.max_iterations == DEFAULT_MAX_ITERATIONS
        assert config.auto_escalate is True
        assert config.escalation.enable_notifications is True
        assert config.escalation.tracker_url is None


class TestConfigFile:
    """Tests for loopwarden_config.json."""

    def test_file_values(self, temp_dir):
        path = write_config(temp_dir / "cfg.json", {
            "provider": "codex",
            "max_iterations": 25,
            "auto_escalate": False,
            "thresholds": {"stuck": {"same_error_count": 4}},
            "escalation": {"repo": "team/loops", "webhook_url": "https://hooks.example.com", "bogus": 1},
        })

        config = OverseerConfig.load(path, use_dotenv=False)

        assert config.provider == "codex"
        assert config.max_iterations == 25
        assert config.auto_escalate is False
        assert config.thresholds == {"stuck": {"same_error_count": 4}}
        assert config.escalation.repo == "team/loops"
        assert config.escalation.webhook_url == "https://hooks.example.com"

    def test_invalid_json_falls_back(self, temp_dir):
        path = temp_dir / "cfg.json"
        path.write_text("{oops", encoding="utf-8")
        config = OverseerConfig.load(path, use_dotenv=False)
        assert config.provider == "claude"

    def test_non_object_ignored(self, temp_dir):
        path = write_config(temp_dir / "cfg.json", ["not", "a", "dict"])
        assert OverseerConfig.load(path, use_dotenv=False).max_iterations == DEFAULT_MAX_ITERATIONS

    def test_round_trip(self):
        config = OverseerConfig(provider="codex", escalation=EscalationConfig(repo="a/b"))
        assert OverseerConfig.from_dict(config.to_dict()) == config


class TestEnvironment:
    """Tests for LOOPWARDEN_* overrides."""

    def test_env_beats_file(self, temp_dir, monkeypatch):
        path = write_config(temp_dir / "cfg.json", {"provider": "codex", "max_iterations": 25})
        monkeypatch.setenv("LOOPWARDEN_PROVIDER", "claude")
        monkeypatch.setenv("LOOPWARDEN_MAX_ITERATIONS", "7")
        monkeypatch.setenv("LOOPWARDEN_STORAGE_PATH", "/var/loops")

        config = OverseerConfig.load(path, use_dotenv=False)

        assert config.provider == "claude"
        assert config.max_iterations == 7
        assert config.storage_path == "/var/loops"

    def test_invalid_max_iterations_ignored(self, temp_dir, monkeypatch):
        monkeypatch.setenv("LOOPWARDEN_MAX_ITERATIONS", "lots")
        config = OverseerConfig.load(temp_dir / "missing.json", use_dotenv=False)
        assert config.max_iterations == DEFAULT_MAX_ITERATIONS

    @pytest.mark.parametrize("value,expected", [
        ("0", False), ("false", False), ("no", False),
        ("1", True), ("TRUE", True), ("on", True),
    ])
    def test_bool_parsing(self, temp_dir, monkeypatch, value, expected):
        monkeypatch.setenv("LOOPWARDEN_AUTO_ESCALATE", value)
        config = OverseerConfig.load(temp_dir / "missing.json", use_dotenv=False)
        assert config.auto_escalate is expected

    def test_escalation_env(self, temp_dir, monkeypatch):
        monkeypatch.setenv("LOOPWARDEN_NOTIFICATIONS", "false")
        monkeypatch.setenv("LOOPWARDEN_TRACKER_URL", "https://git.example.com/api/v1")
        monkeypatch.setenv("LOOPWARDEN_TRACKER_REPO", "team/loops")
        monkeypatch.setenv("LOOPWARDEN_TRACKER_TOKEN", "t0k")

        escalation = OverseerConfig.load(temp_dir / "missing.json", use_dotenv=False).escalation

        assert escalation.enable_notifications is False
        assert escalation.tracker_url == "https://git.example.com/api/v1"
        assert escalation.repo == "team/loops"
        assert escalation.token == "t0k"

    def test_dotenv_file(self, temp_dir, monkeypatch):
        (temp_dir / ".env").write_text("LOOPWARDEN_PROVIDER=codex\n", encoding="utf-8")
        monkeypatch.chdir(temp_dir)
        # Registers the variable so monkeypatch removes what load_dotenv sets
        monkeypatch.setenv("LOOPWARDEN_PROVIDER", "")
        monkeypatch.delenv("LOOPWARDEN_PROVIDER")

        config = OverseerConfig.load(temp_dir / "missing.json")

        assert config.provider == "codex"

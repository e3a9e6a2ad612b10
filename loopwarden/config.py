"""
Configuration Management
========================

Loads overseer configuration from environment variables and config files.

Precedence (highest first):
1. Environment variables (LOOPWARDEN_*), after loading a local .env file
2. Local config file (loopwarden_config.json)
3. Default values
"""

import json
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Optional

from dotenv import find_dotenv, load_dotenv

from loopwarden.output import print_warning

# Default configuration values
CONFIG_FILENAME = "loopwarden_config.json"
DEFAULT_STORAGE_PATH = ".loopwarden/overseer"
DEFAULT_KNOWLEDGE_DIR = ".loopwarden/knowledge"
DEFAULT_PROVIDER = "claude"
DEFAULT_MAX_ITERATIONS = 10
DEFAULT_TOKEN_PATH = "~/.config/gitea/token"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _read_config_file(config_path: Path) -> dict:
    """Read the JSON config file, warning (not failing) on bad content."""
    if not config_path.exists():
        return {}
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            print_warning(f"Ignoring {config_path}: expected a JSON object")
            return {}
        return data
    except (json.JSONDecodeError, OSError) as e:
        print_warning(f"Failed to load config file: {e}")
        return {}


@dataclass
class EscalationConfig:
    """Settings for the human escalation channels."""
    enable_notifications: bool = True

    # Issue tracker (Gitea-compatible REST API)
    tracker_url: Optional[str] = None       # e.g. https://git.example.com/api/v1
    repo: Optional[str] = None              # owner/repo
    token_path: str = DEFAULT_TOKEN_PATH
    token: Optional[str] = None             # takes precedence over token_path

    webhook_url: Optional[str] = None

    issue_timeout_seconds: float = 10.0
    webhook_timeout_seconds: float = 5.0
    notification_timeout_seconds: float = 5.0

    labels: list[str] = field(default_factory=lambda: ["loop-overseer", "automated"])

    @classmethod
    def from_dict(cls, data: dict) -> "EscalationConfig":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @classmethod
    def from_env(cls, base: Optional["EscalationConfig"] = None) -> "EscalationConfig":
        """Overlay LOOPWARDEN_* environment variables onto base settings."""
        cfg = base or cls()
        return cls(
            enable_notifications=_env_bool("LOOPWARDEN_NOTIFICATIONS", cfg.enable_notifications),
            tracker_url=os.environ.get("LOOPWARDEN_TRACKER_URL", cfg.tracker_url),
            repo=os.environ.get("LOOPWARDEN_TRACKER_REPO", cfg.repo),
            token_path=os.environ.get("LOOPWARDEN_TRACKER_TOKEN_PATH", cfg.token_path),
            token=os.environ.get("LOOPWARDEN_TRACKER_TOKEN", cfg.token),
            webhook_url=os.environ.get("LOOPWARDEN_WEBHOOK_URL", cfg.webhook_url),
            issue_timeout_seconds=cfg.issue_timeout_seconds,
            webhook_timeout_seconds=cfg.webhook_timeout_seconds,
            notification_timeout_seconds=cfg.notification_timeout_seconds,
            labels=list(cfg.labels),
        )


@dataclass
class OverseerConfig:
    """loopwarden configuration."""
    storage_path: str = DEFAULT_STORAGE_PATH
    knowledge_dir: str = DEFAULT_KNOWLEDGE_DIR
    provider: str = DEFAULT_PROVIDER
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    auto_escalate: bool = True
    escalation: EscalationConfig = field(default_factory=EscalationConfig)

    # Optional overrides merged into BehaviorDetector thresholds
    thresholds: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "OverseerConfig":
        escalation = EscalationConfig.from_dict(data.get("escalation", {}) or {})
        return cls(
            storage_path=data.get("storage_path", DEFAULT_STORAGE_PATH),
            knowledge_dir=data.get("knowledge_dir", DEFAULT_KNOWLEDGE_DIR),
            provider=data.get("provider", DEFAULT_PROVIDER),
            max_iterations=int(data.get("max_iterations", DEFAULT_MAX_ITERATIONS)),
            auto_escalate=bool(data.get("auto_escalate", True)),
            escalation=escalation,
            thresholds=data.get("thresholds", {}) or {},
        )

    @classmethod
    def load(cls, config_path: Optional[Path] = None, use_dotenv: bool = True) -> "OverseerConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables
        2. Local config file (loopwarden_config.json)
        3. Default values
        """
        if use_dotenv:
            load_dotenv(find_dotenv(usecwd=True))

        file_config: dict[str, Any] = _read_config_file(Path(config_path or CONFIG_FILENAME))
        config = cls.from_dict(file_config)

        config.storage_path = os.environ.get("LOOPWARDEN_STORAGE_PATH", config.storage_path)
        config.knowledge_dir = os.environ.get("LOOPWARDEN_KNOWLEDGE_DIR", config.knowledge_dir)
        config.provider = os.environ.get("LOOPWARDEN_PROVIDER", config.provider)
        config.auto_escalate = _env_bool("LOOPWARDEN_AUTO_ESCALATE", config.auto_escalate)

        env_max = os.environ.get("LOOPWARDEN_MAX_ITERATIONS")
        if env_max:
            try:
                config.max_iterations = int(env_max)
            except ValueError:
                print_warning(f"Ignoring invalid LOOPWARDEN_MAX_ITERATIONS: {env_max!r}")

        config.escalation = EscalationConfig.from_env(config.escalation)
        return config

"""Configuration loader — .env secrets + config.yaml preferences."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

# Paths
SENTINEL_HOME = Path.home() / ".sentinel"
ENV_PATH = SENTINEL_HOME / ".env"
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_YAML_PATH = PROJECT_ROOT / "config.yaml"
DB_PATH = SENTINEL_HOME / "sentinel.db"


def _load_yaml(path: Path) -> dict[str, Any]:
    if path.exists():
        with open(path) as f:
            return yaml.safe_load(f) or {}
    return {}


class Config:
    """Singleton configuration loaded from .env + config.yaml."""

    _instance: Config | None = None

    def __new__(cls) -> Config:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._loaded = False
        return cls._instance

    def load(self) -> None:
        if self._loaded:
            return
        load_dotenv(ENV_PATH)

        # Secrets (required)
        self.telegram_bot_token: str = os.environ.get("TELEGRAM_BOT_TOKEN", "")
        self.telegram_user_id: int = int(os.environ.get("TELEGRAM_USER_ID", "0"))
        self.log_level: str = os.environ.get("LOG_LEVEL", "INFO")

        # YAML preferences
        self._yaml = _load_yaml(
            Path(os.environ.get("SENTINEL_CONFIG", CONFIG_YAML_PATH))
        )

        self._loaded = True

    def validate(self) -> list[str]:
        """Return list of missing required config values."""
        missing = []
        if not self.telegram_bot_token:
            missing.append("TELEGRAM_BOT_TOKEN")
        if not self.telegram_user_id:
            missing.append("TELEGRAM_USER_ID")
        return missing

    # ── Typed accessors ──

    @property
    def engine_config(self) -> dict[str, Any]:
        return self._yaml.get("engine", {})

    @property
    def buffer_cap(self) -> int:
        return self.engine_config.get("buffer_cap", 4096)

    @property
    def dedup_window_s(self) -> float:
        return self.engine_config.get("dedup_window_s", 10)

    @property
    def monitor_config(self) -> dict[str, Any]:
        return self._yaml.get("monitor", {})

    @property
    def session_prefix(self) -> str:
        return self.monitor_config.get("session_prefix", "")

    @property
    def stream_dir(self) -> Path:
        return Path(
            self.monitor_config.get("stream_dir", str(SENTINEL_HOME / "streams"))
        ).expanduser()

    @property
    def discovery_interval_s(self) -> int:
        return self.monitor_config.get("discovery_interval_s", 10)

    @property
    def notifications_config(self) -> dict[str, Any]:
        return self._yaml.get("notifications", {})

    @property
    def batch_window_s(self) -> int:
        return self.notifications_config.get("batch_window_s", 5)

    @property
    def triggers_config(self) -> dict[str, Any]:
        return self._yaml.get("triggers", {})

    @property
    def seed_defaults(self) -> bool:
        return self.triggers_config.get("seed_defaults", True)

    @property
    def enable_defaults(self) -> bool:
        return self.triggers_config.get("enable_defaults", False)

    @property
    def hidden_defaults(self) -> list[str]:
        return self.triggers_config.get("hidden_defaults", [])

    @property
    def logging_config(self) -> dict[str, Any]:
        return self._yaml.get("logging", {})


def get_config() -> Config:
    """Get the singleton config, loading it if needed."""
    cfg = Config()
    cfg.load()
    return cfg

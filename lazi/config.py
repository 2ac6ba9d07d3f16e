"""Persisted configuration management."""

from __future__ import annotations

import json
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from .errors import ConfigurationError
from .models import PLACEHOLDER_API_KEY, Config

APP_DIR = Path.home() / ".lazi"
CONFIG_PATH = (APP_DIR / "config.json").expanduser()
API_KEY_ENV = "OPENAI_API_KEY"


class ConfigError(ConfigurationError):
    """Raised when configuration cannot be loaded or saved."""


def load_config() -> Config:
    if not CONFIG_PATH.exists():
        return Config()
    try:
        payload = json.loads(CONFIG_PATH.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
    try:
        return Config(**payload)
    except TypeError as exc:
        raise ConfigError(f"Invalid configuration file {CONFIG_PATH}: {exc}") from exc


def save_config(config: Config) -> None:
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    data = {k: v for k, v in asdict(config).items() if v is not None}
    CONFIG_PATH.write_text(json.dumps(data, indent=2))


def update_config(**kwargs: Any) -> Config:
    config = load_config()
    for key, value in kwargs.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")
    save_config(config)
    return config


def recordings_dir(config: Config) -> Path:
    if config.recordings_dir:
        return Path(config.recordings_dir).expanduser()
    return APP_DIR / "recordings"


def resolve_api_key(config: Optional[Config] = None) -> Optional[str]:
    """Return the API key from the environment or the config file, if usable."""

    key = os.environ.get(API_KEY_ENV)
    if not key and config is not None:
        key = config.openai_api_key
    if not key or key.strip() == PLACEHOLDER_API_KEY:
        return None
    return key.strip()


def require_api_key(config: Optional[Config] = None) -> str:
    key = resolve_api_key(config)
    if key is None:
        raise ConfigurationError(
            f"No OpenAI API key configured. Set {API_KEY_ENV} or run `lazi config --openai-api-key ...`."
        )
    return key

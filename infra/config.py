"""
Configuration Manager
---------------------
Loads configuration from YAML with environment variable overrides.

Environment variables win over the file:
    TOOLRUN_LOGGING_LEVEL=DEBUG  ->  logging.level
    TOOLRUN_LEDGER_PATH=/tmp/usage.db  ->  ledger.path

Sections:
    logging:      level, dir, console, file
    tool_policy:  allowed_tools, require_approval_for_effects, budgets
    ledger:       path
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import copy
import logging
import os

import yaml


ENV_PREFIX = "TOOLRUN_"

DEFAULT_CONFIG: Dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "dir": "logs",
        "console": True,
        "file": False,
    },
    "tool_policy": {},
    "ledger": {
        "path": "toolrun_usage.db",
    },
    "billing": {
        "max_tracked_runs": 10000,
    },
}


class ConfigError(ValueError):
    """Raised when a config file exists but cannot be used."""


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """
    Centralized configuration management.

    A missing file means defaults; a malformed file raises ConfigError.
    """

    def __init__(self, config_path: Union[str, Path, None] = "toolrun.yaml", env_prefix: str = ENV_PREFIX):
        self._config_path = Path(config_path) if config_path else None
        self._env_prefix = env_prefix
        self._config: Dict[str, Any] = {}
        self._logger = logging.getLogger("toolrun.infra.config")

        self._load_config()

    @classmethod
    def from_dict(cls, data: Dict[str, Any], env_prefix: str = ENV_PREFIX) -> "ConfigManager":
        """Build a manager from an in-memory mapping (no file)."""
        manager = cls(config_path=None, env_prefix=env_prefix)
        manager._config = _merge(DEFAULT_CONFIG, data)
        return manager

    def _load_config(self) -> None:
        """Load configuration from file."""
        data: Dict[str, Any] = {}
        if self._config_path is not None:
            if self._config_path.exists():
                with open(self._config_path, "r") as f:
                    try:
                        data = yaml.safe_load(f) or {}
                    except yaml.YAMLError as e:
                        raise ConfigError(f"Invalid YAML in {self._config_path}: {e}") from e
                if not isinstance(data, dict):
                    raise ConfigError(f"Config root must be a mapping: {self._config_path}")
                self._logger.info(f"Loaded config from {self._config_path}")
            else:
                self._logger.warning(f"Config file not found, using defaults: {self._config_path}")

        self._config = _merge(DEFAULT_CONFIG, data)

    def _env_key(self, key: str) -> str:
        return f"{self._env_prefix}{key.upper().replace('.', '_')}"

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.
        Supports dot notation: 'section.key'
        Environment variables override file config.
        """
        env_value = os.getenv(self._env_key(key))
        if env_value is not None:
            return env_value

        parts = key.split(".")
        value: Any = self._config

        for part in parts:
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default

        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        value = self.get(key, default)
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{key} must be an integer, got {value!r}") from e

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value (runtime only, not persisted)."""
        parts = key.split(".")
        config = self._config

        for part in parts[:-1]:
            if not isinstance(config.get(part), dict):
                config[part] = {}
            config = config[part]

        config[parts[-1]] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Top-level keys of the section can be overridden from the
        environment the same way as get().
        """
        data = copy.deepcopy(self._config.get(section) or {})
        prefix = self._env_key(section) + "_"
        for env_name, env_value in os.environ.items():
            if env_name.startswith(prefix):
                data[env_name[len(prefix):].lower()] = env_value
        return data

    def log_level(self) -> int:
        name = str(self.get("logging.level", "INFO")).upper()
        level = logging.getLevelName(name)
        if not isinstance(level, int):
            raise ConfigError(f"Unknown logging level: {name}")
        return level

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

"""
KT Intake Configuration Loader

Loads config.yaml and .env from the KT Intake home directory and provides
dot-notation access with defaults for every optional setting.

Usage:
    from kt_intake.config import ConfigLoader

    config = ConfigLoader()
    store = config.storage_path
    preview = config.get("hypothesis.preview")
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from kt_intake.exceptions import ConfigError

logger = logging.getLogger(__name__)

HOME_ENV_VAR = "KT_INTAKE_HOME"
DEFAULT_HOME = Path("~/.kt-intake")


@dataclass
class ConfigMetadata:
    """Metadata about the loaded configuration."""

    config_path: Optional[Path]
    env_path: Optional[Path]
    loaded_at: datetime = field(default_factory=datetime.now)


def resolve_home(home: Optional[Path] = None) -> Path:
    """Home directory: explicit path, else ``KT_INTAKE_HOME``, else ``~/.kt-intake``."""
    if home is not None:
        return Path(home).expanduser()
    env_home = os.getenv(HOME_ENV_VAR)
    if env_home:
        return Path(env_home).expanduser()
    return DEFAULT_HOME.expanduser()


class ConfigLoader:
    """
    KT Intake configuration.

    Attributes:
        home: Directory holding config.yaml, .env and the store file
        config: Loaded configuration dictionary
        metadata: Information about the loaded configuration
    """

    OPTIONAL_DEFAULTS = {
        "storage.file": "store.json",
        "actions.analysis_id": "",
        "hypothesis.preview": False,
        "notify.quiet": False,
        "log.file": None,
    }

    def __init__(self, home: Optional[Path] = None, auto_load: bool = True):
        self.home = resolve_home(home)
        self.config: Dict[str, Any] = {}
        self.metadata: Optional[ConfigMetadata] = None

        if auto_load:
            self._load()

    @property
    def config_path(self) -> Path:
        return self.home / "config.yaml"

    @property
    def env_path(self) -> Path:
        return self.home / ".env"

    def _load(self) -> None:
        """Load configuration from config.yaml and .env files.

        Raises:
            ConfigError: If config.yaml exists but cannot be read or parsed
        """
        if self.env_path.exists():
            load_dotenv(self.env_path)
            logger.debug("Loaded .env from %s", self.env_path)

        if self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(
                    f"Invalid YAML in {self.config_path}",
                    remediation=f"Fix or delete {self.config_path}",
                    details=str(e),
                ) from e
            except (IOError, UnicodeDecodeError) as e:
                raise ConfigError(f"Cannot read {self.config_path}", details=str(e)) from e
            if not isinstance(loaded, dict):
                raise ConfigError(
                    f"{self.config_path} must contain a mapping",
                    remediation=f"Fix or delete {self.config_path}",
                )
            self.config = loaded
            logger.debug("Loaded config.yaml from %s", self.config_path)
        else:
            self.config = {}

        self.metadata = ConfigMetadata(
            config_path=self.config_path if self.config_path.exists() else None,
            env_path=self.env_path if self.env_path.exists() else None,
        )

    def _get_nested(self, key: str) -> Any:
        value: Any = self.config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return None
        return value

    def _set_nested(self, key: str, value: Any) -> None:
        parts = key.split(".")
        target = self.config
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        target[parts[-1]] = value

    def _save(self) -> None:
        try:
            self.home.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                yaml.dump(self.config, f, default_flow_style=False, sort_keys=False)
            logger.info("Saved config to %s", self.config_path)
        except IOError as e:
            raise ConfigError(f"Cannot write to {self.config_path}", details=str(e)) from e

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value with optional default.

        Args:
            key: Dot-separated key path (e.g., "storage.file")
            default: Value to return if key not found and has no built-in default

        Returns:
            Configuration value or default.
        """
        value = self._get_nested(key)
        if value is None:
            if key in self.OPTIONAL_DEFAULTS:
                return self.OPTIONAL_DEFAULTS[key]
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a dot-notation key and persist config.yaml."""
        if not key or any(not part for part in key.split(".")):
            raise ConfigError(f"Invalid config key: {key!r}", config_key=key)
        self._set_nested(key, value)
        self._save()

    def as_dict(self) -> Dict[str, Any]:
        """Effective configuration: defaults overlaid with loaded values."""
        return {key: self.get(key) for key in sorted(set(self.OPTIONAL_DEFAULTS) | set(_flatten(self.config)))}

    @property
    def storage_path(self) -> Path:
        path = Path(str(self.get("storage.file"))).expanduser()
        return path if path.is_absolute() else self.home / path

    @property
    def log_path(self) -> Optional[Path]:
        value = self.get("log.file")
        if not value:
            return None
        path = Path(str(value)).expanduser()
        return path if path.is_absolute() else self.home / path


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat

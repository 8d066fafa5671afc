"""Configuration management for parametric.

Loads YAML settings (settings.yaml) and environment variables (.env)
into a Config object. Property getters provide safe access with
defaults for logging and permission grants.

Key classes:
    Config: Central configuration manager.

Key functions:
    get_config: Singleton accessor for the global Config instance.
    reset_config: Drop the singleton (tests).
"""

import os
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import yaml
from dotenv import load_dotenv

logger = structlog.get_logger("parametric.config")

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config:
    """Central configuration manager.

    Read-only after ``__init__``.

    Args:
        config_dir: Directory holding settings.yaml and .env. Defaults
            to ``$PARAMETRIC_CONFIG_DIR`` or ``./config``.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        if config_dir is None:
            config_dir = Path(os.environ.get("PARAMETRIC_CONFIG_DIR", "config"))
        self.config_dir = Path(config_dir)

        env_file = self.config_dir / ".env"
        if env_file.exists():
            load_dotenv(env_file)

        self.settings = self._load_yaml("settings.yaml")

    def _load_yaml(self, filename: str) -> dict:
        """Load a YAML configuration file."""
        filepath = self.config_dir / filename
        if filepath.exists():
            with open(filepath, "r") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                logger.error("settings_invalid_type", file=filename, type=type(data).__name__)
                return {}
            return data
        return {}

    def validate(self) -> None:
        """Log problems in the loaded settings. Never raises."""
        level = self.logging_level.upper()
        if level not in _VALID_LEVELS:
            logger.error("config_invalid_value", key="logging.level", value=level)

        grants = self.settings.get("permissions", {})
        if not isinstance(grants, dict):
            logger.error("permissions_invalid_type", type=type(grants).__name__)
        else:
            for principal, perms in grants.items():
                if not isinstance(perms, list):
                    logger.error(
                        "permission_grants_invalid_type",
                        principal="..." + str(principal)[-4:],
                        type=type(perms).__name__,
                    )

    @property
    def log_dir(self) -> Path:
        """Log directory path."""
        configured = self.settings.get("log_dir")
        if configured:
            return Path(configured).expanduser()
        return Path("logs")

    @property
    def logging_level(self) -> str:
        """Global log level (default INFO). Env var PARAMETRIC_LOG_LEVEL takes precedence."""
        env_level = os.environ.get("PARAMETRIC_LOG_LEVEL")
        if env_level:
            return env_level
        log_config = self.settings.get("logging", {})
        return log_config.get("level", "INFO")

    @property
    def logging_subsystem_levels(self) -> Dict[str, str]:
        """Per-subsystem log level overrides. E.g. {"invoke": "DEBUG"}."""
        log_config = self.settings.get("logging", {})
        return log_config.get("subsystem_levels", {})

    @property
    def logging_max_file_size_mb(self) -> int:
        """Max size per log file in MB before rotation (default 10)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("max_file_size_mb", 10)

    @property
    def logging_backup_count(self) -> int:
        """Number of rotated log files to keep (default 5)."""
        log_config = self.settings.get("logging", {})
        return log_config.get("backup_count", 5)

    @property
    def permission_grants(self) -> Dict[str, List[str]]:
        """Principal -> granted permission patterns.

        Entries with the wrong type are dropped (and reported by
        ``validate``).
        """
        grants = self.settings.get("permissions", {})
        if not isinstance(grants, dict):
            return {}
        return {
            str(principal): [str(p) for p in perms]
            for principal, perms in grants.items()
            if isinstance(perms, list)
        }


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Forget the global config instance (for testing)."""
    global _config
    _config = None

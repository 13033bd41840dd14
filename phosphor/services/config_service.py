"""
ConfigService - Configuration file management with migration support.

Handles loading, saving, and migrating config.json files while
ensuring backwards compatibility with existing configurations.
"""

import json
import logging
import os
import time
from typing import Optional, Dict, Any

from ..models.config import (
    AppConfig,
    CONFIG_VERSION,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_STREAM_TIMEOUT,
)


logger = logging.getLogger(__name__)


class ConfigService:
    """
    Service for managing application configuration.

    Provides:
    - Loading/saving config.json
    - Automatic migration of old config formats
    - Safe handling of corrupted files
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the config service.

        Args:
            config_path: Path to config.json. Defaults to 'config.json' in current dir.
        """
        self._config_path = config_path or "config.json"
        self._config: Optional[AppConfig] = None

    def get_config_path(self) -> str:
        """Get the path to the configuration file."""
        return self._config_path

    def load(self) -> AppConfig:
        """
        Load configuration from disk.

        If the file doesn't exist, returns default config.
        If the file is corrupted, backs it up and returns default config.
        If the file is old format, migrates it automatically.

        Returns:
            AppConfig instance
        """
        if not os.path.exists(self._config_path):
            self._config = AppConfig()
            return self._config

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                raw_data = json.load(f)

            if not isinstance(raw_data, dict):
                raise ValueError("config root is not an object")

            # Check version and migrate if needed
            version = raw_data.get("_version", 0)
            if version < CONFIG_VERSION:
                raw_data = self._migrate(raw_data, version)
                # Save migrated config
                self._save_raw(raw_data)

            self._config = AppConfig.from_dict(raw_data)
            return self._config

        except (json.JSONDecodeError, ValueError, TypeError) as e:
            # Corrupted file - back it up and start fresh
            logger.warning("Config %s is unreadable (%s); using defaults", self._config_path, e)
            self._backup_corrupted()
            self._config = AppConfig()
            return self._config

    def save(self, config: Optional[AppConfig] = None) -> None:
        """
        Save configuration to disk.

        Args:
            config: AppConfig to save. Uses cached config if None.
        """
        if config is not None:
            self._config = config

        if self._config is None:
            self._config = AppConfig()

        self._save_raw(self._config.to_dict())

    def _save_raw(self, data: Dict[str, Any]) -> None:
        """Save raw dictionary to config file."""
        with open(self._config_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=4)

    def _backup_corrupted(self) -> None:
        """Backup a corrupted config file."""
        if not os.path.exists(self._config_path):
            return

        timestamp = int(time.time())
        backup_dir = os.path.dirname(os.path.abspath(self._config_path))
        backup_path = os.path.join(backup_dir, f"config-{timestamp}-.broken.json")
        try:
            os.replace(self._config_path, backup_path)
        except OSError as e:
            logger.warning("Could not back up corrupted config: %s", e)

    def _migrate(self, data: Dict[str, Any], from_version: int) -> Dict[str, Any]:
        """
        Apply migrations sequentially from old version to current.

        Args:
            data: Raw config dictionary
            from_version: Version to migrate from

        Returns:
            Migrated config dictionary
        """
        migrations = {
            0: self._migrate_v0_to_v1,
            1: self._migrate_v1_to_v2,
        }

        current = dict(data)
        for v in range(from_version, CONFIG_VERSION):
            if v in migrations:
                current = migrations[v](current)

        current["_version"] = CONFIG_VERSION
        logger.info("Migrated config from v%d to v%d", from_version, CONFIG_VERSION)
        return current

    def _migrate_v0_to_v1(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Migrate from unversioned config to v1.

        This handles configs created before versioning was added.
        NEVER removes keys - only adds or transforms.
        """
        result = dict(data)

        if "pm3_path" not in result:
            result["pm3_path"] = None

        if "preferred_port" not in result:
            result["preferred_port"] = None

        if "timeout" not in result:
            result["timeout"] = DEFAULT_COMMAND_TIMEOUT

        if "verbose" not in result:
            result["verbose"] = False

        return result

    def _migrate_v1_to_v2(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Split the single v1 timeout into command and stream timeouts.

        The old key is kept for rollback safety.
        """
        result = dict(data)

        if "command_timeout" not in result:
            result["command_timeout"] = result.get("timeout", DEFAULT_COMMAND_TIMEOUT)

        if "stream_timeout" not in result:
            result["stream_timeout"] = DEFAULT_STREAM_TIMEOUT

        if "log_level" not in result:
            result["log_level"] = "WARNING"

        if "recent_ports" not in result:
            result["recent_ports"] = []

        return result

    # === Convenience methods ===

    def get(self) -> AppConfig:
        """Get the current config, loading if necessary."""
        if self._config is None:
            return self.load()
        return self._config

    def set_pm3_path(self, path: Optional[str]) -> None:
        """Set (or clear) the proxmark3 client override."""
        config = self.get()
        config.pm3_path = path
        self.save(config)

    def remember_port(self, port: str) -> None:
        """Record a port a device was found on."""
        config = self.get()
        config.remember_port(port)
        self.save(config)


class MockConfigService(ConfigService):
    """
    Mock ConfigService for testing.

    Stores config in memory instead of disk.
    """

    def __init__(self, config: Optional[AppConfig] = None):
        super().__init__("/dev/null")  # Won't actually be used
        self._config = config or AppConfig()
        self._saved_configs: list = []

    def load(self) -> AppConfig:
        return self._config

    def save(self, config: Optional[AppConfig] = None) -> None:
        if config is not None:
            self._config = config
        self._saved_configs.append(self._config.to_dict())

    def get_saved_configs(self) -> list:
        """Get list of all configs that were saved (for testing)."""
        return self._saved_configs

    def reset(self) -> None:
        """Reset to default config."""
        self._config = AppConfig()
        self._saved_configs.clear()

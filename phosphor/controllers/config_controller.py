"""
ConfigController - Manages application settings.

This controller provides a UI-friendly interface to ConfigService:
- Client binary override and preferred port
- Command and streaming timeouts
- Verbose command log and log level

Settings are validated before they are saved; a rejected value raises
ConfigError and leaves the stored configuration untouched. Does not emit
events.
"""

import logging
import os
import shutil
from typing import Optional, List

from ..models.config import AppConfig
from ..services.config_service import ConfigService
from ..services.errors import ConfigError
from ..services.process_runner import PORT_RE, ProcessRunner
from ..utils.logging import configure_logging


logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigController:
    """
    Controller for application configuration management.

    Wraps ConfigService to provide:
    - Validated setters for each setting
    - A ProcessRunner built from the current settings
    - Logging configured from the stored level
    """

    def __init__(
        self,
        config_service: Optional[ConfigService] = None,
        config_path: Optional[str] = None,
    ):
        """
        Initialize the ConfigController.

        Args:
            config_service: ConfigService instance (creates one if not provided)
            config_path: Path to config file (only used if creating new service)
        """
        self._service = config_service or ConfigService(config_path)
        self._config: Optional[AppConfig] = None

    @property
    def service(self) -> ConfigService:
        return self._service

    @property
    def config(self) -> AppConfig:
        """Get the current configuration, loading if necessary."""
        if self._config is None:
            self._config = self._service.load()
        return self._config

    def save(self) -> None:
        """
        Save the current configuration to disk.

        Recent ports are recorded by the wizard through the service while
        this controller holds its copy, so the stored list is kept.
        """
        if self._config is None:
            return
        self._config.recent_ports = list(self._service.load().recent_ports)
        self._service.save(self._config)

    def reload(self) -> AppConfig:
        """Reload configuration from disk."""
        self._config = self._service.load()
        return self._config

    def _update(self, **changes) -> None:
        """Apply changes on top of a fresh load, then save."""
        config = self.reload()
        for name, value in changes.items():
            setattr(config, name, value)
        self._service.save(config)

    # =========================================================================
    # Proxmark3 client
    # =========================================================================

    def set_pm3_path(self, path: Optional[str]) -> None:
        """
        Set the client binary override; None or "" returns to auto-detection.

        Raises:
            ConfigError: the path is neither a file nor a command on PATH
        """
        if path and not os.path.isfile(path) and shutil.which(path) is None:
            raise ConfigError(f"proxmark3 client not found: {path}")
        self._update(pm3_path=path or None)

    def set_preferred_port(self, port: Optional[str]) -> None:
        """
        Set the port tried before auto-detection.

        Raises:
            ConfigError: not a serial port name the client accepts
        """
        if port and not PORT_RE.fullmatch(port):
            raise ConfigError(f"Invalid port: {port}")
        self._update(preferred_port=port or None)

    def get_recent_ports(self) -> List[str]:
        return list(self.config.recent_ports)

    # =========================================================================
    # Timeouts
    # =========================================================================

    def set_timeouts(
        self,
        command_timeout: Optional[int] = None,
        stream_timeout: Optional[int] = None,
    ) -> None:
        """
        Update one or both timeouts, in seconds.

        Raises:
            ConfigError: a timeout is not a positive integer
        """
        for name, value in (("command_timeout", command_timeout), ("stream_timeout", stream_timeout)):
            if value is not None and (not isinstance(value, int) or value <= 0):
                raise ConfigError(f"{name} must be a positive number of seconds, got {value!r}")

        changes = {}
        if command_timeout is not None:
            changes["command_timeout"] = command_timeout
        if stream_timeout is not None:
            changes["stream_timeout"] = stream_timeout
        self._update(**changes)

    # =========================================================================
    # Logging
    # =========================================================================

    def set_verbose(self, verbose: bool) -> None:
        """Toggle the in-memory command log and DEBUG logging."""
        self._update(verbose=bool(verbose))
        self.apply_logging()

    def set_log_level(self, level: str) -> None:
        """
        Store and apply a log level.

        Raises:
            ConfigError: unknown level name
        """
        level = (level or "").upper()
        if level not in LOG_LEVELS:
            raise ConfigError(f"Unknown log level: {level}")
        self._update(log_level=level)
        self.apply_logging()

    def apply_logging(self) -> None:
        """Configure the package logger from the stored level and verbose flag."""
        configure_logging(self.config)
        logger.debug("Log level set to %s", self.config.log_level)

    # =========================================================================
    # Runner
    # =========================================================================

    def create_runner(self) -> ProcessRunner:
        """Build a ProcessRunner from the current settings."""
        return ProcessRunner.from_config(self.config)

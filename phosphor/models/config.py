"""
Configuration models for application settings.

These models handle the config.json structure with migration support.
"""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


# Current config version - increment when schema changes
CONFIG_VERSION = 2

DEFAULT_COMMAND_TIMEOUT = 30
DEFAULT_STREAM_TIMEOUT = 3600
MAX_RECENT_PORTS = 5


@dataclass
class AppConfig:
    """
    Main configuration data structure.

    This represents the config.json file structure.
    Migration support: add new fields with defaults, never remove fields.
    """
    # Version for migration tracking
    _version: int = CONFIG_VERSION

    # Explicit proxmark3 client binary; auto-detected when unset
    pm3_path: Optional[str] = None

    # Port tried before the platform candidates
    preferred_port: Optional[str] = None

    # v2: split from the single v1 "timeout" key
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    stream_timeout: int = DEFAULT_STREAM_TIMEOUT

    verbose: bool = False
    log_level: str = "WARNING"

    # Most recent first
    recent_ports: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "_version": self._version,
            "pm3_path": self.pm3_path,
            "preferred_port": self.preferred_port,
            "command_timeout": self.command_timeout,
            "stream_timeout": self.stream_timeout,
            "verbose": self.verbose,
            "log_level": self.log_level,
            "recent_ports": list(self.recent_ports),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Create from dictionary, handling missing fields gracefully."""
        return cls(
            _version=data.get("_version", 0),
            pm3_path=data.get("pm3_path"),
            preferred_port=data.get("preferred_port"),
            command_timeout=int(data.get("command_timeout", DEFAULT_COMMAND_TIMEOUT)),
            stream_timeout=int(data.get("stream_timeout", DEFAULT_STREAM_TIMEOUT)),
            verbose=bool(data.get("verbose", False)),
            log_level=data.get("log_level", "WARNING"),
            recent_ports=list(data.get("recent_ports", [])),
        )

    def remember_port(self, port: str) -> None:
        """Move a port to the front of the recent list."""
        if port in self.recent_ports:
            self.recent_ports.remove(port)
        self.recent_ports.insert(0, port)
        del self.recent_ports[MAX_RECENT_PORTS:]


# Default configuration for new installations
DEFAULT_CONFIG = AppConfig()

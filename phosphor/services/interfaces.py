"""
Service interfaces (Protocols) for dependency injection and testing.

The controller depends on these contracts, so tests can hand it a mock
runner instead of a real proxmark3 client.
"""

from typing import Protocol, Callable, List, Optional

from ..models.config import AppConfig
from ..models.device import DeviceInfo


class IProcessRunner(Protocol):
    """Interface for running proxmark3 client commands."""

    def run_command(self, port: str, cmd: str, timeout: Optional[int] = None) -> str:
        """
        Run one command and wait for it.

        Returns:
            ANSI-stripped stdout
        """
        ...

    def run_streaming(
        self,
        port: str,
        cmd: str,
        on_line: Callable[[str], None],
        timeout: Optional[int] = None,
    ) -> str:
        """
        Run a long command, delivering output lines as they arrive.

        Returns:
            Full ANSI-stripped output
        """
        ...

    def cancel(self) -> bool:
        """Kill the active streaming operation, if any."""
        ...

    def detect_device(self, candidates: Optional[List[str]] = None) -> DeviceInfo:
        """Find a connected Proxmark3."""
        ...


class IConfigService(Protocol):
    """Interface for configuration persistence."""

    def load(self) -> AppConfig:
        """Load configuration from disk."""
        ...

    def save(self, config: Optional[AppConfig] = None) -> None:
        """Save configuration to disk."""
        ...

    def get_config_path(self) -> str:
        """Get the path to the configuration file."""
        ...

    def remember_port(self, port: str) -> None:
        """Record a port that answered, most recent first."""
        ...

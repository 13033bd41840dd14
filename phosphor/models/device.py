"""
Device models for the connected Proxmark3.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class HwVersionInfo:
    """Detailed `hw version` report."""
    model: str = "Proxmark3"
    client_version: str = ""
    os_version: str = ""
    hardware_variant: str = "generic"  # generic, generic-256, rdv4, rdv4-bt
    versions_match: bool = True


@dataclass
class DeviceInfo:
    """A Proxmark3 that answered `hw version` on a port."""
    port: str
    model: str
    firmware: str
    hw_info: Optional[HwVersionInfo] = None

    @property
    def firmware_mismatch(self) -> bool:
        """
        Client and device firmware come from different builds.

        The device still works, so this is reported as a warning rather
        than a connection failure.
        """
        return self.hw_info is not None and not self.hw_info.versions_match

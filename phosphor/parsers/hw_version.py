"""
Parsers for `hw version` output: device identity, client/firmware versions
and hardware variant.
"""

import re
from typing import Optional, Tuple

from ..models.device import HwVersionInfo
from .text import first_group, strip_ansi


CLIENT_VERSION_RE = re.compile(r"(?i)client\s*:\s*(.+)")
# Newer clients print the version on the line after "[ Client ]"
CLIENT_SECTION_RE = re.compile(r"(?i)\[\s*Client\s*\]\s*\n\s*(.+)")
OS_VERSION_RE = re.compile(r"(?im)^\s*os[\s.:]+(.+)")
COMMIT_HASH_RE = re.compile(r"-g([0-9a-fA-F]{7,})")
BASE_VERSION_RE = re.compile(r"v(\d+\.\d+)")
UC_256K_RE = re.compile(r"(?i)AT91SAM7S256")

DEFAULT_MODEL = "Proxmark3"


def _model_from_line(line: str) -> Optional[str]:
    """"[ Proxmark3 RFID instrument ]" -> "Proxmark3 RFID instrument"."""
    stripped = line.strip()
    start, end = 0, len(stripped)
    while start < end and not stripped[start].isalnum():
        start += 1
    while end > start and not stripped[end - 1].isalnum():
        end -= 1
    return stripped[start:end] or None


def _is_model_line(line: str) -> bool:
    return ("Prox" in line and "RFID" in line) or "proxmark" in line.lower()


def parse_hw_version(output: str) -> Optional[Tuple[str, str]]:
    """
    Decide whether `hw version` output came from a Proxmark3.

    Returns:
        (model, firmware) using the last matching lines, or None if the
        output does not look like a Proxmark3 at all
    """
    clean = strip_ansi(output)
    model = DEFAULT_MODEL
    firmware = ""

    for line in clean.splitlines():
        trimmed = line.strip()
        lower = trimmed.lower()

        if _is_model_line(trimmed):
            model = _model_from_line(trimmed) or model

        if (
            trimmed.startswith("firmware")
            or "FW Version" in trimmed
            or trimmed.startswith("bootrom:")
            or "compiled" in lower
            or "version" in lower
            or trimmed.startswith("os:")
        ):
            firmware = trimmed

    if not firmware:
        if "proxmark" not in clean.lower():
            return None
        firmware = "unknown"

    return model, firmware


def parse_model(output: str) -> str:
    """First model banner in the output, defaulting to "Proxmark3"."""
    for line in output.splitlines():
        if _is_model_line(line):
            model = _model_from_line(line)
            if model:
                return model
    return DEFAULT_MODEL


def _commit_hash(version: str) -> Optional[str]:
    commit = first_group(COMMIT_HASH_RE, version)
    return commit.lower() if commit else None


def compare_versions(client_version: str, os_version: str) -> bool:
    """
    True when client and device firmware come from the same build.

    Commit hashes are compared when both carry one, else the base
    "v4.NNNNN" versions. Anything unparseable counts as a mismatch.
    """
    if not client_version or not os_version:
        return False

    client_commit = _commit_hash(client_version)
    os_commit = _commit_hash(os_version)
    if client_commit and os_commit:
        return client_commit == os_commit

    client_base = first_group(BASE_VERSION_RE, client_version)
    os_base = first_group(BASE_VERSION_RE, os_version)
    if client_base and os_base:
        return client_base == os_base

    return False


def _line_has(output: str, *words: str) -> bool:
    return any(
        all(word in line.lower() for word in words)
        for line in output.splitlines()
    )


def detect_hardware_variant(output: str) -> str:
    """Classify the board: generic, generic-256, rdv4 or rdv4-bt."""
    if UC_256K_RE.search(output):
        return "generic-256"

    has_ext_flash = _line_has(output, "external flash", "present")
    has_smartcard = _line_has(output, "smartcard", "present")
    if not (has_ext_flash and has_smartcard):
        return "generic"

    # BlueShark add-on exposes the FPC USART
    if _line_has(output, "fpc usart", "present"):
        return "rdv4-bt"
    return "rdv4"


def parse_detailed_hw_version(output: str) -> HwVersionInfo:
    clean = strip_ansi(output)

    client_version = first_group(CLIENT_VERSION_RE, clean) or first_group(CLIENT_SECTION_RE, clean)
    os_version = first_group(OS_VERSION_RE, clean)
    client_version = client_version.strip() if client_version else ""
    os_version = os_version.strip() if os_version else ""

    return HwVersionInfo(
        model=parse_model(clean),
        client_version=client_version,
        os_version=os_version,
        hardware_variant=detect_hardware_variant(clean),
        versions_match=compare_versions(client_version, os_version),
    )

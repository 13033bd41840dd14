"""
Text helpers shared by the proxmark3 output parsers.
"""

import re
from typing import Optional


ANSI_RE = re.compile(r"\x1b\[[0-9;]*[mGKHJ]")
HEX_BLOCK_RE = re.compile(r"(?:\b0[xX])?([0-9A-Fa-f]{8,})\b")


def strip_ansi(text: str) -> str:
    """Remove terminal color/cursor escapes. Idempotent."""
    return ANSI_RE.sub("", text)


def extract_first_hex_block(text: str) -> Optional[str]:
    """Return the first run of 8+ hex digits, uppercased."""
    match = HEX_BLOCK_RE.search(text)
    if match:
        return match.group(1).upper()
    return None


def first_group(pattern: "re.Pattern", text: str, group: int = 1) -> Optional[str]:
    """Return one capture group of the first match, or None."""
    match = pattern.search(text)
    if match and match.group(group) is not None:
        return match.group(group)
    return None


def hex_only(text: str) -> str:
    """Keep hex digits only and uppercase them."""
    return "".join(c for c in text if c in "0123456789abcdefABCDEF").upper()

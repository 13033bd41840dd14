"""
Blank-chip status parsers: T5577, EM4305, magic MIFARE and HF presence.
"""

import re
from typing import Optional

from ..models.cards import MagicGeneration, T5577Status
from .hf_search import HF_MAGIC_RE
from .text import first_group, strip_ansi


T5577_CHIP_RE = re.compile(r"(?i)Chip\s*(?:type)?\.+\s*(T55x7|T5555|T5577)")
T5577_PASSWORD_RE = re.compile(r"(?i)Password\s*(?:set)?\.+\s*(Yes|No)")
T5577_BLOCK0_RE = re.compile(r"(?i)Block0\.+\s*([0-9A-Fa-f]{8})")
T5577_MOD_RE = re.compile(r"(?i)Modulation\.+\s*(.+)")
T5577_PASSWORD_FOUND_RE = re.compile(
    r"(?i)\[\+\]\s*(?:Found valid )?[Pp]assword[:\s]+([0-9A-Fa-f]{8})"
)

EM4305_WORD_RE = re.compile(r"(?i)(?:Word|Address)\s*0+\s*[:|]\s*([0-9A-Fa-f]{8})")

# Block dump rows look like "[=]   4 | 00 11 22 ... | ascii"
BLOCK_ROW_MIN_BYTES = 16
BYTE_TOKEN_RE = re.compile(r"^[0-9A-Fa-f]{1,2}$")


def parse_t5577_detect(output: str) -> T5577Status:
    """Parse `lf t55xx detect` for chip, password and configuration."""
    clean = strip_ansi(output)

    detected = any(token in clean for token in ("T55xx", "T5577", "T5555", "Chip type"))

    chip_type = first_group(T5577_CHIP_RE, clean)
    if chip_type is None:
        chip_type = "T55x7" if detected else ""

    password = first_group(T5577_PASSWORD_RE, clean)
    block0 = first_group(T5577_BLOCK0_RE, clean)
    modulation = first_group(T5577_MOD_RE, clean)

    return T5577Status(
        detected=detected,
        chip_type=chip_type,
        password_set=password is not None and password.lower() == "yes",
        block0=block0.upper() if block0 else None,
        modulation=modulation.strip() if modulation else None,
    )


def parse_t5577_chk(output: str) -> Optional[str]:
    """Password recovered by `lf t55xx chk`, uppercased, or None."""
    password = first_group(T5577_PASSWORD_FOUND_RE, strip_ansi(output))
    return password.upper() if password else None


def parse_em4305_info(output: str) -> bool:
    """True when `lf em 4x05 info` identified an EM4x05/EM4x69 chip."""
    clean = strip_ansi(output)
    return any(token in clean for token in ("EM4x05", "EM4x69", "EM4305", "EM4469"))


def parse_em4305_word0(output: str) -> Optional[str]:
    """Word 0 from `lf em 4x05 read -a 0`; all zeros after a good wipe."""
    word = first_group(EM4305_WORD_RE, strip_ansi(output))
    return word.upper() if word else None


def parse_magic_detection(output: str) -> Optional[MagicGeneration]:
    """
    Magic generation reported by `hf mf info`.

    GDM is checked before GTU because USCUID/GDM banners also mention gen4.
    """
    magic = first_group(HF_MAGIC_RE, strip_ansi(output))
    if magic is None:
        return None

    lower = magic.lower()
    if "gdm" in lower or "uscuid" in lower:
        return MagicGeneration.GEN4_GDM
    if any(token in lower for token in ("gtu", "ultimate", "gen 4", "gen4")):
        return MagicGeneration.GEN4_GTU
    if any(token in lower for token in ("gen 3", "gen3", "apdu", "ufuid")):
        return MagicGeneration.GEN3
    if any(token in lower for token in ("gen 2", "gen2", "cuid")):
        return MagicGeneration.GEN2
    if "gen 1" in lower or "gen1" in lower:
        return MagicGeneration.GEN1A
    return None


def is_hf_card_present(output: str) -> bool:
    """`hf 14a info` saw an ISO 14443-A card."""
    lower = strip_ansi(output).lower()
    return "uid" in lower and ("atqa" in lower or "sak" in lower)


def is_magic_ultralight(output: str) -> bool:
    lower = strip_ansi(output).lower()
    return "magic" in lower or "gen1a" in lower or "directwrite" in lower


def is_iclass_present(output: str) -> bool:
    lower = strip_ansi(output).lower()
    return "iclass" in lower or "picopass" in lower


def has_nonzero_block_data(output: str) -> bool:
    """
    True if any block row in a read/dump table carries non-zero bytes.

    Rows are the '|' separated lines of `hf mf rdbl`/`cgetblk`/`dump`;
    error lines are ignored.
    """
    for line in strip_ansi(output).splitlines():
        if "[!!]" in line or "[-]" in line or "|" not in line:
            continue
        data_part = line.split("|", 1)[1]
        byte_values = [int(t, 16) for t in data_part.split() if BYTE_TOKEN_RE.match(t)]
        if len(byte_values) >= BLOCK_ROW_MIN_BYTES and any(byte_values):
            return True
    return False

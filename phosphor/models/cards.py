"""
Card-related models for RFID/NFC protocols, blanks and decoded card data.

Every protocol carries compiled-in metadata (frequency, cloneability,
recommended blank, EM4305 support, display name) exposed as properties on
the enum members.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict


class Frequency(Enum):
    """Carrier frequency band of a card."""
    LF = "LF"  # 125/134 kHz
    HF = "HF"  # 13.56 MHz


class CardType(Enum):
    """Identifies the card protocol decoded from a search."""
    # LF, cloneable to T5577
    EM4100 = "EM4100"
    HID_PROX = "HIDProx"
    INDALA = "Indala"
    IO_PROX = "IOProx"
    AWID = "AWID"
    FDX_B = "FDX_B"
    PARADOX = "Paradox"
    VIKING = "Viking"
    PYRAMID = "Pyramid"
    KERI = "Keri"
    NEXWATCH = "NexWatch"
    PRESCO = "Presco"
    NEDAP = "Nedap"
    GPROX_II = "GProxII"
    GALLAGHER = "Gallagher"
    PAC = "PAC"
    NORALSY = "Noralsy"
    JABLOTRON = "Jablotron"
    SECURAKEY = "SecuraKey"
    VISA2000 = "Visa2000"
    MOTOROLA = "Motorola"
    IDTECK = "IDTECK"
    # LF, detect only
    COTAG = "COTAG"
    EM4X50 = "EM4x50"
    HITAG = "Hitag"
    # HF
    MIFARE_CLASSIC_1K = "MifareClassic1K"
    MIFARE_CLASSIC_4K = "MifareClassic4K"
    MIFARE_ULTRALIGHT = "MifareUltralight"
    NTAG = "NTAG"
    DESFIRE = "DESFire"
    ICLASS = "IClass"

    @property
    def frequency(self) -> Frequency:
        return Frequency.HF if self in HF_CARD_TYPES else Frequency.LF

    @property
    def is_lf(self) -> bool:
        return self.frequency == Frequency.LF

    @property
    def is_cloneable(self) -> bool:
        return self not in NON_CLONEABLE_REASONS

    @property
    def non_cloneable_reason(self) -> Optional[str]:
        """Human-readable explanation for types that cannot be cloned."""
        return NON_CLONEABLE_REASONS.get(self)

    @property
    def supports_em4305(self) -> bool:
        """Whether the clone command accepts the EM4305 target flag."""
        return self in EM4305_CAPABLE_TYPES

    @property
    def recommended_blank(self) -> Optional["BlankType"]:
        if self.is_lf:
            return BlankType.T5577
        return RECOMMENDED_BLANKS.get(self)

    @property
    def is_mifare_classic(self) -> bool:
        return self in (CardType.MIFARE_CLASSIC_1K, CardType.MIFARE_CLASSIC_4K)

    @property
    def display_name(self) -> str:
        return CARD_DISPLAY_NAMES.get(self, self.value)


HF_CARD_TYPES = frozenset({
    CardType.MIFARE_CLASSIC_1K,
    CardType.MIFARE_CLASSIC_4K,
    CardType.MIFARE_ULTRALIGHT,
    CardType.NTAG,
    CardType.DESFIRE,
    CardType.ICLASS,
})

NON_CLONEABLE_REASONS: Dict[CardType, str] = {
    CardType.DESFIRE: "DESFire uses AES encryption; cloning not supported",
    CardType.COTAG: "Read-only, no clone commands available",
    CardType.EM4X50: "Requires native EM4x50 blank, not T5577-compatible",
    CardType.HITAG: "Requires native Hitag chip, not T5577-compatible",
}

EM4305_CAPABLE_TYPES = frozenset({
    CardType.EM4100,
    CardType.HID_PROX,
    CardType.INDALA,
    CardType.IO_PROX,
    CardType.AWID,
    CardType.FDX_B,
    CardType.PARADOX,
    CardType.VIKING,
    CardType.PYRAMID,
    CardType.KERI,
    CardType.NEXWATCH,
})

CARD_DISPLAY_NAMES: Dict[CardType, str] = {
    CardType.EM4100: "EM4100",
    CardType.HID_PROX: "HID Prox",
    CardType.INDALA: "Indala",
    CardType.IO_PROX: "IO Prox",
    CardType.AWID: "AWID",
    CardType.FDX_B: "FDX-B",
    CardType.PARADOX: "Paradox",
    CardType.VIKING: "Viking",
    CardType.PYRAMID: "Pyramid",
    CardType.KERI: "Keri",
    CardType.NEXWATCH: "NexWatch",
    CardType.PRESCO: "Presco",
    CardType.NEDAP: "Nedap",
    CardType.GPROX_II: "GProx II",
    CardType.GALLAGHER: "Gallagher",
    CardType.PAC: "PAC/Stanley",
    CardType.NORALSY: "Noralsy",
    CardType.JABLOTRON: "Jablotron",
    CardType.SECURAKEY: "SecuraKey",
    CardType.VISA2000: "Visa2000",
    CardType.MOTOROLA: "Motorola",
    CardType.IDTECK: "IDTECK",
    CardType.COTAG: "COTAG",
    CardType.EM4X50: "EM4x50",
    CardType.HITAG: "Hitag",
    CardType.MIFARE_CLASSIC_1K: "MIFARE Classic 1K",
    CardType.MIFARE_CLASSIC_4K: "MIFARE Classic 4K",
    CardType.MIFARE_ULTRALIGHT: "MIFARE Ultralight",
    CardType.NTAG: "NTAG",
    CardType.DESFIRE: "MIFARE DESFire",
    CardType.ICLASS: "iCLASS",
}


class MagicGeneration(Enum):
    """Generation of a magic (UID-changeable) MIFARE Classic card."""
    GEN1A = "Gen1a"
    GEN2 = "Gen2"
    GEN3 = "Gen3"
    GEN4_GTU = "Gen4GTU"
    GEN4_GDM = "Gen4GDM"

    @property
    def blank_type(self) -> "BlankType":
        return _GENERATION_BLANKS[self]


class BlankType(Enum):
    """Writable target media."""
    T5577 = "T5577"
    EM4305 = "EM4305"
    MAGIC_MIFARE_GEN1A = "MagicMifareGen1a"
    MAGIC_MIFARE_GEN2 = "MagicMifareGen2"
    MAGIC_MIFARE_GEN3 = "MagicMifareGen3"
    MAGIC_MIFARE_GEN4_GTU = "MagicMifareGen4GTU"
    MAGIC_MIFARE_GEN4_GDM = "MagicMifareGen4GDM"
    MAGIC_ULTRALIGHT = "MagicUltralight"
    ICLASS_BLANK = "IClassBlank"

    @property
    def frequency(self) -> Frequency:
        if self in (BlankType.T5577, BlankType.EM4305):
            return Frequency.LF
        return Frequency.HF

    @property
    def magic_generation(self) -> Optional[MagicGeneration]:
        for generation, blank in _GENERATION_BLANKS.items():
            if blank is self:
                return generation
        return None

    @property
    def display_name(self) -> str:
        return BLANK_DISPLAY_NAMES[self]


_GENERATION_BLANKS: Dict[MagicGeneration, BlankType] = {
    MagicGeneration.GEN1A: BlankType.MAGIC_MIFARE_GEN1A,
    MagicGeneration.GEN2: BlankType.MAGIC_MIFARE_GEN2,
    MagicGeneration.GEN3: BlankType.MAGIC_MIFARE_GEN3,
    MagicGeneration.GEN4_GTU: BlankType.MAGIC_MIFARE_GEN4_GTU,
    MagicGeneration.GEN4_GDM: BlankType.MAGIC_MIFARE_GEN4_GDM,
}

BLANK_DISPLAY_NAMES: Dict[BlankType, str] = {
    BlankType.T5577: "T5577",
    BlankType.EM4305: "EM4305",
    BlankType.MAGIC_MIFARE_GEN1A: "Magic MIFARE Gen1a",
    BlankType.MAGIC_MIFARE_GEN2: "Magic MIFARE Gen2 (CUID)",
    BlankType.MAGIC_MIFARE_GEN3: "Magic MIFARE Gen3 (UFUID)",
    BlankType.MAGIC_MIFARE_GEN4_GTU: "Magic MIFARE Gen4 GTU",
    BlankType.MAGIC_MIFARE_GEN4_GDM: "Magic MIFARE Gen4 GDM",
    BlankType.MAGIC_ULTRALIGHT: "Magic Ultralight",
    BlankType.ICLASS_BLANK: "iCLASS Blank",
}

RECOMMENDED_BLANKS: Dict[CardType, BlankType] = {
    CardType.MIFARE_CLASSIC_1K: BlankType.MAGIC_MIFARE_GEN1A,
    CardType.MIFARE_CLASSIC_4K: BlankType.MAGIC_MIFARE_GEN1A,
    CardType.MIFARE_ULTRALIGHT: BlankType.MAGIC_ULTRALIGHT,
    CardType.NTAG: BlankType.MAGIC_ULTRALIGHT,
    CardType.DESFIRE: BlankType.MAGIC_MIFARE_GEN4_GTU,
    CardType.ICLASS: BlankType.ICLASS_BLANK,
}


class RecoveryAction(Enum):
    """What the user can do to get out of an error state."""
    RETRY = "Retry"
    GO_BACK = "GoBack"
    RECONNECT = "Reconnect"
    MANUAL = "Manual"


class ProcessPhase(Enum):
    """Phase of a long-running HF key recovery."""
    KEY_CHECK = "KeyCheck"
    DARKSIDE = "Darkside"
    NESTED = "Nested"
    HARDNESTED = "Hardnested"
    STATIC_NESTED = "StaticNested"
    DUMPING = "Dumping"


@dataclass
class CardData:
    """
    Decoded card identity.

    `decoded` is an insertion-ordered bag of string fields. The keys a
    protocol uses (facility_code, card_number, raw, ...) are shared between
    the decoder and the clone command builder. The key raw_fallback="true"
    marks a low-confidence hex-run fallback decode.
    """
    uid: str
    raw: str = ""
    decoded: Dict[str, str] = field(default_factory=dict)

    @property
    def is_raw_fallback(self) -> bool:
        return self.decoded.get("raw_fallback") == "true"


@dataclass
class CardSummary:
    """Short description of a card for history and completion records."""
    card_type: CardType
    uid: str
    display_name: str = ""

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.card_type.display_name


@dataclass
class T5577Status:
    """Result of `lf t55xx detect`."""
    detected: bool = False
    chip_type: str = ""
    password_set: bool = False
    block0: Optional[str] = None
    modulation: Optional[str] = None

"""
Decoder for `hf search` output (optionally enriched with `hf 14a info`).
"""

import re
from typing import Dict, Optional, Tuple

from ..models.cards import CardData, CardType
from .text import first_group, hex_only, strip_ansi


NO_HF_TAG_MARKERS = (
    "No known/supported 13.56 MHz tags found",
    "No data found",
)

HF_UID_RE = re.compile(r"(?i)UID\s*:\s*((?:[0-9A-Fa-f]{2}[\s:]*){4,10})")
HF_ATQA_RE = re.compile(r"(?i)ATQA\s*:\s*([0-9A-Fa-f]{2}\s+[0-9A-Fa-f]{2})")
HF_SAK_RE = re.compile(r"(?i)SAK\s*:\s*([0-9A-Fa-f]{2})")
HF_ATS_RE = re.compile(r"(?i)ATS\s*:\s*((?:[0-9A-Fa-f]{2}\s*)+)")
HF_PRNG_RE = re.compile(r"(?i)Prng\s+detection[\s.:]+(WEAK|HARD|STATIC)")
HF_MAGIC_RE = re.compile(
    r"(?i)(?:Magic|Gen(?:eration)?)\s*(?:capabilities)?[\s.:]*(?::[\s.]*)?"
    r"(Gen\s*1[ab]?|CUID|USCUID|Gen\s*2|Gen\s*3|APDU|UFUID|GDM|Gen\s*4\s*(?:GTU|GDM)?|[Uu]ltimate)"
)
HF_ICLASS_RE = re.compile(r"(?i)\[\+\].*(?:iCLASS|Picopass)")
HF_ICLASS_CSN_RE = re.compile(r"(?i)CSN\s*:\s*([0-9A-Fa-f\s]+)")
HF_DESFIRE_RE = re.compile(r"(?i)(?:MIFARE\s+)?DESFire(?:\s+(?:EV[123]|Light))?")
HF_NTAG_TYPE_RE = re.compile(r"(?i)NTAG\s*(\d{3})")
HF_MFU_TYPE_RE = re.compile(r"(?i)(?:MIFARE\s+)?Ultralight(?:\s+(EV1|C|Nano|AES))?")

CLASSIC_1K_SAKS = {0x08, 0x88, 0x09, 0x89}
CLASSIC_4K_SAKS = {0x18, 0x98, 0x19, 0x28, 0x38}


def _parse_iclass(clean: str) -> Tuple[CardType, CardData]:
    decoded = {"type": "IClass"}
    csn = first_group(HF_ICLASS_CSN_RE, clean)
    csn = "".join(csn.split()).upper() if csn else ""
    if csn:
        decoded["uid"] = csn
    return CardType.ICLASS, CardData(uid=csn or "iCLASS", raw="", decoded=decoded)


def _extract_14a_fields(clean: str, decoded: Dict[str, str]) -> Tuple[str, Optional[int]]:
    """Fill UID/ATQA/SAK/ATS/PRNG/magic into `decoded`; return (uid, sak)."""
    uid = ""
    raw_uid = first_group(HF_UID_RE, clean)
    if raw_uid:
        uid = hex_only(raw_uid)
        decoded["uid"] = uid
        decoded["uid_size"] = f"{len(uid) // 2}B"

    atqa = first_group(HF_ATQA_RE, clean)
    if atqa:
        decoded["atqa"] = " ".join(atqa.upper().split())

    sak = None
    sak_hex = first_group(HF_SAK_RE, clean)
    if sak_hex:
        decoded["sak"] = sak_hex.upper()
        sak = int(sak_hex, 16)

    ats = first_group(HF_ATS_RE, clean)
    if ats:
        decoded["ats"] = ats.strip().upper()

    prng = first_group(HF_PRNG_RE, clean)
    if prng:
        decoded["prng"] = prng.upper()

    magic = first_group(HF_MAGIC_RE, clean)
    if magic:
        decoded["magic"] = magic

    return uid, sak


def _classify(clean: str, sak: Optional[int], decoded: Dict[str, str]) -> Optional[CardType]:
    if HF_DESFIRE_RE.search(clean):
        return CardType.DESFIRE

    ntag = first_group(HF_NTAG_TYPE_RE, clean)
    if ntag:
        decoded["ntag_type"] = f"NTAG{ntag}"
        return CardType.NTAG

    ul_match = HF_MFU_TYPE_RE.search(clean)
    if ul_match:
        variant = ul_match.group(1)
        decoded["ul_type"] = f"Ultralight {variant}" if variant else "Ultralight"
        return CardType.MIFARE_ULTRALIGHT

    if sak in CLASSIC_1K_SAKS:
        return CardType.MIFARE_CLASSIC_1K
    if sak in CLASSIC_4K_SAKS:
        return CardType.MIFARE_CLASSIC_4K
    if sak == 0x00 and decoded.get("atqa") == "00 44":
        return CardType.MIFARE_ULTRALIGHT

    # SAK missing or ambiguous: fall back to the banner text
    if "MIFARE Classic 4K" in clean or "Classic 4K" in clean:
        return CardType.MIFARE_CLASSIC_4K
    if "MIFARE Classic" in clean or "Classic 1K" in clean:
        return CardType.MIFARE_CLASSIC_1K

    return None


def parse_hf_search(output: str) -> Optional[Tuple[CardType, CardData]]:
    """
    Decode `hf search` output into a card type and its identity.

    iCLASS/Picopass is recognised first (it is not ISO 14443-A). For 14443-A
    cards the UID, ATQA, SAK, ATS, PRNG and magic capability are extracted,
    then the type is decided by product name and finally by SAK.

    Returns:
        (CardType, CardData) or None when no supported tag was reported
    """
    clean = strip_ansi(output)

    if not clean or any(marker in clean for marker in NO_HF_TAG_MARKERS):
        return None

    if HF_ICLASS_RE.search(clean):
        return _parse_iclass(clean)

    decoded: Dict[str, str] = {}
    uid, sak = _extract_14a_fields(clean, decoded)

    card_type = _classify(clean, sak, decoded)
    if card_type is None:
        return None

    decoded["type"] = card_type.value
    return card_type, CardData(uid=uid, raw="", decoded=decoded)

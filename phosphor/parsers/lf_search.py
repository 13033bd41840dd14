"""
Decoder for `lf search` output.

The client prints one family banner per recognised protocol, followed by
protocol-specific fields in a format that drifts between firmware builds.
Each family parser tries the most structured pattern first and degrades to
raw hex. Families are probed in a fixed priority order; some of them claim
the output as soon as their banner is present (a failed decode then means
"no card"), the rest fall through to the next family.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple

from ..models.cards import CardData, CardType
from .text import extract_first_hex_block, first_group, strip_ansi


LfResult = Optional[Tuple[CardType, CardData]]

NO_LF_TAG = "No known 125/134 kHz tags found"

EM4100_ID_RE = re.compile(r"EM 410x ID\s*[\-:]?\s*([0-9A-Fa-f]{10})")

HID_FC_CN_RE = re.compile(r"(?i)FC[:/\s]*(\d+)\s*[,;]?\s*CN[:/\s]*(\d+)")
HID_RAW_RE = re.compile(r"(?i)(?:HID|Prox).*?RAW[:/\s]*([0-9A-Fa-f]+)")
HID_FORMAT_RE = re.compile(
    r"(?i)(?:H10301|H10302|H10304|Corp\s*1000|26[- ]?bit|34[- ]?bit|35[- ]?bit|37[- ]?bit)"
)
# "[+] raw: <hex>" on its own line, without a protocol prefix
STANDALONE_RAW_RE = re.compile(r"(?im)^\s*\[[+=]\]\s*raw[:/\s]+([0-9A-Fa-f]+)")

INDALA_RAW_RE = re.compile(r"(?i)Indala.*?Raw[:/\s]*([0-9A-Fa-f]+)")
INDALA_UID_RE = re.compile(r"(?i)Indala.*?ID[:/\s]*([0-9A-Fa-f]+)")

IOPROX_FC_CN_RE = re.compile(
    r"(?i)IO\s*Prox.*?(?:VN[:/\s]*(\d+))?.*?FC[:/\s]*(\d+).*?CN[:/\s]*(\d+)"
)
# "XSF(01)65:01337" - version decimal, facility hex, card decimal
IOPROX_XSF_RE = re.compile(r"(?i)IO\s*Prox.*?XSF\((\d+)\)([0-9A-Fa-f]+):(\d+)")
IOPROX_RAW_RE = re.compile(r"(?i)IO\s*Prox.*?(?:ID|Raw)[:/\s]*([0-9A-Fa-f]+)")

AWID_RE = re.compile(r"(?i)AWID.*?FC[:/\s]*(\d+).*?(?:CN|Card)[:/\s]*(\d+)")
AWID_FMT_RE = re.compile(r"(?i)AWID\s*(?:-\s*)?(?:len[:/\s]*)?(\d+)(?:\s*bit)?")

FDXB_RE = re.compile(r"(?i)FDX-?B.*?Country[:/\s]*(\d+).*?(?:National|ID)[:/\s]*(\d+)")
FDXB_ANIMAL_ID_RE = re.compile(r"Animal\s+ID[.\s]+(\d+)-(\d+)")

PYRAMID_FC_CN_RE = re.compile(r"(?i)Pyramid.*?FC[:/\s]*(\d+).*?Card[:/\s]*(\d+)")
PYRAMID_RAW_RE = re.compile(r"(?i)Pyramid.*?Raw[:/\s]*([0-9A-Fa-f]+)")

PARADOX_FC_CN_RE = re.compile(r"(?i)Paradox.*?FC[:/\s]*(\d+).*?(?:Card|CN)[:/\s]*(\d+)")
PARADOX_RAW_RE = re.compile(r"(?i)Paradox.*?Raw[:/\s]*([0-9A-Fa-f]+)")

KERI_RE = re.compile(r"(?i)Keri.*?(?:Internal|MS|Raw)[:/\s]*([0-9A-Fa-f]+)")
KERI_INTERNAL_ID_RE = re.compile(r"(?i)Internal\s+ID[:/\s]*(\d+)")
KERI_MS_FC_CN_RE = re.compile(r"(?i)(?:Descrambled\s+)?MS.*?FC[:/\s]*(\d+).*?Card[:/\s]*(\d+)")

PRESCO_RE = re.compile(r"(?i)Presco.*?(?:Card|Full\s*code)[:/\s]*([0-9A-Fa-f]+)")
PRESCO_SC_UC_RE = re.compile(
    r"(?i)Presco.*?Site\s*(?:code)?[:/\s]*(\d+).*?User\s*(?:code)?[:/\s]*(\d+)"
)

NEDAP_CARD_RE = re.compile(r"(?i)Nedap.*?(?:Card|ID)[:/\s]*(\d+)")
NEDAP_SUB_RE = re.compile(r"(?i)Nedap.*?Sub(?:type)?[:/\s]*(\d+)")
NEDAP_CC_RE = re.compile(r"(?i)customer\s*code[:/\s]*(\d+)")

GPROXII_FC_CN_RE = re.compile(r"(?i)G-?Prox.*?FC[:/\s]*(\d+).*?Card[:/\s]*(\d+)")
GPROXII_XOR_RE = re.compile(r"(?i)xor[:/\s]*(\d+)")
GPROXII_FMT_RE = re.compile(r"(?i)Len[:/\s]*(\d+)")

GALLAGHER_RE = re.compile(
    r"(?i)Gallagher.*?Region(?:\s+Code)?[:/\s]*(\d+).*?Facility(?:\s+Code)?[:/\s]*(\d+)"
    r".*?Card\s+(?:Number|No\.?)[:/\s]*(\d+).*?Issue\s+Level[:/\s]*(\d+)"
)
GALLAGHER_RC_RE = re.compile(r"(?i)Region(?:\s+Code)?[:/\s]*(\d+)")
GALLAGHER_FC_RE = re.compile(r"(?i)Facility(?:\s+Code)?[:/\s]*(\d+)")
GALLAGHER_CN_RE = re.compile(r"(?i)Card\s+(?:Number|No\.?)[:/\s]*(\d+)")
GALLAGHER_IL_RE = re.compile(r"(?i)Issue\s+Level[:/\s]*(\d+)")

PAC_DETECT_RE = re.compile(r"(?i)\[\+\].*\b(?:PAC|Stanley)\b")
PAC_CN_RE = re.compile(r"(?i)PAC(?:/Stanley)?.*?Card[:/\s]*([0-9A-Fa-f]+)")
PAC_RAW_RE = re.compile(r"(?i)PAC(?:/Stanley)?.*?Raw[:/\s]*([0-9A-Fa-f]+)")

NORALSY_RE = re.compile(r"(?i)Noralsy.*?Card[:/\s]*(\d+)(?:.*?Year[:/\s]*(\d+))?")
NORALSY_RAW_RE = re.compile(r"(?i)Noralsy.*?Raw[:/\s]*([0-9A-Fa-f]+)")

JABLOTRON_RE = re.compile(r"(?i)Jablotron.*?Card[:/\s]*([0-9A-Fa-f]+)")
SECURAKEY_RE = re.compile(r"(?i)Secura\s*[Kk]ey.*?Raw[:/\s]+([0-9A-Fa-f]+)")
VISA2000_RE = re.compile(r"(?i)Visa2000.*?Card[:/\s]*(\d+)")
MOTOROLA_RE = re.compile(r"(?i)Motorola.*?Raw[:/\s]*([0-9A-Fa-f]+)")
IDTECK_RE = re.compile(r"(?i)IDTECK.*?Raw[:/\s]*([0-9A-Fa-f]+)")

NEXWATCH_ID_RE = re.compile(r"(?i)(?:NexWatch|NXT)\s*ID[:/\s]*(\d+)")
NEXWATCH_88BIT_ID_RE = re.compile(r"(?i)88bit\s+id\s*:\s*(\d+)")
NEXWATCH_RAW_RE = re.compile(r"(?i)(?:NexWatch|NXT).*?Raw[:/\s]*([0-9A-Fa-f]+)")

VIKING_ID_RE = re.compile(r"(?i)Viking.*?(?:Card(?:\s*ID)?|ID)[:/\s]*([0-9A-Fa-f]+)\b")
VIKING_RAW_RE = re.compile(r"(?i)Viking.*?Raw[:/\s]*([0-9A-Fa-f]+)")

COTAG_RE = re.compile(r"(?i)\[\+\].*COTAG")
EM4X50_RE = re.compile(r"(?i)\[\+\].*EM4x50")
HITAG_RE = re.compile(r"(?i)\[\+\].*Hitag")

VALID_TAG_RE = re.compile(r"\[\+\]\s*Valid\s+(\S+)\s+.*?found")


def _upper(pattern: "re.Pattern", text: str) -> Optional[str]:
    value = first_group(pattern, text)
    return value.upper() if value is not None else None


def _result(card_type: CardType, uid: str, raw: str, decoded: Dict[str, str]) -> LfResult:
    return card_type, CardData(uid=uid, raw=raw, decoded=decoded)


def _raw_fallback(card_type: CardType, clean: str) -> LfResult:
    """Card family recognised but no structured fields; builder will decline."""
    hex_block = extract_first_hex_block(clean)
    if hex_block is None:
        return None
    decoded = {"type": card_type.value, "raw_fallback": "true"}
    return _result(card_type, hex_block, hex_block, decoded)


# ============================================================================
# Family parsers
# ============================================================================


def _parse_em4100(clean: str) -> LfResult:
    uid = _upper(EM4100_ID_RE, clean)
    if uid is None:
        return None
    return _result(CardType.EM4100, uid, uid, {"type": "EM4100", "id": uid})


def _parse_hid(clean: str) -> LfResult:
    decoded = {"type": "HID Prox"}

    fmt = HID_FORMAT_RE.search(clean)
    if fmt:
        decoded["format"] = fmt.group(0)

    fc = cn = ""
    match = HID_FC_CN_RE.search(clean)
    if match:
        fc, cn = match.group(1), match.group(2)
        decoded["facility_code"] = fc
        decoded["card_number"] = cn

    raw = _upper(HID_RAW_RE, clean) or _upper(STANDALONE_RAW_RE, clean) or ""

    if fc and cn:
        uid = f"FC{fc}:CN{cn}"
    elif raw:
        uid = raw
    else:
        return None

    if raw:
        decoded["raw"] = raw
    return _result(CardType.HID_PROX, uid, raw, decoded)


def _parse_indala(clean: str) -> LfResult:
    raw = _upper(INDALA_RAW_RE, clean) or _upper(STANDALONE_RAW_RE, clean)
    uid = _upper(INDALA_UID_RE, clean)

    if raw:
        uid = uid or raw
        return _result(CardType.INDALA, uid, raw, {"type": "Indala", "raw": raw, "id": uid})
    if uid:
        return _result(CardType.INDALA, uid, uid, {"type": "Indala", "id": uid})
    return None


def _parse_ioprox(clean: str) -> LfResult:
    decoded = {"type": "IOProx"}

    match = IOPROX_XSF_RE.search(clean)
    if match:
        version, fc_hex, cn = match.groups()
        try:
            fc = str(int(fc_hex, 16))
        except ValueError:
            fc = fc_hex
        decoded["version"] = version
        decoded["facility_code"] = fc
        decoded["card_number"] = cn
        raw = _upper(IOPROX_RAW_RE, clean)
        if raw:
            decoded["raw"] = raw
        return _result(CardType.IO_PROX, f"FC{fc}:CN{cn}", "", decoded)

    match = IOPROX_FC_CN_RE.search(clean)
    if match:
        version, fc, cn = match.groups()
        decoded["version"] = version or "0"
        decoded["facility_code"] = fc
        decoded["card_number"] = cn
        return _result(CardType.IO_PROX, f"FC{fc}:CN{cn}", "", decoded)

    uid = _upper(IOPROX_RAW_RE, clean)
    if uid:
        decoded["id"] = uid
        return _result(CardType.IO_PROX, uid, uid, decoded)
    return None


def _parse_awid(clean: str) -> LfResult:
    decoded = {"type": "AWID"}

    fmt = first_group(AWID_FMT_RE, clean)
    if fmt:
        decoded["format"] = fmt

    match = AWID_RE.search(clean)
    if not match:
        return None
    fc, cn = match.groups()
    decoded["facility_code"] = fc
    decoded["card_number"] = cn
    uid = f"FC{fc}:CN{cn}"
    return _result(CardType.AWID, uid, uid, decoded)


def _parse_fdxb(clean: str) -> LfResult:
    decoded = {"type": "FDX-B"}

    # Single-line Country/National first, then the combined "Animal ID" line
    match = FDXB_RE.search(clean) or FDXB_ANIMAL_ID_RE.search(clean)
    if match:
        country, national = match.groups()
        decoded["country"] = country
        decoded["national_id"] = national
        return _result(CardType.FDX_B, f"{country}:{national}", "", decoded)

    raw = extract_first_hex_block(clean)
    if raw:
        decoded["raw"] = raw
        return _result(CardType.FDX_B, raw, raw, decoded)
    return None


def _fc_cn_or_raw(
    card_type: CardType,
    clean: str,
    fc_cn_re: "re.Pattern",
    raw_re: "re.Pattern",
) -> LfResult:
    """Shared FC/CN, then raw, then hex-run decoding for Paradox and Pyramid."""
    decoded = {"type": card_type.value}

    match = fc_cn_re.search(clean)
    if match:
        fc, cn = match.groups()
        decoded["facility_code"] = fc
        decoded["card_number"] = cn
        raw = _upper(raw_re, clean)
        if raw:
            decoded["raw"] = raw
        return _result(card_type, f"FC{fc}:CN{cn}", raw or "", decoded)

    raw = _upper(raw_re, clean)
    if raw:
        decoded["raw"] = raw
        return _result(card_type, raw, raw, decoded)

    raw = extract_first_hex_block(clean)
    if raw:
        return _result(card_type, raw, raw, decoded)
    return None


def _parse_paradox(clean: str) -> LfResult:
    return _fc_cn_or_raw(CardType.PARADOX, clean, PARADOX_FC_CN_RE, PARADOX_RAW_RE)


def _parse_pyramid(clean: str) -> LfResult:
    return _fc_cn_or_raw(CardType.PYRAMID, clean, PYRAMID_FC_CN_RE, PYRAMID_RAW_RE)


def _parse_keri(clean: str) -> LfResult:
    decoded = {"type": "Keri"}
    if "Internal" in clean:
        decoded["keri_type"] = "i"
    elif "MS" in clean:
        decoded["keri_type"] = "m"

    internal_id = first_group(KERI_INTERNAL_ID_RE, clean)
    if internal_id:
        decoded["card_number"] = internal_id
        raw = _upper(KERI_RE, clean)
        if raw:
            decoded["raw"] = raw
        return _result(CardType.KERI, internal_id, raw or "", decoded)

    match = KERI_MS_FC_CN_RE.search(clean)
    if match:
        fc, cn = match.groups()
        decoded["facility_code"] = fc
        decoded["card_number"] = cn
        decoded["keri_type"] = "m"
        return _result(CardType.KERI, f"FC{fc}:CN{cn}", "", decoded)

    raw = _upper(KERI_RE, clean)
    if raw:
        decoded["raw"] = raw
        return _result(CardType.KERI, raw, raw, decoded)
    return None


def _parse_gallagher(clean: str) -> LfResult:
    match = GALLAGHER_RE.search(clean)
    if match:
        fields = match.groups()
    else:
        # Multi-line output, fields in any order
        fields = tuple(
            first_group(pattern, clean)
            for pattern in (GALLAGHER_RC_RE, GALLAGHER_FC_RE, GALLAGHER_CN_RE, GALLAGHER_IL_RE)
        )

    if all(fields):
        rc, fc, cn, il = fields
        decoded = {
            "type": "Gallagher",
            "region_code": rc,
            "facility_code": fc,
            "card_number": cn,
            "issue_level": il,
        }
        return _result(CardType.GALLAGHER, f"RC{rc}:FC{fc}:CN{cn}:IL{il}", "", decoded)

    return _raw_fallback(CardType.GALLAGHER, clean)


def _parse_gproxii(clean: str) -> LfResult:
    match = GPROXII_FC_CN_RE.search(clean)
    if not match:
        return _raw_fallback(CardType.GPROX_II, clean)

    fc, cn = match.groups()
    decoded = {
        "type": "GProxII",
        "facility_code": fc,
        "card_number": cn,
        "xor": first_group(GPROXII_XOR_RE, clean) or "0",
        "format": first_group(GPROXII_FMT_RE, clean) or "26",
    }
    return _result(CardType.GPROX_II, f"FC{fc}:CN{cn}", "", decoded)


def _parse_nedap(clean: str) -> LfResult:
    cn = first_group(NEDAP_CARD_RE, clean)
    if cn is None:
        return _raw_fallback(CardType.NEDAP, clean)

    # client default subtype is 5
    subtype = first_group(NEDAP_SUB_RE, clean) or "5"
    customer_code = first_group(NEDAP_CC_RE, clean) or "0"
    decoded = {
        "type": "Nedap",
        "subtype": subtype,
        "customer_code": customer_code,
        "card_number": cn,
    }
    return _result(CardType.NEDAP, f"ST{subtype}:CC{customer_code}:ID{cn}", "", decoded)


def _parse_presco(clean: str) -> LfResult:
    decoded = {"type": "Presco"}

    match = PRESCO_SC_UC_RE.search(clean)
    if match:
        sc, uc = match.groups()
        decoded["site_code"] = sc
        decoded["user_code"] = uc
        return _result(CardType.PRESCO, f"SC{sc}:UC{uc}", "", decoded)

    hex_id = _upper(PRESCO_RE, clean)
    if hex_id:
        decoded["hex"] = hex_id
        return _result(CardType.PRESCO, hex_id, hex_id, decoded)
    return None


def _parse_number_with_raw(
    card_type: CardType,
    clean: str,
    number_re: "re.Pattern",
    raw_re: "re.Pattern",
) -> LfResult:
    """Card number (plus optional raw), else raw alone. Used by PAC and Noralsy."""
    decoded = {"type": card_type.value}

    match = number_re.search(clean)
    if match:
        cn = match.group(1)
        decoded["card_number"] = cn
        if len(match.groups()) > 1 and match.group(2):
            decoded["year"] = match.group(2)
        raw = _upper(raw_re, clean)
        if raw:
            decoded["raw"] = raw
        return _result(card_type, cn, raw or "", decoded)

    raw = _upper(raw_re, clean)
    if raw:
        decoded["raw"] = raw
        return _result(card_type, raw, raw, decoded)
    return None


def _parse_pac(clean: str) -> LfResult:
    return _parse_number_with_raw(CardType.PAC, clean, PAC_CN_RE, PAC_RAW_RE)


def _parse_noralsy(clean: str) -> LfResult:
    return _parse_number_with_raw(CardType.NORALSY, clean, NORALSY_RE, NORALSY_RAW_RE)


def _parse_jablotron(clean: str) -> LfResult:
    cn = _upper(JABLOTRON_RE, clean)
    if cn is None:
        return None
    return _result(CardType.JABLOTRON, cn, cn, {"type": "Jablotron", "card_number": cn})


def _raw_only(card_type: CardType, pattern: "re.Pattern") -> Callable[[str], LfResult]:
    def parse(clean: str) -> LfResult:
        raw = _upper(pattern, clean)
        if raw is None:
            return None
        return _result(card_type, raw, raw, {"type": card_type.value, "raw": raw})
    return parse


def _parse_visa2000(clean: str) -> LfResult:
    cn = first_group(VISA2000_RE, clean)
    if cn is None:
        return None
    return _result(CardType.VISA2000, cn, "", {"type": "Visa2000", "card_number": cn})


def _detect_only(card_type: CardType) -> Callable[[str], LfResult]:
    def parse(clean: str) -> LfResult:
        return _result(card_type, card_type.value, "", {"type": card_type.value})
    return parse


def _parse_nexwatch(clean: str) -> LfResult:
    decoded = {"type": "NexWatch"}

    raw = _upper(NEXWATCH_RAW_RE, clean) or _upper(STANDALONE_RAW_RE, clean)
    card_id = first_group(NEXWATCH_ID_RE, clean) or first_group(NEXWATCH_88BIT_ID_RE, clean)
    if card_id:
        decoded["card_id"] = card_id

    if raw:
        decoded["raw"] = raw
        return _result(CardType.NEXWATCH, raw, raw, decoded)
    if card_id:
        return _result(CardType.NEXWATCH, card_id, card_id, decoded)

    hex_block = extract_first_hex_block(clean)
    if hex_block:
        decoded["raw_fallback"] = "true"
        return _result(CardType.NEXWATCH, hex_block, hex_block, decoded)
    return None


def _parse_viking(clean: str) -> LfResult:
    decoded = {"type": "Viking"}

    card_id = first_group(VIKING_ID_RE, clean)
    raw = _upper(VIKING_RAW_RE, clean)
    if card_id:
        decoded["card_id"] = card_id
        if raw:
            decoded["raw"] = raw
            return _result(CardType.VIKING, raw, raw, decoded)
        return _result(CardType.VIKING, card_id, card_id, decoded)

    if raw:
        decoded["raw"] = raw
        return _result(CardType.VIKING, raw, raw, decoded)

    hex_block = extract_first_hex_block(clean)
    if hex_block:
        decoded["raw_fallback"] = "true"
        return _result(CardType.VIKING, hex_block, hex_block, decoded)
    return None


def _parse_valid_tag(clean: str) -> LfResult:
    """Last resort for "[+] Valid <name> ID found!" lines."""
    tag_name = first_group(VALID_TAG_RE, clean)
    if tag_name is None:
        return None
    card_type = {"viking": CardType.VIKING, "nexwatch": CardType.NEXWATCH}.get(tag_name.lower())
    if card_type is None:
        return None
    raw = extract_first_hex_block(clean) or ""
    decoded = {"type": tag_name, "raw_fallback": "true"}
    return _result(card_type, raw or "unknown", raw, decoded)


def _contains(*tokens: str) -> Callable[[str], bool]:
    return lambda clean: any(token in clean for token in tokens)


def _matches(pattern: "re.Pattern") -> Callable[[str], bool]:
    return lambda clean: pattern.search(clean) is not None


# (banner test, parser, banner claims the output)
LF_FAMILIES: List[Tuple[Callable[[str], bool], Callable[[str], LfResult], bool]] = [
    (_contains("EM410x", "EM 410x"), _parse_em4100, False),
    (_contains("HID Prox", "HID Corporate"), _parse_hid, True),
    (_contains("Indala"), _parse_indala, False),
    (_contains("IO Prox"), _parse_ioprox, True),
    (_contains("AWID"), _parse_awid, True),
    (_contains("FDX-B", "FDX B", "FDXB"), _parse_fdxb, True),
    (_contains("Paradox"), _parse_paradox, True),
    (_contains("Keri", "KERI"), _parse_keri, True),
    (_contains("Pyramid"), _parse_pyramid, True),
    (_contains("Gallagher", "GALLAGHER"), _parse_gallagher, False),
    (_contains("Guardall", "GProx", "G-Prox"), _parse_gproxii, False),
    (_contains("Nedap", "NEDAP"), _parse_nedap, False),
    (_contains("Presco"), _parse_presco, True),
    (_matches(PAC_DETECT_RE), _parse_pac, True),
    (_contains("Noralsy"), _parse_noralsy, True),
    (_contains("Jablotron"), _parse_jablotron, False),
    (_contains("Securakey", "SecuraKey", "SECURAKEY"), _raw_only(CardType.SECURAKEY, SECURAKEY_RE), False),
    (_contains("Visa2000"), _parse_visa2000, False),
    (_contains("Motorola"), _raw_only(CardType.MOTOROLA, MOTOROLA_RE), False),
    (_contains("IDTECK", "Idteck"), _raw_only(CardType.IDTECK, IDTECK_RE), False),
    (_matches(COTAG_RE), _detect_only(CardType.COTAG), False),
    (_matches(EM4X50_RE), _detect_only(CardType.EM4X50), False),
    (_matches(HITAG_RE), _detect_only(CardType.HITAG), False),
    (_contains("NexWatch", "NXT"), _parse_nexwatch, False),
    (_contains("Viking", "viking"), _parse_viking, False),
]


def parse_lf_search(output: str) -> LfResult:
    """
    Decode `lf search` output into a card type and its identity.

    Args:
        output: Raw client output, ANSI escapes allowed

    Returns:
        (CardType, CardData) or None when no supported tag was reported
    """
    clean = strip_ansi(output)

    if NO_LF_TAG in clean:
        return None

    for has_banner, parse, claims in LF_FAMILIES:
        if not has_banner(clean):
            continue
        result = parse(clean)
        if result is not None or claims:
            return result

    return _parse_valid_tag(clean)

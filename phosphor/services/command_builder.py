"""
Command builder - proxmark3 (Iceman client) command strings.

Pure functions with no I/O. Every value interpolated into a command is
validated for its field shape first, and every finished command passes
through sanitize_command(), so a builder returns None rather than an unsafe
string.
"""

import re
from typing import Callable, Dict, List, Optional

from ..models.cards import BlankType, CardType, MagicGeneration


# ============================================================================
# Fixed commands
# ============================================================================

HW_VERSION = "hw version"
LF_SEARCH = "lf search"
HF_SEARCH = "hf search"
T5577_DETECT = "lf t55xx detect"
T5577_CHK = "lf t55xx chk"
EM4305_INFO = "lf em 4x05 info"
EM4305_READ_WORD0 = "lf em 4x05 read -a 0"
HF_14A_INFO = "hf 14a info"
HF_MF_INFO = "hf mf info"
HF_MFU_INFO = "hf mfu info"
HF_ICLASS_INFO = "hf iclass info"

# Transport keys accepted by magic blanks
DEFAULT_MIFARE_KEY = "FFFFFFFFFFFF"

GEN2_UNLOCK = "hf 14a config --atqa force --bcc ignore --cl2 skip --rats skip"
GEN2_RESTORE_CONFIG = "hf 14a config --std"

FORBIDDEN_CHARS = (";", "\n", "\r")

HEX_RE = re.compile(r"[0-9A-Fa-f]+")
UID_RE = re.compile(r"[0-9A-Fa-f:]+")
PASSWORD_RE = re.compile(r"[0-9A-Fa-f]{8}")
NUMBER_RE = re.compile(r"[0-9]+")
# Dump files written by the client, e.g. hf-mf-01020304-dump.bin
DUMP_PATH_RE = re.compile(r"[^\s;`'\"|&$<>]+")

HID_WIEGAND_FORMATS = {
    "H10301": "H10301",
    "H10302": "H10302",
    "H10304": "H10304",
    "26BIT": "H10301",
    "34BIT": "H10306",
    "35BIT": "C1k35s",
    "37BIT": "H10304",
    "CORP1000": "C1k35s",
}
DEFAULT_HID_FORMAT = "H10301"


# ============================================================================
# Validation
# ============================================================================


def is_safe_argument(value: str) -> bool:
    """No command separators or line breaks."""
    return not any(c in value for c in FORBIDDEN_CHARS)


def is_valid_uid(uid: str) -> bool:
    """Hex digits with optional ':' separators."""
    return bool(uid) and UID_RE.fullmatch(uid) is not None


def is_valid_password(password: str) -> bool:
    """Exactly 8 hex digits (32-bit T5577/EM4305 password)."""
    return PASSWORD_RE.fullmatch(password or "") is not None


def _is_hex(value: Optional[str]) -> bool:
    return bool(value) and HEX_RE.fullmatch(value) is not None


def _is_number(value: Optional[str]) -> bool:
    return bool(value) and NUMBER_RE.fullmatch(value) is not None


def sanitize_command(cmd: Optional[str]) -> Optional[str]:
    """Single choke point: drop any command containing separators."""
    if cmd is None or not cmd.strip() or not is_safe_argument(cmd):
        return None
    return cmd


# ============================================================================
# LF clone commands
# ============================================================================


def _numbers(decoded: Dict[str, str], *keys: str) -> Optional[List[int]]:
    """Parse the named decimal fields; None if any is missing or malformed."""
    values = [decoded.get(key) for key in keys]
    if not all(_is_number(v) for v in values):
        return None
    return [int(v) for v in values]


def _raw(decoded: Dict[str, str], uid: str = "") -> Optional[str]:
    """Decoded raw hex, else the uid when it is itself hex."""
    for candidate in (decoded.get("raw"), uid):
        if _is_hex(candidate):
            return candidate.upper()
    return None


def _em4100(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    if not _is_hex(uid):
        return None
    return f"lf em 410x clone --id {uid.upper()}"


def _hid(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    # An exact bit copy is safer than re-encoding FC/CN
    raw = decoded.get("raw")
    if _is_hex(raw):
        return f"lf hid clone -r {raw.upper()}"

    fields = _numbers(decoded, "facility_code", "card_number")
    if fields is None:
        return None
    fmt_key = re.sub(r"[\s-]", "", decoded.get("format", "")).upper()
    fmt = HID_WIEGAND_FORMATS.get(fmt_key, DEFAULT_HID_FORMAT)
    fc, cn = fields
    return f"lf hid clone -w {fmt} --fc {fc} --cn {cn}"


def _indala(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    raw = _raw(decoded, uid)
    return f"lf indala clone --raw {raw}" if raw else None


def _ioprox(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    fields = _numbers(decoded, "facility_code", "card_number")
    if fields is None:
        return None
    version = decoded.get("version", "0")
    vn = int(version) if _is_number(version) else 0
    fc, cn = fields
    return f"lf io clone --vn {vn} --fc {fc} --cn {cn}"


def _awid(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    fields = _numbers(decoded, "facility_code", "card_number")
    if fields is None:
        return None
    fmt = decoded.get("format", "26")
    if not _is_number(fmt):
        fmt = "26"
    fc, cn = fields
    return f"lf awid clone --fmt {int(fmt)} --fc {fc} --cn {cn}"


def _fdxb(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    country = decoded.get("country")
    national = decoded.get("national_id")
    if not (_is_number(country) and _is_number(national)):
        return None
    return f"lf fdxb clone --country {country} --national {national}"


def _fc_cn_or_raw(proto: str) -> Callable[[str, Dict[str, str]], Optional[str]]:
    def build(uid: str, decoded: Dict[str, str]) -> Optional[str]:
        fields = _numbers(decoded, "facility_code", "card_number")
        if fields is not None:
            fc, cn = fields
            return f"lf {proto} clone --fc {fc} --cn {cn}"
        raw = decoded.get("raw")
        if _is_hex(raw):
            return f"lf {proto} clone --raw {raw.upper()}"
        return None
    return build


def _viking(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    card_id = decoded.get("card_id") or uid
    if not _is_hex(card_id):
        return None
    return f"lf viking clone --cn {card_id.upper()}"


def _keri(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    cn = decoded.get("card_number")
    if not _is_number(cn):
        return None
    keri_type = decoded.get("keri_type", "i")
    if keri_type not in ("i", "m"):
        keri_type = "i"
    fc = decoded.get("facility_code")
    if keri_type == "m" and _is_number(fc):
        return f"lf keri clone -t m --fc {int(fc)} --cn {int(cn)}"
    return f"lf keri clone -t {keri_type} --cn {int(cn)}"


def _raw_only(proto: str) -> Callable[[str, Dict[str, str]], Optional[str]]:
    def build(uid: str, decoded: Dict[str, str]) -> Optional[str]:
        raw = _raw(decoded, uid)
        return f"lf {proto} clone --raw {raw}" if raw else None
    return build


def _presco(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    # site code 0 is a valid value
    fields = _numbers(decoded, "site_code", "user_code")
    if fields is not None:
        sc, uc = fields
        return f"lf presco clone --sitecode {sc} --usercode {uc}"
    hex_id = decoded.get("hex")
    if _is_hex(hex_id):
        return f"lf presco clone -d {hex_id.upper()}"
    return None


def _nedap(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    fields = _numbers(decoded, "subtype", "customer_code", "card_number")
    if fields is None:
        return None
    st, cc, cn = fields
    return f"lf nedap clone --st {st} --cc {cc} --id {cn}"


def _gproxii(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    fields = _numbers(decoded, "facility_code", "card_number")
    if fields is None:
        return None
    xor = decoded.get("xor", "0")
    fmt = decoded.get("format", "26")
    if not (_is_number(xor) and _is_number(fmt)):
        return None
    fc, cn = fields
    return f"lf gproxii clone --xor {int(xor)} --fmt {int(fmt)} --fc {fc} --cn {cn}"


def _gallagher(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    fields = _numbers(decoded, "region_code", "facility_code", "card_number", "issue_level")
    if fields is None:
        return None
    rc, fc, cn, il = fields
    return f"lf gallagher clone --rc {rc} --fc {fc} --cn {cn} --il {il}"


def _pac(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    raw = decoded.get("raw")
    if _is_hex(raw):
        return f"lf pac clone --raw {raw.upper()}"
    cn = decoded.get("card_number")
    if _is_hex(cn):
        return f"lf pac clone --cn {cn.upper()}"
    return None


def _noralsy(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    cn = decoded.get("card_number")
    if not _is_number(cn):
        return None
    year = decoded.get("year", "2000")
    if not _is_number(year):
        year = "2000"
    return f"lf noralsy clone --cn {cn} -y {year}"


def _jablotron(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    cn = decoded.get("card_number") or uid
    if not _is_hex(cn):
        return None
    return f"lf jablotron clone --cn {cn.upper()}"


def _visa2000(uid: str, decoded: Dict[str, str]) -> Optional[str]:
    cn = decoded.get("card_number")
    if not _is_number(cn):
        return None
    return f"lf visa2000 clone --cn {cn}"


CLONE_BUILDERS: Dict[CardType, Callable[[str, Dict[str, str]], Optional[str]]] = {
    CardType.EM4100: _em4100,
    CardType.HID_PROX: _hid,
    CardType.INDALA: _indala,
    CardType.IO_PROX: _ioprox,
    CardType.AWID: _awid,
    CardType.FDX_B: _fdxb,
    CardType.PARADOX: _fc_cn_or_raw("paradox"),
    CardType.VIKING: _viking,
    CardType.PYRAMID: _fc_cn_or_raw("pyramid"),
    CardType.KERI: _keri,
    CardType.NEXWATCH: _raw_only("nexwatch"),
    CardType.PRESCO: _presco,
    CardType.NEDAP: _nedap,
    CardType.GPROX_II: _gproxii,
    CardType.GALLAGHER: _gallagher,
    CardType.PAC: _pac,
    CardType.NORALSY: _noralsy,
    CardType.JABLOTRON: _jablotron,
    CardType.SECURAKEY: _raw_only("securakey"),
    CardType.VISA2000: _visa2000,
    CardType.MOTOROLA: _raw_only("motorola"),
    CardType.IDTECK: _raw_only("idteck"),
}


def build_clone_command(
    card_type: CardType,
    uid: str,
    decoded: Dict[str, str],
) -> Optional[str]:
    """
    Build the T5577 clone command for a decoded LF card.

    Args:
        card_type: Decoded protocol
        uid: Card identity as decoded
        decoded: Decoded field bag

    Returns:
        Command string, or None when the protocol is not clonable or the
        required fields are missing or malformed
    """
    builder = CLONE_BUILDERS.get(card_type)
    if builder is None:
        return None
    if not is_safe_argument(uid or ""):
        return None
    # A bare hex run is a guess at the identity, never cloned
    if decoded.get("raw_fallback") == "true":
        return None
    return sanitize_command(builder(uid or "", decoded))


def build_em4305_clone_command(
    card_type: CardType,
    uid: str,
    decoded: Dict[str, str],
) -> Optional[str]:
    """Same clone, targeting an EM4305 blank."""
    if not card_type.supports_em4305:
        return None
    cmd = build_clone_command(card_type, uid, decoded)
    return f"{cmd} --em" if cmd else None


# ============================================================================
# Blank preparation
# ============================================================================


def build_t5577_detect(password: Optional[str] = None) -> Optional[str]:
    if password is None:
        return T5577_DETECT
    if not is_valid_password(password):
        return None
    return sanitize_command(f"{T5577_DETECT} -p {password.upper()}")


def build_wipe_command(blank: BlankType, password: Optional[str] = None) -> Optional[str]:
    """
    Wipe command for an LF blank, optionally with a recovered password.

    HF blanks are overwritten by their restore sequence and have no wipe.
    """
    if blank == BlankType.T5577:
        base = "lf t55xx wipe"
    elif blank == BlankType.EM4305:
        base = "lf em 4x05 wipe"
    else:
        return None

    if password is None:
        return base
    if not is_valid_password(password):
        return None
    return sanitize_command(f"{base} -p {password.upper()}")


# ============================================================================
# HF commands
# ============================================================================


def _is_safe_path(path: str) -> bool:
    return bool(path) and DUMP_PATH_RE.fullmatch(path) is not None


def _sanitize_sequence(steps: Optional[List[str]]) -> Optional[List[str]]:
    """A sequence is only usable if every step passes sanitize_command()."""
    if not steps:
        return None
    if any(sanitize_command(step) is None for step in steps):
        return None
    return steps


def build_hf_autopwn_command(card_type: CardType) -> Optional[str]:
    if card_type == CardType.MIFARE_CLASSIC_1K:
        return "hf mf autopwn --1k"
    if card_type == CardType.MIFARE_CLASSIC_4K:
        return "hf mf autopwn --4k"
    return None


def build_hf_dump_command(card_type: CardType) -> Optional[str]:
    """Dump command for HF cards read without key recovery."""
    if card_type in (CardType.MIFARE_ULTRALIGHT, CardType.NTAG):
        return "hf mfu dump"
    if card_type == CardType.ICLASS:
        return "hf iclass dump --ki 0"
    return None


def build_magic_write_sequence(
    generation: MagicGeneration,
    dump_path: str,
    uid: Optional[str] = None,
    block0: Optional[str] = None,
) -> Optional[List[str]]:
    """
    Ordered commands that write a MIFARE Classic dump to a magic blank.

    Backdoor generations load the dump in one command. Gen2 needs the 14a
    layer forced open to write block 0 before the normal restore, and the
    config put back afterwards. Gen3 sets UID and block 0 via its APDUs.
    """
    return _sanitize_sequence(_magic_steps(generation, dump_path, uid, block0))


def _magic_steps(
    generation: MagicGeneration,
    dump_path: str,
    uid: Optional[str],
    block0: Optional[str],
) -> Optional[List[str]]:
    if not _is_safe_path(dump_path):
        return None

    if generation in (MagicGeneration.GEN1A, MagicGeneration.GEN4_GDM):
        return [f"hf mf cload -f {dump_path}"]

    if generation == MagicGeneration.GEN4_GTU:
        return [f"hf mf gload -f {dump_path}"]

    if not _is_hex(block0) or len(block0) != 32:
        return None
    block0 = block0.upper()

    if generation == MagicGeneration.GEN2:
        return [
            GEN2_UNLOCK,
            f"hf mf wrbl --blk 0 -k {DEFAULT_MIFARE_KEY} -d {block0} --force",
            f"hf mf restore -f {dump_path}",
            GEN2_RESTORE_CONFIG,
        ]

    if generation == MagicGeneration.GEN3:
        if not uid or not is_valid_uid(uid):
            return None
        uid = uid.replace(":", "").upper()
        return [
            f"hf mf gen3uid --uid {uid}",
            f"hf mf gen3blk -d {block0}",
            f"hf mf restore -f {dump_path}",
        ]

    return None


def build_hf_write_sequence(
    blank: BlankType,
    dump_path: str,
    uid: Optional[str] = None,
    block0: Optional[str] = None,
) -> Optional[List[str]]:
    """Write sequence for any HF blank."""
    generation = blank.magic_generation
    if generation is not None:
        return build_magic_write_sequence(generation, dump_path, uid, block0)

    if not _is_safe_path(dump_path):
        return None
    if blank == BlankType.MAGIC_ULTRALIGHT:
        return _sanitize_sequence([f"hf mfu restore -f {dump_path} -s -e"])
    if blank == BlankType.ICLASS_BLANK:
        return _sanitize_sequence([f"hf iclass restore -f {dump_path} --ki 0"])
    return None


def build_hf_readback_command(blank: BlankType) -> Optional[str]:
    """Read the written blank back for block comparison."""
    if blank == BlankType.MAGIC_MIFARE_GEN1A:
        return "hf mf cview"
    if blank.magic_generation is not None:
        return "hf mf dump"
    if blank == BlankType.MAGIC_ULTRALIGHT:
        return "hf mfu dump"
    if blank == BlankType.ICLASS_BLANK:
        return "hf iclass dump --ki 0"
    return None


def build_mifare_data_check_command(generation: MagicGeneration) -> str:
    """Read the first data block to see whether a blank already holds data."""
    if generation in (MagicGeneration.GEN1A, MagicGeneration.GEN4_GDM):
        return "hf mf cgetblk --blk 4"
    return f"hf mf rdbl --blk 4 -k {DEFAULT_MIFARE_KEY}"


def readback_block_size(blank: BlankType) -> int:
    """Bytes per block when comparing dump files."""
    if blank == BlankType.MAGIC_ULTRALIGHT:
        return 4
    if blank == BlankType.ICLASS_BLANK:
        return 8
    return 16


# ============================================================================
# Verification
# ============================================================================

# Protocols whose dedicated reader prints the same banner `lf search` does
LF_READERS: Dict[CardType, str] = {
    CardType.EM4100: "lf em 410x reader",
    CardType.INDALA: "lf indala reader",
    CardType.IO_PROX: "lf io reader",
    CardType.AWID: "lf awid reader",
    CardType.FDX_B: "lf fdxb reader",
    CardType.PARADOX: "lf paradox reader",
    CardType.PYRAMID: "lf pyramid reader",
    CardType.KERI: "lf keri reader",
    CardType.VIKING: "lf viking reader",
    CardType.NEXWATCH: "lf nexwatch reader",
}


def build_verify_command(card_type: CardType) -> str:
    """Read-back command for a written clone."""
    if not card_type.is_lf:
        return HF_SEARCH
    return LF_READERS.get(card_type, LF_SEARCH)


# ============================================================================
# Process arguments
# ============================================================================


def tool_arguments(port: str, cmd: str) -> List[str]:
    """Client arguments after the binary: port, flush mode, command."""
    return ["-p", port, "-f", "-c", cmd]

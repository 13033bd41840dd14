"""
Parsers - turn proxmark3 client text output into structured data.

All parsers are pure functions: they strip ANSI escapes themselves and
return None (or an empty status) on unrecognised text instead of raising.
"""

from .text import strip_ansi, extract_first_hex_block
from .lf_search import parse_lf_search
from .hf_search import parse_hf_search
from .autopwn import parse_autopwn_line, extract_dump_file_path
from .chips import (
    parse_t5577_detect,
    parse_t5577_chk,
    parse_em4305_info,
    parse_em4305_word0,
    parse_magic_detection,
    is_hf_card_present,
    is_magic_ultralight,
    is_iclass_present,
    has_nonzero_block_data,
)
from .verify import verify_match, verify_match_detailed
from .hw_version import (
    parse_hw_version,
    parse_detailed_hw_version,
    compare_versions,
    detect_hardware_variant,
)

__all__ = [
    "strip_ansi",
    "extract_first_hex_block",
    "parse_lf_search",
    "parse_hf_search",
    "parse_autopwn_line",
    "extract_dump_file_path",
    "parse_t5577_detect",
    "parse_t5577_chk",
    "parse_em4305_info",
    "parse_em4305_word0",
    "parse_magic_detection",
    "is_hf_card_present",
    "is_magic_ultralight",
    "is_iclass_present",
    "has_nonzero_block_data",
    "verify_match",
    "verify_match_detailed",
    "parse_hw_version",
    "parse_detailed_hw_version",
    "compare_versions",
    "detect_hardware_variant",
]

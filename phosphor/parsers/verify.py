"""
Clone verification against a fresh read of the written blank.

Mismatch lists use field codes rather than block numbers for LF cards:
0 raw (or the whole card), 1 facility code, 2 card number, 3 id.
"""

from typing import Dict, List, Optional, Tuple

from ..models.cards import CardType
from .lf_search import parse_lf_search


MISMATCH_RAW = 0
MISMATCH_FACILITY_CODE = 1
MISMATCH_CARD_NUMBER = 2
MISMATCH_ID = 3


def verify_match(source_uid: str, clone_output: str) -> Tuple[bool, List[int]]:
    """Compare the clone's decoded UID against the source UID."""
    result = parse_lf_search(clone_output)
    if result is None:
        return False, [MISMATCH_RAW]

    _, clone = result
    if clone.uid.lower() == source_uid.lower():
        return True, []
    return False, [MISMATCH_RAW]


def _same(src: Optional[str], dst: Optional[str], ignore_case: bool = False) -> bool:
    """Both absent counts as equal; one absent does not."""
    if src is None and dst is None:
        return True
    if src is None or dst is None:
        return False
    if ignore_case:
        return src.lower() == dst.lower()
    return src == dst


def verify_match_detailed(
    source_type: CardType,
    source_decoded: Dict[str, str],
    clone_output: str,
) -> Tuple[bool, List[int]]:
    """
    Field-by-field comparison of a written LF clone.

    The read-back must decode to the same protocol. Facility code, card
    number and id must agree (absent on both sides is fine). Raw is only
    compared when both sides have it.
    """
    result = parse_lf_search(clone_output)
    if result is None:
        return False, [MISMATCH_RAW]

    detected_type, clone = result
    if detected_type != source_type:
        return False, [MISMATCH_RAW]

    clone_decoded = clone.decoded

    fc_ok = _same(source_decoded.get("facility_code"), clone_decoded.get("facility_code"))
    cn_ok = _same(source_decoded.get("card_number"), clone_decoded.get("card_number"))

    src_raw = source_decoded.get("raw")
    dst_raw = clone_decoded.get("raw")
    raw_ok = src_raw is None or dst_raw is None or src_raw.lower() == dst_raw.lower()

    id_ok = _same(source_decoded.get("id"), clone_decoded.get("id"), ignore_case=True)

    mismatched = [
        code
        for code, ok in (
            (MISMATCH_FACILITY_CODE, fc_ok),
            (MISMATCH_CARD_NUMBER, cn_ok),
            (MISMATCH_RAW, raw_ok),
            (MISMATCH_ID, id_ok),
        )
        if not ok
    ]
    return not mismatched, mismatched

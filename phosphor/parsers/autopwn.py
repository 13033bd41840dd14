"""
Line parser for streamed `hf mf autopwn` output.
"""

import re
from typing import Optional

from ..models.autopwn import (
    AutopwnEvent,
    DarksideStarted,
    DictionaryProgress,
    DumpComplete,
    DumpPartial,
    Failed,
    Finished,
    HardnestedStarted,
    KeyFound,
    NestedStarted,
    StaticnestedStarted,
)
from .text import strip_ansi


AUTOPWN_KEYS_RE = re.compile(r"found\s+(\d+)\s*/\s*(\d+)\s+keys")
AUTOPWN_KEY_FOUND_RE = re.compile(r"(?i)found\s+valid\s+key\s*\[\s*([0-9A-Fa-f]{12})\s*\]")
AUTOPWN_DUMP_OK_RE = re.compile(r"(?i)Succeeded\s+in\s+dumping\s+all\s+blocks")
AUTOPWN_DUMP_PARTIAL_RE = re.compile(r"(?i)Dump\s+file\s+is\s+PARTIAL")
# "saved 64 blocks to file x.bin" / "saved to binary file `x.bin`"
AUTOPWN_DUMP_SAVED_RE = re.compile(
    r"(?i)saved\s+.*?(?:to\s+(?:binary\s+)?file\s+[`]?|file\s+)([^\s`]+\.(?:bin|json|eml))"
)
AUTOPWN_FAIL_RE = re.compile(r"(?i)all\s+key\s+recovery\s+attempts?\s+failed")
AUTOPWN_TIME_RE = re.compile(r"(?i)autopwn\s+execution\s+time\s*:\s*(\d+)\s*seconds?")

FAILURE_REASON = "All key recovery attempts failed"


def parse_autopwn_line(line: str) -> Optional[AutopwnEvent]:
    """
    Decode one output line into a progress event.

    Safe to call on partial or blank lines; anything unrecognised yields None.
    """
    text = strip_ansi(line).strip()
    if not text:
        return None

    if AUTOPWN_FAIL_RE.search(text):
        return Failed(reason=FAILURE_REASON)

    match = AUTOPWN_TIME_RE.search(text)
    if match:
        return Finished(time_secs=int(match.group(1)))

    if AUTOPWN_DUMP_OK_RE.search(text):
        # file path arrives on a later "saved ..." line
        return DumpComplete(file_path="")

    if AUTOPWN_DUMP_PARTIAL_RE.search(text):
        return DumpPartial(file_path="")

    match = AUTOPWN_DUMP_SAVED_RE.search(text)
    if match:
        return DumpComplete(file_path=match.group(1))

    match = AUTOPWN_KEY_FOUND_RE.search(text)
    if match:
        return KeyFound(key=match.group(1).upper())

    match = AUTOPWN_KEYS_RE.search(text)
    if match:
        return DictionaryProgress(found=int(match.group(1)), total=int(match.group(2)))

    if "Darkside attack" in text or "darkside" in text:
        return DarksideStarted()
    if "Hardnested attack" in text or "hardnested" in text:
        return HardnestedStarted()
    if "Staticnested" in text or "staticnested" in text or "static nonce" in text:
        return StaticnestedStarted()

    # Only after the hardnested/staticnested checks, which also contain "nested"
    is_nested = "Nested attack" in text or "nested authentication" in text
    if is_nested and not any(
        word in text for word in ("Hardnested", "hardnested", "Staticnested", "staticnested")
    ):
        return NestedStarted()

    return None


def extract_dump_file_path(output: str) -> Optional[str]:
    """First dump file named by a "saved ... file <path>" line, if any."""
    for line in strip_ansi(output).splitlines():
        match = AUTOPWN_DUMP_SAVED_RE.search(line)
        if match:
            return match.group(1)
    return None

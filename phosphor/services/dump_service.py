"""
Helpers for binary card dumps written by the proxmark3 client.
"""

import logging
from typing import List

from .errors import CommandFailedError


logger = logging.getLogger(__name__)

BLOCK0_SIZE = 16


def _read_dump(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise CommandFailedError(f"Failed to read dump file '{path}': {e}")


def read_block0_from_dump(dump_path: str) -> str:
    """
    Read the manufacturer block of a Mifare dump.

    Args:
        dump_path: Path to a binary .bin dump

    Returns:
        First 16 bytes as 32 uppercase hex characters

    Raises:
        CommandFailedError: file unreadable or shorter than one block
    """
    data = _read_dump(dump_path)
    if len(data) < BLOCK0_SIZE:
        raise CommandFailedError(
            f"Dump file too small ({len(data)} bytes, need at least {BLOCK0_SIZE})"
        )
    return data[:BLOCK0_SIZE].hex().upper()


def compare_dump_files(original: str, readback: str, block_size: int) -> List[int]:
    """
    Compare two dumps block by block over their common length.

    A trailing partial block is ignored, as is an empty dump on either side.

    Returns:
        Indices of the blocks that differ
    """
    if block_size <= 0:
        return []

    orig_data = _read_dump(original)
    readback_data = _read_dump(readback)
    if not orig_data or not readback_data:
        logger.warning("Empty dump, skipping block comparison")
        return []

    compare_len = min(len(orig_data), len(readback_data))
    mismatched = []
    for i in range(compare_len // block_size):
        start = i * block_size
        end = start + block_size
        if orig_data[start:end] != readback_data[start:end]:
            mismatched.append(i)
    return mismatched

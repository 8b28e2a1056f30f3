#!/usr/bin/env python3
"""
Flow Data Round-Trip Validation
===============================

Checks that a container survives decode + encode unchanged. Byte equality is
the only reliable test for a reverse-engineered format: a file that decodes
to the same graph can still be rejected by the game if the layout differs.

Usage:
    from flow_validate import validate_round_trip

    with open('script_flow_data_us.bin', 'rb') as f:
        result = validate_round_trip(f.read())
    if not result['valid']:
        print(f"First difference at 0x{result['first_difference']:X}")
"""

import logging
from typing import Optional, Sequence

from flow_reader import read_flow_data
from flow_writer import DEFAULT_SEED_STRINGS, FlowDataWriter
from sir0 import read_relocation_offsets

logger = logging.getLogger(__name__)


def find_first_difference(original: bytes, rebuilt: bytes) -> Optional[int]:
    """Offset of the first differing byte, or None when both are identical"""
    for i in range(min(len(original), len(rebuilt))):
        if original[i] != rebuilt[i]:
            return i
    if len(original) != len(rebuilt):
        return min(len(original), len(rebuilt))
    return None


def validate_round_trip(data: bytes, seed_strings: Sequence[str] = DEFAULT_SEED_STRINGS) -> dict:
    """
    Decode `data`, encode the result again and compare.

    Args:
        data: Complete container bytes
        seed_strings: Strings placed first in the rebuilt string table

    Returns:
        Dictionary with:
            valid            - rebuilt bytes equal the original
            original_size    - len(data)
            rebuilt_size     - size of the rebuilt container
            first_difference - offset of the first differing byte or None
            pointers_match   - the original footer lists the same pointer
                               slots the writer emitted
            flow             - the decoded FlowData
    """
    data = bytes(data)
    flow = read_flow_data(data)
    writer = FlowDataWriter(seed_strings=seed_strings)
    rebuilt = writer.to_bytes(flow)

    first_difference = find_first_difference(data, rebuilt)
    pointers_match = read_relocation_offsets(data) == writer.results['pointers']

    if first_difference is None:
        logger.info("Round trip matches (%d bytes)", len(data))
    else:
        logger.info("Round trip differs at 0x%X (original %d bytes, rebuilt %d bytes)",
                    first_difference, len(data), len(rebuilt))

    return {
        'valid': first_difference is None,
        'original_size': len(data),
        'rebuilt_size': len(rebuilt),
        'first_difference': first_difference,
        'pointers_match': pointers_match,
        'flow': flow,
    }

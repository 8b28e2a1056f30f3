#!/usr/bin/env python3
"""
SIR0 Container Wrapper
======================

SIR0 is the relocatable wrapper around script flow data. The loader reads the
whole file into memory and then adds the load address to every pointer slot
listed in the footer, so every absolute offset written by the encoder must be
listed there.

Layout:
------
| Offset | Size | Field                                   |
|--------|------|-----------------------------------------|
| 0x00   | 4    | Magic "SIR0"                            |
| 0x04   | 4    | Pointer to content header (always 0x10) |
| 0x08   | 4    | Pointer to relocation footer            |
| 0x0C   | 4    | Zero                                    |

Relocation Footer:
-----------------
Each pointer slot is stored as the distance from the previous slot (the first
one from 0). A distance is split into 7-bit groups and written most
significant group first; every byte but the last has bit 7 set.

    offsets [4, 8, 136]  ->  deltas [4, 4, 128]  ->  04 04 81 00

A distance of 0 is written as a single 00 byte. In a container, a 00 byte at
the start of an entry ends the list.
"""

from typing import Iterable, List

from flow_binary import U32_MAX

SIR0_MAGIC = b'SIR0'
SIR0_HEADER_SIZE = 0x10

# Offset of the content header written by the encoder
CONTENT_OFFSET = SIR0_HEADER_SIZE

# Zero bytes written after the relocation footer
FOOTER_TRAILER_SIZE = 14

CONTINUATION_BIT = 0x80
GROUP_MASK = 0x7F


def encode_sir0_footer(offsets: Iterable[int]) -> bytes:
    """
    Encode pointer slot offsets into the compact footer form.

    Args:
        offsets: Absolute slot offsets in non-decreasing order

    Returns:
        Footer bytes (without terminator or trailer)
    """
    output = bytearray()
    latest_written_pointer = 0
    for offset in offsets:
        if not latest_written_pointer <= offset <= U32_MAX:
            raise ValueError(
                f"Pointer offset 0x{offset:X} is out of order (previous 0x{latest_written_pointer:X})")
        remaining = offset - latest_written_pointer
        latest_written_pointer = offset

        if remaining == 0:
            # never seen in game files
            output.append(0)
            continue

        groups = []
        while remaining:
            groups.append(remaining & GROUP_MASK)
            remaining >>= 7
        for group in reversed(groups[1:]):
            output.append(group | CONTINUATION_BIT)
        output.append(groups[0])

    return bytes(output)


def decode_sir0_footer(data: bytes, stop_at_terminator: bool = False) -> List[int]:
    """
    Decode footer bytes back into absolute pointer slot offsets.

    Args:
        data: Footer bytes
        stop_at_terminator: Treat a 00 byte at the start of an entry as the
            end of the list instead of a zero distance

    Returns:
        List of absolute offsets
    """
    offsets = []
    previous = 0
    accumulator = 0
    in_group = False

    for position, byte in enumerate(data):
        if byte == 0 and not in_group and stop_at_terminator:
            return offsets

        accumulator = (accumulator << 7) | (byte & GROUP_MASK)
        if byte & CONTINUATION_BIT:
            in_group = True
            continue

        previous += accumulator
        offsets.append(previous)
        accumulator = 0
        in_group = False

    if in_group:
        raise ValueError(f"Footer ends inside an entry ({len(data)} bytes)")
    return offsets


def read_relocation_offsets(data: bytes) -> List[int]:
    """
    Decode the relocation footer stored in a complete SIR0 container.

    Raises:
        ValueError: data is not a SIR0 container or the footer is truncated
    """
    if len(data) < SIR0_HEADER_SIZE or data[0:4] != SIR0_MAGIC:
        raise ValueError(f"Not a SIR0 container (magic {bytes(data[0:4])!r})")
    footer_offset = int.from_bytes(data[8:12], 'little')
    if footer_offset > len(data):
        raise ValueError(f"Footer pointer 0x{footer_offset:X} is past the end of data")
    return decode_sir0_footer(data[footer_offset:], stop_at_terminator=True)

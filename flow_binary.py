#!/usr/bin/env python3
"""
Binary Primitives for Flow Containers
=====================================

Little-endian integer and null-terminated string helpers shared by the flow
reader and writer. All functions work on seekable binary streams
(io.BytesIO, open(..., 'rb')) and report problems as FlowDataError subclasses
instead of raw OSError/struct.error.

Usage:
    from flow_binary import read_u32_le, read_reference_u32, read_string_utf8

    stream.seek(string_table + 4 * string_id)
    text = read_reference_u32(stream, read_string_utf8)
"""

import io
import struct
from typing import BinaryIO, Callable, TypeVar

from flow_errors import FlowDataIOError, IndexOverflowError, InvalidStringError

T = TypeVar('T')

U16_MAX = 0xFFFF
U32_MAX = 0xFFFFFFFF

# Bytes fetched per read while scanning for a string terminator
STRING_CHUNK_SIZE = 64


# =============================================================================
# Reading
# =============================================================================

def read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly `size` bytes or raise FlowDataIOError."""
    position = stream.tell()
    try:
        data = stream.read(size)
    except OSError as e:
        raise FlowDataIOError(f"Read of {size} bytes at 0x{position:X} failed: {e}") from e
    if len(data) != size:
        raise FlowDataIOError(
            f"Unexpected end of data at 0x{position:X}: wanted {size} bytes, got {len(data)}")
    return data


def read_u16_le(stream: BinaryIO) -> int:
    return struct.unpack('<H', read_exact(stream, 2))[0]


def read_u32_le(stream: BinaryIO) -> int:
    return struct.unpack('<I', read_exact(stream, 4))[0]


def read_string_utf8(stream: BinaryIO) -> str:
    """
    Read a null-terminated UTF-8 string at the current position.

    The stream is left just after the terminator.

    Raises:
        FlowDataIOError: data ends before a terminator is found
        InvalidStringError: the bytes are not valid UTF-8
    """
    start = stream.tell()
    raw = bytearray()
    while True:
        try:
            chunk = stream.read(STRING_CHUNK_SIZE)
        except OSError as e:
            raise FlowDataIOError(f"Read of string at 0x{start:X} failed: {e}") from e
        if not chunk:
            raise FlowDataIOError(f"String at 0x{start:X} has no terminator")
        end = chunk.find(0)
        if end != -1:
            raw += chunk[:end]
            break
        raw += chunk

    stream.seek(start + len(raw) + 1)
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise InvalidStringError(start, e.reason) from e


def seek_to(stream: BinaryIO, offset: int, whence: int = io.SEEK_SET) -> int:
    try:
        return stream.seek(offset, whence)
    except (OSError, ValueError) as e:
        raise FlowDataIOError(f"Seek to 0x{offset:X} (whence {whence}) failed: {e}") from e


def read_reference_u32(stream: BinaryIO, parse: Callable[[BinaryIO], T]) -> T:
    """
    Follow a 4-byte absolute pointer and parse the data it points to.

    After parsing, the stream is left at the pointed-to address, not after
    the pointer field. Callers seek explicitly before their next read.
    """
    resource_address = read_u32_le(stream)
    seek_to(stream, resource_address)
    result = parse(stream)
    seek_to(stream, resource_address)
    return result


# =============================================================================
# Writing
# =============================================================================

def check_u16(value: int, what: str) -> int:
    if not 0 <= value <= U16_MAX:
        raise IndexOverflowError(what, value, U16_MAX)
    return value


def check_u32(value: int, what: str) -> int:
    if not 0 <= value <= U32_MAX:
        raise IndexOverflowError(what, value, U32_MAX)
    return value


def write_bytes(stream: BinaryIO, data: bytes) -> None:
    try:
        stream.write(data)
    except OSError as e:
        raise FlowDataIOError(f"Write of {len(data)} bytes failed: {e}") from e


def write_u16_le(stream: BinaryIO, value: int, what: str = "value") -> None:
    write_bytes(stream, struct.pack('<H', check_u16(value, what)))


def write_u32_le(stream: BinaryIO, value: int, what: str = "value") -> None:
    write_bytes(stream, struct.pack('<I', check_u32(value, what)))


def add_padding(stream: BinaryIO, alignment: int) -> int:
    """
    Write zero bytes until the stream position is a multiple of `alignment`.

    Returns:
        Number of padding bytes written (0 when already aligned)
    """
    remaining = -stream.tell() % alignment
    if remaining:
        write_bytes(stream, bytes(remaining))
    return remaining

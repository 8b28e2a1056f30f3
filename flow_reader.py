#!/usr/bin/env python3
"""
Script Flow Data Reader
=======================

Decodes a SIR0 script flow container (script_flow_data_us.bin) into a
FlowData graph.

Content Header (at the SIR0 content pointer, 9 x 4-byte fields):
---------------------------------------------------------------
| Offset | Field                                          |
|--------|------------------------------------------------|
| +0x00  | unknown1 (kept verbatim)                       |
| +0x04  | Additional info pointer                        |
| +0x08  | Dictionary count                               |
| +0x0C  | Dictionary metadata pointer (count, ptr) x N   |
| +0x10  | Vector count                                   |
| +0x14  | Vector metadata pointer (count, ptr) x N       |
| +0x18  | String pointer table                           |
| +0x1C  | Value table (u16 type, u16 data)               |
| +0x20  | Key/value table (u16 string id, u16 value id)  |

Additional Info (at the info pointer):
-------------------------------------
  u16 unknown2, u16 vector count - 1, u32, u32

Indirection:
-----------
  dictionary entry (u16) -> key/value record -> string id + value id
  vector entry (u16)     -> value record
  value record           -> type 0: string id, 1: dictionary, 2: vector
  string id              -> string pointer table -> null-terminated UTF-8

Vectors may only hold strings and dictionary references.

Usage:
    from flow_reader import read_flow_data

    with open('script_flow_data_us.bin', 'rb') as f:
        flow = read_flow_data(f)
"""

import io
import logging
from dataclasses import dataclass
from typing import BinaryIO, Dict, List, Tuple, Union

from flow_binary import (
    read_exact, read_reference_u32, read_string_utf8, read_u16_le, read_u32_le, seek_to,
)
from flow_data import FlowData, FlowDataValue, ValueType
from flow_errors import (
    DicReferenceTooBig, InvalidMagicError, KeyValTooBig, StringReferenceTooBig,
    UnorderedPointersError, UnrecognizedTypeForDic, UnrecognizedTypeForVec,
    ValueReferenceTooBig, VecReferenceTooBig,
)
from sir0 import SIR0_MAGIC

logger = logging.getLogger(__name__)


@dataclass
class FlowDataHeader:
    """Section pointers and counts read from the content header"""
    content_ptr: int
    pointer_offsets_ptr: int
    unknown1: int
    info_ptr: int
    dic_count: int
    dic_section_ptr: int
    vec_count: int
    vec_section_ptr: int
    strptr_section_ptr: int
    val_section_ptr: int
    keyval_section_ptr: int
    unknown2: int = 0

    @property
    def val_section_len(self) -> int:
        """Number of 4-byte value records"""
        return max(0, (self.keyval_section_ptr - self.val_section_ptr) // 4)

    @property
    def keyval_section_len(self) -> int:
        """Number of 4-byte key/value records"""
        return max(0, (self.info_ptr - self.keyval_section_ptr) // 4)

    def __str__(self):
        return (f"FlowDataHeader(dictionaries={self.dic_count} @0x{self.dic_section_ptr:X}, "
                f"vectors={self.vec_count} @0x{self.vec_section_ptr:X}, "
                f"strptr @0x{self.strptr_section_ptr:X}, values @0x{self.val_section_ptr:X}, "
                f"keyvals @0x{self.keyval_section_ptr:X}, info @0x{self.info_ptr:X})")


class FlowDataReader:
    """Decoder for script flow containers"""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.stats = {}
        self._strings: Dict[int, str] = {}
        self._reset()

    def _reset(self):
        self.stats = {
            'dictionaries': 0,
            'vectors': 0,
            'dictionary_entries': 0,
            'vector_entries': 0,
            'strings': 0,
            'string_table_len': 0,
            'value_table_len': 0,
            'keyval_table_len': 0,
        }
        self._strings = {}

    # -------------------------------------------------------------------------
    # Header
    # -------------------------------------------------------------------------

    def read_header(self, stream: BinaryIO) -> FlowDataHeader:
        seek_to(stream, 0)
        magic = read_exact(stream, 4)
        if magic != SIR0_MAGIC:
            raise InvalidMagicError(magic)
        content_ptr = read_u32_le(stream)
        pointer_offsets_ptr = read_u32_le(stream)

        seek_to(stream, content_ptr)
        header = FlowDataHeader(
            content_ptr=content_ptr,
            pointer_offsets_ptr=pointer_offsets_ptr,
            unknown1=read_u32_le(stream),
            info_ptr=read_u32_le(stream),
            dic_count=read_u32_le(stream),
            dic_section_ptr=read_u32_le(stream),
            vec_count=read_u32_le(stream),
            vec_section_ptr=read_u32_le(stream),
            strptr_section_ptr=read_u32_le(stream),
            val_section_ptr=read_u32_le(stream),
            keyval_section_ptr=read_u32_le(stream),
        )

        seek_to(stream, header.info_ptr)
        header.unknown2 = read_u16_le(stream)
        _vector_number = read_u16_le(stream)
        # overlaps the first dictionary and vector entries
        _first_dic = read_u32_le(stream)
        _first_vec = read_u32_le(stream)

        logger.debug("Read %s", header)
        return header

    def read_entry_records(self, stream: BinaryIO, section_ptr: int, count: int,
                           kind: str) -> List[Tuple[int, int]]:
        """
        Read the (size, pointer) metadata records of a dictionary or vector
        section. Entry list pointers must never decrease.
        """
        records = []
        latest_ptr = 0
        for index in range(count):
            seek_to(stream, section_ptr + 8 * index)
            size = read_u32_le(stream)
            ptr = read_u32_le(stream)
            if ptr < latest_ptr:
                raise UnorderedPointersError(kind, index, latest_ptr, ptr)
            latest_ptr = ptr
            records.append((size, ptr))
        return records

    def string_table_len(self, stream: BinaryIO, header: FlowDataHeader,
                         dic_records: List[Tuple[int, int]],
                         vec_records: List[Tuple[int, int]]) -> int:
        """
        Number of slots in the string pointer table.

        The table is not sized in the header. It ends where the next data
        starts: the entries of dictionary/vector 1 and up, the footer, or the
        string bytes its own slots point at, whichever comes first.
        """
        start = header.strptr_section_ptr
        candidates = [seek_to(stream, 0, io.SEEK_END)]
        if header.pointer_offsets_ptr >= start:
            candidates.append(header.pointer_offsets_ptr)
        for section_ptr in (header.info_ptr, header.dic_section_ptr, header.vec_section_ptr,
                            header.val_section_ptr, header.keyval_section_ptr):
            if section_ptr > start:
                candidates.append(section_ptr)
        for _size, ptr in dic_records[1:] + vec_records[1:]:
            if ptr >= start:
                candidates.append(ptr)
        end = min(candidates)

        count = 0
        position = start
        while position + 4 <= end:
            seek_to(stream, position)
            string_ptr = read_u32_le(stream)
            if string_ptr > start:
                end = min(end, string_ptr)
            if position + 4 > end:
                break
            count += 1
            position += 4
        return count

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def _read_string(self, stream: BinaryIO, header: FlowDataHeader,
                     string_id: int, strptr_section_len: int) -> str:
        if string_id >= strptr_section_len:
            raise StringReferenceTooBig(string_id, strptr_section_len)
        text = self._strings.get(string_id)
        if text is None:
            seek_to(stream, header.strptr_section_ptr + 4 * string_id)
            text = read_reference_u32(stream, read_string_utf8)
            self._strings[string_id] = text
            self.stats['strings'] += 1
        return text

    def _read_value(self, stream: BinaryIO, header: FlowDataHeader, val_id: int,
                    strptr_section_len: int, in_vector: bool) -> FlowDataValue:
        seek_to(stream, header.val_section_ptr + 4 * val_id)
        val_type = read_u16_le(stream)
        val_data = read_u16_le(stream)

        if val_type == ValueType.STRING:
            return FlowDataValue.string(
                self._read_string(stream, header, val_data, strptr_section_len))
        if val_type == ValueType.DIC_REF:
            if val_data >= header.dic_count:
                raise DicReferenceTooBig(val_data, header.dic_count)
            return FlowDataValue.ref_dic(val_data)
        if in_vector:
            raise UnrecognizedTypeForVec(val_type)
        if val_type == ValueType.VEC_REF:
            if val_data >= header.vec_count:
                raise VecReferenceTooBig(val_data, header.vec_count)
            return FlowDataValue.ref_vec(val_data)
        raise UnrecognizedTypeForDic(val_type)

    def _read_dictionary(self, stream: BinaryIO, header: FlowDataHeader, size: int, ptr: int,
                         strptr_section_len: int) -> Dict[str, FlowDataValue]:
        keyval_section_len = header.keyval_section_len
        val_section_len = header.val_section_len
        dic = {}
        for entry_index in range(size):
            seek_to(stream, ptr + 2 * entry_index)
            keyval_id = read_u16_le(stream)
            if keyval_id >= keyval_section_len:
                raise KeyValTooBig(keyval_id, keyval_section_len)

            seek_to(stream, header.keyval_section_ptr + 4 * keyval_id)
            key_id = read_u16_le(stream)
            val_id = read_u16_le(stream)
            if key_id >= strptr_section_len:
                raise StringReferenceTooBig(key_id, strptr_section_len)
            if val_id >= val_section_len:
                raise ValueReferenceTooBig(val_id, val_section_len)

            key = self._read_string(stream, header, key_id, strptr_section_len)
            dic[key] = self._read_value(stream, header, val_id, strptr_section_len,
                                        in_vector=False)
        self.stats['dictionary_entries'] += size
        return dic

    def _read_vector(self, stream: BinaryIO, header: FlowDataHeader, size: int, ptr: int,
                     strptr_section_len: int) -> List[FlowDataValue]:
        val_section_len = header.val_section_len
        vec = []
        for entry_index in range(size):
            seek_to(stream, ptr + 2 * entry_index)
            val_id = read_u16_le(stream)
            if val_id >= val_section_len:
                raise ValueReferenceTooBig(val_id, val_section_len)
            vec.append(self._read_value(stream, header, val_id, strptr_section_len,
                                        in_vector=True))
        self.stats['vector_entries'] += size
        return vec

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def read(self, stream: BinaryIO) -> FlowData:
        """
        Decode a complete container.

        Args:
            stream: Seekable binary stream positioned anywhere

        Returns:
            New FlowData; nothing is returned if any error is raised
        """
        self._reset()
        header = self.read_header(stream)

        dic_records = self.read_entry_records(
            stream, header.dic_section_ptr, header.dic_count, "dictionary")
        vec_records = self.read_entry_records(
            stream, header.vec_section_ptr, header.vec_count, "vector")
        strptr_section_len = self.string_table_len(stream, header, dic_records, vec_records)

        self.stats['string_table_len'] = strptr_section_len
        self.stats['value_table_len'] = header.val_section_len
        self.stats['keyval_table_len'] = header.keyval_section_len
        logger.debug("String pointer table holds %d entries", strptr_section_len)

        flowdata = FlowData(unknown1=header.unknown1, unknown2=header.unknown2)
        for size, ptr in dic_records:
            flowdata.push_dictionary(
                self._read_dictionary(stream, header, size, ptr, strptr_section_len))
            self.stats['dictionaries'] += 1

        for size, ptr in vec_records:
            flowdata.push_vector(self._read_vector(stream, header, size, ptr, strptr_section_len))
            self.stats['vectors'] += 1

        logger.info("Decoded %d dictionaries and %d vectors",
                    flowdata.dictionary_len(), flowdata.vector_len())
        if self.verbose:
            self.print_stats()
        return flowdata

    def print_stats(self):
        """Print decode statistics"""
        print("\n" + "=" * 60)
        print("FLOW DATA STATISTICS")
        print("=" * 60)
        print(f"  Dictionaries:       {self.stats['dictionaries']:,}")
        print(f"  Dictionary entries: {self.stats['dictionary_entries']:,}")
        print(f"  Vectors:            {self.stats['vectors']:,}")
        print(f"  Vector entries:     {self.stats['vector_entries']:,}")
        print(f"  String table:       {self.stats['string_table_len']:,} "
              f"({self.stats['strings']:,} referenced)")
        print(f"  Value table:        {self.stats['value_table_len']:,}")
        print(f"  Key/value table:    {self.stats['keyval_table_len']:,}")


def read_flow_data(source: Union[bytes, bytearray, memoryview, BinaryIO],
                   verbose: bool = False) -> FlowData:
    """
    Decode a script flow container.

    Args:
        source: Container bytes or a seekable binary stream
        verbose: Print decode statistics

    Returns:
        FlowData graph
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        source = io.BytesIO(bytes(source))
    return FlowDataReader(verbose=verbose).read(source)

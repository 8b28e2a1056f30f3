#!/usr/bin/env python3
"""
Script Flow Data Writer
=======================

Serializes a FlowData graph back into a SIR0 script flow container, laid out
exactly like the game's script_flow_data_us.bin so that an unmodified graph is
rebuilt byte for byte.

Strings, values and key/value pairs are deduplicated (first seen order) and
every entry list refers to them by 16-bit index.

Section Order:
-------------
| #  | Section                                   | Record                      |
|----|-------------------------------------------|-----------------------------|
| 1  | SIR0 header + content header (52 bytes)   | filled in last              |
| 2  | Dictionary metadata                       | u32 count, u32 ptr          |
| 3  | Vector metadata                           | u32 count, u32 ptr          |
| 4  | Value table                               | u16 type, u16 data          |
| 5  | Key/value table                           | u16 string id, u16 value id |
| 6  | Additional info (4 bytes)                 | u16 unknown2, u16 vecs - 1  |
| 7  | Dictionary 0 entries                      | u16 key/value id            |
| 8  | Vector 0 entries + padding                | u16 value id                |
| 9  | String pointer table                      | u32 ptr                     |
| 10 | Dictionary 1..N entries                   | u16 key/value id            |
| 11 | Vector 1..N entries + padding             | u16 value id                |
| 12 | String data                               | UTF-8 + 00                  |
| 13 | SIR0 relocation footer + 14 zero bytes    |                             |

The first dictionary and vector sit right after the additional info block
instead of with the others; the game file is laid out that way.

Usage:
    from flow_writer import flow_data_to_bytes

    with open('script_flow_data_us.bin', 'wb') as f:
        f.write(flow_data_to_bytes(flow))
"""

import io
import logging
from typing import BinaryIO, Dict, Generic, Hashable, List, Sequence, Tuple, TypeVar

from flow_binary import add_padding, seek_to, write_bytes, write_u16_le, write_u32_le
from flow_data import MAX_ENTITIES, FlowData, FlowDataValue, ValueType, encode_text
from flow_errors import IndexOverflowError
from sir0 import (
    CONTENT_OFFSET, FOOTER_TRAILER_SIZE, SIR0_HEADER_SIZE, SIR0_MAGIC, encode_sir0_footer,
)

logger = logging.getLogger(__name__)

# The game only accepts the rebuilt file when the string table starts with
# these, in this order
DEFAULT_SEED_STRINGS = ("in", "start", "idname", "$START")

CONTENT_HEADER_SIZE = 9 * 4
HEADER_BLOCK_SIZE = SIR0_HEADER_SIZE + CONTENT_HEADER_SIZE

# Pointer fields of the SIR0 header and content header
HEADER_POINTER_SLOTS = (4, 8, 20, 28, 36, 40, 44, 48)

ADDITIONAL_INFO_SIZE = 4
# Position of the string data pointer inside the additional info block
ADDITIONAL_INFO_STRING_FIELD = 12

ENTRY_ALIGNMENT = 4

K = TypeVar('K', bound=Hashable)


class InternTable(Generic[K]):
    """Deduplicating table that hands out indices in first-seen order"""

    def __init__(self, what: str, initial: Sequence[K] = ()):
        self.what = what
        self.index: Dict[K, int] = {}
        self.items: List[K] = []
        for item in initial:
            self.add(item)

    def add(self, item: K) -> int:
        position = self.index.get(item)
        if position is None:
            position = len(self.items)
            self.index[item] = position
            self.items.append(item)
        return position

    def check_size(self):
        if len(self.items) > MAX_ENTITIES:
            raise IndexOverflowError(f"number of {self.what}", len(self.items), MAX_ENTITIES)

    def __getitem__(self, item: K) -> int:
        return self.index[item]

    def __len__(self):
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


class FlowDataWriter:
    """Encoder for script flow containers"""

    def __init__(self, seed_strings: Sequence[str] = DEFAULT_SEED_STRINGS, verbose: bool = False):
        self.seed_strings = tuple(seed_strings)
        self.verbose = verbose
        self.results = {}

    def intern(self, flow: FlowData) -> Tuple[InternTable, InternTable, InternTable]:
        """
        Collect the unique strings, key/value pairs and values of a graph.

        Returns:
            (strings, keyvals, values) tables
        """
        strings: InternTable[str] = InternTable("strings", self.seed_strings)
        keyvals: InternTable[Tuple[str, FlowDataValue]] = InternTable("key/value pairs")
        values: InternTable[FlowDataValue] = InternTable("values")

        for dic in flow.dictionaries:
            for key, value in dic.items():
                strings.add(key)
                if value.kind == ValueType.STRING:
                    strings.add(value.data)
                keyvals.add((key, value))
                values.add(value)

        for vec in flow.vectors:
            for value in vec:
                values.add(value)
                if value.kind == ValueType.STRING:
                    strings.add(value.data)

        for table in (strings, keyvals, values):
            table.check_size()
        return strings, keyvals, values

    def _write_dictionary_entries(self, file: BinaryIO, dic: Dict[str, FlowDataValue],
                                  keyvals: InternTable) -> Tuple[int, int]:
        start = file.tell()
        for entry in dic.items():
            write_u16_le(file, keyvals[entry], "key/value id")
        return start, len(dic)

    def _write_vector_entries(self, file: BinaryIO, vec: List[FlowDataValue],
                              values: InternTable) -> Tuple[int, int]:
        start = file.tell()
        for value in vec:
            write_u16_le(file, values[value], "value id")
        return start, len(vec)

    def to_bytes(self, flow: FlowData) -> bytes:
        """
        Build the complete container.

        Raises:
            IndexOverflowError: a table, index or offset exceeds its field width
            UnencodableStringError: a string was put in through a mutable getter
                and cannot be stored
        """
        strings, keyvals, values = self.intern(flow)
        file = io.BytesIO()
        sir0_pointers = list(HEADER_POINTER_SLOTS)

        # header, filled in at the end
        write_bytes(file, SIR0_MAGIC)
        write_bytes(file, bytes(HEADER_BLOCK_SIZE - len(SIR0_MAGIC)))

        # dictionary metadata
        dictionary_meta_offset = file.tell()
        for _ in flow.dictionaries:
            write_bytes(file, bytes(4))
            sir0_pointers.append(file.tell())
            write_bytes(file, bytes(4))

        # vector metadata
        vector_meta_offset = file.tell()
        for _ in flow.vectors:
            write_bytes(file, bytes(4))
            sir0_pointers.append(file.tell())
            write_bytes(file, bytes(4))

        # value data (both from dictionary and vector)
        values_data_offset = file.tell()
        for value in values:
            write_u16_le(file, value.kind)
            if value.kind == ValueType.STRING:
                write_u16_le(file, strings[value.data], "string id")
            else:
                write_u16_le(file, value.data, "reference index")

        # key/value pairs
        entries_dictionary_offset = file.tell()
        for key, value in keyvals:
            write_u16_le(file, strings[key], "string id")
            write_u16_le(file, values[value], "value id")

        additional_info_offset = file.tell()
        write_bytes(file, bytes(ADDITIONAL_INFO_SIZE))

        dictionary_metadata = []
        vector_metadata = []
        if flow.dictionaries:
            dictionary_metadata.append(
                self._write_dictionary_entries(file, flow.dictionaries[0], keyvals))
        if flow.vectors:
            vector_metadata.append(self._write_vector_entries(file, flow.vectors[0], values))
        add_padding(file, ENTRY_ALIGNMENT)

        # string pointers, filled once the string data is written
        strptr_offset = file.tell()
        for _ in strings:
            sir0_pointers.append(file.tell())
            write_bytes(file, bytes(4))

        for dic in flow.dictionaries[1:]:
            dictionary_metadata.append(self._write_dictionary_entries(file, dic, keyvals))

        for vec in flow.vectors[1:]:
            vector_metadata.append(self._write_vector_entries(file, vec, values))
        add_padding(file, ENTRY_ALIGNMENT)

        string_data_offset = file.tell()
        string_offsets = []
        for string in strings:
            string_offsets.append(file.tell())
            write_bytes(file, encode_text(string) + b'\x00')

        pointer_offset = file.tell()

        # write string references
        seek_to(file, strptr_offset)
        for offset in string_offsets:
            write_u32_le(file, offset, "string offset")

        seek_to(file, dictionary_meta_offset)
        for ptr, count in dictionary_metadata:
            write_u32_le(file, count, "dictionary size")
            write_u32_le(file, ptr, "dictionary offset")

        seek_to(file, vector_meta_offset)
        for ptr, count in vector_metadata:
            write_u32_le(file, count, "vector size")
            write_u32_le(file, ptr, "vector offset")

        # SIR0 header
        seek_to(file, len(SIR0_MAGIC))
        write_u32_le(file, CONTENT_OFFSET)
        write_u32_le(file, pointer_offset, "footer offset")
        write_bytes(file, bytes(4))

        # content header
        write_u32_le(file, flow.unknown1, "unknown1")
        write_u32_le(file, additional_info_offset, "additional info offset")
        write_u32_le(file, flow.dictionary_len(), "dictionary count")
        write_u32_le(file, dictionary_meta_offset, "dictionary metadata offset")
        write_u32_le(file, flow.vector_len(), "vector count")
        write_u32_le(file, vector_meta_offset, "vector metadata offset")
        write_u32_le(file, strptr_offset, "string pointer offset")
        write_u32_le(file, values_data_offset, "value table offset")
        write_u32_le(file, entries_dictionary_offset, "key/value table offset")

        # additional info
        seek_to(file, additional_info_offset)
        write_u16_le(file, flow.unknown2, "unknown2")
        # an empty vector list wraps to 0xFFFF
        write_u16_le(file, (flow.vector_len() - 1) & 0xFFFF)
        string_field = additional_info_offset + ADDITIONAL_INFO_STRING_FIELD
        if strings and string_field == strptr_offset:
            # the field is also the first string pointer
            seek_to(file, string_field)
            write_u32_le(file, string_data_offset, "string data offset")

        # relocation footer
        seek_to(file, pointer_offset)
        write_bytes(file, encode_sir0_footer(sir0_pointers))
        write_bytes(file, bytes(FOOTER_TRAILER_SIZE))

        data = file.getvalue()
        self.results = {
            'total_size': len(data),
            'dictionaries': flow.dictionary_len(),
            'vectors': flow.vector_len(),
            'strings': len(strings),
            'values': len(values),
            'keyvals': len(keyvals),
            'dictionary_meta_offset': dictionary_meta_offset,
            'vector_meta_offset': vector_meta_offset,
            'values_offset': values_data_offset,
            'keyvals_offset': entries_dictionary_offset,
            'additional_info_offset': additional_info_offset,
            'strptr_offset': strptr_offset,
            'string_data_offset': string_data_offset,
            'pointer_offset': pointer_offset,
            'pointers': sir0_pointers,
        }
        logger.info("Encoded %d dictionaries and %d vectors into %d bytes",
                    flow.dictionary_len(), flow.vector_len(), len(data))
        logger.debug("Tables: %d strings, %d values, %d key/value pairs, %d relocations",
                     len(strings), len(values), len(keyvals), len(sir0_pointers))
        if self.verbose:
            self.print_results()
        return data

    def write(self, flow: FlowData, sink: BinaryIO) -> int:
        """
        Encode `flow` and write it to `sink` in a single write.

        Returns:
            Number of bytes written
        """
        data = self.to_bytes(flow)
        write_bytes(sink, data)
        return len(data)

    def print_results(self):
        """Print the layout of the last container built"""
        results = self.results
        print("\n" + "=" * 60)
        print("FLOW DATA LAYOUT")
        print("=" * 60)
        print(f"  Dictionaries:       {results['dictionaries']:,} "
              f"(metadata at 0x{results['dictionary_meta_offset']:08X})")
        print(f"  Vectors:            {results['vectors']:,} "
              f"(metadata at 0x{results['vector_meta_offset']:08X})")
        print(f"  Values:             {results['values']:,} (at 0x{results['values_offset']:08X})")
        print(f"  Key/value pairs:    {results['keyvals']:,} (at 0x{results['keyvals_offset']:08X})")
        print(f"  Additional info:    0x{results['additional_info_offset']:08X}")
        print(f"  String pointers:    {results['strings']:,} (at 0x{results['strptr_offset']:08X})")
        print(f"  String data:        0x{results['string_data_offset']:08X}")
        print(f"  Relocation footer:  0x{results['pointer_offset']:08X} "
              f"({len(results['pointers']):,} pointers)")
        print(f"  Total size:         {results['total_size']:,} bytes")


def flow_data_to_bytes(flow: FlowData, seed_strings: Sequence[str] = DEFAULT_SEED_STRINGS) -> bytes:
    return FlowDataWriter(seed_strings=seed_strings).to_bytes(flow)


def write_flow_data(flow: FlowData, sink: BinaryIO,
                    seed_strings: Sequence[str] = DEFAULT_SEED_STRINGS) -> int:
    """Encode `flow` into `sink`; returns the number of bytes written"""
    return FlowDataWriter(seed_strings=seed_strings).write(flow, sink)

#!/usr/bin/env python3
"""
Script Flow Data Model
======================

In-memory form of a script flow container: an ordered list of dictionaries
(string keys -> FlowDataValue) and an ordered list of vectors (lists of
FlowDataValue). Dictionaries and vectors are referenced by position, so a
dictionary can point at a vector that points back at it without any special
handling.

Value Types:
-----------
| Tag | Type    | Payload                          |
|-----|---------|----------------------------------|
| 0   | STRING  | text                             |
| 1   | DIC_REF | dictionary index (16-bit)        |
| 2   | VEC_REF | vector index (16-bit)            |

Entities are only ever appended. Two caches are kept up to date on every
append:
  - idnames: value of a dictionary's "idname" key -> reference to it
  - backlinks: referenced dictionary/vector -> references that point at it

Usage:
    flow = FlowData()
    node = flow.push_dictionary({'idname': FlowDataValue.string('$START')})
    socket = flow.push_vector([FlowDataValue.ref_dic(node)])
"""

from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from flow_binary import U16_MAX
from flow_errors import (
    IdNameNotStringError, IndexOverflowError, UnencodableStringError, UnrecognizedTypeForVec,
)

IDNAME_KEY = "idname"

# Dictionaries and vectors are addressed with 16-bit indices
MAX_INDEX = U16_MAX
MAX_ENTITIES = MAX_INDEX + 1


def encode_text(text: str) -> bytes:
    """
    UTF-8 bytes of a key or text value, without the terminator.

    Raises:
        UnencodableStringError: the text holds a NUL (the decoder would stop
            there) or a lone surrogate
    """
    if '\x00' in text:
        raise UnencodableStringError(text, "contains a NUL character")
    try:
        return text.encode('utf-8')
    except UnicodeEncodeError as e:
        raise UnencodableStringError(text, e.reason) from e


class ValueType(IntEnum):
    """Type tag stored in the first half of each value record"""
    STRING = 0
    DIC_REF = 1
    VEC_REF = 2


@dataclass(frozen=True)
class FlowDataValue:
    """A dictionary or vector entry: a string or a reference by index"""
    kind: ValueType
    data: Union[str, int]

    def __post_init__(self):
        object.__setattr__(self, 'kind', ValueType(self.kind))
        if self.kind == ValueType.STRING:
            if not isinstance(self.data, str):
                raise TypeError(f"String value needs str data, got {type(self.data).__name__}")
            encode_text(self.data)
        elif not isinstance(self.data, int) or isinstance(self.data, bool):
            raise TypeError(f"{self.kind.name} value needs int data, got {type(self.data).__name__}")
        elif not 0 <= self.data <= MAX_INDEX:
            raise IndexOverflowError(f"{self.kind.name} index", self.data, MAX_INDEX)

    @classmethod
    def string(cls, text: str) -> 'FlowDataValue':
        return cls(ValueType.STRING, text)

    @classmethod
    def ref_dic(cls, dicid: int) -> 'FlowDataValue':
        return cls(ValueType.DIC_REF, dicid)

    @classmethod
    def ref_vec(cls, vecid: int) -> 'FlowDataValue':
        return cls(ValueType.VEC_REF, vecid)

    def get_string(self) -> Optional[str]:
        return self.data if self.kind == ValueType.STRING else None

    def get_dicid(self) -> Optional[int]:
        return self.data if self.kind == ValueType.DIC_REF else None

    def get_vecid(self) -> Optional[int]:
        return self.data if self.kind == ValueType.VEC_REF else None

    def __repr__(self):
        if self.kind == ValueType.STRING:
            return f"String({self.data!r})"
        if self.kind == ValueType.DIC_REF:
            return f"RefDic({self.data})"
        return f"RefVec({self.data})"


class FlowData:
    """
    Dictionaries and vectors of one flow container.

    unknown1 (32-bit, content header) and unknown2 (16-bit, additional info
    header) are not understood; they are kept so a decoded container can be
    written back unchanged.
    """

    def __init__(self, unknown1: int = 0, unknown2: int = 0):
        self.dictionaries: List[Dict[str, FlowDataValue]] = []
        self.vectors: List[List[FlowDataValue]] = []
        # caches
        self.idnames: Dict[str, FlowDataValue] = {}
        self.backlinks: Dict[FlowDataValue, List[FlowDataValue]] = {}
        # file related
        self.unknown1 = unknown1
        self.unknown2 = unknown2

    def push_dictionary(self, values: Mapping[str, FlowDataValue]) -> int:
        """
        Append a dictionary and return its index.

        Raises:
            IndexOverflowError: the graph already holds 65536 dictionaries
            IdNameNotStringError: values["idname"] is not a string
            UnencodableStringError: a key cannot be stored in a container

        References are not checked against the number of dictionaries and
        vectors, since they may point at entities pushed later. A reference
        that is still dangling when the graph is encoded makes the decoder
        raise DicReferenceTooBig or VecReferenceTooBig.
        """
        dicid = len(self.dictionaries)
        if dicid > MAX_INDEX:
            raise IndexOverflowError("dictionary index", dicid, MAX_INDEX)
        for key in values:
            if not isinstance(key, str):
                raise TypeError(f"Dictionary keys must be str, got {type(key).__name__}")
            encode_text(key)
        reference_self = FlowDataValue.ref_dic(dicid)

        idname = values.get(IDNAME_KEY)
        if idname is not None:
            if idname.kind != ValueType.STRING:
                raise IdNameNotStringError(idname)
            self.idnames[idname.data] = reference_self

        for value in values.values():
            if value.kind != ValueType.STRING:
                self.backlinks.setdefault(value, []).append(reference_self)

        self.dictionaries.append(dict(values))
        return dicid

    def push_vector(self, values: Iterable[FlowDataValue]) -> int:
        """
        Append a vector and return its index.

        Raises:
            IndexOverflowError: the graph already holds 65536 vectors
            UnrecognizedTypeForVec: an element is a vector reference; vectors
                only hold strings and dictionary references

        Dictionary references are not checked against the number of
        dictionaries (see push_dictionary).
        """
        vecid = len(self.vectors)
        if vecid > MAX_INDEX:
            raise IndexOverflowError("vector index", vecid, MAX_INDEX)
        reference_self = FlowDataValue.ref_vec(vecid)

        values = list(values)
        for value in values:
            if value.kind == ValueType.VEC_REF:
                raise UnrecognizedTypeForVec(int(ValueType.VEC_REF))
        for value in values:
            if value.kind == ValueType.DIC_REF:
                self.backlinks.setdefault(value, []).append(reference_self)

        self.vectors.append(values)
        return vecid

    def dictionary_len(self) -> int:
        return len(self.dictionaries)

    def vector_len(self) -> int:
        return len(self.vectors)

    def get_dictionary(self, dicid: int) -> Optional[Mapping[str, FlowDataValue]]:
        """Read-only view of a dictionary, or None if out of range"""
        if not 0 <= dicid < len(self.dictionaries):
            return None
        return MappingProxyType(self.dictionaries[dicid])

    def get_dictionary_mut(self, dicid: int) -> Optional[Dict[str, FlowDataValue]]:
        """
        The dictionary itself, or None if out of range.

        Edits made through it are not reflected in the idname/backlink caches.
        """
        if not 0 <= dicid < len(self.dictionaries):
            return None
        return self.dictionaries[dicid]

    def get_vector(self, vecid: int) -> Optional[Tuple[FlowDataValue, ...]]:
        if not 0 <= vecid < len(self.vectors):
            return None
        return tuple(self.vectors[vecid])

    def get_vector_mut(self, vecid: int) -> Optional[List[FlowDataValue]]:
        if not 0 <= vecid < len(self.vectors):
            return None
        return self.vectors[vecid]

    def get_idname(self, name: str) -> Optional[FlowDataValue]:
        """Reference to the dictionary whose idname is `name`"""
        return self.idnames.get(name)

    def get_backlinks(self, reference: FlowDataValue) -> List[FlowDataValue]:
        """References to every dictionary/vector that points at `reference`"""
        return list(self.backlinks.get(reference, ()))

    def __repr__(self):
        return (f"FlowData(dictionaries={len(self.dictionaries)}, vectors={len(self.vectors)}, "
                f"unknown1=0x{self.unknown1:08X}, unknown2=0x{self.unknown2:04X})")

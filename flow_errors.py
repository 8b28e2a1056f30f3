#!/usr/bin/env python3
"""
Flow Data Errors
================

Exception types raised while reading or writing script flow containers.

Every exception derives from FlowDataError so callers can catch the whole
family at once. Reading and writing stop at the first error; nothing is
retried and no partial graph or partial container is returned.

Hierarchy:
    FlowDataError
        FlowDataIOError          - short read, seek past end, sink failure
        IndexOverflowError       - value does not fit its 16/32-bit field
        IdNameNotStringError     - "idname" entry is not a string
        InvalidStringError       - string bytes are not valid UTF-8
        UnencodableStringError   - string cannot be stored as null-terminated UTF-8
        InvalidMagicError        - data does not start with SIR0
        UnorderedPointersError   - entry list pointers go backwards
        UnrecognizedTypeError
            UnrecognizedTypeForDic
            UnrecognizedTypeForVec
        ReferenceTooBigError
            StringReferenceTooBig
            KeyValTooBig
            ValueReferenceTooBig
            DicReferenceTooBig
            VecReferenceTooBig
"""


class FlowDataError(Exception):
    """Base class for every flow container error"""


class FlowDataIOError(FlowDataError):
    """Reading or writing the underlying byte store failed"""


class IndexOverflowError(FlowDataError):
    """A count, index or offset does not fit in its fixed-width field"""

    def __init__(self, what: str, value: int, limit: int):
        self.what = what
        self.value = value
        self.limit = limit
        super().__init__(f"{what} {value} does not fit (maximum {limit})")


class IdNameNotStringError(FlowDataError):
    """The reserved "idname" key holds something other than a string"""

    def __init__(self, value):
        self.value = value
        super().__init__(f"idname must be a string, got {value!r}")


class InvalidStringError(FlowDataError):
    """A null-terminated string is not valid UTF-8"""

    def __init__(self, offset: int, reason: str):
        self.offset = offset
        self.reason = reason
        super().__init__(f"Invalid UTF-8 string at 0x{offset:X}: {reason}")


class UnencodableStringError(FlowDataError):
    """A key or text value cannot be stored as a null-terminated UTF-8 string"""

    def __init__(self, text: str, reason: str):
        self.text = text
        self.reason = reason
        super().__init__(f"Cannot store string {text!r}: {reason}")


class InvalidMagicError(FlowDataError):
    """The container does not start with the SIR0 magic"""

    def __init__(self, magic: bytes):
        self.magic = magic
        super().__init__(f"Not a SIR0 container (magic {magic!r})")


class UnorderedPointersError(FlowDataError):
    """Dictionary or vector entry lists are not stored in increasing order"""

    def __init__(self, kind: str, index: int, previous: int, pointer: int):
        self.kind = kind
        self.index = index
        self.previous = previous
        self.pointer = pointer
        super().__init__(
            f"{kind} {index} entries at 0x{pointer:X} come before the previous "
            f"{kind} entries at 0x{previous:X}")


class UnrecognizedTypeError(FlowDataError):
    """A value record carries an unknown type tag"""

    container = "value"

    def __init__(self, tag: int):
        self.tag = tag
        super().__init__(f"Unrecognized type {tag} for a {self.container} entry")


class UnrecognizedTypeForDic(UnrecognizedTypeError):
    container = "dictionary"


class UnrecognizedTypeForVec(UnrecognizedTypeError):
    container = "vector"


class ReferenceTooBigError(FlowDataError):
    """An id read from the container points past the end of its table"""

    target = "reference"

    def __init__(self, value: int, bound: int):
        self.value = value
        self.bound = bound
        super().__init__(f"{self.target} {value} is out of range (table length {bound})")


class StringReferenceTooBig(ReferenceTooBigError):
    target = "String reference"


class KeyValTooBig(ReferenceTooBigError):
    target = "Key/value reference"


class ValueReferenceTooBig(ReferenceTooBigError):
    target = "Value reference"


class DicReferenceTooBig(ReferenceTooBigError):
    target = "Dictionary reference"


class VecReferenceTooBig(ReferenceTooBigError):
    target = "Vector reference"

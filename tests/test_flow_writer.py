import io
import struct

import pytest

from flow_data import MAX_ENTITIES, FlowData, FlowDataValue
from flow_errors import (
    DicReferenceTooBig, FlowDataIOError, IndexOverflowError, UnencodableStringError,
)
from flow_reader import read_flow_data
from flow_writer import (
    DEFAULT_SEED_STRINGS, FlowDataWriter, InternTable, flow_data_to_bytes, write_flow_data,
)
from sir0 import read_relocation_offsets


def u16(data, offset):
    return struct.unpack_from('<H', data, offset)[0]


def u32(data, offset):
    return struct.unpack_from('<I', data, offset)[0]


def test_tiny_container_layout(tiny_flow):
    data = flow_data_to_bytes(tiny_flow, seed_strings=())

    assert data[0:4] == b'SIR0'
    assert u32(data, 4) == 16
    assert u32(data, 8) == 96
    assert u32(data, 12) == 0
    # content header
    assert [u32(data, 16 + 4 * i) for i in range(9)] == [
        0x12345678,  # unknown1
        76,          # additional info
        1, 52,       # dictionaries
        1, 60,       # vectors
        84,          # string pointers
        68,          # values
        72,          # key/value pairs
    ]
    # metadata: (count, pointer)
    assert (u32(data, 52), u32(data, 56)) == (1, 80)
    assert (u32(data, 60), u32(data, 64)) == (1, 82)
    # value String("b") -> string id 1; key/value ("a" -> value 0)
    assert (u16(data, 68), u16(data, 70)) == (0, 1)
    assert (u16(data, 72), u16(data, 74)) == (0, 0)
    # additional info
    assert (u16(data, 76), u16(data, 78)) == (0xABCD, 0)
    # first dictionary and vector entries
    assert (u16(data, 80), u16(data, 82)) == (0, 0)
    # string pointers then strings
    assert (u32(data, 84), u32(data, 88)) == (92, 94)
    assert data[92:96] == b'a\x00b\x00'
    # footer and trailer
    assert read_relocation_offsets(data) == [4, 8, 20, 28, 36, 40, 44, 48, 56, 64, 84, 88]
    assert data[96:108] == bytes([4, 4, 12, 8, 8, 4, 4, 4, 8, 8, 20, 4])
    assert data[108:] == bytes(14)


def test_seed_strings_come_first(tiny_flow):
    writer = FlowDataWriter()
    data = writer.to_bytes(tiny_flow)
    strptr = writer.results['strptr_offset']
    assert writer.results['strings'] == len(DEFAULT_SEED_STRINGS) + 2
    first = u32(data, strptr)
    assert data[first:first + 3] == b'in\x00'


def test_string_field_of_additional_info():
    flow = FlowData()
    flow.push_dictionary({'a': FlowDataValue.string('b'), 'c': FlowDataValue.string('d')})
    flow.push_vector([FlowDataValue.string('b')])
    writer = FlowDataWriter()
    data = writer.to_bytes(flow)
    info = writer.results['additional_info_offset']
    assert writer.results['strptr_offset'] == info + 12
    assert u32(data, info + 12) == writer.results['string_data_offset']


def test_round_trip(scenario_flow):
    data = flow_data_to_bytes(scenario_flow)
    decoded = read_flow_data(data)

    assert decoded.dictionaries == scenario_flow.dictionaries
    assert decoded.vectors == scenario_flow.vectors
    assert decoded.unknown1 == 0x10
    assert decoded.unknown2 == 7
    assert decoded.get_idname('SCENE_A') == FlowDataValue.ref_dic(1)


def test_reencoding_is_byte_identical(scenario_flow):
    data = flow_data_to_bytes(scenario_flow)
    assert flow_data_to_bytes(read_flow_data(data)) == data


def test_round_trip_without_vectors():
    flow = FlowData()
    flow.push_dictionary({'only': FlowDataValue.string('dictionary')})
    data = flow_data_to_bytes(flow)
    decoded = read_flow_data(data)
    assert decoded.dictionaries == flow.dictionaries
    assert decoded.vector_len() == 0


def test_round_trip_empty_graph():
    decoded = read_flow_data(flow_data_to_bytes(FlowData(unknown1=3, unknown2=4)))
    assert decoded.dictionary_len() == 0
    assert decoded.vector_len() == 0
    assert (decoded.unknown1, decoded.unknown2) == (3, 4)


def test_identical_dictionaries_are_deduplicated():
    flow = FlowData()
    flow.push_dictionary({'flowtype': FlowDataValue.string('scenario')})
    flow.push_dictionary({'flowtype': FlowDataValue.string('scenario')})
    writer = FlowDataWriter(seed_strings=())
    data = writer.to_bytes(flow)

    assert writer.results['keyvals'] == 1
    assert writer.results['values'] == 1
    info = u32(data, 20)
    values_ptr = u32(data, 44)
    keyvals_ptr = u32(data, 48)
    assert (keyvals_ptr - values_ptr) // 4 == 1
    assert (info - keyvals_ptr) // 4 == 1


def test_relocations_cover_every_pointer(scenario_flow):
    writer = FlowDataWriter()
    data = writer.to_bytes(scenario_flow)
    pointers = read_relocation_offsets(data)
    assert pointers == writer.results['pointers']
    assert pointers == sorted(pointers)
    # every listed slot holds an offset inside the file
    for slot in pointers:
        assert u32(data, slot) < len(data)


def test_encode_does_not_mutate(scenario_flow):
    before = [dict(d) for d in scenario_flow.dictionaries]
    flow_data_to_bytes(scenario_flow)
    assert scenario_flow.dictionaries == before


def test_header_overflow_writes_nothing(tiny_flow):
    tiny_flow.unknown2 = 0x10000
    sink = io.BytesIO()
    with pytest.raises(IndexOverflowError):
        write_flow_data(tiny_flow, sink)
    assert sink.getvalue() == b''


def test_too_many_unique_values():
    table = InternTable("values")
    for i in range(MAX_ENTITIES + 1):
        table.add(i)
    with pytest.raises(IndexOverflowError) as excinfo:
        table.check_size()
    assert excinfo.value.value == MAX_ENTITIES + 1


def test_sink_failure_is_io_error(tiny_flow):
    class BrokenSink:
        def write(self, data):
            raise OSError("disk full")

    with pytest.raises(FlowDataIOError):
        write_flow_data(tiny_flow, BrokenSink())


def test_write_returns_size(tiny_flow):
    sink = io.BytesIO()
    size = write_flow_data(tiny_flow, sink)
    assert size == len(sink.getvalue())


def test_verbose_prints_layout(tiny_flow, capsys):
    FlowDataWriter(verbose=True).to_bytes(tiny_flow)
    out = capsys.readouterr().out
    assert "FLOW DATA LAYOUT" in out
    assert "Relocation footer:" in out


def test_unstorable_key_added_through_mutable_getter(tiny_flow):
    tiny_flow.get_dictionary_mut(0)['x\x00y'] = FlowDataValue.string('z')
    sink = io.BytesIO()
    with pytest.raises(UnencodableStringError):
        write_flow_data(tiny_flow, sink)
    assert sink.getvalue() == b''


def test_dangling_reference_is_caught_on_decode():
    flow = FlowData()
    flow.push_dictionary({'next': FlowDataValue.ref_dic(5)})
    data = flow_data_to_bytes(flow)
    with pytest.raises(DicReferenceTooBig) as excinfo:
        read_flow_data(data)
    assert (excinfo.value.value, excinfo.value.bound) == (5, 1)

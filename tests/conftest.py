import pytest

from flow_data import FlowData, FlowDataValue


@pytest.fixture
def tiny_flow():
    flow = FlowData(unknown1=0x12345678, unknown2=0xABCD)
    flow.push_dictionary({'a': FlowDataValue.string('b')})
    flow.push_vector([FlowDataValue.string('b')])
    return flow


@pytest.fixture
def scenario_flow():
    """Two scenario nodes linked through socket vectors, with a cycle"""
    flow = FlowData(unknown1=0x10, unknown2=7)
    flow.push_dictionary({
        'idname': FlowDataValue.string('$START'),
        'flowtype': FlowDataValue.string('scenario'),
        'socket': FlowDataValue.ref_vec(0),
        'comment': FlowDataValue.string('first'),
    })
    flow.push_dictionary({
        'idname': FlowDataValue.string('SCENE_A'),
        'next': FlowDataValue.ref_dic(0),
        'party': FlowDataValue.ref_vec(1),
        'comment': FlowDataValue.string('ピカチュウ'),
    })
    flow.push_dictionary({
        'in': FlowDataValue.string('start'),
        'out': FlowDataValue.string('SCENE_A'),
    })
    flow.push_vector([FlowDataValue.ref_dic(1), FlowDataValue.string('out')])
    flow.push_vector([
        FlowDataValue.string('hero'),
        FlowDataValue.string('partner'),
        FlowDataValue.ref_dic(0),
    ])
    flow.push_vector([])
    return flow

from flow_data import FlowDataValue
from flow_validate import find_first_difference, validate_round_trip
from flow_writer import flow_data_to_bytes


def test_first_difference():
    assert find_first_difference(b'abc', b'abc') is None
    assert find_first_difference(b'abc', b'abd') == 2
    assert find_first_difference(b'abc', b'abcd') == 3
    assert find_first_difference(b'', b'x') == 0


def test_valid_round_trip(scenario_flow):
    data = flow_data_to_bytes(scenario_flow)
    result = validate_round_trip(data)

    assert result['valid']
    assert result['pointers_match']
    assert result['first_difference'] is None
    assert result['original_size'] == result['rebuilt_size'] == len(data)
    assert result['flow'].get_dictionary(1)['comment'] == FlowDataValue.string('ピカチュウ')


def test_round_trip_with_other_seed_strings(tiny_flow):
    data = flow_data_to_bytes(tiny_flow, seed_strings=())

    assert validate_round_trip(data, seed_strings=())['valid']

    result = validate_round_trip(data)
    assert not result['valid']
    assert not result['pointers_match']
    assert result['rebuilt_size'] > result['original_size']
    assert result['first_difference'] is not None

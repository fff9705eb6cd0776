"""Tests of the granularity mapping policies."""

import pytest

from granulator.ranges import (
    GranularityRange,
    RangeMapper,
    granularity_from,
    granularity_range,
    map_linear,
    map_pivoted,
    middle_granularity,
    round_half_up,
)

HAND_RANGE = GranularityRange(4, 32)
FACE_RANGE = GranularityRange(1, 50)


def test_granularity_range_orders_bounds():
    assert granularity_range((50, 1)) == GranularityRange(1, 50)


@pytest.mark.parametrize('range_', [(1.5, 1.7), (1.7, 1.5), (0.1, 0.9)])
def test_granularity_range_must_contain_an_integer(range_):
    with pytest.raises(ValueError):
        granularity_range(range_)


def test_fractional_bounds_keep_granularities_inside():
    range_ = granularity_range((1.5, 3.7))
    assert granularity_from(0, range_) == 2
    assert granularity_from(99, range_) == 3
    assert granularity_range((2.0, 2.0)) == GranularityRange(2.0, 2.0)
    assert granularity_from(7, (2.0, 2.0)) == 2


def test_middle_granularity():
    assert middle_granularity(FACE_RANGE) == 26
    assert middle_granularity(HAND_RANGE) == 18
    assert middle_granularity((3, 3)) == 3


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2


def test_range_mapper_clamps():
    mapper = RangeMapper((0, 10), (100, 200))
    assert mapper(-5) == 100
    assert mapper(5) == 150
    assert mapper(15) == 200


@pytest.mark.parametrize(
    'relative, expected',
    [
        (-0.5, 32),  # beyond near
        (-0.08, 32),  # at near
        (0.10, 4),  # at far
        (0.5, 4),  # beyond far
    ],
)
def test_map_linear_saturates_at_bounds(relative, expected):
    assert granularity_from(map_linear(relative, -0.08, 0.10, HAND_RANGE), HAND_RANGE) == expected


def test_map_linear_is_monotonically_non_increasing():
    relatives = [-0.2 + i * 0.005 for i in range(100)]
    outputs = [
        granularity_from(map_linear(r, -0.08, 0.10, HAND_RANGE), HAND_RANGE)
        for r in relatives
    ]
    assert all(a >= b for a, b in zip(outputs, outputs[1:]))
    assert all(4 <= g <= 32 for g in outputs)


@pytest.mark.parametrize(
    'near, far', [(0.1, -0.08), (0.05, 0.05), (float('nan'), 0.1), (0.0, 0.0)]
)
def test_map_linear_malformed_bounds_stay_in_range(near, far):
    for relative in (-1.0, -0.05, 0.0, 0.05, 1.0):
        value = map_linear(relative, near, far, HAND_RANGE)
        assert 4 <= granularity_from(value, HAND_RANGE) <= 32


@pytest.mark.parametrize('pivot', [1, 7, 20, 33, 50])
def test_map_pivoted_zero_is_pivot(pivot):
    assert map_pivoted(0.0, 0.05, -0.03, pivot, FACE_RANGE) == pivot


def test_map_pivoted_clamps_pivot_to_range():
    assert map_pivoted(0.0, 0.05, -0.03, 80, FACE_RANGE) == 50
    assert map_pivoted(0.0, 0.05, -0.03, -3, FACE_RANGE) == 1


def test_map_pivoted_segments():
    # halfway to near goes halfway from the pivot to the max
    assert map_pivoted(0.025, 0.05, -0.03, 20, FACE_RANGE) == pytest.approx(35.0)
    # halfway to far goes halfway from the pivot to the min
    assert map_pivoted(-0.015, 0.05, -0.03, 20, FACE_RANGE) == pytest.approx(10.5)
    assert map_pivoted(0.2, 0.05, -0.03, 20, FACE_RANGE) == 50
    assert map_pivoted(-0.2, 0.05, -0.03, 20, FACE_RANGE) == 1


def test_map_pivoted_is_monotonic_toward_near():
    relatives = [-0.06 + i * 0.002 for i in range(60)]
    outputs = [map_pivoted(r, 0.05, -0.03, 20, FACE_RANGE) for r in relatives]
    assert all(a <= b for a, b in zip(outputs, outputs[1:]))


@pytest.mark.parametrize('near, far', [(0.05, 0.05), (-0.01, -0.03), (0.05, 0.02)])
def test_map_pivoted_malformed_bounds_stay_in_range(near, far):
    for relative in (-1.0, -0.02, 0.0, 0.02, 1.0):
        value = map_pivoted(relative, near, far, 20, FACE_RANGE)
        assert 1 <= value <= 50


def test_granularity_from_rounds_and_clamps():
    assert granularity_from(17.5, FACE_RANGE) == 18
    assert granularity_from(-10, FACE_RANGE) == 1
    assert granularity_from(1000, FACE_RANGE) == 50
    assert isinstance(granularity_from(17.5, FACE_RANGE), int)

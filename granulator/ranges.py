"""Range mapping: turning a raw relative reading into a bounded granularity.

All trackers share the same output contract, a ``GranularityRange``, and map their
relative reading into it with one of two policies:

* ``map_linear``: one inverted segment. Readings at (or beyond) the near bound give
  the range maximum, readings at (or beyond) the far bound give the range minimum.
* ``map_pivoted``: two segments joined at ``relative == 0``, which maps to a pivot
  value (typically the granularity the user had when calibrating) instead of the
  middle of the range.

Both are called once per processed frame, so they never raise on bad bounds or bad
readings: they saturate.
"""

import math
from typing import NamedTuple, Tuple, Union

from granulator.util import clamp, is_finite_number


class GranularityRange(NamedTuple):
    min: float
    max: float


DFLT_GRANULARITY_RANGE = GranularityRange(1, 50)

RangeLike = Union[GranularityRange, Tuple[float, float]]


def granularity_range(range_: RangeLike) -> GranularityRange:
    """
    Normalize a ``(min, max)`` pair into a ``GranularityRange``.

    >>> granularity_range((32, 4))
    GranularityRange(min=4, max=32)

    Granularities are integers, so the range must hold at least one:

    >>> granularity_range((1.5, 1.7))
    Traceback (most recent call last):
      ...
    ValueError: Granularity range (1.5, 1.7) contains no integer
    """
    low, high = range_
    if low > high:
        low, high = high, low
    if math.ceil(low) > math.floor(high):
        raise ValueError(f"Granularity range {(low, high)} contains no integer")
    return GranularityRange(low, high)


def middle_granularity(range_: RangeLike) -> int:
    """
    The granularity in the middle of ``range_`` (halves going up).

    >>> middle_granularity((1, 50)), middle_granularity((4, 32))
    (26, 18)
    """
    low, high = granularity_range(range_)
    return granularity_from((low + high) / 2, (low, high))


def round_half_up(x: float) -> int:
    """
    Round to the nearest integer, halves going up (not to even).

    >>> round_half_up(2.5), round_half_up(3.5), round_half_up(-0.5)
    (3, 4, 0)
    """
    return int(math.floor(x + 0.5))


class RangeMapper:
    """
    A callable class that maps values from one range to another.
    Precomputes scaling factors for better performance.

    >>> mapper = RangeMapper((0, 1), (100, 200))
    >>> mapper(0.5)
    150.0
    >>> mapper(-0.1)  # Below range
    100
    >>> mapper(1.5)   # Above range
    200

    A degenerate value range acts as a step at its single point:

    >>> RangeMapper((0.2, 0.2), (0, 1))(0.3)
    1
    """

    def __init__(
        self,
        value_range: Tuple[float, float],
        target_range: Tuple[float, float],
    ):
        """
        Initialize the range mapper with source and target ranges.

        Args:
            value_range: The range of the input value (min, max)
            target_range: The range to map to (min, max)
        """
        self.value_min, self.value_max = value_range
        self.target_min, self.target_max = target_range

        self._value_span = self.value_max - self.value_min
        self._target_span = self.target_max - self.target_min
        self._scale_factor = (
            self._target_span / self._value_span if self._value_span else 0.0
        )

    def __call__(self, value: float) -> float:
        if not self._value_span:
            output = self.target_max if value >= self.value_min else self.target_min
        elif value <= self.value_min:
            output = self.target_min
        elif value >= self.value_max:
            output = self.target_max
        else:
            output = self.target_min + (value - self.value_min) * self._scale_factor

        return output


# -------------------------------------------------------------------------------
# Granularity mapping policies
# -------------------------------------------------------------------------------


def map_linear(
    relative: float, near_bound: float, far_bound: float, range_: RangeLike
) -> float:
    """
    Single-segment inverted linear interpolation: closer gives a higher output.

    ``near_bound`` and ``far_bound`` may be in either numeric order; "beyond" is
    understood along the direction going from near to far.

    >>> r = GranularityRange(4, 32)
    >>> map_linear(-0.08, -0.08, 0.10, r)
    32
    >>> map_linear(0.10, -0.08, 0.10, r)
    4
    >>> round(map_linear(0.01, -0.08, 0.10, r), 6)
    18.0

    Malformed bounds do not raise:

    >>> map_linear(0.0, 0.05, 0.05, r), map_linear(0.1, 0.05, 0.05, r)
    (32, 4)
    >>> map_linear(float('nan'), -0.08, 0.10, r)
    4
    """
    low, high = granularity_range(range_)
    if not is_finite_number(relative):
        return low
    span = far_bound - near_bound
    if not is_finite_number(span) or span == 0:
        # A single bound: everything at or on the near side of it counts as near.
        return high if relative <= near_bound else low
    t = (relative - near_bound) / span
    if t <= 0:
        return high
    if t >= 1:
        return low
    return high - t * (high - low)


def map_pivoted(
    relative: float,
    near_bound: float,
    far_bound: float,
    pivot_value: float,
    range_: RangeLike,
) -> float:
    """
    Two-segment piecewise-linear interpolation anchored at ``relative == 0``.

    ``relative == 0`` maps to ``pivot_value``; moving toward ``near_bound`` goes
    linearly to the range maximum (reached at ``near_bound``), moving toward
    ``far_bound`` goes linearly to the range minimum.

    >>> r = GranularityRange(1, 50)
    >>> map_pivoted(0.0, 0.05, -0.03, 20, r)
    20
    >>> map_pivoted(0.05, 0.05, -0.03, 20, r)
    50.0
    >>> map_pivoted(-0.03, 0.05, -0.03, 20, r)
    1.0
    >>> map_pivoted(0.025, 0.05, -0.03, 20, r)
    35.0
    """
    low, high = granularity_range(range_)
    if not is_finite_number(pivot_value):
        pivot_value = low
    pivot = clamp(pivot_value, low, high)
    if not is_finite_number(relative):
        return low
    if relative == 0:
        return pivot

    direction = near_bound - far_bound
    if not is_finite_number(direction) or direction == 0:
        return pivot

    if (relative > 0) == (direction > 0):
        # Toward near. A near bound at or behind zero saturates immediately.
        t = relative / near_bound if near_bound * direction > 0 else 1.0
        return pivot + clamp(t, 0.0, 1.0) * (high - pivot)
    else:
        t = relative / far_bound if far_bound * direction < 0 else 1.0
        return pivot - clamp(t, 0.0, 1.0) * (pivot - low)


def granularity_from(value: float, range_: RangeLike) -> int:
    """
    Round a mapped value to an integer granularity inside ``range_``.

    >>> granularity_from(31.6, (4, 32)), granularity_from(99, (4, 32))
    (32, 32)
    """
    low, high = granularity_range(range_)
    return int(clamp(round_half_up(value), math.ceil(low), math.floor(high)))

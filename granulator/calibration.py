"""Calibration state shared by all trackers.

A tracker is Uncalibrated until a baseline reading is captured, either manually
(``Calibration.calibrate``) or, for trackers that feed a ``StabilityDetector``,
automatically once the reading has held still long enough. Only an explicit
``reset`` goes back to Uncalibrated.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from enum import Enum
from typing import Callable, NamedTuple, Optional

import numpy as np

from granulator.util import is_finite_number

logger = logging.getLogger(__name__)

DFLT_STABILITY_WINDOW = 10
DFLT_STABILITY_VARIANCE = 1e-5
DFLT_STABILIZATION_SECONDS = 2.0


class CalibrationState(str, Enum):
    UNCALIBRATED = 'uncalibrated'
    STABILIZING = 'stabilizing'
    CALIBRATED = 'calibrated'


class CalibrationRecord(NamedTuple):
    """The reference captured at calibration time.

    ``baseline_value`` is the granularity (depth trackers) or level (audio) that was
    current when calibrating. ``timestamp`` is in seconds of the calibration's clock.
    """

    baseline: float
    baseline_value: Optional[float]
    timestamp: float


class Calibration:
    """
    The calibration state machine of a single tracker.

    >>> c = Calibration(clock=lambda: 12.0)
    >>> c.state
    <CalibrationState.UNCALIBRATED: 'uncalibrated'>
    >>> c.calibrate(0.0)  # a zero reading is not a baseline
    False
    >>> c.calibrate(-0.12, 16)
    True
    >>> c.record
    CalibrationRecord(baseline=-0.12, baseline_value=16, timestamp=12.0)
    >>> c.reset(); c.reset()
    >>> c.is_calibrated, c.record
    (False, None)
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, name: str = ''):
        self._clock = clock
        self.name = name
        self._state = CalibrationState.UNCALIBRATED
        self._record: Optional[CalibrationRecord] = None

    @property
    def state(self) -> CalibrationState:
        return self._state

    @property
    def record(self) -> Optional[CalibrationRecord]:
        return self._record

    @property
    def is_calibrated(self) -> bool:
        return self._state is CalibrationState.CALIBRATED

    @property
    def baseline(self) -> Optional[float]:
        return self._record.baseline if self._record else None

    def calibrate(self, baseline: float, baseline_value: Optional[float] = None) -> bool:
        """Capture ``baseline`` as the reference reading.

        Returns False, changing nothing, if ``baseline`` is zero or not a finite
        number. Calibrating again while calibrated replaces the record.
        """
        if not is_finite_number(baseline) or baseline == 0:
            return False
        self._record = CalibrationRecord(
            float(baseline), baseline_value, self._clock()
        )
        self._state = CalibrationState.CALIBRATED
        logger.info(
            "%s calibrated at %.5f (value %s)", self.name or 'tracker', baseline, baseline_value
        )
        return True

    def begin_stabilizing(self) -> None:
        if self._state is CalibrationState.UNCALIBRATED:
            self._state = CalibrationState.STABILIZING

    def abort_stabilizing(self) -> None:
        if self._state is CalibrationState.STABILIZING:
            self._state = CalibrationState.UNCALIBRATED

    def reset(self) -> None:
        self._record = None
        self._state = CalibrationState.UNCALIBRATED


class StabilityDetector:
    """
    Watches a stream of readings and reports when it has held still long enough.

    Readings go into a rolling window; once the window is full its (population)
    variance is compared to ``max_variance``. The first full, quiet window starts a
    timer; any noisy window, or a ``reset`` (e.g. on detection loss), clears both the
    window and the timer. When the timer reaches ``hold_seconds``, ``update`` returns
    the window mean, which is the baseline to calibrate on.

    Parameters
    ----------
    window : int
        Number of most recent readings kept.
    max_variance : float
        A window with variance below this counts as stable.
    hold_seconds : float
        How long the readings must stay stable before a baseline is reported.
    clock : callable
        Returns the current time in seconds.
    """

    def __init__(
        self,
        window: int = DFLT_STABILITY_WINDOW,
        max_variance: float = DFLT_STABILITY_VARIANCE,
        hold_seconds: float = DFLT_STABILIZATION_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._buffer: deque[float] = deque(maxlen=window)
        self._max_variance = max_variance
        self._hold_seconds = hold_seconds
        self._clock = clock
        self._stable_since: Optional[float] = None

    @property
    def is_stabilizing(self) -> bool:
        """True while a stable streak is being timed."""
        return self._stable_since is not None

    @property
    def mean(self) -> Optional[float]:
        if not self._buffer:
            return None
        return float(np.mean(self._buffer))

    @property
    def variance(self) -> Optional[float]:
        if len(self._buffer) < self._buffer.maxlen:
            return None
        return float(np.var(self._buffer))

    def update(self, reading: float) -> Optional[float]:
        """
        Feed a new reading.

        Returns the baseline (mean of the window) once the readings have been stable
        for ``hold_seconds``, else None.
        """
        if not is_finite_number(reading):
            self.reset()
            return None
        self._buffer.append(float(reading))

        variance = self.variance
        if variance is None:
            return None
        if variance >= self._max_variance:
            self.reset()
            return None

        now = self._clock()
        if self._stable_since is None:
            self._stable_since = now
            return None
        if now - self._stable_since >= self._hold_seconds:
            baseline = self.mean
            self.reset()
            return baseline
        return None

    def reset(self) -> None:
        self._buffer.clear()
        self._stable_since = None

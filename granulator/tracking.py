"""What hand and face depth tracking have in common.

A depth tracker owns one state record (detection flag, last depth, relative depth,
granularity) and one ``Calibration``. ``process`` (defined by subclasses) consumes a
landmark set, updates the record in one go, and returns an immutable snapshot.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from granulator.calibration import Calibration, CalibrationState
from granulator.ranges import (
    DFLT_GRANULARITY_RANGE,
    RangeLike,
    granularity_from,
    granularity_range as to_granularity_range,
)

logger = logging.getLogger(__name__)


class DepthTracker:
    """
    Base of the landmark depth trackers.

    Parameters
    ----------
    granularity_range : (min, max)
        The output contract: every emitted granularity lies in this range.
    current_granularity : int, optional
        The granularity the renderer is currently using. It becomes the pivot (or the
        recorded value) when calibrating; update it as the renderer's value changes.
    clock : callable
        Returns the current time in seconds.
    """

    name = 'depth'

    def __init__(
        self,
        granularity_range: RangeLike = DFLT_GRANULARITY_RANGE,
        *,
        current_granularity: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.granularity_range = to_granularity_range(granularity_range)
        self.current_granularity = current_granularity
        self._clock = clock
        self.calibration = Calibration(clock=clock, name=self.name)
        self._detected = False
        self._depth = 0.0
        self._relative = 0.0
        self._granularity = granularity_from(
            self.granularity_range.min, self.granularity_range
        )
        self._snapshot = None

    # ------------------------------------------------------------------
    @property
    def detected(self) -> bool:
        return self._detected

    @property
    def is_calibrated(self) -> bool:
        return self.calibration.is_calibrated

    @property
    def calibration_state(self) -> CalibrationState:
        return self.calibration.state

    @property
    def current_depth(self) -> float:
        return self._depth

    @property
    def relative_depth(self) -> float:
        return self._relative

    @property
    def granularity(self) -> int:
        return self._granularity

    @property
    def snapshot(self):
        """The last emitted snapshot (None before the first processed frame)."""
        return self._snapshot

    @property
    def min_granularity(self) -> int:
        return granularity_from(self.granularity_range.min, self.granularity_range)

    # ------------------------------------------------------------------
    def _granularity_to_calibrate_on(self, current_granularity=None) -> int:
        value = current_granularity or self.current_granularity or self._granularity
        return granularity_from(value, self.granularity_range)

    def calibrate_depth(self, current_granularity: Optional[int] = None) -> bool:
        """
        Use the depth of the last processed frame as the reference plane.

        Succeeds only if something was detected on that frame and its depth is
        non-zero. The new baseline applies from the next processed frame on.
        """
        if not self._detected or self._depth == 0:
            logger.debug("%s calibration refused: nothing detected", self.name)
            return False
        ok = self.calibration.calibrate(
            self._depth, self._granularity_to_calibrate_on(current_granularity)
        )
        if ok:
            self._relative = 0.0
        return ok

    def reset_calibration(self) -> None:
        """Forget the calibration. Always legal, and idempotent."""
        self.calibration.reset()
        self._relative = 0.0
        self._granularity = self.min_granularity

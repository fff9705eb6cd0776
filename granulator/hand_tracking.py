"""Hand depth tracking: from hand landmarks to a granularity."""

from __future__ import annotations

from typing import NamedTuple, Optional, Sequence

from granulator.ranges import DFLT_GRANULARITY_RANGE, granularity_from, map_linear
from granulator.tracking import DepthTracker
from granulator.util import HandLandmark, N_HAND_LANDMARKS, clamp, mean_depth

# Wrist and the base (MCP) of the four fingers
PALM_INDICES = (
    HandLandmark.WRIST,
    HandLandmark.INDEX_FINGER_MCP,
    HandLandmark.MIDDLE_FINGER_MCP,
    HandLandmark.RING_FINGER_MCP,
    HandLandmark.PINKY_MCP,
)

# Relative depth (depth - baseline) at which granularity saturates.
# Hand z decreases toward the camera, so the near bound is negative.
DFLT_HAND_NEAR_BOUND = -0.08
DFLT_HAND_FAR_BOUND = 0.10
# Relative depth magnitude reported as a normalized depth of 1
DFLT_HAND_NORMALIZATION_SPAN = 0.09


# -------------------------------------------------------------------------------
# Palm depth
# -------------------------------------------------------------------------------


def palm_depth(landmarks: Sequence) -> float:
    """Mean z of the wrist and the four finger bases."""
    return mean_depth(landmarks, PALM_INDICES)


# -------------------------------------------------------------------------------
# Tracker
# -------------------------------------------------------------------------------


class HandSnapshot(NamedTuple):
    hand_detected: bool
    is_calibrated: bool
    relative_depth: float
    normalized_depth: float
    granularity: int
    landmarks: tuple


class HandDepthTracker(DepthTracker):
    """
    Maps the depth of the palm, relative to a manually calibrated reference plane,
    to a granularity: the closer the hand, the higher the granularity.

    Calibration is manual only (``calibrate_depth``) and survives frames where the
    hand is lost.

    >>> from granulator.util import Landmark
    >>> hand = [Landmark(0.5, 0.5, -0.10)] * 21
    >>> tracker = HandDepthTracker((4, 32))
    >>> tracker.process(hand).granularity  # not calibrated: unchanged
    4
    >>> tracker.calibrate_depth()
    True
    >>> tracker.process([Landmark(0.5, 0.5, -0.18)] * 21).granularity
    32
    """

    name = 'hand'

    def __init__(
        self,
        granularity_range=DFLT_GRANULARITY_RANGE,
        *,
        near_bound: float = DFLT_HAND_NEAR_BOUND,
        far_bound: float = DFLT_HAND_FAR_BOUND,
        normalization_span: float = DFLT_HAND_NORMALIZATION_SPAN,
        **kwargs,
    ) -> None:
        super().__init__(granularity_range, **kwargs)
        self.near_bound = near_bound
        self.far_bound = far_bound
        self.normalization_span = normalization_span

    def process(self, landmarks: Optional[Sequence]) -> HandSnapshot:
        """Update the tracker with the landmarks of one frame (None if no hand)."""
        if not landmarks or len(landmarks) < N_HAND_LANDMARKS:
            return self._lost()

        depth = palm_depth(landmarks)
        self._detected = True
        self._depth = depth

        record = self.calibration.record
        if record is not None:
            relative = depth - record.baseline
            self._relative = relative
            self._granularity = granularity_from(
                map_linear(relative, self.near_bound, self.far_bound, self.granularity_range),
                self.granularity_range,
            )
        else:
            self._relative = 0.0

        return self._emit(tuple(landmarks))

    def _lost(self) -> HandSnapshot:
        self._detected = False
        self._relative = 0.0
        self._granularity = self.min_granularity
        return self._emit(())

    def _emit(self, landmarks: tuple) -> HandSnapshot:
        normalized = 0.0
        if self.normalization_span:
            normalized = clamp(-self._relative / self.normalization_span, -1.0, 1.0)
        self._snapshot = HandSnapshot(
            hand_detected=self._detected,
            is_calibrated=self.is_calibrated,
            relative_depth=self._relative,
            normalized_depth=normalized,
            granularity=self._granularity,
            landmarks=landmarks,
        )
        return self._snapshot

"""
Turn hand, face and sound into one control scalar: the "granularity" a visual effect
(an ASCII or pixelation shader, say) uses as its level of detail.

Three trackers, each fed frame by frame:

* ``HandDepthTracker``: the depth of the palm relative to a calibrated plane. The
  closer the hand, the higher the granularity.
* ``FaceDepthTracker``: the depth of the nose relative to a plane calibrated by hand
  or automatically once the face holds still. The granularity pivots around the one
  current at calibration time.
* ``AudioLevelTracker``: the level of the voice, music and noise bands of a spectrum,
  with spikes enhanced. ``audio_granularity`` maps its snapshots to a granularity.

Every call to a tracker's ``process`` returns an immutable snapshot. ``FrameLoop``
(see ``granulator.frame_loop``) runs a tracker at display rate and publishes its
snapshots; ``granulator.sources`` and ``granulator.microphone`` provide the camera,
landmark detectors and microphone it is fed from.

>>> from granulator import HandDepthTracker, Landmark
>>> tracker = HandDepthTracker()
>>> tracker.calibrate_depth()  # no hand seen yet
False
>>> _ = tracker.process([Landmark(0.5, 0.5, -0.1)] * 21)
>>> tracker.calibrate_depth()
True
>>> tracker.process([Landmark(0.5, 0.5, -0.25)] * 21).granularity
50

Run ``granulator --help`` for the command line preview.
"""

from granulator.util import Landmark
from granulator.ranges import (
    DFLT_GRANULARITY_RANGE,
    GranularityRange,
    RangeMapper,
    map_linear,
    map_pivoted,
    middle_granularity,
)
from granulator.calibration import Calibration, CalibrationState, StabilityDetector
from granulator.hand_tracking import HandDepthTracker, HandSnapshot
from granulator.face_tracking import FaceDepthTracker, FaceSnapshot
from granulator.audio import (
    AudioLevelTracker,
    AudioSnapshot,
    CONTENT_TYPE_CODES,
    audio_granularity,
)
from granulator.frame_loop import (
    AcquisitionFailure,
    FrameLoop,
    SnapshotChannel,
    Throttle,
    audio_loop,
    landmark_loop,
)

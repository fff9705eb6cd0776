"""Face depth tracking: from face mesh landmarks to a per-region depth map and a
granularity.

Unlike the hand, the face calibrates itself: when the nose depth has held still for
a couple of seconds, that depth becomes the reference plane, with the renderer's
current granularity as the pivot of the mapping.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional, Sequence

import numpy as np

from granulator.calibration import (
    DFLT_STABILITY_VARIANCE,
    DFLT_STABILITY_WINDOW,
    DFLT_STABILIZATION_SECONDS,
    StabilityDetector,
)
from granulator.ranges import DFLT_GRANULARITY_RANGE, granularity_from, map_pivoted
from granulator.tracking import DepthTracker
from granulator.util import N_FACE_LANDMARKS, clamp, mean_depth

logger = logging.getLogger(__name__)

# Central nose points: the most stable depth reading of the face mesh
NOSE_DEPTH_INDICES = (1, 2, 5, 6, 19, 20)

# Face mesh indices of each depth region
FACE_REGIONS = MappingProxyType(
    {
        'noseTip': (
            1, 2, 5, 6, 19, 20, 94, 125, 141, 235, 236, 237, 238, 239, 240, 241, 242,
        ),
        'forehead': (
            9, 10, 151, 337, 299, 333, 298, 301, 284, 251, 389, 356, 454, 323, 361, 340,
        ),
        'leftCheek': (
            116, 117, 118, 119, 120, 121, 126, 142, 36, 205, 206, 207, 213, 192, 147,
        ),
        'rightCheek': (
            345, 346, 347, 348, 349, 350, 355, 371, 266, 425, 426, 427, 436, 416, 376,
        ),
        'chin': (
            18, 175, 199, 200, 398, 399, 172, 136, 150, 149, 176, 148, 152, 377, 400,
            378, 379, 365,
        ),
        'leftEye': (
            33, 7, 163, 144, 145, 153, 154, 155, 133, 173, 157, 158, 159, 160, 161, 246,
        ),
        'rightEye': (
            362, 382, 381, 380, 374, 373, 390, 249, 263, 466, 388, 387, 386, 385, 384,
            398,
        ),
        'mouth': (
            61, 84, 17, 314, 405, 320, 307, 375, 321, 308, 324, 318, 78, 191, 80, 81, 82,
        ),
        'leftTemple': (
            21, 54, 103, 67, 109, 10, 151, 9, 162, 127, 234, 93, 132, 58, 172, 136,
        ),
        'rightTemple': (
            251, 284, 332, 297, 338, 299, 333, 298, 301, 368, 264, 356, 454, 323, 361,
            340,
        ),
    }
)

# Landmarks sampled for the face filter depth texture, with their weights
TEXTURE_KEY_LANDMARKS = (
    (1, 2.0),  # nose tip
    (2, 1.5),  # nose bridge
    (19, 1.5),
    (94, 1.0),  # nose sides
    (125, 1.0),
    (33, 1.0),  # eyes
    (133, 1.0),
    (362, 1.0),
    (263, 1.0),
    (117, 0.8),  # cheeks
    (346, 0.8),
    (10, 0.6),  # forehead
    (151, 0.6),
    (175, 0.7),  # chin
    (199, 0.7),
)

DFLT_TEXTURE_SIZE = 64
TEXTURE_FALLOFF = 8.0
TEXTURE_MIN_WEIGHT = 0.01
TEXTURE_BACKGROUND_DEPTH = 1.0

# Relative depth (baseline - depth) at which granularity saturates.
# Positive means closer to the camera.
DFLT_FACE_NEAR_BOUND = 0.05
DFLT_FACE_FAR_BOUND = -0.03
DFLT_FACE_NORMALIZATION_SPAN = 0.04


# -------------------------------------------------------------------------------
# Depth features
# -------------------------------------------------------------------------------


def face_depth(landmarks: Sequence) -> float:
    """The depth used for calibration: mean z of the central nose points."""
    return mean_depth(landmarks, NOSE_DEPTH_INDICES)


def region_depths(landmarks: Sequence) -> Mapping[str, float]:
    """
    Mean depth of each face region, plus the aliases ``nose`` (the nose tip) and
    ``cheeks`` (mean of both cheeks). Read-only.
    """
    depths = {
        region: mean_depth(landmarks, indices)
        for region, indices in FACE_REGIONS.items()
    }
    depths['nose'] = depths['noseTip']
    depths['cheeks'] = (depths['leftCheek'] + depths['rightCheek']) / 2
    return MappingProxyType(depths)


class LandmarkTexture(NamedTuple):
    depth_texture: np.ndarray  # (texture_size, texture_size), read-only
    texture_size: int
    landmark_count: int


def landmark_texture(
    landmarks: Sequence, texture_size: int = DFLT_TEXTURE_SIZE
) -> LandmarkTexture:
    """
    A square depth texture interpolated from a few key landmarks.

    Each texel takes the weighted mean depth of the key landmarks, weights falling
    off exponentially with the UV distance to the landmark; texels that no landmark
    reaches keep the background depth. Depths are clamped to [0, 1].
    """
    axis = np.linspace(0.0, 1.0, texture_size)
    u, v = np.meshgrid(axis, axis)  # v varies along rows

    weighted = np.zeros_like(u)
    total = np.zeros_like(u)
    for index, weight in TEXTURE_KEY_LANDMARKS:
        if index >= len(landmarks):
            continue
        lm = landmarks[index]
        distance = np.hypot(u - lm.x, v - (1.0 - lm.y))
        w = weight * np.exp(-distance * TEXTURE_FALLOFF)
        w = np.where(w > TEXTURE_MIN_WEIGHT, w, 0.0)
        weighted += lm.z * w
        total += w

    texture = np.full_like(u, TEXTURE_BACKGROUND_DEPTH, dtype=np.float32)
    reached = total > 0
    texture[reached] = np.clip(weighted[reached] / total[reached], 0.0, 1.0)
    texture.flags.writeable = False
    return LandmarkTexture(texture, texture_size, len(landmarks))


# -------------------------------------------------------------------------------
# Tracker
# -------------------------------------------------------------------------------


class FaceSnapshot(NamedTuple):
    face_detected: bool
    is_calibrated: bool
    relative_depth: float
    normalized_depth: float
    granularity: int
    landmarks: tuple
    depth_map: Optional[Mapping[str, float]]
    landmark_texture: Optional[LandmarkTexture] = None
    calibration_state: str = 'uncalibrated'


class FaceDepthTracker(DepthTracker):
    """
    Maps the nose depth, relative to a reference plane, to a granularity with a
    pivoted mapping: at the reference plane the granularity is the one current when
    calibrating, closer goes up to the maximum, further down to the minimum.

    The reference plane is set manually (``calibrate_depth``) or automatically once
    the face has held still for ``stabilization_seconds``. Losing the face only
    interrupts automatic calibration; it never clears an existing calibration.

    In ``face_filter_mode`` the tracker only reports landmarks, depth map and a depth
    texture: no calibration, no granularity mapping.
    """

    name = 'face'

    def __init__(
        self,
        granularity_range=DFLT_GRANULARITY_RANGE,
        *,
        near_bound: float = DFLT_FACE_NEAR_BOUND,
        far_bound: float = DFLT_FACE_FAR_BOUND,
        normalization_span: float = DFLT_FACE_NORMALIZATION_SPAN,
        stability_window: int = DFLT_STABILITY_WINDOW,
        stability_variance: float = DFLT_STABILITY_VARIANCE,
        stabilization_seconds: float = DFLT_STABILIZATION_SECONDS,
        auto_calibrate: bool = True,
        face_filter_mode: bool = False,
        texture_size: int = DFLT_TEXTURE_SIZE,
        **kwargs,
    ) -> None:
        super().__init__(granularity_range, **kwargs)
        self.near_bound = near_bound
        self.far_bound = far_bound
        self.normalization_span = normalization_span
        self.auto_calibrate = auto_calibrate
        self.face_filter_mode = face_filter_mode
        self.texture_size = texture_size
        self.stability = StabilityDetector(
            stability_window,
            stability_variance,
            stabilization_seconds,
            clock=self._clock,
        )
        self._depth_map = None
        self._texture = None

    @property
    def depth_map(self) -> Optional[Mapping[str, float]]:
        return self._depth_map

    @property
    def landmark_texture(self) -> Optional[LandmarkTexture]:
        return self._texture

    def process(self, landmarks: Optional[Sequence]) -> FaceSnapshot:
        """Update the tracker with the landmarks of one frame (None if no face)."""
        if not landmarks or len(landmarks) < N_FACE_LANDMARKS:
            return self._lost()

        depth = face_depth(landmarks)
        self._detected = True
        self._depth = depth
        self._depth_map = region_depths(landmarks)
        self._texture = (
            landmark_texture(landmarks, self.texture_size)
            if self.face_filter_mode
            else None
        )

        if self.face_filter_mode:
            self._relative = 0.0
            self._granularity = self.min_granularity
            return self._emit(tuple(landmarks))

        if self.auto_calibrate:
            self._check_stability(depth)

        record = self.calibration.record
        if record is not None:
            relative = record.baseline - depth
            self._relative = relative
            pivot = record.baseline_value
            if pivot is None:
                pivot = self.min_granularity
            self._granularity = granularity_from(
                map_pivoted(
                    relative,
                    self.near_bound,
                    self.far_bound,
                    pivot,
                    self.granularity_range,
                ),
                self.granularity_range,
            )
        else:
            self._relative = 0.0
            self._granularity = self.min_granularity

        return self._emit(tuple(landmarks))

    def _check_stability(self, depth: float) -> None:
        if self.calibration.is_calibrated:
            return
        baseline = self.stability.update(depth)
        if baseline is not None:
            if self.calibration.calibrate(baseline, self._granularity_to_calibrate_on()):
                logger.info("Face depth auto-calibrated at %.5f", baseline)
            else:
                self.calibration.abort_stabilizing()
        elif self.stability.is_stabilizing:
            self.calibration.begin_stabilizing()
        else:
            self.calibration.abort_stabilizing()

    def _lost(self) -> FaceSnapshot:
        self.stability.reset()
        self.calibration.abort_stabilizing()
        self._detected = False
        self._relative = 0.0
        self._granularity = self.min_granularity
        self._depth_map = None
        self._texture = None
        return self._emit(())

    def _emit(self, landmarks: tuple) -> FaceSnapshot:
        normalized = 0.0
        if self.normalization_span:
            normalized = clamp(self._relative / self.normalization_span, -1.0, 1.0)
        self._snapshot = FaceSnapshot(
            face_detected=self._detected,
            is_calibrated=self.is_calibrated,
            relative_depth=self._relative,
            normalized_depth=normalized,
            granularity=self._granularity,
            landmarks=landmarks,
            depth_map=self._depth_map,
            landmark_texture=self._texture,
            calibration_state=self.calibration.state.value,
        )
        return self._snapshot

    def calibrate_depth(self, current_granularity: Optional[int] = None) -> bool:
        ok = super().calibrate_depth(current_granularity)
        if ok:
            self.stability.reset()
        return ok

    def reset_calibration(self) -> None:
        super().reset_calibration()
        self.stability.reset()
        self._depth_map = None
        self._texture = None

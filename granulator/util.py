"""Utils for granulator."""

import math
from importlib.resources import files
from typing import Iterable, NamedTuple, Sequence

pkg_name = 'granulator'
data_files = files(pkg_name) / 'data'


def return_none(*args, **kwargs):
    """
    An empty function that returns None no matter the arguments.
    Often used as a "do nothing" general callback function.
    """
    return None


# --------------------------------------------------------------------------------------
# Landmarks


class Landmark(NamedTuple):
    """A single 3D landmark, as produced by a landmark detector.

    Coordinates are normalized to the image (x, y in [0, 1]); z is relative depth,
    smaller meaning closer to the camera.
    """

    x: float
    y: float
    z: float
    confidence: float = 1.0


class HandLandmark:
    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_FINGER_MCP = 5
    INDEX_FINGER_PIP = 6
    INDEX_FINGER_DIP = 7
    INDEX_FINGER_TIP = 8
    MIDDLE_FINGER_MCP = 9
    MIDDLE_FINGER_PIP = 10
    MIDDLE_FINGER_DIP = 11
    MIDDLE_FINGER_TIP = 12
    RING_FINGER_MCP = 13
    RING_FINGER_PIP = 14
    RING_FINGER_DIP = 15
    RING_FINGER_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


N_HAND_LANDMARKS = 21
N_FACE_LANDMARKS = 468

HAND_CONNECTIONS = (
    (0, 1), (1, 2), (2, 3), (3, 4),  # thumb
    (0, 5), (5, 6), (6, 7), (7, 8),  # index
    (0, 9), (9, 10), (10, 11), (11, 12),  # middle
    (0, 13), (13, 14), (14, 15), (15, 16),  # ring
    (0, 17), (17, 18), (18, 19), (19, 20),  # pinky
)


def mean_depth(landmarks: Sequence, indices: Iterable[int]) -> float:
    """
    Mean z of the landmarks at the given indices.

    Indices that fall outside ``landmarks`` are skipped; if none remain, 0.0.

    >>> lms = [Landmark(0, 0, -0.1), Landmark(0, 0, -0.3), Landmark(0, 0, 0.5)]
    >>> round(mean_depth(lms, [0, 1]), 6)
    -0.2
    >>> mean_depth(lms, [7, 8])
    0.0
    """
    zs = [landmarks[i].z for i in indices if 0 <= i < len(landmarks)]
    if not zs:
        return 0.0
    return sum(zs) / len(zs)


def as_landmarks(points) -> list:
    """Convert anything with ``x, y, z`` attributes (e.g. MediaPipe
    NormalizedLandmark) to a list of ``Landmark``."""
    out = []
    for p in points:
        confidence = getattr(p, 'visibility', None)
        if confidence is None:
            confidence = getattr(p, 'confidence', 1.0)
        out.append(Landmark(float(p.x), float(p.y), float(p.z), float(confidence or 1.0)))
    return out


# --------------------------------------------------------------------------------------
# Numbers


def clamp(value, low, high):
    """
    Clamp ``value`` to ``[low, high]``.

    >>> clamp(5, 0, 1)
    1
    >>> clamp(-0.5, 0, 1)
    0
    """
    return max(low, min(high, value))


def is_finite_number(x) -> bool:
    try:
        return math.isfinite(x)
    except TypeError:
        return False

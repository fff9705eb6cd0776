"""Display utilities for the granulator preview."""

import cv2
import numpy as np
from typing import Union, Tuple, Dict, Optional, Callable, Mapping, Sequence

from granulator.ranges import DFLT_GRANULARITY_RANGE, RangeLike, granularity_range
from granulator.util import HAND_CONNECTIONS, HandLandmark, clamp

# -------------------------------------------------------------------------------
# Types
# -------------------------------------------------------------------------------

Color = Union[Tuple[int, int, int], Tuple[int, int, int, int]]  # BGR or BGRA

# Snapshot fields that are not scalars, and therefore not listed as text
NON_SCALAR_FIELDS = frozenset({'landmarks', 'depth_map', 'landmark_texture'})

# -------------------------------------------------------------------------------
# Snapshot features
# -------------------------------------------------------------------------------


def snapshot_features(snapshot, *, prefix: str = '') -> Dict[str, object]:
    """
    The scalar fields of a tracker snapshot, as a dict to display.

    >>> from granulator.hand_tracking import HandSnapshot
    >>> snapshot = HandSnapshot(True, False, 0.0, 0.0, 1, ())
    >>> features = snapshot_features(snapshot, prefix='hand ')
    >>> features['hand granularity'], 'hand landmarks' in features
    (1, False)
    """
    if snapshot is None:
        return {}
    return {
        f"{prefix}{k}": v
        for k, v in snapshot._asdict().items()
        if k not in NON_SCALAR_FIELDS
    }


# -------------------------------------------------------------------------------
# Screen drawing functions
# -------------------------------------------------------------------------------


def _format_value(value, float_format: str) -> str:
    if isinstance(value, float):
        return f"{value:{float_format}}"
    return str(value)


def display_features_on_image(
    img: np.ndarray,
    features: dict,
    *,
    font=cv2.FONT_HERSHEY_SIMPLEX,
    font_scale: float = 0.6,
    color: Color = (0, 255, 0),
    thickness: float = 1,
    float_format: str = ".3f",
    x_pos=10,
    y_pos=30,
    y_increment=24,
    bg_color: Color = (
        150,
        150,
        150,
        128,
    ),  # Light grey, semi-transparent (BGR + alpha)
):
    """
    Display features on the image with a semi-transparent background.

    Args:
        img: The image to draw on
        features: Dictionary of features (names to values)
        font: Font type to use
        font_scale: Size of the font
        color: Text color in BGR format
        thickness: Line thickness of text
        float_format: Format string for float values
        x_pos: Starting x position for text
        y_pos: Starting y position for text
        y_increment: Vertical space between lines
        bg_color: Background color (BGR + alpha) where alpha is 0-255
    """
    if not features:
        return img

    lines = [f"{k}: {_format_value(v, float_format)}" for k, v in features.items()]

    # Create an overlay for the background
    overlay = img.copy()

    # Process bg_color to separate BGR and alpha
    if len(bg_color) == 4:
        bg_rgb = bg_color[:3]
        alpha = bg_color[3] / 255.0  # Convert to 0-1 range
    else:
        bg_rgb = bg_color
        alpha = 0.5  # Default alpha

    padding = 5  # Padding around the text
    for idx, text in enumerate(lines):
        (text_width, text_height), _ = cv2.getTextSize(
            text, font, font_scale, thickness
        )
        cv2.rectangle(
            overlay,
            (x_pos - padding, y_pos + idx * y_increment - text_height - padding),
            (x_pos + text_width + padding, y_pos + idx * y_increment + padding),
            bg_rgb,
            -1,  # Filled rectangle
        )

    # Apply the overlay with transparency
    cv2.addWeighted(overlay, alpha, img, 1 - alpha, 0, img)

    # Draw text on top
    for idx, text in enumerate(lines):
        cv2.putText(
            img,
            text,
            (x_pos, y_pos + idx * y_increment),
            font,
            font_scale,
            color,
            thickness,
        )

    return img


def _to_pixel(landmark, w: int, h: int) -> Tuple[int, int]:
    return int(landmark.x * w), int(landmark.y * h)


def draw_landmarks(
    img: np.ndarray,
    landmarks: Sequence,
    *,
    connections: Optional[Sequence[Tuple[int, int]]] = HAND_CONNECTIONS,
    point_color: Color = (0, 0, 255),
    line_color: Color = (255, 255, 255),
    radius: int = 2,
):
    """
    Draw landmarks (normalized image coordinates) and the connections between them.
    """
    if not landmarks:
        return img
    h, w = img.shape[:2]
    if connections:
        for start, end in connections:
            if start < len(landmarks) and end < len(landmarks):
                cv2.line(
                    img,
                    _to_pixel(landmarks[start], w, h),
                    _to_pixel(landmarks[end], w, h),
                    line_color,
                    1,
                )
    for landmark in landmarks:
        cv2.circle(img, _to_pixel(landmark, w, h), radius, point_color, -1)
    return img


def draw_wrist_lines(img: np.ndarray, landmarks: Sequence, color: Color = (0, 255, 0)):
    """
    Draws vertical and horizontal lines from the edges of the image to the wrist position.
    """
    if not landmarks:
        return img
    h, w = img.shape[:2]
    cx, cy = _to_pixel(landmarks[HandLandmark.WRIST], w, h)
    cv2.line(img, (cx, 0), (cx, h), color, 2)
    cv2.line(img, (0, cy), (w, cy), color, 2)
    return img


def draw_granularity_bar(
    img: np.ndarray,
    granularity: Optional[float],
    granularity_range_: RangeLike = DFLT_GRANULARITY_RANGE,
    *,
    width: int = 20,
    margin: int = 10,
    color: Color = (0, 200, 255),
    frame_color: Color = (255, 255, 255),
):
    """
    Draw a vertical gauge of the granularity on the right edge of the image.
    """
    if granularity is None:
        return img
    low, high = granularity_range(granularity_range_)
    h, w = img.shape[:2]
    x1, x2 = w - margin - width, w - margin
    y1, y2 = margin, h - margin
    fraction = clamp((granularity - low) / (high - low), 0.0, 1.0) if high > low else 1.0
    level_y = int(y2 - fraction * (y2 - y1))
    cv2.rectangle(img, (x1, level_y), (x2, y2), color, -1)
    cv2.rectangle(img, (x1, y1), (x2, y2), frame_color, 1)
    cv2.putText(
        img,
        str(int(granularity)),
        (x1 - 5, max(level_y - 5, 15)),
        cv2.FONT_HERSHEY_SIMPLEX,
        0.5,
        frame_color,
        1,
    )
    return img


def draw_on_screen(
    img: np.ndarray,
    snapshots: Mapping[str, object],
    granularity: Optional[float] = None,
    *,
    granularity_range_: RangeLike = DFLT_GRANULARITY_RANGE,
    draw_landmarks_: bool = True,
    draw_features: Optional[Callable] = display_features_on_image,
):
    """
    Draw the landmarks, features and granularity of the trackers' snapshots.

    Args:
        img: The input image
        snapshots: Latest snapshot of each tracker, keyed by tracker name
        granularity: The granularity driving the effect (drawn as a gauge)
        granularity_range_: The range the gauge spans
        draw_landmarks_: Whether to draw hand and face landmarks
        draw_features: Function to draw the snapshot features (or None to skip)

    Returns:
        img: The image with visualizations added
    """
    if draw_landmarks_:
        hand = snapshots.get('hand')
        if hand is not None and hand.landmarks:
            img = draw_landmarks(img, hand.landmarks)
            img = draw_wrist_lines(img, hand.landmarks)
        face = snapshots.get('face')
        if face is not None and face.landmarks:
            img = draw_landmarks(
                img, face.landmarks, connections=None, point_color=(255, 200, 0), radius=1
            )

    if draw_features:
        features = {}
        for name, snapshot in snapshots.items():
            features.update(snapshot_features(snapshot, prefix=f"{name} "))
        img = draw_features(img, features)

    return draw_granularity_bar(img, granularity, granularity_range_)

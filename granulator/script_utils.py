"""Utility functions for running the granulator scripts."""

import asyncio
import contextlib
import json
import logging
import time
from functools import partial
from typing import Any, Callable, Dict, Iterable, Optional, TypeVar, Union

import cv2
import numpy as np

from granulator.audio import AudioLevelTracker, DFLT_SENSITIVITY, audio_granularity
from granulator.display import draw_on_screen as DFLT_DRAW_ON_SCREEN, snapshot_features
from granulator.face_tracking import FaceDepthTracker
from granulator.frame_loop import (
    DFLT_FACE_THROTTLE,
    DFLT_HAND_THROTTLE,
    AcquisitionFailure,
    FrameLoop,
    audio_loop,
    landmark_loop,
)
from granulator.hand_tracking import HandDepthTracker
from granulator.microphone import open_microphone
from granulator.ranges import DFLT_GRANULARITY_RANGE, RangeLike, middle_granularity
from granulator.sources import (
    CameraReadError,
    LatestFrame,
    landmark_detectors,
    open_camera,
    read_camera,
)
from granulator.util import return_none as do_nothing

logger = logging.getLogger(__name__)

# -------------------------------------------------------------------------------
# Object resolution
# -------------------------------------------------------------------------------

T = TypeVar('T')


def resolve_object(
    obj: Union[str, T],
    *,
    object_map: Dict[str, T],
    expected_type: type = None,
    error_message: str = None,
) -> T:
    """
    Resolves an object by either returning it directly if it's of the correct type,
    or looking it up in a mapping if it's a string.

    Args:
        obj: The object to resolve. Can be a string (to be looked up in object_map)
             or the object itself (if it's already of type T).
        object_map: A dictionary mapping strings to objects of type T.
        expected_type: (Optional) The expected type of the resolved object.
        error_message: (Optional) A custom error message to use if a ValueError
                       or TypeError is raised. If None, a default message is used.

    Raises:
        TypeError: If obj is not a string or of the expected type.
        ValueError: If obj is a string but is not found in object_map.
    """
    if isinstance(obj, str):
        if obj in object_map:
            resolved_obj = object_map[obj]
        else:
            msg = error_message or f"Unknown object identifier: {obj}"
            raise ValueError(msg)
    elif expected_type is None or isinstance(obj, expected_type):
        resolved_obj = obj
    else:
        msg = error_message or f"Expected type {expected_type}, got {type(obj)}"
        raise TypeError(msg)

    if expected_type and not isinstance(resolved_obj, expected_type):
        msg = (
            error_message
            or f"Resolved object should be of type {expected_type}, got {type(resolved_obj)}"
        )
        raise TypeError(msg)

    return resolved_obj


# -------------------------------------------------------------------------------
# Trackers
# -------------------------------------------------------------------------------

tracker_factories = {
    'hand': HandDepthTracker,
    'face': FaceDepthTracker,
    'audio': AudioLevelTracker,
}

LANDMARK_TRACKERS = ('hand', 'face')

landmark_throttles = {
    'hand': DFLT_HAND_THROTTLE,
    'face': DFLT_FACE_THROTTLE,
}


def make_trackers(
    names: Iterable[str],
    *,
    granularity_range: RangeLike = DFLT_GRANULARITY_RANGE,
    face_filter_mode: bool = False,
    sensitivity: float = DFLT_SENSITIVITY,
) -> Dict[str, Any]:
    """Make the named trackers, keyed by name (in the order given)."""
    trackers = {}
    for name in names:
        factory = resolve_object(
            name,
            object_map=tracker_factories,
            error_message=f"Unknown tracker: {name}. Choose from {list(tracker_factories)}",
        )
        if name == 'audio':
            trackers[name] = factory(sensitivity=sensitivity)
        elif name == 'face':
            trackers[name] = factory(granularity_range, face_filter_mode=face_filter_mode)
        else:
            trackers[name] = factory(granularity_range)
    return trackers


def make_loop(
    name: str,
    tracker,
    frame_source: Callable[[], Any],
    *,
    hand_model_path: Optional[str] = None,
    face_model_path: Optional[str] = None,
) -> FrameLoop:
    """The frame loop feeding the ``name`` tracker."""
    if name == 'audio':
        return audio_loop(tracker, open_microphone)
    detector_cls = resolve_object(
        name,
        object_map=landmark_detectors,
        error_message=f"Unknown tracker: {name}",
    )
    model_path = hand_model_path if name == 'hand' else face_model_path
    return landmark_loop(
        tracker,
        partial(detector_cls, model_path),
        frame_source,
        throttle=landmark_throttles[name],
    )


def calibration_granularity(
    name: str, snapshot, granularity_range: RangeLike = DFLT_GRANULARITY_RANGE
) -> int:
    """
    The granularity the trackers should calibrate on, given the last snapshot of
    the ``name`` tracker driving the display.

    That is the displayed granularity, unless the driver is an uncalibrated depth
    tracker (whose granularity is stuck at the minimum) or has no snapshot yet, in
    which case it's the middle of the range.
    """
    granularity = granularity_of(name, snapshot, granularity_range)
    if granularity is None or (name in LANDMARK_TRACKERS and not snapshot.is_calibrated):
        return middle_granularity(granularity_range)
    return granularity


def set_current_granularity(trackers: Dict[str, Any], granularity: int) -> None:
    """Tell the depth trackers which granularity the display currently uses."""
    for name, tracker in trackers.items():
        if name in LANDMARK_TRACKERS:
            tracker.current_granularity = granularity


def calibrate_trackers(
    trackers: Dict[str, Any], current_granularity: Optional[int] = None
) -> Dict[str, bool]:
    """
    Calibrate all trackers on their current signal. Returns which succeeded.

    Depth trackers take ``current_granularity`` as the granularity of their reference
    plane (the middle of their range if not given).
    """
    results = {}
    for name, tracker in trackers.items():
        if name == 'audio':
            results[name] = tracker.calibrate_audio()
        else:
            if current_granularity is None:
                granularity = middle_granularity(tracker.granularity_range)
            else:
                granularity = current_granularity
            results[name] = tracker.calibrate_depth(granularity)
    return results


def reset_trackers(trackers: Dict[str, Any]) -> None:
    for tracker in trackers.values():
        tracker.reset_calibration()


def granularity_of(
    name: str, snapshot, granularity_range: RangeLike = DFLT_GRANULARITY_RANGE
) -> Optional[int]:
    """The granularity a snapshot of the ``name`` tracker asks for (None if no snapshot)."""
    if snapshot is None:
        return None
    if name == 'audio':
        return audio_granularity(snapshot, granularity_range)
    return snapshot.granularity


# -------------------------------------------------------------------------------
# Logging utilities
# -------------------------------------------------------------------------------


def print_json_if_possible(x):
    """Prints the input (as json, if it can be) and adds a newline."""
    try:
        x = json.dumps(x)
    except (TypeError, ValueError):
        pass
    print(x)
    print()


# -------------------------------------------------------------------------------
# Keyboard handling functions
# -------------------------------------------------------------------------------

ESCAPE_KEY_ASCII = 27
BREAK_KEYS = {ESCAPE_KEY_ASCII, ord('q')}
CALIBRATE_KEYS = {ord('c')}
RESET_KEYS = {ord('r')}


class KeyboardBreakSignal(Exception):
    """Exception raised when a break key is pressed."""

    pass


def read_keyboard(wait_time: int = 1) -> int:
    """
    Read keyboard input with the specified wait time (in milliseconds).

    Returns:
        The key code or 0 if no key was pressed
    """
    key = cv2.waitKey(wait_time)
    return 0 if key < 0 else key & 0xFF


def keyboard_feature_vector(key_code: int) -> Dict[str, Any]:
    """
    Convert a key code into a feature vector with keyboard information.

    Raises:
        KeyboardBreakSignal: If a key that signals program termination is pressed
    """
    keyboard_fv = {
        'key_code': key_code,
        'key_pressed': key_code > 0,
        'is_escape': key_code == ESCAPE_KEY_ASCII,
        'calibrate': key_code in CALIBRATE_KEYS,
        'reset': key_code in RESET_KEYS,
        'timestamp': time.time(),
    }

    if keyboard_fv['key_code'] in BREAK_KEYS:
        raise KeyboardBreakSignal(f"Break key pressed: {key_code}")

    return keyboard_fv


# -------------------------------------------------------------------------------
# Main run function
# -------------------------------------------------------------------------------

DFLT_TRACKERS = ('hand',)
DFLT_WINDOW_NAME = 'Granulator'
BLANK_FRAME_SHAPE = (480, 640, 3)


async def run_granulator_async(
    *,
    trackers: Iterable[str] = DFLT_TRACKERS,
    camera_index: int = 0,
    granularity_range: RangeLike = DFLT_GRANULARITY_RANGE,
    face_filter_mode: bool = False,
    sensitivity: float = DFLT_SENSITIVITY,
    hand_model_path: Optional[str] = None,
    face_model_path: Optional[str] = None,
    log_snapshots: Optional[Callable] = None,
    window_name: str = DFLT_WINDOW_NAME,
    draw_on_screen: Optional[Callable] = DFLT_DRAW_ON_SCREEN,
):
    """
    Run the trackers, each in its own frame loop, and preview their snapshots.

    The first tracker drives the displayed granularity. Keys: ``c`` calibrates all
    trackers, ``r`` resets their calibration, ``ESC`` or ``q`` quits.
    """
    trackers = make_trackers(
        trackers,
        granularity_range=granularity_range,
        face_filter_mode=face_filter_mode,
        sensitivity=sensitivity,
    )
    if not trackers:
        raise ValueError("No trackers to run")
    driver = next(iter(trackers))
    log_snapshots = log_snapshots or do_nothing

    latest_frame = LatestFrame()
    loops = {
        name: make_loop(
            name,
            tracker,
            latest_frame,
            hand_model_path=hand_model_path,
            face_model_path=face_model_path,
        )
        for name, tracker in trackers.items()
    }

    with contextlib.ExitStack() as stack:
        cap = None
        if any(name in LANDMARK_TRACKERS for name in trackers):
            cap = stack.enter_context(open_camera(camera_index))

        for name, loop in loops.items():
            try:
                await loop.enable()
            except AcquisitionFailure as e:
                print(f"Could not start the {name} tracker: {e}")
            else:
                stack.callback(loop.disable)
        stack.callback(cv2.destroyAllWindows)

        running = {name: loop for name, loop in loops.items() if loop.is_running}
        if not running:
            print("No tracker could be started.")
            return
        print(f"\nRunning trackers: {list(running)} (granularity driven by {driver})\n")

        snapshots = {}
        pivot = middle_granularity(granularity_range)
        set_current_granularity(trackers, pivot)
        while True:
            try:
                keyboard_fv = keyboard_feature_vector(read_keyboard())
                if keyboard_fv['calibrate']:
                    print(f"Calibration: {calibrate_trackers(trackers, pivot)}")
                elif keyboard_fv['reset']:
                    reset_trackers(trackers)
                    print("Calibration reset")

                if cap is not None:
                    img = await asyncio.to_thread(read_camera, cap)
                    latest_frame.set(img)
                    img = img.copy()
                else:
                    img = np.zeros(BLANK_FRAME_SHAPE, dtype=np.uint8)
                    await asyncio.sleep(1 / 60)

                for name, loop in running.items():
                    snapshot = loop.channel.poll()
                    if snapshot is not None:
                        snapshots[name] = snapshot
                        log_snapshots(snapshot_features(snapshot, prefix=f"{name} "))

                granularity = granularity_of(
                    driver, snapshots.get(driver), granularity_range
                )
                pivot = calibration_granularity(
                    driver, snapshots.get(driver), granularity_range
                )
                set_current_granularity(trackers, pivot)
                if draw_on_screen:
                    img = draw_on_screen(
                        img,
                        snapshots,
                        granularity,
                        granularity_range_=granularity_range,
                    )
                cv2.imshow(window_name, img)

            except CameraReadError:
                logger.error("Camera read failed, stopping")
                break
            except KeyboardBreakSignal:
                break

    # Loops disabled mid-step release their resources once the step returns
    await asyncio.gather(*(loop.wait_closed() for loop in loops.values()))


def run_granulator(**kwargs):
    """Run the granulator (see ``run_granulator_async`` for the arguments)."""
    asyncio.run(run_granulator_async(**kwargs))


def granulator_cli(
    # Trackers
    trackers: str = "hand",
    camera_index: int = 0,
    min_granularity: int = int(DFLT_GRANULARITY_RANGE.min),
    max_granularity: int = int(DFLT_GRANULARITY_RANGE.max),
    face_filter_mode: bool = False,
    sensitivity: float = DFLT_SENSITIVITY,
    # Models
    hand_model_path: str = None,
    face_model_path: str = None,
    # Logging options
    log_snapshots: bool = False,
    verbose: bool = False,
    # Display options
    window_name: str = DFLT_WINDOW_NAME,
    # List available components
    list_trackers: bool = False,
):
    """
    Run the granulator with the specified parameters.

    Args:
        trackers: Comma separated tracker names (the first drives the granularity)
        camera_index: Index of the video capture device
        min_granularity: Lower bound of the granularity
        max_granularity: Upper bound of the granularity
        face_filter_mode: Face tracker only reports landmarks and depth texture
        sensitivity: Audio sensitivity (above 1 is more reactive)
        hand_model_path: Path to the hand landmarker model (.task)
        face_model_path: Path to the face landmarker model (.task)
        log_snapshots: Whether to print the snapshots
        verbose: Whether to show debug logs
        window_name: Title for the display window
        list_trackers: List available trackers and exit
    """
    if list_trackers:
        print("Available trackers:")
        for name in tracker_factories:
            print(f"  - {name}")
        return

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    log_snapshots_callback = print_json_if_possible if log_snapshots else None

    try:
        run_granulator(
            trackers=[name.strip() for name in trackers.split(',') if name.strip()],
            camera_index=camera_index,
            granularity_range=(min_granularity, max_granularity),
            face_filter_mode=face_filter_mode,
            sensitivity=sensitivity,
            hand_model_path=hand_model_path,
            face_model_path=face_model_path,
            log_snapshots=log_snapshots_callback,
            window_name=window_name,
        )
    except AcquisitionFailure as e:
        print(f"Error: {e}")

"""Camera and landmark detection.

The rest of the package only sees lists of ``Landmark`` (or None): the MediaPipe
objects never leave this module.
"""

import asyncio
import contextlib
import logging
import threading
from pathlib import Path
from typing import Any, List, Optional

import cv2
import mediapipe as mp

from granulator.frame_loop import AcquisitionFailure
from granulator.util import Landmark, as_landmarks, data_files

logger = logging.getLogger(__name__)

# Paths to the landmarker models
hand_landmarker_path = str(data_files / 'hand_landmarker.task')
face_landmarker_path = str(data_files / 'face_landmarker.task')

MODEL_URLS = {
    'hand': 'https://storage.googleapis.com/mediapipe-models/hand_landmarker/hand_landmarker/float16/1/hand_landmarker.task',
    'face': 'https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task',
}


# -------------------------------------------------------------------------------
# Camera handling functions
# -------------------------------------------------------------------------------


class CameraReadError(Exception):
    """Exception raised when camera read fails."""

    pass


@contextlib.contextmanager
def open_camera(index: int = 0):
    """Context manager yielding an opened ``cv2.VideoCapture``, released on exit."""
    cap = cv2.VideoCapture(index)
    if not cap.isOpened():
        cap.release()
        raise AcquisitionFailure(f"Could not open video capture device {index}")
    try:
        yield cap
    finally:
        cap.release()


def read_camera(cap: cv2.VideoCapture, *, mirror: bool = True) -> Any:
    """
    Read a frame from the camera, flipped horizontally by default.

    Raises:
        CameraReadError: If the camera read operation fails
    """
    success, img = cap.read()
    if not success:
        raise CameraReadError("Failed to read from camera")

    # Flip image horizontally for a more natural interaction
    return cv2.flip(img, 1) if mirror else img


class LatestFrame:
    """Holds the latest camera frame; call it to get that frame (None until set)."""

    def __init__(self):
        self.frame = None

    def set(self, frame) -> None:
        self.frame = frame

    def __call__(self):
        return self.frame


# -------------------------------------------------------------------------------
# Landmark detectors
# -------------------------------------------------------------------------------


class LandmarkDetector:
    """
    Base of the MediaPipe landmarker wrappers.

    ``detect`` runs the landmarker in a worker thread, so awaiting it doesn't block
    the event loop. Use as a context manager, or call ``close`` when done: ``close``
    waits for a detection in progress, and detecting after ``close`` finds nothing.
    """

    kind = 'landmark'

    def __init__(
        self,
        model_path: Optional[str] = None,
        *,
        min_detection_confidence: float = 0.7,
        min_presence_confidence: float = 0.5,
        min_tracking_confidence: float = 0.5,
    ):
        model_path = model_path or self.default_model_path()
        if not Path(model_path).exists():
            raise AcquisitionFailure(
                f"{self.kind} landmarker model not found: {model_path}. "
                f"Download it from {MODEL_URLS.get(self.kind, 'the MediaPipe models page')}"
            )
        self.min_detection_confidence = min_detection_confidence
        self.min_presence_confidence = min_presence_confidence
        self.min_tracking_confidence = min_tracking_confidence

        base_options = mp.tasks.BaseOptions(model_asset_path=str(model_path))
        try:
            landmarker = self._create_landmarker(base_options)
        except (RuntimeError, ValueError) as e:
            raise AcquisitionFailure(f"Could not load the {self.kind} landmarker: {e}") from e
        self._set_landmarker(landmarker)
        logger.info("%s landmarker initialized (%s)", self.kind, model_path)

    def _set_landmarker(self, landmarker) -> None:
        self._landmarker = landmarker
        self._lock = threading.Lock()
        self._last_timestamp_ms = -1

    @staticmethod
    def default_model_path() -> str:
        raise NotImplementedError

    def _create_landmarker(self, base_options):
        raise NotImplementedError

    def _first_landmarks(self, result):
        raise NotImplementedError

    def detect_sync(self, frame, timestamp_ms: int) -> Optional[List[Landmark]]:
        """Landmarks of the first detected hand/face in a BGR frame, or None."""
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        with self._lock:
            if self._landmarker is None:
                return None
            # VIDEO mode requires strictly increasing timestamps
            timestamp_ms = max(int(timestamp_ms), self._last_timestamp_ms + 1)
            self._last_timestamp_ms = timestamp_ms
            result = self._landmarker.detect_for_video(image, timestamp_ms)
        landmarks = self._first_landmarks(result)
        return as_landmarks(landmarks) if landmarks else None

    async def detect(self, frame, timestamp_ms: int) -> Optional[List[Landmark]]:
        return await asyncio.to_thread(self.detect_sync, frame, timestamp_ms)

    def close(self) -> None:
        with self._lock:
            if self._landmarker is not None:
                self._landmarker.close()
                self._landmarker = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class HandLandmarkDetector(LandmarkDetector):
    kind = 'hand'

    @staticmethod
    def default_model_path() -> str:
        return hand_landmarker_path

    def _create_landmarker(self, base_options):
        options = mp.tasks.vision.HandLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_hands=1,
            min_hand_detection_confidence=self.min_detection_confidence,
            min_hand_presence_confidence=self.min_presence_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
        )
        return mp.tasks.vision.HandLandmarker.create_from_options(options)

    def _first_landmarks(self, result):
        return result.hand_landmarks[0] if result.hand_landmarks else None


class FaceLandmarkDetector(LandmarkDetector):
    kind = 'face'

    @staticmethod
    def default_model_path() -> str:
        return face_landmarker_path

    def _create_landmarker(self, base_options):
        options = mp.tasks.vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=mp.tasks.vision.RunningMode.VIDEO,
            num_faces=1,
            min_face_detection_confidence=self.min_detection_confidence,
            min_face_presence_confidence=self.min_presence_confidence,
            min_tracking_confidence=self.min_tracking_confidence,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )
        return mp.tasks.vision.FaceLandmarker.create_from_options(options)

    def _first_landmarks(self, result):
        return result.face_landmarks[0] if result.face_landmarks else None


landmark_detectors = {
    'hand': HandLandmarkDetector,
    'face': FaceLandmarkDetector,
}

import numpy as np
import pytest

from granulator.calibration import CalibrationState
from granulator.face_tracking import (
    FACE_REGIONS,
    FaceDepthTracker,
    face_depth,
    landmark_texture,
    region_depths,
)
from granulator.util import Landmark


def stare(tracker, face, z, n_frames):
    return [tracker.process(face(z)) for _ in range(n_frames)]


def test_face_depth_is_the_nose(face):
    landmarks = face(0.3)
    for i in (1, 2, 5, 6, 19, 20):
        landmarks[i] = Landmark(0.5, 0.5, -0.04)
    assert face_depth(landmarks) == pytest.approx(-0.04)


def test_region_depths(face):
    depths = region_depths(face(-0.05))
    assert set(FACE_REGIONS) <= set(depths)
    assert depths['nose'] == depths['noseTip']
    assert depths['cheeks'] == pytest.approx(-0.05)
    with pytest.raises(TypeError):
        depths['chin'] = 0


def test_landmark_texture(face):
    texture = landmark_texture(face(0.4), texture_size=32)
    assert texture.depth_texture.shape == (32, 32)
    assert texture.depth_texture.dtype == np.float32
    assert texture.landmark_count == 468
    assert not texture.depth_texture.flags.writeable
    # Landmarks all at 0.4: reached texels are 0.4, the others background
    values = set(np.round(np.unique(texture.depth_texture).astype(float), 5))
    assert values <= {0.4, 1.0}
    assert 0.4 in values


def test_closer_face_maps_to_max(face, clock):
    tracker = FaceDepthTracker((1, 50), auto_calibrate=False, clock=clock)
    tracker.process(face(-0.02))
    assert tracker.calibrate_depth(current_granularity=20)
    assert tracker.relative_depth == 0

    assert tracker.process(face(-0.02)).granularity == 20
    snapshot = tracker.process(face(-0.07))
    assert snapshot.relative_depth == pytest.approx(0.05)
    assert snapshot.granularity == 50
    assert tracker.process(face(0.01)).granularity == 1


def test_pivot_is_kept_whatever_the_granularity_range(face, clock):
    for pivot in (3, 20, 49):
        tracker = FaceDepthTracker((1, 50), auto_calibrate=False, clock=clock)
        tracker.process(face(-0.1))
        tracker.calibrate_depth(current_granularity=pivot)
        assert tracker.process(face(-0.1)).granularity == pivot


def test_uncalibrated_face_emits_min_granularity(face, clock):
    tracker = FaceDepthTracker((5, 40), clock=clock)
    snapshot = tracker.process(face(-0.05))
    assert snapshot.face_detected
    assert snapshot.granularity == 5
    assert snapshot.relative_depth == 0
    assert snapshot.depth_map['nose'] == pytest.approx(-0.05)


def test_auto_calibration_after_two_seconds_of_stillness(face, clock):
    tracker = FaceDepthTracker(current_granularity=25, clock=clock)
    stare(tracker, face, -0.05, 10)
    assert tracker.calibration_state is CalibrationState.STABILIZING
    assert tracker.snapshot.calibration_state == 'stabilizing'

    clock.advance(1.0)
    assert not tracker.process(face(-0.05)).is_calibrated

    clock.advance(1.0)
    snapshot = tracker.process(face(-0.05))
    assert snapshot.is_calibrated
    assert snapshot.granularity == 25
    assert tracker.calibration.record.baseline == pytest.approx(-0.05)


def test_movement_restarts_stabilization(face, clock):
    tracker = FaceDepthTracker(clock=clock)
    stare(tracker, face, -0.05, 10)
    clock.advance(1.5)
    tracker.process(face(0.2))  # jumps
    assert tracker.calibration_state is CalibrationState.UNCALIBRATED

    stare(tracker, face, 0.2, 10)
    clock.advance(1.5)
    assert not tracker.process(face(0.2)).is_calibrated


def test_losing_the_face_interrupts_stabilization(face, clock):
    tracker = FaceDepthTracker(clock=clock)
    stare(tracker, face, -0.05, 10)
    clock.advance(1.5)
    lost = tracker.process(None)
    assert not lost.face_detected
    assert lost.depth_map is None
    assert tracker.calibration_state is CalibrationState.UNCALIBRATED

    clock.advance(1.0)
    assert not tracker.process(face(-0.05)).is_calibrated


def test_losing_the_face_keeps_the_calibration(face, clock):
    tracker = FaceDepthTracker((1, 50), clock=clock)
    tracker.process(face(-0.02))
    tracker.calibrate_depth(current_granularity=20)

    lost = tracker.process(None)
    assert lost.is_calibrated
    assert lost.granularity == 1
    assert lost.relative_depth == 0
    assert lost.landmarks == ()

    assert tracker.process(face(-0.07)).granularity == 50


def test_auto_calibration_does_not_override_manual_calibration(face, clock):
    tracker = FaceDepthTracker(clock=clock)
    tracker.process(face(-0.02))
    tracker.calibrate_depth(current_granularity=10)
    stare(tracker, face, -0.04, 10)
    clock.advance(3.0)
    stare(tracker, face, -0.04, 10)
    assert tracker.calibration.record.baseline == pytest.approx(-0.02)


def test_reset_is_idempotent(face, clock):
    tracker = FaceDepthTracker(clock=clock)
    tracker.process(face(-0.02))
    tracker.calibrate_depth(current_granularity=30)
    tracker.process(face(-0.05))

    tracker.reset_calibration()
    once = (tracker.is_calibrated, tracker.relative_depth, tracker.granularity, tracker.depth_map)
    tracker.reset_calibration()
    assert (tracker.is_calibrated, tracker.relative_depth, tracker.granularity, tracker.depth_map) == once
    assert once == (False, 0.0, 1, None)


def test_face_filter_mode(face, clock):
    tracker = FaceDepthTracker(face_filter_mode=True, texture_size=16, clock=clock)
    stare(tracker, face, -0.05, 10)
    clock.advance(5.0)
    snapshot = tracker.process(face(-0.05))
    assert not snapshot.is_calibrated
    assert snapshot.granularity == 1
    assert snapshot.landmark_texture.depth_texture.shape == (16, 16)
    assert snapshot.depth_map is not None

import pytest

from granulator.calibration import CalibrationState
from granulator.hand_tracking import HandDepthTracker, palm_depth
from granulator.util import Landmark


def calibrated_tracker(hand, clock, baseline=-0.10, granularity_range=(4, 32)):
    tracker = HandDepthTracker(granularity_range, clock=clock)
    tracker.process(hand(baseline))
    assert tracker.calibrate_depth()
    return tracker


def test_palm_depth_uses_wrist_and_finger_bases():
    landmarks = [Landmark(0.0, 0.0, 1.0)] * 21
    for i, z in zip((0, 5, 9, 13, 17), (-0.1, -0.2, -0.3, -0.4, -0.5)):
        landmarks[i] = Landmark(0.0, 0.0, z)
    assert palm_depth(landmarks) == pytest.approx(-0.3)


def test_near_hand_saturates_at_max(hand, clock):
    tracker = calibrated_tracker(hand, clock)
    snapshot = tracker.process(hand(-0.18))
    assert snapshot.relative_depth == pytest.approx(-0.08)
    assert snapshot.granularity == 32


def test_far_hand_saturates_at_min(hand, clock):
    tracker = calibrated_tracker(hand, clock)
    snapshot = tracker.process(hand(0.0))
    assert snapshot.relative_depth == pytest.approx(0.10)
    assert snapshot.granularity == 4


def test_closer_is_never_coarser(hand, clock):
    tracker = calibrated_tracker(hand, clock)
    depths = [-0.3 + i * 0.01 for i in range(50)]  # moving away
    granularities = [tracker.process(hand(z)).granularity for z in depths]
    assert all(a >= b for a, b in zip(granularities, granularities[1:]))
    assert all(4 <= g <= 32 for g in granularities)


def test_relative_is_zero_right_after_calibration(hand, clock):
    tracker = HandDepthTracker(clock=clock)
    tracker.process(hand(-0.07))
    assert tracker.calibrate_depth()
    assert tracker.relative_depth == 0
    assert tracker.process(hand(-0.07)).relative_depth == 0


def test_uncalibrated_reports_zero_and_keeps_granularity(hand, clock):
    tracker = HandDepthTracker((4, 32), clock=clock)
    snapshot = tracker.process(hand(-0.3))
    assert snapshot.hand_detected
    assert not snapshot.is_calibrated
    assert snapshot.relative_depth == 0
    assert snapshot.granularity == 4
    assert len(snapshot.landmarks) == 21


def test_calibration_requires_a_detected_non_zero_depth(hand, clock):
    tracker = HandDepthTracker(clock=clock)
    assert tracker.calibrate_depth() is False  # nothing seen yet
    tracker.process(hand(0.0))
    assert tracker.calibrate_depth() is False  # zero depth
    tracker.process(None)
    assert tracker.calibrate_depth() is False
    assert tracker.calibration_state is CalibrationState.UNCALIBRATED


def test_losing_the_hand_keeps_the_calibration(hand, clock):
    tracker = calibrated_tracker(hand, clock)
    tracker.process(hand(-0.18))

    lost = tracker.process(None)
    assert not lost.hand_detected
    assert lost.relative_depth == 0
    assert lost.granularity == 4
    assert lost.landmarks == ()
    assert lost.is_calibrated

    assert tracker.process(hand(-0.18)).granularity == 32


def test_too_few_landmarks_count_as_no_hand(hand, clock):
    tracker = calibrated_tracker(hand, clock)
    assert not tracker.process(hand(-0.18, n=5)).hand_detected


def test_reset_is_idempotent(hand, clock):
    tracker = calibrated_tracker(hand, clock)
    tracker.process(hand(-0.18))

    tracker.reset_calibration()
    once = (tracker.is_calibrated, tracker.relative_depth, tracker.granularity)
    tracker.reset_calibration()
    assert (tracker.is_calibrated, tracker.relative_depth, tracker.granularity) == once
    assert once == (False, 0.0, 4)


def test_normalized_depth(hand, clock):
    tracker = calibrated_tracker(hand, clock)
    assert tracker.process(hand(-0.145)).normalized_depth == pytest.approx(0.5)
    assert tracker.process(hand(0.5)).normalized_depth == -1.0


def test_snapshots_are_immutable(hand, clock):
    snapshot = calibrated_tracker(hand, clock).process(hand(-0.1))
    with pytest.raises(AttributeError):
        snapshot.granularity = 3

import itertools

import numpy as np
import pytest

from granulator.audio import (
    CONTENT_TYPE_CODES,
    CONTENT_TYPES,
    AudioAnalysis,
    AudioLevelTracker,
    BandEnergy,
    analyze_spectrum,
    audio_granularity,
    band_energies,
    classify_content,
    combined_level,
    enhance_spike,
    level_to_granularity,
)


def analysis(level, content_type='none'):
    return AudioAnalysis(level, 0.0, 0.0, 0.0, content_type)


def test_voice_frame_level_and_content():
    adjusted = BandEnergy(voice=0.3, music=0.05, noise=0.0)
    assert combined_level(adjusted) == pytest.approx(0.03)
    assert classify_content(*adjusted) == 'voice'


def test_spike_enhancement():
    enhanced, is_spike = enhance_spike(0.03, 0.01, sensitivity=1.0)
    assert is_spike
    assert enhanced == pytest.approx(0.13)
    assert enhance_spike(0.9, 0.1) == (1.0, True)  # clamped
    assert enhance_spike(0.01, 0.03) == (0.01, False)  # drops are not spikes


def test_sensitivity_scales_level_and_spike_threshold():
    adjusted = BandEnergy(0.3, 0.05, 0.0)
    assert combined_level(adjusted, sensitivity=2.0) == pytest.approx(0.015)
    assert enhance_spike(0.013, 0.01, sensitivity=1.0)[1] is False
    assert enhance_spike(0.013, 0.01, sensitivity=2.0)[1] is True


def test_classification_is_total_and_exclusive():
    grid = [0.0, 0.05, 0.09, 0.12, 0.2, 1.0]
    for voice, music, noise in itertools.product(grid, repeat=3):
        assert classify_content(voice, music, noise) in CONTENT_TYPES


def test_classification_rule_order():
    assert classify_content(0.09, 0.2, 0.0) == 'music'  # voice below 0.7 * music
    assert classify_content(0.2, 0.2, 0.9) == 'voice'
    assert classify_content(0.05, 0.05, 0.9) == 'noise'
    assert classify_content(0.05, 0.05, 0.1) == 'none'


def test_content_type_codes():
    assert dict(CONTENT_TYPE_CODES) == {'none': 0, 'voice': 1, 'music': 2, 'noise': 3}


def test_silent_spectrum():
    result = analyze_spectrum(np.zeros(256))
    assert result.level == 0
    assert result.content_type == 'none'
    assert band_energies([]) == BandEnergy(0.0, 0.0, 0.0)


def test_noise_is_classified_on_unadjusted_bands():
    spectrum = np.zeros(256)
    spectrum[100:200] = 100  # well above 8 kHz
    result = analyze_spectrum(spectrum)
    assert result.content_type == 'noise'
    assert result.level == 0  # noise only lowers the level
    assert result.noise_level == pytest.approx(0.3 * np.sqrt(100) * 100 / 255)


def test_low_frequencies_raise_the_level():
    spectrum = np.zeros(256)
    spectrum[:20] = 200
    result = analyze_spectrum(spectrum)
    assert 0 < result.level <= 1
    assert result.content_type in ('voice', 'music')


def test_tracker_uncalibrated():
    tracker = AudioLevelTracker()
    tracker.process_analysis(analysis(0.01))
    snapshot = tracker.process_analysis(analysis(0.03, 'voice'))
    assert snapshot.is_spike
    assert snapshot.current_level == pytest.approx(0.13)
    assert snapshot.audio_detected  # above 0.02 * 2
    assert snapshot.intensity == pytest.approx(13.0)
    assert snapshot.relative_level == 0
    assert snapshot.content_type == 'voice'
    assert not snapshot.is_calibrated


def test_tracker_calibration_uses_the_unenhanced_level():
    tracker = AudioLevelTracker()
    tracker.process_analysis(analysis(0.03))  # a spike from silence
    assert tracker.calibrate_audio()
    assert tracker.calibration.record.baseline == pytest.approx(0.03)
    assert tracker.relative_level == 0

    snapshot = tracker.process_analysis(analysis(0.03))
    assert not snapshot.is_spike
    assert snapshot.relative_level == pytest.approx(0.0)
    assert snapshot.intensity == pytest.approx(50.0)

    snapshot = tracker.process_analysis(analysis(0.1))
    assert snapshot.intensity == 100  # clamped


def test_tracker_refuses_to_calibrate_on_silence():
    tracker = AudioLevelTracker()
    assert tracker.calibrate_audio() is False
    tracker.process_analysis(analysis(0.0))
    assert tracker.calibrate_audio() is False
    assert not tracker.is_calibrated


def test_tracker_smoothing():
    tracker = AudioLevelTracker()
    tracker.process_analysis(analysis(0.1))
    assert tracker.smoothed_level == pytest.approx(0.01)
    tracker.process_analysis(analysis(0.1))
    assert tracker.smoothed_level == pytest.approx(0.019)


def test_tracker_reset_is_idempotent():
    tracker = AudioLevelTracker()
    tracker.process_analysis(analysis(0.05))
    tracker.calibrate_audio()
    tracker.process_analysis(analysis(0.2))

    tracker.reset_calibration()
    once = (tracker.is_calibrated, tracker.relative_level, tracker.intensity, tracker.smoothed_level)
    tracker.reset_calibration()
    assert (tracker.is_calibrated, tracker.relative_level, tracker.intensity, tracker.smoothed_level) == once
    assert once == (False, 0.0, 0.0, 0.0)

    # the previous level is forgotten too: the next sound is a spike again
    assert tracker.process_analysis(analysis(0.05)).is_spike


def test_tracker_processes_spectra():
    tracker = AudioLevelTracker()
    spectrum = np.zeros(256)
    spectrum[:20] = 200
    snapshot = tracker.process(spectrum)
    assert snapshot.current_level > 0
    assert tracker.snapshot is snapshot


def test_sensitivity_must_be_positive():
    with pytest.raises(ValueError):
        AudioLevelTracker(sensitivity=0)


def test_level_to_granularity_is_monotonic_and_bounded():
    levels = np.linspace(0, 1, 101)
    for content_type, is_spike in itertools.product(CONTENT_TYPES, (False, True)):
        values = [
            level_to_granularity(level, is_spike=is_spike, content_type=content_type)
            for level in levels
        ]
        assert all(a <= b for a, b in zip(values, values[1:]))
        assert all(1 <= v <= 50 for v in values)
        assert isinstance(values[0], int)


def test_level_to_granularity_boosts():
    base = level_to_granularity(0.3)
    assert level_to_granularity(0.3, content_type='music') >= level_to_granularity(0.3, content_type='voice') >= base
    assert level_to_granularity(0.3, is_spike=True) > base
    assert level_to_granularity(0.004) == 1  # below the quiet level


def test_audio_granularity_of_a_snapshot():
    tracker = AudioLevelTracker()
    snapshot = tracker.process_analysis(analysis(0.5, 'music'))
    assert audio_granularity(snapshot) == 50
    assert audio_granularity(snapshot, (1, 10)) == 10

"""Audio level tracking: from a magnitude spectrum to a spiky, calibrated level.

The pipeline, per frame:

* split the spectrum into voice, music and (high frequency) noise bands and take the
  normalized energy of each,
* weigh the bands with an adjustment vector and combine them into a level in [0, 1],
* classify the content (voice, music, noise or none),
* enhance sudden increases of the level (spikes), so the renderer reacts elastically,
* relate the result to a calibrated baseline, if any.

``audio_granularity`` is the mapping a renderer applies to a snapshot to get a
granularity out of it.
"""

from __future__ import annotations

import logging
import math
import time
from types import MappingProxyType
from typing import Callable, Mapping, NamedTuple, Sequence, Tuple

import numpy as np

from granulator.calibration import Calibration
from granulator.ranges import (
    DFLT_GRANULARITY_RANGE,
    RangeLike,
    RangeMapper,
    granularity_from,
    granularity_range as to_granularity_range,
)
from granulator.util import clamp

logger = logging.getLogger(__name__)

DFLT_SAMPLE_RATE = 44100

Band = Tuple[float, float]  # (min_hz, max_hz)

VOICE_BAND: Band = (85, 2000)  # voice intelligibility
MUSIC_BAND: Band = (60, 8000)  # broader, includes the voice band
NOISE_BAND: Band = (8000, 20000)  # high frequency noise

DFLT_ADJUSTMENT_VECTOR = MappingProxyType({'voice': 1.0, 'music': 1.0, 'noise': 0.3})

DFLT_AUDIO_THRESHOLD = 0.02
DFLT_SENSITIVITY = 1.0

# level = max(voice, music) * VOICE_MUSIC_WEIGHT - noise * NOISE_WEIGHT
VOICE_MUSIC_WEIGHT = 0.1
NOISE_WEIGHT = 0.2

SPIKE_THRESHOLD = 0.005
SPIKE_FACTOR = 5.0
SMOOTHING_FACTOR = 0.9

VOICE_MIN_LEVEL = 0.08
VOICE_OVER_MUSIC_RATIO = 0.7
MUSIC_MIN_LEVEL = 0.1
NOISE_MIN_LEVEL = 0.15

CONTENT_TYPES = ('none', 'voice', 'music', 'noise')
# Codes of the content types, as uploaded to shaders
CONTENT_TYPE_CODES = MappingProxyType({'none': 0, 'voice': 1, 'music': 2, 'noise': 3})


# -------------------------------------------------------------------------------
# Spectrum analysis
# -------------------------------------------------------------------------------


class BandEnergy(NamedTuple):
    voice: float
    music: float
    noise: float


def band_bins(band: Band, n_bins: int, sample_rate: float = DFLT_SAMPLE_RATE):
    """
    The ``(start, stop)`` bin indices covering ``band``, for a spectrum of ``n_bins``
    bins spanning 0 to the Nyquist frequency.

    >>> band_bins(VOICE_BAND, 256)
    (0, 23)
    >>> band_bins(NOISE_BAND, 256)
    (92, 232)
    """
    bin_size = (sample_rate / 2) / n_bins
    low, high = band
    start = math.floor(low / bin_size)
    stop = min(math.floor(high / bin_size), n_bins)
    return start, stop


def _normalized_energy(magnitudes: np.ndarray) -> float:
    return float(np.sqrt(np.sum(np.square(magnitudes)))) / 255


def band_energies(
    spectrum: Sequence[float], sample_rate: float = DFLT_SAMPLE_RATE
) -> BandEnergy:
    """
    Normalized energy of the voice, music and noise bands of a byte spectrum:
    ``sqrt(sum of squared magnitudes) / 255`` over each band's bins.
    """
    magnitudes = np.asarray(spectrum, dtype=np.float64)
    n_bins = len(magnitudes)
    if not n_bins:
        return BandEnergy(0.0, 0.0, 0.0)

    def energy(band):
        start, stop = band_bins(band, n_bins, sample_rate)
        return _normalized_energy(magnitudes[start:stop])

    return BandEnergy(energy(VOICE_BAND), energy(MUSIC_BAND), energy(NOISE_BAND))


def classify_content(voice: float, music: float, noise: float) -> str:
    """
    Label the dominant content. Rules are tried in order, the first match wins, and
    exactly one label is always returned.

    >>> classify_content(0.3, 0.05, 0.0)
    'voice'
    >>> classify_content(0.09, 0.2, 0.0)
    'music'
    >>> classify_content(0.0, 0.0, 0.2)
    'noise'
    >>> classify_content(0.0, 0.0, 0.0)
    'none'
    """
    if voice > VOICE_MIN_LEVEL and voice > VOICE_OVER_MUSIC_RATIO * music:
        return 'voice'
    elif music > MUSIC_MIN_LEVEL:
        return 'music'
    elif noise > NOISE_MIN_LEVEL:
        return 'noise'
    return 'none'


def combined_level(adjusted: BandEnergy, sensitivity: float = DFLT_SENSITIVITY) -> float:
    """
    Combine the adjusted band levels into a level in [0, 1].

    >>> round(combined_level(BandEnergy(0.3, 0.05, 0.0)), 6)
    0.03
    """
    base = (
        max(adjusted.voice, adjusted.music) * VOICE_MUSIC_WEIGHT
        - adjusted.noise * NOISE_WEIGHT
    )
    return clamp(base / sensitivity, 0.0, 1.0)


class AudioAnalysis(NamedTuple):
    level: float
    voice_level: float  # adjusted
    music_level: float
    noise_level: float
    content_type: str


def analyze_spectrum(
    spectrum: Sequence[float],
    *,
    adjustment_vector: Mapping[str, float] = DFLT_ADJUSTMENT_VECTOR,
    sensitivity: float = DFLT_SENSITIVITY,
    sample_rate: float = DFLT_SAMPLE_RATE,
) -> AudioAnalysis:
    """Band energies, combined level and content type of one spectrum frame."""
    bands = band_energies(spectrum, sample_rate)
    adjusted = BandEnergy(
        bands.voice * adjustment_vector.get('voice', 1.0),
        bands.music * adjustment_vector.get('music', 1.0),
        bands.noise * adjustment_vector.get('noise', 1.0),
    )
    return AudioAnalysis(
        level=combined_level(adjusted, sensitivity),
        voice_level=adjusted.voice,
        music_level=adjusted.music,
        noise_level=adjusted.noise,
        content_type=classify_content(bands.voice, bands.music, bands.noise),
    )


# -------------------------------------------------------------------------------
# Tracker
# -------------------------------------------------------------------------------


class AudioSnapshot(NamedTuple):
    audio_detected: bool
    is_calibrated: bool
    current_level: float  # spike-enhanced level
    relative_level: float
    intensity: float  # 0 to 100
    is_spike: bool
    smoothed_level: float
    content_type: str
    voice_level: float
    music_level: float
    noise_level: float


def enhance_spike(
    level: float, previous_level: float, sensitivity: float = DFLT_SENSITIVITY
) -> Tuple[float, bool]:
    """
    Amplify a sudden increase of the level. Returns ``(enhanced_level, is_spike)``.

    >>> enhanced, is_spike = enhance_spike(0.03, 0.01)
    >>> round(enhanced, 6), is_spike
    (0.13, True)
    >>> enhance_spike(0.03, 0.029)
    (0.03, False)
    """
    delta = level - previous_level
    is_spike = delta > SPIKE_THRESHOLD / sensitivity
    if is_spike:
        return clamp(level + delta * SPIKE_FACTOR * sensitivity, 0.0, 1.0), True
    return level, False


class AudioLevelTracker:
    """
    Turns spectrum frames into ``AudioSnapshot``s.

    Parameters
    ----------
    threshold : float
        Base detection threshold; the effective threshold is
        ``threshold * 2 / sensitivity``.
    sensitivity : float
        Above 1 makes everything more reactive (lower spike threshold, stronger
        spike amplification, higher level), below 1 less so.
    adjustment_vector : mapping
        Weights of the voice, music and noise bands.
    sample_rate : float
        Sample rate of the audio the spectra come from.
    """

    name = 'audio'

    def __init__(
        self,
        *,
        threshold: float = DFLT_AUDIO_THRESHOLD,
        sensitivity: float = DFLT_SENSITIVITY,
        adjustment_vector: Mapping[str, float] = DFLT_ADJUSTMENT_VECTOR,
        sample_rate: float = DFLT_SAMPLE_RATE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not sensitivity > 0:
            raise ValueError(f"sensitivity must be positive, got {sensitivity}")
        self.threshold = threshold
        self.sensitivity = sensitivity
        self.adjustment_vector = MappingProxyType(
            {**DFLT_ADJUSTMENT_VECTOR, **adjustment_vector}
        )
        self.sample_rate = sample_rate
        self.calibration = Calibration(clock=clock, name=self.name)

        self._level = 0.0
        self._last_level = 0.0
        self._smoothed = 0.0
        self._relative = 0.0
        self._intensity = 0.0
        self._snapshot = None

    @property
    def is_calibrated(self) -> bool:
        return self.calibration.is_calibrated

    @property
    def current_level(self) -> float:
        """The (un-enhanced) level of the last processed frame."""
        return self._level

    @property
    def relative_level(self) -> float:
        return self._relative

    @property
    def intensity(self) -> float:
        return self._intensity

    @property
    def smoothed_level(self) -> float:
        return self._smoothed

    @property
    def snapshot(self):
        return self._snapshot

    def process(self, spectrum: Sequence[float]) -> AudioSnapshot:
        """Update the tracker with one spectrum frame (magnitudes 0 to 255)."""
        analysis = analyze_spectrum(
            spectrum,
            adjustment_vector=self.adjustment_vector,
            sensitivity=self.sensitivity,
            sample_rate=self.sample_rate,
        )
        return self.process_analysis(analysis)

    def process_analysis(self, analysis: AudioAnalysis) -> AudioSnapshot:
        """Update the tracker with an already analyzed frame."""
        level = analysis.level
        enhanced, is_spike = enhance_spike(level, self._last_level, self.sensitivity)
        smoothed = self._smoothed * SMOOTHING_FACTOR + level * (1 - SMOOTHING_FACTOR)
        detected = enhanced > self.threshold * (2.0 / self.sensitivity)

        record = self.calibration.record
        if record is not None:
            relative = enhanced - record.baseline
            intensity = clamp(enhanced / (record.baseline * 2) * 100, 0.0, 100.0)
        else:
            relative = 0.0
            intensity = enhanced * 100

        self._level = level
        self._last_level = level
        self._smoothed = smoothed
        self._relative = relative
        self._intensity = intensity
        self._snapshot = AudioSnapshot(
            audio_detected=detected,
            is_calibrated=record is not None,
            current_level=enhanced,
            relative_level=relative,
            intensity=intensity,
            is_spike=is_spike,
            smoothed_level=smoothed,
            content_type=analysis.content_type,
            voice_level=analysis.voice_level,
            music_level=analysis.music_level,
            noise_level=analysis.noise_level,
        )
        return self._snapshot

    def calibrate_audio(self) -> bool:
        """Use the level of the last processed frame as the baseline.

        Fails (returning False) if that level is zero.
        """
        if not self._level > 0:
            logger.debug("audio calibration refused: silent")
            return False
        ok = self.calibration.calibrate(self._level, self._level)
        if ok:
            self._relative = 0.0
        return ok

    def reset_calibration(self) -> None:
        self.calibration.reset()
        self._relative = 0.0
        self._intensity = 0.0
        self._smoothed = 0.0
        self._last_level = 0.0


# -------------------------------------------------------------------------------
# Granularity mapping (done by the consumer of the snapshots)
# -------------------------------------------------------------------------------

QUIET_LEVEL = 0.005
LOUD_LEVEL = 0.5
LEVEL_CURVE_EXPONENT = 4
SPIKE_BOOST = 1.5
CONTENT_BOOSTS = MappingProxyType({'voice': 1.05, 'music': 1.1})
DFLT_AUDIO_GRANULARITY_RANGE = DFLT_GRANULARITY_RANGE

_quiet_to_loud = RangeMapper((QUIET_LEVEL, LOUD_LEVEL), (0.0, 1.0))


def level_to_granularity(
    level: float,
    *,
    is_spike: bool = False,
    content_type: str = 'none',
    granularity_range: RangeLike = DFLT_AUDIO_GRANULARITY_RANGE,
) -> int:
    """
    Map an (enhanced) audio level to an integer granularity.

    The level is normalized between the quiet and loud levels, curved steeply (so
    only loud sounds move the granularity much), boosted on spikes and on voice or
    music content, and scaled into the range.

    >>> level_to_granularity(0.0), level_to_granularity(0.5), level_to_granularity(1.0)
    (1, 50, 50)
    >>> level_to_granularity(0.4, is_spike=True) > level_to_granularity(0.4)
    True
    """
    low, high = to_granularity_range(granularity_range)
    value = _quiet_to_loud(level) ** LEVEL_CURVE_EXPONENT
    if is_spike:
        value = min(1.0, value * SPIKE_BOOST)
    value = min(1.0, value * CONTENT_BOOSTS.get(content_type, 1.0))
    return granularity_from(low + value * (high - low), (low, high))


def audio_granularity(
    snapshot: AudioSnapshot,
    granularity_range: RangeLike = DFLT_AUDIO_GRANULARITY_RANGE,
) -> int:
    """The granularity a renderer should use for an ``AudioSnapshot``."""
    return level_to_granularity(
        snapshot.current_level,
        is_spike=snapshot.is_spike,
        content_type=snapshot.content_type,
        granularity_range=granularity_range,
    )

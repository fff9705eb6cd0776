"""Byte magnitude spectra of PCM audio, the way browser analyser nodes compute them.

The audio tracker's thresholds were tuned on such spectra: Blackman-windowed FFT,
magnitudes smoothed over time, converted to decibels, and the ``[min_db, max_db]``
window linearly scaled to bytes 0 to 255.
"""

import numpy as np

DFLT_FFT_SIZE = 512
DFLT_SMOOTHING = 0.8
DFLT_MIN_DB = -100.0
DFLT_MAX_DB = -30.0


def blackman_window(n: int) -> np.ndarray:
    a = 0.16
    a0, a1, a2 = (1 - a) / 2, 0.5, a / 2
    k = np.arange(n) / n
    return a0 - a1 * np.cos(2 * np.pi * k) + a2 * np.cos(4 * np.pi * k)


class ByteSpectrumAnalyser:
    """
    Stateful spectrum analyser: each call smooths with the previous one.

    >>> analyser = ByteSpectrumAnalyser(fft_size=256)
    >>> spectrum = analyser(np.zeros(256))
    >>> spectrum.shape, spectrum.dtype, int(spectrum.max())
    ((128,), dtype('uint8'), 0)
    """

    def __init__(
        self,
        fft_size: int = DFLT_FFT_SIZE,
        *,
        smoothing: float = DFLT_SMOOTHING,
        min_db: float = DFLT_MIN_DB,
        max_db: float = DFLT_MAX_DB,
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not min_db < max_db:
            raise ValueError(f"min_db ({min_db}) must be below max_db ({max_db})")
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = blackman_window(fft_size)
        self._smoothed = np.zeros(self.n_bins)

    @property
    def n_bins(self) -> int:
        return self.fft_size // 2

    def __call__(self, samples) -> np.ndarray:
        """
        Spectrum of the last ``fft_size`` samples (float PCM in [-1, 1]); shorter
        inputs are zero-padded at the front.
        """
        x = np.asarray(samples, dtype=np.float64)[-self.fft_size :]
        if len(x) < self.fft_size:
            x = np.concatenate([np.zeros(self.fft_size - len(x)), x])
        magnitudes = np.abs(np.fft.rfft(x * self._window))[: self.n_bins] / self.fft_size
        self._smoothed = (
            self.smoothing * self._smoothed + (1 - self.smoothing) * magnitudes
        )
        with np.errstate(divide='ignore'):
            db = 20 * np.log10(self._smoothed)
        scaled = (db - self.min_db) * (255 / (self.max_db - self.min_db))
        return np.clip(np.floor(scaled), 0, 255).astype(np.uint8)

    def reset(self):
        self._smoothed = np.zeros(self.n_bins)

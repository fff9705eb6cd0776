"""Microphone acquisition: PyAudio input stream to byte spectra."""

import contextlib
import logging

import numpy as np
import pyaudio

from granulator.audio import DFLT_SAMPLE_RATE
from granulator.frame_loop import AcquisitionFailure
from granulator.spectrum import DFLT_FFT_SIZE, DFLT_SMOOTHING, ByteSpectrumAnalyser

logger = logging.getLogger(__name__)

DFLT_HOP_SIZE = 256


class MicrophoneSpectrumSource:
    """
    Reads whatever the microphone has buffered and returns the byte spectrum of the
    most recent ``fft_size`` samples. ``read`` never blocks.
    """

    def __init__(self, stream, analyser: ByteSpectrumAnalyser):
        self._stream = stream
        self._analyser = analyser
        self._samples = np.zeros(analyser.fft_size, dtype=np.float32)

    def read(self) -> np.ndarray:
        available = self._stream.get_read_available()
        if available:
            data = self._stream.read(available, exception_on_overflow=False)
            chunk = np.frombuffer(data, dtype=np.float32)
            self._samples = np.concatenate([self._samples, chunk])[
                -self._analyser.fft_size :
            ]
        return self._analyser(self._samples)


@contextlib.contextmanager
def open_microphone(
    *,
    sample_rate: int = DFLT_SAMPLE_RATE,
    fft_size: int = DFLT_FFT_SIZE,
    hop_size: int = DFLT_HOP_SIZE,
    smoothing: float = DFLT_SMOOTHING,
    input_device_index=None,
):
    """
    Context manager that opens the microphone and yields a
    ``MicrophoneSpectrumSource``. The stream is closed on exit.

    Raises ``AcquisitionFailure`` if the microphone can't be opened.
    """
    p = pyaudio.PyAudio()
    try:
        stream = p.open(
            format=pyaudio.paFloat32,
            channels=1,
            rate=sample_rate,
            input=True,
            frames_per_buffer=hop_size,
            input_device_index=input_device_index,
        )
    except (OSError, ValueError) as e:
        p.terminate()
        raise AcquisitionFailure(f"Could not open the microphone: {e}") from e

    logger.info("Microphone opened (%d Hz, fft size %d)", sample_rate, fft_size)
    try:
        yield MicrophoneSpectrumSource(
            stream, ByteSpectrumAnalyser(fft_size, smoothing=smoothing)
        )
    finally:
        stream.stop_stream()
        stream.close()
        p.terminate()
        logger.info("Microphone closed")

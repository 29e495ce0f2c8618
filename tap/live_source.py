"""Live-source helpers: analyser byte encoding and a synthetic tone source.

A live source is anything with ``sample()``, ``connect(producer)`` and
``disconnect(producer)``; see audio_capture.SoundDeviceSource for the
hardware-backed one.
"""

import math

import numpy as np

from audio_processor import RawFrame
from fft_engine import DEFAULT_TRANSFORM_SIZE

SAMPLE_RATE = 44100


def encode_bytes(samples: np.ndarray) -> np.ndarray:
    """Float samples in -1..1 to unsigned bytes, 128 = silence.

    Same mapping as a browser analyser's byte time-domain data:
    floor(128 * (1 + x)) clipped to 0..255.
    """
    scaled = np.floor(128.0 * (1.0 + np.asarray(samples, dtype=np.float64)))
    return np.clip(scaled, 0, 255).astype(np.uint8)


def frame_from_stereo(stereo: np.ndarray) -> RawFrame:
    """Build a RawFrame from a (frames, 2) float block; mono is the L/R mean."""
    mono = stereo.mean(axis=1)
    return RawFrame(encode_bytes(mono), encode_bytes(stereo[:, 0]),
                    encode_bytes(stereo[:, 1]))


class ToneSource:
    """Deterministic sine generator that behaves like a live source."""

    def __init__(self, frequency: float = 440.0,
                 transform_size: int = DEFAULT_TRANSFORM_SIZE,
                 sample_rate: int = SAMPLE_RATE, amplitude: float = 0.5,
                 right_frequency: float | None = None):
        """
        Args:
            frequency:       Left (and default right) tone in Hz.
            transform_size:  Samples per channel returned by sample().
            sample_rate:     Sample rate in Hz.
            amplitude:       Peak amplitude, 0..1.
            right_frequency: Right tone in Hz; defaults to ``frequency``.
        """
        if not 0.0 <= amplitude <= 1.0:
            raise ValueError(f"amplitude must be in 0..1, got {amplitude}")
        self._frequency = frequency
        self._right_frequency = (
            right_frequency if right_frequency is not None else frequency
        )
        self._size = transform_size
        self._sample_rate = sample_rate
        self._amplitude = amplitude
        self._position = 0
        self._producers = []

    @property
    def producers(self) -> list:
        return list(self._producers)

    def connect(self, producer):
        if producer not in self._producers:
            self._producers.append(producer)

    def disconnect(self, producer):
        if producer in self._producers:
            self._producers.remove(producer)

    def sample(self) -> RawFrame:
        """Next block of transform_size samples; phase continues across calls."""
        t = (self._position + np.arange(self._size)) / self._sample_rate
        self._position += self._size
        stereo = np.empty((self._size, 2), dtype=np.float64)
        stereo[:, 0] = self._amplitude * np.sin(2 * math.pi * self._frequency * t)
        stereo[:, 1] = self._amplitude * np.sin(
            2 * math.pi * self._right_frequency * t
        )
        return frame_from_stereo(stereo)

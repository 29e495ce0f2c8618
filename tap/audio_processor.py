"""Per-tick audio processor: byte snapshots in, channel buffers and spectra out.

Each tick takes three unsigned-byte time-domain buffers (mono, left, right),
centers them around zero, smooths and decimates the stereo pair, and runs
the shared FFT engine once per channel.  All per-channel buffers are
allocated once and overwritten in place every tick.
"""

import logging
import time
from dataclasses import dataclass

import numpy as np

from fft_engine import (
    DEFAULT_TRANSFORM_SIZE,
    FFTEngine,
    InputLengthError,
    TransformConfig,
)

logger = logging.getLogger(__name__)

CENTER = 128  # byte value of a zero sample
CHANNELS = ("mono", "left", "right")
MONO, LEFT, RIGHT = 0, 1, 2


class SourceModeError(RuntimeError):
    """Push-model call on a processor built for live capture."""


@dataclass(frozen=True)
class PushOnly:
    """Frames arrive through ingest(); there is nothing to sample."""


@dataclass(frozen=True)
class LiveCapture:
    """Frames are pulled from ``handle`` on every sample() call.

    The handle must provide ``sample()`` returning a RawFrame or a
    (mono, left, right) tuple of byte buffers, plus ``connect(producer)``
    and ``disconnect(producer)`` for its own connection graph.
    """

    handle: object


@dataclass
class RawFrame:
    """One tick of unsigned-byte samples, ``value + 128`` per sample."""

    mono: np.ndarray
    left: np.ndarray
    right: np.ndarray

    @classmethod
    def from_buffers(cls, mono, left, right) -> "RawFrame":
        return cls(as_byte_array(mono), as_byte_array(left), as_byte_array(right))

    @classmethod
    def silence(cls, length: int) -> "RawFrame":
        return cls(*(np.full(length, CENTER, dtype=np.uint8) for _ in CHANNELS))

    def channels(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.mono, self.left, self.right

    def copy(self) -> "RawFrame":
        return RawFrame(self.mono.copy(), self.left.copy(), self.right.copy())


@dataclass
class ProcessedFrame:
    signed: np.ndarray            # (3, N) centered samples
    smoothed_stereo: np.ndarray   # (2, N) boxcar-filtered left/right
    decimated_stereo: np.ndarray  # (2, N/2) even samples of smoothed_stereo


@dataclass
class SpectrumOutput:
    mono: np.ndarray
    left: np.ndarray
    right: np.ndarray


@dataclass
class RenderSnapshot:
    """Raw bytes plus a monotonic timestamp for a renderer doing its own analysis."""

    frame: RawFrame
    timestamp: float


def as_byte_array(buf) -> np.ndarray:
    """Coerce a byte buffer or integer sequence to a 1-D uint8 array.

    Fractional values are rejected rather than truncated.
    """
    if isinstance(buf, (bytes, bytearray, memoryview)):
        return np.frombuffer(buf, dtype=np.uint8)
    arr = np.asarray(buf)
    if arr.ndim != 1:
        raise ValueError(f"expected a 1-D byte buffer, got shape {arr.shape}")
    if arr.dtype != np.uint8:
        if arr.dtype.kind == "f" and not np.all(arr == np.floor(arr)):
            raise ValueError("byte buffer values must be whole numbers")
        if arr.size and (arr.min() < 0 or arr.max() > 255):
            raise ValueError("byte buffer values must be in 0..255")
        arr = arr.astype(np.uint8)
    return arr


def boxcar_smooth(centered, out=None) -> np.ndarray:
    """2-tap moving average along the last axis.

    ``out[i] = 0.5 * (x[i] + x[i-1])``; the first sample is its own
    predecessor, so ``out[0] == x[0]``.  Nothing carries over between calls.
    """
    centered = np.asarray(centered, dtype=np.float64)
    if out is None:
        out = np.empty_like(centered)
    np.add(centered[..., 1:], centered[..., :-1], out=out[..., 1:])
    out[..., 1:] *= 0.5
    out[..., 0] = centered[..., 0]
    return out


def decimate(smoothed, out=None) -> np.ndarray:
    """Keep every even-indexed sample along the last axis."""
    smoothed = np.asarray(smoothed)
    if out is None:
        return smoothed[..., ::2].copy()
    out[...] = smoothed[..., ::2]
    return out


class AudioProcessor:
    """Turns raw byte snapshots into stereo sample buffers and three spectra."""

    def __init__(self, transform_size: int = DEFAULT_TRANSFORM_SIZE,
                 output_length: int | None = None, equalize: bool = True,
                 source: LiveCapture | PushOnly | None = None,
                 clock=time.monotonic):
        """
        Args:
            transform_size: FFT size and length of every raw channel buffer.
            output_length:  Spectrum length; must be transform_size / 2.
            equalize:       Weight all three spectra by the equalization curve.
            source:         LiveCapture(handle) for the pull model, or
                            PushOnly() (default) for ingest().
            clock:          Monotonic time source for render snapshots.
        """
        if source is None:
            source = PushOnly()
        if not isinstance(source, (LiveCapture, PushOnly)):
            raise TypeError(
                f"source must be LiveCapture or PushOnly, got {type(source).__name__}"
            )

        self._config = TransformConfig(transform_size, output_length, equalize)
        self._engine = FFTEngine(self._config)
        self._source = source
        self._clock = clock

        n = self._config.transform_size
        self._raw = np.full((len(CHANNELS), n), CENTER, dtype=np.uint8)
        self._signed = np.zeros((len(CHANNELS), n), dtype=np.float64)
        self._smoothed = np.zeros((2, n), dtype=np.float64)
        self._decimated = np.zeros((2, n // 2), dtype=np.float64)
        self._spectra: SpectrumOutput | None = None
        self._ticks = 0

        logger.debug(
            f"AudioProcessor initialized: size={n}, equalize={equalize}, "
            f"source={type(source).__name__}"
        )

    @property
    def config(self) -> TransformConfig:
        return self._config

    @property
    def engine(self) -> FFTEngine:
        return self._engine

    @property
    def source(self) -> LiveCapture | PushOnly:
        return self._source

    @property
    def is_live(self) -> bool:
        return isinstance(self._source, LiveCapture)

    @property
    def tick_count(self) -> int:
        return self._ticks

    # --- sources --------------------------------------------------------

    def attach_source(self, handle):
        """Connect an audio producer to the live capture's graph."""
        if isinstance(self._source, LiveCapture):
            self._source.handle.connect(handle)
            logger.debug(f"Attached source {handle!r}")
        else:
            logger.debug(f"Push-only processor ignores attach of {handle!r}")

    def detach_source(self, handle):
        """Disconnect a previously attached producer."""
        if isinstance(self._source, LiveCapture):
            self._source.handle.disconnect(handle)
            logger.debug(f"Detached source {handle!r}")
        else:
            logger.debug(f"Push-only processor ignores detach of {handle!r}")

    # --- ticks ----------------------------------------------------------

    def ingest(self, frame, left=None, right=None) -> SpectrumOutput:
        """Process one pushed tick.

        Args:
            frame: RawFrame, or the mono byte buffer when left/right are given.
            left:  Left byte buffer (only with a mono buffer).
            right: Right byte buffer (only with a mono buffer).

        Returns:
            SpectrumOutput for this tick.
        """
        if isinstance(self._source, LiveCapture):
            raise SourceModeError(
                "ingest() called on a live-capture processor; use sample()"
            )
        if isinstance(frame, RawFrame):
            if left is not None or right is not None:
                raise TypeError("ingest() takes a RawFrame or three buffers, not both")
        else:
            if left is None or right is None:
                raise TypeError("ingest() needs a RawFrame or mono, left and right")
            frame = RawFrame.from_buffers(frame, left, right)
        return self._accept(frame)

    def sample(self) -> SpectrumOutput | None:
        """Pull one tick from the live source; no-op for push-only processors."""
        if not isinstance(self._source, LiveCapture):
            return None
        frame = self._source.handle.sample()
        if frame is None:
            return None
        if not isinstance(frame, RawFrame):
            frame = RawFrame.from_buffers(*frame)
        return self._accept(frame)

    def _accept(self, frame: RawFrame) -> SpectrumOutput:
        n = self._config.transform_size
        channels = [as_byte_array(c) for c in frame.channels()]
        for name, channel in zip(CHANNELS, channels):
            if channel.shape[0] != n:
                logger.warning(
                    f"Rejected frame: {name} channel has {channel.shape[0]} "
                    f"samples, expected {n}"
                )
                raise InputLengthError(
                    f"{name} channel has {channel.shape[0]} samples, expected {n}"
                )

        for i, channel in enumerate(channels):
            self._raw[i] = channel
        return self._process()

    def _process(self) -> SpectrumOutput:
        signed = self._signed
        signed[...] = self._raw
        signed -= CENTER

        boxcar_smooth(signed[LEFT:], out=self._smoothed)
        decimate(self._smoothed, out=self._decimated)

        transform = self._engine.transform
        self._spectra = SpectrumOutput(
            mono=transform(signed[MONO]),
            left=transform(signed[LEFT]),
            right=transform(signed[RIGHT]),
        )
        self._ticks += 1
        return self._spectra

    # --- accessors ------------------------------------------------------

    def current_spectra(self) -> SpectrumOutput | None:
        """Spectra of the most recent tick, or None before the first one."""
        return self._spectra

    def current_frame(self) -> ProcessedFrame | None:
        """Copies of the centered, smoothed and decimated buffers."""
        if self._ticks == 0:
            return None
        return ProcessedFrame(
            signed=self._signed.copy(),
            smoothed_stereo=self._smoothed.copy(),
            decimated_stereo=self._decimated.copy(),
        )

    def current_render_snapshot(self) -> RenderSnapshot:
        """Raw byte buffers of the latest tick with the current monotonic time."""
        raw = self._raw
        frame = RawFrame(raw[MONO].copy(), raw[LEFT].copy(), raw[RIGHT].copy())
        return RenderSnapshot(frame=frame, timestamp=self._clock())

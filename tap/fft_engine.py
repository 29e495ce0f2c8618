"""Fixed-size FFT engine: bit-reversal table, twiddle seeds, equalization.

Turns one time-domain buffer into a half-length magnitude spectrum with an
iterative radix-2 decimation-in-time transform.  All tables are built once
per engine and never mutated afterwards.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_TRANSFORM_SIZE = 1024  # 512 output bins
MIN_TRANSFORM_SIZE = 4

# Equalization: weight[i] = EQ_SCALE * ln((L - i) / L)
EQ_SCALE = -0.02


class ConfigError(ValueError):
    """Transform size or output length is not usable."""


class InputLengthError(ValueError):
    """A sample buffer has the wrong length for the configured transform."""


def is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


@dataclass(frozen=True)
class TransformConfig:
    """Immutable transform settings shared by every FFT call of a processor.

    ``output_length`` defaults to half of ``transform_size``; any other
    value is rejected.
    """

    transform_size: int = DEFAULT_TRANSFORM_SIZE
    output_length: int | None = None
    equalize: bool = False

    def __post_init__(self):
        n = self.transform_size
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)):
            raise ConfigError(f"transform_size must be an integer, got {n!r}")
        if n < MIN_TRANSFORM_SIZE or not is_power_of_two(int(n)):
            raise ConfigError(
                f"transform_size must be a power of two >= {MIN_TRANSFORM_SIZE}, "
                f"got {n}"
            )
        object.__setattr__(self, "transform_size", int(n))

        length = self.output_length
        if length is None:
            object.__setattr__(self, "output_length", self.transform_size // 2)
            return
        if isinstance(length, bool) or not isinstance(length, (int, np.integer)):
            raise ConfigError(f"output_length must be an integer, got {length!r}")
        if length != self.transform_size // 2:
            raise ConfigError(
                f"output_length must be transform_size / 2 "
                f"({self.transform_size // 2}), got {length}"
            )
        object.__setattr__(self, "output_length", int(length))

    @property
    def stages(self) -> int:
        """Number of merge stages, log2(transform_size)."""
        return self.transform_size.bit_length() - 1


def build_permutation_table(transform_size: int) -> np.ndarray:
    """Bit-reversal permutation of 0..N-1 built by the swap-walk method."""
    table = np.arange(transform_size, dtype=np.intp)
    j = 0
    for i in range(transform_size):
        if j > i:
            table[i], table[j] = table[j], table[i]
        m = transform_size >> 1
        while m >= 1 and j >= m:
            j -= m
            m >>= 1
        j += m
    table.flags.writeable = False
    return table


def build_twiddle_table(transform_size: int) -> np.ndarray:
    """(cos, sin) seeds for the merge stages of size 4, 8, ... N.

    Row k holds the rotation for sub-transform size 2**(k+2).  The size-2
    stage only ever uses the unit vector, so it has no row.
    """
    stages = transform_size.bit_length() - 1
    table = np.empty((stages - 1, 2), dtype=np.float64)
    for k in range(stages - 1):
        theta = -2.0 * math.pi / (1 << (k + 2))
        table[k, 0] = math.cos(theta)
        table[k, 1] = math.sin(theta)
    table.flags.writeable = False
    return table


def build_equalization_curve(output_length: int) -> np.ndarray:
    """Per-bin weights that lift the high bins to offset natural roll-off."""
    i = np.arange(output_length, dtype=np.float64)
    curve = EQ_SCALE * np.log((output_length - i) / output_length)
    curve.flags.writeable = False
    return curve


class FFTEngine:
    """Magnitude spectrum of one buffer per call, using precomputed tables."""

    def __init__(self, config: TransformConfig | None = None):
        self._config = config if config is not None else TransformConfig()
        n = self._config.transform_size

        self._permutation = build_permutation_table(n)
        self._twiddles = build_twiddle_table(n)
        self._equalization = (
            build_equalization_curve(self._config.output_length)
            if self._config.equalize else None
        )

        # Scratch reused across calls; every slot is written before it is read
        self._padded = np.zeros(n, dtype=np.float64)
        self._real = np.zeros(n, dtype=np.float64)
        self._imag = np.zeros(n, dtype=np.float64)

        logger.debug(
            f"FFTEngine initialized: size={n}, bins={self._config.output_length}, "
            f"equalize={self._config.equalize}"
        )

    @classmethod
    def from_sizes(cls, transform_size: int, output_length: int | None = None,
                   equalize: bool = False) -> "FFTEngine":
        return cls(TransformConfig(transform_size, output_length, equalize))

    @property
    def config(self) -> TransformConfig:
        return self._config

    @property
    def permutation(self) -> np.ndarray:
        return self._permutation

    @property
    def twiddles(self) -> np.ndarray:
        return self._twiddles

    @property
    def equalization(self) -> np.ndarray | None:
        return self._equalization

    def transform(self, time_samples) -> np.ndarray:
        """Compute the magnitude spectrum of one time-domain buffer.

        Args:
            time_samples: 1-D numeric sequence of at most transform_size
                          values.  Shorter input is zero-padded.

        Returns:
            np.ndarray of float64, shape (output_length,)
        """
        samples = np.asarray(time_samples, dtype=np.float64)
        if samples.ndim != 1:
            raise InputLengthError(
                f"expected a 1-D sample buffer, got shape {samples.shape}"
            )
        n = self._config.transform_size
        count = samples.shape[0]
        if count > n:
            raise InputLengthError(
                f"sample buffer has {count} values, transform size is {n}"
            )

        padded = self._padded
        padded[:count] = samples
        padded[count:] = 0.0

        real = self._real
        imag = self._imag
        np.take(padded, self._permutation, out=real)
        imag.fill(0.0)

        # Size-2 stage: unit rotation, imaginary parts stay zero
        even = real[0::2]
        odd = real[1::2]
        temp = odd.copy()
        odd[:] = even - temp
        even += temp

        size = 4
        for wpr, wpi in self._twiddles:
            half = size >> 1
            wr = 1.0
            wi = 0.0
            for m in range(half):
                re_lo = real[m::size]
                im_lo = imag[m::size]
                re_hi = real[m + half::size]
                im_hi = imag[m + half::size]

                tempr = wr * re_hi - wi * im_hi
                tempi = wr * im_hi + wi * re_hi
                re_hi[:] = re_lo - tempr
                im_hi[:] = im_lo - tempi
                re_lo += tempr
                im_lo += tempi

                # Advance the rotation incrementally instead of calling cos/sin
                wtemp = wr
                wr = wtemp * wpr - wi * wpi
                wi = wi * wpr + wtemp * wpi
            size <<= 1

        out_len = self._config.output_length
        re = real[:out_len]
        im = imag[:out_len]
        magnitudes = np.sqrt(re * re + im * im)
        if self._equalization is not None:
            magnitudes *= self._equalization
        return magnitudes

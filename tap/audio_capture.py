"""Live audio capture via sounddevice, exposed as a pull-model live source.

Every connected input device gets its own stereo InputStream whose callback
keeps the most recent transform_size frames.  sample() mixes the devices
and encodes mono/left/right as analyser-style unsigned bytes.
"""

import logging
import threading
from functools import partial

import numpy as np
import sounddevice as sd

from fft_engine import DEFAULT_TRANSFORM_SIZE
from live_source import SAMPLE_RATE, frame_from_stereo
from audio_processor import RawFrame

logger = logging.getLogger(__name__)

BLOCK_SIZE = 512
LOOPBACK_NAMES = ("blackhole", "loopback", "stereo mix", "monitor")


def find_loopback_device() -> int | None:
    """Return the index of a stereo loopback-style input device, or None."""
    for i, dev in enumerate(sd.query_devices()):
        name = dev["name"].lower()
        if dev["max_input_channels"] >= 2 and any(n in name for n in LOOPBACK_NAMES):
            return i
    return None


class SoundDeviceSource:
    """Captures stereo input from one or more devices for AudioProcessor.sample()."""

    def __init__(self, transform_size: int = DEFAULT_TRANSFORM_SIZE,
                 sample_rate: int = SAMPLE_RATE, block_size: int = BLOCK_SIZE):
        self._size = transform_size
        self._sample_rate = sample_rate
        self._block_size = block_size
        self._streams = {}
        self._buffers = {}
        self._lock = threading.Lock()

    @property
    def sample_rate(self):
        return self._sample_rate

    @property
    def devices(self) -> list:
        return list(self._streams)

    def connect(self, device=None):
        """Open and start a stream for ``device``.  None = auto-detect loopback."""
        if device is None:
            device = find_loopback_device()
            if device is None:
                raise RuntimeError(
                    "No loopback audio device found. Install one (e.g. BlackHole "
                    "on macOS) or pass an explicit device."
                )
        if device in self._streams:
            logger.debug(f"Device {device!r} already connected")
            return device

        stream = sd.InputStream(
            device=device,
            channels=2,
            samplerate=self._sample_rate,
            blocksize=self._block_size,
            dtype="float32",
            callback=partial(self._audio_callback, device),
        )
        try:
            stream.start()
        except Exception:
            stream.close()
            raise
        with self._lock:
            self._buffers[device] = np.zeros((self._size, 2), dtype=np.float32)
        self._streams[device] = stream
        logger.info(f"Capturing from device {device!r}")
        return device

    def disconnect(self, device):
        """Stop and close the stream for ``device``; unknown devices are ignored."""
        stream = self._streams.pop(device, None)
        if stream is None:
            return
        stream.stop()
        stream.close()
        with self._lock:
            self._buffers.pop(device, None)
        logger.info(f"Stopped capturing from device {device!r}")

    def close(self):
        """Disconnect every device."""
        for device in list(self._streams):
            self.disconnect(device)

    def sample(self) -> RawFrame:
        """Latest transform_size frames, averaged across connected devices."""
        with self._lock:
            if self._buffers:
                stereo = np.mean(list(self._buffers.values()), axis=0)
            else:
                stereo = np.zeros((self._size, 2), dtype=np.float32)
        return frame_from_stereo(stereo)

    def _audio_callback(self, device, indata, frames, time_info, status):
        if status:
            logger.warning(f"[audio] {device!r}: {status}")
        with self._lock:
            buf = self._buffers.get(device)
            if buf is None or frames == 0:
                return
            if frames >= self._size:
                buf[:] = indata[-self._size:, :2]
            else:
                buf[:-frames] = buf[frames:]
                buf[-frames:] = indata[:, :2]

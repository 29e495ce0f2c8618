"""
Tests for the sounddevice-backed live source, with the stream API faked.
"""

import numpy as np
import pytest

try:
    import audio_capture
except OSError as exc:  # PortAudio library not installed
    pytest.skip(f"sounddevice unavailable: {exc}", allow_module_level=True)

from audio_capture import SoundDeviceSource, find_loopback_device
from audio_processor import AudioProcessor, LiveCapture

DEVICES = [
    {"name": "Built-in Microphone", "max_input_channels": 1},
    {"name": "BlackHole 2ch", "max_input_channels": 2},
]


class FakeStream:
    """Stands in for sounddevice.InputStream."""

    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = False
        FakeStream.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True

    def feed(self, block):
        block = np.asarray(block, dtype=np.float32)
        self.callback(block, block.shape[0], None, None)


@pytest.fixture
def fake_sd(monkeypatch):
    FakeStream.instances = []
    monkeypatch.setattr(audio_capture.sd, "InputStream", FakeStream)
    monkeypatch.setattr(audio_capture.sd, "query_devices", lambda: DEVICES)
    return FakeStream


class TestFindLoopbackDevice:
    def test_finds_blackhole(self, fake_sd):
        assert find_loopback_device() == 1

    def test_none_when_missing(self, monkeypatch):
        monkeypatch.setattr(audio_capture.sd, "query_devices", lambda: DEVICES[:1])
        assert find_loopback_device() is None


class TestSoundDeviceSource:
    """Tests for SoundDeviceSource with a fake stream."""

    def test_connect_auto_detects(self, fake_sd):
        source = SoundDeviceSource(transform_size=8)
        assert source.connect() == 1
        stream = fake_sd.instances[0]
        assert stream.started
        assert stream.kwargs["device"] == 1
        assert stream.kwargs["channels"] == 2
        assert source.devices == [1]

    def test_connect_without_loopback_raises(self, fake_sd, monkeypatch):
        monkeypatch.setattr(audio_capture.sd, "query_devices", lambda: DEVICES[:1])
        with pytest.raises(RuntimeError):
            SoundDeviceSource(transform_size=8).connect()

    def test_connect_twice_opens_one_stream(self, fake_sd):
        source = SoundDeviceSource(transform_size=8)
        source.connect(3)
        source.connect(3)
        assert len(fake_sd.instances) == 1

    def test_sample_without_devices_is_silence(self, fake_sd):
        frame = SoundDeviceSource(transform_size=8).sample()
        for channel in frame.channels():
            assert channel.tolist() == [128] * 8

    def test_callback_fills_latest_frames(self, fake_sd):
        source = SoundDeviceSource(transform_size=8)
        source.connect(0)
        stream = fake_sd.instances[0]
        stream.feed(np.tile([0.5, -0.5], (8, 1)))
        stream.feed(np.tile([0.0, 0.0], (4, 1)))

        frame = source.sample()
        assert frame.left.tolist() == [192] * 4 + [128] * 4
        assert frame.right.tolist() == [64] * 4 + [128] * 4
        assert frame.mono.tolist() == [128] * 8

    def test_long_block_keeps_tail(self, fake_sd):
        source = SoundDeviceSource(transform_size=4)
        source.connect(0)
        block = np.zeros((6, 2))
        block[-4:, 0] = 0.5
        fake_sd.instances[0].feed(block)
        assert source.sample().left.tolist() == [192] * 4

    def test_devices_are_mixed(self, fake_sd):
        source = SoundDeviceSource(transform_size=4)
        source.connect(0)
        source.connect(1)
        fake_sd.instances[0].feed(np.tile([1.0, 0.0], (4, 1)))
        fake_sd.instances[1].feed(np.tile([0.0, 0.0], (4, 1)))
        assert source.sample().left.tolist() == [192] * 4

    def test_failed_start_leaves_mix_untouched(self, fake_sd, monkeypatch):
        """A device that fails to start adds nothing to the mix and is closed."""
        source = SoundDeviceSource(transform_size=4)
        source.connect(0)

        def broken_start(self):
            raise RuntimeError("device busy")

        monkeypatch.setattr(FakeStream, "start", broken_start)
        with pytest.raises(RuntimeError):
            source.connect(1)

        assert source.devices == [0]
        assert fake_sd.instances[1].closed
        fake_sd.instances[0].feed(np.tile([0.5, 0.0], (4, 1)))
        assert source.sample().left.tolist() == [192] * 4

    def test_failed_open_leaves_mix_untouched(self, fake_sd, monkeypatch):
        source = SoundDeviceSource(transform_size=4)
        source.connect(0)

        def broken_stream(**kwargs):
            raise RuntimeError("bad device index")

        monkeypatch.setattr(audio_capture.sd, "InputStream", broken_stream)
        with pytest.raises(RuntimeError):
            source.connect(5)

        assert source.devices == [0]
        fake_sd.instances[0].feed(np.tile([0.5, 0.0], (4, 1)))
        assert source.sample().left.tolist() == [192] * 4

    def test_disconnect_closes_stream(self, fake_sd):
        source = SoundDeviceSource(transform_size=8)
        source.connect(0)
        source.disconnect(0)
        source.disconnect(0)
        stream = fake_sd.instances[0]
        assert stream.closed and not stream.started
        assert source.devices == []

    def test_close_disconnects_everything(self, fake_sd):
        source = SoundDeviceSource(transform_size=8)
        source.connect(0)
        source.connect(1)
        source.close()
        assert all(s.closed for s in fake_sd.instances)

    def test_drives_processor(self, fake_sd):
        source = SoundDeviceSource(transform_size=16)
        processor = AudioProcessor(16, source=LiveCapture(source))
        processor.attach_source(2)
        fake_sd.instances[0].feed(np.zeros((16, 2)))
        spectra = processor.sample()
        np.testing.assert_allclose(spectra.mono, 0.0)
        processor.detach_source(2)
        assert fake_sd.instances[0].closed

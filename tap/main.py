"""Audio tap monitor: host entry point.

Pulls raw byte snapshots from a live source at a fixed tick rate, runs them
through the AudioProcessor, and prints a one-line summary per tick.

Source selection:
  --tone HZ       Synthetic sine tone (no audio hardware needed)
  --device DEV    Capture from a sounddevice input (repeatable)
  (default)       Auto-detect a loopback device

Usage:
    python tap/main.py [--device DEV ...] [--size 1024] [--no-equalize]
    python tap/main.py --tone 440 --ticks 100
"""

import argparse
import logging
import signal
import time

import numpy as np

from audio_capture import SoundDeviceSource
from audio_processor import AudioProcessor, LiveCapture
from fft_engine import DEFAULT_TRANSFORM_SIZE, ConfigError, InputLengthError
from live_source import SAMPLE_RATE, ToneSource

TARGET_FPS = 30

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Audio tap spectrum monitor")
    parser.add_argument("--size", type=int, default=DEFAULT_TRANSFORM_SIZE,
                        help="Transform size, a power of two (default: 1024)")
    parser.add_argument("--no-equalize", action="store_true",
                        help="Disable the high-frequency equalization curve")
    parser.add_argument("--device", action="append", default=None,
                        help="sounddevice input index or name (repeatable)")
    parser.add_argument("--tone", type=float, default=None, metavar="HZ",
                        help="Use a synthetic sine tone instead of capture")
    parser.add_argument("--sample-rate", type=int, default=SAMPLE_RATE,
                        help="Sample rate in Hz (default: 44100)")
    parser.add_argument("--fps", type=float, default=TARGET_FPS,
                        help="Ticks per second (default: 30)")
    parser.add_argument("--ticks", type=int, default=None,
                        help="Stop after this many ticks")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging")
    return parser


def _parse_device(value: str):
    return int(value) if value.isdigit() else value


def summarize(processor: AudioProcessor, sample_rate: int = SAMPLE_RATE) -> str:
    """One-line text summary of the processor's latest tick."""
    spectra = processor.current_spectra()
    frame = processor.current_frame()
    if spectra is None or frame is None:
        return "no data"
    peak_bin = int(np.argmax(spectra.mono))
    peak = float(spectra.mono[peak_bin])
    hz = peak_bin * sample_rate / processor.config.transform_size
    rms_l, rms_r = np.sqrt(np.mean(frame.decimated_stereo ** 2, axis=1))
    return (f"bin {peak_bin:4d} ({hz:7.1f} Hz)  peak {peak:9.2f}  "
            f"L {rms_l:6.1f}  R {rms_r:6.1f}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.fps <= 0:
        print("[tap] --fps must be positive")
        return 2

    if args.tone is not None:
        print(f"[tap] Using synthetic {args.tone:.1f} Hz tone")
        source = ToneSource(args.tone, transform_size=args.size,
                            sample_rate=args.sample_rate)
        devices = []
    else:
        source = SoundDeviceSource(transform_size=args.size,
                                   sample_rate=args.sample_rate)
        devices = [_parse_device(d) for d in args.device] if args.device else [None]

    try:
        processor = AudioProcessor(args.size, equalize=not args.no_equalize,
                                   source=LiveCapture(source))
    except ConfigError as e:
        print(f"[tap] {e}")
        return 2

    running = True

    def shutdown(sig, frame):
        nonlocal running
        running = False

    previous = {
        sig: signal.signal(sig, shutdown) for sig in (signal.SIGINT, signal.SIGTERM)
    }

    frame_interval = 1.0 / args.fps
    ticks = 0
    try:
        for device in devices:
            processor.attach_source(device)
        print(f"[tap] Running at {args.fps:g} FPS, size={args.size} "
              "(Ctrl+C to quit)")

        while running and (args.ticks is None or ticks < args.ticks):
            t0 = time.monotonic()

            try:
                processor.sample()
            except InputLengthError as e:
                logger.warning(f"Skipping tick: {e}")
            else:
                print(f"\r{summarize(processor, args.sample_rate)}", end="",
                      flush=True)
            ticks += 1

            # Sleep remainder of tick
            elapsed = time.monotonic() - t0
            if elapsed < frame_interval:
                time.sleep(frame_interval - elapsed)
    finally:
        print("\n[tap] Shutting down...")
        if isinstance(source, SoundDeviceSource):
            for device in source.devices:
                processor.detach_source(device)
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

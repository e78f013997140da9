from __future__ import annotations

import numpy as np
import pytest

from slicerlib.models import Clip

SR = 44100


def make_sine(seconds: float, sr: int = SR, freq: float = 440.0,
              channels: int = 1, amp: float = 0.5, name: str = "sine.wav") -> Clip:
    t = np.arange(int(sr * seconds)) / sr
    x = amp * np.sin(2 * np.pi * freq * t)
    if channels > 1:
        x = np.column_stack([x] * channels)
    return Clip(name, sr, x)


def make_dc(seconds: float, level: float = 0.5, sr: int = SR, channels: int = 1) -> Clip:
    return Clip("dc.wav", sr, np.full((int(sr * seconds), channels), level))


class FakeStream:
    """Stands in for sounddevice.OutputStream; tests pull audio via render()."""

    def __init__(self, samplerate, channels, callback):
        self.samplerate = samplerate
        self.channels = channels
        self.callback = callback
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True


class FakeStreamFactory:
    def __init__(self):
        self.streams: list[FakeStream] = []

    def __call__(self, *, samplerate, channels, callback):
        stream = FakeStream(samplerate, channels, callback)
        self.streams.append(stream)
        return stream


class EventRecorder:
    def __init__(self, bus, *event_types):
        self.events: list[tuple[str, dict]] = []
        for event_type in event_types:
            bus.subscribe(event_type, self._handler(event_type))

    def _handler(self, event_type):
        def handler(**data):
            self.events.append((event_type, data))
        return handler

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture
def sine_clip() -> Clip:
    """Five seconds of mono 440 Hz at 44.1 kHz."""
    return make_sine(5.0)


@pytest.fixture
def stereo_clip() -> Clip:
    return make_sine(1.0, channels=2)


@pytest.fixture
def fake_streams() -> FakeStreamFactory:
    return FakeStreamFactory()

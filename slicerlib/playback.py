"""Click-free region playback on a sounddevice OutputStream."""

from __future__ import annotations

import threading
from collections import deque
from typing import Any, Callable

import numpy as np

from . import dsp
from .errors import PlaybackError
from .events import (
    EventBus,
    PLAYBACK_FINISHED,
    PLAYBACK_STARTED,
    PLAYBACK_STOPPED,
)
from .log import dbg
from .models import Clip, EffectsSettings, PlaybackState, Region
from .rendering import render_region

StreamFactory = Callable[..., Any]


def _sounddevice_stream(*, samplerate: int, channels: int, callback) -> Any:
    # Imported lazily: sounddevice needs PortAudio at import time.
    import sounddevice as sd
    return sd.OutputStream(
        samplerate=samplerate,
        channels=channels,
        dtype="float32",
        callback=callback,
    )


def _fit_channels(audio: np.ndarray) -> np.ndarray:
    """Downmix to stereo if there are more than two channels."""
    if audio.shape[1] <= 2:
        return audio
    n = audio.shape[1]
    left = np.zeros(audio.shape[0], dtype=audio.dtype)
    right = np.zeros(audio.shape[0], dtype=audio.dtype)
    for ch in range(n):
        if ch % 2 == 0:
            left += audio[:, ch]
        else:
            right += audio[:, ch]
    left /= max(1, (n + 1) // 2)
    right /= max(1, n // 2)
    return np.column_stack([left, right])


class _Voice:
    """One scheduled region: pre-faded samples plus a release ramp."""

    def __init__(self, data: np.ndarray, region: Region, clip_duration: float,
                 samplerate: int, speed: float, ramp: int, loop: bool):
        self.data = data
        self.region = region
        self.clip_duration = clip_duration
        self.samplerate = samplerate
        self.speed = speed
        self.ramp = ramp
        self.loop = loop
        self.pos = 0
        self.frames_played = 0
        self.releasing = False
        self.release_pos = 0
        self.done = False
        self.natural_end = False

    @property
    def channels(self) -> int:
        return int(self.data.shape[1])

    def release(self) -> None:
        """Start the fade-out at the next rendered frame."""
        self.releasing = True

    def _pull(self, frames: int) -> np.ndarray:
        n = len(self.data)
        if n == 0:
            return self.data[:0]
        if not self.loop:
            block = self.data[self.pos:self.pos + frames]
            self.pos += len(block)
            return block
        parts = []
        remaining = frames
        while remaining > 0:
            take = min(remaining, n - self.pos)
            parts.append(self.data[self.pos:self.pos + take])
            self.pos = (self.pos + take) % n
            remaining -= take
        return np.concatenate(parts) if len(parts) > 1 else parts[0]

    def read(self, frames: int) -> np.ndarray:
        if self.done:
            return self.data[:0]
        if self.releasing:
            frames = min(frames, self.ramp - self.release_pos)
        block = self._pull(frames)
        if self.releasing:
            k = len(block)
            steps = self.release_pos + np.arange(1, k + 1, dtype=np.float64)
            gain = np.clip(1.0 - steps / self.ramp, 0.0, 1.0)
            block = (block * gain[:, np.newaxis]).astype(np.float32)
            self.release_pos += k
            if self.release_pos >= self.ramp or k < frames:
                self.done = True
        elif len(block) < frames:
            self.done = True
            self.natural_end = True
        self.frames_played += len(block)
        return block

    def progress(self) -> float:
        if self.clip_duration <= 0:
            return 0.0
        region_sec = self.region.length * self.clip_duration
        elapsed = self.frames_played / self.samplerate * self.speed
        if self.loop and region_sec > 0:
            elapsed = elapsed % region_sec
        else:
            elapsed = min(elapsed, region_sec)
        p = (self.region.start * self.clip_duration + elapsed) / self.clip_duration
        return min(1.0, max(0.0, p))


class PlaybackScheduler:
    """Plays regions with a short linear fade at every start and stop.

    States are ``IDLE`` and ``PLAYING``.  ``play()`` always stops first; a
    stopped voice finishes its fade-out before the next voice starts, so
    a restart never overlaps two voices.  Reaching the region's natural
    end returns to ``IDLE`` exactly once; an explicit ``stop()`` disarms
    that.

    The output stream stays open between plays and renders silence while
    idle.  ``render()`` is the stream callback body and can be pulled
    directly for offline checks.

    Parameters
    ----------
    event_bus : EventBus or None
        Receives ``playback.started``, ``playback.stopped`` and
        ``playback.finished``.  ``finished`` is emitted from the audio
        thread.
    stream_factory : callable or None
        ``factory(samplerate=, channels=, callback=)`` returning an object
        with ``start()``, ``stop()`` and ``close()``.  Defaults to
        ``sounddevice.OutputStream``.
    ramp_seconds : float
        Fade length.
    """

    def __init__(self, event_bus: EventBus | None = None,
                 stream_factory: StreamFactory | None = None,
                 ramp_seconds: float = dsp.RAMP_SECONDS):
        self.event_bus = event_bus
        self.ramp_seconds = ramp_seconds
        self._stream_factory = stream_factory or _sounddevice_stream
        self._lock = threading.Lock()
        self._voices: deque[_Voice] = deque()
        self._active: _Voice | None = None
        self._stream = None
        self._stream_format: tuple[int, int] | None = None
        self._channels = 1

    def _emit(self, event_type: str, **data):
        if self.event_bus:
            self.event_bus.emit(event_type, **data)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        return PlaybackState.PLAYING if self.playing() else PlaybackState.IDLE

    def playing(self) -> bool:
        with self._lock:
            return self._active is not None

    def region(self) -> Region | None:
        with self._lock:
            return self._active.region if self._active is not None else None

    def progress(self) -> float:
        """Playhead position in ``[0, 1]`` relative to the whole clip.

        Polled once per frame by the view.  Returns 0.0 while idle; check
        :meth:`playing` rather than relying on this value.
        """
        with self._lock:
            return self._active.progress() if self._active is not None else 0.0

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def play(self, clip: Clip, region: Region,
             settings: EffectsSettings | None = None) -> None:
        """Stop whatever is playing and start *region* of *clip*.

        The region is rendered through the effects chain before anything
        changes, so invalid settings leave the current playback untouched.
        """
        settings = settings or EffectsSettings()
        data = render_region(clip, region, settings, ramp_seconds=self.ramp_seconds)
        data = _fit_channels(data)
        voice = _Voice(
            data, region, clip.duration, clip.samplerate, settings.speed,
            dsp.ramp_frames(clip.samplerate, self.ramp_seconds), settings.loop,
        )

        self.stop()
        self._ensure_stream(clip.samplerate, voice.channels)
        with self._lock:
            self._voices.append(voice)
            self._active = voice
        dbg(f"play {region.start:.5f}-{region.end:.5f} "
            f"({len(data)} frames, loop={settings.loop})")
        self._emit(PLAYBACK_STARTED, region=region)

    def stop(self) -> bool:
        """Fade out the current voice.  Returns False if already idle."""
        with self._lock:
            voice = self._active
            if voice is None:
                return False
            voice.release()
            self._active = None
        dbg("stop")
        self._emit(PLAYBACK_STOPPED, region=voice.region)
        return True

    def close(self) -> None:
        """Stop playback and release the output stream."""
        self.stop()
        stream = self._stream
        self._stream = None
        self._stream_format = None
        with self._lock:
            self._voices.clear()
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                dbg(f"closing output stream failed: {e}")

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _ensure_stream(self, samplerate: int, channels: int) -> None:
        fmt = (samplerate, channels)
        if self._stream is not None and self._stream_format == fmt:
            return
        if self._stream is not None:
            old = self._stream
            self._stream = None
            with self._lock:
                self._voices.clear()
            try:
                old.stop()
                old.close()
            except Exception as e:
                dbg(f"closing output stream failed: {e}")
        try:
            stream = self._stream_factory(
                samplerate=samplerate, channels=channels, callback=self._callback,
            )
            stream.start()
        except Exception as e:
            raise PlaybackError(f"Cannot open audio output: {e}") from e
        self._stream = stream
        self._stream_format = fmt
        self._channels = channels

    def _callback(self, outdata, frames, time_info, status):
        if status:
            dbg(f"stream status: {status}")
        outdata[:] = self.render(frames)

    def render(self, frames: int) -> np.ndarray:
        """Produce the next *frames* output frames."""
        finished: _Voice | None = None
        with self._lock:
            channels = self._voices[0].channels if self._voices else self._channels
            out = np.zeros((frames, channels), dtype=np.float32)
            filled = 0
            while filled < frames and self._voices:
                voice = self._voices[0]
                block = voice.read(frames - filled)
                out[filled:filled + len(block)] = block
                filled += len(block)
                if voice.done:
                    self._voices.popleft()
                    if voice.natural_end and voice is self._active:
                        self._active = None
                        finished = voice
                elif len(block) == 0:
                    break
        if finished is not None:
            dbg("natural end")
            self._emit(PLAYBACK_FINISHED, region=finished.region)
        return out

"""Value types shared across the library: clips, regions, effects, results."""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, NamedTuple

import numpy as np


class PlaybackState(Enum):
    IDLE = "idle"
    PLAYING = "playing"


@dataclass(frozen=True)
class Region:
    """Half-open interval ``[start, end)`` on the normalized timeline.

    Regions are derived from the breakpoint set on every query and never
    stored; compare them by value, not identity.
    """
    start: float
    end: float

    @property
    def length(self) -> float:
        return self.end - self.start

    def contains(self, position: float) -> bool:
        return self.start <= position < self.end


class EnvelopeBucket(NamedTuple):
    min: float
    max: float


@dataclass(frozen=True, eq=False)
class Clip:
    """An immutable decoded recording.

    Attributes:
        name:       Display name (usually the source file name).
        samplerate: Frames per second.
        data:       float32 array shaped ``(frames, channels)``, read-only.
    """
    name: str
    samplerate: int
    data: np.ndarray = field(repr=False)

    def __post_init__(self):
        arr = np.asarray(self.data, dtype=np.float32)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        if arr.ndim != 2:
            raise ValueError(f"Clip data must be 1-D or 2-D, got {arr.ndim}-D")
        if int(self.samplerate) <= 0:
            raise ValueError(f"Clip samplerate must be positive, got {self.samplerate}")
        arr = np.array(arr, dtype=np.float32, order="C", copy=True)
        arr.setflags(write=False)
        object.__setattr__(self, "data", arr)
        object.__setattr__(self, "samplerate", int(self.samplerate))

    @property
    def frames(self) -> int:
        return int(self.data.shape[0])

    @property
    def channels(self) -> int:
        return int(self.data.shape[1])

    @property
    def duration(self) -> float:
        return self.frames / self.samplerate

    def channel(self, index: int) -> np.ndarray:
        """Read-only view of one channel."""
        return self.data[:, index]


@dataclass(frozen=True)
class EffectsSettings:
    """Plain numeric effects parameters.

    Each field is validated on its own (see ``config.EFFECTS_PARAMS``);
    there are no cross-field invariants beyond each field's range.
    ``highpass_hz == 0`` and ``lowpass_hz is None`` bypass the filters.
    ``loop`` only affects live playback.
    """
    speed: float = 1.0
    highpass_hz: float = 0.0
    lowpass_hz: float | None = None
    compression_threshold_db: float = 0.0
    gain_db: float = 0.0
    loop: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "EffectsSettings":
        known = {k: v for k, v in values.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def with_lowpass(self, hz: float | None) -> "EffectsSettings":
        """Set the low-pass cutoff, dragging the high-pass down with it so
        the pass band never inverts."""
        hp = self.highpass_hz
        if hz is not None and hz < hp:
            hp = hz
        return replace(self, lowpass_hz=hz, highpass_hz=hp)

    def with_highpass(self, hz: float) -> "EffectsSettings":
        """Set the high-pass cutoff, pushing the low-pass up with it."""
        lp = self.lowpass_hz
        if lp is not None and lp < hz:
            lp = hz
        return replace(self, highpass_hz=hz, lowpass_hz=lp)


@dataclass
class ExportResult:
    """Encoded WAV bytes plus their content-addressed file name."""
    data: bytes = field(repr=False)
    filename: str
    frames: int
    samplerate: int
    channels: int

    @property
    def duration(self) -> float:
        return self.frames / self.samplerate if self.samplerate else 0.0

    def write(self, directory: str) -> str:
        """Write the file into *directory* and return its path.

        Re-exporting identical content lands on the same path, so an
        existing file is left in place.
        """
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, self.filename)
        if not os.path.isfile(path):
            with open(path, "wb") as f:
                f.write(self.data)
        return path

"""Decoding clips with soundfile, plus duration and format helpers."""

from __future__ import annotations

import io
import os

import soundfile as sf

from .errors import DecodeFailure
from .models import Clip


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------

def db_to_linear(db: float) -> float:
    return 10 ** (db / 20.0)


def format_duration(samples: int, samplerate: int) -> str:
    if samplerate <= 0:
        return "00:00.000"
    seconds = samples / samplerate
    m = int(seconds // 60)
    s = int(seconds % 60)
    ms = int((seconds % 1) * 1000)
    return f"{m:02d}:{s:02d}.{ms:03d}"


def format_of(clip: Clip) -> str:
    """``"mono"``, ``"stereo"`` or ``"N channels"``."""
    if clip.channels == 1:
        return "mono"
    if clip.channels == 2:
        return "stereo"
    return f"{clip.channels} channels"


def describe(clip: Clip) -> dict[str, object]:
    """Summary used by detail panels and the CLI."""
    return {
        "name": clip.name,
        "samplerate": clip.samplerate,
        "channels": clip.channels,
        "format": format_of(clip),
        "frames": clip.frames,
        "duration_sec": clip.duration,
        "duration_fmt": format_duration(clip.frames, clip.samplerate),
    }


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _read(source, name: str) -> Clip:
    try:
        data, samplerate = sf.read(source, dtype="float32", always_2d=True)
    except (RuntimeError, TypeError, ValueError) as e:  # LibsndfileError is a RuntimeError
        raise DecodeFailure(f"Cannot decode {name}: {e}") from e
    if data.shape[0] == 0:
        raise DecodeFailure(f"{name} contains no audio frames")
    return Clip(name=name, samplerate=int(samplerate), data=data)


def decode(raw: bytes, name: str = "untitled") -> Clip:
    """Decode an in-memory audio file (any container libsndfile reads).

    Raises :class:`DecodeFailure` on malformed or empty input.
    """
    if not raw:
        raise DecodeFailure(f"{name} is empty")
    return _read(io.BytesIO(raw), name)


def load_clip(filepath: str) -> Clip:
    """Read an audio file from disk into a :class:`Clip`."""
    if not os.path.isfile(filepath):
        raise DecodeFailure(f"File not found: {filepath}")
    return _read(filepath, os.path.basename(filepath))

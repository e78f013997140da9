"""Offline region rendering and content-addressed WAV export.

``export_region`` is a pure function of ``(clip, region, settings)``:
the same inputs always give the same bytes, and the file name is the
SHA-256 of those bytes.
"""

from __future__ import annotations

import hashlib
import io
import math
import time
from concurrent.futures import Future, ThreadPoolExecutor

import numpy as np
import soundfile as sf

from . import dsp
from .config import validate_effects
from .errors import EncodeFailure, InvalidEffectsParameter, RenderFailure
from .log import dbg
from .models import Clip, EffectsSettings, ExportResult, Region

WAV_EXTENSION = ".wav"
WAV_SUBTYPES = ("PCM_16", "PCM_24", "PCM_32")


# --------------------------------------------------------------------------
# Geometry
# --------------------------------------------------------------------------

def validate_region(region: Region) -> None:
    if not (math.isfinite(region.start) and math.isfinite(region.end)
            and 0.0 <= region.start < region.end <= 1.0):
        raise InvalidEffectsParameter(
            "region", (region.start, region.end),
            "region must satisfy 0 <= start < end <= 1.",
        )


def output_frames(clip: Clip, region: Region, speed: float = 1.0) -> int:
    """Rendered length in frames: ``clip.frames * region.length / speed``."""
    return int(round(clip.frames * (region.end - region.start) / speed))


# --------------------------------------------------------------------------
# Render
# --------------------------------------------------------------------------

def render_region(
    clip: Clip,
    region: Region,
    settings: EffectsSettings | None = None,
    *,
    ramp_seconds: float = dsp.RAMP_SECONDS,
    fade: bool = True,
) -> np.ndarray:
    """Render *region* of *clip* through the effects chain.

    Order: rate change, high-pass, low-pass, compressor, gain, fade.
    Returns float32 ``(frames, channels)``.

    Raises InvalidEffectsParameter before any work if a parameter is out
    of range, and RenderFailure if the engine itself fails.
    """
    settings = settings or EffectsSettings()
    validate_region(region)
    validate_effects(settings, clip.samplerate)

    sr = clip.samplerate
    n_out = output_frames(clip, region, settings.speed)
    t0 = time.perf_counter()
    try:
        out = dsp.change_speed(clip.data, region.start * clip.frames,
                               settings.speed, n_out)
        out = dsp.highpass(out, sr, settings.highpass_hz)
        out = dsp.lowpass(out, sr, settings.lowpass_hz)
        out = dsp.compress(out, sr, settings.compression_threshold_db)
        out = dsp.apply_gain(out, settings.gain_db)
        if fade:
            out = dsp.apply_fade(out, dsp.ramp_frames(sr, ramp_seconds))
        if not np.all(np.isfinite(out)):
            raise FloatingPointError("non-finite samples in render output")
        result = np.ascontiguousarray(out, dtype=np.float32)
    except MemoryError as e:
        raise RenderFailure(f"Out of memory rendering {n_out} frames") from e
    except (ValueError, FloatingPointError, np.linalg.LinAlgError) as e:
        raise RenderFailure(f"Rendering failed: {e}") from e
    dt = (time.perf_counter() - t0) * 1000
    dbg(f"rendered {n_out} frames x {clip.channels} ch in {dt:.1f} ms")
    return result


# --------------------------------------------------------------------------
# Encode
# --------------------------------------------------------------------------

def encode_wav(samples: np.ndarray, samplerate: int, subtype: str = "PCM_16") -> bytes:
    """Encode float samples as an integer-PCM WAV file.

    Samples are clipped to ``[-1, 1]`` first; PCM encoding would otherwise
    wrap overs around.
    """
    if subtype not in WAV_SUBTYPES:
        raise EncodeFailure(
            f"Unsupported WAV subtype {subtype!r}; expected one of {', '.join(WAV_SUBTYPES)}")
    data = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    if data.ndim == 1:
        data = data.reshape(-1, 1)
    buf = io.BytesIO()
    try:
        sf.write(buf, data, samplerate, format="WAV", subtype=subtype)
    except (RuntimeError, TypeError, ValueError) as e:
        raise EncodeFailure(f"WAV encoding failed: {e}") from e
    return buf.getvalue()


def content_name(data: bytes, extension: str = WAV_EXTENSION) -> str:
    """Lowercase SHA-256 hex digest of *data* plus *extension*."""
    return hashlib.sha256(data).hexdigest() + extension


def export_region(
    clip: Clip,
    region: Region,
    settings: EffectsSettings | None = None,
    *,
    subtype: str = "PCM_16",
    ramp_seconds: float = dsp.RAMP_SECONDS,
) -> ExportResult:
    """Render and encode *region*, naming the result by its own digest."""
    samples = render_region(clip, region, settings, ramp_seconds=ramp_seconds)
    data = encode_wav(samples, clip.samplerate, subtype)
    return ExportResult(
        data=data,
        filename=content_name(data),
        frames=int(samples.shape[0]),
        samplerate=clip.samplerate,
        channels=int(samples.shape[1]),
    )


class Exporter:
    """Runs exports on a background thread so the control thread stays free.

    There is no mid-render cancellation: a submitted export runs to
    completion or fails.
    """

    def __init__(self, subtype: str = "PCM_16", ramp_seconds: float = dsp.RAMP_SECONDS):
        self.subtype = subtype
        self.ramp_seconds = ramp_seconds
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="export")

    def submit(self, clip: Clip, region: Region,
               settings: EffectsSettings | None = None) -> "Future[ExportResult]":
        return self._pool.submit(
            export_region, clip, region, settings,
            subtype=self.subtype, ramp_seconds=self.ramp_seconds,
        )

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

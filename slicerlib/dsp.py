"""Offline effects stages: rate change, filters, compressor, gain, fades.

Every stage is a pure function of its inputs.  Nothing here reads clocks
or random state, which keeps rendered output bit-identical across runs.
All arrays are ``(frames, channels)``.
"""

from __future__ import annotations

import math

import numpy as np
from scipy.signal import butter, lfilter, sosfilt

from .audio import db_to_linear

RAMP_SECONDS = 0.001

# Compressor constants (match the usual browser DynamicsCompressor defaults)
COMP_KNEE_DB = 30.0
COMP_RATIO = 12.0
COMP_ATTACK_S = 0.003
COMP_RELEASE_S = 0.25

PERCENT_MIN_HZ = 20.0
PERCENT_MAX_HZ = 20000.0


# ---------------------------------------------------------------------------
# Parameter mapping
# ---------------------------------------------------------------------------

def pitch_to_speed(semitones: float = 0.0, cents: float = 0.0) -> float:
    """Playback rate for a pitch offset: +12 semitones doubles the speed."""
    return 2.0 ** ((cents + 100.0 * semitones) / 1200.0)


def percent_to_hz(percent: float) -> float:
    """Map a 0–100 % control onto 20 Hz–20 kHz logarithmically."""
    lo = math.log10(PERCENT_MIN_HZ)
    hi = math.log10(PERCENT_MAX_HZ)
    return 10.0 ** (lo + (hi - lo) * (percent / 100.0))


def ramp_frames(samplerate: int, seconds: float = RAMP_SECONDS) -> int:
    """Length in frames of a click-free gain ramp (at least one frame)."""
    return max(1, int(round(samplerate * seconds)))


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def change_speed(data: np.ndarray, start: float, speed: float, out_frames: int) -> np.ndarray:
    """Resample by linear interpolation, reading from fractional frame *start*.

    Output frame ``i`` takes the source value at ``start + i * speed``.
    """
    n_src = data.shape[0]
    out = np.zeros((out_frames, data.shape[1]), dtype=np.float64)
    if out_frames <= 0 or n_src == 0:
        return out
    positions = start + np.arange(out_frames, dtype=np.float64) * speed
    grid = np.arange(n_src, dtype=np.float64)
    for ch in range(data.shape[1]):
        out[:, ch] = np.interp(positions, grid, data[:, ch].astype(np.float64))
    return out


def _butter_sos(btype: str, cutoff_hz: float, sr: int, order: int = 2):
    # Callers validate 0 < cutoff < Nyquist; butter() raises otherwise
    return butter(order, cutoff_hz / (0.5 * sr), btype=btype, output="sos")


def highpass(data: np.ndarray, sr: int, cutoff_hz: float) -> np.ndarray:
    """Second-order Butterworth high-pass.  0 Hz passes the input through."""
    if cutoff_hz <= 0.0 or data.shape[0] == 0:
        return data
    return sosfilt(_butter_sos("highpass", cutoff_hz, sr), data, axis=0)


def lowpass(data: np.ndarray, sr: int, cutoff_hz: float | None) -> np.ndarray:
    """Second-order Butterworth low-pass.  ``None`` or Nyquist passes through."""
    if cutoff_hz is None or cutoff_hz >= sr / 2.0 or data.shape[0] == 0:
        return data
    return sosfilt(_butter_sos("lowpass", cutoff_hz, sr), data, axis=0)


def _one_pole(x: np.ndarray, sr: int, time_s: float) -> np.ndarray:
    a = math.exp(-1.0 / (sr * time_s))
    return lfilter([1.0 - a], [1.0, -a], x)


def gain_reduction_db(level_db: np.ndarray, threshold_db: float,
                      knee_db: float = COMP_KNEE_DB,
                      ratio: float = COMP_RATIO) -> np.ndarray:
    """Static curve: dB of gain change (<= 0) for each input level.

    The soft knee spans ``[threshold, threshold + knee]``, so a 0 dB
    threshold leaves anything at or below full scale untouched.
    """
    over = level_db - threshold_db
    slope = 1.0 / ratio - 1.0
    gr = np.zeros_like(over)
    in_knee = (over > 0.0) & (over < knee_db)
    gr[in_knee] = slope * over[in_knee] ** 2 / (2.0 * knee_db)
    above = over >= knee_db
    gr[above] = slope * (over[above] - knee_db / 2.0)
    return gr


def compress(data: np.ndarray, sr: int, threshold_db: float) -> np.ndarray:
    """Feed-forward compressor with channel-linked peak detection.

    Gain reduction follows increases at the attack rate and recovers at the
    slower release rate.
    """
    if data.shape[0] == 0:
        return data
    level = np.max(np.abs(data), axis=1)
    level_db = 20.0 * np.log10(np.maximum(level, 1e-12))
    gr = gain_reduction_db(level_db, threshold_db)
    if not np.any(gr < 0.0):
        return data
    fast = _one_pole(gr, sr, COMP_ATTACK_S)
    slow = _one_pole(fast, sr, COMP_RELEASE_S)
    smoothed = np.minimum(fast, slow)
    gain = 10.0 ** (smoothed / 20.0)
    return data * gain[:, np.newaxis]


def apply_gain(data: np.ndarray, gain_db: float) -> np.ndarray:
    if gain_db == 0.0:
        return data
    return data * db_to_linear(gain_db)


def fade_envelope(frames: int, ramp: int) -> np.ndarray:
    """Linear 0→1 ramp over *ramp* frames at the start and 1→0 at the end.

    The first and last frames are exactly zero.  For very short inputs the
    two ramps meet in a triangle.
    """
    if frames <= 0:
        return np.zeros(0, dtype=np.float64)
    idx = np.arange(frames, dtype=np.float64)
    up = idx / ramp
    down = (frames - 1 - idx) / ramp
    return np.clip(np.minimum(up, down), 0.0, 1.0)


def apply_fade(data: np.ndarray, ramp: int) -> np.ndarray:
    env = fade_envelope(data.shape[0], ramp)
    return data * env[:, np.newaxis]

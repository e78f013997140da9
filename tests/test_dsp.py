from __future__ import annotations

import numpy as np
import pytest

from slicerlib import dsp


def _rms(x: np.ndarray) -> float:
    return float(np.sqrt(np.mean(x * x) + 1e-12))


def _tone(freq: float, sr: int = 44100, seconds: float = 1.0, amp: float = 1.0) -> np.ndarray:
    t = np.arange(int(sr * seconds)) / sr
    return (amp * np.sin(2 * np.pi * freq * t)).reshape(-1, 1)


def test_pitch_and_percent_mapping():
    assert dsp.pitch_to_speed(12) == pytest.approx(2.0)
    assert dsp.pitch_to_speed(0, -1200) == pytest.approx(0.5)
    assert dsp.pitch_to_speed() == 1.0
    assert dsp.percent_to_hz(0) == pytest.approx(20.0)
    assert dsp.percent_to_hz(100) == pytest.approx(20000.0)
    assert dsp.percent_to_hz(50) == pytest.approx(np.sqrt(20.0 * 20000.0))


def test_ramp_frames():
    assert dsp.ramp_frames(44100) == 44
    assert dsp.ramp_frames(48000) == 48
    assert dsp.ramp_frames(100) == 1


def test_fade_envelope_is_zero_at_both_ends():
    env = dsp.fade_envelope(1000, 44)
    assert env[0] == 0.0
    assert env[-1] == 0.0
    assert env[44] == 1.0
    assert env[500] == 1.0
    assert np.all(np.diff(env[:45]) > 0)


def test_fade_envelope_short_input_is_triangle():
    env = dsp.fade_envelope(5, 44)
    assert env[0] == 0.0 and env[-1] == 0.0
    assert env[2] == pytest.approx(2 / 44)
    assert len(dsp.fade_envelope(0, 44)) == 0


def test_change_speed_interpolates():
    data = np.arange(10, dtype=np.float32).reshape(-1, 1)
    out = dsp.change_speed(data, 0.0, 2.0, 5)
    assert out[:, 0].tolist() == [0, 2, 4, 6, 8]
    out = dsp.change_speed(data, 1.0, 0.5, 4)
    assert out[:, 0].tolist() == [1.0, 1.5, 2.0, 2.5]


def test_highpass_removes_dc():
    out = dsp.highpass(np.ones((44100, 1)), 44100, 100.0)
    assert np.max(np.abs(out[22050:])) < 1e-3


def test_filters_bypass():
    x = _tone(1000.0)
    assert dsp.highpass(x, 44100, 0.0) is x
    assert dsp.lowpass(x, 44100, None) is x
    assert dsp.lowpass(x, 44100, 22050.0) is x


def test_lowpass_attenuates_high_band():
    sr = 44100
    x = _tone(10000.0, sr)
    y = dsp.lowpass(x, sr, 500.0)
    half = len(x) // 2
    assert _rms(y[half:]) < 0.05 * _rms(x[half:])

    low = _tone(100.0, sr)
    assert _rms(dsp.lowpass(low, sr, 5000.0)[half:]) == pytest.approx(_rms(low[half:]), rel=0.05)


def test_gain_reduction_curve():
    levels = np.array([-60.0, -20.0, -10.0, 0.0, 20.0])
    gr = dsp.gain_reduction_db(levels, -20.0)
    slope = 1.0 / dsp.COMP_RATIO - 1.0
    assert gr[0] == 0.0
    assert gr[1] == 0.0
    assert gr[2] < 0.0
    # inside the knee: quadratic
    assert gr[3] == pytest.approx(slope * 20.0 ** 2 / (2 * dsp.COMP_KNEE_DB))
    # above the knee: straight line
    assert gr[4] == pytest.approx(slope * (40.0 - dsp.COMP_KNEE_DB / 2))


def test_compressor_reduces_loud_input():
    sr = 44100
    x = _tone(440.0, sr, amp=1.0)
    y = dsp.compress(x, sr, -40.0)
    half = len(x) // 2
    assert np.max(np.abs(y[half:])) < 0.7 * np.max(np.abs(x[half:]))


def test_compressor_at_zero_threshold_is_transparent():
    x = _tone(440.0, amp=0.9)
    assert dsp.compress(x, 44100, 0.0) is x


def test_gain():
    x = np.full((10, 2), 0.5)
    assert dsp.apply_gain(x, 0.0) is x
    assert np.allclose(dsp.apply_gain(x, -6.0206), 0.25, atol=1e-4)

from __future__ import annotations

import io
import os

import pytest
import soundfile as sf

from conftest import EventRecorder, make_sine
from slicerlib.config import ConfigError
from slicerlib.errors import DecodeFailure, InvalidEffectsParameter, InvalidRegionIndex, NoClipLoaded
from slicerlib.events import (
    CLIP_CHANGED,
    CURSOR_CHANGED,
    EFFECTS_CHANGED,
    PLAYBACK_STARTED,
    REGIONS_CHANGED,
    SELECTION_CHANGED,
    SESSION_RESET,
    ZOOM_CHANGED,
)
from slicerlib.models import EffectsSettings, PlaybackState, Region
from slicerlib.session import Session

ALL_EVENTS = (CLIP_CHANGED, REGIONS_CHANGED, ZOOM_CHANGED, CURSOR_CHANGED,
              SELECTION_CHANGED, EFFECTS_CHANGED, SESSION_RESET, PLAYBACK_STARTED)


@pytest.fixture
def session(fake_streams):
    s = Session(stream_factory=fake_streams)
    yield s
    s.teardown()


@pytest.fixture
def loaded(session, sine_clip):
    session.load(sine_clip)
    return session


def test_load_installs_clip_and_single_region(session, sine_clip):
    rec = EventRecorder(session.event_bus, *ALL_EVENTS)
    session.load(sine_clip)
    assert session.clip is sine_clip
    assert session.regions() == [Region(0.0, 1.0)]
    assert rec.names() == [CLIP_CHANGED, REGIONS_CHANGED]
    assert session.info()["regions"] == 1


def test_slice_heal_scenario(loaded):
    rec = EventRecorder(loaded.event_bus, REGIONS_CHANGED)
    assert loaded.slice(0.5) == 1
    assert loaded.regions() == [Region(0.0, 0.5), Region(0.5, 1.0)]
    assert loaded.slice(0.5) is None
    loaded.heal(1)
    assert loaded.regions() == [Region(0.0, 1.0)]
    assert rec.names() == [REGIONS_CHANGED, REGIONS_CHANGED]


def test_heal_first_region_is_reported(loaded):
    with pytest.raises(InvalidRegionIndex):
        loaded.heal(0)


def test_slice_defaults_to_cursor(loaded):
    loaded.set_cursor(0.3)
    assert loaded.slice() == 1
    assert loaded.region(1).start == 0.3


def test_cursor_is_clamped(loaded):
    rec = EventRecorder(loaded.event_bus, CURSOR_CHANGED)
    loaded.set_cursor(1.7)
    assert loaded.cursor == 1.0
    loaded.set_cursor(-2.0)
    assert loaded.cursor == 0.0
    loaded.set_cursor(float("nan"))
    assert loaded.cursor == 0.0
    assert [d["position"] for _, d in rec.events] == [1.0, 0.0]


def test_selection_follows_structural_edits(loaded):
    loaded.slice(0.5)
    loaded.select(1)
    loaded.slice(0.25)
    assert loaded.selected == 2
    loaded.heal(1)
    assert loaded.selected == 1
    loaded.segment(0, 4)
    assert loaded.selected == 4
    with pytest.raises(InvalidRegionIndex):
        loaded.select(9)


def test_failed_decode_keeps_previous_clip(loaded, sine_clip):
    loaded.slice(0.5)
    with pytest.raises(DecodeFailure):
        loaded.load_bytes(b"garbage", "broken.wav")
    assert loaded.clip is sine_clip
    assert len(loaded.regions()) == 2


def test_load_bytes(session):
    buf = io.BytesIO()
    sf.write(buf, make_sine(0.2).data, 44100, format="WAV", subtype="PCM_16")
    clip = session.load_bytes(buf.getvalue(), "take.wav")
    assert session.clip is clip
    assert clip.frames == 8820


def test_reset_restores_defaults(loaded):
    loaded.slice(0.5)
    loaded.set_cursor(0.7)
    loaded.zoom_in()
    loaded.set_effects(gain_db=-6.0)
    rec = EventRecorder(loaded.event_bus, SESSION_RESET)
    loaded.reset()
    assert loaded.clip is None
    assert loaded.regions() == [Region(0.0, 1.0)]
    assert loaded.cursor == 0.0
    assert loaded.zoom.samples_per_pixel == 32
    assert loaded.effects == EffectsSettings()
    assert rec.names() == [SESSION_RESET]


def test_operations_need_a_clip(session):
    with pytest.raises(NoClipLoaded):
        session.play()
    with pytest.raises(NoClipLoaded):
        session.export()
    with pytest.raises(NoClipLoaded):
        session.tiles()


def test_zoom_emits_and_bounds(session):
    rec = EventRecorder(session.event_bus, ZOOM_CHANGED)
    assert session.zoom_in() is True
    assert session.set_zoom(1) is True
    assert session.zoom_in() is False
    assert [d["samples_per_pixel"] for _, d in rec.events] == [16, 1]


def test_effects_are_validated_against_clip(loaded):
    rec = EventRecorder(loaded.event_bus, EFFECTS_CHANGED)
    with pytest.raises(InvalidEffectsParameter) as exc:
        loaded.set_effects(lowpass_hz=30000.0)
    assert exc.value.field == "lowpass_hz"
    assert loaded.effects == EffectsSettings()

    loaded.set_pitch(12)
    assert loaded.effects.speed == pytest.approx(2.0)
    loaded.set_lowpass(1000.0)
    loaded.set_highpass(2000.0)
    assert loaded.effects.lowpass_hz == 2000.0
    assert len(rec.events) == 3


def test_play_region_under_cursor(loaded, fake_streams):
    loaded.slice(0.5)
    loaded.set_cursor(0.6)
    region = loaded.play()
    assert region == Region(0.5, 1.0)
    assert loaded.selected == 1
    assert loaded.playing()
    assert loaded.playback_state is PlaybackState.PLAYING
    assert loaded.progress() == pytest.approx(0.5)
    assert loaded.stop() is True
    assert not loaded.playing()


def test_export_region(loaded, tmp_path):
    loaded.slice(0.5)
    result = loaded.export(0)
    assert result.frames == 110250
    assert result.filename.endswith(".wav")

    path = loaded.export_to(str(tmp_path), 0)
    assert os.path.basename(path) == result.filename

    future = loaded.export_async(0)
    assert future.result(timeout=30).filename == result.filename


def test_tile_requests(loaded):
    tiles = loaded.tiles()
    assert sum(t.buckets for t in tiles) == -(-loaded.clip.frames // 32)
    task = loaded.request_tile(tiles[0], 0, lambda key, buckets: None)
    assert len(task.result(timeout=5)) == tiles[0].buckets

    tasks = loaded.request_overview(lambda key, buckets: None)
    assert len(tasks) == 1
    assert len(tasks[0].result(timeout=5)) == 800


def test_invalid_config_is_rejected(fake_streams):
    with pytest.raises(ConfigError):
        Session({"speed": 0.0}, stream_factory=fake_streams)


def test_teardown_closes_stream(fake_streams, sine_clip):
    s = Session(stream_factory=fake_streams)
    s.load(sine_clip)
    s.play(0)
    s.teardown()
    assert fake_streams.streams[0].closed
    assert not s.playing()

from __future__ import annotations

import io
import re
import threading

import pytest

from slicerlib import log
from slicerlib.events import EventBus


@pytest.fixture
def trace():
    buf = io.StringIO()
    log.set_enabled(True, buf)
    yield buf
    log.set_enabled(None)


class _Worker:
    def run(self):
        log.dbg("working")


def test_dbg_tags_caller_and_thread(trace):
    log.dbg("hello")
    _Worker().run()
    lines = trace.getvalue().splitlines()
    assert re.fullmatch(r"\[\d\d:\d\d:\d\d\.\d{3} test_events_log/MainThread\] hello", lines[0])
    assert "_Worker/MainThread] working" in lines[1]


def test_dbg_reports_worker_thread_name(trace):
    t = threading.Thread(target=_Worker().run, name="downsample_0")
    t.start()
    t.join()
    assert "_Worker/downsample_0] working" in trace.getvalue()


def test_dbg_silent_when_disabled():
    buf = io.StringIO()
    log.set_enabled(False, buf)
    try:
        log.dbg("nothing")
    finally:
        log.set_enabled(None)
    assert buf.getvalue() == ""


def test_dbg_reads_environment(monkeypatch, capsys):
    monkeypatch.setenv("SLICER_DEBUG", "TRUE")
    log.set_enabled(None)
    try:
        log.dbg("from env")
    finally:
        monkeypatch.delenv("SLICER_DEBUG")
        log.set_enabled(None)
    assert "from env" in capsys.readouterr().err


def test_bus_delivers_keyword_data():
    bus = EventBus()
    seen = []
    bus.subscribe("regions.changed", lambda **data: seen.append(data))
    bus.emit("regions.changed", regions=[1, 2])
    bus.emit("zoom.changed", samples_per_pixel=16)
    assert seen == [{"regions": [1, 2]}]


def test_subscribe_returns_unsubscriber():
    bus = EventBus()
    seen = []
    off = bus.subscribe("cursor.changed", lambda **data: seen.append(data["position"]))
    assert bus.has_subscribers("cursor.changed")
    bus.emit("cursor.changed", position=0.25)
    off()
    off()
    bus.emit("cursor.changed", position=0.5)
    assert seen == [0.25]
    assert not bus.has_subscribers("cursor.changed")


def test_handler_may_unsubscribe_itself_during_emit():
    bus = EventBus()
    calls = []

    def once(**data):
        calls.append(data)
        bus.unsubscribe("playback.finished", once)

    bus.subscribe("playback.finished", once)
    bus.emit("playback.finished", region=None)
    bus.emit("playback.finished", region=None)
    assert len(calls) == 1


def test_clear_and_handler_errors_propagate():
    bus = EventBus()

    def boom(**data):
        raise RuntimeError("handler failed")

    bus.subscribe("clip.changed", boom)
    with pytest.raises(RuntimeError):
        bus.emit("clip.changed", clip=None)
    bus.clear()
    bus.emit("clip.changed", clip=None)

from __future__ import annotations

import queue
import threading

import numpy as np

from slicerlib.downsampler import Downsampler
from slicerlib.models import EnvelopeBucket
from slicerlib.waveform import compute_buckets


class _Collector:
    def __init__(self):
        self.results: list[tuple] = []
        self.errors: list[tuple] = []
        self.delivered = threading.Event()

    def on_result(self, key, buckets):
        self.results.append((key, buckets))
        self.delivered.set()

    def on_error(self, key, exc):
        self.errors.append((key, exc))
        self.delivered.set()


def test_request_delivers_buckets():
    data = np.linspace(-1, 1, 1000)
    c = _Collector()
    with Downsampler(max_workers=2) as ds:
        task = ds.request("overview", data, 10, c.on_result)
        assert task.result(timeout=5) == compute_buckets(data, 10)
        assert c.delivered.wait(5)
    assert c.results == [("overview", compute_buckets(data, 10))]
    assert c.errors == []


def test_superseded_request_never_applies():
    gate = threading.Event()
    started = threading.Event()

    def compute(data, n):
        if data[0] == 0.0:
            started.set()
            gate.wait(5)
        return compute_buckets(data, n)

    c = _Collector()
    with Downsampler(max_workers=2, compute=compute) as ds:
        first = ds.request("tile", np.zeros(10), 2, c.on_result)
        assert started.wait(5)
        second = ds.request("tile", np.ones(10), 2, c.on_result)
        assert second.result(timeout=5) == [EnvelopeBucket(1.0, 1.0)] * 2
        assert c.delivered.wait(5)
        # let the stale computation finish after the newer one applied
        gate.set()
        assert first.result(timeout=5) is None
        assert first.cancelled
    assert c.results == [("tile", [EnvelopeBucket(1.0, 1.0)] * 2)]


def test_cancel_drops_result():
    gate = threading.Event()

    def compute(data, n):
        gate.wait(5)
        return compute_buckets(data, n)

    c = _Collector()
    with Downsampler(max_workers=1, compute=compute) as ds:
        task = ds.request(("tile", 0, 3), np.arange(100.0), 4, c.on_result)
        ds.cancel(("tile", 0, 3))
        gate.set()
        assert task.result(timeout=5) is None
    assert c.results == []
    assert ds.in_flight == 0


def test_different_keys_do_not_supersede():
    c = _Collector()
    with Downsampler(max_workers=2) as ds:
        a = ds.request("a", np.arange(10.0), 2, c.on_result)
        b = ds.request("b", np.arange(10.0), 5, c.on_result)
        assert a.result(timeout=5) is not None
        assert b.result(timeout=5) is not None
    assert sorted(key for key, _ in c.results) == ["a", "b"]


def test_failure_is_reported_not_applied():
    def compute(data, n):
        raise RuntimeError("boom")

    c = _Collector()
    with Downsampler(max_workers=1, compute=compute) as ds:
        task = ds.request("tile", np.arange(10.0), 2, c.on_result, c.on_error)
        assert c.delivered.wait(5)
    assert c.results == []
    assert len(c.errors) == 1
    key, exc = c.errors[0]
    assert key == "tile"
    assert isinstance(exc, RuntimeError)
    try:
        task.result(timeout=5)
    except RuntimeError as e:
        assert str(e) == "boom"
    else:
        raise AssertionError("expected the task to re-raise its failure")


def test_failure_without_error_callback_releases_the_request():
    def compute(data, n):
        raise RuntimeError("boom")

    pending: queue.Queue = queue.Queue()
    c = _Collector()
    with Downsampler(max_workers=1, compute=compute, dispatch=pending.put) as ds:
        ds.request("tile", np.arange(10.0), 2, c.on_result)
        apply = pending.get(timeout=5)
        apply()
        assert "tile" not in ds._latest
        assert ds.in_flight == 0
    assert c.results == []


def test_request_after_shutdown_reports_error():
    c = _Collector()
    ds = Downsampler(max_workers=1)
    ds.shutdown()
    ds.request("tile", np.arange(10.0), 2, c.on_result, c.on_error)
    assert c.results == []
    assert len(c.errors) == 1
    assert isinstance(c.errors[0][1], RuntimeError)


def test_dispatch_runs_callbacks_on_caller_thread():
    pending: queue.Queue = queue.Queue()
    c = _Collector()
    threads = []

    def on_result(key, buckets):
        threads.append(threading.current_thread())
        c.on_result(key, buckets)

    with Downsampler(max_workers=2, dispatch=pending.put) as ds:
        ds.request("tile", np.arange(10.0), 2, on_result)
        apply = pending.get(timeout=5)
        assert c.results == []
        apply()
    assert threads == [threading.main_thread()]
    assert len(c.results) == 1


def test_dispatched_stale_result_is_dropped():
    pending: queue.Queue = queue.Queue()
    c = _Collector()
    with Downsampler(max_workers=2, dispatch=pending.put) as ds:
        first = ds.request("tile", np.zeros(10), 2, c.on_result)
        first.result(timeout=5)
        stale = pending.get(timeout=5)
        ds.request("tile", np.ones(10), 2, c.on_result)
        fresh = pending.get(timeout=5)
        fresh()
        stale()
    assert c.results == [("tile", [EnvelopeBucket(1.0, 1.0)] * 2)]

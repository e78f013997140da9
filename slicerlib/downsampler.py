"""Background envelope computation with per-element supersession.

Each visual element (a waveform tile channel, the overview strip, ...)
is identified by a hashable key.  A new request for a key cancels the
previous one, and a result is only handed to its callback while its task
is still the newest, non-cancelled request for that key.  A stale result
can therefore never overwrite a newer one.
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from typing import Any, Callable, Hashable

import numpy as np

from .errors import CancelledComputation
from .log import dbg
from .models import EnvelopeBucket
from .waveform import compute_buckets

ResultCallback = Callable[[Hashable, list[EnvelopeBucket]], None]
ErrorCallback = Callable[[Hashable, BaseException], None]


class BucketTask:
    """Handle for one downsampling request, carrying its cancellation token."""

    def __init__(self, key: Hashable, seq: int):
        self.key = key
        self.seq = seq
        self._token = threading.Event()
        self._future: Future | None = None
        self._submitted = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._token.is_set()

    def cancel(self) -> None:
        """Request cancellation.  A running computation finishes in the
        background but its result is dropped."""
        self._token.set()
        if self._future is not None:
            self._future.cancel()

    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: float | None = None) -> list[EnvelopeBucket] | None:
        """Wait for the computation.

        Returns the buckets, or None if the task was cancelled or superseded.
        Errors other than cancellation are re-raised.
        """
        self._submitted.wait(timeout)
        if self._future is None:
            return None
        try:
            buckets = self._future.result(timeout)
        except (CancelledError, CancelledComputation):
            return None
        if self.cancelled:
            return None
        return buckets

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else ("done" if self.done() else "pending")
        return f"BucketTask(key={self.key!r}, seq={self.seq}, {state})"


def _run(compute: Callable[[np.ndarray, int], list[EnvelopeBucket]],
         data: np.ndarray, n: int, token: threading.Event) -> list[EnvelopeBucket]:
    if token.is_set():
        raise CancelledComputation()
    buckets = compute(data, n)
    if token.is_set():
        raise CancelledComputation()
    return buckets


class Downsampler:
    """Bounded worker pool computing envelope buckets off the calling thread.

    Parameters
    ----------
    max_workers : int or None
        Pool size.  Defaults to ``min(cpu_count, 8)``.
    dispatch : callable or None
        Optional ``dispatch(fn)`` used to run result/error callbacks on the
        caller's thread (e.g. a UI event loop's queued call).  Without it,
        callbacks run on the worker thread.
    compute : callable
        ``compute(data, n) -> list[EnvelopeBucket]``.
    """

    def __init__(self, max_workers: int | None = None,
                 dispatch: Callable[[Callable[[], None]], Any] | None = None,
                 compute: Callable[[np.ndarray, int], list[EnvelopeBucket]] = compute_buckets):
        self.max_workers = max_workers or min(os.cpu_count() or 4, 8)
        self._pool = ThreadPoolExecutor(max_workers=self.max_workers,
                                        thread_name_prefix="downsample")
        self._dispatch = dispatch
        self._compute = compute
        self._latest: dict[Hashable, BucketTask] = {}
        self._lock = threading.Lock()
        self._apply_lock = threading.RLock()
        self._seq = 0
        self._closed = False

    def __enter__(self) -> "Downsampler":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return sum(1 for t in self._latest.values() if not t.done())

    def request(self, key: Hashable, data: np.ndarray, n: int,
                on_result: ResultCallback,
                on_error: ErrorCallback | None = None) -> BucketTask:
        """Compute *n* buckets of *data* for element *key*.

        Supersedes (and cancels) any earlier request for the same key.
        """
        with self._lock:
            prev = self._latest.get(key)
            if prev is not None:
                prev.cancel()
                dbg(f"{key!r}: superseded request #{prev.seq}")
            self._seq += 1
            task = BucketTask(key, self._seq)
            self._latest[key] = task

        try:
            if self._closed:
                raise RuntimeError("downsampler has been shut down")
            future = self._pool.submit(_run, self._compute, data, n, task._token)
        except RuntimeError as e:
            dbg(f"{key!r}: cannot submit request #{task.seq}: {e}")
            failed: Future = Future()
            failed.set_exception(e)
            task._future = failed
            task._submitted.set()
            self._deliver(task, on_error, e)
            return task

        task._future = future
        task._submitted.set()
        future.add_done_callback(
            lambda f: self._on_done(task, f, on_result, on_error))
        return task

    def cancel(self, key: Hashable) -> None:
        """Cancel the outstanding request for *key*, if any."""
        with self._lock:
            task = self._latest.pop(key, None)
        if task is not None:
            task.cancel()

    def cancel_all(self) -> None:
        with self._lock:
            tasks = list(self._latest.values())
            self._latest.clear()
        for task in tasks:
            task.cancel()

    def shutdown(self, wait: bool = True) -> None:
        """Cancel everything and stop the pool.  Further requests fail."""
        self._closed = True
        self.cancel_all()
        self._pool.shutdown(wait=wait, cancel_futures=True)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _on_done(self, task: BucketTask, future: Future,
                 on_result: ResultCallback,
                 on_error: ErrorCallback | None) -> None:
        if future.cancelled():
            dbg(f"{task.key!r}: request #{task.seq} cancelled before start")
            return
        exc = future.exception()
        if isinstance(exc, CancelledComputation):
            dbg(f"{task.key!r}: request #{task.seq} discarded")
            return
        if exc is not None:
            dbg(f"{task.key!r}: request #{task.seq} failed: {exc!r}")
            self._deliver(task, on_error, exc)
            return
        self._deliver(task, on_result, future.result())

    def _deliver(self, task: BucketTask, callback, payload) -> None:
        def apply():
            # Serialized so a result checked as current cannot be overtaken
            # by a newer one between the check and the callback.
            with self._apply_lock:
                with self._lock:
                    current = (self._latest.get(task.key) is task
                               and not task.cancelled)
                    if current:
                        del self._latest[task.key]
                if not current:
                    dbg(f"{task.key!r}: dropped stale request #{task.seq}")
                    return
                if callback is not None:
                    callback(task.key, payload)

        if self._dispatch is not None:
            self._dispatch(apply)
        else:
            apply()

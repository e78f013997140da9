"""Debug tracing for Slicer.

Usage::

    from slicerlib.log import dbg

    dbg("tile 3 superseded")
    dbg(f"rendered {frames} frames in {dt:.1f} ms")

Nothing is printed unless ``SLICER_DEBUG`` is ``1`` or ``true``
(case-insensitive), or tracing was switched on with :func:`set_enabled`.
Lines look like ``[12:01:33.042 Downsampler/downsample_0] message``: wall
clock, the calling class (or module), and the thread, since the
downsampler, the exporter and the audio callback all report from their
own threads.
"""

from __future__ import annotations

import inspect
import os
import sys
import threading
import time
from typing import TextIO

ENV_VAR = "SLICER_DEBUG"

_enabled: bool | None = None
_stream: TextIO | None = None


def _is_enabled() -> bool:
    global _enabled
    if _enabled is None:
        _enabled = os.environ.get(ENV_VAR, "").strip().lower() in ("1", "true")
    return _enabled


def set_enabled(enabled: bool | None, stream: TextIO | None = None) -> None:
    """Force tracing on or off.  ``None`` goes back to reading the
    environment.  *stream* defaults to stderr."""
    global _enabled, _stream
    _enabled = enabled
    _stream = stream


def _origin(frame) -> str:
    owner = frame.f_locals.get("self")
    if owner is not None:
        return type(owner).__name__
    cls = frame.f_locals.get("cls")
    if cls is not None:
        return getattr(cls, "__name__", str(cls))
    module = frame.f_globals.get("__name__", "")
    return module.rpartition(".")[2] or "?"


def _stamp() -> str:
    now = time.time()
    return time.strftime("%H:%M:%S", time.localtime(now)) + f".{int(now % 1 * 1000):03d}"


def dbg(msg: str) -> None:
    """Write one trace line if tracing is on."""
    if not _is_enabled():
        return
    frame = inspect.currentframe()
    try:
        caller = frame.f_back if frame is not None else None
        origin = _origin(caller) if caller is not None else "?"
    finally:
        del frame
    out = _stream or sys.stderr
    print(f"[{_stamp()} {origin}/{threading.current_thread().name}] {msg}",
          file=out, flush=True)

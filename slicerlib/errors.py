"""Error taxonomy for the slicer core.

Interval-model mistakes are mostly local no-ops; only an invalid heal/move
index is reported.  Decode, render and encode failures propagate to the
immediate caller and never invalidate the session's prior state.
"""

from __future__ import annotations

from typing import Any


class SlicerError(Exception):
    """Base class for every error raised by :mod:`slicerlib`."""


class InvalidBreakpoint(SlicerError, ValueError):
    """A slice target outside ``[0, 1)`` or already present.

    ``IntervalModel.slice`` treats this as a benign no-op and never raises
    it; it exists for callers that want to validate positions up front.
    """


class InvalidRegionIndex(SlicerError, IndexError):
    """Heal/move on an out-of-range index or on the protected first region."""

    def __init__(self, index: int, count: int, reason: str = "out of range"):
        self.index = index
        self.count = count
        super().__init__(f"Region index {index} {reason} ({count} region(s))")


class DecodeFailure(SlicerError):
    """Input audio could not be decoded.  No partial clip is installed."""


class InvalidEffectsParameter(SlicerError, ValueError):
    """An effects parameter failed validation before rendering began."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        self.message = message
        super().__init__(f"{field}: {message}")


class RenderFailure(SlicerError):
    """Rendering could not complete.  Rendering is side-effect free, so the
    same inputs may simply be retried."""


class EncodeFailure(SlicerError):
    """The rendered samples could not be encoded into a WAV container."""


class CancelledComputation(SlicerError):
    """A downsampling task was superseded.  Expected control flow; the
    downsampler swallows it and never hands it to result callbacks."""


class PlaybackError(SlicerError):
    """The audio output stream could not be opened or started."""


class NoClipLoaded(SlicerError):
    """A session operation needs a clip but none is loaded."""

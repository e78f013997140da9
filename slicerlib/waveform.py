"""Waveform envelopes: min/max buckets, zoom level and tile layout."""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from .models import Clip, EnvelopeBucket

TILE_WIDTH = 400       # pixels per waveform tile
OVERVIEW_WIDTH = 800   # buckets in the whole-clip summary strip

ZOOM_MIN = 1
ZOOM_MAX = 1024
ZOOM_DEFAULT = 32
ZOOM_FACTOR = 2


# ---------------------------------------------------------------------------
# Bucket computation (runs on downsampler workers)
# ---------------------------------------------------------------------------

def compute_envelope(data: np.ndarray, n: int) -> tuple[np.ndarray, np.ndarray]:
    """Compute ``(mins, maxs)`` arrays of length *n* for a 1-D sample slice.

    The slice is cut into windows of ``ceil(len / n)`` samples; the last
    window may be shorter.  If rounding leaves trailing windows with no
    samples at all, they repeat the final sample so the result still has
    exactly *n* entries.
    """
    data = np.asarray(data)
    length = int(data.shape[0])
    if n <= 0 or length == 0:
        empty = np.zeros(0, dtype=np.float64)
        return empty, empty.copy()
    size = -(-length // n)
    starts = np.arange(n, dtype=np.int64) * size
    valid = starts < length
    mins = np.empty(n, dtype=np.float64)
    maxs = np.empty(n, dtype=np.float64)
    used = starts[valid]
    mins[valid] = np.minimum.reduceat(data, used)
    maxs[valid] = np.maximum.reduceat(data, used)
    if not valid.all():
        tail = float(data[-1])
        mins[~valid] = tail
        maxs[~valid] = tail
    return mins, maxs


def compute_buckets(data: np.ndarray, n: int) -> list[EnvelopeBucket]:
    """Reduce *data* to *n* :class:`EnvelopeBucket` entries.

    ``n == 0`` or an empty slice yields an empty list, not an error.
    """
    mins, maxs = compute_envelope(data, n)
    return [EnvelopeBucket(float(lo), float(hi)) for lo, hi in zip(mins, maxs)]


# ---------------------------------------------------------------------------
# Zoom
# ---------------------------------------------------------------------------

class Zoom:
    """Samples-per-pixel, a power of two in ``[1, 1024]``.

    One instance is shared by every waveform view of a session so all
    tiles render at the same resolution.
    """

    def __init__(self, samples_per_pixel: int = ZOOM_DEFAULT):
        self._spp = ZOOM_DEFAULT
        self.set(samples_per_pixel)

    @property
    def samples_per_pixel(self) -> int:
        return self._spp

    @property
    def in_disabled(self) -> bool:
        return self._spp == ZOOM_MIN

    @property
    def out_disabled(self) -> bool:
        return self._spp == ZOOM_MAX

    def set(self, samples_per_pixel: int) -> bool:
        """Set the zoom level.  Returns True if it changed."""
        spp = int(samples_per_pixel)
        if spp != samples_per_pixel or spp < ZOOM_MIN or spp > ZOOM_MAX:
            raise ValueError(
                f"samples per pixel must be an integer in [{ZOOM_MIN}, {ZOOM_MAX}], "
                f"got {samples_per_pixel!r}")
        if spp & (spp - 1):
            raise ValueError(f"samples per pixel must be a power of two, got {spp}")
        changed = spp != self._spp
        self._spp = spp
        return changed

    def zoom_in(self) -> bool:
        return self.set(max(ZOOM_MIN, self._spp // ZOOM_FACTOR))

    def zoom_out(self) -> bool:
        return self.set(min(ZOOM_MAX, self._spp * ZOOM_FACTOR))

    def __repr__(self) -> str:
        return f"Zoom({self._spp})"


# ---------------------------------------------------------------------------
# Tile layout
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Tile:
    """One horizontal slab of the zoomed waveform.

    Attributes:
        index:       Tile number from the left edge.
        start_frame: First frame covered (inclusive).
        end_frame:   Last frame covered (exclusive).
        buckets:     Envelope buckets to request for this tile.
    """
    index: int
    start_frame: int
    end_frame: int
    buckets: int


def content_width(total_frames: int, samples_per_pixel: int) -> int:
    """Width in pixels of the full waveform at the given zoom."""
    if total_frames <= 0:
        return 0
    return math.ceil(total_frames / samples_per_pixel)


def plan_tiles(total_frames: int, samples_per_pixel: int,
               tile_width: int = TILE_WIDTH) -> list[Tile]:
    """Lay the waveform out as tiles of *tile_width* pixels."""
    if total_frames <= 0 or tile_width <= 0:
        return []
    frames_per_tile = tile_width * samples_per_pixel
    count = math.ceil(total_frames / frames_per_tile)
    tiles: list[Tile] = []
    for i in range(count):
        start = i * frames_per_tile
        end = min(start + frames_per_tile, total_frames)
        tiles.append(Tile(i, start, end, math.ceil((end - start) / samples_per_pixel)))
    return tiles


def visible_tiles(tiles: list[Tile], scroll_px: float, viewport_px: float,
                  tile_width: int = TILE_WIDTH, overscan: int = 1) -> list[Tile]:
    """Tiles intersecting the viewport ``[scroll_px, scroll_px + viewport_px)``,
    plus *overscan* tiles on each side."""
    if not tiles or viewport_px <= 0:
        return []
    first = max(0, int(scroll_px // tile_width) - overscan)
    last = min(len(tiles) - 1, int((scroll_px + viewport_px - 1) // tile_width) + overscan)
    return tiles[first:last + 1]


def overview_buckets(clip: Clip, width: int = OVERVIEW_WIDTH) -> list[list[EnvelopeBucket]]:
    """Whole-clip summary envelope, one bucket list per channel."""
    return [compute_buckets(clip.channel(ch), width) for ch in range(clip.channels)]

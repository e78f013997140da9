"""Sorted-breakpoint region model.

The timeline is the normalized span ``[0, 1)`` of a clip.  Breakpoints are
kept sorted and unique, always start with an implicit ``0`` and never
contain ``1``.  Regions are derived from them on every query, so the two
can never drift apart.
"""

from __future__ import annotations

import math
import operator
from bisect import bisect_left, bisect_right

from .errors import InvalidRegionIndex
from .models import Region


class IntervalModel:
    """Breakpoint set with slice/heal/move/segment operations."""

    def __init__(self, breakpoints: list[float] | None = None):
        self._breakpoints: list[float] = [0.0]
        for pos in breakpoints or []:
            self.slice(pos)

    @property
    def breakpoints(self) -> tuple[float, ...]:
        return tuple(self._breakpoints)

    def __len__(self) -> int:
        return len(self._breakpoints)

    def __repr__(self) -> str:
        return f"IntervalModel({list(self._breakpoints)!r})"

    @staticmethod
    def is_valid_position(position: float) -> bool:
        return math.isfinite(position) and 0.0 <= position < 1.0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def regions(self) -> list[Region]:
        """Current partition of ``[0, 1)``.  A fresh list on every call."""
        bps = self._breakpoints
        last = len(bps) - 1
        return [
            Region(start, bps[i + 1] if i < last else 1.0)
            for i, start in enumerate(bps)
        ]

    def region(self, index: int) -> Region:
        self._check_index(index, allow_first=True)
        bps = self._breakpoints
        end = bps[index + 1] if index + 1 < len(bps) else 1.0
        return Region(bps[index], end)

    def region_containing(self, position: float) -> int:
        """Index of the region whose ``[start, end)`` holds *position*.

        A position equal to a breakpoint belongs to the region starting
        there.  Positions outside the timeline clamp to the first or last
        region.
        """
        if position >= 1.0:
            return len(self._breakpoints) - 1
        return max(0, bisect_right(self._breakpoints, position) - 1)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def slice(self, position: float) -> int | None:
        """Insert a breakpoint at *position*.

        Returns the index of the region that now starts at *position*, or
        None when nothing changed (position already present or outside
        ``[0, 1)``).
        """
        position = float(position)
        if not self.is_valid_position(position):
            return None
        i = bisect_left(self._breakpoints, position)
        if i < len(self._breakpoints) and self._breakpoints[i] == position:
            return None
        self._breakpoints.insert(i, position)
        return i

    def heal(self, index: int) -> None:
        """Remove the breakpoint starting region *index*, merging the region
        into its predecessor.

        Raises InvalidRegionIndex for index 0 (the implicit start of the
        timeline) or an index out of range.
        """
        self._check_index(index)
        del self._breakpoints[index]

    def move(self, index: int, position: float) -> bool:
        """Move the breakpoint starting region *index* to *position*.

        The breakpoint must stay strictly between its neighbours; anything
        else is ignored and returns False.
        """
        self._check_index(index)
        bps = self._breakpoints
        left = bps[index - 1]
        right = bps[index + 1] if index + 1 < len(bps) else 1.0
        position = float(position)
        if not (left < position < right):
            return False
        bps[index] = position
        return True

    def segment(self, index: int, pieces: int) -> int:
        """Split region *index* into *pieces* equal parts.

        Returns the number of breakpoints added.
        """
        region = self.region(index)
        if pieces <= 1:
            return 0
        step = region.length / pieces
        added = 0
        for n in range(1, pieces):
            pos = region.start + step * n
            if region.start < pos < region.end and self.slice(pos) is not None:
                added += 1
        return added

    def clear(self) -> None:
        """Back to the single region ``[0, 1)``."""
        self._breakpoints = [0.0]

    def _check_index(self, index: int, allow_first: bool = False) -> None:
        count = len(self._breakpoints)
        try:
            index = operator.index(index)
        except TypeError:
            raise InvalidRegionIndex(index, count, "is not an integer") from None
        if index == 0 and not allow_first:
            raise InvalidRegionIndex(index, count, "is the protected first region")
        if index < 0 or index >= count:
            raise InvalidRegionIndex(index, count)

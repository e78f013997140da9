"""Editing session tying a clip to its timeline, waveform, playback and export.

A :class:`Session` owns all mutable editor state and reports every change
through its :class:`~slicerlib.events.EventBus`.
"""

from __future__ import annotations

import math
from concurrent.futures import Future
from typing import Any, Callable

from .audio import decode, describe, load_clip
from .config import (
    default_config,
    effects_from_config,
    merge_configs,
    validate_config,
    validate_effects,
)
from .downsampler import BucketTask, Downsampler, ErrorCallback, ResultCallback
from .dsp import pitch_to_speed
from .errors import NoClipLoaded
from .events import (
    EventBus,
    CLIP_CHANGED,
    CURSOR_CHANGED,
    EFFECTS_CHANGED,
    REGIONS_CHANGED,
    SELECTION_CHANGED,
    SESSION_RESET,
    ZOOM_CHANGED,
)
from .log import dbg
from .models import Clip, EffectsSettings, ExportResult, PlaybackState, Region
from .playback import PlaybackScheduler, StreamFactory
from .rendering import Exporter, export_region
from .timeline import IntervalModel
from .waveform import OVERVIEW_WIDTH, Tile, Zoom, plan_tiles


class Session:
    """One open recording with its regions, view state and engines.

    The session owns the clip, the breakpoint set, zoom, cursor, the
    selected region and the effects settings, together with the playback
    scheduler, the waveform downsampler and the exporter.  Every change
    is announced on :attr:`event_bus`; a presentation layer subscribes
    there instead of reaching into the engines.

    State is mutated from the control thread only.  Downsampler results
    arrive through *dispatch* when given, and ``playback.finished`` is
    emitted from the audio thread.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        event_bus: EventBus | None = None,
        stream_factory: StreamFactory | None = None,
        dispatch: Callable[[Callable[[], None]], Any] | None = None,
    ):
        self.config = merge_configs(default_config(), config or {})
        validate_config(self.config)
        self.event_bus = event_bus or EventBus()

        ramp_seconds = self.config["ramp_ms"] / 1000.0
        self.scheduler = PlaybackScheduler(
            self.event_bus, stream_factory, ramp_seconds=ramp_seconds)
        self.downsampler = Downsampler(
            max_workers=self.config["downsample_workers"], dispatch=dispatch)
        self.exporter = Exporter(self.config["wav_subtype"], ramp_seconds)

        self.clip: Clip | None = None
        self.timeline = IntervalModel()
        self.zoom = Zoom(self.config["samples_per_pixel"])
        self._cursor = 0.0
        self._selected: int | None = None
        self._effects = effects_from_config(self.config)
        validate_effects(self._effects)

    def _emit(self, event_type: str, **data):
        self.event_bus.emit(event_type, **data)

    def _require_clip(self) -> Clip:
        if self.clip is None:
            raise NoClipLoaded("No clip loaded")
        return self.clip

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load(self, clip: Clip) -> None:
        """Install *clip* with a fresh single-region timeline."""
        self.scheduler.stop()
        self.downsampler.cancel_all()
        self.clip = clip
        self.timeline.clear()
        self._cursor = 0.0
        self._selected = None
        dbg(f"loaded {clip.name}: {clip.frames} frames, "
            f"{clip.channels} ch @ {clip.samplerate} Hz")
        self._emit(CLIP_CHANGED, clip=clip)
        self._emit(REGIONS_CHANGED, regions=self.timeline.regions())

    def load_file(self, path: str) -> Clip:
        """Decode *path* and load it.  A failed decode keeps the old clip."""
        clip = load_clip(path)
        self.load(clip)
        return clip

    def load_bytes(self, raw: bytes, name: str = "untitled") -> Clip:
        clip = decode(raw, name)
        self.load(clip)
        return clip

    def reset(self) -> None:
        """Drop the clip and return every piece of view state to default."""
        self.scheduler.stop()
        self.downsampler.cancel_all()
        self.clip = None
        self.timeline.clear()
        self.zoom.set(self.config["samples_per_pixel"])
        self._cursor = 0.0
        self._selected = None
        self._effects = effects_from_config(self.config)
        self._emit(SESSION_RESET)

    def teardown(self) -> None:
        """Release the audio stream and worker threads.  The session is
        unusable afterwards."""
        self.reset()
        self.scheduler.close()
        self.downsampler.shutdown(wait=False)
        self.exporter.shutdown(wait=True)
        self.event_bus.clear()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc) -> None:
        self.teardown()

    def info(self) -> dict[str, Any]:
        clip = self._require_clip()
        details = describe(clip)
        details["regions"] = len(self.timeline)
        return details

    # ------------------------------------------------------------------
    # Regions
    # ------------------------------------------------------------------

    def regions(self) -> list[Region]:
        return self.timeline.regions()

    def region(self, index: int) -> Region:
        return self.timeline.region(index)

    def region_containing(self, position: float) -> int:
        return self.timeline.region_containing(position)

    def slice(self, position: float | None = None) -> int | None:
        """Slice at *position* (default: the cursor)."""
        if position is None:
            position = self._cursor
        index = self.timeline.slice(position)
        if index is None:
            return None
        if self._selected is not None and self._selected >= index:
            self._selected += 1
        self._regions_changed()
        return index

    def heal(self, index: int) -> None:
        self.timeline.heal(index)
        if self._selected is not None and self._selected >= index:
            self._selected -= 1
        self._regions_changed()

    def move(self, index: int, position: float) -> bool:
        moved = self.timeline.move(index, position)
        if moved:
            self._regions_changed()
        return moved

    def segment(self, index: int, pieces: int) -> int:
        added = self.timeline.segment(index, pieces)
        if added:
            if self._selected is not None and self._selected > index:
                self._selected += added
            self._regions_changed()
        return added

    def clear(self) -> None:
        """Heal every region back into one."""
        if len(self.timeline) == 1:
            return
        self.timeline.clear()
        if self._selected is not None:
            self._selected = 0
        self._regions_changed()

    def _regions_changed(self) -> None:
        self._emit(REGIONS_CHANGED, regions=self.timeline.regions())

    # ------------------------------------------------------------------
    # Cursor and selection
    # ------------------------------------------------------------------

    @property
    def cursor(self) -> float:
        return self._cursor

    def set_cursor(self, position: float) -> None:
        """Place the cursor, clamped to ``[0, 1]``.  NaN is ignored."""
        if math.isnan(position):
            return
        position = min(1.0, max(0.0, float(position)))
        if position == self._cursor:
            return
        self._cursor = position
        self._emit(CURSOR_CHANGED, position=position)

    @property
    def selected(self) -> int | None:
        return self._selected

    def select(self, index: int | None) -> None:
        if index is not None:
            self.timeline.region(index)
        if index == self._selected:
            return
        self._selected = index
        self._emit(SELECTION_CHANGED, index=index)

    def _target(self, index: int | None) -> int:
        if index is not None:
            return index
        if self._selected is not None:
            return self._selected
        return self.timeline.region_containing(self._cursor)

    # ------------------------------------------------------------------
    # Zoom and waveform tiles
    # ------------------------------------------------------------------

    def zoom_in(self) -> bool:
        return self._zoom_changed(self.zoom.zoom_in())

    def zoom_out(self) -> bool:
        return self._zoom_changed(self.zoom.zoom_out())

    def set_zoom(self, samples_per_pixel: int) -> bool:
        return self._zoom_changed(self.zoom.set(samples_per_pixel))

    def _zoom_changed(self, changed: bool) -> bool:
        if changed:
            # Tiles from the old zoom level are useless now.
            self.downsampler.cancel_all()
            self._emit(ZOOM_CHANGED, samples_per_pixel=self.zoom.samples_per_pixel)
        return changed

    def tiles(self) -> list[Tile]:
        clip = self._require_clip()
        return plan_tiles(clip.frames, self.zoom.samples_per_pixel)

    def request_tile(self, tile: Tile, channel: int,
                     on_result: ResultCallback,
                     on_error: ErrorCallback | None = None) -> BucketTask:
        """Compute envelope buckets for one tile of one channel.

        The key is ``("tile", channel, tile.index)``; asking again for the
        same tile supersedes the earlier request.
        """
        clip = self._require_clip()
        data = clip.data[tile.start_frame:tile.end_frame, channel]
        return self.downsampler.request(
            ("tile", channel, tile.index), data, tile.buckets, on_result, on_error)

    def request_overview(self, on_result: ResultCallback,
                         on_error: ErrorCallback | None = None,
                         width: int = OVERVIEW_WIDTH) -> list[BucketTask]:
        clip = self._require_clip()
        return [
            self.downsampler.request(
                ("overview", ch), clip.channel(ch), width, on_result, on_error)
            for ch in range(clip.channels)
        ]

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    @property
    def effects(self) -> EffectsSettings:
        return self._effects

    def set_effects(self, settings: EffectsSettings | None = None,
                    **changes: Any) -> EffectsSettings:
        """Replace the effects settings, or update individual fields.

        Validated against the loaded clip; an invalid value raises
        InvalidEffectsParameter and leaves the settings unchanged.  New
        settings apply from the next ``play()``.
        """
        base = settings or self._effects
        new = EffectsSettings.from_dict({**base.to_dict(), **changes})
        validate_effects(new, self.clip.samplerate if self.clip else None)
        if new != self._effects:
            self._effects = new
            self._emit(EFFECTS_CHANGED, settings=new)
        return new

    def set_pitch(self, semitones: float = 0.0, cents: float = 0.0) -> EffectsSettings:
        return self.set_effects(speed=pitch_to_speed(semitones, cents))

    def set_lowpass(self, hz: float | None) -> EffectsSettings:
        return self.set_effects(self._effects.with_lowpass(hz))

    def set_highpass(self, hz: float) -> EffectsSettings:
        return self.set_effects(self._effects.with_highpass(hz))

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self, index: int | None = None) -> Region:
        """Play region *index* (default: the selection, else the region
        under the cursor) and select it."""
        clip = self._require_clip()
        index = self._target(index)
        region = self.timeline.region(index)
        self.scheduler.play(clip, region, self._effects)
        self.select(index)
        return region

    def stop(self) -> bool:
        return self.scheduler.stop()

    def playing(self) -> bool:
        return self.scheduler.playing()

    @property
    def playback_state(self) -> PlaybackState:
        return self.scheduler.state

    def progress(self) -> float:
        return self.scheduler.progress()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, index: int | None = None) -> ExportResult:
        """Render and encode region *index* on the calling thread."""
        clip = self._require_clip()
        region = self.timeline.region(self._target(index))
        return export_region(
            clip, region, self._effects,
            subtype=self.config["wav_subtype"],
            ramp_seconds=self.config["ramp_ms"] / 1000.0,
        )

    def export_async(self, index: int | None = None) -> "Future[ExportResult]":
        """Like :meth:`export` but on the export thread.

        Inputs are captured now, so later edits do not affect the result.
        """
        clip = self._require_clip()
        region = self.timeline.region(self._target(index))
        return self.exporter.submit(clip, region, self._effects)

    def export_to(self, directory: str | None = None,
                  index: int | None = None) -> str:
        """Export region *index* and write it into *directory*."""
        result = self.export(index)
        return result.write(directory or self.config["output_folder"])

"""Session event names and the publish/subscribe bus that carries them."""

from __future__ import annotations

import threading
from typing import Any, Callable

# Session
CLIP_CHANGED = "clip.changed"            # clip=
REGIONS_CHANGED = "regions.changed"      # regions=
ZOOM_CHANGED = "zoom.changed"            # samples_per_pixel=
CURSOR_CHANGED = "cursor.changed"        # position=
SELECTION_CHANGED = "selection.changed"  # index=
EFFECTS_CHANGED = "effects.changed"      # settings=
SESSION_RESET = "session.reset"

# Playback (finished is emitted from the audio thread)
PLAYBACK_STARTED = "playback.started"    # region=
PLAYBACK_STOPPED = "playback.stopped"    # region=
PLAYBACK_FINISHED = "playback.finished"  # region=

Handler = Callable[..., Any]


class EventBus:
    """Publish/subscribe bus for session change notifications.

    A presentation layer subscribes here and redraws on the events it
    cares about; the core never calls into the UI.  Handlers run on the
    emitting thread, outside the bus lock, and their exceptions propagate
    to the emitter.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* and return a callable that removes it again."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[event_type]

    def has_subscribers(self, event_type: str) -> bool:
        with self._lock:
            return bool(self._handlers.get(event_type))

    def clear(self) -> None:
        """Drop every subscription (session teardown)."""
        with self._lock:
            self._handlers.clear()

    def emit(self, event_type: str, **data: Any) -> None:
        with self._lock:
            handlers = tuple(self._handlers.get(event_type, ()))
        for handler in handlers:
            handler(**data)

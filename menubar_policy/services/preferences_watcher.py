"""Preferences directory watcher.

Watches the user's preferences directory and turns `.plist` writes by other
processes (System Settings, `defaults write`, other tools) into external
preference change events.
"""

import asyncio
import logging
from pathlib import Path

from watchdog.observers import Observer

from ..config import DebouncedReloadHandler
from ..event_bus import ChangeEventBus
from ..models.events import ChangeEventType

logger = logging.getLogger(__name__)

# Posting order for a detected change
PREFERENCE_EVENTS = (
    ChangeEventType.FULL_SCREEN_VISIBILITY_CHANGED,
    ChangeEventType.HIDING_ON_DESKTOP_CHANGED,
)


class PreferencesWatcher:
    """File system watcher for preference files.

    A file change cannot be attributed to a process, so changes seen shortly
    after a local actor posted the same event kind are treated as the echo of
    that actor's own write and dropped.
    """

    def __init__(
        self,
        bus: ChangeEventBus,
        preferences_dir: Path,
        debounce_ms: int = 150,
        grace_seconds: float = 1.0,
    ):
        """Initialize preferences watcher.

        Args:
            bus: Event bus to post external changes to
            preferences_dir: Directory holding preference plists
            debounce_ms: Debounce timeout in milliseconds
            grace_seconds: Window after a local post during which changes are echoes
        """
        self.bus = bus
        self.preferences_dir = preferences_dir
        self.grace_seconds = grace_seconds
        self.observer = Observer()
        self.handler = DebouncedReloadHandler(
            self._on_preferences_changed, debounce_ms, suffixes=(".plist",)
        )
        self._started = False

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.handler.set_event_loop(loop)

    def start(self) -> None:
        """Start watching the preferences directory."""
        if self._started:
            logger.warning("Preferences watcher already started")
            return

        if not self.preferences_dir.is_dir():
            logger.warning(f"Preferences directory does not exist: {self.preferences_dir}")
            return

        self.observer.schedule(self.handler, str(self.preferences_dir), recursive=False)
        self.observer.start()
        self._started = True
        logger.info(f"Started watching {self.preferences_dir} for preference changes")

    def stop(self) -> None:
        """Stop watching."""
        if not self._started:
            return

        self.handler.cancel()
        self.observer.stop()
        self.observer.join(timeout=5.0)
        self._started = False
        logger.info(f"Stopped watching {self.preferences_dir}")

    def _on_preferences_changed(self) -> None:
        for event_type in PREFERENCE_EVENTS:
            if self.bus.posted_within(event_type, self.grace_seconds):
                logger.debug(f"Ignoring echo of local {event_type.value}")
                continue
            self.bus.post(event_type)

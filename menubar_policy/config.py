"""Configuration loading and file helpers for menubar-policy.

Handles loading the daemon configuration, atomic JSON writes used by the
registry and status files, and the debounced watchdog handler shared by the
file watchers.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Optional

from pydantic import ValidationError
from watchdog.events import FileModifiedEvent, FileSystemEventHandler

from .constants import ConfigPaths
from .models.config import DaemonConfig

logger = logging.getLogger(__name__)


def load_daemon_config(config_file: Path = ConfigPaths.CONFIG_FILE) -> DaemonConfig:
    """Load daemon configuration from JSON file.

    A missing, unreadable or invalid file never prevents startup: the problem
    is logged and defaults are used. LOG_LEVEL in the environment overrides
    the configured log level.

    Args:
        config_file: Path to config.json

    Returns:
        DaemonConfig instance
    """
    data = {}
    if not config_file.exists():
        logger.info(f"Config file does not exist: {config_file}, using defaults")
    else:
        try:
            with open(config_file) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top-level JSON value must be an object")
        except (OSError, json.JSONDecodeError, ValueError) as e:
            logger.error(f"Failed to read config from {config_file}: {e}")
            logger.warning("Using default configuration")
            data = {}

    env_level = os.environ.get("LOG_LEVEL")
    if env_level:
        data["log_level"] = env_level

    try:
        config = DaemonConfig.model_validate(data)
    except ValidationError as e:
        logger.error(f"Invalid configuration in {config_file}: {e}")
        logger.warning("Using default configuration")
        config = DaemonConfig()

    logger.debug(f"Loaded config: {config.model_dump(mode='json')}")
    return config


def atomic_write_json(data: dict, target: Path, prefix: str) -> None:
    """Write JSON to a file atomically (temp file + rename).

    Args:
        data: JSON-serializable object
        target: Destination file
        prefix: Temp file name prefix

    Raises:
        OSError: If the file cannot be written
    """
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_path = tempfile.mkstemp(dir=target.parent, prefix=prefix, suffix=".json")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        os.rename(temp_path, target)
    except Exception:
        if Path(temp_path).exists():
            os.unlink(temp_path)
        raise


class DebouncedReloadHandler(FileSystemEventHandler):
    """File system event handler with debounced callback.

    Debounces rapid file modifications (e.g., editor save sequences or a
    preferences daemon flushing several domains) to a single callback on the
    asyncio loop. Watchdog delivers events on its observer thread, so
    scheduling hops to the loop thread first.
    """

    def __init__(
        self,
        callback: Callable[[], None],
        debounce_ms: int = 100,
        target_filename: Optional[str] = None,
        suffixes: Optional[Iterable[str]] = None,
    ):
        """Initialize debounced reload handler.

        Args:
            callback: Function to call after debounce period
            debounce_ms: Debounce timeout in milliseconds (default: 100ms)
            target_filename: If set, only trigger on events for this filename
            suffixes: If set, only trigger on files with one of these suffixes
        """
        super().__init__()
        self.callback = callback
        self.debounce_seconds = debounce_ms / 1000
        self.target_filename = target_filename
        self.suffixes = tuple(suffixes) if suffixes else None
        self._debounce_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the asyncio event loop for scheduling callbacks."""
        self._loop = loop

    def _schedule_callback(self) -> None:
        if self._loop is None:
            logger.warning("No event loop set for debounced handler, calling immediately")
            self.callback()
            return
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._restart_debounce)

    def _restart_debounce(self) -> None:
        # Runs on the loop thread
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = self._loop.create_task(self._debounced_callback())

    def _should_trigger(self, event) -> bool:
        """Check if event should trigger callback based on the filename filters."""
        if event.is_directory:
            return False
        event_path = getattr(event, "dest_path", None) or event.src_path
        name = Path(event_path).name
        if self.target_filename:
            return name == self.target_filename
        if self.suffixes:
            return name.endswith(self.suffixes)
        return True

    def on_modified(self, event: FileModifiedEvent) -> None:
        if self._should_trigger(event):
            self._schedule_callback()

    def on_moved(self, event) -> None:
        """Handle file moved event (atomic saves use temp file + rename)."""
        if self._should_trigger(event):
            self._schedule_callback()

    def on_created(self, event) -> None:
        if self._should_trigger(event):
            self._schedule_callback()

    def cancel(self) -> None:
        """Drop a pending debounced callback."""
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()

    async def _debounced_callback(self) -> None:
        """Execute callback after debounce delay."""
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            logger.debug("Debounced callback cancelled (rapid file changes)")
            return
        self.callback()

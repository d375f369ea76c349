"""Main daemon entry point.

Wires the settings store, event bus, tracked-app registry, reconciliation
engine and platform sources together, and runs them until SIGTERM/SIGINT.
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Callable, Optional

from .config import load_daemon_config
from .constants import APP_IDENTIFIER, ConfigPaths
from .engine import ReconciliationEngine
from .event_bus import ChangeEventBus
from .models.config import DaemonConfig
from .services.app_registry import RegistryWatcher, TrackedAppRegistry
from .services.capability import ElevatedAccessChecker
from .services.focus_monitor import FocusMonitor, FrontmostAppProvider, LsappinfoProvider
from .services.preferences_watcher import PreferencesWatcher
from .services.status_publisher import StatusPublisher
from .settings_store import DefaultsCommandStore, SettingsStore

logger = logging.getLogger(__name__)


class MenuBarPolicyDaemon:
    """Menu bar policy daemon."""

    def __init__(
        self,
        config: Optional[DaemonConfig] = None,
        store: Optional[SettingsStore] = None,
        provider: Optional[FrontmostAppProvider] = None,
        capability: Optional[Callable[[str], bool]] = None,
    ):
        """Initialize daemon.

        Args:
            config: Daemon configuration (defaults if None)
            store: Settings store (DefaultsCommandStore if None)
            provider: Focus source (LsappinfoProvider if None)
            capability: Elevated access predicate (ElevatedAccessChecker if None)
        """
        self.config = config or DaemonConfig()
        self.store = store or DefaultsCommandStore(
            self.config.defaults_executable, self.config.store_timeout_seconds
        )
        self.provider = provider or LsappinfoProvider(
            self.config.lsappinfo_executable, self.config.store_timeout_seconds
        )
        self.capability = capability or ElevatedAccessChecker()

        pid = os.getpid()
        self.bus = ChangeEventBus()
        self.focus_monitor = FocusMonitor(self.provider, self.bus, self.config.focus_poll_interval)
        self.registry = TrackedAppRegistry(
            self.store,
            self.bus,
            self.config.registry_file,
            is_running=self.focus_monitor.is_running,
            identity=f"{APP_IDENTIFIER}.registry:{pid}",
        )
        self.engine = ReconciliationEngine(
            self.store,
            self.bus,
            self.capability,
            registry=self.registry,
            identity=f"{APP_IDENTIFIER}.engine:{pid}",
        )
        self.publisher = StatusPublisher(self.config.status_file)
        self.registry_watcher: Optional[RegistryWatcher] = None
        self.preferences_watcher: Optional[PreferencesWatcher] = None
        self.shutdown_event = asyncio.Event()

    async def initialize(self) -> None:
        """Load persisted state and start every component."""
        logger.info("Initializing menubar-policy daemon...")

        self.registry.load()
        self.engine.add_state_listener(self.publisher)

        try:
            frontmost = await self.provider.frontmost_bundle_id()
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not determine frontmost application: {e}")
            frontmost = None

        await self.engine.load_initial_state(frontmost)
        await self.engine.start()
        await self.registry.start()
        await self.focus_monitor.start(frontmost)

        loop = asyncio.get_running_loop()
        self.registry_watcher = RegistryWatcher(self.registry, self.config.debounce_ms)
        self.registry_watcher.set_event_loop(loop)
        self.registry_watcher.start()

        if self.config.watch_preferences:
            self.preferences_watcher = PreferencesWatcher(
                self.bus,
                self.config.preferences_dir,
                debounce_ms=self.config.debounce_ms,
                grace_seconds=self.config.self_post_grace_seconds,
            )
            self.preferences_watcher.set_event_loop(loop)
            self.preferences_watcher.start()

        logger.info("Daemon initialized")

    async def run(self) -> None:
        """Run until shutdown is requested."""
        logger.info("Daemon running")
        await self.shutdown_event.wait()

    async def shutdown(self) -> None:
        """Graceful shutdown with timeouts to prevent hanging.

        Sources stop first so no new events arrive, tracked apps are reset
        while the engine can still observe the notifications, then the engine
        and bus are torn down.
        """
        logger.info("Shutting down daemon...")

        for watcher in (self.preferences_watcher, self.registry_watcher):
            if watcher:
                try:
                    watcher.stop()
                except Exception as e:
                    logger.error(f"Error stopping watcher: {e}")

        try:
            await asyncio.wait_for(self.focus_monitor.stop(), timeout=2.0)
        except asyncio.TimeoutError:
            logger.warning("Focus monitor shutdown timed out after 2s (continuing)")

        await self.registry.stop()

        if self.config.reset_on_quit:
            try:
                await asyncio.wait_for(self.registry.reset_all_to_default(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Resetting tracked applications timed out after 5s (continuing)")

        try:
            await asyncio.wait_for(self.engine.stop(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Engine shutdown timed out after 5s (continuing)")

        self.bus.close()
        self.publisher.clear()
        logger.info("Daemon shutdown complete")

    def setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def shutdown_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            # Signal handlers cannot touch asyncio objects directly
            loop.call_soon_threadsafe(self.shutdown_event.set)

        def debug_handler(signum, frame):
            """Handle USR1 for debugging (print diagnostics without shutdown)."""
            logger.info("=== DEBUG INFO (USR1) ===")
            logger.info(f"PID: {os.getpid()}")
            logger.info(f"Engine state: {self.engine.state.to_status_json()}")
            logger.info(f"Tracked applications: {len(self.registry)}")
            logger.info(f"Events posted: {self.bus.post_count}")
            logger.info("======================")

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)
        signal.signal(signal.SIGUSR1, debug_handler)


def setup_logging(log_level: Optional[str] = None) -> None:
    """Setup logging to stderr."""
    log_level = (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s [%(name)s] %(message)s"))
    root_logger.addHandler(handler)

    logger.info(f"Logging configured: level={log_level}")


async def main_async(
    config_file: Path = ConfigPaths.CONFIG_FILE, log_level: Optional[str] = None
) -> int:
    """Async main function.

    Args:
        config_file: Path to config.json
        log_level: Overrides the configured log level

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    config = load_daemon_config(config_file)
    logging.getLogger().setLevel(log_level or config.log_level)

    daemon = MenuBarPolicyDaemon(config)
    try:
        daemon.setup_signal_handlers()
        await daemon.initialize()
        await daemon.run()
        await daemon.shutdown()
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


def run_daemon(config_file: Path = ConfigPaths.CONFIG_FILE) -> int:
    """Run the daemon to completion and return its exit code."""
    logger.info("menubar-policy daemon starting...")
    logger.info(f"PID: {os.getpid()}")
    logger.info(f"Config file: {config_file}")

    try:
        return asyncio.run(main_async(config_file))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0


def main() -> None:
    """Main entry point."""
    setup_logging()
    sys.exit(run_daemon())

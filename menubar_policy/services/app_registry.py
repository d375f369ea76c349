"""Tracked application registry.

Keeps a user-curated list of applications with a saved menu bar policy. The
saved policy is re-applied whenever the application becomes active, and every
tracked application is put back to the system default on shutdown.

File format (tracked-apps.json):
    {
        "com.apple.Safari": {
            "policy": "never",
            "bundle_path": "/Applications/Safari.app",
            "display_name": "Safari",
            "icon": "AppIcon"
        }
    }
"""

import asyncio
import json
import logging
import plistlib
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError
from watchdog.observers import Observer

from ..config import DebouncedReloadHandler, atomic_write_json
from ..constants import APP_IDENTIFIER, ConfigPaths
from ..errors import RegistryError, SettingsStoreError
from ..event_bus import ChangeEventBus, EventSubscription
from ..models.events import ChangeEventType
from ..models.policy import VisibilityPolicy, changed_components
from ..models.state import TrackedAppState
from ..settings_store import SettingsStore, read_policy, write_policy

logger = logging.getLogger(__name__)

RunningCheck = Callable[[str], Awaitable[bool]]


def read_bundle_info(bundle_path: Path) -> TrackedAppState:
    """Read identifier, display name and icon from an application bundle.

    Args:
        bundle_path: Path to the .app bundle

    Returns:
        TrackedAppState with the DEFAULT policy

    Raises:
        RegistryError: If the bundle has no readable Info.plist or identifier
    """
    info_plist = bundle_path / "Contents" / "Info.plist"
    try:
        with open(info_plist, "rb") as f:
            info = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException) as e:
        raise RegistryError(f"Cannot read {info_plist}: {e}")

    scope = info.get("CFBundleIdentifier")
    if not scope:
        raise RegistryError(f"{bundle_path} has no bundle identifier")

    display_name = (
        info.get("CFBundleDisplayName") or info.get("CFBundleName") or bundle_path.stem
    )
    try:
        return TrackedAppState(
            scope=scope,
            display_name=display_name,
            bundle_path=str(bundle_path),
            icon=info.get("CFBundleIconFile"),
        )
    except ValidationError as e:
        raise RegistryError(f"Invalid bundle {bundle_path}: {e}")


async def _assume_not_running(scope: str) -> bool:
    return False


class TrackedAppRegistry:
    """Persisted list of tracked applications and their saved policies."""

    def __init__(
        self,
        store: SettingsStore,
        bus: ChangeEventBus,
        registry_file: Path = ConfigPaths.REGISTRY_FILE,
        is_running: RunningCheck = _assume_not_running,
        identity: str = f"{APP_IDENTIFIER}.registry",
    ) -> None:
        """Initialize the registry.

        Args:
            store: Settings store policies are applied to
            bus: Event bus for change notifications
            registry_file: Path to tracked-apps.json
            is_running: Async predicate telling whether an app is running
            identity: Origin attached to events the registry posts
        """
        self.store = store
        self.bus = bus
        self.registry_file = registry_file
        self.is_running = is_running
        self.identity = identity
        self.apps: Dict[str, TrackedAppState] = {}
        self._subscription: Optional[EventSubscription] = None
        self._activation_task: Optional[asyncio.Task] = None

    def __contains__(self, scope: str) -> bool:
        return scope in self.apps

    def __len__(self) -> int:
        return len(self.apps)

    def get(self, scope: str) -> Optional[TrackedAppState]:
        return self.apps.get(scope)

    def list_apps(self) -> List[TrackedAppState]:
        """Tracked applications ordered by display name."""
        return list(self.apps.values())

    def _sort(self) -> None:
        self.apps = dict(
            sorted(self.apps.items(), key=lambda item: item[1].display_name.lower())
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Load the registry file.

        Entries that fail validation or whose bundle no longer exists are
        dropped.

        Returns:
            Number of tracked applications
        """
        self.apps = {}
        if not self.registry_file.exists():
            logger.info(f"Registry file does not exist: {self.registry_file}")
            return 0

        try:
            with open(self.registry_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load registry from {self.registry_file}: {e}")
            return 0

        if not isinstance(data, dict):
            logger.error(f"Registry {self.registry_file} is not a JSON object, ignoring")
            return 0

        for scope, entry in data.items():
            try:
                app = TrackedAppState(scope=scope, **entry)
            except (TypeError, ValidationError) as e:
                logger.warning(f"Skipping invalid registry entry {scope}: {e}")
                continue

            if not Path(app.bundle_path).exists():
                logger.info(f"Dropping {scope}: bundle {app.bundle_path} no longer exists")
                continue
            self.apps[scope] = app

        self._sort()
        logger.info(f"Loaded {len(self.apps)} tracked application(s)")
        return len(self.apps)

    def save(self) -> None:
        """Save the registry file (atomic write).

        Raises:
            OSError: If the file cannot be written
        """
        data = {scope: app.to_registry_json() for scope, app in self.apps.items()}
        atomic_write_json(data, self.registry_file, ".tracked-apps-")
        logger.debug(f"Saved {len(self.apps)} tracked application(s)")

    def reload(self) -> None:
        """Re-read the registry after another process changed it."""
        previous = set(self.apps)
        self.load()
        added = set(self.apps) - previous
        removed = previous - set(self.apps)
        logger.info(f"Registry reloaded (+{len(added)} -{len(removed)})")

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def import_app(self, bundle_path: Path) -> Optional[TrackedAppState]:
        """Start tracking the application at `bundle_path`.

        Returns:
            The new entry, or None if it was already tracked

        Raises:
            RegistryError: If the bundle cannot be read
        """
        app = read_bundle_info(bundle_path)
        if app.scope in self.apps:
            logger.info(f"{app.scope} is already tracked")
            return None

        self.apps[app.scope] = app
        self._sort()
        self.save()
        logger.info(f"Tracking {app.display_name} ({app.scope})")
        return app

    async def remove(self, scopes: Iterable[str]) -> List[TrackedAppState]:
        """Stop tracking applications, resetting their policy to DEFAULT.

        Returns:
            The removed entries
        """
        removed = [self.apps.pop(scope) for scope in scopes if scope in self.apps]
        if not removed:
            return []

        self.save()
        if await self._reset_to_default(removed):
            self._post_both_components()
        logger.info(f"Stopped tracking {', '.join(app.scope for app in removed)}")
        return removed

    async def set_policy(self, scope: str, policy: VisibilityPolicy) -> bool:
        """Record a policy for a tracked app, applying it if the app is running.

        Returns:
            True if the recorded policy changed

        Raises:
            RegistryError: If the application is not tracked
        """
        app = self.apps.get(scope)
        if app is None:
            raise RegistryError(f"{scope} is not tracked")

        previous = app.policy
        if policy == previous:
            return False

        self.apps[scope] = app.model_copy(update={"policy": policy})
        self.save()
        logger.info(f"Saved policy for {scope}: {previous.value} → {policy.value}")

        if not await self.is_running(scope):
            logger.debug(f"{scope} is not running, policy applied on next activation")
            return True

        try:
            await write_policy(self.store, scope, policy)
        except SettingsStoreError as e:
            logger.error(f"Failed to apply policy for {scope}: {e}")
            return True

        full_screen_changed, hidden_on_desktop_changed = changed_components(previous, policy)
        if full_screen_changed:
            self.bus.post(ChangeEventType.FULL_SCREEN_VISIBILITY_CHANGED, origin=self.identity)
        if hidden_on_desktop_changed:
            self.bus.post(ChangeEventType.HIDING_ON_DESKTOP_CHANGED, origin=self.identity)
        self.bus.post(ChangeEventType.ALL_POLICIES_CHANGED, origin=self.identity)
        return True

    def record_policy(self, scope: str, policy: VisibilityPolicy) -> bool:
        """Record a policy that was already written to the store.

        Called after the user changed the focused app's policy, so the next
        activation does not re-apply a stale saved policy. Untracked apps are
        ignored.

        Returns:
            True if the recorded policy changed
        """
        app = self.apps.get(scope)
        if app is None or app.policy == policy:
            return False

        self.apps[scope] = app.model_copy(update={"policy": policy})
        try:
            self.save()
        except OSError as e:
            logger.error(f"Failed to save registry after selection for {scope}: {e}")
        logger.info(f"Recorded policy for {scope}: {app.policy.value} → {policy.value}")
        return True

    # ------------------------------------------------------------------
    # Activation listener
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Apply saved policies as tracked applications become active."""
        if self._activation_task is not None:
            logger.warning("Registry activation listener already running")
            return

        self._subscription = self.bus.subscribe(ChangeEventType.APP_ACTIVATED)
        self._activation_task = asyncio.create_task(
            self._listen_for_activations(self._subscription), name="registry-activations"
        )

    async def stop(self) -> None:
        if self._activation_task is None:
            return

        self._subscription.close()
        self._activation_task.cancel()
        await asyncio.gather(self._activation_task, return_exceptions=True)
        self._subscription = None
        self._activation_task = None

    async def _listen_for_activations(self, subscription: EventSubscription) -> None:
        async for event in subscription:
            try:
                await self.reconcile_activation(event.scope)
            except Exception as e:
                logger.error(f"Error reconciling activation of {event.scope}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    async def reconcile_activation(self, scope: str) -> None:
        """Apply the saved policy of a tracked app that just became active."""
        app = self.apps.get(scope)
        if app is None or app.policy == VisibilityPolicy.DEFAULT:
            return

        try:
            current = await read_policy(self.store, scope)
            if current == app.policy:
                return
            await write_policy(self.store, scope, app.policy)
        except SettingsStoreError as e:
            logger.error(f"Failed to apply saved policy for {scope}: {e}")
            return

        logger.info(f"Applied saved policy for {scope}: {current.value} → {app.policy.value}")
        self._post_both_components()

    async def on_app_terminated(self, scope: str) -> None:
        """Drop a tracked app whose bundle vanished (uninstalled)."""
        app = self.apps.get(scope)
        if app is None or Path(app.bundle_path).exists():
            return

        del self.apps[scope]
        self.save()
        logger.info(f"Dropped {scope}: bundle {app.bundle_path} was removed")

    async def reset_all_to_default(self) -> int:
        """Put every tracked app with a saved policy back to DEFAULT in the store.

        Saved policies are kept so they are re-applied next time.

        Returns:
            Number of applications reset
        """
        apps = [app for app in self.apps.values() if app.policy != VisibilityPolicy.DEFAULT]
        count = await self._reset_to_default(apps)
        if count:
            self._post_both_components()
            logger.info(f"Reset {count} tracked application(s) to system default")
        return count

    async def _reset_to_default(self, apps: List[TrackedAppState]) -> int:
        candidates = [app for app in apps if app.policy != VisibilityPolicy.DEFAULT]
        results = await asyncio.gather(
            *(write_policy(self.store, app.scope, VisibilityPolicy.DEFAULT) for app in candidates),
            return_exceptions=True,
        )
        reset = 0
        for app, result in zip(candidates, results):
            if isinstance(result, SettingsStoreError):
                logger.error(f"Failed to reset {app.scope}: {result}")
            elif isinstance(result, BaseException):
                raise result
            else:
                reset += 1
        return reset

    def _post_both_components(self) -> None:
        self.bus.post(ChangeEventType.FULL_SCREEN_VISIBILITY_CHANGED, origin=self.identity)
        self.bus.post(ChangeEventType.HIDING_ON_DESKTOP_CHANGED, origin=self.identity)


class RegistryWatcher:
    """File system watcher for tracked-apps.json with auto-reload."""

    def __init__(self, registry: TrackedAppRegistry, debounce_ms: int = 150):
        self.registry = registry
        self.observer = Observer()
        self.handler = DebouncedReloadHandler(
            registry.reload, debounce_ms, target_filename=registry.registry_file.name
        )
        self._started = False

    def set_event_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self.handler.set_event_loop(loop)

    def start(self) -> None:
        """Start watching the registry file.

        Watches the parent directory since atomic saves (temp file + rename)
        don't trigger events on the file itself.
        """
        if self._started:
            logger.warning("Registry watcher already started")
            return

        watch_dir = self.registry.registry_file.parent
        watch_dir.mkdir(parents=True, exist_ok=True)

        self.observer.schedule(self.handler, str(watch_dir), recursive=False)
        self.observer.start()
        self._started = True
        logger.info(f"Started watching {self.registry.registry_file} for modifications")

    def stop(self) -> None:
        if not self._started:
            return

        self.handler.cancel()
        self.observer.stop()
        self.observer.join(timeout=5.0)
        self._started = False
        logger.info(f"Stopped watching {self.registry.registry_file}")

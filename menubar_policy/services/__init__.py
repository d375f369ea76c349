"""
Services for the menubar-policy daemon.

- app_registry: tracked applications with saved policies
- capability: elevated access probe for sandboxed applications
- focus_monitor: frontmost / running application tracking
- preferences_watcher: external preference change detection
- status_publisher: engine snapshots for menu surfaces and the CLI
"""

from .app_registry import RegistryWatcher, TrackedAppRegistry, read_bundle_info
from .capability import ElevatedAccessChecker
from .focus_monitor import FocusMonitor, FrontmostAppProvider, LsappinfoProvider
from .preferences_watcher import PreferencesWatcher
from .status_publisher import StatusPublisher, read_status

__all__ = [
    "RegistryWatcher",
    "TrackedAppRegistry",
    "read_bundle_info",
    "ElevatedAccessChecker",
    "FocusMonitor",
    "FrontmostAppProvider",
    "LsappinfoProvider",
    "PreferencesWatcher",
    "StatusPublisher",
    "read_status",
]

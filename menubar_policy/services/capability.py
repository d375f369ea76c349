"""Elevated access probe for per-application preference writes.

Sandboxed applications keep their preferences inside their container, which
another process can only modify with Full Disk Access. Everything else is
writable by the user.
"""

import logging
import os
from pathlib import Path

from ..constants import ConfigPaths, SYSTEM_SCOPE

logger = logging.getLogger(__name__)


class ElevatedAccessChecker:
    """Capability predicate: can `scope` be written without elevated access?"""

    def __init__(self, containers_dir: Path = ConfigPaths.CONTAINERS_DIR) -> None:
        self.containers_dir = containers_dir

    def container_preferences_dir(self, scope: str) -> Path:
        return self.containers_dir / scope / "Data" / "Library" / "Preferences"

    def __call__(self, scope: str) -> bool:
        if scope == SYSTEM_SCOPE:
            return True

        container = self.containers_dir / scope
        try:
            if not container.exists():
                return True
        except PermissionError:
            # The containers directory itself is protected
            logger.debug(f"Cannot stat container for {scope}")
            return False

        preferences_dir = self.container_preferences_dir(scope)
        try:
            os.listdir(preferences_dir)
        except FileNotFoundError:
            return os.access(container, os.W_OK)
        except PermissionError:
            logger.debug(f"Container preferences of {scope} are not accessible")
            return False

        return os.access(preferences_dir, os.W_OK)

"""Centralized configuration paths and constants for menubar-policy.

Single source of truth for the file paths and reserved identifiers used
across the daemon and the CLI.
"""

from pathlib import Path
from typing import Final


# Reserved scope for the system-wide (global domain) preferences.
# A bundle identifier can never start with "-", so this cannot collide.
SYSTEM_SCOPE: Final[str] = "-g"

# Identity carried by events this process posts
APP_IDENTIFIER: Final[str] = "io.github.menubar-policy"


class ConfigPaths:
    """Centralized configuration paths.

    All paths are computed once at import time based on user's home directory.
    Use these constants instead of constructing paths manually.

    Example:
        from .constants import ConfigPaths

        config = load_daemon_config(ConfigPaths.CONFIG_FILE)
    """

    # Base directories
    HOME: Final[Path] = Path.home()
    CONFIG_DIR: Final[Path] = HOME / ".config" / "menubar-policy"
    STATE_DIR: Final[Path] = HOME / ".local" / "state" / "menubar-policy"

    # macOS preference locations
    PREFERENCES_DIR: Final[Path] = HOME / "Library" / "Preferences"
    CONTAINERS_DIR: Final[Path] = HOME / "Library" / "Containers"
    GLOBAL_PREFERENCES_FILE: Final[Path] = PREFERENCES_DIR / ".GlobalPreferences.plist"

    # Daemon files
    CONFIG_FILE: Final[Path] = CONFIG_DIR / "config.json"
    REGISTRY_FILE: Final[Path] = CONFIG_DIR / "tracked-apps.json"
    STATUS_FILE: Final[Path] = STATE_DIR / "status.json"

    # External tools
    DEFAULTS_EXECUTABLE: Final[Path] = Path("/usr/bin/defaults")
    LSAPPINFO_EXECUTABLE: Final[Path] = Path("/usr/bin/lsappinfo")

    @classmethod
    def ensure_dirs(cls) -> None:
        """Create all necessary directories if they don't exist.

        Call this during daemon startup to ensure all config directories exist.
        """
        for d in (cls.CONFIG_DIR, cls.STATE_DIR):
            d.mkdir(parents=True, exist_ok=True)

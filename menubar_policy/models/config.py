"""
DaemonConfig Pydantic model.

Runtime settings for the daemon, loaded from ~/.config/menubar-policy/config.json.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from ..constants import ConfigPaths


class DaemonConfig(BaseModel):
    """Daemon configuration with defaults for every field."""

    store_timeout_seconds: float = Field(
        default=5.0, gt=0,
        description="Timeout applied to each settings store call"
    )
    defaults_executable: Path = Field(default=ConfigPaths.DEFAULTS_EXECUTABLE)
    lsappinfo_executable: Path = Field(default=ConfigPaths.LSAPPINFO_EXECUTABLE)
    focus_poll_interval: float = Field(
        default=0.5, gt=0,
        description="Seconds between frontmost application polls"
    )
    watch_preferences: bool = Field(default=True)
    preferences_dir: Path = Field(default=ConfigPaths.PREFERENCES_DIR)
    self_post_grace_seconds: float = Field(
        default=1.0, ge=0,
        description="File changes this soon after our own post are treated as echoes"
    )
    debounce_ms: int = Field(default=150, ge=0)
    reset_on_quit: bool = Field(
        default=True,
        description="Reset tracked applications to the system default on shutdown"
    )
    registry_file: Path = Field(default=ConfigPaths.REGISTRY_FILE)
    status_file: Path = Field(default=ConfigPaths.STATUS_FILE)
    log_level: str = Field(default="INFO")

    @field_validator("preferences_dir", "registry_file", "status_file", mode="before")
    @classmethod
    def expand_user(cls, v):
        """Allow ~ in configured paths."""
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {v}")
        return level

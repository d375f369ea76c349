"""Error types for settings store and registry failures."""

from typing import Optional


class SettingsStoreError(Exception):
    """Base error for a failed settings store operation."""

    operation = "access"

    def __init__(self, scope: str, key: Optional[str] = None, message: str = "") -> None:
        self.scope = scope
        self.key = key
        self.message = message
        super().__init__(self._describe())

    def _describe(self) -> str:
        target = f"{self.scope} {self.key}" if self.key else self.scope
        description = f"Failed to {self.operation} {target}"
        if self.message:
            description += f": {self.message}"
        return description


class ReadError(SettingsStoreError):
    """The backing store could not be reached while reading."""

    operation = "read"


class WriteError(SettingsStoreError):
    """A write was rejected (typically by a permissions boundary)."""

    operation = "write"


class DeleteError(SettingsStoreError):
    """A delete was rejected."""

    operation = "delete"


class RegistryError(Exception):
    """A tracked application could not be imported or resolved."""

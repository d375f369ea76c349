"""Settings store abstraction over per-scope preference booleans.

The production store shells out to the `defaults` tool because preferences of
system applications cannot be modified through the user defaults API of
another process. The in-memory store is the fake used by tests and dry runs.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .constants import ConfigPaths, SYSTEM_SCOPE
from .errors import DeleteError, ReadError, WriteError
from .models.policy import (
    AnyPolicy,
    SystemVisibilityPolicy,
    VisibilityPolicy,
    from_booleans,
    to_booleans,
)

logger = logging.getLogger(__name__)


class SettingsKey(str, Enum):
    """Preference keys that make up a menu bar policy."""

    FULL_SCREEN_VISIBLE = "AppleMenuBarVisibleInFullscreen"
    HIDDEN_ON_DESKTOP = "_HIHideMenuBar"


class SettingsStore(ABC):
    """Key-value store of named booleans, scoped by owner identifier."""

    @abstractmethod
    async def get(self, scope: str, key: SettingsKey) -> Optional[bool]:
        """Read a boolean.

        Returns:
            The stored value, or None if the key is absent

        Raises:
            ReadError: If the backing store is unreachable
        """

    @abstractmethod
    async def set(self, scope: str, key: SettingsKey, value: Optional[bool]) -> None:
        """Write a boolean, or delete the key when value is None.

        Deleting an absent key is not an error.

        Raises:
            WriteError: If the write is rejected
            DeleteError: If the delete is rejected
        """


class DefaultsCommandStore(SettingsStore):
    """Settings store backed by the macOS `defaults` command."""

    # stderr fragments `defaults` prints for a missing domain/key
    MISSING_MARKERS = ("does not exist", "not found")

    def __init__(
        self,
        executable: Path = ConfigPaths.DEFAULTS_EXECUTABLE,
        timeout: float = 5.0,
    ) -> None:
        """Initialize the store.

        Args:
            executable: Path to the defaults tool
            timeout: Seconds before a call is abandoned and reported as failed
        """
        self.executable = executable
        self.timeout = timeout

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        """Run the defaults tool.

        Returns:
            (exit status, stdout, stderr)

        Raises:
            OSError: If the tool cannot be started
            asyncio.TimeoutError: If the call exceeded the timeout
        """
        proc = await asyncio.create_subprocess_exec(
            str(self.executable),
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise

        logger.debug(f"defaults {' '.join(args)} -> exit {proc.returncode}")
        return proc.returncode, stdout.decode(errors="replace"), stderr.decode(errors="replace")

    def _is_missing(self, stderr: str) -> bool:
        return any(marker in stderr for marker in self.MISSING_MARKERS)

    async def get(self, scope: str, key: SettingsKey) -> Optional[bool]:
        try:
            returncode, stdout, stderr = await self._run("read", scope, key.value)
        except asyncio.TimeoutError:
            raise ReadError(scope, key.value, f"timed out after {self.timeout}s")
        except OSError as e:
            raise ReadError(scope, key.value, str(e))

        if returncode != 0:
            if self._is_missing(stderr):
                return None
            raise ReadError(scope, key.value, stderr.strip() or f"exit status {returncode}")

        raw = stdout.strip()
        if raw.lower() in ("1", "true", "yes"):
            return True
        if raw.lower() in ("0", "false", "no"):
            return False
        raise ReadError(scope, key.value, f"unexpected value {raw!r}")

    async def set(self, scope: str, key: SettingsKey, value: Optional[bool]) -> None:
        if value is None:
            await self._delete(scope, key)
            return

        try:
            returncode, _, stderr = await self._run(
                "write", scope, key.value, "-int", "1" if value else "0"
            )
        except asyncio.TimeoutError:
            raise WriteError(scope, key.value, f"timed out after {self.timeout}s")
        except OSError as e:
            raise WriteError(scope, key.value, str(e))

        if returncode != 0:
            raise WriteError(scope, key.value, stderr.strip() or f"exit status {returncode}")

    async def _delete(self, scope: str, key: SettingsKey) -> None:
        try:
            returncode, _, stderr = await self._run("delete", scope, key.value)
        except asyncio.TimeoutError:
            raise DeleteError(scope, key.value, f"timed out after {self.timeout}s")
        except OSError as e:
            raise DeleteError(scope, key.value, str(e))

        if returncode != 0 and not self._is_missing(stderr):
            raise DeleteError(scope, key.value, stderr.strip() or f"exit status {returncode}")


class InMemorySettingsStore(SettingsStore):
    """Dictionary-backed store with injectable failures.

    Records every successful or attempted write in `writes` so callers can
    assert on store traffic.
    """

    def __init__(self) -> None:
        self.values: Dict[Tuple[str, SettingsKey], bool] = {}
        self.writes: List[Tuple[str, SettingsKey, Optional[bool]]] = []
        self.reads: List[Tuple[str, SettingsKey]] = []
        self.failing_scopes: Set[str] = set()
        self.failing_keys: Set[Tuple[str, SettingsKey]] = set()
        self.unreachable = False
        # When set, writes wait on this event before completing
        self.write_gate: Optional[asyncio.Event] = None

    def seed(self, scope: str, policy: AnyPolicy) -> None:
        """Store a policy directly, bypassing the write log."""
        for key, value in zip(
            (SettingsKey.FULL_SCREEN_VISIBLE, SettingsKey.HIDDEN_ON_DESKTOP), to_booleans(policy)
        ):
            if value is None:
                self.values.pop((scope, key), None)
            else:
                self.values[(scope, key)] = value

    def fail_writes(self, scope: str, key: Optional[SettingsKey] = None) -> None:
        """Reject future writes for a scope, or for a single key of it."""
        if key is None:
            self.failing_scopes.add(scope)
        else:
            self.failing_keys.add((scope, key))

    async def get(self, scope: str, key: SettingsKey) -> Optional[bool]:
        self.reads.append((scope, key))
        if self.unreachable:
            raise ReadError(scope, key.value, "store unreachable")
        return self.values.get((scope, key))

    async def set(self, scope: str, key: SettingsKey, value: Optional[bool]) -> None:
        self.writes.append((scope, key, value))
        if self.write_gate is not None:
            await self.write_gate.wait()

        if scope in self.failing_scopes or (scope, key) in self.failing_keys:
            if value is None:
                raise DeleteError(scope, key.value, "operation not permitted")
            raise WriteError(scope, key.value, "operation not permitted")

        if value is None:
            self.values.pop((scope, key), None)
        else:
            self.values[(scope, key)] = value


async def read_policy(store: SettingsStore, scope: str) -> VisibilityPolicy:
    """Read both keys for an application scope.

    Raises:
        ReadError: If the store is unreachable
    """
    visible_in_full_screen = await store.get(scope, SettingsKey.FULL_SCREEN_VISIBLE)
    hidden_on_desktop = await store.get(scope, SettingsKey.HIDDEN_ON_DESKTOP)
    return from_booleans(visible_in_full_screen, hidden_on_desktop)


async def read_system_policy(store: SettingsStore) -> SystemVisibilityPolicy:
    """Read both keys for the system scope.

    Absent system keys mean the platform default of False.

    Raises:
        ReadError: If the store is unreachable
    """
    visible_in_full_screen = await store.get(SYSTEM_SCOPE, SettingsKey.FULL_SCREEN_VISIBLE)
    hidden_on_desktop = await store.get(SYSTEM_SCOPE, SettingsKey.HIDDEN_ON_DESKTOP)
    return SystemVisibilityPolicy.from_booleans(
        bool(visible_in_full_screen), bool(hidden_on_desktop)
    )


async def write_policy(store: SettingsStore, scope: str, policy: AnyPolicy) -> None:
    """Write both keys for a scope, full screen key first.

    The two writes are independent: if the second fails the first stays
    persisted.

    Raises:
        WriteError: If a write is rejected
        DeleteError: If a delete (DEFAULT) is rejected
    """
    visible_in_full_screen, hidden_on_desktop = to_booleans(policy)
    await store.set(scope, SettingsKey.FULL_SCREEN_VISIBLE, visible_in_full_screen)
    await store.set(scope, SettingsKey.HIDDEN_ON_DESKTOP, hidden_on_desktop)

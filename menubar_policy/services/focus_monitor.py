"""Frontmost application tracking.

Polls the window server for the frontmost application and the set of running
applications, and turns the differences into APP_ACTIVATED / APP_TERMINATED
events on the change event bus.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Set

from ..constants import ConfigPaths
from ..event_bus import ChangeEventBus
from ..models.events import ChangeEventType

logger = logging.getLogger(__name__)


class FrontmostAppProvider(ABC):
    """Source of application focus information."""

    @abstractmethod
    async def frontmost_bundle_id(self) -> Optional[str]:
        """Bundle identifier of the frontmost application, if any."""

    @abstractmethod
    async def running_bundle_ids(self) -> Set[str]:
        """Bundle identifiers of all running regular applications."""


class LsappinfoProvider(FrontmostAppProvider):
    """Provider backed by the `lsappinfo` tool."""

    FRONT_BUNDLE_PATTERN = re.compile(r'"CFBundleIdentifier"="([^"]+)"')
    LIST_BUNDLE_PATTERN = re.compile(r'bundleID="([^"]+)"')

    def __init__(
        self,
        executable: Path = ConfigPaths.LSAPPINFO_EXECUTABLE,
        timeout: float = 5.0,
    ) -> None:
        self.executable = executable
        self.timeout = timeout

    async def _run(self, *args: str) -> str:
        """Run lsappinfo and return stdout.

        Raises:
            OSError: If the tool cannot be started or exits with an error
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

        if proc.returncode != 0:
            raise OSError(
                f"lsappinfo {' '.join(args)} failed ({proc.returncode}): "
                f"{stderr.decode(errors='replace').strip()}"
            )
        return stdout.decode(errors="replace")

    async def frontmost_bundle_id(self) -> Optional[str]:
        asn = (await self._run("front")).strip()
        if not asn or asn == "[ NULL ]":
            return None

        info = await self._run("info", "-only", "bundleid", asn)
        match = self.FRONT_BUNDLE_PATTERN.search(info)
        return match.group(1) if match else None

    async def running_bundle_ids(self) -> Set[str]:
        output = await self._run("list")
        return set(self.LIST_BUNDLE_PATTERN.findall(output))


class FocusMonitor:
    """Poll a FrontmostAppProvider and post focus changes.

    Events are posted with no origin: they come from the platform, not from a
    local actor.
    """

    def __init__(
        self,
        provider: FrontmostAppProvider,
        bus: ChangeEventBus,
        poll_interval: float = 0.5,
    ):
        """Initialize focus monitor.

        Args:
            provider: Source of frontmost / running applications
            bus: Event bus to post to
            poll_interval: Polling interval in seconds (default 500ms)
        """
        self.provider = provider
        self.bus = bus
        self.poll_interval = poll_interval
        self.frontmost: Optional[str] = None
        self.running_apps: Set[str] = set()
        self.running = False
        self._monitor_task: Optional[asyncio.Task] = None

    async def start(self, initial_frontmost: Optional[str] = None) -> None:
        """Start polling.

        Args:
            initial_frontmost: Frontmost app already known to the engine, so
                it is not re-announced on the first poll
        """
        if self.running:
            logger.warning("FocusMonitor already running")
            return

        self.frontmost = initial_frontmost
        try:
            self.running_apps = await self.provider.running_bundle_ids()
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not list running applications: {e}")
            self.running_apps = set()

        self.running = True
        self._monitor_task = asyncio.create_task(self._monitoring_loop())
        logger.info(
            f"FocusMonitor started (poll_interval={self.poll_interval}s, "
            f"{len(self.running_apps)} running apps)"
        )

    async def stop(self) -> None:
        """Stop polling."""
        if not self.running:
            return

        self.running = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

        logger.info("FocusMonitor stopped")

    async def _monitoring_loop(self) -> None:
        while self.running:
            try:
                await self.poll_once()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in focus monitoring loop: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> None:
        """Compare one provider snapshot against the last one and post changes."""
        frontmost = await self.provider.frontmost_bundle_id()
        if frontmost and frontmost != self.frontmost:
            logger.debug(f"Frontmost application: {self.frontmost} → {frontmost}")
            self.frontmost = frontmost
            self.bus.post(ChangeEventType.APP_ACTIVATED, scope=frontmost)

        running = await self.provider.running_bundle_ids()
        if frontmost:
            running.add(frontmost)
        for scope in sorted(self.running_apps - running):
            logger.debug(f"Application terminated: {scope}")
            self.bus.post(ChangeEventType.APP_TERMINATED, scope=scope)
            if scope == self.frontmost:
                self.frontmost = None
        self.running_apps = running

    async def is_running(self, scope: str) -> bool:
        """Check whether an application is running, asking the provider."""
        try:
            return scope in await self.provider.running_bundle_ids()
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Could not list running applications: {e}")
            return scope in self.running_apps

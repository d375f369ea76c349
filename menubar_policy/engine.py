"""Reconciliation engine for menu bar policies.

Owns the two live policy views (focused application, system) and keeps them
consistent with the settings store while the focused application changes, the
store is modified from outside, and writes fail.

All reads and transitions run on a single actor task: public methods enqueue a
command and wait for it, listener tasks do the same for bus events. A command
runs to completion (store I/O included) before the next one starts, so no
handler ever observes a half-updated EngineState.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from .constants import APP_IDENTIFIER, SYSTEM_SCOPE
from .errors import ReadError, SettingsStoreError
from .event_bus import ChangeEventBus, EventSubscription
from .models.events import ChangeEvent, ChangeEventType
from .models.policy import AnyPolicy, SystemVisibilityPolicy, VisibilityPolicy, changed_components
from .models.state import EngineState
from .settings_store import SettingsStore, read_policy, read_system_policy, write_policy

logger = logging.getLogger(__name__)

CapabilityCheck = Callable[[str], bool]
ErrorReporter = Callable[[Exception], None]
StateListener = Callable[[EngineState], None]

# Actor queue sentinel
_STOP = object()


def log_store_error(error: Exception) -> None:
    """Default error reporter."""
    logger.error(f"Failed to save menu bar policy: {error}")


class ReconciliationEngine:
    """State machine over EngineState with optimistic writes and rollback."""

    def __init__(
        self,
        store: SettingsStore,
        bus: ChangeEventBus,
        is_settable_without_elevated_access: CapabilityCheck,
        registry: Optional[Any] = None,
        identity: str = f"{APP_IDENTIFIER}.engine",
        error_reporter: ErrorReporter = log_store_error,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Settings store holding the policy booleans
            bus: Change event bus to post to and listen on
            is_settable_without_elevated_access: Capability predicate for app scopes
            registry: Optional tracked-app registry (selection/termination hooks)
            identity: Origin attached to events this engine posts
            error_reporter: Called once per failed write
        """
        self.store = store
        self.bus = bus
        self.is_settable_without_elevated_access = is_settable_without_elevated_access
        self.registry = registry
        self.identity = identity
        self.error_reporter = error_reporter

        self.state = EngineState()
        # Scope the elevated access flag was raised for
        self._elevated_access_scope: Optional[str] = None
        self._state_listeners: List[StateListener] = []

        self._commands: Optional[asyncio.Queue] = None
        self._actor_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._listener_tasks: List[asyncio.Task] = []
        self._subscriptions: List[EventSubscription] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._actor_task is not None and not self._actor_task.done()

    async def load_initial_state(self, focused_scope: Optional[str]) -> EngineState:
        """Populate both views from the store before the engine starts.

        Args:
            focused_scope: Bundle identifier of the frontmost application, if known

        Returns:
            The initial EngineState
        """
        updates = {"focused_scope": focused_scope}
        try:
            updates["system_policy"] = await read_system_policy(self.store)
        except ReadError as e:
            logger.warning(f"Could not read system policy at startup: {e}")

        if focused_scope is not None:
            try:
                updates["current_app_policy"] = await read_policy(self.store, focused_scope)
            except ReadError as e:
                logger.warning(f"Could not read policy for {focused_scope} at startup: {e}")

        self._set_state(**updates)
        logger.info(
            f"Initial state: app={focused_scope} policy={self.state.current_app_policy.value}, "
            f"system={self.state.system_policy.value}"
        )
        return self.state

    async def start(self) -> None:
        """Start the actor and one listener task per event stream."""
        if self.is_running:
            logger.warning("Reconciliation engine already running")
            return

        self._stopping = False
        self._commands = asyncio.Queue()
        self._actor_task = asyncio.create_task(self._run_actor(), name="engine-actor")

        handlers: List[Tuple[ChangeEventType, Callable[[ChangeEvent], Awaitable[None]]]] = [
            (ChangeEventType.FULL_SCREEN_VISIBILITY_CHANGED, self._handle_external_change),
            (ChangeEventType.HIDING_ON_DESKTOP_CHANGED, self._handle_external_change),
            (ChangeEventType.APP_ACTIVATED, self._handle_app_activated_event),
            (ChangeEventType.APP_TERMINATED, self._handle_app_terminated_event),
            (ChangeEventType.ALL_POLICIES_CHANGED, self._handle_external_change),
        ]
        for event_type, handler in handlers:
            subscription = self.bus.subscribe(event_type)
            self._subscriptions.append(subscription)
            self._listener_tasks.append(
                asyncio.create_task(
                    self._listen(subscription, handler), name=f"engine-listen-{event_type.value}"
                )
            )

        logger.info(f"Reconciliation engine started ({len(self._listener_tasks)} listeners)")

    async def stop(self) -> None:
        """Cancel listeners as a unit, then drain and stop the actor."""
        self._stopping = True
        for subscription in self._subscriptions:
            subscription.close()
        for task in self._listener_tasks:
            task.cancel()
        if self._listener_tasks:
            await asyncio.gather(*self._listener_tasks, return_exceptions=True)
        self._subscriptions.clear()
        self._listener_tasks.clear()

        if self._actor_task is not None:
            self._commands.put_nowait(_STOP)
            try:
                await self._actor_task
            except asyncio.CancelledError:
                pass
            self._actor_task = None

        logger.info("Reconciliation engine stopped")

    async def __aenter__(self) -> "ReconciliationEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a callback invoked with every new EngineState."""
        self._state_listeners.append(listener)

    # ------------------------------------------------------------------
    # Public operations (each runs as one actor command)
    # ------------------------------------------------------------------

    async def select_current_app_policy(self, policy: VisibilityPolicy) -> None:
        """User chose a policy for the focused application."""
        await self._submit(self._select_current_app_policy, policy)

    async def select_system_policy(self, policy: SystemVisibilityPolicy) -> None:
        """User chose the system-wide policy."""
        await self._submit(self._select_system_policy, policy)

    async def on_app_activated(self, scope: str) -> None:
        """The focused application changed."""
        await self._submit(self._on_app_activated, scope)

    async def on_app_terminated(self, scope: str) -> None:
        """An application quit."""
        await self._submit(self._on_app_terminated, scope)

    async def on_external_visibility_change(self, event: ChangeEvent) -> None:
        """A preference change notification arrived."""
        await self._submit(self._handle_external_change, event)

    async def acknowledge_elevated_access_prompt(self) -> None:
        """The remediation prompt was dismissed."""
        await self._submit(self._acknowledge_elevated_access_prompt)

    # ------------------------------------------------------------------
    # Actor
    # ------------------------------------------------------------------

    async def _submit(self, handler: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if not self.is_running or self._stopping:
            raise RuntimeError("Reconciliation engine is not running")

        future = asyncio.get_running_loop().create_future()
        self._commands.put_nowait((handler, args, future))
        return await future

    async def _run_actor(self) -> None:
        while True:
            item = await self._commands.get()
            if item is _STOP:
                break

            handler, args, future = item
            if future.cancelled():
                continue
            try:
                result = await handler(*args)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

    async def _listen(
        self,
        subscription: EventSubscription,
        handler: Callable[[ChangeEvent], Awaitable[None]],
    ) -> None:
        async for event in subscription:
            try:
                await self._submit(handler, event)
            except RuntimeError as e:
                logger.debug(f"Dropped {event.event_type.value}: {e}")
                return
            except Exception as e:
                logger.error(f"Error handling {event.event_type.value}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Handlers (only ever run on the actor)
    # ------------------------------------------------------------------

    def _set_state(self, **changes: Any) -> None:
        changes.setdefault("updated_at", datetime.now())
        self.state = self.state.model_copy(update=changes)
        for listener in self._state_listeners:
            try:
                listener(self.state)
            except Exception as e:
                logger.error(f"State listener failed: {e}")

    def _post_policy_change(self, previous: AnyPolicy, new: AnyPolicy) -> None:
        full_screen_changed, hidden_on_desktop_changed = changed_components(previous, new)
        if full_screen_changed:
            self.bus.post(ChangeEventType.FULL_SCREEN_VISIBILITY_CHANGED, origin=self.identity)
        if hidden_on_desktop_changed:
            self.bus.post(ChangeEventType.HIDING_ON_DESKTOP_CHANGED, origin=self.identity)
        self.bus.post(ChangeEventType.ALL_POLICIES_CHANGED, origin=self.identity)

    async def _select_current_app_policy(self, policy: VisibilityPolicy) -> None:
        scope = self.state.focused_scope
        if scope is None:
            logger.warning(f"No focused application, ignoring selection of {policy.value}")
            return

        previous = self.state.current_app_policy
        if policy == previous:
            logger.debug(f"{scope} already uses {policy.value}")
            return

        if not self.is_settable_without_elevated_access(scope):
            logger.info(f"{scope} needs elevated access, selection of {policy.value} not applied")
            self._elevated_access_scope = scope
            self._set_state(needs_elevated_access_for_current_app=True)
            return

        # Optimistic: visible before the write completes
        self._set_state(current_app_policy=policy)
        try:
            await write_policy(self.store, scope, policy)
        except SettingsStoreError as e:
            self._set_state(current_app_policy=previous)
            logger.warning(f"Rolled back {scope}: {policy.value} → {previous.value}")
            self.error_reporter(e)
            return

        logger.info(f"App policy changed for {scope}: {previous.value} → {policy.value}")
        if self.registry is not None:
            self.registry.record_policy(scope, policy)
        self._post_policy_change(previous, policy)

    async def _select_system_policy(self, policy: SystemVisibilityPolicy) -> None:
        previous = self.state.system_policy
        if policy == previous:
            logger.debug(f"System already uses {policy.value}")
            return

        # No capability probe for the system scope
        self._set_state(system_policy=policy)
        try:
            await write_policy(self.store, SYSTEM_SCOPE, policy)
        except SettingsStoreError as e:
            self._set_state(system_policy=previous)
            logger.warning(f"Rolled back system policy: {policy.value} → {previous.value}")
            self.error_reporter(e)
            return

        logger.info(f"System policy changed: {previous.value} → {policy.value}")
        self._post_policy_change(previous, policy)

    async def _on_app_activated(self, scope: str) -> None:
        updates = {"focused_scope": scope}
        try:
            updates["current_app_policy"] = await read_policy(self.store, scope)
        except ReadError as e:
            logger.warning(f"Could not read policy for activated app {scope}: {e}")

        if self.state.needs_elevated_access_for_current_app:
            still_needed = (
                self._elevated_access_scope == scope
                and not self.is_settable_without_elevated_access(scope)
            )
            if not still_needed:
                self._elevated_access_scope = None
                updates["needs_elevated_access_for_current_app"] = False

        self._set_state(**updates)
        logger.debug(f"Activated {scope}: policy={self.state.current_app_policy.value}")

    async def _on_app_terminated(self, scope: str) -> None:
        logger.debug(f"Application terminated: {scope}")
        if self.registry is not None:
            await self.registry.on_app_terminated(scope)

    async def _handle_app_activated_event(self, event: ChangeEvent) -> None:
        await self._on_app_activated(event.scope)

    async def _handle_app_terminated_event(self, event: ChangeEvent) -> None:
        await self._on_app_terminated(event.scope)

    async def _handle_external_change(self, event: ChangeEvent) -> None:
        if event.is_from(self.identity):
            logger.debug(f"Ignoring own {event.event_type.value}")
            return
        await self._refresh_views()

    async def _refresh_views(self) -> None:
        updates = {}
        try:
            updates["system_policy"] = await read_system_policy(self.store)
        except ReadError as e:
            logger.warning(f"Could not refresh system policy: {e}")

        scope = self.state.focused_scope
        if scope is not None:
            try:
                updates["current_app_policy"] = await read_policy(self.store, scope)
            except ReadError as e:
                logger.warning(f"Could not refresh policy for {scope}: {e}")

        if updates:
            self._set_state(**updates)

    async def _acknowledge_elevated_access_prompt(self) -> None:
        self._elevated_access_scope = None
        self._set_state(needs_elevated_access_for_current_app=False)

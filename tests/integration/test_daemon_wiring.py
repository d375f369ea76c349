"""Integration tests: daemon components wired together with in-memory doubles."""

import asyncio
import json

import pytest

from menubar_policy.constants import SYSTEM_SCOPE
from menubar_policy.daemon import MenuBarPolicyDaemon
from menubar_policy.models.config import DaemonConfig
from menubar_policy.models.policy import SystemVisibilityPolicy, VisibilityPolicy
from menubar_policy.settings_store import SettingsKey

from tests.fixtures.engine import settle, wait_for_condition

EDITOR = "com.example.Editor"
BROWSER = "com.example.Browser"


@pytest.fixture
def config(tmp_path):
    return DaemonConfig(
        focus_poll_interval=0.01,
        watch_preferences=False,
        debounce_ms=10,
        registry_file=tmp_path / "config" / "tracked-apps.json",
        status_file=tmp_path / "state" / "status.json",
    )


@pytest.fixture
def make_daemon(config, store, provider, capability):
    def factory():
        return MenuBarPolicyDaemon(config, store=store, provider=provider, capability=capability)

    return factory


def read_status_file(config):
    return json.loads(config.status_file.read_text())


class TestDaemonWiring:
    @pytest.mark.asyncio
    async def test_startup_publishes_initial_state(self, make_daemon, store, provider, config):
        store.seed(EDITOR, VisibilityPolicy.NEVER)
        store.seed(SYSTEM_SCOPE, SystemVisibilityPolicy.ALWAYS)
        provider.activate(EDITOR)
        daemon = make_daemon()

        await daemon.initialize()
        try:
            status = read_status_file(config)
            assert status["current_app"]["scope"] == EDITOR
            assert status["current_app"]["policy"] == "never"
            assert status["system"]["policy"] == "always"
        finally:
            await daemon.shutdown()

        assert not config.status_file.exists()

    @pytest.mark.asyncio
    async def test_focus_change_flows_to_engine(self, make_daemon, store, provider):
        provider.activate(EDITOR)
        store.seed(BROWSER, VisibilityPolicy.DESKTOP_ONLY)
        daemon = make_daemon()

        await daemon.initialize()
        try:
            provider.activate(BROWSER)
            await wait_for_condition(lambda: daemon.engine.state.focused_scope == BROWSER)
            await settle(daemon.engine)

            assert daemon.engine.state.current_app_policy == VisibilityPolicy.DESKTOP_ONLY
        finally:
            await daemon.shutdown()

    @pytest.mark.asyncio
    async def test_tracked_app_policy_applied_on_activation_and_reset_on_quit(
        self, make_daemon, store, provider, app_bundle, config
    ):
        provider.activate(EDITOR)
        daemon = make_daemon()
        daemon.registry.import_app(app_bundle(BROWSER, "Browser"))
        await daemon.registry.set_policy(BROWSER, VisibilityPolicy.ALWAYS)

        await daemon.initialize()
        try:
            provider.activate(BROWSER)
            # The registry applies the saved policy, the engine refreshes on its post
            await wait_for_condition(
                lambda: daemon.engine.state.current_app_policy == VisibilityPolicy.ALWAYS
            )

            assert daemon.engine.state.focused_scope == BROWSER
            assert store.values[(BROWSER, SettingsKey.HIDDEN_ON_DESKTOP)] is True
        finally:
            await daemon.shutdown()

        # reset_on_quit puts the tracked app back to the system default
        assert (BROWSER, SettingsKey.HIDDEN_ON_DESKTOP) not in store.values

    @pytest.mark.asyncio
    async def test_selection_for_tracked_app_survives_refocus(
        self, make_daemon, store, provider, app_bundle
    ):
        provider.activate(EDITOR)
        daemon = make_daemon()
        daemon.registry.import_app(app_bundle(BROWSER, "Browser"))
        await daemon.registry.set_policy(BROWSER, VisibilityPolicy.ALWAYS)

        await daemon.initialize()
        try:
            provider.activate(BROWSER)
            await wait_for_condition(
                lambda: daemon.engine.state.current_app_policy == VisibilityPolicy.ALWAYS
            )
            await daemon.engine.select_current_app_policy(VisibilityPolicy.NEVER)

            provider.activate(EDITOR)
            await wait_for_condition(lambda: daemon.engine.state.focused_scope == EDITOR)
            provider.activate(BROWSER)
            await wait_for_condition(lambda: daemon.engine.state.focused_scope == BROWSER)
            await asyncio.sleep(0.05)
            await settle(daemon.engine)

            assert daemon.registry.get(BROWSER).policy == VisibilityPolicy.NEVER
            assert daemon.engine.state.current_app_policy == VisibilityPolicy.NEVER
            assert store.values[(BROWSER, SettingsKey.FULL_SCREEN_VISIBLE)] is True
        finally:
            await daemon.shutdown()

    @pytest.mark.asyncio
    async def test_selection_updates_status_file(self, make_daemon, store, provider, config):
        provider.activate(EDITOR)
        daemon = make_daemon()

        await daemon.initialize()
        try:
            await daemon.engine.select_current_app_policy(VisibilityPolicy.NEVER)
            await daemon.engine.select_system_policy(SystemVisibilityPolicy.DESKTOP_ONLY)

            status = read_status_file(config)
            assert status["current_app"]["policy"] == "never"
            assert status["system"]["policy"] == "onDesktopOnly"
        finally:
            await daemon.shutdown()

    @pytest.mark.asyncio
    async def test_startup_without_frontmost_app(self, make_daemon, provider):
        provider.fail = True
        daemon = make_daemon()

        await daemon.initialize()
        try:
            assert daemon.engine.state.focused_scope is None
        finally:
            await daemon.shutdown()

        assert daemon.bus.closed
        assert not daemon.engine.is_running

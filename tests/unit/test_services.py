"""Unit tests for the capability probe, preferences watcher and status publisher."""

import json
import os

import pytest

from menubar_policy.constants import SYSTEM_SCOPE
from menubar_policy.models.events import ChangeEventType
from menubar_policy.models.policy import SystemVisibilityPolicy, VisibilityPolicy
from menubar_policy.models.state import EngineState
from menubar_policy.services.capability import ElevatedAccessChecker
from menubar_policy.services.preferences_watcher import PreferencesWatcher
from menubar_policy.services.status_publisher import StatusPublisher, read_status


class TestElevatedAccessChecker:
    def test_system_scope_is_always_settable(self, tmp_path):
        assert ElevatedAccessChecker(tmp_path)(SYSTEM_SCOPE)

    def test_non_sandboxed_app_is_settable(self, tmp_path):
        assert ElevatedAccessChecker(tmp_path)("com.example.Editor")

    def test_writable_container_is_settable(self, tmp_path):
        checker = ElevatedAccessChecker(tmp_path)
        checker.container_preferences_dir("com.example.Notes").mkdir(parents=True)

        assert checker("com.example.Notes")

    @pytest.mark.skipif(os.geteuid() == 0, reason="root bypasses file permissions")
    def test_protected_container_needs_elevated_access(self, tmp_path):
        checker = ElevatedAccessChecker(tmp_path)
        preferences_dir = checker.container_preferences_dir("com.example.Notes")
        preferences_dir.mkdir(parents=True)
        preferences_dir.chmod(0o000)
        try:
            assert not checker("com.example.Notes")
        finally:
            preferences_dir.chmod(0o755)


class TestPreferencesWatcher:
    def test_external_change_posts_both_kinds(self, bus, tmp_path):
        watcher = PreferencesWatcher(bus, tmp_path)
        full_screen = bus.subscribe(ChangeEventType.FULL_SCREEN_VISIBILITY_CHANGED)
        hidden = bus.subscribe(ChangeEventType.HIDING_ON_DESKTOP_CHANGED)

        watcher._on_preferences_changed()

        assert full_screen.pending() == 1
        assert hidden.pending() == 1

    def test_echo_of_local_post_is_suppressed(self, bus, tmp_path):
        watcher = PreferencesWatcher(bus, tmp_path, grace_seconds=10.0)
        hidden = bus.subscribe(ChangeEventType.HIDING_ON_DESKTOP_CHANGED)
        full_screen = bus.subscribe(ChangeEventType.FULL_SCREEN_VISIBILITY_CHANGED)
        bus.post(ChangeEventType.HIDING_ON_DESKTOP_CHANGED, origin="engine")

        watcher._on_preferences_changed()

        # Only the engine's own post
        assert hidden.pending() == 1
        assert full_screen.pending() == 1

    def test_missing_directory_does_not_start(self, bus, tmp_path):
        watcher = PreferencesWatcher(bus, tmp_path / "missing")
        watcher.start()
        watcher.stop()
        assert not watcher._started


class TestStatusPublisher:
    def test_publish_writes_snapshot(self, tmp_path):
        status_file = tmp_path / "state" / "status.json"
        publisher = StatusPublisher(status_file)
        state = EngineState(
            current_app_policy=VisibilityPolicy.NEVER,
            system_policy=SystemVisibilityPolicy.ALWAYS,
            focused_scope="com.example.Editor",
        )

        publisher(state)

        status = read_status(status_file)
        assert status["current_app"]["scope"] == "com.example.Editor"
        assert status["current_app"]["policy"] == "never"
        assert status["system"]["label"] == "Always"
        assert publisher.publish_count == 1

    def test_publish_failure_is_logged_not_raised(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        publisher = StatusPublisher(blocker / "status.json")

        publisher.publish(EngineState())

        assert publisher.publish_count == 0

    def test_clear_removes_file(self, tmp_path):
        status_file = tmp_path / "status.json"
        publisher = StatusPublisher(status_file)
        publisher.publish(EngineState())

        publisher.clear()
        publisher.clear()

        assert not status_file.exists()
        assert read_status(status_file) is None

    def test_corrupt_status_reads_as_none(self, tmp_path):
        status_file = tmp_path / "status.json"
        status_file.write_text("{")
        assert read_status(status_file) is None

    def test_status_json_is_serializable(self):
        json.dumps(EngineState().to_status_json())

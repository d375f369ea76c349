"""Unit tests for configuration loading and the file helpers."""

import asyncio
import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from watchdog.events import DirModifiedEvent, FileModifiedEvent, FileMovedEvent

from menubar_policy.config import DebouncedReloadHandler, atomic_write_json, load_daemon_config
from menubar_policy.models.config import DaemonConfig


@pytest.fixture(autouse=True)
def no_log_level_env(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)


class TestLoadDaemonConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_daemon_config(tmp_path / "config.json")
        assert config == DaemonConfig()
        assert config.store_timeout_seconds == 5.0
        assert config.reset_on_quit is True

    def test_values_are_loaded(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({
            "focus_poll_interval": 1.5,
            "watch_preferences": False,
            "registry_file": "~/apps.json",
            "log_level": "debug",
        }))

        config = load_daemon_config(config_file)

        assert config.focus_poll_interval == 1.5
        assert config.watch_preferences is False
        assert config.registry_file == Path("~/apps.json").expanduser()
        assert config.log_level == "DEBUG"

    def test_invalid_json_falls_back_to_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("{broken")
        assert load_daemon_config(config_file) == DaemonConfig()

    def test_invalid_values_fall_back_to_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"store_timeout_seconds": -1}))
        assert load_daemon_config(config_file).store_timeout_seconds == 5.0

    def test_non_object_falls_back_to_defaults(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("[1, 2]")
        assert load_daemon_config(config_file) == DaemonConfig()

    def test_log_level_environment_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "warning")
        assert load_daemon_config(tmp_path / "config.json").log_level == "WARNING"


class TestAtomicWriteJson:
    def test_writes_and_creates_parent(self, tmp_path):
        target = tmp_path / "state" / "status.json"

        atomic_write_json({"a": 1}, target, ".status-")

        assert json.loads(target.read_text()) == {"a": 1}
        assert [p.name for p in target.parent.iterdir()] == ["status.json"]

    def test_failed_write_leaves_no_temp_file(self, tmp_path):
        target = tmp_path / "status.json"

        with pytest.raises(TypeError):
            atomic_write_json({"a": object()}, target, ".status-")

        assert list(tmp_path.iterdir()) == []


class TestDebouncedReloadHandler:
    @pytest.mark.asyncio
    async def test_rapid_events_collapse_to_one_callback(self, tmp_path):
        callback = MagicMock()
        handler = DebouncedReloadHandler(callback, debounce_ms=20)
        handler.set_event_loop(asyncio.get_running_loop())

        for _ in range(5):
            handler.on_modified(FileModifiedEvent(str(tmp_path / "a.plist")))
        await asyncio.sleep(0.2)

        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_target_filename_filter(self, tmp_path):
        callback = MagicMock()
        handler = DebouncedReloadHandler(callback, debounce_ms=1, target_filename="tracked-apps.json")
        handler.set_event_loop(asyncio.get_running_loop())

        handler.on_modified(FileModifiedEvent(str(tmp_path / "other.json")))
        await asyncio.sleep(0.05)
        callback.assert_not_called()

        # Atomic saves arrive as a move onto the target name
        handler.on_moved(
            FileMovedEvent(str(tmp_path / ".tracked-apps-x.json"), str(tmp_path / "tracked-apps.json"))
        )
        await asyncio.sleep(0.05)
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_suffix_filter_and_directories(self, tmp_path):
        callback = MagicMock()
        handler = DebouncedReloadHandler(callback, debounce_ms=1, suffixes=(".plist",))
        handler.set_event_loop(asyncio.get_running_loop())

        handler.on_modified(DirModifiedEvent(str(tmp_path)))
        handler.on_created(FileModifiedEvent(str(tmp_path / "notes.txt")))
        await asyncio.sleep(0.05)
        callback.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_drops_pending_callback(self, tmp_path):
        callback = MagicMock()
        handler = DebouncedReloadHandler(callback, debounce_ms=50)
        handler.set_event_loop(asyncio.get_running_loop())

        handler.on_modified(FileModifiedEvent(str(tmp_path / "a.plist")))
        await asyncio.sleep(0)
        handler.cancel()
        await asyncio.sleep(0.1)

        callback.assert_not_called()

    def test_without_loop_calls_immediately(self, tmp_path):
        callback = MagicMock()
        handler = DebouncedReloadHandler(callback)

        handler.on_modified(FileModifiedEvent(str(tmp_path / "a.plist")))

        callback.assert_called_once()

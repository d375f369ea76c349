"""Unit tests for the settings stores and the policy read/write helpers."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from menubar_policy.constants import SYSTEM_SCOPE
from menubar_policy.errors import DeleteError, ReadError, WriteError
from menubar_policy.models.policy import SystemVisibilityPolicy, VisibilityPolicy
from menubar_policy.settings_store import (
    DefaultsCommandStore,
    InMemorySettingsStore,
    SettingsKey,
    read_policy,
    read_system_policy,
    write_policy,
)


def mock_process(returncode=0, stdout=b"", stderr=b""):
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.kill = MagicMock()
    proc.wait = AsyncMock(return_value=returncode)
    return proc


def patch_exec(proc):
    return patch(
        "menubar_policy.settings_store.asyncio.create_subprocess_exec",
        new=AsyncMock(return_value=proc),
    )


class TestDefaultsCommandStore:
    @pytest.fixture
    def defaults(self):
        return DefaultsCommandStore(executable=Path("/usr/bin/defaults"), timeout=1.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("stdout,expected", [(b"1\n", True), (b"0\n", False), (b"true\n", True)])
    async def test_get_parses_boolean(self, defaults, stdout, expected):
        with patch_exec(mock_process(stdout=stdout)) as exec_mock:
            value = await defaults.get("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP)

        assert value is expected
        args = exec_mock.call_args.args
        assert args == ("/usr/bin/defaults", "read", "com.apple.Safari", "_HIHideMenuBar")

    @pytest.mark.asyncio
    async def test_get_missing_key_is_none(self, defaults):
        proc = mock_process(
            returncode=1,
            stderr=b"The domain/default pair of (com.apple.Safari, _HIHideMenuBar) does not exist\n",
        )
        with patch_exec(proc):
            assert await defaults.get("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP) is None

    @pytest.mark.asyncio
    async def test_get_other_failure_raises_read_error(self, defaults):
        with patch_exec(mock_process(returncode=1, stderr=b"Operation not permitted")):
            with pytest.raises(ReadError) as exc_info:
                await defaults.get("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP)

        assert exc_info.value.scope == "com.apple.Safari"
        assert "Operation not permitted" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_non_boolean_value_raises(self, defaults):
        with patch_exec(mock_process(stdout=b"(\n    1\n)\n")):
            with pytest.raises(ReadError):
                await defaults.get("-g", SettingsKey.FULL_SCREEN_VISIBLE)

    @pytest.mark.asyncio
    async def test_timeout_kills_process_and_raises(self, defaults):
        proc = mock_process()
        proc.communicate = AsyncMock(side_effect=asyncio.TimeoutError)
        with patch_exec(proc):
            with pytest.raises(ReadError, match="timed out"):
                await defaults.get("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP)

        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_executable_raises_read_error(self, defaults):
        with patch(
            "menubar_policy.settings_store.asyncio.create_subprocess_exec",
            new=AsyncMock(side_effect=FileNotFoundError("no such file")),
        ):
            with pytest.raises(ReadError):
                await defaults.get("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP)

    @pytest.mark.asyncio
    async def test_set_writes_int(self, defaults):
        with patch_exec(mock_process()) as exec_mock:
            await defaults.set("com.apple.Safari", SettingsKey.FULL_SCREEN_VISIBLE, True)

        assert exec_mock.call_args.args[1:] == (
            "write", "com.apple.Safari", "AppleMenuBarVisibleInFullscreen", "-int", "1"
        )

    @pytest.mark.asyncio
    async def test_set_rejected_raises_write_error(self, defaults):
        with patch_exec(mock_process(returncode=1, stderr=b"Could not write domain")):
            with pytest.raises(WriteError):
                await defaults.set("com.apple.Safari", SettingsKey.FULL_SCREEN_VISIBLE, False)

    @pytest.mark.asyncio
    async def test_set_none_deletes(self, defaults):
        with patch_exec(mock_process()) as exec_mock:
            await defaults.set("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP, None)

        assert exec_mock.call_args.args[1:] == ("delete", "com.apple.Safari", "_HIHideMenuBar")

    @pytest.mark.asyncio
    async def test_deleting_absent_key_is_not_an_error(self, defaults):
        proc = mock_process(returncode=1, stderr=b"Domain (com.apple.Safari) not found.\n")
        with patch_exec(proc):
            await defaults.set("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP, None)

    @pytest.mark.asyncio
    async def test_rejected_delete_raises_delete_error(self, defaults):
        with patch_exec(mock_process(returncode=1, stderr=b"Operation not permitted")):
            with pytest.raises(DeleteError):
                await defaults.set("com.apple.Safari", SettingsKey.HIDDEN_ON_DESKTOP, None)


class TestInMemorySettingsStore:
    @pytest.mark.asyncio
    async def test_seed_and_read_policy(self, store):
        store.seed("com.example.Editor", VisibilityPolicy.DESKTOP_ONLY)
        assert await read_policy(store, "com.example.Editor") == VisibilityPolicy.DESKTOP_ONLY

    @pytest.mark.asyncio
    async def test_unknown_scope_reads_default(self, store):
        assert await read_policy(store, "com.example.Unknown") == VisibilityPolicy.DEFAULT

    @pytest.mark.asyncio
    async def test_unreachable_store_raises(self, store):
        store.unreachable = True
        with pytest.raises(ReadError):
            await read_policy(store, "com.example.Editor")

    @pytest.mark.asyncio
    async def test_failing_scope_rejects_writes(self, store):
        store.fail_writes("com.example.Locked")
        with pytest.raises(WriteError):
            await store.set("com.example.Locked", SettingsKey.FULL_SCREEN_VISIBLE, True)
        with pytest.raises(DeleteError):
            await store.set("com.example.Locked", SettingsKey.FULL_SCREEN_VISIBLE, None)
        assert len(store.writes) == 2


class TestPolicyHelpers:
    @pytest.mark.asyncio
    async def test_write_policy_writes_full_screen_key_first(self, store):
        await write_policy(store, "com.example.Editor", VisibilityPolicy.NEVER)

        assert store.writes == [
            ("com.example.Editor", SettingsKey.FULL_SCREEN_VISIBLE, True),
            ("com.example.Editor", SettingsKey.HIDDEN_ON_DESKTOP, False),
        ]

    @pytest.mark.asyncio
    async def test_write_default_deletes_both_keys(self, store):
        store.seed("com.example.Editor", VisibilityPolicy.ALWAYS)
        await write_policy(store, "com.example.Editor", VisibilityPolicy.DEFAULT)

        assert store.values == {}
        assert [value for _, _, value in store.writes] == [None, None]

    @pytest.mark.asyncio
    async def test_partial_write_keeps_first_key(self, store):
        store.fail_writes("com.example.Editor", SettingsKey.HIDDEN_ON_DESKTOP)

        with pytest.raises(WriteError):
            await write_policy(store, "com.example.Editor", VisibilityPolicy.NEVER)

        assert store.values == {("com.example.Editor", SettingsKey.FULL_SCREEN_VISIBLE): True}

    @pytest.mark.asyncio
    async def test_absent_system_keys_read_as_false(self, store):
        assert await read_system_policy(store) == SystemVisibilityPolicy.FULL_SCREEN_ONLY

    @pytest.mark.asyncio
    async def test_partially_set_system_keys(self, store):
        store.values[(SYSTEM_SCOPE, SettingsKey.HIDDEN_ON_DESKTOP)] = True
        assert await read_system_policy(store) == SystemVisibilityPolicy.ALWAYS

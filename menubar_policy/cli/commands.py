"""CLI command handlers for menubar-policy.

Implements the `menubar-policy` command: running the daemon, showing the
published status, changing policies directly, and managing tracked apps.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .. import __version__
from ..config import load_daemon_config
from ..constants import ConfigPaths, SYSTEM_SCOPE
from ..daemon import main_async as daemon_main_async, setup_logging as setup_daemon_logging
from ..errors import RegistryError, SettingsStoreError
from ..event_bus import ChangeEventBus
from ..models.config import DaemonConfig
from ..models.policy import SystemVisibilityPolicy, VisibilityPolicy
from ..services.app_registry import TrackedAppRegistry
from ..services.capability import ElevatedAccessChecker
from ..services.focus_monitor import LsappinfoProvider
from ..services.status_publisher import read_status
from ..settings_store import DefaultsCommandStore, SettingsStore, read_policy, write_policy
from .logging_config import get_global_logger, init_logging, log_timing


FULL_DISK_ACCESS_REMEDIATION = (
    "Grant Full Disk Access to your terminal in "
    "System Settings > Privacy & Security > Full Disk Access, then retry"
)


# ANSI color codes for output
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    RED = "\033[31m"
    BLUE = "\033[34m"
    GRAY = "\033[90m"


def print_success(message: str) -> None:
    """Print success message in green."""
    print(f"{Colors.GREEN}✓{Colors.RESET} {message}")


def print_error(message: str) -> None:
    """Print error message in red."""
    print(f"{Colors.RED}✗{Colors.RESET} {message}", file=sys.stderr)


def print_info(message: str) -> None:
    """Print info message in blue."""
    print(f"{Colors.BLUE}ℹ{Colors.RESET} {message}")


def print_error_with_remediation(error: str, remediation: str) -> None:
    """Print error with remediation steps.

    Format: "Error: <issue>. Remediation: <steps>"

    Examples:
        >>> print_error_with_remediation(
        ...     "Failed to write com.apple.Safari _HIHideMenuBar",
        ...     FULL_DISK_ACCESS_REMEDIATION
        ... )
    """
    print(f"{Colors.RED}✗ Error:{Colors.RESET} {error}", file=sys.stderr)
    print(f"{Colors.BLUE}  Remediation:{Colors.RESET} {remediation}", file=sys.stderr)


def _load_config(args: argparse.Namespace) -> DaemonConfig:
    return load_daemon_config(Path(args.config) if args.config else ConfigPaths.CONFIG_FILE)


def make_store(config: DaemonConfig) -> SettingsStore:
    return DefaultsCommandStore(config.defaults_executable, config.store_timeout_seconds)


def make_registry(config: DaemonConfig, store: SettingsStore) -> TrackedAppRegistry:
    """Registry for one-shot CLI edits (its events have no subscribers)."""
    provider = LsappinfoProvider(config.lsappinfo_executable, config.store_timeout_seconds)

    async def is_running(scope: str) -> bool:
        try:
            return scope in await provider.running_bundle_ids()
        except (OSError, asyncio.TimeoutError) as e:
            get_global_logger().warning(f"Could not list running applications: {e}")
            return False

    registry = TrackedAppRegistry(store, ChangeEventBus(), config.registry_file, is_running=is_running)
    registry.load()
    return registry


def _is_app_scope(scope: str) -> bool:
    return bool(scope) and not scope.startswith("-")


# ============================================================================
# Daemon
# ============================================================================


async def cmd_run(args: argparse.Namespace) -> int:
    """Run the daemon in the foreground until SIGTERM/SIGINT."""
    config_file = Path(args.config) if args.config else ConfigPaths.CONFIG_FILE
    return await daemon_main_async(config_file, "DEBUG" if args.debug else None)


async def cmd_status(args: argparse.Namespace) -> int:
    """Show the state published by the running daemon.

    Args:
        args: Parsed arguments with optional --json flag

    Returns:
        0 on success, 1 if no status is available
    """
    config = _load_config(args)
    status = read_status(config.status_file)
    if status is None:
        print_error_with_remediation(
            "Daemon status is not available",
            "Start the daemon with: menubar-policy run",
        )
        return 1

    if getattr(args, "json", False):
        print(json.dumps(status, indent=2))
        return 0

    current = status.get("current_app", {})
    system = status.get("system", {})

    console = Console()
    table = Table(title="Menu Bar Policies", show_header=True, header_style="bold")
    table.add_column("Scope", style="cyan")
    table.add_column("Policy", style="green")
    table.add_column("Notes", style="dim")

    notes = ""
    if current.get("needs_elevated_access"):
        notes = "[red]needs Full Disk Access[/red]"
    table.add_row(
        current.get("scope") or "(no focused app)",
        current.get("label", ""),
        notes,
    )
    table.add_row("System", system.get("label", ""), "")

    console.print(table)
    console.print(f"[dim]Updated {status.get('updated_at', 'unknown')}[/dim]")
    return 0


# ============================================================================
# Direct policy changes
# ============================================================================


async def cmd_set_app(args: argparse.Namespace) -> int:
    """Write a policy for one application scope."""
    logger = get_global_logger()
    scope = args.scope
    policy = VisibilityPolicy(args.policy)

    if not _is_app_scope(scope):
        print_error_with_remediation(
            f"Not an application bundle identifier: {scope}",
            "Use 'menubar-policy set-system' for the system-wide policy",
        )
        return 1

    if not ElevatedAccessChecker()(scope):
        print_error_with_remediation(f"{scope} needs Full Disk Access", FULL_DISK_ACCESS_REMEDIATION)
        return 1

    store = make_store(_load_config(args))
    try:
        previous = await read_policy(store, scope)
        with log_timing(f"Write {policy.value} for {scope}", logger):
            await write_policy(store, scope, policy)
    except SettingsStoreError as e:
        print_error_with_remediation(str(e), FULL_DISK_ACCESS_REMEDIATION)
        return 1

    print_success(f"{scope}: {previous.label} → {policy.label}")
    return 0


async def cmd_set_system(args: argparse.Namespace) -> int:
    """Write the system-wide policy."""
    logger = get_global_logger()
    policy = SystemVisibilityPolicy(args.policy)

    store = make_store(_load_config(args))
    try:
        with log_timing(f"Write system policy {policy.value}", logger):
            await write_policy(store, SYSTEM_SCOPE, policy)
    except SettingsStoreError as e:
        print_error_with_remediation(str(e), "Check that the defaults tool is available")
        return 1

    print_success(f"System: {policy.label}")
    return 0


# ============================================================================
# Tracked applications
# ============================================================================


async def cmd_apps(args: argparse.Namespace) -> int:
    """Manage tracked applications.

    Subcommands: list, add, remove, set
    """
    subcommand = getattr(args, "apps_command", None)
    if not subcommand:
        print_error("Missing apps subcommand (list, add, remove, set)")
        return 1

    config = _load_config(args)
    registry = make_registry(config, make_store(config))

    try:
        if subcommand == "list":
            return _apps_list(registry, getattr(args, "json", False))

        elif subcommand == "add":
            app = registry.import_app(Path(args.bundle_path).expanduser())
            if app is None:
                print_info(f"{args.bundle_path} is already tracked")
            else:
                print_success(f"Tracking {app.display_name} ({app.scope})")
            return 0

        elif subcommand == "remove":
            removed = await registry.remove(args.scopes)
            missing = sorted(set(args.scopes) - {app.scope for app in removed})
            for app in removed:
                print_success(f"Stopped tracking {app.display_name} ({app.scope})")
            for scope in missing:
                print_error(f"{scope} is not tracked")
            return 1 if missing else 0

        elif subcommand == "set":
            changed = await registry.set_policy(args.scope, VisibilityPolicy(args.policy))
            app = registry.get(args.scope)
            if changed:
                print_success(f"{app.display_name}: {app.policy.label}")
            else:
                print_info(f"{app.display_name} already uses {app.policy.label}")
            return 0

    except RegistryError as e:
        print_error_with_remediation(
            str(e), "Pass the path of an installed .app bundle, or run 'menubar-policy apps list'"
        )
        return 1
    except OSError as e:
        print_error_with_remediation(
            f"Failed to save {config.registry_file}: {e}",
            f"Check permissions on {config.registry_file.parent}",
        )
        return 1

    print_error(f"Unknown apps subcommand: {subcommand}")
    return 1


def _apps_list(registry: TrackedAppRegistry, json_mode: bool) -> int:
    apps = registry.list_apps()
    if json_mode:
        print(json.dumps(
            {"total": len(apps), "apps": [app.model_dump(mode="json") for app in apps]},
            indent=2,
        ))
        return 0

    if not apps:
        print_info("No tracked applications")
        print_info("Add one with: menubar-policy apps add /Applications/<App>.app")
        return 0

    console = Console()
    table = Table(title="Tracked Applications", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Bundle ID")
    table.add_column("Policy", style="green")
    table.add_column("Path", style="dim")

    for app in apps:
        policy = app.policy.label
        if app.policy == VisibilityPolicy.DEFAULT:
            policy = f"[dim]{policy}[/dim]"
        table.add_row(app.display_name, app.scope, policy, app.bundle_path)

    console.print(table)
    return 0


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    app_policies = [policy.value for policy in VisibilityPolicy]
    system_policies = [policy.value for policy in SystemVisibilityPolicy]

    parser = argparse.ArgumentParser(
        prog="menubar-policy",
        description="Per-application and system-wide menu bar visibility policies",
    )
    parser.add_argument("--version", action="version", version=f"menubar-policy {__version__}")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging (INFO level)"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (DEBUG level, includes verbose)"
    )
    parser.add_argument(
        "--config",
        help=f"Path to config file (default: {ConfigPaths.CONFIG_FILE})"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Run the daemon in the foreground")

    parser_status = subparsers.add_parser("status", help="Show the current policies")
    parser_status.add_argument("--json", action="store_true", help="Output JSON")

    parser_set_app = subparsers.add_parser("set-app", help="Set the policy of an application")
    parser_set_app.add_argument("scope", help="Application bundle identifier")
    parser_set_app.add_argument("policy", choices=app_policies)

    parser_set_system = subparsers.add_parser("set-system", help="Set the system-wide policy")
    parser_set_system.add_argument("policy", choices=system_policies)

    parser_apps = subparsers.add_parser("apps", help="Manage tracked applications")
    apps_subparsers = parser_apps.add_subparsers(dest="apps_command")

    parser_apps_list = apps_subparsers.add_parser("list", help="List tracked applications")
    parser_apps_list.add_argument("--json", action="store_true", help="Output JSON")

    parser_apps_add = apps_subparsers.add_parser("add", help="Track an application bundle")
    parser_apps_add.add_argument("bundle_path", help="Path to the .app bundle")

    parser_apps_remove = apps_subparsers.add_parser("remove", help="Stop tracking applications")
    parser_apps_remove.add_argument("scopes", nargs="+", help="Bundle identifiers")

    parser_apps_set = apps_subparsers.add_parser("set", help="Save a policy for a tracked app")
    parser_apps_set.add_argument("scope", help="Bundle identifier")
    parser_apps_set.add_argument("policy", choices=app_policies)

    return parser


def cli_main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on usage errors
        return 0 if e.code in (0, None) else 1

    if args.command == "run":
        setup_daemon_logging("DEBUG" if args.debug else None)
    else:
        init_logging(verbose=args.verbose, debug=args.debug)
        logger = get_global_logger()
        if args.debug:
            logger.debug("Debug logging enabled")

    if not args.command:
        parser.print_help()
        return 0

    command_handlers = {
        "run": cmd_run,
        "status": cmd_status,
        "set-app": cmd_set_app,
        "set-system": cmd_set_system,
        "apps": cmd_apps,
    }

    handler = command_handlers.get(args.command)
    if handler:
        return asyncio.run(handler(args))

    print_error(f"Unknown command: {args.command}")
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(cli_main())

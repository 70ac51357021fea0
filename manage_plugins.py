#!/usr/bin/env python3
"""Plugin management CLI tool.

Usage:
    python manage_plugins.py list
    python manage_plugins.py info code-stats
    python manage_plugins.py config code-stats output_format json
    python manage_plugins.py run stats src --format json
    python manage_plugins.py hooks implementation --feature login
    python manage_plugins.py dev code-stats
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables FIRST (before importing project modules)
load_dotenv('.env')

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from harness.constants import (
    BUNDLED_PLUGINS_DIR,
    HARNESS_HOME,
    HOST_VERSION,
    INSTALLED_PLUGINS_DIR,
    PLUGIN_CONFIG_FILE,
    PLUGINS_ENABLED,
    PROJECT_CONFIG_FILE,
)
from harness.dependencies import get_plugin_manager
from harness.plugins.errors import PluginError
from harness.plugins.models import HookContext, HookTiming, PluginLoadResult

# Configure logging
log_dir = HARNESS_HOME / "log"
log_dir.mkdir(parents=True, exist_ok=True)

root_logger = logging.getLogger()
root_logger.setLevel(logging.INFO)

# File handler records everything from INFO up
file_handler = logging.FileHandler(log_dir / "plugins.log", encoding='utf-8')
file_handler.setLevel(logging.INFO)
file_handler.setFormatter(logging.Formatter(
    '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
))

# Console handler only shows WARNING and up so tables stay readable
console_handler = logging.StreamHandler()
console_handler.setLevel(logging.WARNING)
console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))

root_logger.addHandler(file_handler)
root_logger.addHandler(console_handler)

console = Console()


def _parse_value(raw: str):
    """Interpret a CLI value as JSON, falling back to a plain string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_options(pairs):
    options = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        options[key] = _parse_value(value) if sep else True
    return options


def _print_load_result(result: PluginLoadResult) -> None:
    if result.plugins_disabled_globally:
        console.print("[yellow]Plugins are disabled globally (PLUGINS_ENABLED=false)[/yellow]")
        return
    for loaded in result.loaded:
        console.print(f"[green]✓ loaded {loaded.name}@{loaded.version}[/green]")
    for skipped in result.skipped:
        console.print(f"[yellow]- skipped {skipped.name}: {skipped.reason}[/yellow]")
    for error in result.errors:
        console.print(f"[red]✗ {error.plugin_name} ({error.phase.value}): {error.error}[/red]")


def cmd_list(args):
    """List all discovered plugins."""
    manager = get_plugin_manager()
    plugins = manager.list_plugins()

    if not plugins:
        console.print("[yellow]No plugins found.[/yellow]")
        return

    table = Table(title="Plugins")
    table.add_column("Name", style="cyan")
    table.add_column("Version")
    table.add_column("Source")
    table.add_column("Enabled")
    table.add_column("Extension points")
    table.add_column("Description", style="dim")

    for p in plugins:
        enabled = "[green]yes[/green]" if p["enabled"] else "[red]no[/red]"
        table.add_row(
            p["name"],
            p.get("version") or "?",
            p.get("source", ""),
            enabled,
            ", ".join(p.get("extension_points") or []),
            p.get("description") or "",
        )
    console.print(table)


def cmd_info(args):
    """Show detailed plugin information."""
    manager = get_plugin_manager()
    info = manager.get_plugin_info(args.name)
    if not info:
        console.print(f"[red]Plugin '{args.name}' not found.[/red]")
        sys.exit(1)

    lines = [
        f"Version:     {info.get('version')}",
        f"Author:      {info.get('author')}",
        f"Description: {info.get('description')}",
        f"Source:      {info.get('source')}",
        f"Path:        {info.get('path')}",
        f"Enabled:     {info.get('enabled')}",
        f"State:       {info.get('state')}",
    ]
    if info.get("dependencies"):
        deps = ", ".join(f"{d['name']} {d['version_range']}" for d in info["dependencies"])
        lines.append(f"Depends on:  {deps}")
    if info.get("config"):
        lines.append(f"Config:      {json.dumps(info['config'], indent=2, ensure_ascii=False)}")
    if info.get("config_schema"):
        lines.append(f"Schema:      {json.dumps(info['config_schema'], indent=2, ensure_ascii=False)}")
    console.print(Panel("\n".join(lines), title=f"Plugin: {info['name']}", border_style="blue"))


def cmd_enable(args):
    """Enable a plugin."""
    manager = get_plugin_manager()
    result = asyncio.run(manager.enable_plugin(args.name))
    if result is None:
        console.print(f"[red]Plugin '{args.name}' not found.[/red]")
        sys.exit(1)
    _print_load_result(result)
    console.print(f"[green]✓ Plugin '{args.name}' enabled. Restart the service to take effect.[/green]")


def cmd_disable(args):
    """Disable a plugin."""
    manager = get_plugin_manager()
    dependents = asyncio.run(manager.disable_plugin(args.name))
    if dependents is None:
        console.print(f"[red]Plugin '{args.name}' not found.[/red]")
        sys.exit(1)
    if dependents:
        console.print(f"[yellow]Warning: {', '.join(dependents)} depend(s) on '{args.name}' and will be skipped[/yellow]")
    console.print(f"[green]✓ Plugin '{args.name}' disabled. Restart the service to take effect.[/green]")


def cmd_install(args):
    """Install a plugin from a local path."""
    manager = get_plugin_manager()
    source = Path(args.path).resolve()
    if not source.exists():
        console.print(f"[red]Path does not exist: {source}[/red]")
        sys.exit(1)

    try:
        manifest = manager.install_plugin(source)
    except PluginError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print(f"[green]✓ Plugin '{manifest.name}' installed to {manager.installed_dir / manifest.name}[/green]")


def cmd_uninstall(args):
    """Remove an installed plugin."""
    manager = get_plugin_manager()
    try:
        removed = asyncio.run(manager.uninstall_plugin(args.name))
    except PluginError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    if not removed:
        console.print(f"[red]Plugin '{args.name}' not found.[/red]")
        sys.exit(1)
    console.print(f"[green]✓ Plugin '{args.name}' uninstalled[/green]")


def cmd_config(args):
    """Show or set plugin configuration."""
    manager = get_plugin_manager()
    try:
        if args.value is not None:
            manager.set_config(args.name, args.key, _parse_value(args.value))
            console.print(f"[green]✓ Set {args.key} for '{args.name}'[/green]")
            return
        value = manager.get_config(args.name, args.key)
    except PluginError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except KeyError:
        console.print(f"[red]Unknown config key '{args.key}' for plugin '{args.name}'[/red]")
        sys.exit(1)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print_json(json.dumps(value, ensure_ascii=False))


def cmd_validate(args):
    """Validate a plugin directory without installing it."""
    manager = get_plugin_manager()
    report = manager.validate_plugin(Path(args.path).resolve())
    for warning in report.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")
    for error in report.errors:
        console.print(f"[red]✗ {error}[/red]")
    if not report.valid:
        sys.exit(1)
    console.print(f"[green]✓ {report.manifest.name}@{report.manifest.version} is valid[/green]")


def cmd_scaffold(args):
    """Create a new plugin skeleton."""
    manager = get_plugin_manager()
    try:
        plugin_dir = manager.scaffold_plugin(args.name, Path(args.dir), description=args.description, author=args.author)
    except PluginError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(f"[green]✓ Created {plugin_dir}[/green]")
    console.print(f"[dim]Try: python manage_plugins.py validate {plugin_dir}[/dim]")


def cmd_doctor(args):
    """Run health checks on the plugin system."""
    issues = []
    manager = get_plugin_manager()

    if not PLUGINS_ENABLED:
        issues.append("Plugins are disabled globally (PLUGINS_ENABLED=false)")

    # Check directories
    if not BUNDLED_PLUGINS_DIR.exists():
        issues.append(f"Bundled plugins directory missing: {BUNDLED_PLUGINS_DIR}")
    if not INSTALLED_PLUGINS_DIR.exists():
        issues.append(f"Installed plugins directory missing: {INSTALLED_PLUGINS_DIR}")
    for path, source in manager.search_paths:
        if source == "external" and not path.exists():
            issues.append(f"PLUGIN_PATHS entry does not exist: {path}")

    # Check config files
    if PLUGIN_CONFIG_FILE.exists():
        try:
            with open(PLUGIN_CONFIG_FILE, encoding="utf-8") as f:
                json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            issues.append(f"Plugin config file has invalid JSON: {e}")
    if PROJECT_CONFIG_FILE.exists() and manager.build_load_config().project_config is None:
        issues.append(f"Project config could not be read: {PROJECT_CONFIG_FILE}")

    plugins = manager.list_plugins()
    discovered = {p["name"] for p in plugins}
    for name in manager.config_service.get_enabled_list():
        if name not in discovered:
            issues.append(f"Enabled plugin '{name}' not found in any search path")

    # Validate every plugin the way the loader would
    for p in plugins:
        if not p.get("path"):
            continue
        report = manager.validate_plugin(Path(p["path"]))
        issues.extend(f"Plugin '{p['name']}': {e}" for e in report.errors)
        issues.extend(f"Plugin '{p['name']}': {w}" for w in report.warnings)

    if issues:
        console.print(f"[red]Found {len(issues)} issue(s):[/red]")
        for i, issue in enumerate(issues, 1):
            console.print(f"  {i}. {issue}")
        sys.exit(1)
    enabled = sum(1 for p in plugins if p["enabled"])
    console.print(f"[green]✓ All checks passed. Host {HOST_VERSION}, {len(plugins)} plugin(s) found, {enabled} enabled.[/green]")


async def _run_command(args) -> bool:
    manager = get_plugin_manager()
    await manager.load_all()
    try:
        command = manager.extensions.commands.get_command(args.command_name)
        if command is None:
            console.print(f"[red]Unknown command: {args.command_name}[/red]")
            return False
        result = await manager.extensions.commands.execute_command(
            args.command_name, args.args, _parse_options(args.option)
        )
        if not result.success:
            console.print(f"[red]Command failed ({result.plugin_name}): {result.error}[/red]")
        return result.success
    finally:
        await manager.unload_all()


def cmd_run(args):
    """Execute a plugin-provided command."""
    if not asyncio.run(_run_command(args)):
        sys.exit(1)


async def _run_hooks(args):
    manager = get_plugin_manager()
    await manager.load_all()
    try:
        context = HookContext.create(
            args.phase,
            args.timing,
            args.feature,
            spec_metadata=_parse_options(args.meta),
        )
        hooks = manager.extensions.hooks
        if HookTiming(args.timing) == HookTiming.PRE:
            return await hooks.run_pre_phase_hooks(args.phase, context)
        return await hooks.run_post_phase_hooks(args.phase, context)
    finally:
        await manager.unload_all()


def cmd_hooks(args):
    """Dry-run the hooks registered for a workflow phase."""
    result = asyncio.run(_run_hooks(args))
    console.print(f"Executed {result.executed_hooks} {args.timing}-phase hook(s) for '{args.phase}'")
    for error in result.errors:
        console.print(f"[red]✗ {error.plugin_name}: {error.error}[/red]")
    if result.vetoed:
        console.print(f"[yellow]Vetoed by {result.veto_plugin}: {result.veto_reason}[/yellow]")
        sys.exit(2)


async def _dev(args):
    manager = get_plugin_manager()
    result = await manager.load_all()
    _print_load_result(result)
    try:
        manager.start_dev_mode(args.name, on_reload=_print_load_result)
    except PluginError as e:
        console.print(f"[red]{e}[/red]")
        await manager.unload_all()
        return False

    console.print(f"[blue]Watching '{args.name}' for changes. Press Ctrl+C to stop.[/blue]")
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        await manager.unload_all()


def cmd_dev(args):
    """Hot-reload a plugin while editing it."""
    try:
        if asyncio.run(_dev(args)) is False:
            sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


def main():
    parser = argparse.ArgumentParser(description="Agent-Harness Plugin Manager")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    subparsers.add_parser("list", help="List all plugins")

    # info
    info_parser = subparsers.add_parser("info", help="Show plugin details")
    info_parser.add_argument("name", help="Plugin name")

    # enable
    enable_parser = subparsers.add_parser("enable", help="Enable a plugin")
    enable_parser.add_argument("name", help="Plugin name")

    # disable
    disable_parser = subparsers.add_parser("disable", help="Disable a plugin")
    disable_parser.add_argument("name", help="Plugin name")

    # install
    install_parser = subparsers.add_parser("install", help="Install a plugin from local path")
    install_parser.add_argument("path", help="Path to plugin directory")

    # uninstall
    uninstall_parser = subparsers.add_parser("uninstall", help="Remove an installed plugin")
    uninstall_parser.add_argument("name", help="Plugin name")

    # config
    config_parser = subparsers.add_parser("config", help="Show or set plugin configuration")
    config_parser.add_argument("name", help="Plugin name")
    config_parser.add_argument("key", nargs="?", help="Config key")
    config_parser.add_argument("value", nargs="?", help="New value (JSON or plain string)")

    # validate
    validate_parser = subparsers.add_parser("validate", help="Validate a plugin directory")
    validate_parser.add_argument("path", help="Path to plugin directory")

    # scaffold
    scaffold_parser = subparsers.add_parser("scaffold", help="Create a new plugin skeleton")
    scaffold_parser.add_argument("name", help="Plugin name")
    scaffold_parser.add_argument("--dir", default=".", help="Parent directory (default: current)")
    scaffold_parser.add_argument("--description", default="", help="Plugin description")
    scaffold_parser.add_argument("--author", default="", help="Plugin author")

    # doctor
    subparsers.add_parser("doctor", help="Run health checks")

    # run
    run_parser = subparsers.add_parser("run", help="Run a plugin command")
    run_parser.add_argument("command_name", help="Command name")
    run_parser.add_argument("args", nargs="*", help="Positional arguments")
    run_parser.add_argument("-o", "--option", action="append", help="Option as key=value (repeatable)")

    # hooks
    hooks_parser = subparsers.add_parser("hooks", help="Dry-run hooks for a phase")
    hooks_parser.add_argument("phase", help="Workflow phase (requirements, design, tasks, implementation)")
    hooks_parser.add_argument("--timing", choices=["pre", "post"], default="pre")
    hooks_parser.add_argument("--feature", default="dry-run", help="Feature name passed to hooks")
    hooks_parser.add_argument("--meta", action="append", help="Spec metadata as key=value (repeatable)")

    # dev
    dev_parser = subparsers.add_parser("dev", help="Watch a plugin and reload it on change")
    dev_parser.add_argument("name", help="Plugin name")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    commands = {
        "list": cmd_list,
        "info": cmd_info,
        "enable": cmd_enable,
        "disable": cmd_disable,
        "install": cmd_install,
        "uninstall": cmd_uninstall,
        "config": cmd_config,
        "validate": cmd_validate,
        "scaffold": cmd_scaffold,
        "doctor": cmd_doctor,
        "run": cmd_run,
        "hooks": cmd_hooks,
        "dev": cmd_dev,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()

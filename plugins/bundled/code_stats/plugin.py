"""code-stats plugin - tracks code statistics during spec-driven development.

Registers the ``code-stats`` service, the ``stats`` and ``stats-compare``
commands, and implementation-phase hooks that snapshot the tree before and
after the phase runs.
"""

import asyncio
import json
from typing import Optional

from rich.console import Console
from rich.table import Table

from code_stats_service import CodeStats, CodeStatsService
from harness.plugins.models import (
    ArgumentDefinition,
    CommandArgs,
    CommandRegistration,
    HookContext,
    HookPriority,
    HookRegistration,
    HookResult,
    HookTiming,
    OptionDefinition,
    ServiceRegistration,
    WorkflowPhase,
)

SERVICE_NAME = "code-stats"

console = Console()

_service: Optional[CodeStatsService] = None


def render_table(stats: CodeStats) -> Table:
    table = Table(title="Code Statistics")
    table.add_column("Extension", style="cyan")
    table.add_column("Files", justify="right")
    table.add_column("Lines", justify="right")
    table.add_column("Code lines", justify="right")
    for ext, ext_stats in sorted(stats.by_extension.items()):
        table.add_row(ext, str(ext_stats.files), str(ext_stats.lines), str(ext_stats.code_lines))
    table.add_row(
        "[bold]total[/bold]",
        str(stats.total_files),
        str(stats.total_lines),
        str(stats.total_code_lines),
    )
    return table


def render_markdown(stats: CodeStats) -> str:
    lines = [
        "## Code Statistics",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Files | {stats.total_files} |",
        f"| Total Lines | {stats.total_lines} |",
        f"| Code Lines | {stats.total_code_lines} |",
        f"| Comment Lines | {stats.total_comment_lines} |",
        f"| Blank Lines | {stats.total_blank_lines} |",
        "",
        "### By Extension",
        "",
        "| Extension | Files | Code Lines |",
        "|-----------|-------|------------|",
    ]
    for ext, ext_stats in sorted(stats.by_extension.items()):
        lines.append(f"| {ext} | {ext_stats.files} | {ext_stats.code_lines} |")
    return "\n".join(lines)


def render_json(stats: CodeStats) -> str:
    data = stats.to_dict()
    data.pop("files")
    return json.dumps(data, indent=2)


def activate(context):
    global _service

    config = context.config
    output_format = config["output_format"]
    root_dir = config["root_dir"]
    _service = CodeStatsService(config["extensions"], include_tests=config["include_tests"])

    def dispose():
        global _service
        _service = None

    context.register_service(ServiceRegistration(
        name=SERVICE_NAME,
        factory=lambda deps: _service,
        dispose=dispose,
    ))

    async def stats_command(args: CommandArgs):
        directory = args.positional[0] if args.positional else "."
        fmt = args.options.get("format", output_format)
        service = args.context.get_service(SERVICE_NAME)
        args.context.log("info", f"Analyzing {directory}...")
        stats = await asyncio.to_thread(service.analyze, directory)

        if fmt == "json":
            console.print_json(render_json(stats))
        elif fmt == "markdown":
            console.print(render_markdown(stats), markup=False)
        else:
            console.print(render_table(stats))

    def stats_compare_command(args: CommandArgs):
        if not args.positional:
            raise ValueError("Usage: stats-compare <feature>")
        feature = args.positional[0]
        service = args.context.get_service(SERVICE_NAME)
        snapshots = service.get_snapshots(feature)
        if len(snapshots) < 2:
            args.context.log("info", f"Not enough snapshots for feature '{feature}'. Need at least 2 phases.")
            return

        console.print(f"Statistics for feature: [bold]{feature}[/bold]")
        for before, after in zip(snapshots, snapshots[1:]):
            diff = service.compare(before, after)
            console.print(f"{before.phase} -> {after.phase}")
            console.print(f"  Files:      {diff.files_added - diff.files_removed:+d}")
            console.print(f"  Lines:      {diff.lines_added - diff.lines_removed:+d}")
            console.print(f"  Code lines: {diff.code_lines_added - diff.code_lines_removed:+d}")

    context.register_command(CommandRegistration(
        name="stats",
        handler=stats_command,
        description="Analyze code statistics for a directory",
        args=[ArgumentDefinition(name="directory", description="Directory to analyze (default: current)")],
        options=[
            OptionDefinition(name="format", description="Output format: table, json, markdown", alias="f"),
        ],
    ))
    context.register_command(CommandRegistration(
        name="stats-compare",
        handler=stats_compare_command,
        description="Compare code statistics between workflow phases",
        args=[ArgumentDefinition(name="feature", description="Feature name to compare", required=True)],
    ))

    async def capture(hook_context: HookContext, label: str):
        service = context.get_service(SERVICE_NAME)
        try:
            stats = await asyncio.to_thread(service.analyze, root_dir)
        except OSError as e:
            context.log("warn", f"Failed to capture stats: {e}")
            return None
        context.log("info", f"Captured {label} stats for {hook_context.feature}")
        return service.save_snapshot(hook_context.feature, label, stats)

    async def before_implementation(hook_context: HookContext):
        await capture(hook_context, "pre-implementation")
        return HookResult.proceed()

    async def after_implementation(hook_context: HookContext):
        after = await capture(hook_context, "post-implementation")
        snapshots = context.get_service(SERVICE_NAME).get_snapshots(hook_context.feature)
        if after is not None and len(snapshots) >= 2:
            diff = CodeStatsService.compare(snapshots[-2], after)
            context.log(
                "info",
                f"Implementation statistics: files +{diff.files_added}/-{diff.files_removed}, "
                f"lines +{diff.lines_added}/-{diff.lines_removed}, "
                f"code lines +{diff.code_lines_added}/-{diff.code_lines_removed}",
            )
        return HookResult.proceed()

    context.register_hook(HookRegistration(
        phase=WorkflowPhase.IMPLEMENTATION,
        handler=before_implementation,
        timing=HookTiming.PRE,
        priority=HookPriority.EARLY,
    ))
    context.register_hook(HookRegistration(
        phase=WorkflowPhase.IMPLEMENTATION,
        handler=after_implementation,
        timing=HookTiming.POST,
        priority=HookPriority.LATE,
    ))

    context.log("info", "code-stats plugin activated")


def deactivate():
    global _service
    if _service is not None:
        _service.clear()
    _service = None

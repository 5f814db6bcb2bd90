"""Command-line interface for deploy-orchestrator."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import STRATEGIES, AppConfig, load_config
from .errors import ConfigurationError
from .orchestrator import EXIT_CONFIG_ERROR, EXIT_FAILURE, EXIT_SUCCESS, exit_status, load_report
from .paths import get_latest_report_path
from .utils.logging import get_logger, set_verbosity
from .workflow import PipelineWorkflow, RunRequest

logger = get_logger(__name__)

_STATUS_STYLES = {
    "success": "green",
    "dry_run": "cyan",
    "skipped": "yellow",
    "failed": "bold red",
    "timed_out": "red",
}
_RUN_EMOJI = {"completed": "✅", "failed": "❌"}


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    console: Console


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deploy-orchestrator",
        description=(
            "Build and deploy the components of a pipeline configuration "
            "across an environment's servers."
        ),
        epilog="Global options go before the command; the default command is 'deploy'.",
    )
    parser.add_argument("--config", "-c", help="Pipeline configuration document (JSON)")
    parser.add_argument("--environment", "-e", help="Target environment name (e.g. tst)")
    parser.add_argument(
        "--strategy",
        choices=STRATEGIES,
        default=None,
        help="Deployment strategy (default: deploy.strategy or by-component)",
    )
    parser.add_argument("--component-filter", help="Glob on component names, e.g. 'api-*'")
    parser.add_argument("--category-filter", help="Glob on categories, e.g. 'apis'")
    parser.add_argument("--server-filter", help="Glob on the environment's servers")
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Resolve and report every action without spawning processes",
    )
    parser.add_argument(
        "--skip-health-check", action="store_true",
        help="Do not probe health endpoints (rolling then relies on action results only)",
    )
    parser.add_argument(
        "--stop-on-failure", action="store_true",
        help="Do not start new actions after the first failure",
    )
    parser.add_argument("--max-parallel", type=int, default=None, help="Worker pool size")
    parser.add_argument("--timeout", type=float, default=None, help="Per-action timeout in seconds")
    parser.add_argument("--reports-dir", default=None, help="Directory for JSON reports")
    parser.add_argument("--workspace", default=None, help="Value of ${WORKSPACE}")
    parser.add_argument(
        "--settings", default=None,
        help="Orchestrator settings file (default: config/orchestrator.json if present)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("deploy", help="Deploy components to servers (default)")
    subparsers.add_parser("build", help="Run the build action of every component")

    resolve_parser = subparsers.add_parser(
        "resolve", help="Resolve the component catalog and print export variables"
    )
    resolve_parser.add_argument("--output", "-o", help="Write the resolved components JSON here")

    # report 子命令 - 查看部署报告
    report_parser = subparsers.add_parser("report", help="Show a deployment report")
    report_parser.add_argument("--file", "-f", help="Report file (default: latest)")
    report_parser.add_argument(
        "--summary", "-s", action="store_true", help="Show summary only (no outcome table)"
    )
    report_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_reports", help="List stored reports"
    )
    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.settings)
    if args.workspace:
        config.workspace = args.workspace
    if args.max_parallel is not None and args.max_parallel < 1:
        raise ConfigurationError("--max-parallel must be at least 1")
    if args.timeout is not None and args.timeout <= 0:
        raise ConfigurationError("--timeout must be positive")
    return CLIContext(config=config, console=Console())


def _build_request(args: argparse.Namespace, config: AppConfig) -> RunRequest:
    missing = [flag for flag, value in (("--config", args.config), ("--environment", args.environment)) if not value]
    if missing:
        raise ConfigurationError(f"Missing required option(s): {', '.join(missing)}")
    return RunRequest(
        config_path=args.config,
        environment=args.environment,
        strategy=args.strategy,
        component_filter=args.component_filter,
        category_filter=args.category_filter,
        server_filter=args.server_filter,
        dry_run=args.dry_run,
        skip_health_check=args.skip_health_check,
        stop_on_failure=args.stop_on_failure,
        max_parallel=args.max_parallel,
        timeout=args.timeout,
        reports_dir=args.reports_dir or config.report.reports_dir,
    )


def render_report(data: Dict[str, Any], console: Console, summary_only: bool = False) -> None:
    """Display a report dictionary (as written to disk)."""
    status = data.get("status", "unknown")
    summary = data.get("summary", {})

    console.rule(f"📄 Deployment {data.get('deploymentId', '?')}")
    console.print(f"📦 Project:     {data.get('project', 'N/A')}")
    console.print(f"🌍 Environment: {data.get('environment', 'N/A')}")
    console.print(f"🧭 Strategy:    {data.get('strategy', 'N/A')} ({data.get('phase', 'deploy')})")
    console.print(f"⏱️  Duration:    {data.get('duration', 0)}s")
    console.print(f"{_RUN_EMOJI.get(status, '❓')} Status:      {status}")
    if data.get("dryRun"):
        console.print("🧪 Dry run:     no process was spawned")
    if data.get("haltReason"):
        console.print(f"[bold red]⛔ {escape(data['haltReason'])}[/bold red]")

    counts = Table(show_header=True, header_style="bold")
    for column in ("Total", "Success", "Failed", "Skipped", "Timed out", "Dry run", "Health failed"):
        counts.add_column(column, justify="right")
    counts.add_row(
        str(summary.get("total", 0)),
        str(summary.get("success", 0)),
        str(summary.get("failed", 0)),
        str(summary.get("skipped", 0)),
        str(summary.get("timedOut", 0)),
        str(summary.get("dryRun", 0)),
        str(summary.get("healthChecksFailed", 0)),
    )
    console.print(counts)

    if summary_only:
        return

    outcomes = data.get("outcomes", [])
    if outcomes:
        table = Table(title="Outcomes", show_lines=False)
        table.add_column("Component")
        table.add_column("Server")
        table.add_column("Status")
        table.add_column("Exit", justify="right")
        table.add_column("Time (s)", justify="right")
        table.add_column("Health")
        table.add_column("Error", overflow="fold")
        for outcome in outcomes:
            state = outcome.get("status", "?")
            style = _STATUS_STYLES.get(state, "")
            health = outcome.get("healthCheck") or {}
            table.add_row(
                f"{outcome.get('category', '')}/{outcome.get('componentName', '')}",
                outcome.get("server") or "-",
                f"[{style}]{state}[/{style}]" if style else state,
                "" if outcome.get("exitCode") is None else str(outcome["exitCode"]),
                str(outcome.get("duration", "")),
                health.get("status", ""),
                escape(outcome.get("error") or ""),
            )
        console.print(table)

    checks = data.get("serverChecks", [])
    if checks:
        check_table = Table(title="Server health checks")
        check_table.add_column("Server")
        check_table.add_column("Status")
        check_table.add_column("Attempts", justify="right")
        check_table.add_column("Error", overflow="fold")
        for check in checks:
            check_table.add_row(
                check.get("server", ""),
                check.get("status", ""),
                str(check.get("attempts", "")),
                escape(check.get("error") or ""),
            )
        console.print(check_table)


def handle_report_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the report subcommand."""
    console = context.console
    reports_dir = Path(args.reports_dir or context.config.report.reports_dir)

    if args.list_reports:
        report_files = _list_reports(reports_dir, context.config.report.latest_name)
        if not report_files:
            console.print("📁 No deployment reports found.")
            return EXIT_SUCCESS
        table = Table(title=f"Reports in {reports_dir}")
        for column in ("#", "Status", "Environment", "Phase", "Started", "File"):
            table.add_column(column)
        for index, report_file in enumerate(report_files, 1):
            try:
                data = load_report(report_file)
            except (OSError, json.JSONDecodeError):
                table.add_row(str(index), "❓ error", "?", "?", "?", report_file.name)
                continue
            status = data.get("status", "unknown")
            table.add_row(
                str(index),
                f"{_RUN_EMOJI.get(status, '❓')} {status}",
                str(data.get("environment", "")),
                str(data.get("phase", "")),
                str(data.get("startedAt", ""))[:19].replace("T", " "),
                report_file.name,
            )
        console.print(table)
        return EXIT_SUCCESS

    if args.file:
        target = Path(args.file)
        if not target.exists():
            # 尝试在报告目录中查找
            target = reports_dir / args.file
    else:
        target = get_latest_report_path(reports_dir, context.config.report.latest_name)

    if not target.exists():
        console.print(f"❌ Report not found: {args.file or target}")
        return EXIT_FAILURE

    try:
        data = load_report(target)
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"❌ Cannot read report {target}: {exc}")
        return EXIT_FAILURE
    render_report(data, console, summary_only=args.summary)
    console.print(f"📄 File: {target}")
    return EXIT_SUCCESS


def _list_reports(reports_dir: Path, latest_name: str) -> List[Path]:
    if not reports_dir.is_dir():
        return []
    files = [p for p in reports_dir.glob("deploy_*.json") if p.name != latest_name]
    return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)


def dispatch_command(args: argparse.Namespace) -> int:
    set_verbosity(args.verbose)
    command = args.command or "deploy"

    try:
        context = _build_context(args)
    except (FileNotFoundError, json.JSONDecodeError, TypeError, ValueError, ConfigurationError) as exc:
        logger.error(f"❌ Invalid settings: {exc}")
        return EXIT_CONFIG_ERROR

    # 处理 report 命令
    if command == "report":
        return handle_report_command(args, context)

    workflow = PipelineWorkflow(context.config)
    try:
        request = _build_request(args, context.config)
        if command == "resolve":
            catalog = workflow.resolve(request, args.output)
            for line in catalog.export_variables():
                print(line)
            return EXIT_SUCCESS

        if command == "build":
            report = workflow.run_build(request)
        else:
            report = workflow.run_deploy(request)
    except ConfigurationError as exc:
        logger.error(f"❌ Configuration error: {exc}")
        return EXIT_CONFIG_ERROR

    render_report(report.to_dict(), context.console, summary_only=True)
    if workflow.last_report_path is not None:
        context.console.print(f"📄 Report: {workflow.last_report_path}")
    return exit_status(report)


def run_cli(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)

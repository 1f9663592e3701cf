"""Entry point for checkbar: `checkbar` console script."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .checks.contract import CheckStatus
from .checks.registry import load_checkfiles
from .checks.state import CheckState
from .config import Settings, settings
from .orchestrator import Orchestrator

console = Console()

_STATUS_STYLE = {
    CheckStatus.OK: "green",
    CheckStatus.FAILING: "red",
    CheckStatus.ERROR: "yellow",
    CheckStatus.PENDING: "dim",
}


def _configure(args: argparse.Namespace) -> Settings:
    config = settings.model_copy()
    if args.checks_dir:
        config.checks_dir = args.checks_dir
    if args.interval:
        config.check_run_interval = args.interval
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    return config


def run_server(config: Settings) -> None:
    """Run the orchestrator behind the status API."""
    from .api.routes import broadcast_result
    from .api.server import create_app

    console.print(
        Panel.fit(
            f"[bold]Checkbar[/bold]\n"
            f"Checks:   {config.checks_path}\n"
            f"Interval: {config.check_run_interval}s\n"
            f"Bind:     {config.api_host}:{config.api_port}",
            title="checkbar",
            border_style="green",
        )
    )
    app = create_app(Orchestrator(config, on_result=broadcast_result))
    uvicorn.run(app, host=config.api_host, port=config.api_port, log_level=config.log_level.lower())


def list_checks(config: Settings) -> int:
    """Print every check grouped by checkfile and section."""
    checkfiles = load_checkfiles(config.checks_path)
    if not checkfiles:
        console.print(f"[yellow]No checkfiles found in {config.checks_path}[/yellow]")
        return 0

    table = Table(title=str(config.checks_path))
    table.add_column("Checkfile", style="dim")
    table.add_column("Section")
    table.add_column("Check", style="bold")
    table.add_column("Command")
    for checkfile in checkfiles:
        for definition in checkfile.checks:
            table.add_row(
                checkfile.path.name,
                escape(definition.section or ""),
                escape(definition.name),
                escape(definition.command),
            )
    console.print(table)

    diagnostics = [d for c in checkfiles for d in c.diagnostics]
    for diagnostic in diagnostics:
        console.print(f"[yellow]warning:[/yellow] {escape(str(diagnostic))}")
    return 0


def _result_table(states: list[CheckState]) -> Table:
    table = Table()
    table.add_column("Check", style="bold")
    table.add_column("Status")
    table.add_column("Info")
    for state in states:
        style = _STATUS_STYLE[state.status]
        status = state.status.value + (" (changing)" if state.changing else "")
        info = "\n".join(f"{label}: {value}" if value else label for label, value in state.info)
        table.add_row(escape(state.name), f"[{style}]{status}[/{style}]", escape(info))
    return table


def run_checks(config: Settings, names: list[str]) -> int:
    """Run checks once and print their results. Exit 1 unless all are ok."""
    orchestrator = Orchestrator(config)

    async def _run() -> tuple[list[CheckState], list[str]]:
        try:
            states = await orchestrator.run_once(names or None)
            unknown = [n for n in names if n not in orchestrator.registry]
            return states, unknown
        finally:
            await orchestrator.stop()

    with console.status("[bold green]Running checks..."):
        states, unknown = asyncio.run(_run())

    for name in unknown:
        console.print(f"[red]Unknown check: {name}[/red]")

    if not states:
        console.print("[yellow]No checks to run[/yellow]")
        return 1 if names else 0

    console.print(_result_table(states))
    failed = unknown or any(s.status != CheckStatus.OK for s in states)
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Checkbar: periodic shell checks")
    parser.add_argument("--checks-dir", help=f"Checkfiles directory (default: {settings.checks_dir})")
    parser.add_argument("--interval", type=int, help="Seconds between runs of each check")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Run checks continuously behind the status API")
    sub.add_parser("list", help="List checks found in the checkfiles")
    run_parser = sub.add_parser("run", help="Run checks once and print results")
    run_parser.add_argument("names", nargs="*", help="Checks to run (default: all)")

    args = parser.parse_args(argv)

    if args.command == "serve":
        run_server(_configure(args))
    elif args.command == "list":
        sys.exit(list_checks(_configure(args)))
    elif args.command == "run":
        sys.exit(run_checks(_configure(args), args.names))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()

"""stackboot command-line interface.

Each command maps onto one operation: ``up`` -> bring-up, ``status`` /
``logs`` / ``restart`` -> the monitor, ``verify`` -> read-only bootstrap
check, ``repair`` -> destructive bootstrap.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
import json
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackboot import __version__
from stackboot.core.exceptions import StackbootError
from stackboot.core.logging_config import setup_logging
from stackboot.services import PostgresDataStore
from stackboot.startup.bootstrap import BootstrapReconciler
from stackboot.startup.config_schema import StackConfig
from stackboot.startup.error_catalog import error_catalog
from stackboot.startup.monitor import status_table
from stackboot.startup.orchestrator import StackOrchestrator
from stackboot.startup.planner import plan_waves
from stackboot.startup.progress_reporter import StartupProgressReporter
from stackboot.startup.stack_definition import default_stack

console = Console()

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

T = TypeVar("T")


def build_orchestrator(config: StackConfig, *, with_bootstrap: bool = True) -> StackOrchestrator:
    return StackOrchestrator.from_config(
        config,
        reporter=StartupProgressReporter(),
        with_bootstrap=with_bootstrap,
    )


def build_reconciler(config: StackConfig) -> BootstrapReconciler:
    return BootstrapReconciler.from_config(PostgresDataStore.from_config(config), config)


def _run(ctx: click.Context, awaitable: Awaitable[T]) -> T:  # type: ignore[return]
    """Run a coroutine, turning stackboot errors and Ctrl-C into exit codes."""
    try:
        return asyncio.run(awaitable)  # type: ignore[arg-type]
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted; services already started keep running.[/yellow]")
        ctx.exit(EXIT_INTERRUPTED)
    except StackbootError as e:
        _print_error(e)
        ctx.exit(EXIT_FAILURE)


def _print_error(error: StackbootError) -> None:
    console.print(f"[bold red]✗[/bold red] {error}")
    if error.error_code and error_catalog.get_error_info(error.error_code):
        console.print(
            Panel(error_catalog.help_for(error), title="How to fix", border_style="red")
        )
    else:
        console.print(f"[yellow]Fix:[/yellow] {error.remediation}")


async def _with_orchestrator(
    orchestrator: StackOrchestrator, coro_factory: Any
) -> Any:
    try:
        return await coro_factory(orchestrator)
    finally:
        await orchestrator.aclose()


@click.group()
@click.version_option(__version__, prog_name="stackboot")
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=".env",
    show_default=True,
    help="Environment file holding the stack secrets",
)
@click.option(
    "--project-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory of the compose project",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(
    ctx: click.Context,
    env_file: Path,
    project_dir: Path | None,
    verbose: bool,  # noqa: FBT001
) -> None:
    """Dependency-ordered bring-up for a self-hosted Supabase stack."""
    ctx.ensure_object(dict)
    config, errors = StackConfig.validate_from_env(env_file if env_file.exists() else None)
    if config is None:
        console.print("[bold red]Invalid configuration:[/bold red]")
        for error in errors:
            console.print(f"  • {error}")
        console.print(error_catalog.format_error_help("CONFIG_002"))
        ctx.exit(EXIT_FAILURE)
    if project_dir is not None:
        config = config.model_copy(update={"project_dir": project_dir})
    setup_logging(config, verbose=verbose)
    ctx.obj["config"] = config


@cli.command()
@click.option("--dry-run", is_flag=True, help="Validate and plan without starting anything")
@click.option("--json", "as_json", is_flag=True, help="Print a JSON summary at the end")
@click.pass_context
def up(ctx: click.Context, dry_run: bool, as_json: bool) -> None:  # noqa: FBT001
    """Bring the stack up in dependency order."""
    orchestrator = build_orchestrator(ctx.obj["config"], with_bootstrap=not dry_run)

    if dry_run:
        report, text = _run(ctx, _with_orchestrator(orchestrator, lambda o: o.dry_run()))
        console.print(text, markup=False, highlight=False)
        ctx.exit(0 if report.ok else EXIT_FAILURE)

    report = _run(ctx, _with_orchestrator(orchestrator, lambda o: o.bring_up()))
    if report.status.results:
        console.print(status_table(report.status, orchestrator.registry))
    if as_json:
        click.echo(json.dumps(orchestrator.summary(report), indent=2, default=str))
    if report.fatal is not None:
        _print_error(report.fatal)
        ctx.exit(EXIT_FAILURE)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of a table")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:  # noqa: FBT001
    """Show the current state of every service."""
    orchestrator = build_orchestrator(ctx.obj["config"], with_bootstrap=False)
    snapshot = _run(ctx, _with_orchestrator(orchestrator, lambda o: o.monitor.status()))
    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
    else:
        console.print(status_table(snapshot, orchestrator.registry))


@cli.command()
@click.argument("service")
@click.option("--tail", default=50, show_default=True, help="Lines to show")
@click.option("--follow", "-f", is_flag=True, help="Keep streaming new lines")
@click.pass_context
def logs(ctx: click.Context, service: str, tail: int, follow: bool) -> None:  # noqa: FBT001
    """Show log output of one service."""
    orchestrator = build_orchestrator(ctx.obj["config"], with_bootstrap=False)

    async def stream(o: StackOrchestrator) -> None:
        async for line in o.monitor.logs(service, tail=tail, follow=follow):
            click.echo(line)

    _run(ctx, _with_orchestrator(orchestrator, stream))


@cli.command()
@click.argument("service")
@click.pass_context
def restart(ctx: click.Context, service: str) -> None:
    """Restart one service."""
    orchestrator = build_orchestrator(ctx.obj["config"], with_bootstrap=False)
    result = _run(
        ctx, _with_orchestrator(orchestrator, lambda o: o.monitor.restart(service))
    )
    output = (result.stdout + result.stderr).strip()
    if output:
        click.echo(output)
    if not result.ok:
        console.print(f"[red]Restart of {service} exited {result.returncode}[/red]")
        ctx.exit(EXIT_FAILURE)
    console.print(f"[green]✓[/green] Restarted {service}")


@cli.command()
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def repair(ctx: click.Context, yes: bool) -> None:  # noqa: FBT001
    """Drop and recreate the bootstrap role, database and schema (destructive)."""
    config: StackConfig = ctx.obj["config"]
    if not yes:
        click.confirm(
            f"This drops role '{config.admin_role}' and database "
            f"'{config.analytics_database}' and terminates their sessions. "
            "Stop services using them first. Continue?",
            abort=True,
        )
    reconciler = build_reconciler(config)

    async def run() -> Any:
        try:
            return await reconciler.repair()
        finally:
            await reconciler.store.close()

    report = _run(ctx, run())
    StartupProgressReporter().report_bootstrap(report)
    console.print("[green]✓[/green] Repair complete")


@cli.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """Check the data store bootstrap without changing anything."""
    orchestrator = build_orchestrator(ctx.obj["config"])
    snapshot, report = _run(
        ctx, _with_orchestrator(orchestrator, lambda o: o.verify_store())
    )

    if report is None:
        console.print(status_table(snapshot, orchestrator.registry))
        console.print(
            "[bold red]✗[/bold red] Data store services are not healthy; run 'up' first"
        )
        ctx.exit(EXIT_FAILURE)

    table = Table(title="Store Verification")
    table.add_column("Check", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Detail")
    for check in report.checks:
        result = "[green]pass[/green]" if check.passed else "[red]fail[/red]"
        table.add_row(check.name, result, check.detail)
    console.print(table)

    if not report.ok:
        console.print(
            f"[bold red]✗[/bold red] {len(report.failed)} check(s) failed; "
            "run 'up' to reconcile or 'repair' to rebuild"
        )
        ctx.exit(EXIT_FAILURE)
    console.print("[green]✓[/green] Store bootstrap verified")


@cli.command("check-env")
@click.pass_context
def check_env(ctx: click.Context) -> None:
    """Check required and optional settings."""
    config: StackConfig = ctx.obj["config"]
    validation = config.validate_required()

    table = Table(title="Environment")
    table.add_column("Key", style="cyan")
    table.add_column("Required", justify="center")
    table.add_column("State")
    for key in config.REQUIRED_KEYS:
        if key in validation.missing_keys:
            state = "[red]missing[/red]"
        elif key in validation.placeholder_keys:
            state = "[red]placeholder[/red]"
        else:
            state = "[green]set[/green]"
        table.add_row(key, "yes", state)
    for key in config.OPTIONAL_KEYS:
        state = (
            "[yellow]not set[/yellow]"
            if key in validation.missing_optional_keys
            else "[green]set[/green]"
        )
        table.add_row(key, "no", state)
    console.print(table)

    if not validation.ok:
        console.print(f"[bold red]✗[/bold red] {validation.describe()}")
        ctx.exit(EXIT_FAILURE)
    console.print("[green]✓[/green] All required settings present")


@cli.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """Show the startup waves."""
    try:
        startup_plan = plan_waves(default_stack(ctx.obj["config"]).nodes)
    except StackbootError as e:
        _print_error(e)
        ctx.exit(EXIT_FAILURE)

    table = Table(title="Startup Plan")
    table.add_column("Wave", justify="right")
    table.add_column("Services", style="cyan")
    for index, names in enumerate(startup_plan.names):
        table.add_row(str(index), ", ".join(names))
    console.print(table)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

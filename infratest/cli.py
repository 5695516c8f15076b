"""Command line interface: environment checks and run ledger maintenance."""

from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from infratest.errors import HarnessError
from infratest.ledger import RunLedger
from infratest.log import configure_logging
from infratest.models import ProvisionRun, RunStatus
from infratest.runner import CommandRunner
from infratest.session import destroy_recorded_run
from infratest.settings import get_settings

app = typer.Typer(no_args_is_help=True, help="Infrastructure module test harness.")

_console = Console()


def _tool_version(binary: str) -> tuple[bool, str]:
    runner = CommandRunner(binary)
    try:
        runner.resolve()
    except HarnessError as exc:
        return False, str(exc)
    try:
        result = runner.execute(["version"], cwd=Path("."))
    except (HarnessError, OSError) as exc:
        return False, str(exc)
    lines = result.stdout.strip().splitlines()
    return True, lines[0] if lines else "unknown version"


@app.callback()
def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)


@app.command()
def doctor() -> None:
    """Check the provisioning tools and harness configuration."""

    settings = get_settings()

    table = Table(title="infratest doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    ok_tf, detail_tf = _tool_version(settings.terraform_binary)
    table.add_row("terraform", "OK" if ok_tf else "FAIL", detail_tf)

    ok_pulumi, detail_pulumi = _tool_version(settings.pulumi_binary)
    table.add_row("pulumi", "OK" if ok_pulumi else "OPTIONAL", detail_pulumi)

    modules_ok = settings.modules_dir.is_dir()
    table.add_row("modules dir", "OK" if modules_ok else "FAIL", str(settings.modules_dir))
    table.add_row("ledger", "OK", settings.ledger_url)
    table.add_row("infra tests", "ENABLED" if settings.run_infra else "DISABLED", "INFRATEST_RUN_INFRA")

    _console.print(table)

    if not (ok_tf and modules_ok):
        raise typer.Exit(code=1)


@app.command()
def runs(
    status: Optional[RunStatus] = typer.Option(None, help="Only show runs with this status"),
    as_json: bool = typer.Option(False, "--json", help="Print one JSON object per run"),
) -> None:
    """List recorded provisioning runs."""

    ledger = RunLedger(get_settings().ledger_url)
    records = [ProvisionRun.model_validate(record) for record in ledger.list_runs(status=status)]

    if as_json:
        for record in records:
            typer.echo(record.model_dump_json())
        return

    table = Table(title=f"Provisioning runs ({len(records)})")
    table.add_column("Run", style="bright_green", no_wrap=True)
    table.add_column("Backend")
    table.add_column("Status")
    table.add_column("Module", style="dim")
    table.add_column("Updated", style="dim")
    table.add_column("Error", style="red")

    for record in records:
        table.add_row(
            record.run_id,
            record.backend.value,
            record.status.value,
            record.working_dir,
            record.updated_at.isoformat(timespec="seconds"),
            (record.error_message or "")[:80],
        )
    _console.print(table)


@app.command()
def cleanup(
    older_than: int = typer.Option(60, help="Only runs idle for at least this many minutes"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Destroy runs whose teardown never completed."""

    ledger = RunLedger(get_settings().ledger_url)
    leaked = ledger.leaked_runs(older_than=timedelta(minutes=older_than))
    if not leaked:
        _console.print("[green]No leaked runs.[/green]")
        return

    for record in leaked:
        _console.print(f"- {record.run_id} ({record.status.value}) {record.working_dir}")
    if not yes and not typer.confirm(f"Destroy {len(leaked)} run(s)?"):
        raise typer.Abort()

    failed = 0
    for record in leaked:
        try:
            destroy_recorded_run(ledger, record.run_id)
        except Exception as exc:
            failed += 1
            _console.print(f"[red]FAILED[/red] {record.run_id}: {exc}")
        else:
            _console.print(f"[green]destroyed[/green] {record.run_id}")

    if failed:
        raise typer.Exit(code=1)


def run() -> None:
    app()

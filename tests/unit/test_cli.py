"""Unit tests for the command line interface."""

import json

import pytest
from rich.console import Console
from typer.testing import CliRunner

from infratest import cli
from infratest.errors import CommandError
from infratest.ledger import RunLedger
from infratest.models import Backend, RunStatus
from infratest.runner import CommandResult
from infratest.settings import get_settings

runner = CliRunner()


@pytest.fixture
def cli_ledger(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'runs.db'}"
    monkeypatch.setenv("INFRATEST_LEDGER_URL", url)
    monkeypatch.setenv("INFRATEST_MODULES_DIR", str(tmp_path))
    monkeypatch.setattr(cli, "_console", Console(width=200))
    get_settings.cache_clear()
    yield RunLedger(url)
    get_settings.cache_clear()


def test_runs_lists_ledger(cli_ledger, options):
    cli_ledger.create_run("vpc-abc123", Backend.TERRAFORM, options)

    result = runner.invoke(cli.app, ["runs"])

    assert result.exit_code == 0
    assert "vpc-abc123" in result.output


def test_runs_filters_by_status(cli_ledger, options):
    cli_ledger.create_run("vpc-1", Backend.TERRAFORM, options)
    cli_ledger.create_run("vpc-2", Backend.TERRAFORM, options)
    cli_ledger.update_status("vpc-2", RunStatus.DESTROYED)

    result = runner.invoke(cli.app, ["runs", "--status", "destroyed"])

    assert result.exit_code == 0
    assert "vpc-2" in result.output
    assert "vpc-1" not in result.output


def test_runs_json_renders_each_run(cli_ledger, options):
    cli_ledger.create_run("vpc-1", Backend.TERRAFORM, options)
    cli_ledger.update_status("vpc-1", RunStatus.SUCCEEDED, outputs=json.dumps({"vpc_cidr": "10.99.0.0/16"}))
    cli_ledger.create_run("vpc-2", Backend.TERRAFORM, options)

    result = runner.invoke(cli.app, ["runs", "--json"])

    assert result.exit_code == 0
    rows = [json.loads(line) for line in result.output.splitlines()]
    assert [row["run_id"] for row in rows] == ["vpc-1", "vpc-2"]
    assert rows[0]["status"] == "succeeded"
    assert rows[0]["backend"] == "terraform"
    assert rows[0]["outputs"] == {"vpc_cidr": "10.99.0.0/16"}
    assert rows[1]["outputs"] is None


def test_cleanup_nothing_to_do(cli_ledger):
    result = runner.invoke(cli.app, ["cleanup", "--older-than", "0"])

    assert result.exit_code == 0
    assert "No leaked runs" in result.output


def test_cleanup_destroys_leaked_runs(cli_ledger, options, monkeypatch):
    cli_ledger.create_run("vpc-1", Backend.TERRAFORM, options)
    destroyed = []
    monkeypatch.setattr(cli, "destroy_recorded_run", lambda ledger, run_id: destroyed.append(run_id))

    result = runner.invoke(cli.app, ["cleanup", "--older-than", "0", "--yes"])

    assert result.exit_code == 0
    assert destroyed == ["vpc-1"]


def test_cleanup_reports_failures(cli_ledger, options, monkeypatch):
    cli_ledger.create_run("vpc-1", Backend.TERRAFORM, options)

    def fail(ledger, run_id):
        raise CommandError(CommandResult(["terraform", "destroy"], 1, "", "Error: DependencyViolation", 0.0))

    monkeypatch.setattr(cli, "destroy_recorded_run", fail)

    result = runner.invoke(cli.app, ["cleanup", "--older-than", "0", "--yes"])

    assert result.exit_code == 1
    assert "DependencyViolation" in result.output


def test_cleanup_asks_for_confirmation(cli_ledger, options, monkeypatch):
    cli_ledger.create_run("vpc-1", Backend.TERRAFORM, options)
    destroyed = []
    monkeypatch.setattr(cli, "destroy_recorded_run", lambda ledger, run_id: destroyed.append(run_id))

    result = runner.invoke(cli.app, ["cleanup", "--older-than", "0"], input="n\n")

    assert result.exit_code != 0
    assert destroyed == []


def test_doctor_reports_missing_terraform(cli_ledger, monkeypatch):
    monkeypatch.setattr("infratest.runner.shutil.which", lambda binary: None)

    result = runner.invoke(cli.app, ["doctor"])

    assert result.exit_code == 1
    assert "terraform" in result.output

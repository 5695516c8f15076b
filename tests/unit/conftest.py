"""Fixtures for unit tests: fake tool runners and provisioners, a temp ledger."""

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import pytest

from infratest.errors import CommandError, OutputNotFoundError
from infratest.ledger import RunLedger
from infratest.models import ProvisionOptions
from infratest.provisioner import Provisioner
from infratest.runner import CommandResult, CommandRunner


class FakeRunner(CommandRunner):
    """Records terraform invocations and answers from canned responses.

    Responses are keyed by subcommand (``"init"``, ``"plan"``) or, for outputs,
    by the command without ``-no-color`` (``"output -json vpc_cidr"``).
    """

    def __init__(self, responses: Optional[dict[str, tuple[int, str, str]]] = None):
        super().__init__("terraform")
        self.responses = responses or {}
        self.calls: list[dict[str, Any]] = []

    def run(
        self,
        args: list[str],
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        retryable_errors: Optional[Mapping[str, str]] = None,
        max_retries: int = 0,
        time_between_retries: float = 0.0,
        allowed_exit_codes: Iterable[int] = (0,),
    ) -> CommandResult:
        self.calls.append(
            {
                "args": list(args),
                "cwd": cwd,
                "env": dict(env or {}),
                "retryable_errors": dict(retryable_errors or {}),
                "max_retries": max_retries,
            }
        )
        key = " ".join(arg for arg in args if arg != "-no-color") if args[0] in ("output", "show") else args[0]
        exit_code, stdout, stderr = self.responses.get(key, (0, "", ""))
        result = CommandResult(
            args=["terraform", *args],
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration=0.0,
        )
        if exit_code not in tuple(allowed_exit_codes):
            raise CommandError(result)
        return result

    @property
    def subcommands(self) -> list[str]:
        return [call["args"][0] for call in self.calls]


class FakeProvisioner(Provisioner):
    """In-memory provisioner recording the steps it was asked to run."""

    def __init__(
        self,
        options: ProvisionOptions,
        outputs: Optional[dict[str, Any]] = None,
        fail_on: Optional[dict[str, Exception]] = None,
    ) -> None:
        super().__init__(options)
        self._outputs = outputs or {}
        self.fail_on = fail_on or {}
        self.steps: list[str] = []

    def _do(self, step: str) -> None:
        self.steps.append(step)
        if step in self.fail_on:
            raise self.fail_on[step]

    def init(self) -> None:
        self._do("init")

    def plan(self) -> None:
        self._do("plan")

    def apply(self) -> None:
        self._do("apply")

    def destroy(self) -> None:
        self._do("destroy")

    def output_raw(self, name: str) -> Any:
        if name not in self._outputs:
            raise OutputNotFoundError(name)
        return self._outputs[name]

    def outputs(self) -> dict[str, Any]:
        return dict(self._outputs)


@pytest.fixture
def options(tmp_path: Path) -> ProvisionOptions:
    module_dir = tmp_path / "vpc"
    module_dir.mkdir()
    return ProvisionOptions(
        working_dir=module_dir,
        vars={"project_name": "test-platform", "environment": "test", "vpc_cidr": "10.99.0.0/16"},
    )


@pytest.fixture
def fake_runner():
    def _make(responses: Optional[dict[str, tuple[int, str, str]]] = None) -> FakeRunner:
        return FakeRunner(responses)

    return _make


@pytest.fixture
def fake_provisioner(options: ProvisionOptions):
    def _make(
        outputs: Optional[dict[str, Any]] = None,
        fail_on: Optional[dict[str, Exception]] = None,
    ) -> FakeProvisioner:
        return FakeProvisioner(options, outputs=outputs, fail_on=fail_on)

    return _make


@pytest.fixture
def ledger(tmp_path: Path) -> RunLedger:
    return RunLedger(f"sqlite:///{tmp_path / 'ledger' / 'runs.db'}")

"""Terraform backend: shells out to the terraform binary."""

import json
import os
import re
from typing import Any, Optional

import structlog

from infratest.errors import CommandError, OutputNotFoundError
from infratest.hcl import format_backend_config_args, format_var_args, format_var_file_args
from infratest.models import ProvisionOptions
from infratest.provisioner import Provisioner
from infratest.runner import CommandResult, CommandRunner

logger = structlog.get_logger(__name__)

DEFAULT_BINARY = "terraform"

_OUTPUT_MISSING = re.compile(r"Output \".*\" not found|could not be found", re.IGNORECASE)


def _flag(name: str, value: bool) -> str:
    return f"-{name}={'true' if value else 'false'}"


class TerraformProvisioner(Provisioner):
    """Runs init/plan/apply/destroy/output against a Terraform module.

    Every command runs in ``options.working_dir`` with ``TF_IN_AUTOMATION`` and
    ``TF_INPUT=0`` set, and is retried on ``options.retryable_errors``.
    """

    def __init__(self, options: ProvisionOptions, runner: Optional[CommandRunner] = None) -> None:
        super().__init__(options)
        self.runner = runner or CommandRunner(options.binary or DEFAULT_BINARY)

    def environment(self) -> dict[str, str]:
        env = os.environ.copy()
        env["TF_IN_AUTOMATION"] = "1"
        env["TF_INPUT"] = "0"
        env.update(self.options.env_vars)
        return env

    def _run(self, args: list[str], allowed_exit_codes: tuple[int, ...] = (0,)) -> CommandResult:
        if self.options.no_color and "-no-color" not in args:
            # flags must precede positional arguments such as output names
            args = [args[0], "-no-color", *args[1:]]
        return self.runner.run(
            args,
            cwd=self.options.working_dir,
            env=self.environment(),
            retryable_errors=self.options.retryable_errors,
            max_retries=self.options.max_retries,
            time_between_retries=self.options.time_between_retries,
            allowed_exit_codes=allowed_exit_codes,
        )

    def _variable_args(self) -> list[str]:
        return format_var_args(self.options.vars) + format_var_file_args(self.options.var_files)

    def init_args(self) -> list[str]:
        args = ["init", _flag("upgrade", self.options.upgrade), "-input=false"]
        if self.options.reconfigure:
            args.append("-reconfigure")
        args.extend(format_backend_config_args(self.options.backend_config))
        return args

    def plan_args(self, detailed_exit_code: bool = False) -> list[str]:
        args = ["plan", "-input=false", _flag("lock", self.options.lock)]
        if self.options.parallelism:
            args.append(f"-parallelism={self.options.parallelism}")
        if detailed_exit_code:
            args.append("-detailed-exitcode")
        args.extend(self._variable_args())
        if self.options.plan_file_path:
            args.append(f"-out={self.options.plan_file_path}")
        return args

    def apply_args(self) -> list[str]:
        args = ["apply", "-input=false", "-auto-approve", _flag("lock", self.options.lock)]
        if self.options.parallelism:
            args.append(f"-parallelism={self.options.parallelism}")
        return args + self._variable_args()

    def destroy_args(self) -> list[str]:
        args = ["destroy", "-auto-approve", "-input=false", _flag("lock", self.options.lock)]
        if self.options.parallelism:
            args.append(f"-parallelism={self.options.parallelism}")
        return args + self._variable_args()

    def init(self) -> None:
        self._run(self.init_args())

    def plan(self) -> None:
        self._run(self.plan_args())

    def plan_exit_code(self) -> int:
        """Plan with -detailed-exitcode.

        Returns:
            0 when there are no changes, 2 when changes are pending

        Raises:
            CommandError: The plan itself failed (exit code 1)
        """
        result = self._run(self.plan_args(detailed_exit_code=True), allowed_exit_codes=(0, 2))
        return result.exit_code

    def init_and_plan_exit_code(self) -> int:
        self.init()
        return self.plan_exit_code()

    def show_plan(self) -> dict[str, Any]:
        """Return the saved plan file rendered by ``terraform show -json``."""
        if self.options.plan_file_path is None:
            raise ValueError("plan_file_path must be set to show a plan")
        result = self._run(["show", "-json", str(self.options.plan_file_path)])
        return json.loads(result.stdout)

    def validate(self) -> None:
        self._run(["validate"])

    def init_and_validate(self) -> None:
        self.init()
        self.validate()

    def apply(self) -> None:
        self._run(self.apply_args())

    def destroy(self) -> None:
        self._run(self.destroy_args())

    def output_raw(self, name: str) -> Any:
        try:
            result = self._run(["output", "-json", name])
        except CommandError as e:
            if _OUTPUT_MISSING.search(e.result.output):
                raise OutputNotFoundError(name) from e
            raise
        value = json.loads(result.stdout)
        logger.debug("read output", output=name)
        return value

    def outputs(self) -> dict[str, Any]:
        result = self._run(["output", "-json"])
        raw = json.loads(result.stdout or "{}")
        return {name: entry.get("value") for name, entry in raw.items()}

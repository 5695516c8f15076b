"""Pulumi backend driven through the Automation API."""

import json
from typing import Any, Callable, Optional, TypeVar

import structlog
from pulumi import automation as auto

from infratest.errors import HarnessError, OutputNotFoundError
from infratest.models import ProvisionOptions
from infratest.provisioner import Provisioner
from infratest.runner import retry_on_errors

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def config_value(value: Any) -> str:
    """Render a variable as a Pulumi config string.

    Lists are comma separated, mappings are JSON and bools are lowercase.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(config_value(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    if value is None:
        return ""
    return str(value)


class PulumiProvisioner(Provisioner):
    """Runs preview/up/destroy against a Pulumi project directory."""

    def __init__(self, options: ProvisionOptions) -> None:
        super().__init__(options)
        if not options.stack_name:
            raise ValueError("stack_name is required for the Pulumi backend")
        self.stack_name = options.stack_name
        self._stack: Optional[auto.Stack] = None

    @property
    def stack(self) -> auto.Stack:
        if self._stack is None:
            raise HarnessError(f"stack {self.stack_name!r} is not initialized; call init() first")
        return self._stack

    def _retry(self, description: str, action: Callable[[], T]) -> T:
        return retry_on_errors(
            action,
            description=description,
            retryable_errors=self.options.retryable_errors,
            max_retries=self.options.max_retries,
            time_between_retries=self.options.time_between_retries,
            error_types=(auto.CommandError,),
        )

    def _log_line(self, line: str) -> None:
        logger.debug("pulumi", stack=self.stack_name, line=line.rstrip())

    def init(self) -> None:
        workspace_opts = auto.LocalWorkspaceOptions(env_vars=dict(self.options.env_vars) or None)

        self._stack = self._retry(
            "pulumi stack select",
            lambda: auto.create_or_select_stack(
                stack_name=self.stack_name,
                work_dir=str(self.options.working_dir),
                opts=workspace_opts,
            ),
        )
        if self.options.vars:
            self._stack.set_all_config(
                {
                    key: auto.ConfigValue(value=config_value(value), secret=False)
                    for key, value in self.options.vars.items()
                }
            )
        logger.info("stack ready", stack=self.stack_name, cwd=str(self.options.working_dir))

    def plan(self) -> None:
        result = self._retry("pulumi preview", lambda: self.stack.preview(on_output=self._log_line))
        logger.info("preview finished", stack=self.stack_name, changes=result.change_summary)

    def apply(self) -> None:
        result = self._retry("pulumi up", lambda: self.stack.up(on_output=self._log_line))
        logger.info("update finished", stack=self.stack_name, result=result.summary.result)

    def destroy(self) -> None:
        self._retry("pulumi destroy", lambda: self.stack.destroy(on_output=self._log_line))
        self.stack.workspace.remove_stack(self.stack_name)
        logger.info("stack removed", stack=self.stack_name)

    def outputs(self) -> dict[str, Any]:
        return {name: output.value for name, output in self.stack.outputs().items()}

    def output_raw(self, name: str) -> Any:
        outputs = self.outputs()
        if name not in outputs:
            raise OutputNotFoundError(name)
        return outputs[name]

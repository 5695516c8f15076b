"""Exceptions raised by the harness."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from infratest.runner import CommandResult


class HarnessError(Exception):
    """Base class for all harness errors."""


class ToolNotFoundError(HarnessError):
    """The provisioning binary could not be found on PATH."""

    def __init__(self, binary: str):
        super().__init__(f"{binary!r} was not found on PATH")
        self.binary = binary


class CommandError(HarnessError):
    """A tool invocation exited with a status the caller did not allow."""

    def __init__(self, result: "CommandResult"):
        self.result = result
        detail = (result.stderr or result.stdout).strip()
        super().__init__(
            f"`{' '.join(result.args)}` exited with status {result.exit_code}: {detail}"
        )


class MaxRetriesExceeded(HarnessError):
    """A retryable error kept occurring after every allowed attempt."""

    def __init__(self, description: str, attempts: int, last_error: Exception):
        super().__init__(f"{description} still failing after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class OutputNotFoundError(HarnessError):
    """The module does not publish an output with the requested name."""

    def __init__(self, name: str):
        super().__init__(f"output {name!r} not found")
        self.name = name


class OutputTypeError(HarnessError):
    """An output exists but does not have the requested shape."""

    def __init__(self, name: str, expected: str, value: object):
        super().__init__(f"output {name!r} is not a {expected}: {value!r}")
        self.name = name
        self.expected = expected
        self.value = value


class RunNotFoundError(HarnessError):
    """No ledger entry exists for the run id."""

    def __init__(self, run_id: str):
        super().__init__(f"run {run_id!r} not found")
        self.run_id = run_id

"""Run the provisioning binary and retry transient failures."""

import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from infratest.errors import CommandError, MaxRetriesExceeded, ToolNotFoundError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class CommandResult:
    """Outcome of one tool invocation."""

    args: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration: float

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


def error_text(exc: BaseException) -> str:
    """Text searched for retryable error patterns."""
    result = getattr(exc, "result", None)
    if isinstance(result, CommandResult):
        return result.output
    return str(exc)


def match_retryable(text: str, retryable_errors: Mapping[str, str]) -> Optional[str]:
    """Return the first pattern in ``retryable_errors`` found in ``text``."""
    for pattern in retryable_errors:
        if re.search(pattern, text):
            return pattern
    return None


def retry_on_errors(
    action: Callable[[], T],
    description: str,
    retryable_errors: Mapping[str, str],
    max_retries: int,
    time_between_retries: float,
    error_types: tuple[type[BaseException], ...] = (CommandError,),
) -> T:
    """Call ``action``, retrying while it fails with a retryable error.

    Args:
        action: Zero-argument callable to run
        description: Human readable name used in logs and errors
        retryable_errors: Regex -> description of errors worth retrying
        max_retries: Retries after the first attempt
        time_between_retries: Seconds to wait before each retry
        error_types: Exception types whose text is matched against the patterns

    Returns:
        Whatever ``action`` returns

    Raises:
        MaxRetriesExceeded: A retryable error persisted through every attempt
    """
    if not retryable_errors or max_retries <= 0:
        return action()

    def is_retryable(exc: BaseException) -> bool:
        return isinstance(exc, error_types) and (
            match_retryable(error_text(exc), retryable_errors) is not None
        )

    def log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        pattern = match_retryable(error_text(exc), retryable_errors) if exc else None
        logger.warning(
            "retrying after transient error",
            action=description,
            attempt=retry_state.attempt_number,
            max_retries=max_retries,
            reason=retryable_errors.get(pattern, "") if pattern else "",
        )

    retrying = Retrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_fixed(time_between_retries),
        before_sleep=log_retry,
    )
    try:
        return retrying(action)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        raise MaxRetriesExceeded(description, e.last_attempt.attempt_number, last_error) from last_error


class CommandRunner:
    """Runs one executable with captured output."""

    def __init__(self, binary: str):
        self.binary = binary

    def resolve(self) -> str:
        """Return the absolute path of the binary.

        Raises:
            ToolNotFoundError: The binary is not on PATH
        """
        path = shutil.which(self.binary)
        if path is None:
            raise ToolNotFoundError(self.binary)
        return path

    def execute(
        self,
        args: list[str],
        cwd: Path,
        env: Optional[Mapping[str, str]] = None,
        allowed_exit_codes: Iterable[int] = (0,),
    ) -> CommandResult:
        """Run the binary once.

        Args:
            args: Arguments after the binary name
            cwd: Working directory
            env: Full process environment (defaults to the current one)
            allowed_exit_codes: Exit codes that count as success

        Returns:
            The command result

        Raises:
            CommandError: The exit code is not in ``allowed_exit_codes``
        """
        command = [self.resolve(), *args]
        log = logger.bind(command=" ".join([self.binary, *args]), cwd=str(cwd))
        log.info("running command")

        start = time.perf_counter()
        completed = subprocess.run(
            command,
            cwd=str(cwd),
            env=dict(env) if env is not None else os.environ.copy(),
            capture_output=True,
            text=True,
            check=False,
        )
        result = CommandResult(
            args=[self.binary, *args],
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            duration=time.perf_counter() - start,
        )
        log = log.bind(exit_code=result.exit_code, duration=round(result.duration, 2))
        log.info("command finished")

        if result.exit_code not in tuple(allowed_exit_codes):
            log.warning("command failed", stderr=result.stderr.strip()[-2000:])
            raise CommandError(result)
        return result

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
        """Run the binary, retrying on the configured transient errors."""
        allowed = tuple(allowed_exit_codes)
        return retry_on_errors(
            lambda: self.execute(args, cwd, env, allowed),
            description=" ".join([self.binary, *args[:1]]),
            retryable_errors=retryable_errors or {},
            max_retries=max_retries,
            time_between_retries=time_between_retries,
        )

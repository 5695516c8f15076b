"""Pydantic models for provisioning options and recorded runs."""

import json
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RunStatus(str, Enum):
    """Lifecycle status of a provisioning run."""

    PENDING = "pending"
    INITIALIZING = "initializing"
    PLANNING = "planning"
    APPLYING = "applying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"
    DESTROY_FAILED = "destroy_failed"


class Backend(str, Enum):
    """Provisioning tool driven by the harness."""

    TERRAFORM = "terraform"
    PULUMI = "pulumi"


# Transient failures of the tool, provider registry or plugins.
DEFAULT_RETRYABLE_ERRORS: dict[str, str] = {
    r".*read: connection reset by peer.*": "Failed to reach helm charts repository.",
    r".*transport is closing.*": "Failed to reach Kubernetes API.",
    r".*unable to verify signature.*": "Failed to retrieve plugin due to transient network error.",
    r".*unable to verify checksum.*": "Failed to retrieve plugin due to transient network error.",
    r".*no provider exists with the given name.*": "Failed to retrieve plugin due to transient network error.",
    r".*registry service is unreachable.*": "Failed to retrieve plugin due to transient network error.",
    r".*Error installing provider.*": "Failed to retrieve plugin due to transient network error.",
    r".*Failed to query available provider packages.*": "Failed to retrieve plugin due to transient network error.",
    r".*timeout while waiting for plugin to start.*": "Failed to retrieve plugin due to transient network error.",
    r".*timed out waiting for server handshake.*": "Failed to retrieve plugin due to transient network error.",
    r"could not query provider registry for": "Failed to retrieve plugin due to transient network error.",
    r".*Provider produced inconsistent result after apply.*": "Provider eventual consistency error.",
}

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIME_BETWEEN_RETRIES = 5.0

_SCALAR_TYPES = (str, int, float, bool)


def _check_var_value(name: str, value: Any) -> None:
    if value is None or isinstance(value, _SCALAR_TYPES):
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _check_var_value(name, item)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Variable {name!r} has a non-string map key: {key!r}")
            _check_var_value(name, item)
        return
    raise ValueError(f"Variable {name!r} has unsupported type {type(value).__name__}")


class ProvisionOptions(BaseModel):
    """Everything needed to drive one module through the provisioning tool."""

    working_dir: Path = Field(
        ...,
        description="Directory containing the infrastructure module",
    )
    vars: dict[str, Any] = Field(
        default_factory=dict,
        description="Input variables (strings, numbers, bools, lists and maps)",
    )
    var_files: list[Path] = Field(
        default_factory=list,
        description="Variable definition files passed with -var-file",
    )
    env_vars: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the tool process",
    )
    backend_config: dict[str, str] = Field(
        default_factory=dict,
        description="Backend configuration passed to init",
    )

    retryable_errors: dict[str, str] = Field(
        default_factory=dict,
        description="Regex -> description of tool errors worth retrying",
    )
    max_retries: int = Field(
        default=0,
        description="How many times a retryable error is retried",
        ge=0,
    )
    time_between_retries: float = Field(
        default=0.0,
        description="Seconds to wait between retries",
        ge=0,
    )

    no_color: bool = Field(default=True, description="Pass -no-color to the tool")
    lock: bool = Field(default=False, description="Hold the state lock during plan/apply/destroy")
    parallelism: Optional[int] = Field(
        default=None,
        description="Limit on concurrent operations",
        ge=1,
    )
    upgrade: bool = Field(default=False, description="Upgrade providers during init")
    reconfigure: bool = Field(default=False, description="Reconfigure the backend during init")
    plan_file_path: Optional[Path] = Field(
        default=None,
        description="Where plan writes its binary plan file",
    )

    binary: Optional[str] = Field(
        default=None,
        description="Override of the tool executable",
    )
    stack_name: Optional[str] = Field(
        default=None,
        description="Stack name (Pulumi backend only)",
    )

    @field_validator("vars")
    @classmethod
    def validate_vars(cls, v: dict[str, Any]) -> dict[str, Any]:
        """Reject variable values the tool cannot receive."""
        for name, value in v.items():
            if not name:
                raise ValueError("Variable names must not be empty")
            _check_var_value(name, value)
        return v

    @field_validator("retryable_errors")
    @classmethod
    def validate_retryable_errors(cls, v: dict[str, str]) -> dict[str, str]:
        """Ensure every retryable pattern compiles."""
        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid retryable error pattern {pattern!r}: {e}") from e
        return v


def with_default_retryable_errors(options: ProvisionOptions) -> ProvisionOptions:
    """Return a copy of ``options`` that retries well-known transient errors.

    Patterns already present on ``options`` take precedence over the defaults.
    The retry budget is filled in only where the caller left it unset.

    Args:
        options: Options to extend

    Returns:
        A new options instance
    """
    retryable_errors = dict(DEFAULT_RETRYABLE_ERRORS)
    retryable_errors.update(options.retryable_errors)

    update: dict[str, Any] = {"retryable_errors": retryable_errors}
    if "max_retries" not in options.model_fields_set:
        update["max_retries"] = DEFAULT_MAX_RETRIES
    if "time_between_retries" not in options.model_fields_set:
        update["time_between_retries"] = DEFAULT_TIME_BETWEEN_RETRIES

    return options.model_copy(update=update)


class ProvisionRun(BaseModel):
    """A recorded provisioning run."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    run_id: str
    backend: Backend
    working_dir: str
    status: RunStatus
    outputs: Optional[dict] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("outputs", mode="before")
    @classmethod
    def parse_outputs(cls, v: object) -> object:
        """Decode outputs stored as a JSON string."""
        if isinstance(v, str):
            return json.loads(v)
        return v
